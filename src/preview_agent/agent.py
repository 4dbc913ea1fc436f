"""Agent assembly: one object owning the registry, adapter, handlers and loops."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from preview_agent.config import AgentConfig
from preview_agent.core.backup import BackupManager, BackupScheduler
from preview_agent.core.context import AppContext, ContextHolder, ProjectListWatcher, build_context
from preview_agent.core.control import ControlAdapter
from preview_agent.core.idle import IdleEvictor
from preview_agent.core.wake import PageRenderer, WakeHandler
from preview_agent.db.store import ProjectRegistry
from preview_agent.errors import RegistryError
from preview_agent.models.project import AccessLogEntry

logger = logging.getLogger(__name__)


class Agent:
    """Wires every component together with explicit dependencies."""

    def __init__(
        self,
        config: AgentConfig,
        *,
        registry: ProjectRegistry | None = None,
        control: ControlAdapter | None = None,
        context: AppContext | None = None,
    ) -> None:
        self.config = config
        self.registry = registry or ProjectRegistry(config.db_path)
        self.control = control or ControlAdapter()
        self.holder = ContextHolder(context or build_context(config))
        self.wake = WakeHandler(self.registry, self.control, PageRenderer(config.templates_dir))
        self.idle = IdleEvictor(self.registry, self.control, self.current_context)
        self.backups = BackupManager(self.registry, self.control, self.current_context)
        self.scheduler = BackupScheduler(self.backups, self.current_context)
        self._watcher = ProjectListWatcher(config.project_list_path, self.holder)
        self._tasks: list[asyncio.Task[Any]] = []

    def current_context(self) -> AppContext:
        return self.holder.current

    async def start(self, *, run_loops: bool = True) -> None:
        """Open the registry and, unless disabled, start the background loops.

        Raises:
            RegistryError: when the registry cannot be opened.
        """
        await self.registry.open()
        reset = await self.registry.reset_stale_starting()
        if reset:
            logger.info("reset %d projects left in starting state", reset)
        if not run_loops:
            return

        self._spawn(self.holder.run(), "context-reload")
        self._spawn(self.holder.poll(self.config.reload_poll_interval_seconds), "context-poll")
        self._spawn(self.idle.run_forever(self.config.idle_check_interval_seconds), "idle-eviction")
        if self.config.backup.enabled:
            self._spawn(self.scheduler.run_forever(), "backup-scheduler")
        if not self._watcher.start():
            logger.warning("project list watch disabled, relying on polling")

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        self._tasks.append(asyncio.create_task(coro, name=name))

    async def stop(self) -> None:
        self._watcher.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.wake.drain()
        await self.registry.close()
        logger.info("agent stopped")

    async def record_access(
        self, project: str, *, client_ip: str, user_agent: str, path: str
    ) -> None:
        """Track an allowed request; storage failures are logged, never raised."""
        try:
            await self.registry.upsert_access(project)
            await self.registry.append_access_log(
                AccessLogEntry(
                    project=project,
                    client_ip=client_ip,
                    user_agent=user_agent,
                    path=path,
                )
            )
        except RegistryError as exc:
            logger.warning("access tracking failed for %s: %s", project, exc)
