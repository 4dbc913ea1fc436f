"""Idle eviction: stop projects that have not been accessed for a while."""

from __future__ import annotations

import asyncio
import logging
from typing import TypeAlias
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

from preview_agent.core.context import AppContext
from preview_agent.core.control import ControlAdapter
from preview_agent.db.store import ProjectRegistry
from preview_agent.errors import RegistryError
from preview_agent.models.project import ProjectRecord, ProjectStatus

logger = logging.getLogger(__name__)

Sleeper: TypeAlias = Callable[[float], Awaitable[None]]


class IdleEvictor:
    """Periodic scan of the registry that stops idle running projects.

    A tick never overlaps the next one: :meth:`run_forever` awaits each
    :meth:`run_once` before sleeping.
    """

    def __init__(
        self,
        registry: ProjectRegistry,
        control: ControlAdapter,
        context: Callable[[], AppContext],
        *,
        clock: Callable[[], datetime] | None = None,
        sleeper: Sleeper | None = None,
    ) -> None:
        self._registry = registry
        self._control = control
        self._context = context
        self._clock = clock or (lambda: datetime.now(UTC))
        self._sleep = sleeper or asyncio.sleep

    async def run_once(self) -> list[str]:
        """Run one eviction pass and return the names of the projects stopped."""
        context = self._context()
        config = context.config
        global_timeout = timedelta(seconds=config.idle_timeout_seconds)

        override_timeouts = [
            timedelta(seconds=seconds)
            for project_config in context.project_configs.values()
            if (seconds := project_config.idle_timeout_seconds) is not None
        ]
        query_threshold = min([global_timeout, *override_timeouts])

        stopped: list[str] = []
        candidates = await self._registry.idle_since(query_threshold)
        for record in candidates:
            try:
                if await self._evict(record, context, global_timeout):
                    stopped.append(record.name)
            except Exception:
                logger.exception("idle check failed for %s", record.name)

        try:
            pruned = await self._registry.prune_logs_older_than(config.access_log_retain_days)
        except RegistryError as exc:
            logger.error("access log pruning failed: %s", exc)
        else:
            if pruned:
                logger.info("pruned %d access log entries", pruned)
        return stopped

    async def _evict(
        self, record: ProjectRecord, context: AppContext, global_timeout: timedelta
    ) -> bool:
        name = record.name
        project_config = context.project_config(name)
        if project_config.never_stop:
            logger.debug("%s: idle_timeout is never, skipping", name)
            return False

        override_seconds = project_config.idle_timeout_seconds
        timeout = timedelta(seconds=override_seconds) if override_seconds else global_timeout

        current = await self._registry.get(name)
        if current is None or current.status is not ProjectStatus.RUNNING:
            return False
        idle_for = self._clock() - current.last_access_at
        if idle_for <= timeout:
            return False

        if not await self._control.is_running(name):
            logger.info("%s: already stopped, reconciling registry", name)
            await self._registry.set_status(name, ProjectStatus.STOPPED)
            return False

        logger.info(
            "stopping idle project %s (idle %d min, timeout %d min)",
            name,
            idle_for.total_seconds() // 60,
            timeout.total_seconds() // 60,
        )
        if not await self._control.stop(name):
            logger.error("failed to stop %s, will retry next tick", name)
            return False
        await self._registry.set_status(name, ProjectStatus.STOPPED)
        return True

    async def run_forever(self, interval_seconds: float) -> None:
        logger.info("idle eviction started: checking every %ss", interval_seconds)
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("idle eviction tick failed")
            await self._sleep(interval_seconds)
