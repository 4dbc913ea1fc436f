"""Application context: config plus the project snapshot derived from it.

The snapshot is rebuilt wholesale on reload and swapped in one assignment,
so readers always see a consistent ``projects`` / ``hostname_index`` /
``project_configs`` triple.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from preview_agent.config import AgentConfig
from preview_agent.core.auth import with_default_policy
from preview_agent.core.directory import (
    PerProjectConfig,
    build_hostname_index,
    load_project_config,
    load_project_list,
    normalize_hostname,
)
from preview_agent.models.policy import AuthPolicy

logger = logging.getLogger(__name__)

_EMPTY_PROJECT_CONFIG = PerProjectConfig()


@dataclass(frozen=True, slots=True)
class AppContext:
    """Immutable view of everything derived from config and the project list."""

    config: AgentConfig
    projects: Mapping[str, Path] = field(default_factory=dict)
    hostname_index: Mapping[str, str] = field(default_factory=dict)
    project_configs: Mapping[str, PerProjectConfig] = field(default_factory=dict)

    def resolve_hostname(self, hostname: str) -> str | None:
        return self.hostname_index.get(normalize_hostname(hostname))

    def project_dir(self, name: str) -> Path | None:
        return self.projects.get(name)

    def project_config(self, name: str) -> PerProjectConfig:
        return self.project_configs.get(name, _EMPTY_PROJECT_CONFIG)

    def effective_policy(self, name: str | None) -> AuthPolicy:
        """Global policy, with the project's ``auth_policy`` override as default policy."""
        if name is None:
            return self.config.auth
        return with_default_policy(self.config.auth, self.project_config(name).auth_policy)


def build_context(config: AgentConfig) -> AppContext:
    projects = load_project_list(config.project_list_path)
    project_configs: dict[str, PerProjectConfig] = {}
    for name, project_dir in projects.items():
        project_config = load_project_config(project_dir)
        if project_config.is_empty:
            continue
        project_configs[name] = project_config
        logger.info(
            "%s: auth=%s idle=%s",
            name,
            project_config.auth_policy.value if project_config.auth_policy else "default",
            project_config.idle_timeout or "default",
        )
    logger.info(
        "loaded %d projects (%d with custom config)", len(projects), len(project_configs)
    )
    return AppContext(
        config=config,
        projects=MappingProxyType(dict(projects)),
        hostname_index=MappingProxyType(build_hostname_index(projects, config.tld)),
        project_configs=MappingProxyType(project_configs),
    )


class ContextHolder:
    """Holds the current :class:`AppContext` and serializes reloads.

    Producers call :meth:`request_reload` (safe from any thread through
    :meth:`request_reload_threadsafe`); the single consumer in :meth:`run`
    drains pending requests and rebuilds once per batch.
    """

    def __init__(
        self,
        context: AppContext,
        *,
        builder: Callable[[AgentConfig], AppContext] = build_context,
    ) -> None:
        self._current = context
        self._builder = builder
        self._requests: asyncio.Queue[str] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def current(self) -> AppContext:
        return self._current

    def request_reload(self, reason: str = "manual") -> None:
        self._requests.put_nowait(reason)

    def request_reload_threadsafe(self, reason: str) -> None:
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._requests.put_nowait, reason)

    def reload_now(self) -> AppContext:
        self._current = self._builder(self._current.config)
        return self._current

    async def run(self) -> None:
        self._loop = asyncio.get_running_loop()
        while True:
            reason = await self._requests.get()
            reasons = {reason}
            while not self._requests.empty():
                reasons.add(self._requests.get_nowait())
            logger.info("reloading projects (%s)", ", ".join(sorted(reasons)))
            try:
                await asyncio.to_thread(self.reload_now)
            except Exception:
                logger.exception("project reload failed; keeping previous snapshot")

    async def poll(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.request_reload("poll")


class _ProjectListEventHandler(FileSystemEventHandler):
    def __init__(self, target: Path, on_change: Callable[[], None]) -> None:
        self._target = target
        self._on_change = on_change

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in {"created", "modified", "moved"}:
            return
        paths = {str(event.src_path), str(getattr(event, "dest_path", "") or "")}
        if str(self._target) in paths:
            self._on_change()


class ProjectListWatcher:
    """Watch the project list file and ask the holder for a reload on change."""

    def __init__(self, path: Path, holder: ContextHolder) -> None:
        self._path = path.resolve()
        self._holder = holder
        self._observer: Observer | None = None

    def start(self) -> bool:
        directory = self._path.parent
        if not directory.is_dir():
            logger.warning("project list directory not found: %s", directory)
            return False
        handler = _ProjectListEventHandler(
            self._path, lambda: self._holder.request_reload_threadsafe("watch")
        )
        observer = Observer()
        observer.schedule(handler, str(directory), recursive=False)
        observer.daemon = True
        observer.start()
        self._observer = observer
        return True

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=2.0)
        self._observer = None
