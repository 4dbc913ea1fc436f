"""Wake-on-demand: start a stopped project on the first request that needs it.

The proxy calls us whenever the upstream for a hostname fails. Each call
answers immediately with a waiting page; at most one background start per
project is in flight at any time.
"""

from __future__ import annotations

import asyncio
import html
import logging
from dataclasses import dataclass, field
from pathlib import Path

from preview_agent.core.context import AppContext
from preview_agent.core.control import ControlAdapter
from preview_agent.db.store import ProjectRegistry
from preview_agent.errors import RegistryError
from preview_agent.models.project import ProjectStatus

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
RETRY_AFTER_SECONDS = 5

_FALLBACK_TEMPLATES = {
    "wait": "<html><body><h1>Starting {{project}}&hellip;</h1></body></html>",
    "error": "<html><body><h1>{{message}}</h1></body></html>",
}


@dataclass(slots=True)
class PageResponse:
    """Framework-neutral HTML response."""

    status_code: int
    body: str
    headers: dict[str, str] = field(default_factory=dict)


class PageRenderer:
    """Load ``<name>.html`` templates and substitute ``{{key}}`` placeholders."""

    def __init__(self, templates_dir: Path | None = None) -> None:
        self._templates_dir = templates_dir or DEFAULT_TEMPLATES_DIR

    def load(self, name: str) -> str:
        path = self._templates_dir / f"{name}.html"
        try:
            return path.read_text(encoding="utf-8")
        except OSError:
            logger.debug("template %s missing, using inline fallback", path)
            return _FALLBACK_TEMPLATES.get(name, "<html><body><h1>{{message}}</h1></body></html>")

    def render(self, name: str, **values: str) -> str:
        content = self.load(name)
        for key, value in values.items():
            content = content.replace("{{" + key + "}}", html.escape(value))
        return content


class WakeHandler:
    """Per-project ``stopped -> starting -> running|stopped`` state machine."""

    def __init__(
        self,
        registry: ProjectRegistry,
        control: ControlAdapter,
        pages: PageRenderer | None = None,
        *,
        retry_after_seconds: int = RETRY_AFTER_SECONDS,
    ) -> None:
        self._registry = registry
        self._control = control
        self._pages = pages or PageRenderer()
        self._retry_after_seconds = retry_after_seconds
        self._in_flight: dict[str, asyncio.Task[bool]] = {}

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    async def handle(self, context: AppContext, hostname: str) -> PageResponse:
        project = context.resolve_hostname(hostname)
        if project is None:
            return PageResponse(
                status_code=404,
                body=self._pages.render("error", message="Project not found", hostname=hostname),
                headers={"Content-Type": "text/html; charset=utf-8"},
            )

        if project in self._in_flight:
            return self._waiting(project, hostname)

        claimed = await self._claim(project)
        if project in self._in_flight:
            logger.debug("project %s already starting", project)
            return self._waiting(project, hostname)

        # A `starting` row with no task here is left over from a failed write-back.
        if not claimed:
            logger.warning("project %s marked starting with no start in flight", project)
        task = asyncio.create_task(self._start(project), name=f"wake:{project}")
        self._in_flight[project] = task
        task.add_done_callback(lambda _: self._in_flight.pop(project, None))
        logger.info("waking project %s for %s", project, hostname)
        return self._waiting(project, hostname)

    async def _claim(self, project: str) -> bool:
        try:
            return await self._registry.claim_starting(project)
        except RegistryError as exc:
            logger.error("cannot mark %s as starting: %s", project, exc)
            return True

    async def _start(self, project: str) -> bool:
        started = False
        try:
            started = await self._control.start(project)
        except Exception:
            logger.exception("start of %s crashed", project)
        status = ProjectStatus.RUNNING if started else ProjectStatus.STOPPED
        try:
            await self._registry.set_status(project, status)
        except RegistryError as exc:
            logger.error("cannot record %s as %s: %s", project, status.value, exc)
        return started

    def _waiting(self, project: str, hostname: str) -> PageResponse:
        return PageResponse(
            status_code=503,
            body=self._pages.render("wait", project=project, hostname=hostname),
            headers={
                "Content-Type": "text/html; charset=utf-8",
                "Retry-After": str(self._retry_after_seconds),
            },
        )

    async def drain(self, timeout_seconds: float = 5.0) -> None:
        """Wait briefly for in-flight starts, used at shutdown and in tests."""
        tasks = list(self._in_flight.values())
        if not tasks:
            return
        await asyncio.wait(tasks, timeout=timeout_seconds)
