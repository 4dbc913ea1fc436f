"""Wrapper around the ``ddev`` command line tool."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from preview_agent.errors import ExternalToolError

logger = logging.getLogger(__name__)

DESCRIBE_TIMEOUT_SECONDS = 10.0
LIST_TIMEOUT_SECONDS = 30.0
STOP_TIMEOUT_SECONDS = 60.0
START_TIMEOUT_SECONDS = 120.0
TRANSFER_TIMEOUT_SECONDS = 300.0


@dataclass(slots=True)
class CommandResult:
    """Completed external command."""

    command: str
    returncode: int
    stdout: str
    stderr: str


@dataclass(slots=True)
class ProjectInfo:
    """Subset of ``ddev describe -j`` output."""

    name: str
    status: str
    app_root: Path | None = None
    http_urls: list[str] = field(default_factory=list)
    https_urls: list[str] = field(default_factory=list)
    type: str | None = None
    database_type: str | None = None

    @property
    def running(self) -> bool:
        return self.status == "running"


def _project_info_from_raw(raw: dict[str, object]) -> ProjectInfo:
    dbinfo = raw.get("dbinfo")
    database_type = dbinfo.get("database_type") if isinstance(dbinfo, dict) else None
    approot = raw.get("approot")
    http_urls = raw.get("httpURLs")
    https_urls = raw.get("httpsURLs")
    return ProjectInfo(
        name=str(raw.get("name", "")),
        status=str(raw.get("status", "unknown")),
        app_root=Path(str(approot)) if approot else None,
        http_urls=[str(url) for url in http_urls] if isinstance(http_urls, list) else [],
        https_urls=[str(url) for url in https_urls] if isinstance(https_urls, list) else [],
        type=str(raw["type"]) if raw.get("type") else None,
        database_type=str(database_type) if database_type else None,
    )


class ControlAdapter:
    """Start, stop, describe, export and import projects through ``ddev``.

    Lifecycle operations never raise: non-zero exits and timeouts are logged
    with the captured stderr and reported as ``False`` / ``None``.
    """

    def __init__(self, executable: str = "ddev") -> None:
        self._executable = executable

    async def run(
        self,
        *args: str,
        timeout_seconds: float,
        cwd: Path | None = None,
    ) -> CommandResult:
        """Run one command, raising :class:`ExternalToolError` on failure."""
        command = [self._executable, *args]
        command_text = " ".join(command)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ExternalToolError(command_text, stderr=str(exc)) from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout_seconds)
        except TimeoutError as exc:
            process.kill()
            await process.wait()
            raise ExternalToolError(command_text, timed_out=True) from exc

        result = CommandResult(
            command=command_text,
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        if result.returncode != 0:
            raise ExternalToolError(
                command_text,
                returncode=result.returncode,
                stderr=result.stderr or result.stdout,
            )
        return result

    async def start(self, name: str) -> bool:
        try:
            await self.run("start", name, timeout_seconds=START_TIMEOUT_SECONDS)
        except ExternalToolError as exc:
            logger.error("failed to start project %s: %s", name, exc)
            return False
        logger.info("started project %s", name)
        return True

    async def stop(self, name: str) -> bool:
        try:
            await self.run("stop", name, timeout_seconds=STOP_TIMEOUT_SECONDS)
        except ExternalToolError as exc:
            logger.error("failed to stop project %s: %s", name, exc)
            return False
        logger.info("stopped project %s", name)
        return True

    async def describe(self, name: str) -> ProjectInfo | None:
        try:
            result = await self.run("describe", name, "-j", timeout_seconds=DESCRIBE_TIMEOUT_SECONDS)
        except ExternalToolError as exc:
            logger.warning("cannot describe project %s: %s", name, exc)
            return None
        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError:
            logger.warning("unparsable describe output for %s", name)
            return None
        raw = payload.get("raw") if isinstance(payload, dict) else None
        if not isinstance(raw, dict):
            return None
        return _project_info_from_raw(raw)

    async def is_running(self, name: str) -> bool:
        info = await self.describe(name)
        return info is not None and info.running

    async def list_projects(self) -> list[ProjectInfo]:
        try:
            result = await self.run("list", "-j", timeout_seconds=LIST_TIMEOUT_SECONDS)
        except ExternalToolError as exc:
            logger.warning("cannot list projects: %s", exc)
            return []
        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError:
            logger.warning("unparsable list output")
            return []
        items = payload.get("raw") if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            return []
        return [_project_info_from_raw(item) for item in items if isinstance(item, dict)]

    async def export_db(self, name: str, project_dir: Path, output_file: Path) -> None:
        """Export the project's database as gzipped SQL. Raises on failure."""
        output_file.parent.mkdir(parents=True, exist_ok=True)
        await self.run(
            "export-db",
            "--gzip",
            f"--file={output_file}",
            cwd=project_dir,
            timeout_seconds=TRANSFER_TIMEOUT_SECONDS,
        )
        logger.info("exported database of %s to %s", name, output_file)

    async def import_db(self, name: str, project_dir: Path, backup_file: Path) -> bool:
        try:
            await self.run(
                "import-db",
                f"--file={backup_file}",
                cwd=project_dir,
                timeout_seconds=TRANSFER_TIMEOUT_SECONDS,
            )
        except ExternalToolError as exc:
            logger.error("failed to import %s into %s: %s", backup_file, name, exc)
            return False
        logger.info("imported %s into %s", backup_file, name)
        return True
