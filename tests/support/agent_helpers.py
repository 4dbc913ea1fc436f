from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

from preview_agent.agent import Agent
from preview_agent.config import AgentConfig, parse_config
from preview_agent.core.control import ControlAdapter, ProjectInfo
from preview_agent.db.store import ProjectRegistry
from preview_agent.errors import ExternalToolError
from preview_agent.models.project import AccessLogEntry, ProjectRecord


class AgentTestClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 10, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, *, seconds: int = 0, minutes: int = 0, days: int = 0) -> None:
        self.current += timedelta(seconds=seconds, minutes=minutes, days=days)


class FakeControlAdapter(ControlAdapter):
    """In-memory stand-in for the ddev wrapper."""

    def __init__(
        self,
        *,
        running: set[str] | None = None,
        start_ok: bool = True,
        stop_ok: bool = True,
        export_ok: bool = True,
        import_ok: bool = True,
    ) -> None:
        super().__init__(executable="ddev-fake")
        self.running = set(running or ())
        self.start_ok = start_ok
        self.stop_ok = stop_ok
        self.export_ok = export_ok
        self.import_ok = import_ok
        self.start_calls: list[str] = []
        self.stop_calls: list[str] = []
        self.exports: list[tuple[str, Path, Path]] = []
        self.imports: list[tuple[str, Path, Path]] = []
        self.start_gate: asyncio.Event | None = None

    async def start(self, name: str) -> bool:
        self.start_calls.append(name)
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.start_ok:
            self.running.add(name)
        return self.start_ok

    async def stop(self, name: str) -> bool:
        self.stop_calls.append(name)
        if self.stop_ok:
            self.running.discard(name)
        return self.stop_ok

    async def describe(self, name: str) -> ProjectInfo | None:
        status = "running" if name in self.running else "stopped"
        return ProjectInfo(name=name, status=status)

    async def export_db(self, name: str, project_dir: Path, output_file: Path) -> None:
        self.exports.append((name, project_dir, output_file))
        if not self.export_ok:
            raise ExternalToolError("ddev export-db", returncode=1, stderr="export failed")
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_bytes(b"\x1f\x8bfake-dump")

    async def import_db(self, name: str, project_dir: Path, backup_file: Path) -> bool:
        self.imports.append((name, project_dir, backup_file))
        return self.import_ok


def write_project_list(tmp_path: Path, names: list[str]) -> Path:
    """Create project directories plus a ddev-style project list."""
    lines: list[str] = []
    for name in names:
        project_dir = tmp_path / "www" / name
        project_dir.mkdir(parents=True, exist_ok=True)
        lines.append(f"{name}:")
        lines.append(f"  approot: {project_dir}")
    project_list = tmp_path / "project_list.yaml"
    project_list.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return project_list


def write_project_config(tmp_path: Path, name: str, content: str) -> Path:
    config_dir = tmp_path / "www" / name / ".ddev"
    config_dir.mkdir(parents=True, exist_ok=True)
    path = config_dir / "config.preview.yaml"
    path.write_text(content, encoding="utf-8")
    return path


def make_config(tmp_path: Path, **overrides: object) -> AgentConfig:
    raw: dict[str, object] = {
        "tld": "preview.test",
        "db_path": str(tmp_path / "agent.sqlite"),
        "project_list_path": str(tmp_path / "project_list.yaml"),
        "projects_dir": str(tmp_path / "www"),
        "backup": {"local_dir": str(tmp_path / "backups")},
    }
    raw.update(overrides)
    return parse_config(raw)


def make_agent(
    tmp_path: Path,
    projects: list[str],
    control: FakeControlAdapter | None = None,
    **overrides: object,
) -> Agent:
    write_project_list(tmp_path, projects)
    return Agent(make_config(tmp_path, **overrides), control=control or FakeControlAdapter())


async def read_record(db_path: Path, name: str) -> ProjectRecord | None:
    async with ProjectRegistry(db_path) as registry:
        return await registry.get(name)


async def read_access_logs(db_path: Path, name: str) -> list[AccessLogEntry]:
    async with ProjectRegistry(db_path) as registry:
        return await registry.recent_access_logs(name)
