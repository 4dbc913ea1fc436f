"""Database backups: daily export, retention, listing and restore.

Layout on disk::

    <backup.local_dir>/<YYYY-MM-DD>/<project>.sql.gz
    <backup.local_dir>/<YYYY-MM-DD>/agent-db.sqlite
    <backup.local_dir>/<YYYY-MM-DD>/config.toml
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
from typing import TypeAlias
from collections.abc import Awaitable, Callable
from datetime import date, datetime, timedelta
from pathlib import Path

from preview_agent.core.context import AppContext
from preview_agent.core.control import ControlAdapter
from preview_agent.db.store import ProjectRegistry
from preview_agent.errors import ExternalToolError, RegistryError
from preview_agent.models.backup import BackupEntry, BackupOutcome, BackupResult

logger = logging.getLogger(__name__)

DATE_DIR_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DATABASE_SUFFIX = ".sql.gz"
BACKUP_SUFFIXES = (DATABASE_SUFFIX, ".sqlite", ".toml")
REGISTRY_ARCHIVE_NAME = "agent-db.sqlite"
CONFIG_ARCHIVE_NAME = "config.toml"
SCHEDULER_CHECK_SECONDS = 30 * 60

Clock: TypeAlias = Callable[[], datetime]
Sleeper: TypeAlias = Callable[[float], Awaitable[None]]


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _project_from_filename(filename: str) -> str:
    for suffix in BACKUP_SUFFIXES:
        if filename.endswith(suffix):
            return filename[: -len(suffix)]
    return filename


class BackupManager:
    """Backup operations for every project in the directory."""

    def __init__(
        self,
        registry: ProjectRegistry,
        control: ControlAdapter,
        context: Callable[[], AppContext],
        *,
        clock: Clock | None = None,
    ) -> None:
        self._registry = registry
        self._control = control
        self._context = context
        self._clock = clock or _local_now

    @property
    def backup_dir(self) -> Path:
        return self._context().config.backup.local_dir

    def today(self) -> date:
        return self._clock().date()

    def _date_dirs(self) -> list[str]:
        if not self.backup_dir.is_dir():
            return []
        return sorted(
            (
                entry.name
                for entry in self.backup_dir.iterdir()
                if entry.is_dir() and DATE_DIR_PATTERN.match(entry.name)
            ),
            reverse=True,
        )

    async def backup_project(
        self,
        name: str,
        *,
        force_start: bool = False,
        backup_date: date | None = None,
    ) -> BackupResult:
        """Export one project's database.

        A stopped project is skipped unless ``force_start`` is set, in which
        case it is started first.
        """
        project_dir = self._context().project_dir(name)
        if project_dir is None:
            return BackupResult(project=name, outcome=BackupOutcome.FAILED, error="project not found")

        if not await self._control.is_running(name):
            if not force_start:
                return BackupResult(
                    project=name,
                    outcome=BackupOutcome.SKIPPED,
                    error="project is not running",
                )
            logger.info("starting %s for backup", name)
            if not await self._control.start(name):
                return BackupResult(
                    project=name,
                    outcome=BackupOutcome.FAILED,
                    error="failed to start project",
                )

        day = (backup_date or self.today()).isoformat()
        output_file = self.backup_dir / day / f"{name}{DATABASE_SUFFIX}"
        try:
            await self._control.export_db(name, project_dir, output_file)
        except ExternalToolError as exc:
            logger.error("backup of %s failed: %s", name, exc)
            return BackupResult(project=name, outcome=BackupOutcome.FAILED, error=str(exc))
        return BackupResult(project=name, outcome=BackupOutcome.SUCCESS, file=output_file)

    async def backup_all(self, *, force_start: bool = False) -> list[BackupResult]:
        """Back up every known project, then archive the registry and config file."""
        context = self._context()
        day = self.today()
        output_dir = self.backup_dir / day.isoformat()
        output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("backing up %d projects to %s", len(context.projects), output_dir)

        results: list[BackupResult] = []
        for name in sorted(context.projects):
            try:
                result = await self.backup_project(name, force_start=force_start, backup_date=day)
            except Exception as exc:
                logger.exception("backup of %s crashed", name)
                result = BackupResult(project=name, outcome=BackupOutcome.FAILED, error=str(exc))
            results.append(result)

        await self.archive_agent_data(output_dir)

        succeeded = sum(1 for result in results if result.outcome is BackupOutcome.SUCCESS)
        skipped = sum(1 for result in results if result.outcome is BackupOutcome.SKIPPED)
        failed = [result for result in results if result.outcome is BackupOutcome.FAILED]
        logger.info(
            "backup complete: %d succeeded, %d skipped, %d failed",
            succeeded,
            skipped,
            len(failed),
        )
        for result in failed:
            logger.error("backup failed for %s: %s", result.project, result.error)
        return results

    async def archive_agent_data(self, output_dir: Path) -> list[Path]:
        archived: list[Path] = []
        try:
            archived.append(await self._registry.snapshot_to(output_dir / REGISTRY_ARCHIVE_NAME))
        except RegistryError as exc:
            logger.error("registry archive failed: %s", exc)

        config_path = self._context().config.config_path
        if config_path is not None and config_path.is_file():
            destination = output_dir / CONFIG_ARCHIVE_NAME
            await asyncio.to_thread(shutil.copyfile, config_path, destination)
            archived.append(destination)
        return archived

    def list_backups(self) -> list[BackupEntry]:
        """All backup artifacts, newest date first."""
        entries: list[BackupEntry] = []
        for day in self._date_dirs():
            for path in sorted((self.backup_dir / day).iterdir()):
                if not path.is_file() or not path.name.endswith(BACKUP_SUFFIXES):
                    continue
                entries.append(
                    BackupEntry(
                        project=_project_from_filename(path.name),
                        date=day,
                        file=path,
                        size_bytes=path.stat().st_size,
                    )
                )
        return entries

    def clean_old_backups(self, retain_days: int | None = None) -> int:
        """Remove date directories older than ``retain_days`` days; returns how many."""
        days = retain_days if retain_days is not None else self._context().config.backup.retain_days
        cutoff = (self.today() - timedelta(days=days)).isoformat()
        removed = 0
        for day in self._date_dirs():
            if day < cutoff:
                shutil.rmtree(self.backup_dir / day, ignore_errors=True)
                logger.info("removed old backup %s", day)
                removed += 1
        return removed

    def find_backup(self, name: str, backup_date: str | None = None) -> Path | None:
        """Backup file for ``name`` on ``backup_date``, or the most recent one."""
        filename = f"{name}{DATABASE_SUFFIX}"
        if backup_date is not None:
            candidate = self.backup_dir / backup_date / filename
            return candidate if candidate.is_file() else None
        for day in self._date_dirs():
            candidate = self.backup_dir / day / filename
            if candidate.is_file():
                return candidate
        return None

    async def restore_project(self, name: str, backup_file: Path) -> bool:
        project_dir = self._context().project_dir(name)
        if project_dir is None:
            logger.error("cannot restore %s: project not found", name)
            return False
        if not backup_file.is_file():
            logger.error("cannot restore %s: %s does not exist", name, backup_file)
            return False
        if not await self._control.is_running(name):
            logger.info("starting %s for restore", name)
            if not await self._control.start(name):
                return False
        return await self._control.import_db(name, project_dir, backup_file)


class BackupScheduler:
    """Run a full backup once per day after the configured hour.

    The "already ran today" marker lives in memory only, so a restart may
    skip or repeat a day.
    """

    def __init__(
        self,
        manager: BackupManager,
        context: Callable[[], AppContext],
        *,
        clock: Clock | None = None,
        sleeper: Sleeper | None = None,
        check_interval_seconds: float = SCHEDULER_CHECK_SECONDS,
    ) -> None:
        self._manager = manager
        self._context = context
        self._clock = clock or _local_now
        self._sleep = sleeper or asyncio.sleep
        self._check_interval_seconds = check_interval_seconds
        self._last_run_date: date | None = None

    @property
    def last_run_date(self) -> date | None:
        return self._last_run_date

    async def check(self) -> bool:
        """Run the daily backup if it is due; True when a run was started."""
        backup_config = self._context().config.backup
        now = self._clock()
        today = now.date()
        if now.hour < backup_config.schedule_hour or self._last_run_date == today:
            return False

        self._last_run_date = today
        logger.info("starting scheduled backup")
        try:
            await self._manager.backup_all(force_start=False)
            await asyncio.to_thread(self._manager.clean_old_backups, backup_config.retain_days)
        except Exception:
            logger.exception("scheduled backup failed")
        return True

    async def run_forever(self) -> None:
        backup_config = self._context().config.backup
        logger.info(
            "backup scheduler started: daily at %02d:00, retention %d days, dir %s",
            backup_config.schedule_hour,
            backup_config.retain_days,
            backup_config.local_dir,
        )
        while True:
            await self.check()
            await self._sleep(self._check_interval_seconds)
