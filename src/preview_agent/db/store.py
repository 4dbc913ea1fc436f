"""Async SQLite persistence for project state and access logs."""

from __future__ import annotations

import asyncio
from typing import TypeAlias
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiosqlite

from preview_agent.db.migrations import apply_migrations
from preview_agent.errors import RegistryError
from preview_agent.models.project import AccessLogEntry, ProjectRecord, ProjectStatus

Clock: TypeAlias = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _to_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, UTC)


class ProjectRegistry:
    """Durable ``{name -> last access, status}`` store plus an append-only access log.

    One connection is opened by :meth:`open` and held until :meth:`close`.
    Every statement runs under ``timeout_seconds``; driver errors and
    timeouts surface as :class:`RegistryError`.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        clock: Clock | None = None,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._db_path = db_path
        self._clock = clock or _utcnow
        self._timeout_seconds = timeout_seconds
        self._conn: aiosqlite.Connection | None = None

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> None:
        if self._conn is not None:
            return
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = await aiosqlite.connect(self._db_path)
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode = WAL")
            await apply_migrations(conn)
        except (aiosqlite.Error, OSError) as exc:
            msg = f"cannot open registry at {self._db_path}: {exc}"
            raise RegistryError(msg) from exc
        self._conn = conn

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        await conn.close()

    async def __aenter__(self) -> ProjectRegistry:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        if self._conn is None:
            msg = f"{operation}: registry is not open"
            raise RegistryError(msg)
        try:
            async with asyncio.timeout(self._timeout_seconds):
                yield self._conn
        except TimeoutError as exc:
            msg = f"{operation}: timed out after {self._timeout_seconds}s"
            raise RegistryError(msg) from exc
        except aiosqlite.Error as exc:
            msg = f"{operation}: {exc}"
            raise RegistryError(msg) from exc

    async def upsert_access(self, name: str) -> None:
        """Record an access; a stopped or unknown project becomes running."""
        async with self._guard("upsert_access") as conn:
            await conn.execute(
                """
                INSERT INTO projects(name, last_access, status)
                VALUES (?, ?, 'running')
                ON CONFLICT(name) DO UPDATE SET
                    last_access=excluded.last_access,
                    status=CASE
                        WHEN projects.status = 'stopped' THEN 'running'
                        ELSE projects.status
                    END
                """,
                (name, _to_millis(self._clock())),
            )
            await conn.commit()

    async def get(self, name: str) -> ProjectRecord | None:
        async with self._guard("get") as conn:
            cursor = await conn.execute("SELECT * FROM projects WHERE name = ?", (name,))
            row = await cursor.fetchone()
        if row is None:
            return None
        return self._record_from_row(row)

    async def get_status(self, name: str) -> ProjectStatus | None:
        record = await self.get(name)
        return record.status if record is not None else None

    async def set_status(self, name: str, status: ProjectStatus) -> None:
        async with self._guard("set_status") as conn:
            await conn.execute(
                """
                INSERT INTO projects(name, last_access, status)
                VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET status=excluded.status
                """,
                (name, _to_millis(self._clock()), status.value),
            )
            await conn.commit()

    async def claim_starting(self, name: str) -> bool:
        """Move ``name`` to ``starting`` unless it already is; True when this call did it."""
        async with self._guard("claim_starting") as conn:
            cursor = await conn.execute(
                """
                INSERT INTO projects(name, last_access, status)
                VALUES (?, ?, 'starting')
                ON CONFLICT(name) DO UPDATE SET status='starting'
                WHERE projects.status != 'starting'
                """,
                (name, _to_millis(self._clock())),
            )
            await conn.commit()
        return cursor.rowcount > 0

    async def reset_stale_starting(self) -> int:
        async with self._guard("reset_stale_starting") as conn:
            cursor = await conn.execute(
                "UPDATE projects SET status = 'stopped' WHERE status = 'starting'"
            )
            await conn.commit()
        return cursor.rowcount

    async def idle_since(self, threshold: timedelta) -> list[ProjectRecord]:
        """Running projects whose last access is older than ``now - threshold``."""
        cutoff = _to_millis(self._clock() - threshold)
        async with self._guard("idle_since") as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM projects
                WHERE status = 'running' AND last_access < ?
                ORDER BY last_access ASC
                """,
                (cutoff,),
            )
            rows = await cursor.fetchall()
        return [self._record_from_row(row) for row in rows]

    async def list_projects(self) -> list[ProjectRecord]:
        async with self._guard("list_projects") as conn:
            cursor = await conn.execute("SELECT * FROM projects ORDER BY name ASC")
            rows = await cursor.fetchall()
        return [self._record_from_row(row) for row in rows]

    async def append_access_log(self, entry: AccessLogEntry) -> None:
        async with self._guard("append_access_log") as conn:
            await conn.execute(
                """
                INSERT INTO access_logs(project, timestamp, ip, user_agent, path)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    entry.project,
                    _to_millis(entry.timestamp),
                    entry.client_ip,
                    entry.user_agent,
                    entry.path,
                ),
            )
            await conn.commit()

    async def recent_access_logs(self, project: str, limit: int = 100) -> list[AccessLogEntry]:
        async with self._guard("recent_access_logs") as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM access_logs
                WHERE project = ?
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
                """,
                (project, limit),
            )
            rows = await cursor.fetchall()
        return [self._log_from_row(row) for row in rows]

    async def prune_logs_older_than(self, days: int) -> int:
        cutoff = _to_millis(self._clock() - timedelta(days=days))
        async with self._guard("prune_logs_older_than") as conn:
            cursor = await conn.execute("DELETE FROM access_logs WHERE timestamp < ?", (cutoff,))
            await conn.commit()
        return cursor.rowcount

    async def snapshot_to(self, destination: Path) -> Path:
        """Write a consistent copy of the database to ``destination``."""
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.unlink(missing_ok=True)
        async with self._guard("snapshot_to") as conn:
            await conn.execute("VACUUM INTO ?", (str(destination),))
        return destination

    @staticmethod
    def _record_from_row(row: aiosqlite.Row) -> ProjectRecord:
        return ProjectRecord(
            name=str(row["name"]),
            last_access_at=_from_millis(int(row["last_access"])),
            status=ProjectStatus(str(row["status"])),
        )

    @staticmethod
    def _log_from_row(row: aiosqlite.Row) -> AccessLogEntry:
        return AccessLogEntry(
            id=int(row["id"]),
            project=str(row["project"]),
            timestamp=_from_millis(int(row["timestamp"])),
            client_ip=str(row["ip"]),
            user_agent=str(row["user_agent"]),
            path=str(row["path"]),
        )
