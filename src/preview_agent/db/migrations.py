"""SQLite schema for the project state registry."""

from __future__ import annotations

import aiosqlite

SCHEMA_VERSION = 1


async def apply_migrations(conn: aiosqlite.Connection) -> None:
    """Create the schema if missing and record its version."""
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY
        )
        """
    )

    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS projects (
            name TEXT PRIMARY KEY,
            last_access INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'stopped'
        )
        """
    )

    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS access_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            project TEXT NOT NULL,
            timestamp INTEGER NOT NULL,
            ip TEXT NOT NULL,
            user_agent TEXT NOT NULL,
            path TEXT NOT NULL
        )
        """
    )

    await conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_access_logs_project ON access_logs(project)"
    )
    await conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_access_logs_timestamp ON access_logs(timestamp)"
    )

    await conn.execute("DELETE FROM schema_migrations")
    await conn.execute("INSERT INTO schema_migrations(version) VALUES (?)", (SCHEMA_VERSION,))
    await conn.commit()
