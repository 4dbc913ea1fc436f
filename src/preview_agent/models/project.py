"""Project state models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class ProjectStatus(str, Enum):
    """Lifecycle status tracked by the registry."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


class ProjectRecord(BaseModel):
    """Registry row for one project."""

    name: str
    last_access_at: datetime
    status: ProjectStatus = ProjectStatus.STOPPED


class AccessLogEntry(BaseModel):
    """Append-only record of an allowed request."""

    id: int | None = None
    project: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    client_ip: str = ""
    user_agent: str = ""
    path: str = "/"
