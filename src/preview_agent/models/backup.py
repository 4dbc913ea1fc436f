"""Backup models."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel


class BackupOutcome(str, Enum):
    """Result category of a single project backup."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class BackupResult(BaseModel):
    """Outcome of backing up one project."""

    project: str
    outcome: BackupOutcome
    file: Path | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome is BackupOutcome.SUCCESS


class BackupEntry(BaseModel):
    """One backup artifact found on disk."""

    project: str
    date: str
    file: Path
    size_bytes: int
