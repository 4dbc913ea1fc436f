"""Status and health API schemas."""

from __future__ import annotations

from pydantic import BaseModel


class StatusResponse(BaseModel):
    """Project readiness, polled by the waiting page."""

    name: str
    status: str
    ready: bool


class HealthResponse(BaseModel):
    """Liveness payload."""

    status: str
    version: str
