"""Status and health routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from preview_agent import __version__
from preview_agent.agent import Agent
from preview_agent.api.deps import get_agent, get_context
from preview_agent.api.schemas.status import HealthResponse, StatusResponse
from preview_agent.core.context import AppContext
from preview_agent.errors import RegistryError

router = APIRouter(tags=["system"])


@router.get("/__status__", response_model=StatusResponse)
async def project_status(
    project: str | None = None,
    agent: Agent = Depends(get_agent),
    context: AppContext = Depends(get_context),
) -> StatusResponse | JSONResponse:
    if not project:
        return JSONResponse(
            {"error": "Missing project parameter"}, status_code=status.HTTP_400_BAD_REQUEST
        )

    try:
        record = await agent.registry.get(project)
    except RegistryError:
        record = None
    if project not in context.projects and record is None:
        return JSONResponse({"error": "Project not found"}, status_code=status.HTTP_404_NOT_FOUND)

    info = await agent.control.describe(project)
    if info is not None:
        current = info.status
    elif record is not None:
        current = record.status.value
    else:
        current = "unknown"
    return StatusResponse(name=project, status=current, ready=info is not None and info.running)


@router.get("/__health__", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)
