"""Catch-all route hit by the proxy's error middleware when an upstream fails."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse

from preview_agent.agent import Agent
from preview_agent.api.deps import get_agent, get_context
from preview_agent.api.routes.common import ALL_METHODS, request_hostname
from preview_agent.core.context import AppContext

router = APIRouter(tags=["wake"])


@router.api_route("/{full_path:path}", methods=ALL_METHODS, response_class=HTMLResponse)
async def wake_project(
    full_path: str,
    request: Request,
    agent: Agent = Depends(get_agent),
    context: AppContext = Depends(get_context),
) -> HTMLResponse:
    del full_path
    page = await agent.wake.handle(context, request_hostname(request))
    return HTMLResponse(page.body, status_code=page.status_code, headers=page.headers)
