"""Forward-auth route called by the reverse proxy before every request."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import PlainTextResponse

from preview_agent.agent import Agent
from preview_agent.api.deps import get_agent, get_context
from preview_agent.api.routes.common import ALL_METHODS, build_auth_request, request_hostname
from preview_agent.core.auth import decide, real_client_ip
from preview_agent.core.context import AppContext

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

REALM = "Preview"


@router.api_route("/__auth__", methods=ALL_METHODS)
@router.api_route("/__auth__/{rest:path}", methods=ALL_METHODS)
async def forward_auth(
    request: Request,
    agent: Agent = Depends(get_agent),
    context: AppContext = Depends(get_context),
) -> Response:
    hostname = request_hostname(request)
    project = context.resolve_hostname(hostname)

    auth_request = build_auth_request(request, hostname)
    decision = decide(auth_request, context.effective_policy(project))
    client_ip = real_client_ip(auth_request)

    if decision.allowed:
        if project is not None:
            await agent.record_access(
                project,
                client_ip=client_ip,
                user_agent=request.headers.get("user-agent", ""),
                path=request.headers.get("x-forwarded-uri", "/"),
            )
        return Response(status_code=status.HTTP_200_OK)

    logger.info(
        "denied %s for %s (reason=%s)", hostname or "-", client_ip or "-", decision.reason.value
    )
    return PlainTextResponse(
        "Unauthorized",
        status_code=status.HTTP_401_UNAUTHORIZED,
        headers={"WWW-Authenticate": f'Basic realm="{REALM}"'},
    )
