"""FastAPI app entrypoint."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import PlainTextResponse

from preview_agent import __version__
from preview_agent.agent import Agent
from preview_agent.api.routes.forward_auth import router as forward_auth_router
from preview_agent.api.routes.status import router as status_router
from preview_agent.api.routes.wake import router as wake_router
from preview_agent.config import AgentConfig

logger = logging.getLogger(__name__)


def create_app(agent: Agent, *, run_loops: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await agent.start(run_loops=run_loops)
        logger.info(
            "agent listening on port %d for *.%s (%d projects)",
            agent.config.port,
            agent.config.tld,
            len(agent.current_context().projects),
        )
        try:
            yield
        finally:
            await agent.stop()

    # Every path may belong to a proxied project, so no docs routes.
    app = FastAPI(
        title="Preview Agent",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.agent = agent

    @app.middleware("http")
    async def internal_error_guard(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        try:
            return await call_next(request)
        except Exception:
            logger.exception("request to %s failed", request.url.path)
            return PlainTextResponse(
                "Internal Server Error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

    app.include_router(forward_auth_router)
    app.include_router(status_router)
    # Catch-all, registered last.
    app.include_router(wake_router)
    return app


def run(config: AgentConfig) -> None:
    uvicorn.run(
        create_app(Agent(config)),
        host="0.0.0.0",
        port=config.port,
        log_level=config.log_level.lower(),
        reload=False,
    )
