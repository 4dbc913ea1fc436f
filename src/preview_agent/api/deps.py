"""Shared API dependency providers."""

from __future__ import annotations

from fastapi import Request

from preview_agent.agent import Agent
from preview_agent.core.context import AppContext


def get_agent(request: Request) -> Agent:
    return request.app.state.agent


def get_context(request: Request) -> AppContext:
    return get_agent(request).current_context()
