"""Common route helpers."""

from __future__ import annotations

from fastapi import Request

from preview_agent.core.directory import normalize_hostname
from preview_agent.models.policy import AuthRequest

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

# Set by the edge proxy; the first one present is the real client address.
CLIENT_IP_HEADERS = (
    "cf-connecting-ip",
    "true-client-ip",
    "fastly-client-ip",
    "x-real-ip",
)


def request_hostname(request: Request) -> str:
    """Original hostname from ``X-Forwarded-Host``, falling back to ``Host``."""
    raw = request.headers.get("x-forwarded-host") or request.headers.get("host") or ""
    return normalize_hostname(raw.split(",")[0])


def build_auth_request(request: Request, hostname: str) -> AuthRequest:
    """Collect the attributes the decision engine needs.

    Precedence for the client address: connecting-IP headers, then the
    ``X-Forwarded-For`` chain, then the socket peer.
    """
    authorization = request.headers.get("authorization")
    for header in CLIENT_IP_HEADERS:
        value = request.headers.get(header, "").strip()
        if value:
            return AuthRequest(hostname=hostname, client_ip=value, authorization=authorization)

    peer = request.client.host if request.client is not None else ""
    return AuthRequest(
        hostname=hostname,
        client_ip=peer,
        forwarded_for=request.headers.get("x-forwarded-for") or None,
        authorization=authorization,
    )
