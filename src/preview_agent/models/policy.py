"""Authorization policy models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class PolicyKind(str, Enum):
    """What to do with a request that no IP allowlist admitted."""

    ALLOW = "allow"
    DENY = "deny"
    BASIC = "basic"
    TOKEN = "token"


class AuthReason(str, Enum):
    """Why a decision was reached."""

    IP = "ip"
    TOKEN = "token"
    BASIC = "basic"
    RULE = "rule"
    DEFAULT = "default"


class HostnameRule(BaseModel):
    """Per-hostname policy, matched with an anchored glob."""

    match: str
    policy: PolicyKind
    tokens: list[str] | None = None
    basic_auth: list[str] | None = None
    allowed_ips: list[str] | None = None


class AuthPolicy(BaseModel):
    """Merged authorization policy applied to one request."""

    default_policy: PolicyKind = PolicyKind.BASIC
    allowed_ips: list[str] = Field(default_factory=list)
    tokens: list[str] = Field(default_factory=list)
    basic_auth: list[str] = Field(default_factory=list)
    rules: list[HostnameRule] = Field(default_factory=list)


class AuthRequest(BaseModel):
    """Request attributes relevant to authorization."""

    hostname: str
    client_ip: str
    forwarded_for: str | None = None
    authorization: str | None = None


class AuthDecision(BaseModel):
    """Outcome of an authorization check."""

    allowed: bool
    reason: AuthReason
