"""Forward-auth decision engine.

``decide`` is a pure function of the request attributes and the merged
policy: no I/O, no clock, no shared state. Evaluation order:

1. the real client IP (first ``X-Forwarded-For`` entry, else the client IP)
   is checked against the global ``allowed_ips``;
2. the first hostname rule whose glob matches decides on its own;
3. otherwise the default policy applies.

Malformed credentials count as absent.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import ipaddress
import re
from collections.abc import Iterable
from functools import lru_cache

from preview_agent.models.policy import (
    AuthDecision,
    AuthPolicy,
    AuthReason,
    AuthRequest,
    HostnameRule,
    PolicyKind,
)


@lru_cache(maxsize=512)
def _glob_regex(pattern: str, *, any_run: str) -> re.Pattern[str]:
    parts: list[str] = []
    for char in pattern:
        if char == "*":
            parts.append(any_run)
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.IGNORECASE)


def match_cidr(ip: str, cidr: str) -> bool:
    """IPv4-only CIDR membership; anything unparsable is a non-match."""
    if "/" not in cidr:
        return False
    try:
        network = ipaddress.IPv4Network(cidr.strip(), strict=False)
        address = ipaddress.IPv4Address(ip.strip())
    except ValueError:
        return False
    return address in network


def match_ip(ip: str, pattern: str) -> bool:
    """Match an address against an exact IP, a ``*`` glob or an IPv4 CIDR range."""
    ip = ip.strip()
    pattern = pattern.strip()
    if not ip or not pattern:
        return False
    if ip == pattern:
        return True
    if "/" in pattern:
        return match_cidr(ip, pattern)
    if "*" in pattern:
        return _glob_regex(pattern, any_run="[0-9.]*").fullmatch(ip) is not None
    return False


def match_hostname(hostname: str, pattern: str) -> bool:
    """Anchored glob match: ``*`` is any run (possibly empty), ``?`` one character."""
    if hostname.lower() == pattern.lower():
        return True
    return _glob_regex(pattern, any_run=".*").fullmatch(hostname) is not None


def parse_basic_auth(header: str | None) -> tuple[str, str] | None:
    if not header:
        return None
    scheme, _, encoded = header.strip().partition(" ")
    if scheme.lower() != "basic" or not encoded.strip():
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    username, colon, password = decoded.partition(":")
    if not colon:
        return None
    return username, password


def parse_bearer_token(header: str | None) -> str | None:
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def real_client_ip(request: AuthRequest) -> str:
    if request.forwarded_for:
        first = request.forwarded_for.split(",")[0].strip()
        if first:
            return first
    return request.client_ip.strip()


def _contains(candidates: Iterable[str], value: str) -> bool:
    encoded = value.encode("utf-8")
    return any(hmac.compare_digest(candidate.encode("utf-8"), encoded) for candidate in candidates)


def _check_basic(authorization: str | None, basic_auth: list[str]) -> bool:
    credentials = parse_basic_auth(authorization)
    if credentials is None:
        return False
    username, password = credentials
    return _contains(basic_auth, f"{username}:{password}")


def _check_token(authorization: str | None, tokens: list[str]) -> bool:
    token = parse_bearer_token(authorization)
    return token is not None and _contains(tokens, token)


def _evaluate_kind(
    kind: PolicyKind,
    *,
    authorization: str | None,
    tokens: list[str],
    basic_auth: list[str],
    fallback: AuthReason,
) -> AuthDecision:
    if kind is PolicyKind.ALLOW:
        return AuthDecision(allowed=True, reason=fallback)
    if kind is PolicyKind.BASIC:
        if _check_basic(authorization, basic_auth):
            return AuthDecision(allowed=True, reason=AuthReason.BASIC)
        if _check_token(authorization, tokens):
            return AuthDecision(allowed=True, reason=AuthReason.TOKEN)
        return AuthDecision(allowed=False, reason=fallback)
    if kind is PolicyKind.TOKEN:
        if _check_token(authorization, tokens):
            return AuthDecision(allowed=True, reason=AuthReason.TOKEN)
        return AuthDecision(allowed=False, reason=fallback)
    return AuthDecision(allowed=False, reason=fallback)


def _evaluate_rule(
    rule: HostnameRule, ip: str, authorization: str | None, policy: AuthPolicy
) -> AuthDecision:
    if rule.allowed_ips and any(match_ip(ip, pattern) for pattern in rule.allowed_ips):
        return AuthDecision(allowed=True, reason=AuthReason.RULE)
    return _evaluate_kind(
        rule.policy,
        authorization=authorization,
        tokens=rule.tokens if rule.tokens is not None else policy.tokens,
        basic_auth=rule.basic_auth if rule.basic_auth is not None else policy.basic_auth,
        fallback=AuthReason.RULE,
    )


def decide(request: AuthRequest, policy: AuthPolicy) -> AuthDecision:
    ip = real_client_ip(request)

    if any(match_ip(ip, pattern) for pattern in policy.allowed_ips):
        return AuthDecision(allowed=True, reason=AuthReason.IP)

    for rule in policy.rules:
        if match_hostname(request.hostname, rule.match):
            return _evaluate_rule(rule, ip, request.authorization, policy)

    return _evaluate_kind(
        policy.default_policy,
        authorization=request.authorization,
        tokens=policy.tokens,
        basic_auth=policy.basic_auth,
        fallback=AuthReason.DEFAULT,
    )


def with_default_policy(policy: AuthPolicy, override: PolicyKind | None) -> AuthPolicy:
    """Return ``policy`` with only its default policy replaced by ``override``."""
    if override is None or override is policy.default_policy:
        return policy
    return policy.model_copy(update={"default_policy": override})
