"""
JWT claim decoding for already-issued tokens.

Nothing here verifies signatures. The claims are only used as hints, e.g. to
guess which tenants a restricted account can reach when listing tenants is
forbidden.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Any

import jwt

SN_USERNAME_CLAIM = "https://streamnative.io/username"

_ORG_DOMAIN_RE = re.compile(r"^(o-[a-z0-9]+)\.", re.IGNORECASE)
_SN_AUDIENCE_RE = re.compile(r"^urn:sn:pulsar:(o-[a-z0-9]+):", re.IGNORECASE)
_PLAIN_NAME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9_-]*$")


@dataclass(slots=True)
class TenantHints:
    possible_tenants: list[str] = field(default_factory=list)
    username: str | None = None
    organization: str | None = None


def decode_jwt_payload(token: str) -> dict[str, Any] | None:
    """Decode the claims of a JWT without verifying it, or None if it is not one."""
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None


def extract_tenant_info(token: str) -> TenantHints:
    """Collect tenant candidates from username, subject and audience claims."""
    hints = TenantHints()
    payload = decode_jwt_payload(token)
    if payload is None:
        return hints

    candidates: dict[str, None] = {}

    username = payload.get(SN_USERNAME_CLAIM)
    if isinstance(username, str):
        hints.username = username
        user, at, domain = username.partition("@")
        if at and user:
            candidates[user] = None
            org = _ORG_DOMAIN_RE.match(domain)
            if org:
                hints.organization = org.group(1)
                candidates[org.group(1)] = None

    subject = payload.get("sub")
    if isinstance(subject, str):
        user, at, _ = subject.partition("@")
        # client ids are long random strings, skip those
        if at and user and len(user) < 30 and _PLAIN_NAME_RE.match(user):
            candidates[user] = None

    audience = payload.get("aud")
    audiences = audience if isinstance(audience, list) else [audience]
    for aud in audiences:
        if not isinstance(aud, str):
            continue
        match = _SN_AUDIENCE_RE.match(aud)
        if match:
            hints.organization = hints.organization or match.group(1)
            candidates[match.group(1)] = None

    hints.possible_tenants = list(candidates)
    return hints


def is_token_expired(token: str, now: float | None = None) -> bool | None:
    """True/False when the ``exp`` claim is present, None otherwise."""
    payload = decode_jwt_payload(token)
    if payload is None:
        return None
    exp = payload.get("exp")
    if not isinstance(exp, int | float) or isinstance(exp, bool):
        return None
    return exp < (time.time() if now is None else now)
