"""Caller identity resolution.

Authentication happens upstream; when it succeeds the upstream layer forwards
the user id in ``X-User-Id``. Anonymous callers are identified by client IP,
taken from proxy headers in order of trust and validated before use.
"""

from __future__ import annotations

import hashlib
import ipaddress
from dataclasses import dataclass

from fastapi import Request

USER_ID_HEADER = "X-User-Id"

# Checked in order; the first present header wins.
_IP_HEADERS = ("cf-connecting-ip", "x-real-ip", "x-forwarded-for")


@dataclass(frozen=True)
class CallerIdentity:
    """Resolved identity for quota, capacity and rate limit keys.

    Attributes:
        value: Namespaced identity string (``user:<id>`` or ``ip:<addr>``).
        kind: ``user`` or ``ip``.
    """

    value: str
    kind: str

    @property
    def is_anonymous(self) -> bool:
        return self.kind == "ip"


def _safe_ip(raw: str) -> str:
    """Return a canonical IP, or a short hash when the value is not an IP."""
    candidate = raw.strip()
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return hashlib.sha256(candidate.encode()).hexdigest()[:16]


def client_ip(request: Request) -> str:
    """Best-effort client IP from proxy headers, falling back to the socket peer."""
    for header in _IP_HEADERS:
        value = request.headers.get(header)
        if value:
            # X-Forwarded-For lists every hop; the first is the client.
            return _safe_ip(value.split(",")[0])
    if request.client and request.client.host:
        return _safe_ip(request.client.host)
    return "unknown"


def resolve_identity(request: Request) -> CallerIdentity:
    """Identity for the current request: forwarded user id, else client IP."""
    user_id = request.headers.get(USER_ID_HEADER, "").strip()
    if user_id:
        return CallerIdentity(value=f"user:{user_id}", kind="user")
    return CallerIdentity(value=f"ip:{client_ip(request)}", kind="ip")


def caller_identity(request: Request) -> CallerIdentity:
    """FastAPI dependency returning the identity bound by the request middleware."""
    identity = getattr(request.state, "identity", None)
    if isinstance(identity, CallerIdentity):
        return identity
    return resolve_identity(request)
