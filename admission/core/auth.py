"""Bearer token authentication for maintenance endpoints.

Maintenance jobs (retention cleanup, orphan reconciliation, limiter sweeps)
are triggered by an external scheduler that presents a shared token in the
``Authorization: Bearer <token>`` header. The expected token comes from
``APP_MAINTENANCE_TOKEN``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Annotated

from fastapi import Header

from admission.core.config import settings
from admission.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)

_BEARER_PREFIX = "bearer "


def parse_bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an Authorization header value.

    Examples:
        >>> parse_bearer_token("Bearer abc")
        'abc'
        >>> parse_bearer_token("Basic abc") is None
        True
        >>> parse_bearer_token(None) is None
        True
    """
    if not authorization or not authorization.lower().startswith(_BEARER_PREFIX):
        return None
    token = authorization[len(_BEARER_PREFIX):].strip()
    return token or None


def validate_maintenance_token(provided_token: str | None) -> None:
    """Check a presented token against the configured maintenance token.

    With no token configured, requests are only accepted in debug mode.

    Raises:
        AuthenticationAppError: If the token is missing, wrong, or not configured.
    """
    expected = settings.app.maintenance_token

    if not expected:
        if settings.app.debug:
            logger.warning("maintenance_auth.skipped", extra={"reason": "debug_without_token"})
            return
        logger.error(
            "maintenance_auth.failed",
            extra={"reason": "maintenance_token_not_configured"},
        )
        raise AuthenticationAppError(
            code="maintenance_token_not_configured",
            message="Maintenance endpoints are disabled: no token is configured",
            details={"hint": "Set APP_MAINTENANCE_TOKEN to enable maintenance endpoints"},
        )

    if not provided_token or not hmac.compare_digest(provided_token, expected):
        logger.warning(
            "maintenance_auth.failed",
            extra={
                "reason": "invalid_token" if provided_token else "missing_token",
                "token_hash": hashlib.sha256(provided_token.encode()).hexdigest()[:16]
                if provided_token
                else None,
            },
        )
        raise AuthenticationAppError(
            code="invalid_maintenance_token",
            message="Invalid or missing maintenance token",
        )


async def verify_maintenance_token(
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """FastAPI dependency guarding maintenance routes.

    Usage:
        @router.post("/maintenance/cleanup", dependencies=[Depends(verify_maintenance_token)])
    """
    validate_maintenance_token(parse_bearer_token(authorization))
    logger.info("maintenance_auth.success")
