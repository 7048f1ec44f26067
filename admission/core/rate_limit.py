"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiter into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency function only.
- Swap-friendly: the record store can be replaced (e.g., Redis) behind an
  abstract interface.
- One budget per (route, identity): the route preset decides window and max.

Rejections raise ``RateLimitedError``; the global exception handler turns it
into a 429 with ``Retry-After`` and ``X-RateLimit-*`` headers.
"""

from __future__ import annotations

import logging
from typing import Annotated, Awaitable, Callable

from fastapi import Depends, Request, Response

from admission.core.config import settings
from admission.core.container import get_pipeline
from admission.core.identity import caller_identity
from admission.services.admission_pipeline import AdmissionPipeline
from admission.services.rate_limiter import RateLimitDecision, hash_identity, rate_limited_error

logger = logging.getLogger(__name__)


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    """X-RateLimit-* headers for a decision (reset in epoch seconds)."""
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_at // 1000),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.retry_after_seconds or 0)
    return headers


def enforce_rate_limit(route: str) -> Callable[..., Awaitable[RateLimitDecision]]:
    """Build a FastAPI dependency enforcing the ``route`` preset.

    Usage:
        @router.get("/quota", dependencies=[Depends(enforce_rate_limit("status"))])
    """

    async def _enforce(
        request: Request,
        response: Response,
        pipeline: Annotated[AdmissionPipeline, Depends(get_pipeline)],
    ) -> RateLimitDecision:
        identity = caller_identity(request)
        decision = pipeline.check_admission(identity.value, route)
        key_hash = hash_identity(identity.value)

        if decision.allowed:
            logger.info(
                "rate_limit.allowed",
                extra={
                    "route": route,
                    "key_type": identity.kind,
                    "key_hash": key_hash,
                    "limit": decision.limit,
                    "remaining": decision.remaining,
                    "degraded": decision.degraded,
                },
            )
            if settings.app.rate_limit_include_headers and pipeline.rate_limiter.enabled and not decision.degraded:
                response.headers.update(rate_limit_headers(decision))
            return decision

        logger.warning(
            "rate_limit.exceeded",
            extra={
                "route": route,
                "key_type": identity.kind,
                "key_hash": key_hash,
                "limit": decision.limit,
                "retry_after_s": decision.retry_after_seconds,
            },
        )
        raise rate_limited_error(decision)

    return _enforce
