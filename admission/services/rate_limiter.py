"""Fixed-window request rate limiter.

Each key gets a window that opens on its first request and lasts
``window_ms``. Requests inside the window are counted (rejected ones too);
the first request after the window ends opens a new one.

Store failures fail open: the request is allowed and a warning is logged.
Under-enforcing this dimension only risks minor abuse, while the quota and
capacity stages behind it fail closed.
"""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass
from typing import Mapping

from admission.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitRecord
from admission.core.clock import Clock, now_ms, system_clock
from admission.core.errors import RateLimitedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch milliseconds when the current window ends.
        retry_after_seconds: Suggested wait time in seconds when blocked.
        degraded: True when the store failed and the decision failed open.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None
    degraded: bool = False


def build_key(route: str, identity: str) -> str:
    """Namespace an identity by route so each route has its own budget."""
    return f"{route}:{identity}"


def hash_identity(value: str) -> str:
    """Hash an identity or limiter key for logging without exposing it."""
    return hashlib.sha256(value.encode()).hexdigest()[:16]


class RateLimiter:
    """Per-key fixed-window limiter over an injected record store.

    Concurrent checks for the same key may admit one request more than
    ``max`` when a window opens under contention (two callers both see no
    record and both open a window). That slack is bounded by the number of
    in-flight requests and accepted for this dimension.
    """

    def __init__(
        self,
        store: AbstractRateLimitStore,
        *,
        routes: Mapping[str, tuple[int, int]] | None = None,
        default_route: str = "standard",
        enabled: bool = True,
        clock: Clock = system_clock,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Record store holding one record per key.
            routes: Route presets mapping route name to (window_ms, max).
            default_route: Preset used for routes missing from ``routes``.
            enabled: When False every check is allowed without touching the store.
            clock: Time source function returning UNIX time in seconds.
        """
        self._store = store
        self._routes = dict(routes or {})
        self._default_route = default_route
        self._enabled = enabled
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self._enabled

    def preset_for(self, route: str) -> tuple[int, int]:
        """Return (window_ms, max) for ``route``, falling back to the default preset.

        Raises:
            KeyError: If neither the route nor the default preset is configured.
        """
        if route in self._routes:
            return self._routes[route]
        return self._routes[self._default_route]

    def check_admission(self, identity: str, route: str) -> RateLimitDecision:
        """Check one request from ``identity`` against the preset for ``route``."""
        window_ms, max_requests = self.preset_for(route)
        return self.check(build_key(route, identity), window_ms, max_requests)

    def check(self, key: str, window_ms: int, max_requests: int) -> RateLimitDecision:
        """Count one request for ``key`` and decide whether it is allowed.

        Args:
            key: Unique identifier for rate limiting (route and identity).
            window_ms: Window length in milliseconds.
            max_requests: Allowed requests per window.

        Returns:
            RateLimitDecision with allowance decision and metadata.

        Raises:
            ValueError: If key is empty or window/max are invalid.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")

        now = now_ms(self._clock)
        if not self._enabled:
            return self._allowed(max_requests, max_requests, now + window_ms)

        try:
            record = self._store.get(key)
            if record is None or record.is_expired(now):
                record = self._open_window(key, now, window_ms, max_requests)
            else:
                updated = self._store.increment(key, record.window_start)
                if updated is None:
                    # Swept or replaced between the read and the increment.
                    updated = self._open_window(key, now, window_ms, max_requests)
                record = updated
        except Exception as exc:  # noqa: BLE001 - any store failure fails open
            logger.warning(
                "rate_limit.store_error",
                extra={
                    "key_hash": hash_identity(key),
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                    "fail_mode": "open",
                },
            )
            return self._allowed(max_requests, max_requests - 1, now + window_ms, degraded=True)

        remaining = max(0, max_requests - record.count)
        if record.count <= max_requests:
            return self._allowed(max_requests, remaining, record.reset_at)

        retry_after = max(0, int(math.ceil((record.reset_at - now) / 1000)))
        return RateLimitDecision(
            allowed=False,
            limit=max_requests,
            remaining=0,
            reset_at=record.reset_at,
            retry_after_seconds=retry_after,
        )

    def status(self, key: str) -> RateLimitRecord | None:
        """Return the live record for ``key`` without counting a request."""
        record = self._store.get(key)
        if record is None or record.is_expired(now_ms(self._clock)):
            return None
        return record

    def reset(self, key: str) -> None:
        """Forget the window for ``key``."""
        self._store.delete(key)

    def clear(self) -> None:
        """Forget every window."""
        self._store.clear()

    def sweep(self, grace_ms: int = 0) -> int:
        """Remove records that expired at least ``grace_ms`` ago.

        Returns:
            Number of records removed.
        """
        removed = self._store.sweep(now_ms(self._clock) - grace_ms)
        if removed:
            logger.debug("rate_limit.swept", extra={"removed": removed})
        return removed

    def stats(self) -> dict[str, int]:
        """Return key counts without exposing keys."""
        now = now_ms(self._clock)
        records = self._store.records()
        active = sum(1 for r in records if not r.is_expired(now))
        return {"total_keys": len(records), "active_keys": active}

    def _open_window(self, key: str, now: int, window_ms: int, max_requests: int) -> RateLimitRecord:
        record = RateLimitRecord(
            key=key,
            count=1,
            window_start=now,
            window_ms=window_ms,
            max=max_requests,
        )
        self._store.put(record)
        return record

    @staticmethod
    def _allowed(limit: int, remaining: int, reset_at: int, *, degraded: bool = False) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=True,
            limit=limit,
            remaining=max(0, remaining),
            reset_at=reset_at,
            retry_after_seconds=None,
            degraded=degraded,
        )


def rate_limited_error(decision: RateLimitDecision) -> RateLimitedError:
    """Typed error for a rejected decision, carrying the reset time and retry hint."""
    return RateLimitedError(
        code="rate_limited",
        message="Rate limit exceeded. Try again later.",
        details={
            "limit": decision.limit,
            "remaining": decision.remaining,
            "reset_at": decision.reset_at,
            "retry_after": decision.retry_after_seconds or 0,
        },
    )
