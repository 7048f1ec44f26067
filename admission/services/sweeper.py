"""Background sweep of expired rate limit records.

Runs on its own daemon thread and timer. The sweep only takes the rate limit
store's lock, never an owner capacity lock, so it cannot block produce calls
for unrelated owners.
"""

from __future__ import annotations

import logging
import threading

from admission.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class RateLimitSweeper:
    """Calls ``RateLimiter.sweep`` every ``interval_seconds`` until stopped."""

    def __init__(self, limiter: RateLimiter, *, interval_seconds: float, grace_ms: int = 0) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._limiter = limiter
        self._interval = interval_seconds
        self._grace_ms = grace_ms
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="rate-limit-sweeper", daemon=True)
        self._thread.start()
        logger.info("sweeper.started", extra={"interval_s": self._interval, "grace_ms": self._grace_ms})

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("sweeper.stopped")

    def sweep_once(self) -> int:
        """Run one sweep; store errors are logged and the loop keeps going."""
        try:
            return self._limiter.sweep(self._grace_ms)
        except Exception as exc:  # noqa: BLE001 - the next tick retries
            logger.warning(
                "sweeper.failed",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
            )
            return 0

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            self.sweep_once()
