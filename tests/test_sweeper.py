"""Tests for the background rate limit sweeper."""

from unittest.mock import Mock

import pytest

from admission.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from admission.services.rate_limiter import RateLimiter
from admission.services.sweeper import RateLimitSweeper

T0 = 1_700_000_000.0


def test_sweep_once_removes_expired_records() -> None:
    clock = Mock(return_value=T0)
    limiter = RateLimiter(InMemoryRateLimitStore(), routes={"standard": (1_000, 5)}, clock=clock)
    limiter.check("k", 1_000, 5)
    sweeper = RateLimitSweeper(limiter, interval_seconds=60, grace_ms=500)

    clock.return_value = T0 + 1.2
    assert sweeper.sweep_once() == 0

    clock.return_value = T0 + 1.5
    assert sweeper.sweep_once() == 1


def test_sweep_once_survives_store_errors() -> None:
    limiter = Mock()
    limiter.sweep.side_effect = RuntimeError("store offline")
    sweeper = RateLimitSweeper(limiter, interval_seconds=60)

    assert sweeper.sweep_once() == 0


def test_start_and_stop_background_thread() -> None:
    limiter = Mock()
    limiter.sweep.return_value = 0
    sweeper = RateLimitSweeper(limiter, interval_seconds=0.01)

    sweeper.start()
    assert sweeper.running is True
    sweeper.start()  # idempotent
    sweeper.stop()

    assert sweeper.running is False


def test_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        RateLimitSweeper(Mock(), interval_seconds=0)
