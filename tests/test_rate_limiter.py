"""Unit tests for the fixed-window rate limiter."""

from unittest.mock import Mock

import pytest

from admission.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from admission.core.errors import RateLimitedError
from admission.services.rate_limiter import RateLimiter, build_key, rate_limited_error

T0 = 1_700_000_000.0
T0_MS = 1_700_000_000_000


def _limiter(clock: Mock, **kwargs) -> RateLimiter:
    routes = kwargs.pop("routes", {"standard": (60_000, 5), "produce": (60_000, 5)})
    return RateLimiter(InMemoryRateLimitStore(), routes=routes, clock=clock, **kwargs)


def test_allows_up_to_limit_then_blocks_until_window_reset() -> None:
    clock = Mock(return_value=T0)
    limiter = _limiter(clock)

    remaining = []
    for i in range(5):
        clock.return_value = T0 + i * 10
        decision = limiter.check("route:user", 60_000, 5)
        assert decision.allowed is True
        assert decision.reset_at == T0_MS + 60_000
        remaining.append(decision.remaining)
    assert remaining == [4, 3, 2, 1, 0]

    clock.return_value = T0 + 50
    blocked = limiter.check("route:user", 60_000, 5)
    assert blocked.allowed is False
    assert blocked.remaining == 0
    assert blocked.reset_at == T0_MS + 60_000
    assert blocked.retry_after_seconds == 10


def test_window_starts_at_first_request_and_reopens_at_reset() -> None:
    clock = Mock(return_value=T0 + 0.5)
    limiter = _limiter(clock)

    assert limiter.check("k", 10_000, 1).reset_at == T0_MS + 500 + 10_000
    assert limiter.check("k", 10_000, 1).allowed is False

    # now == reset_at counts as expired
    clock.return_value = T0 + 10.5
    reopened = limiter.check("k", 10_000, 1)
    assert reopened.allowed is True
    assert reopened.reset_at == T0_MS + 10_500 + 10_000


def test_rejected_requests_are_counted() -> None:
    clock = Mock(return_value=T0)
    limiter = _limiter(clock)

    for _ in range(4):
        limiter.check("k", 60_000, 2)

    assert limiter.status("k").count == 4


def test_keys_are_isolated() -> None:
    clock = Mock(return_value=T0)
    limiter = _limiter(clock)

    assert limiter.check("a", 60_000, 1).allowed is True
    assert limiter.check("a", 60_000, 1).allowed is False
    assert limiter.check("b", 60_000, 1).allowed is True


def test_check_admission_uses_route_preset_and_default() -> None:
    clock = Mock(return_value=T0)
    limiter = _limiter(clock, routes={"standard": (60_000, 10), "produce": (30_000, 2)})

    produce = limiter.check_admission("user:1", "produce")
    assert produce.limit == 2
    assert produce.reset_at == T0_MS + 30_000

    unknown = limiter.check_admission("user:1", "unconfigured")
    assert unknown.limit == 10
    assert limiter.status(build_key("unconfigured", "user:1")) is not None


def test_missing_default_preset_raises_key_error() -> None:
    limiter = _limiter(Mock(return_value=T0), routes={"produce": (60_000, 5)})

    with pytest.raises(KeyError):
        limiter.check_admission("user:1", "other")


@pytest.mark.parametrize(
    ("key", "window_ms", "max_requests"),
    [("", 60_000, 1), ("k", 0, 1), ("k", 60_000, 0)],
)
def test_invalid_check_args(key: str, window_ms: int, max_requests: int) -> None:
    limiter = _limiter(Mock(return_value=T0))

    with pytest.raises(ValueError):
        limiter.check(key, window_ms, max_requests)


def test_store_failure_fails_open() -> None:
    store = Mock()
    store.get.side_effect = RuntimeError("connection reset")
    limiter = RateLimiter(store, routes={"standard": (60_000, 5)}, clock=Mock(return_value=T0))

    decision = limiter.check("k", 60_000, 5)

    assert decision.allowed is True
    assert decision.degraded is True
    assert decision.remaining == 4


def test_disabled_limiter_never_touches_store() -> None:
    store = Mock()
    limiter = RateLimiter(store, routes={"standard": (60_000, 1)}, enabled=False, clock=Mock(return_value=T0))

    for _ in range(3):
        assert limiter.check("k", 60_000, 1).allowed is True
    store.get.assert_not_called()


def test_record_swept_between_read_and_increment_reopens_window() -> None:
    clock = Mock(return_value=T0)
    store = InMemoryRateLimitStore()
    limiter = RateLimiter(store, routes={"standard": (60_000, 5)}, clock=clock)
    limiter.check("k", 60_000, 5)

    original_increment = store.increment

    def racing_increment(key, window_start):
        store.delete(key)
        return original_increment(key, window_start)

    store.increment = racing_increment  # type: ignore[method-assign]
    decision = limiter.check("k", 60_000, 5)

    assert decision.allowed is True
    assert decision.remaining == 4


def test_sweep_honours_grace_and_stats() -> None:
    clock = Mock(return_value=T0)
    limiter = _limiter(clock)
    limiter.check("short", 1_000, 5)
    limiter.check("long", 60_000, 5)

    clock.return_value = T0 + 1.5
    assert limiter.stats() == {"total_keys": 2, "active_keys": 1}
    assert limiter.sweep(grace_ms=1_000) == 0

    clock.return_value = T0 + 2.0
    assert limiter.sweep(grace_ms=1_000) == 1
    assert limiter.stats() == {"total_keys": 1, "active_keys": 1}


def test_reset_and_clear() -> None:
    clock = Mock(return_value=T0)
    limiter = _limiter(clock)
    limiter.check("a", 60_000, 1)
    limiter.check("b", 60_000, 1)

    limiter.reset("a")
    assert limiter.check("a", 60_000, 1).allowed is True

    limiter.clear()
    assert limiter.stats()["total_keys"] == 0


def test_rate_limited_error_carries_reset_and_retry_hint() -> None:
    clock = Mock(return_value=T0)
    limiter = _limiter(clock)
    limiter.check("k", 60_000, 1)
    decision = limiter.check("k", 60_000, 1)

    error = rate_limited_error(decision)

    assert isinstance(error, RateLimitedError)
    assert error.code == "rate_limited"
    assert error.reset_at == T0_MS + 60_000
    assert error.retry_after == 60
