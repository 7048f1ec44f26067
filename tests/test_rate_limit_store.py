"""Unit tests for the in-memory rate limit record store."""

from admission.adapters.rate_limit.base import RateLimitRecord
from admission.adapters.rate_limit.in_memory import InMemoryRateLimitStore


def _record(key: str = "k", count: int = 1, window_start: int = 1_000) -> RateLimitRecord:
    return RateLimitRecord(key=key, count=count, window_start=window_start, window_ms=60_000, max=5)


def test_record_reset_at_and_expiry_boundary() -> None:
    record = _record(window_start=1_000)

    assert record.reset_at == 61_000
    assert record.is_expired(60_999) is False
    assert record.is_expired(61_000) is True


def test_increment_only_matches_current_window() -> None:
    store = InMemoryRateLimitStore()
    store.put(_record(window_start=1_000))

    updated = store.increment("k", 1_000)
    assert updated is not None
    assert updated.count == 2

    # A newer window replaced the record; the stale increment must not apply.
    store.put(_record(window_start=70_000))
    assert store.increment("k", 1_000) is None
    assert store.get("k").count == 1


def test_increment_missing_key_returns_none() -> None:
    store = InMemoryRateLimitStore()

    assert store.increment("missing", 0) is None
    assert len(store) == 0


def test_sweep_removes_records_at_or_before_cutoff() -> None:
    store = InMemoryRateLimitStore()
    store.put(_record("old", window_start=0))  # reset_at 60_000
    store.put(_record("edge", window_start=10_000))  # reset_at 70_000
    store.put(_record("live", window_start=50_000))  # reset_at 110_000

    removed = store.sweep(70_000)

    assert removed == 2
    assert [r.key for r in store.records()] == ["live"]


def test_delete_and_clear() -> None:
    store = InMemoryRateLimitStore()
    store.put(_record("a"))
    store.put(_record("b"))

    store.delete("a")
    store.delete("a")
    assert store.get("a") is None
    assert len(store) == 1

    store.clear()
    assert len(store) == 0
