"""In-memory rate limit record store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state. This lock is private to the
  store, so the periodic sweep never contends with owner capacity locks.
"""

from __future__ import annotations

import threading
from dataclasses import replace

from admission.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitRecord


class InMemoryRateLimitStore(AbstractRateLimitStore):
    """Dict-backed record store.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, RateLimitRecord] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def get(self, key: str) -> RateLimitRecord | None:
        with self._lock:
            return self._records.get(key)

    def put(self, record: RateLimitRecord) -> None:
        with self._lock:
            self._records[record.key] = record

    def increment(self, key: str, window_start: int) -> RateLimitRecord | None:
        with self._lock:
            current = self._records.get(key)
            if current is None or current.window_start != window_start:
                return None
            updated = replace(current, count=current.count + 1)
            self._records[key] = updated
            return updated

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def sweep(self, cutoff_ms: int) -> int:
        with self._lock:
            expired = [k for k, r in self._records.items() if r.reset_at <= cutoff_ms]
            for key in expired:
                del self._records[key]
            return len(expired)

    def records(self) -> list[RateLimitRecord]:
        with self._lock:
            return list(self._records.values())

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
