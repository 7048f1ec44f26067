"""In-memory quota record store (single process, thread-safe)."""

from __future__ import annotations

import threading
from copy import deepcopy
from datetime import date

from admission.adapters.quota.base import AbstractQuotaStore, QuotaRecord


class InMemoryQuotaStore(AbstractQuotaStore):
    """Dict-backed quota store keyed by (identity, date).

    Records handed out are copies; callers never mutate stored state directly.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[tuple[str, date], QuotaRecord] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _get_or_create_locked(self, identity: str, day: date) -> QuotaRecord:
        record = self._records.get((identity, day))
        if record is None:
            record = QuotaRecord(identity=identity, date=day)
            self._records[(identity, day)] = record
        return record

    def get_or_create(self, identity: str, day: date) -> QuotaRecord:
        with self._lock:
            return deepcopy(self._get_or_create_locked(identity, day))

    def get(self, identity: str, day: date) -> QuotaRecord | None:
        with self._lock:
            record = self._records.get((identity, day))
            return deepcopy(record) if record else None

    def increment_if_below(self, identity: str, day: date, category: str, limit: int | None) -> int | None:
        with self._lock:
            record = self._get_or_create_locked(identity, day)
            current = record.count_for(category)
            if limit is not None and current >= limit:
                return None
            record.counts[category] = current + 1
            return current + 1

    def decrement(self, identity: str, day: date, category: str) -> int:
        with self._lock:
            record = self._records.get((identity, day))
            if record is None:
                return 0
            new_count = max(0, record.count_for(category) - 1)
            record.counts[category] = new_count
            return new_count

    def delete_before(self, day: date) -> int:
        with self._lock:
            stale = [key for key in self._records if key[1] < day]
            for key in stale:
                del self._records[key]
            return len(stale)

    def list_since(self, identity: str, day: date) -> list[QuotaRecord]:
        with self._lock:
            matches = [
                deepcopy(record)
                for (owner, record_day), record in self._records.items()
                if owner == identity and record_day >= day
            ]
        return sorted(matches, key=lambda r: r.date)
