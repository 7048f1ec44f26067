"""Quota store interfaces.

One record per (identity, date) holds the per-category counts for that day.
Increments are conditional on the limit so check-and-raise is atomic at the
store, not split across two calls.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date


@dataclass
class QuotaRecord:
    """Usage counts for one identity on one calendar day."""

    identity: str
    date: date
    counts: dict[str, int] = field(default_factory=dict)

    def count_for(self, category: str) -> int:
        return self.counts.get(category, 0)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


class AbstractQuotaStore(ABC):
    """Interface for quota record stores."""

    @abstractmethod
    def get_or_create(self, identity: str, day: date) -> QuotaRecord:
        """Return the record for (identity, day), creating an empty one if missing."""
        raise NotImplementedError

    @abstractmethod
    def get(self, identity: str, day: date) -> QuotaRecord | None:
        """Return the record for (identity, day) without creating it."""
        raise NotImplementedError

    @abstractmethod
    def increment_if_below(self, identity: str, day: date, category: str, limit: int | None) -> int | None:
        """Raise the category count by one unless it already reached ``limit``.

        Args:
            identity: Quota owner.
            day: Quota period.
            category: Counter name within the record.
            limit: Exclusive upper bound for the current count; None for no limit.

        Returns:
            The new count, or None when the count was already at or above ``limit``.
        """
        raise NotImplementedError

    @abstractmethod
    def decrement(self, identity: str, day: date, category: str) -> int:
        """Lower the category count by one, never below zero.

        Returns:
            The count after the decrement.
        """
        raise NotImplementedError

    @abstractmethod
    def delete_before(self, day: date) -> int:
        """Delete every record dated strictly before ``day``.

        Returns:
            Number of records deleted.
        """
        raise NotImplementedError

    @abstractmethod
    def list_since(self, identity: str, day: date) -> list[QuotaRecord]:
        """Records for ``identity`` dated on or after ``day``, oldest first."""
        raise NotImplementedError
