"""Calendar-day usage quota counter.

The quota period is the local calendar date in the configured timezone. Call
paths compute it once via ``current_period()`` and pass it to every quota
operation they make, so a check and its paired increment (or compensating
decrement) cannot straddle midnight and land on different records.

Store failures fail closed: they surface as ``StoreUnavailableError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Mapping
from zoneinfo import ZoneInfo

from admission.adapters.quota.base import AbstractQuotaStore, QuotaRecord
from admission.core.clock import Clock, local_date, next_midnight_ms, system_clock
from admission.core.errors import QuotaExceededError, ValidationAppError, store_unavailable
from admission.services.rate_limiter import hash_identity

logger = logging.getLogger(__name__)

UNLIMITED = -1


@dataclass(frozen=True)
class QuotaStatus:
    """Read-only view of one category's usage for one day.

    ``limit`` and ``remaining`` are -1 when the category is unlimited.
    ``reset_at`` is the UNIX epoch milliseconds of the next period boundary.
    """

    category: str
    period: date
    current: int
    limit: int
    remaining: int
    reset_at: int


class QuotaCounter:
    """Per-identity, per-day counters with per-category limits."""

    def __init__(
        self,
        store: AbstractQuotaStore,
        *,
        limits: Mapping[str, int],
        timezone: str = "UTC",
        clock: Clock = system_clock,
    ) -> None:
        self._store = store
        self._limits = dict(limits)
        self._tz = ZoneInfo(timezone)
        self._clock = clock

    def current_period(self) -> date:
        """Today's date in the quota timezone."""
        return local_date(self._clock, self._tz)

    def reset_at(self, period: date) -> int:
        return next_midnight_ms(period, self._tz)

    def limit_for(self, category: str) -> int:
        """Configured daily limit for ``category`` (-1 when unlimited).

        Raises:
            ValidationAppError: If the category is not configured.
        """
        if category not in self._limits:
            raise ValidationAppError(
                code="unknown_quota_category",
                message=f"Unknown quota category '{category}'",
                details={"category": category, "hint": f"Known categories: {sorted(self._limits)}"},
            )
        return self._limits[category]

    def get_or_create(self, identity: str, period: date) -> QuotaRecord:
        try:
            return self._store.get_or_create(identity, period)
        except Exception as exc:
            raise store_unavailable("quota", exc) from exc

    def increment(self, identity: str, category: str, limit: int, period: date | None = None) -> int:
        """Reserve one unit of ``category`` for ``identity`` in ``period``.

        Args:
            identity: Quota owner.
            category: Counter to raise.
            limit: Daily limit; -1 for unlimited.
            period: Quota period; defaults to the current one.

        Returns:
            The count after the increment.

        Raises:
            QuotaExceededError: If the count already reached ``limit``.
            StoreUnavailableError: If the store failed.
        """
        period = period or self.current_period()
        bound = None if limit == UNLIMITED else limit
        try:
            new_count = self._store.increment_if_below(identity, period, category, bound)
        except Exception as exc:
            logger.error(
                "quota.store_error",
                extra={
                    "identity_hash": hash_identity(identity),
                    "category": category,
                    "error_type": type(exc).__name__,
                    "fail_mode": "closed",
                },
            )
            raise store_unavailable("quota", exc) from exc

        if new_count is None:
            reset_at = self.reset_at(period)
            logger.info(
                "quota.exceeded",
                extra={
                    "identity_hash": hash_identity(identity),
                    "category": category,
                    "limit": limit,
                    "period": period.isoformat(),
                },
            )
            raise QuotaExceededError(
                code="quota_exceeded",
                message=f"Daily limit of {limit} reached for '{category}'. Resets at the next day boundary.",
                details={"category": category, "limit": limit, "current": limit, "reset_at": reset_at},
            )

        logger.debug(
            "quota.incremented",
            extra={
                "identity_hash": hash_identity(identity),
                "category": category,
                "count": new_count,
                "period": period.isoformat(),
            },
        )
        return new_count

    def decrement(self, identity: str, category: str, period: date) -> int:
        """Undo one reservation. Only used to compensate a failed produce call.

        Raises:
            StoreUnavailableError: If the store failed.
        """
        try:
            new_count = self._store.decrement(identity, period, category)
        except Exception as exc:
            raise store_unavailable("quota_compensation", exc) from exc
        logger.info(
            "quota.compensated",
            extra={
                "identity_hash": hash_identity(identity),
                "category": category,
                "count": new_count,
                "period": period.isoformat(),
            },
        )
        return new_count

    def status(self, identity: str, category: str, period: date | None = None) -> QuotaStatus:
        """Current usage for one category without reserving anything."""
        limit = self.limit_for(category)
        period = period or self.current_period()
        try:
            record = self._store.get(identity, period)
        except Exception as exc:
            raise store_unavailable("quota", exc) from exc

        current = record.count_for(category) if record else 0
        remaining = UNLIMITED if limit == UNLIMITED else max(0, limit - current)
        return QuotaStatus(
            category=category,
            period=period,
            current=current,
            limit=limit,
            remaining=remaining,
            reset_at=self.reset_at(period),
        )

    def history(self, identity: str, days: int = 7) -> list[dict[str, object]]:
        """Per-day totals for the last ``days`` days, including today."""
        since = self.current_period() - timedelta(days=days - 1)
        try:
            records = self._store.list_since(identity, since)
        except Exception as exc:
            raise store_unavailable("quota", exc) from exc
        return [{"date": r.date.isoformat(), "count": r.total, "counts": dict(r.counts)} for r in records]

    def cleanup(self, retention_days: int) -> int:
        """Delete records older than ``retention_days`` days.

        Returns:
            Number of records deleted.
        """
        cutoff = self.current_period() - timedelta(days=retention_days)
        try:
            deleted = self._store.delete_before(cutoff)
        except Exception as exc:
            raise store_unavailable("quota_cleanup", exc) from exc
        logger.info(
            "quota.cleanup",
            extra={"deleted_records": deleted, "cutoff": cutoff.isoformat()},
        )
        return deleted
