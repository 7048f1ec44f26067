"""Admission pipeline guarding the "produce one more item" operation.

Stages run cheapest and safest first:

1. rate limit check (fails open on store errors, never touches counters);
2. daily quota reservation (fails closed);
3. capacity: prepare eviction, evict, verify the post-eviction count is
   below the cap, insert (fails closed).

The quota store and the capacity stores share no transaction. When anything
fails after the quota was reserved, the reservation is undone with a
compensating decrement for the same (identity, category, period), so callers
are never charged for output they did not get.

Stages 2 and 3 run under the owner's lock; otherwise two concurrent calls at
``max - 1`` could both skip eviction and both insert.

``try_produce`` never raises: every failure is returned in ``ProduceResult``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable

from admission.core.errors import (
    AppError,
    CapacityExceededError,
    ProductionFailedError,
    ValidationAppError,
)
from admission.services.capacity_store import UNLIMITED, CapacityStats, CapacityStore
from admission.services.owner_locks import OwnerLocks
from admission.services.quota_counter import QuotaCounter, QuotaStatus
from admission.services.rate_limiter import RateLimitDecision, RateLimiter, hash_identity, rate_limited_error

logger = logging.getLogger(__name__)

ItemFactory = Callable[[], bytes]


class ProduceState(str, Enum):
    PENDING = "pending"
    RATE_CHECKED = "rate_checked"
    QUOTA_RESERVED = "quota_reserved"
    CAPACITY_PREPARED = "capacity_prepared"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass
class ProduceResult:
    """Outcome of one ``try_produce`` call.

    Attributes:
        success: True when the new item was committed.
        state: COMMITTED or FAILED.
        deleted_old_items: Items evicted to make room.
        new_item_id: Id of the committed item.
        error: Typed failure, when not successful.
        failed_stage: Last state reached before the failure.
        compensated: True when a quota reservation was rolled back.
        rate_limit: Decision from the rate limit stage, when it ran.
        quota: Quota usage after the call, when it was read.
    """

    success: bool
    state: ProduceState
    deleted_old_items: int = 0
    new_item_id: str | None = None
    error: AppError | None = None
    failed_stage: ProduceState | None = None
    compensated: bool = False
    rate_limit: RateLimitDecision | None = None
    quota: QuotaStatus | None = None


class AdmissionPipeline:
    """Composes the rate limiter, quota counter and capacity store."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        quota_counter: QuotaCounter,
        capacity_store: CapacityStore,
        *,
        owner_locks: OwnerLocks | None = None,
        produce_route: str = "produce",
    ) -> None:
        self.rate_limiter = rate_limiter
        self.quota_counter = quota_counter
        self.capacity_store = capacity_store
        self._owner_locks = owner_locks if owner_locks is not None else OwnerLocks()
        self._produce_route = produce_route

    def check_admission(self, identity: str, route: str) -> RateLimitDecision:
        """Rate limit check for ``route``; a misconfigured preset fails open."""
        try:
            return self.rate_limiter.check_admission(identity, route)
        except (KeyError, ValueError) as exc:
            logger.warning(
                "admission.rate_limit_skipped",
                extra={"route": route, "error_type": type(exc).__name__, "error_msg": str(exc)},
            )
            return RateLimitDecision(
                allowed=True,
                limit=0,
                remaining=0,
                reset_at=0,
                retry_after_seconds=None,
                degraded=True,
            )

    def get_quota_status(self, owner: str, category: str) -> QuotaStatus:
        return self.quota_counter.status(owner, category)

    def get_capacity_status(self, owner: str) -> CapacityStats:
        return self.capacity_store.get_stats(owner)

    def try_produce(
        self,
        owner: str,
        category: str,
        factory: ItemFactory,
        *,
        identity: str | None = None,
    ) -> ProduceResult:
        """Run the full admission pipeline for one new item.

        Args:
            owner: Identity that will own the item and is charged the quota.
            category: Quota category to charge.
            factory: Produces the item bytes; called once the quota is reserved.
            identity: Rate limit identity; defaults to ``owner``.

        Returns:
            ProduceResult; never raises.
        """
        state = ProduceState.PENDING
        if not owner:
            return self._failed(
                state,
                ValidationAppError(code="invalid_owner", message="Owner identity is required"),
            )

        decision = self.check_admission(identity or owner, self._produce_route)
        if not decision.allowed:
            return self._failed(state, rate_limited_error(decision), rate_limit=decision)
        state = ProduceState.RATE_CHECKED

        try:
            limit = self.quota_counter.limit_for(category)
        except AppError as exc:
            return self._failed(state, exc, rate_limit=decision)

        # One period for the reservation and any compensation.
        period = self.quota_counter.current_period()

        try:
            with self._owner_locks.hold(owner):
                try:
                    self.quota_counter.increment(owner, category, limit, period)
                except AppError as exc:
                    return self._failed(state, exc, rate_limit=decision)
                state = ProduceState.QUOTA_RESERVED

                store = self.capacity_store
                try:
                    data = self._produce(factory)
                    to_evict = store.prepare_insert(owner)
                    deleted = store.evict(to_evict).deleted_count if to_evict else 0
                    state = ProduceState.CAPACITY_PREPARED
                    self._verify_headroom(owner)
                    item_id = store.insert(owner, data, category=category).id
                except Exception as exc:  # noqa: BLE001 - converted to a typed result
                    error = self._as_app_error(exc)
                    compensated = self._compensate(owner, category, period, error)
                    return self._failed(state, error, rate_limit=decision, compensated=compensated)
        except AppError as exc:
            # Owner lock timeout; nothing reserved yet.
            return self._failed(state, exc, rate_limit=decision)

        logger.info(
            "admission.committed",
            extra={
                "owner_hash": hash_identity(owner),
                "category": category,
                "item_id": item_id,
                "deleted_old_items": deleted,
            },
        )
        return ProduceResult(
            success=True,
            state=ProduceState.COMMITTED,
            deleted_old_items=deleted,
            new_item_id=item_id,
            rate_limit=decision,
            quota=self._quota_snapshot(owner, category, period),
        )

    @staticmethod
    def _produce(factory: ItemFactory) -> bytes:
        data = factory()
        if not isinstance(data, (bytes, bytearray)):
            raise ProductionFailedError(
                code="invalid_item",
                message="Item factory must return bytes",
            )
        return bytes(data)

    def _verify_headroom(self, owner: str) -> None:
        """Re-read the count after eviction; only a count below the cap may insert."""
        max_items = self.capacity_store.max_items(owner)
        if max_items == UNLIMITED:
            return
        count = self.capacity_store.count(owner)
        if count >= max_items:
            raise CapacityExceededError(
                code="capacity_exceeded",
                message="Stored item capacity still exceeded after eviction",
                details={"limit": max_items, "current": count},
            )

    def _compensate(self, owner: str, category: str, period: date, error: AppError) -> bool:
        try:
            self.quota_counter.decrement(owner, category, period)
        except AppError as exc:
            logger.error(
                "admission.compensation_failed",
                extra={
                    "owner_hash": hash_identity(owner),
                    "category": category,
                    "error_code": error.code,
                    "compensation_error": exc.message,
                },
            )
            compensated = False
        else:
            compensated = True
        error.details = {**(error.details or {}), "compensated": compensated}
        return compensated

    def _quota_snapshot(self, owner: str, category: str, period: date) -> QuotaStatus | None:
        try:
            return self.quota_counter.status(owner, category, period)
        except AppError:
            return None

    @staticmethod
    def _as_app_error(exc: Exception) -> AppError:
        if isinstance(exc, AppError):
            return exc
        return ProductionFailedError(
            code="production_failed",
            message="Producing the item failed",
            details={"cause": f"{type(exc).__name__}: {exc}"},
        )

    @staticmethod
    def _failed(
        stage: ProduceState,
        error: AppError,
        *,
        rate_limit: RateLimitDecision | None = None,
        compensated: bool = False,
    ) -> ProduceResult:
        error.details = {**(error.details or {}), "stage": stage.value}
        logger.warning(
            "admission.failed",
            extra={
                "stage": stage.value,
                "error_code": error.code,
                "compensated": compensated,
            },
        )
        return ProduceResult(
            success=False,
            state=ProduceState.FAILED,
            error=error,
            failed_stage=stage,
            compensated=compensated,
            rate_limit=rate_limit,
        )
