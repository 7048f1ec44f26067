"""Per-owner bounded item store with oldest-first eviction.

Each owner may hold at most ``CapacityPolicy.max_items(owner)`` items. Before
an insert, ``prepare_insert`` picks exactly the oldest items that must go so
that the owner lands at the cap after the insert; ``evict`` removes them.

Items span a metadata store and one or more blob locations with no shared
transaction. Deletes run blob first, then metadata:

- blob missing counts as deleted (legacy rows may point at an old layout);
- blob failure + metadata success: the item is evicted and the blob is queued
  as an orphan for ``reconcile_orphans``;
- metadata failure: the item is not evicted, since the metadata row is what
  the owner's visible count is computed from.

Callers that need the count to stay at or below the cap under concurrency
must hold the owner's lock across prepare/evict/verify/insert (see
``OwnerLocks``).
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Mapping, Sequence
from urllib.parse import quote

from admission.adapters.storage.base import AbstractBlobStore, AbstractMetadataStore, StoredItem
from admission.core.clock import Clock, now_ms, system_clock
from admission.core.errors import NotFoundAppError, store_unavailable
from admission.services.rate_limiter import hash_identity

logger = logging.getLogger(__name__)

UNLIMITED = -1


class CapacityPolicy:
    """Maps owners to tiers and tiers to item caps (-1 for unlimited)."""

    def __init__(
        self,
        tier_limits: Mapping[str, int],
        *,
        default_tier: str = "free",
        owner_tiers: Mapping[str, str] | None = None,
    ) -> None:
        if default_tier not in tier_limits:
            raise ValueError(f"default tier '{default_tier}' has no limit configured")
        for tier, limit in tier_limits.items():
            if limit < UNLIMITED or limit == 0:
                raise ValueError(f"invalid max_items {limit} for tier '{tier}'")
        self._tier_limits = dict(tier_limits)
        self._default_tier = default_tier
        self._owner_tiers = dict(owner_tiers or {})

    def tier_for(self, owner: str) -> str:
        tier = self._owner_tiers.get(owner, self._default_tier)
        return tier if tier in self._tier_limits else self._default_tier

    def max_items(self, owner: str) -> int:
        return self._tier_limits[self.tier_for(owner)]

    def set_tier(self, owner: str, tier: str) -> None:
        if tier not in self._tier_limits:
            raise ValueError(f"unknown tier '{tier}'")
        self._owner_tiers[owner] = tier


@dataclass(frozen=True)
class CapacityStats:
    """Read-only capacity view. ``max``/``remaining`` are -1 when unlimited."""

    owner_id: str
    tier: str
    count: int
    max: int
    remaining: int
    can_insert_more: bool
    usage_percentage: float


@dataclass
class ItemEvictionOutcome:
    item_id: str
    blob_deleted: bool = False
    metadata_deleted: bool = False
    error: str | None = None

    @property
    def evicted(self) -> bool:
        return self.metadata_deleted


@dataclass(frozen=True)
class OrphanBlob:
    """Blob whose metadata row is gone but whose delete failed.

    ``location`` is None for legacy items; reconciliation probes the legacy
    locations again.
    """

    item_id: str
    owner_id: str
    path: str
    location: str | None
    error: str


@dataclass
class EvictionReport:
    deleted_count: int = 0
    per_item: list[ItemEvictionOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    orphans: list[OrphanBlob] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class CapacityStore:
    """Keeps each owner's stored item count within its policy cap."""

    def __init__(
        self,
        metadata: AbstractMetadataStore,
        blob_stores: Mapping[str, AbstractBlobStore],
        policy: CapacityPolicy,
        *,
        primary_location: str,
        legacy_locations: Sequence[str] = (),
        clock: Clock = system_clock,
    ) -> None:
        if primary_location not in blob_stores:
            raise ValueError(f"primary location '{primary_location}' has no blob store")
        self._metadata = metadata
        self._blob_stores = dict(blob_stores)
        self._policy = policy
        self._primary_location = primary_location
        self._legacy_locations = [loc for loc in legacy_locations if loc in self._blob_stores]
        self._clock = clock
        self._orphan_lock = threading.Lock()
        self._orphans: list[OrphanBlob] = []

    @property
    def policy(self) -> CapacityPolicy:
        return self._policy

    @property
    def orphans(self) -> list[OrphanBlob]:
        with self._orphan_lock:
            return list(self._orphans)

    def max_items(self, owner: str) -> int:
        return self._policy.max_items(owner)

    def count(self, owner: str) -> int:
        try:
            return self._metadata.count(owner)
        except Exception as exc:
            raise store_unavailable("capacity", exc) from exc

    def list_items(self, owner: str) -> list[StoredItem]:
        """Owner's items, oldest first."""
        try:
            return self._metadata.query(owner)
        except Exception as exc:
            raise store_unavailable("capacity", exc) from exc

    def prepare_insert(self, owner: str) -> list[StoredItem]:
        """Return the items to evict so that one more insert lands exactly at the cap.

        Returns:
            The oldest ``count - max + 1`` items when ``count >= max``, else
            an empty list. Always empty for unlimited owners.

        Raises:
            StoreUnavailableError: If the metadata store failed.
        """
        max_items = self.max_items(owner)
        if max_items == UNLIMITED:
            return []

        items = self.list_items(owner)
        if len(items) < max_items:
            return []

        to_evict = items[: len(items) - max_items + 1]
        logger.info(
            "capacity.eviction_planned",
            extra={
                "owner_hash": hash_identity(owner),
                "count": len(items),
                "max_items": max_items,
                "evict_count": len(to_evict),
            },
        )
        return to_evict

    def evict(self, items: Sequence[StoredItem]) -> EvictionReport:
        """Delete ``items`` blob first, then metadata, aggregating per-item outcomes.

        Never raises for a single item's failure.
        """
        report = EvictionReport()
        for item in items:
            outcome = ItemEvictionOutcome(item_id=item.id)
            blob_error = self._delete_blob(item)
            outcome.blob_deleted = blob_error is None

            try:
                self._metadata.delete(item.id)
            except Exception as exc:  # noqa: BLE001 - aggregated per item
                outcome.error = f"metadata delete failed: {type(exc).__name__}: {exc}"
                report.errors.append(f"{item.id}: {outcome.error}")
                logger.error(
                    "capacity.metadata_delete_failed",
                    extra={"item_id": item.id, "owner_hash": hash_identity(item.owner_id), "error_msg": str(exc)},
                )
                report.per_item.append(outcome)
                continue

            outcome.metadata_deleted = True
            report.deleted_count += 1

            if blob_error is not None:
                outcome.error = f"blob delete failed: {blob_error}"
                report.errors.append(f"{item.id}: {outcome.error}")
                orphan = OrphanBlob(
                    item_id=item.id,
                    owner_id=item.owner_id,
                    path=item.blob_ref or "",
                    location=item.blob_location,
                    error=blob_error,
                )
                report.orphans.append(orphan)
                self._queue_orphan(orphan)

            report.per_item.append(outcome)

        if items:
            logger.info(
                "capacity.evicted",
                extra={
                    "requested": len(items),
                    "deleted_count": report.deleted_count,
                    "error_count": len(report.errors),
                    "orphan_count": len(report.orphans),
                },
            )
        return report

    def insert(
        self,
        owner: str,
        data: bytes,
        *,
        item_id: str | None = None,
        category: str | None = None,
    ) -> StoredItem:
        """Write the blob, then the metadata row.

        Only call after a verified post-eviction count below the cap.

        Raises:
            StoreUnavailableError: If either write failed. A blob written
                before a failed metadata insert is removed (or queued as an
                orphan when that removal fails too).
        """
        item_id = item_id or uuid.uuid4().hex
        path = f"{quote(owner, safe='')}/{item_id}"
        blob_store = self._blob_stores[self._primary_location]

        try:
            sequence_no = self._metadata.next_sequence_no()
            blob_store.write(path, data)
        except Exception as exc:
            raise store_unavailable("capacity_insert", exc) from exc

        item = StoredItem(
            id=item_id,
            owner_id=owner,
            created_at=now_ms(self._clock),
            size_bytes=len(data),
            blob_ref=path,
            sequence_no=sequence_no,
            blob_location=self._primary_location,
            category=category,
        )
        try:
            self._metadata.insert(item)
        except Exception as exc:
            self._discard_unreferenced_blob(item, exc)
            raise store_unavailable("capacity_insert", exc) from exc

        logger.info(
            "capacity.inserted",
            extra={
                "item_id": item.id,
                "owner_hash": hash_identity(owner),
                "size_bytes": item.size_bytes,
                "sequence_no": sequence_no,
            },
        )
        return item

    def get_stats(self, owner: str) -> CapacityStats:
        max_items = self.max_items(owner)
        count = self.count(owner)
        tier = self._policy.tier_for(owner)
        if max_items == UNLIMITED:
            return CapacityStats(
                owner_id=owner,
                tier=tier,
                count=count,
                max=UNLIMITED,
                remaining=UNLIMITED,
                can_insert_more=True,
                usage_percentage=0.0,
            )
        return CapacityStats(
            owner_id=owner,
            tier=tier,
            count=count,
            max=max_items,
            remaining=max(0, max_items - count),
            can_insert_more=count < max_items,
            usage_percentage=round(count / max_items * 100, 2),
        )

    def delete_item(self, owner: str, item_id: str) -> ItemEvictionOutcome:
        """User-initiated delete of one of the owner's items.

        Raises:
            NotFoundAppError: If the item does not exist or belongs to someone else.
            StoreUnavailableError: If the metadata lookup or delete failed.
        """
        try:
            item = self._metadata.get(item_id)
        except Exception as exc:
            raise store_unavailable("capacity", exc) from exc
        if item is None or item.owner_id != owner:
            raise NotFoundAppError(
                code="item_not_found",
                message="Item not found",
                details={"context": {"item_id": item_id}},
            )
        outcome = self.evict([item]).per_item[0]
        if not outcome.metadata_deleted:
            raise store_unavailable("capacity_delete", outcome.error or "metadata delete failed")
        return outcome

    def cleanup(self, owner: str, keep_count: int | None = None) -> EvictionReport:
        """Trim the owner down to ``keep_count`` items (default: the tier cap)."""
        limit = keep_count if keep_count is not None else self.max_items(owner)
        if limit == UNLIMITED:
            return EvictionReport()
        if limit < 0:
            raise ValueError("keep_count must be >= 0")
        items = self.list_items(owner)
        if len(items) <= limit:
            return EvictionReport()
        return self.evict(items[: len(items) - limit])

    def reconcile_orphans(self) -> int:
        """Retry deleting queued orphan blobs.

        Returns:
            Number of orphans cleared; failures stay queued. Orphans whose
            location is no longer configured are dropped.
        """
        with self._orphan_lock:
            pending, self._orphans = self._orphans, []

        cleared = 0
        still_pending: list[OrphanBlob] = []
        for orphan in pending:
            if orphan.location is not None and orphan.location not in self._blob_stores:
                logger.error(
                    "capacity.orphan_dropped",
                    extra={"item_id": orphan.item_id, "location": orphan.location, "reason": "unknown_location"},
                )
                continue
            target = StoredItem(
                id=orphan.item_id,
                owner_id=orphan.owner_id,
                created_at=0,
                size_bytes=0,
                blob_ref=orphan.path,
                sequence_no=0,
                blob_location=orphan.location,
            )
            if self._delete_blob(target) is None:
                cleared += 1
            else:
                still_pending.append(orphan)

        with self._orphan_lock:
            self._orphans.extend(still_pending)

        if pending:
            logger.info(
                "capacity.orphans_reconciled",
                extra={"cleared": cleared, "remaining": len(still_pending)},
            )
        return cleared

    def _delete_blob(self, item: StoredItem) -> str | None:
        """Delete an item's blob. Returns None on success (including not found), else the error."""
        if not item.blob_ref:
            return None

        if item.blob_location is not None:
            store = self._blob_stores.get(item.blob_location)
            if store is None:
                return f"unknown blob location '{item.blob_location}'"
            try:
                store.delete(item.blob_ref)
            except Exception as exc:  # noqa: BLE001 - reported to caller
                logger.warning(
                    "capacity.blob_delete_failed",
                    extra={"item_id": item.id, "location": item.blob_location, "error_msg": str(exc)},
                )
                return f"{type(exc).__name__}: {exc}"
            return None

        # Legacy row: probe the known locations until one holds the blob.
        last_error: str | None = None
        for location in self._legacy_locations:
            try:
                if self._blob_stores[location].delete(item.blob_ref):
                    return None
            except Exception as exc:  # noqa: BLE001 - try the next location
                last_error = f"{location}: {type(exc).__name__}: {exc}"
        if last_error is not None:
            logger.warning(
                "capacity.blob_delete_failed",
                extra={"item_id": item.id, "location": None, "error_msg": last_error},
            )
        return last_error

    def _discard_unreferenced_blob(self, item: StoredItem, cause: Exception) -> None:
        error = self._delete_blob(item)
        if error is not None:
            self._queue_orphan(
                OrphanBlob(
                    item_id=item.id,
                    owner_id=item.owner_id,
                    path=item.blob_ref or "",
                    location=item.blob_location,
                    error=error,
                )
            )
        logger.error(
            "capacity.insert_failed",
            extra={
                "item_id": item.id,
                "owner_hash": hash_identity(item.owner_id),
                "error_msg": str(cause),
                "blob_discarded": error is None,
            },
        )

    def _queue_orphan(self, orphan: OrphanBlob) -> None:
        with self._orphan_lock:
            self._orphans.append(orphan)
