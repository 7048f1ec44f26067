"""Pydantic schemas for the admission HTTP surface."""

from __future__ import annotations

import datetime

from pydantic import BaseModel, Field


class ProduceRequest(BaseModel):
    """Body of ``POST /v1/items``."""

    category: str = Field(
        "generation",
        min_length=1,
        max_length=64,
        description="Daily quota category charged for this item.",
    )
    content: str = Field(
        ...,
        min_length=1,
        max_length=1_000_000,
        description="Item payload, stored as UTF-8 bytes.",
    )


class QuotaStatusResponse(BaseModel):
    """Daily quota usage for one category."""

    category: str
    period: datetime.date = Field(..., description="Calendar day the counter belongs to.")
    current: int = Field(..., ge=0)
    limit: int = Field(..., description="Daily limit; -1 means unlimited.")
    remaining: int = Field(..., description="Requests left today; -1 means unlimited.")
    reset_at: int = Field(..., description="Next period boundary, epoch milliseconds.")


class ProduceResponse(BaseModel):
    """Result of a committed produce call."""

    item_id: str
    deleted_old_items: int = Field(
        0,
        ge=0,
        description="Oldest items evicted to stay within the storage cap.",
    )
    quota: QuotaStatusResponse | None = None


class ItemResponse(BaseModel):
    id: str
    created_at: int = Field(..., description="Creation time, epoch milliseconds.")
    size_bytes: int
    sequence_no: int
    category: str | None = None


class ItemListResponse(BaseModel):
    items: list[ItemResponse]
    count: int


class DeleteItemResponse(BaseModel):
    item_id: str
    deleted: bool
    blob_deleted: bool


class CapacityStatusResponse(BaseModel):
    """Stored item usage for the caller's tier."""

    tier: str
    count: int = Field(..., ge=0)
    max: int = Field(..., description="Item cap; -1 means unlimited.")
    remaining: int
    can_insert_more: bool
    usage_percentage: float = Field(..., ge=0)


class QuotaHistoryEntry(BaseModel):
    date: datetime.date
    count: int
    counts: dict[str, int]


class QuotaHistoryResponse(BaseModel):
    days: int
    history: list[QuotaHistoryEntry]


class CleanupResponse(BaseModel):
    """Summary of one maintenance run."""

    deleted_quota_records: int = Field(..., ge=0)
    cleared_orphans: int = Field(..., ge=0)
    pending_orphans: int = Field(..., ge=0)
    swept_rate_limit_keys: int = Field(..., ge=0)
    execution_time_ms: float
