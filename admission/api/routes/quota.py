from __future__ import annotations

from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from admission.core.container import get_pipeline
from admission.core.identity import CallerIdentity, caller_identity
from admission.core.rate_limit import enforce_rate_limit
from admission.schemas.admission import (
    CapacityStatusResponse,
    QuotaHistoryEntry,
    QuotaHistoryResponse,
    QuotaStatusResponse,
)
from admission.services.admission_pipeline import AdmissionPipeline

router = APIRouter(tags=["Quota"], dependencies=[Depends(enforce_rate_limit("status"))])

Pipeline = Annotated[AdmissionPipeline, Depends(get_pipeline)]
Caller = Annotated[CallerIdentity, Depends(caller_identity)]


# Registered before /quota/{category} so "history" is not read as a category.
@router.get("/quota/history", response_model=QuotaHistoryResponse)
def quota_history(
    pipeline: Pipeline,
    caller: Caller,
    days: Annotated[int, Query(ge=1, le=90)] = 7,
) -> QuotaHistoryResponse:
    """Per-day usage totals for the caller over the last ``days`` days."""
    history = pipeline.quota_counter.history(caller.value, days)
    return QuotaHistoryResponse(
        days=days,
        history=[QuotaHistoryEntry(**entry) for entry in history],
    )


@router.get("/quota/{category}", response_model=QuotaStatusResponse)
def quota_status(category: str, pipeline: Pipeline, caller: Caller) -> QuotaStatusResponse:
    """Today's usage for one quota category.

    Raises:
        ValidationAppError: Unknown category (400).
    """
    return QuotaStatusResponse(**asdict(pipeline.get_quota_status(caller.value, category)))


@router.get("/capacity", response_model=CapacityStatusResponse)
def capacity_status(pipeline: Pipeline, caller: Caller) -> CapacityStatusResponse:
    stats = pipeline.get_capacity_status(caller.value)
    return CapacityStatusResponse(
        tier=stats.tier,
        count=stats.count,
        max=stats.max,
        remaining=stats.remaining,
        can_insert_more=stats.can_insert_more,
        usage_percentage=stats.usage_percentage,
    )
