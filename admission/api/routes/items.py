from __future__ import annotations

from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from admission.core.config import settings
from admission.core.container import get_pipeline
from admission.core.identity import CallerIdentity, caller_identity
from admission.core.rate_limit import enforce_rate_limit, rate_limit_headers
from admission.schemas.admission import (
    DeleteItemResponse,
    ItemListResponse,
    ItemResponse,
    ProduceRequest,
    ProduceResponse,
    QuotaStatusResponse,
)
from admission.services.admission_pipeline import AdmissionPipeline

router = APIRouter(tags=["Items"])

Pipeline = Annotated[AdmissionPipeline, Depends(get_pipeline)]
Caller = Annotated[CallerIdentity, Depends(caller_identity)]


@router.post(
    "/items",
    response_model=ProduceResponse,
    status_code=status.HTTP_201_CREATED,
)
def produce_item(
    body: ProduceRequest,
    response: Response,
    pipeline: Pipeline,
    caller: Caller,
) -> ProduceResponse:
    """Store one new item for the caller.

    Runs the admission pipeline: the ``produce`` rate limit preset, the daily
    quota for ``body.category``, then capacity eviction of the caller's oldest
    items before the insert.

    Raises:
        AppError: The typed pipeline failure (429, 500 or 503 via handlers).
    """
    payload = body.content.encode("utf-8")
    result = pipeline.try_produce(caller.value, body.category, lambda: payload)
    if not result.success:
        raise result.error

    decision = result.rate_limit
    if (
        decision is not None
        and not decision.degraded
        and settings.app.rate_limit_include_headers
        and pipeline.rate_limiter.enabled
    ):
        response.headers.update(rate_limit_headers(decision))

    quota = None
    if result.quota is not None:
        quota = QuotaStatusResponse(**asdict(result.quota))
    return ProduceResponse(
        item_id=result.new_item_id,
        deleted_old_items=result.deleted_old_items,
        quota=quota,
    )


@router.get(
    "/items",
    response_model=ItemListResponse,
    dependencies=[Depends(enforce_rate_limit("status"))],
)
def list_items(pipeline: Pipeline, caller: Caller) -> ItemListResponse:
    """List the caller's items, oldest first (eviction order)."""
    items = [
        ItemResponse(
            id=item.id,
            created_at=item.created_at,
            size_bytes=item.size_bytes,
            sequence_no=item.sequence_no,
            category=item.category,
        )
        for item in pipeline.capacity_store.list_items(caller.value)
    ]
    return ItemListResponse(items=items, count=len(items))


@router.delete(
    "/items/{item_id}",
    response_model=DeleteItemResponse,
    dependencies=[Depends(enforce_rate_limit("standard"))],
)
def delete_item(item_id: str, pipeline: Pipeline, caller: Caller) -> DeleteItemResponse:
    outcome = pipeline.capacity_store.delete_item(caller.value, item_id)
    return DeleteItemResponse(
        item_id=outcome.item_id,
        deleted=outcome.evicted,
        blob_deleted=outcome.blob_deleted,
    )
