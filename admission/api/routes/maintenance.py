from __future__ import annotations

import logging
import time
from typing import Annotated

from fastapi import APIRouter, Depends

from admission.core.auth import verify_maintenance_token
from admission.core.config import settings
from admission.core.container import get_pipeline
from admission.schemas.admission import CleanupResponse
from admission.services.admission_pipeline import AdmissionPipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Maintenance"], dependencies=[Depends(verify_maintenance_token)])


@router.post("/maintenance/cleanup", response_model=CleanupResponse)
def run_cleanup(pipeline: Annotated[AdmissionPipeline, Depends(get_pipeline)]) -> CleanupResponse:
    """Daily maintenance job, meant to be called by an external scheduler.

    Deletes quota records past the retention window, retries deletion of
    orphaned blobs and sweeps expired rate limit records.
    """
    start = time.perf_counter()

    deleted_quota_records = pipeline.quota_counter.cleanup(settings.quota.retention_days)
    cleared_orphans = pipeline.capacity_store.reconcile_orphans()
    swept = pipeline.rate_limiter.sweep(settings.app.rate_limit_sweep_grace_ms)

    execution_time_ms = round((time.perf_counter() - start) * 1000, 2)
    pending_orphans = len(pipeline.capacity_store.orphans)
    logger.info(
        "maintenance.cleanup_completed",
        extra={
            "deleted_quota_records": deleted_quota_records,
            "cleared_orphans": cleared_orphans,
            "pending_orphans": pending_orphans,
            "swept_rate_limit_keys": swept,
            "execution_time_ms": execution_time_ms,
        },
    )
    return CleanupResponse(
        deleted_quota_records=deleted_quota_records,
        cleared_orphans=cleared_orphans,
        pending_orphans=pending_orphans,
        swept_rate_limit_keys=swept,
        execution_time_ms=execution_time_ms,
    )
