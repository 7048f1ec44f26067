"""Process-wide wiring of stores and services.

The pipeline is cached in-module so counters and stored items survive across
requests. Tests build their own pipeline with ``build_pipeline`` and either
inject it through FastAPI dependency overrides or call ``reset_pipeline``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from admission.adapters.quota.in_memory import InMemoryQuotaStore
from admission.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from admission.adapters.storage.base import AbstractBlobStore
from admission.adapters.storage.filesystem import FileSystemBlobStore
from admission.adapters.storage.in_memory import InMemoryBlobStore, InMemoryMetadataStore
from admission.core.clock import Clock, system_clock
from admission.core.config import CapacitySettings, Settings, settings
from admission.services.admission_pipeline import AdmissionPipeline
from admission.services.capacity_store import CapacityPolicy, CapacityStore
from admission.services.owner_locks import OwnerLocks
from admission.services.quota_counter import QuotaCounter
from admission.services.rate_limiter import RateLimiter
from admission.services.sweeper import RateLimitSweeper

logger = logging.getLogger(__name__)

_pipeline: AdmissionPipeline | None = None


def build_blob_stores(cfg: CapacitySettings) -> dict[str, AbstractBlobStore]:
    """One blob store per configured location (primary plus legacy).

    Raises:
        ValueError: If the configured backend is unknown.
    """
    locations = dict.fromkeys([cfg.primary_location, *cfg.legacy_locations])
    backend = cfg.blob_backend.lower()
    if backend == "memory":
        return {location: InMemoryBlobStore() for location in locations}
    if backend == "filesystem":
        root = Path(cfg.blob_root)
        return {location: FileSystemBlobStore(root / location) for location in locations}
    raise ValueError(f"unknown blob backend '{cfg.blob_backend}'")


def build_pipeline(cfg: Settings = settings, *, clock: Clock = system_clock) -> AdmissionPipeline:
    """Construct a pipeline with fresh in-memory stores from settings."""
    rate_limiter = RateLimiter(
        InMemoryRateLimitStore(),
        routes=cfg.app.rate_limit_routes,
        default_route=cfg.app.rate_limit_default_route,
        enabled=cfg.app.rate_limit_enabled,
        clock=clock,
    )
    quota_counter = QuotaCounter(
        InMemoryQuotaStore(),
        limits=cfg.quota.daily_limits,
        timezone=cfg.quota.timezone,
        clock=clock,
    )
    policy = CapacityPolicy(
        cfg.capacity.tier_limits,
        default_tier=cfg.capacity.default_tier,
        owner_tiers=cfg.capacity.owner_tiers,
    )
    capacity_store = CapacityStore(
        InMemoryMetadataStore(),
        build_blob_stores(cfg.capacity),
        policy,
        primary_location=cfg.capacity.primary_location,
        legacy_locations=cfg.capacity.legacy_locations,
        clock=clock,
    )
    return AdmissionPipeline(
        rate_limiter,
        quota_counter,
        capacity_store,
        owner_locks=OwnerLocks(cfg.capacity.lock_timeout_seconds),
    )


def build_sweeper(pipeline: AdmissionPipeline, cfg: Settings = settings) -> RateLimitSweeper:
    return RateLimitSweeper(
        pipeline.rate_limiter,
        interval_seconds=cfg.app.rate_limit_sweep_interval_seconds,
        grace_ms=cfg.app.rate_limit_sweep_grace_ms,
    )


def get_pipeline() -> AdmissionPipeline:
    """Return the process-wide pipeline, building it on first use."""
    global _pipeline

    if _pipeline is None:
        _pipeline = build_pipeline(settings)
        logger.info(
            "pipeline.built",
            extra={
                "rate_limit_enabled": settings.app.rate_limit_enabled,
                "blob_backend": settings.capacity.blob_backend,
                "quota_categories": sorted(settings.quota.daily_limits),
            },
        )
    return _pipeline


def reset_pipeline() -> None:
    """Drop the cached pipeline (and all in-memory state)."""
    global _pipeline
    _pipeline = None
