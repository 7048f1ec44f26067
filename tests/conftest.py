"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set here so settings built at import time see
test values instead of a developer's .env file.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

os.environ.setdefault("APP_MAINTENANCE_TOKEN", "test-maintenance-token")
os.environ.setdefault("APP_RATE_LIMIT_SWEEP_INTERVAL_SECONDS", "3600")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402

from admission.adapters.quota.in_memory import InMemoryQuotaStore  # noqa: E402
from admission.adapters.rate_limit.in_memory import InMemoryRateLimitStore  # noqa: E402
from admission.adapters.storage.in_memory import InMemoryBlobStore, InMemoryMetadataStore  # noqa: E402
from admission.services.admission_pipeline import AdmissionPipeline  # noqa: E402
from admission.services.capacity_store import CapacityPolicy, CapacityStore  # noqa: E402
from admission.services.owner_locks import OwnerLocks  # noqa: E402
from admission.services.quota_counter import QuotaCounter  # noqa: E402
from admission.services.rate_limiter import RateLimiter  # noqa: E402

# 2026-03-15 12:00:00 UTC
NOON_UTC = 1_773_576_000.0

ROUTES = {
    "standard": (60_000, 10),
    "produce": (60_000, 5),
    "status": (60_000, 30),
}


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=NOON_UTC)


@pytest.fixture
def rate_limiter(clock: Mock) -> RateLimiter:
    return RateLimiter(InMemoryRateLimitStore(), routes=ROUTES, clock=clock)


@pytest.fixture
def quota_counter(clock: Mock) -> QuotaCounter:
    return QuotaCounter(InMemoryQuotaStore(), limits={"generation": 10, "upload": -1}, clock=clock)


@pytest.fixture
def metadata_store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture
def blob_stores() -> dict[str, InMemoryBlobStore]:
    return {
        "private-images": InMemoryBlobStore(),
        "public-images": InMemoryBlobStore(),
        "images": InMemoryBlobStore(),
    }


@pytest.fixture
def capacity_store(
    metadata_store: InMemoryMetadataStore,
    blob_stores: dict[str, InMemoryBlobStore],
    clock: Mock,
) -> CapacityStore:
    policy = CapacityPolicy(
        {"free": 10, "premium": 100, "pro": -1},
        default_tier="free",
        owner_tiers={"user:pro-owner": "pro"},
    )
    return CapacityStore(
        metadata_store,
        blob_stores,
        policy,
        primary_location="private-images",
        legacy_locations=["private-images", "public-images", "images"],
        clock=clock,
    )


@pytest.fixture
def pipeline(
    rate_limiter: RateLimiter,
    quota_counter: QuotaCounter,
    capacity_store: CapacityStore,
) -> AdmissionPipeline:
    return AdmissionPipeline(
        rate_limiter,
        quota_counter,
        capacity_store,
        owner_locks=OwnerLocks(timeout_seconds=2.0),
    )
