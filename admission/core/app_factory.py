"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and the
background sweeper lifecycle) to keep it testable.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from admission.api.routes import health_router, items_router, maintenance_router, quota_router
from admission.core.config import settings
from admission.core.container import build_sweeper, get_pipeline
from admission.core.exception_handlers import setup_exception_handlers
from admission.core.logging import configure_logging
from admission.core.middleware import request_id_middleware
from admission.core.openapi import apply_openapi_customizations

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the rate limit sweeper on startup and stop it on shutdown."""
    # Tests may override the pipeline dependency; sweep whichever one serves requests.
    pipeline_provider = app.dependency_overrides.get(get_pipeline, get_pipeline)
    sweeper = build_sweeper(pipeline_provider(), settings)
    sweeper.start()
    app.state.sweeper = sweeper
    logger.info(
        "app.started",
        extra={"sweep_interval_s": settings.app.rate_limit_sweep_interval_seconds},
    )
    try:
        yield
    finally:
        sweeper.stop()
        logger.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Admission Control API",
        description=(
            "Guards item production with three layers: a per-identity, per-route "
            "fixed-window rate limit, a daily per-category quota with compensation "
            "on failure, and a per-owner storage cap that evicts the oldest items "
            "before each insert."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=lifespan,
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(items_router, prefix="/v1")
    app.include_router(quota_router, prefix="/v1")
    app.include_router(maintenance_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, identity header)
    apply_openapi_customizations(app)

    return app
