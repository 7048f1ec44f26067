from __future__ import annotations

from admission.api.routes.health import router as health_router
from admission.api.routes.items import router as items_router
from admission.api.routes.maintenance import router as maintenance_router
from admission.api.routes.quota import router as quota_router

__all__ = ["health_router", "items_router", "maintenance_router", "quota_router"]
