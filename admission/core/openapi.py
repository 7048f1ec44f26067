"""OpenAPI metadata and customization utilities.

Provides a helper to enrich the generated OpenAPI schema with:
- Tags metadata
- A bearer security scheme applied only to maintenance operations
- The ``X-User-Id`` header that selects the caller identity

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from admission.core.identity import USER_ID_HEADER

_TAGS = [
    {"name": "Items", "description": "Produce, list and delete stored items."},
    {"name": "Quota", "description": "Daily quota and storage capacity status."},
    {"name": "Maintenance", "description": "Scheduled cleanup jobs (token protected)."},
    {"name": "Health", "description": "Liveness and readiness checks."},
]


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security.

    - Injects components.securitySchemes for the maintenance bearer token
    - Marks ``/maintenance/`` operations as requiring it
    - Documents the identity header on every versioned operation
    - Adds tags metadata if not present
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "MaintenanceToken",
            {
                "type": "http",
                "scheme": "bearer",
                "description": "Shared token from APP_MAINTENANCE_TOKEN.",
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in _TAGS:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        identity_param = {
            "name": USER_ID_HEADER,
            "in": "header",
            "required": False,
            "description": "Authenticated user id; anonymous callers are keyed by client IP.",
            "schema": {"type": "string"},
        }

        paths = schema.get("paths", {})
        for path, methods in paths.items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if "/maintenance/" in path:
                    method_obj["security"] = [{"MaintenanceToken": []}]
                elif path.startswith("/v1/"):
                    params = method_obj.setdefault("parameters", [])
                    if not any(p.get("name") == USER_ID_HEADER for p in params):
                        params.append(dict(identity_param))

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
