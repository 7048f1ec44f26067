"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- AppError subclasses → appropriate HTTP status (400, 403, 404, 429, 500, 503)
- Throttling errors carry Retry-After / X-RateLimit-* headers
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

import logging
from fastapi import Request
from fastapi.responses import JSONResponse

from admission.core.config import settings
from admission.core.errors import (
    AppError,
    AuthenticationAppError,
    CapacityExceededError,
    NotFoundAppError,
    ProductionFailedError,
    QuotaExceededError,
    RateLimitedError,
    StoreUnavailableError,
    ValidationAppError,
)
from admission.core.logging import get_request_id

logger = logging.getLogger(__name__)

# Checked in order; first match wins.
_STATUS_BY_ERROR: tuple[tuple[type[AppError], int], ...] = (
    (ValidationAppError, 400),
    (AuthenticationAppError, 403),
    (NotFoundAppError, 404),
    (RateLimitedError, 429),
    (QuotaExceededError, 429),
    (CapacityExceededError, 500),
    (ProductionFailedError, 500),
    (StoreUnavailableError, 503),
)


def status_for(exc: AppError) -> int:
    """HTTP status for a domain error (400 when no mapping matches)."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


def _throttle_headers(exc: AppError) -> dict[str, str]:
    if not settings.app.rate_limit_include_headers:
        return {}

    details = exc.details or {}
    headers: dict[str, str] = {}
    if details.get("limit") is not None:
        headers["X-RateLimit-Limit"] = str(details["limit"])
    if details.get("reset_at") is not None:
        headers["X-RateLimit-Reset"] = str(int(details["reset_at"]) // 1000)
    headers["X-RateLimit-Remaining"] = "0"

    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(exc.retry_after)
    elif isinstance(exc, QuotaExceededError):
        headers["X-RateLimit-Policy"] = "daily-quota"
    return headers


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    All responses include:
    - error.code: Machine-readable error code
    - error.message: Human-readable message
    - error.request_id: For distributed tracing
    - error.details: Optional structured context

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = status_for(exc)

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        }
    )

    # Build response with consistent structure
    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }

    # Store failure causes stay in the logs only
    if exc.details:
        details = dict(exc.details)
        if status_code >= 500:
            details.pop("cause", None)
        error_content["details"] = details

    headers = None
    if isinstance(exc, (RateLimitedError, QuotaExceededError)):
        headers = _throttle_headers(exc) or None

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=headers,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Catches any exception not handled by specific handlers.
    Logs detailed information for debugging while returning generic message.
    Prevents information leakage (no stack traces to client).

    Args:
        request: FastAPI request object.
        exc: Exception instance (unexpected).

    Returns:
        JSONResponse with generic error (no implementation details leaked).
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        }
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Must be called during app initialization, before route registration.
    Order matters: specific handlers registered before general fallback.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
