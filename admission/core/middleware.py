"""HTTP middleware for request ID propagation and caller correlation.

The middleware:
- Accepts incoming X-Request-ID header or generates a UUID
- Resolves the caller identity once and keeps it on ``request.state``
- Binds request_id and the hashed caller to contextvars for log correlation
- Injects request_id and duration into response headers
- Clears context after request completion to prevent context leaks

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from admission.core.config import settings
from admission.core.identity import resolve_identity
from admission.core.logging import clear_request_context, set_caller_hash, set_request_id
from admission.services.rate_limiter import hash_identity


async def request_id_middleware(request: Request, call_next) -> Response:
    """HTTP middleware for request ID generation and propagation.

    If the client provides an X-Request-ID header (configurable via
    LOG_REQUEST_ID_HEADER), that value is used. Otherwise, a new UUID is
    generated. Every log line emitted while the request is in flight carries
    the request id and a hash of the caller identity, never the raw value.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The response from the next handler with request_id and
            duration headers added.

    Example:
        >>> # Request arrives with custom ID
        >>> # Headers: {"X-Request-ID": "req-abc-123"}
        >>> # Response includes:
        >>> # {"X-Request-ID": "req-abc-123", "X-Request-Duration-ms": "45.67"}
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    identity = resolve_identity(request)
    request.state.identity = identity

    set_request_id(request_id)
    set_caller_hash(hash_identity(identity.value))
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_context()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
