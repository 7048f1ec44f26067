"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, error format, throttling headers and no
information leakage.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from admission.core.errors import (
    AppError,
    AuthenticationAppError,
    CapacityExceededError,
    NotFoundAppError,
    ProductionFailedError,
    QuotaExceededError,
    RateLimitedError,
    ValidationAppError,
    store_unavailable,
)
from admission.core.exception_handlers import setup_exception_handlers, status_for


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    """Create test client with handlers enabled."""
    return TestClient(app_with_handlers, raise_server_exceptions=False)


def _raise_at(app: FastAPI, path: str, exc: Exception) -> None:
    @app.get(path)
    async def endpoint():
        raise exc


class TestStatusMapping:
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (ValidationAppError(code="v", message="m"), 400),
            (AuthenticationAppError(code="a", message="m"), 403),
            (NotFoundAppError(code="n", message="m"), 404),
            (RateLimitedError(code="r", message="m"), 429),
            (QuotaExceededError(code="q", message="m"), 429),
            (CapacityExceededError(code="c", message="m"), 500),
            (ProductionFailedError(code="p", message="m"), 500),
            (store_unavailable("quota", "down"), 503),
            (AppError(code="base", message="m"), 400),
        ],
    )
    def test_status_for(self, error: AppError, expected: int):
        assert status_for(error) == expected


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    def test_validation_error_returns_400(self, client: TestClient, app_with_handlers: FastAPI):
        _raise_at(
            app_with_handlers,
            "/test-validation",
            ValidationAppError(code="unknown_quota_category", message="Unknown quota category 'video'"),
        )

        response = client.get("/test-validation")

        assert response.status_code == 400
        data = response.json()
        assert data["error"]["code"] == "unknown_quota_category"
        assert data["error"]["message"] == "Unknown quota category 'video'"
        assert "request_id" in data["error"]

    def test_rate_limited_error_sets_retry_headers(self, client: TestClient, app_with_handlers: FastAPI):
        _raise_at(
            app_with_handlers,
            "/test-rate",
            RateLimitedError(
                code="rate_limited",
                message="Rate limit exceeded. Try again later.",
                details={"limit": 5, "remaining": 0, "reset_at": 1_700_000_060_000, "retry_after": 42},
            ),
        )

        response = client.get("/test-rate")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "42"
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.headers["X-RateLimit-Reset"] == "1700000060"
        assert response.json()["error"]["details"]["retry_after"] == 42

    def test_quota_error_sets_policy_header(self, client: TestClient, app_with_handlers: FastAPI):
        _raise_at(
            app_with_handlers,
            "/test-quota",
            QuotaExceededError(
                code="quota_exceeded",
                message="Daily limit reached",
                details={"category": "generation", "limit": 10, "current": 10, "reset_at": 1_773_619_200_000},
            ),
        )

        response = client.get("/test-quota")

        assert response.status_code == 429
        assert response.headers["X-RateLimit-Policy"] == "daily-quota"
        assert response.headers["X-RateLimit-Reset"] == "1773619200"
        assert "Retry-After" not in response.headers

    def test_store_unavailable_returns_503_without_cause(self, client: TestClient, app_with_handlers: FastAPI):
        _raise_at(app_with_handlers, "/test-store", store_unavailable("quota", ConnectionError("10.0.0.5:5432 refused")))

        response = client.get("/test-store")

        assert response.status_code == 503
        body = response.text
        assert "10.0.0.5" not in body
        assert response.json()["error"]["details"]["stage"] == "quota"

    def test_capacity_error_returns_500(self, client: TestClient, app_with_handlers: FastAPI):
        _raise_at(
            app_with_handlers,
            "/test-capacity",
            CapacityExceededError(code="capacity_exceeded", message="cap", details={"limit": 10, "current": 10}),
        )

        response = client.get("/test-capacity")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "capacity_exceeded"

    def test_error_response_format_is_consistent(self, client: TestClient, app_with_handlers: FastAPI):
        _raise_at(app_with_handlers, "/test-format", NotFoundAppError(code="item_not_found", message="Item not found"))

        response = client.get("/test-format")
        data = response.json()

        assert response.status_code == 404
        assert set(data["error"]) >= {"code", "message", "request_id"}


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_unexpected_exception_handler_registered(self, app_with_handlers: FastAPI):
        assert Exception in app_with_handlers.exception_handlers

    def test_general_exception_handler_logic(self):
        """Verify general_exception_handler returns correct structure."""
        from admission.core.exception_handlers import general_exception_handler

        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = RuntimeError("Unexpected error: database connection failed")
        response = asyncio.run(general_exception_handler(request, exc))

        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        data = json.loads(response_body.decode())
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        assert "database connection" not in data["error"]["message"]
        assert "request_id" in data["error"]

    def test_general_exception_handler_never_leaks_stack_trace(self):
        from admission.core.exception_handlers import general_exception_handler

        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = ValueError("Test error with details")
        response = asyncio.run(general_exception_handler(request, exc))

        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        response_text = response_body.decode()
        assert "Traceback" not in response_text
        assert "File \"" not in response_text
        assert "ValueError" not in response_text


class TestErrorHandlerIntegration:
    """Integration tests for exception handler setup."""

    def test_setup_exception_handlers_registers_handlers(self, app_with_handlers: FastAPI):
        assert AppError in app_with_handlers.exception_handlers
        assert Exception in app_with_handlers.exception_handlers

    def test_multiple_handler_setups_does_not_fail(self):
        app = FastAPI()

        setup_exception_handlers(app)
        setup_exception_handlers(app)

        assert AppError in app.exception_handlers
