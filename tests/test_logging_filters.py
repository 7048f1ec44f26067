"""Tests for sensitive data filtering and context propagation in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from admission.core.logging import (
    JsonFormatter,
    RequestContextFilter,
    SensitiveDataFilter,
    clear_request_context,
    set_caller_hash,
    set_request_id,
)
from admission.services.rate_limiter import hash_identity


@pytest.fixture
def captured():
    """Logger wired like configure_logging, writing JSON into a buffer."""

    logger = logging.getLogger("test_admission_logging")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestContextFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    yield logger, stream

    logger.handlers.clear()
    clear_request_context()


def test_sensitive_filter_redacts_tokens(captured):
    """Ensure bearer tokens and the maintenance token never reach the output."""

    logger, stream = captured
    logger.info(
        "maintenance_event",
        extra={
            "authorization": "Bearer s3cret",
            "maintenance_token": "another-secret",
            "safe_field": "visible",
        },
    )

    output = stream.getvalue()

    assert "s3cret" not in output
    assert "another-secret" not in output
    assert "[REDACTED]" in output
    assert "visible" in output


def test_sensitive_filter_redacts_raw_identities(captured):
    """Raw owner ids and client IPs are redacted; hashes pass through."""

    logger, stream = captured
    logger.info(
        "admission_event",
        extra={
            "owner_id": "user:alice@example.com",
            "client_ip": "203.0.113.7",
            "owner_hash": "4f1c2a9be01d7c33",
        },
    )

    output = stream.getvalue()

    assert "alice@example.com" not in output
    assert "203.0.113.7" not in output
    assert "4f1c2a9be01d7c33" in output


def test_sensitive_filter_allows_safe_fields(captured):
    """Verify safe fields pass through unmodified."""

    logger, stream = captured
    logger.info(
        "safe_event",
        extra={
            "request_id": "req-123",
            "route": "produce",
            "remaining": 4,
            "degraded": False,
        },
    )

    output = stream.getvalue()

    assert "req-123" in output
    assert "produce" in output
    assert "[REDACTED]" not in output


def test_sensitive_filter_redacts_nested_dicts(captured):
    """Ensure nested sensitive fields are redacted."""

    logger, stream = captured
    logger.info(
        "nested_event",
        extra={
            "headers": {
                "x-user-id": "alice",
                "user-agent": "pytest",
            },
        },
    )

    output = stream.getvalue()

    assert "alice" not in output
    assert "pytest" in output


def test_context_filter_attaches_request_id_and_caller(captured):
    logger, stream = captured
    set_request_id("req-ctx-1")
    set_caller_hash("0123456789abcdef")

    logger.info("ctx_event")

    record = json.loads(stream.getvalue())
    assert record["request_id"] == "req-ctx-1"
    assert record["caller_hash"] == "0123456789abcdef"
    assert record["message"] == "ctx_event"
    assert record["level"] == "info"


def test_identities_are_hashed_like_service_fields(captured):
    """A raw owner id logs as the same hash the services emit as owner_hash."""

    logger, stream = captured
    logger.info("evicted", extra={"owner_id": "user:alice", "data": b"\x89PNG"})

    record = json.loads(stream.getvalue())
    assert record["owner_id"] == f"sha256:{hash_identity('user:alice')}"
    assert record["data"] == "[OMITTED]"


def test_exception_type_and_message_are_logged(captured):
    logger, stream = captured
    try:
        raise ConnectionError("quota store down")
    except ConnectionError:
        logger.exception("store_failure")

    record = json.loads(stream.getvalue())
    assert record["exc_type"] == "ConnectionError"
    assert record["exc_message"] == "quota store down"
