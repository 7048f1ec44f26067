"""Structured logging for the admission service.

Every record is emitted as one JSON object carrying the request id and the
hashed caller bound by the middleware. Extras are scrubbed before output:

- secrets (bearer and maintenance tokens, cookies) become ``[REDACTED]``
- raw identities (user ids, client IPs) are replaced by the same short
  SHA-256 hash the services log as ``*_hash``, so lines stay joinable
- item payloads and blob paths are reduced to ``[OMITTED]``
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Mapping

from admission.core.config import LogSettings, settings
from admission.services.rate_limiter import hash_identity

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
_caller_hash_var: ContextVar[str | None] = ContextVar("caller_hash", default=None)

SECRET_KEYS = frozenset(
    {"authorization", "token", "maintenance_token", "secret", "password", "cookie", "set-cookie"}
)
IDENTITY_KEYS = frozenset(
    {
        "x-user-id",
        "identity",
        "owner",
        "owner_id",
        "user_id",
        "ip",
        "ip_address",
        "client_ip",
        "x-forwarded-for",
        "x-real-ip",
        "cf-connecting-ip",
    }
)
PAYLOAD_KEYS = frozenset({"data", "content", "blob_ref"})

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(vars(LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    """Request id bound to the current context, if any."""

    return _request_id_var.get()


def set_caller_hash(caller_hash: str | None) -> None:
    """Bind the hashed caller identity to subsequent logs in this context."""

    _caller_hash_var.set(caller_hash)


def get_caller_hash() -> str | None:
    return _caller_hash_var.get()


def clear_request_context() -> None:
    _request_id_var.set(None)
    _caller_hash_var.set(None)


def scrub(key: str, value: Any) -> Any:
    """Return the loggable form of ``value`` stored under ``key``.

    Examples:
        >>> scrub("maintenance_token", "abc")
        '[REDACTED]'
        >>> scrub("owner_id", "user:alice").startswith("sha256:")
        True
        >>> scrub("headers", {"cookie": "x", "accept": "*/*"})
        {'cookie': '[REDACTED]', 'accept': '*/*'}
    """
    name = key.lower()
    if name in SECRET_KEYS:
        return "[REDACTED]"
    if name in PAYLOAD_KEYS:
        return "[OMITTED]"
    if name in IDENTITY_KEYS:
        return f"sha256:{hash_identity(str(value))}" if value else value
    if isinstance(value, Mapping):
        return {k: scrub(str(k), v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [scrub(key, v) for v in value]
    return value


def record_extras(record: LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class RequestContextFilter(logging.Filter):
    """Attach request_id and caller_hash from context when absent on the record."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        if getattr(record, "caller_hash", None) is None:
            record.caller_hash = get_caller_hash()
        return True


class SensitiveDataFilter(logging.Filter):
    """Scrub ``extra`` fields in place so every formatter sees safe values."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in record_extras(record).items():
            setattr(record, key, scrub(key, value))
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record; expects SensitiveDataFilter upstream."""

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            {key: value for key, value in record_extras(record).items() if value is not None}
        )
        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_type"] = record.exc_info[0].__name__
            payload["exc_message"] = str(record.exc_info[1])
        return json.dumps(payload, default=str)


def _build_handler(cfg: LogSettings) -> logging.Handler:
    if cfg.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    path = Path(cfg.file_path or "logs/admission.log")
    path.parent.mkdir(parents=True, exist_ok=True)
    if cfg.max_bytes:
        return RotatingFileHandler(
            path, maxBytes=cfg.max_bytes, backupCount=cfg.backup_count, encoding="utf-8"
        )
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install the service handler on the root logger.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
    """

    cfg = log_settings or settings.log
    handler = _build_handler(cfg)
    handler.addFilter(RequestContextFilter())
    handler.addFilter(SensitiveDataFilter())
    if cfg.format.lower() == "plain":
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s")
        )
    else:
        handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))
