"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


# Route presets: route name -> (window_ms, max requests per window)
DEFAULT_ROUTE_LIMITS: dict[str, tuple[int, int]] = {
    "strict": (60_000, 5),
    "standard": (60_000, 10),
    "lenient": (60_000, 30),
    "produce": (60_000, 5),
    "upload": (60_000, 3),
    "status": (60_000, 30),
}


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_quota_settings() -> "QuotaSettings":
    """Build quota settings from environment."""

    return QuotaSettings()  # type: ignore[call-arg]


def _build_capacity_settings() -> "CapacitySettings":
    """Build capacity settings from environment."""

    return CapacitySettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    """Build logging settings from environment."""

    return LogSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration (HTTP surface and rate limiting)."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Enable per-identity, per-route request rate limiting",
    )
    rate_limit_routes: dict[str, tuple[int, int]] = Field(
        default_factory=lambda: dict(DEFAULT_ROUTE_LIMITS),
        description="Route presets as JSON: {route: [window_ms, max_requests]}",
    )
    rate_limit_default_route: str = Field(
        "standard",
        description="Preset used for routes without an explicit entry",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )
    rate_limit_sweep_interval_seconds: float = Field(
        300.0,
        description="Interval between sweeps of expired rate limit records",
        gt=0,
    )
    rate_limit_sweep_grace_ms: int = Field(
        1_000,
        description="Safety margin added to reset_at before a record is swept",
        ge=0,
    )

    maintenance_token: str | None = Field(
        None,
        description="Bearer token required by the maintenance cleanup endpoint",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )

    @field_validator("rate_limit_routes")
    @classmethod
    def _validate_routes(cls, value: dict[str, tuple[int, int]]) -> dict[str, tuple[int, int]]:
        for route, (window_ms, max_requests) in value.items():
            if window_ms < 1 or max_requests < 1:
                raise ValueError(f"invalid rate limit preset for route '{route}'")
        return value


class QuotaSettings(BaseSettings):
    """Calendar-day usage quota configuration."""

    daily_limits: dict[str, int] = Field(
        default_factory=lambda: {"generation": 10},
        description="Per-category daily limits as JSON; -1 disables the limit",
    )
    timezone: str = Field(
        "UTC",
        description="IANA timezone that defines the calendar day boundary",
    )
    retention_days: int = Field(
        7,
        description="Quota records older than this many days are deleted by cleanup",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="QUOTA_",
        case_sensitive=False,
    )


class CapacitySettings(BaseSettings):
    """Per-owner stored item capacity configuration."""

    tier_limits: dict[str, int] = Field(
        default_factory=lambda: {"free": 10, "premium": 100, "pro": -1},
        description="Max stored items per owner tier as JSON; -1 means unlimited",
    )
    default_tier: str = Field(
        "free",
        description="Tier applied to owners without an explicit override",
    )
    owner_tiers: dict[str, str] = Field(
        default_factory=dict,
        description="Owner id -> tier overrides as JSON",
    )
    primary_location: str = Field(
        "private-images",
        description="Blob location new items are written to",
    )
    legacy_locations: list[str] = Field(
        default_factory=lambda: ["private-images", "public-images", "images"],
        description="Locations probed for items written before locations were recorded",
    )
    blob_backend: str = Field(
        "memory",
        description="Blob store backend: memory or filesystem",
    )
    blob_root: str = Field(
        "data/blobs",
        description="Root directory for the filesystem blob backend",
    )
    lock_timeout_seconds: float = Field(
        10.0,
        description="Max time to wait for an owner's capacity lock",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="CAPACITY_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log output: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file at this size (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    quota: QuotaSettings = Field(default_factory=_build_quota_settings)
    capacity: CapacitySettings = Field(default_factory=_build_capacity_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
