"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from admission.core.config import DEFAULT_ROUTE_LIMITS, AppSettings, CapacitySettings, QuotaSettings


def test_defaults() -> None:
    app = AppSettings()

    assert app.rate_limit_routes == DEFAULT_ROUTE_LIMITS
    assert app.rate_limit_default_route == "standard"
    assert QuotaSettings().daily_limits == {"generation": 10}
    assert CapacitySettings().tier_limits == {"free": 10, "premium": 100, "pro": -1}


def test_route_presets_parse_from_json(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_RATE_LIMIT_ROUTES", '{"produce": [30000, 2], "standard": [60000, 10]}')

    assert AppSettings().rate_limit_routes == {"produce": (30_000, 2), "standard": (60_000, 10)}


def test_invalid_route_preset_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_RATE_LIMIT_ROUTES", '{"produce": [0, 2]}')

    with pytest.raises(ValidationError):
        AppSettings()


def test_quota_and_capacity_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QUOTA_DAILY_LIMITS", '{"generation": 3, "upload": -1}')
    monkeypatch.setenv("QUOTA_TIMEZONE", "Asia/Tokyo")
    monkeypatch.setenv("CAPACITY_OWNER_TIERS", '{"user:alice": "pro"}')

    quota = QuotaSettings()
    capacity = CapacitySettings()

    assert quota.daily_limits == {"generation": 3, "upload": -1}
    assert quota.timezone == "Asia/Tokyo"
    assert capacity.owner_tiers == {"user:alice": "pro"}
