"""Unit tests for startup configuration validation."""

from unittest.mock import patch

import pytest

from shared.config import Settings
from shared.startup_validator import (
    StartupValidationError,
    validate_settings,
    validate_startup_config,
)


def make_settings(**overrides) -> Settings:
    values = {
        "ENVIRONMENT": "development",
        "STRIPE_WEBHOOK_SECRET": "whsec_test",
        "ALLOW_UNSIGNED_WEBHOOKS": False,
    }
    values.update(overrides)
    return Settings(**values)


class TestValidateSettings:
    def test_defaults_pass(self):
        results, failures = validate_settings(make_settings())
        assert failures == []
        assert results["timezone"] is True
        assert results["operating_window"] is True

    def test_production_requires_webhook_secret(self):
        _, failures = validate_settings(make_settings(ENVIRONMENT="production", STRIPE_WEBHOOK_SECRET=""))
        assert any("STRIPE_WEBHOOK_SECRET" in f for f in failures)

    def test_production_forbids_unsigned_mode(self):
        _, failures = validate_settings(
            make_settings(ENVIRONMENT="production", ALLOW_UNSIGNED_WEBHOOKS=True)
        )
        assert any("ALLOW_UNSIGNED_WEBHOOKS" in f for f in failures)

    def test_invalid_timezone(self):
        _, failures = validate_settings(make_settings(TIMEZONE="Mars/Olympus"))
        assert any("TIMEZONE" in f for f in failures)

    @pytest.mark.parametrize("open_time,close_time", [("18:00", "09:00"), ("9h", "18:00")])
    def test_invalid_operating_window(self, open_time, close_time):
        _, failures = validate_settings(
            make_settings(BUSINESS_OPEN_TIME=open_time, BUSINESS_CLOSE_TIME=close_time)
        )
        assert any("operating window" in f for f in failures)


class TestUnsignedWebhooksFlag:
    def test_enabled_only_without_secret_outside_production(self):
        assert make_settings(STRIPE_WEBHOOK_SECRET="", ALLOW_UNSIGNED_WEBHOOKS=True).unsigned_webhooks_enabled
        assert not make_settings(ALLOW_UNSIGNED_WEBHOOKS=True).unsigned_webhooks_enabled
        assert not make_settings(
            ENVIRONMENT="production", STRIPE_WEBHOOK_SECRET="", ALLOW_UNSIGNED_WEBHOOKS=True
        ).unsigned_webhooks_enabled


class TestValidateStartupConfig:
    @pytest.mark.asyncio
    async def test_critical_failure_blocks_startup(self):
        bad = make_settings(ENVIRONMENT="production", STRIPE_WEBHOOK_SECRET="")

        with patch("shared.startup_validator.get_settings", return_value=bad):
            with pytest.raises(StartupValidationError):
                await validate_startup_config()

    @pytest.mark.asyncio
    async def test_valid_config_returns_results(self):
        with patch("shared.startup_validator.get_settings", return_value=make_settings()):
            results = await validate_startup_config()

        assert all(
            results[key] for key in ("stripe_webhook_secret", "timezone", "operating_window")
        )
