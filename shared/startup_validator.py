"""
Startup configuration validation module.

This module provides startup-time validation for critical configuration
to catch misconfigurations early (fail-fast) rather than at runtime when
a payment webhook or a booking request hits the broken path.

Usage:
    from shared.startup_validator import validate_startup_config, StartupValidationError

    async def main():
        try:
            await validate_startup_config()
        except StartupValidationError as e:
            logger.critical(f"Startup blocked: {e}")
            sys.exit(1)
"""

import logging
from datetime import time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)


class StartupValidationError(Exception):
    """Raised when critical startup validation fails."""

    pass


def _parse_hhmm(value: str) -> time | None:
    try:
        hour, minute = value.split(":")
        return time(int(hour), int(minute))
    except (ValueError, TypeError):
        return None


def validate_settings(settings: Settings) -> tuple[dict[str, bool], list[str]]:
    """
    Run all configuration checks against a Settings object.

    Returns:
        Tuple of ({check_name: passed}, [critical failure messages])
    """
    results: dict[str, bool] = {}
    critical_failures: list[str] = []

    # =========================================================================
    # TIER 1: CRITICAL (block startup if any fail)
    # =========================================================================

    # 1. Webhook authenticity: production must verify signatures
    if settings.is_production and not settings.STRIPE_WEBHOOK_SECRET:
        critical_failures.append(
            "STRIPE_WEBHOOK_SECRET is empty in production - webhook signatures "
            "cannot be verified"
        )
        results["stripe_webhook_secret"] = False
    else:
        results["stripe_webhook_secret"] = True

    if settings.is_production and settings.ALLOW_UNSIGNED_WEBHOOKS:
        critical_failures.append(
            "ALLOW_UNSIGNED_WEBHOOKS must not be enabled in production"
        )
        results["unsigned_webhooks_disabled"] = False
    else:
        results["unsigned_webhooks_disabled"] = True

    # 2. Business timezone must be resolvable
    try:
        ZoneInfo(settings.TIMEZONE)
        results["timezone"] = True
    except (ZoneInfoNotFoundError, ValueError):
        critical_failures.append(f"TIMEZONE '{settings.TIMEZONE}' is not a valid IANA zone")
        results["timezone"] = False

    # 3. Operating window
    open_time = _parse_hhmm(settings.BUSINESS_OPEN_TIME)
    close_time = _parse_hhmm(settings.BUSINESS_CLOSE_TIME)
    if open_time is None or close_time is None or open_time >= close_time:
        critical_failures.append(
            f"Invalid operating window {settings.BUSINESS_OPEN_TIME}-"
            f"{settings.BUSINESS_CLOSE_TIME} (expected HH:MM with open < close)"
        )
        results["operating_window"] = False
    else:
        results["operating_window"] = True

    if settings.SLOT_STEP_MINUTES <= 0:
        critical_failures.append("SLOT_STEP_MINUTES must be positive")
        results["slot_step"] = False
    else:
        results["slot_step"] = True

    # =========================================================================
    # TIER 2: IMPORTANT (warn but allow startup)
    # =========================================================================

    if settings.unsigned_webhooks_enabled:
        logger.warning(
            "  [WARN] Stripe webhooks accepted WITHOUT signature verification "
            f"(ENVIRONMENT={settings.ENVIRONMENT}) - local/test mode only"
        )

    if not settings.DATABASE_URL.startswith("postgresql+asyncpg://"):
        logger.warning(
            "DATABASE_URL should use asyncpg driver: postgresql+asyncpg://..."
        )
        results["database_url_format"] = False
    else:
        results["database_url_format"] = True

    if not settings.WHATSAPP_API_URL or not settings.WHATSAPP_API_TOKEN:
        logger.info("  [INFO] WhatsApp provider not configured - reminders will fail")
        results["whatsapp_configured"] = False
    else:
        results["whatsapp_configured"] = True

    return results, critical_failures


async def validate_startup_config() -> dict[str, bool]:
    """
    Validate all critical configuration at startup.

    Raises:
        StartupValidationError: If any CRITICAL check fails
    """
    results, critical_failures = validate_settings(get_settings())

    passed = sum(1 for v in results.values() if v)
    logger.info(f"Startup validation: {passed}/{len(results)} checks passed")

    if critical_failures:
        logger.critical("STARTUP BLOCKED - Critical configuration errors:")
        for i, failure in enumerate(critical_failures, 1):
            logger.critical(f"  {i}. {failure}")
        raise StartupValidationError(
            f"Critical startup validation failed ({len(critical_failures)} errors): "
            f"{'; '.join(critical_failures)}"
        )

    return results
