"""Middleware for webhook signature validation."""

import json
import logging
from typing import Any

import stripe
from fastapi import HTTPException, Request
from stripe import SignatureVerificationError

from shared.config import get_settings

logger = logging.getLogger(__name__)


def _parse_event(body: bytes) -> dict[str, Any]:
    try:
        event = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(f"Stripe webhook body is not valid JSON: {e}")
        raise HTTPException(status_code=400, detail="Invalid JSON body") from e

    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid event payload")
    return event


async def validate_stripe_signature(request: Request) -> dict[str, Any]:
    """
    Validate Stripe webhook signature and parse event.

    With STRIPE_WEBHOOK_SECRET set, the Stripe-Signature header is verified
    against the raw body. Without a secret, the body is accepted only when
    unsigned webhooks are explicitly enabled outside production.

    Args:
        request: FastAPI request object

    Returns:
        Parsed Stripe event dict

    Raises:
        HTTPException: 401 if signature verification fails or is unavailable,
            400 if the body is not a JSON object
    """
    settings = get_settings()
    body = await request.body()

    if not settings.STRIPE_WEBHOOK_SECRET:
        if not settings.unsigned_webhooks_enabled:
            logger.error("Stripe webhook rejected: STRIPE_WEBHOOK_SECRET not configured")
            raise HTTPException(status_code=401, detail="Invalid Stripe signature")

        logger.warning("Accepting unsigned Stripe webhook (ALLOW_UNSIGNED_WEBHOOKS)")
        return _parse_event(body)

    signature_header: str | None = request.headers.get("Stripe-Signature")

    if not signature_header:
        logger.warning("Stripe webhook received without signature header")
        raise HTTPException(status_code=401, detail="Invalid Stripe signature")

    try:
        stripe.WebhookSignature.verify_header(
            body.decode("utf-8"),
            signature_header,
            settings.STRIPE_WEBHOOK_SECRET,
        )
    except SignatureVerificationError as e:
        logger.warning(f"Stripe signature verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid Stripe signature") from e
    except UnicodeDecodeError as e:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from e

    event = _parse_event(body)
    logger.debug(f"Stripe signature validated: event_type={event.get('type')}")
    return event
