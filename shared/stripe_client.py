"""
Stripe API client for checkout, lookup and refund operations.

The Stripe SDK is synchronous; every call runs in a worker thread and is
bounded by GATEWAY_TIMEOUT_SECONDS. Network failures, timeouts and Stripe
server errors surface as GatewayUnavailableError so callers can tell a
retryable outage apart from a rejected request (other stripe.StripeError).

The module itself is the default payment gateway passed to reconciliation:

    from shared import stripe_client
    await reconcile_event(session, event, gateway=stripe_client)
"""

import asyncio
import logging
from typing import Any, Callable

import stripe

from booking.errors import GatewayUnavailableError
from shared.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# Initialize Stripe with API key (use secret key for server-side operations)
stripe.api_key = settings.STRIPE_SECRET_KEY
stripe.max_network_retries = 2

# Checkout session statuses that can still be paid
REUSABLE_SESSION_STATUSES = {"open"}


def _to_dict(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


async def _call_stripe(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a blocking Stripe SDK call with a bounded timeout."""
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args, **kwargs),
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as e:
        logger.error(
            f"Stripe call {getattr(func, '__qualname__', func)} timed out after "
            f"{settings.GATEWAY_TIMEOUT_SECONDS}s"
        )
        raise GatewayUnavailableError(details={"reason": "timeout"}) from e
    except (stripe.APIConnectionError, stripe.RateLimitError) as e:
        logger.error(f"Stripe unreachable: {type(e).__name__}: {e}")
        raise GatewayUnavailableError(details={"reason": type(e).__name__}) from e
    except stripe.APIError as e:
        # 5xx from Stripe
        logger.error(f"Stripe server error: {e}")
        raise GatewayUnavailableError(details={"reason": "api_error"}) from e


async def find_session_by_payment_intent(payment_intent_id: str) -> dict[str, Any] | None:
    """
    Find the checkout session that created a payment intent.

    Returns:
        Checkout session dict, or None when no session references the intent
    """
    result = await _call_stripe(
        stripe.checkout.Session.list,
        payment_intent=payment_intent_id,
        limit=1,
    )
    sessions = _to_dict(result).get("data") or []
    if not sessions:
        logger.info(f"No checkout session found for payment_intent {payment_intent_id}")
        return None
    return sessions[0]


async def retrieve_session(session_id: str) -> dict[str, Any]:
    """Retrieve a checkout session with its payment intent expanded."""
    checkout_session = await _call_stripe(
        stripe.checkout.Session.retrieve,
        session_id,
        expand=["payment_intent"],
    )
    return _to_dict(checkout_session)


async def create_checkout_session(
    appointment_id: str,
    customer_id: str,
    amount_cents: int,
    title: str,
    description: str,
    kind: str,
    customer_email: str | None = None,
) -> dict[str, Any]:
    """
    Create a Stripe Checkout Session for an appointment payment.

    Uses ad-hoc price_data so no permanent products are created per booking.
    The appointment id is carried both as metadata (on the session and the
    payment intent) and as client_reference_id.

    Returns:
        dict with id, url, status, payment_intent and metadata

    Raises:
        GatewayUnavailableError: Stripe unreachable
        stripe.StripeError: Request rejected by Stripe
    """
    metadata = {
        "appointment_id": str(appointment_id),
        "customer_id": str(customer_id),
        "kind": kind,
    }

    params: dict[str, Any] = {
        "mode": "payment",
        "line_items": [
            {
                "price_data": {
                    "currency": settings.STRIPE_CURRENCY,
                    "unit_amount": amount_cents,
                    "product_data": {
                        "name": title,
                        "description": description,
                    },
                },
                "quantity": 1,
            }
        ],
        "metadata": metadata,
        "payment_intent_data": {"metadata": metadata},
        "client_reference_id": str(appointment_id),
        "success_url": f"{settings.SITE_URL}/success?ref={appointment_id}",
        "cancel_url": f"{settings.SITE_URL}/success?ref={appointment_id}",
    }
    if customer_email:
        params["customer_email"] = customer_email

    logger.info(
        f"Creating Stripe checkout for appointment {appointment_id}: "
        f"kind={kind} amount={amount_cents} {settings.STRIPE_CURRENCY}"
    )
    checkout_session = _to_dict(await _call_stripe(stripe.checkout.Session.create, **params))
    logger.info(f"Checkout session created: {checkout_session.get('id')}")
    return checkout_session


async def refund_payment(payment_intent_id: str, amount_cents: int | None = None) -> dict[str, Any]:
    """
    Refund a payment intent, fully or partially.

    Raises:
        GatewayUnavailableError: Stripe unreachable
        stripe.StripeError: Refund rejected (e.g. already refunded)
    """
    params: dict[str, Any] = {"payment_intent": payment_intent_id}
    if amount_cents:
        params["amount"] = amount_cents

    logger.info(f"Refunding payment_intent {payment_intent_id}: amount={amount_cents or 'full'}")
    refund = await _call_stripe(stripe.Refund.create, **params)
    return _to_dict(refund)
