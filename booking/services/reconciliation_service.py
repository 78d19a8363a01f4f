"""
Payment reconciliation - maps Stripe webhook events onto payment and
appointment state.

Stages (ingestion lives in api/routes/stripe.py):
1. record_webhook_event: append the raw event to the webhook log
   (best-effort, duplicates ignored)
2. classify_event: event type -> PaymentClassification, or None (ignored)
3. resolve_references: event -> (checkout session id, appointment id),
   asking the gateway for the parent checkout session when needed
4. reconcile_event: update the Payment record and, on approval, flip the
   appointment pending -> confirmed and enqueue reminders

Delivery may be duplicated or out of order. Non-approved classifications
never touch the appointment status, and only the call that performed the
pending -> confirmed flip enqueues reminders, so replaying an event is a
no-op for the appointment.
"""

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from booking.services.appointment_service import confirm_if_pending
from booking.services.reminder_service import enqueue_default_reminders
from database.models import Payment, PaymentStatus, WebhookEvent
from shared import stripe_client

logger = logging.getLogger(__name__)

PaymentClassification = PaymentStatus

# Event types classified from the type alone
EVENT_CLASSIFICATION: dict[str, PaymentStatus] = {
    "checkout.session.completed": PaymentStatus.APPROVED,
    "checkout.session.async_payment_succeeded": PaymentStatus.APPROVED,
    "checkout.session.async_payment_failed": PaymentStatus.FAILED,
    "checkout.session.expired": PaymentStatus.FAILED,
    "payment_intent.succeeded": PaymentStatus.APPROVED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment_intent.canceled": PaymentStatus.FAILED,
}

REFUND_EVENT_TYPE = "charge.refunded"

REFERENCE_KEYS = ("appointment_id", "client_reference")


@dataclass(frozen=True)
class ResolvedReferences:
    session_id: str | None = None
    appointment_id: UUID | None = None

    @property
    def matched(self) -> bool:
        return self.session_id is not None or self.appointment_id is not None


@dataclass(frozen=True)
class ReconciliationResult:
    """outcome is one of: processed, ignored, unmatched"""

    outcome: str
    classification: PaymentStatus | None = None
    appointment_id: UUID | None = None
    payments_updated: int = 0
    confirmed: bool = False


def _event_object(event: dict[str, Any]) -> dict[str, Any]:
    data = event.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    return obj if isinstance(obj, dict) else {}


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def classify_refund(charge: dict[str, Any]) -> PaymentStatus:
    """refunded when the whole captured amount was refunded, else partially_refunded."""
    captured = charge.get("amount_captured")
    captured = _as_int(captured if captured is not None else charge.get("amount"))
    refunded = _as_int(charge.get("amount_refunded"))

    if captured > 0 and refunded >= captured:
        return PaymentStatus.REFUNDED
    return PaymentStatus.PARTIALLY_REFUNDED


def classify_event(event: dict[str, Any]) -> PaymentClassification | None:
    """
    Classify a gateway event.

    Returns None for event types outside the reconciliation vocabulary and
    for a completed checkout that is still unpaid (async payment methods
    settle later with their own event).
    """
    event_type = event.get("type")

    if event_type == REFUND_EVENT_TYPE:
        return classify_refund(_event_object(event))

    classification = EVENT_CLASSIFICATION.get(event_type or "")
    if classification is None:
        return None

    if event_type == "checkout.session.completed":
        if _event_object(event).get("payment_status") == "unpaid":
            return None

    return classification


def _parse_uuid(value: Any) -> UUID | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return UUID(value)
    except ValueError:
        logger.warning(f"Ignoring non-UUID appointment reference: {value!r}")
        return None


def _reference_from(obj: dict[str, Any]) -> UUID | None:
    metadata = obj.get("metadata") or {}
    if isinstance(metadata, dict):
        for key in REFERENCE_KEYS:
            ref = _parse_uuid(metadata.get(key))
            if ref:
                return ref
    return _parse_uuid(obj.get("client_reference_id"))


async def resolve_references(
    event: dict[str, Any],
    gateway: Any = stripe_client,
) -> ResolvedReferences:
    """
    Find the checkout session and appointment an event belongs to.

    Checkout events carry both directly. Payment intent and charge events
    are traced back to their checkout session through the gateway when
    possible; their own metadata reference wins when present.

    Raises:
        GatewayUnavailableError: Gateway lookup failed transiently
    """
    obj = _event_object(event)
    object_type = obj.get("object")

    if object_type == "checkout.session":
        return ResolvedReferences(session_id=obj.get("id"), appointment_id=_reference_from(obj))

    if object_type not in ("payment_intent", "charge"):
        return ResolvedReferences(appointment_id=_reference_from(obj))

    appointment_id = _reference_from(obj)
    intent_id = obj.get("id") if object_type == "payment_intent" else obj.get("payment_intent")
    if isinstance(intent_id, dict):
        intent_id = intent_id.get("id")

    session_id = None
    if intent_id:
        parent = await gateway.find_session_by_payment_intent(intent_id)
        if parent:
            session_id = parent.get("id")
            if appointment_id is None:
                appointment_id = _reference_from(parent)

    return ResolvedReferences(session_id=session_id, appointment_id=appointment_id)


async def record_webhook_event(
    session: AsyncSession,
    event: dict[str, Any],
    provider: str = "stripe",
) -> bool:
    """
    Append the raw event to the webhook log.

    Best-effort: failures are logged and swallowed so reconciliation still
    runs. Commits on success.

    Returns:
        True if a new row was inserted, False for duplicates or failures
    """
    event_id = event.get("id")
    if not event_id:
        logger.warning("Webhook event without id, not recorded")
        return False

    try:
        result = await session.execute(
            pg_insert(WebhookEvent)
            .values(
                provider=provider,
                event_id=event_id,
                event_type=event.get("type"),
                payload=event,
            )
            .on_conflict_do_nothing(constraint="uq_webhook_events_provider_event")
            .returning(WebhookEvent.id)
        )
        inserted = result.scalar_one_or_none() is not None
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.error(
            f"Failed to record webhook event: {e}",
            extra={"event_id": event_id},
            exc_info=True,
        )
        return False

    if not inserted:
        logger.info("Duplicate webhook event delivery", extra={"event_id": event_id})
    return inserted


async def reconcile_event(
    session: AsyncSession,
    event: dict[str, Any],
    gateway: Any = stripe_client,
) -> ReconciliationResult:
    """
    Apply one classified event to payment and appointment state.

    Raises:
        GatewayUnavailableError, SQLAlchemyError: transient failures, the
            caller should answer so that the gateway retries
    """
    event_id = event.get("id")
    event_type = event.get("type")

    classification = classify_event(event)
    if classification is None:
        logger.info(
            f"Ignoring event type {event_type}",
            extra={"event_id": event_id, "event_type": event_type},
        )
        return ReconciliationResult(outcome="ignored")

    refs = await resolve_references(event, gateway)
    if not refs.matched:
        logger.warning(
            "Unmatched payment event: no session or appointment reference",
            extra={"event_id": event_id, "event_type": event_type},
        )
        return ReconciliationResult(outcome="unmatched", classification=classification)

    # An appointment can have several checkouts (deposit, balance, full):
    # a known session id targets its own row only
    if refs.session_id:
        match_conditions = [Payment.provider_payment_id == refs.session_id]
    else:
        match_conditions = [
            Payment.appointment_id == refs.appointment_id,
            Payment.status == PaymentStatus.PENDING,
        ]

    result = await session.execute(
        update(Payment)
        .where(*match_conditions)
        .values(status=classification, payload=_event_object(event))
        .returning(Payment.id)
        .execution_options(synchronize_session=False)
    )
    payments_updated = len(result.all())

    confirmed = False
    if classification == PaymentStatus.APPROVED and refs.appointment_id:
        confirmed = await confirm_if_pending(session, refs.appointment_id)
        if confirmed:
            await enqueue_default_reminders(session, refs.appointment_id)

    await session.commit()

    logger.info(
        f"Reconciled {event_type} as {classification.value}: "
        f"payments_updated={payments_updated} confirmed={confirmed}",
        extra={
            "event_id": event_id,
            "event_type": event_type,
            "appointment_id": refs.appointment_id,
        },
    )
    return ReconciliationResult(
        outcome="processed",
        classification=classification,
        appointment_id=refs.appointment_id,
        payments_updated=payments_updated,
        confirmed=confirmed,
    )
