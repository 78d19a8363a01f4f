"""Stripe webhook route handler."""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.middleware.signature_validation import validate_stripe_signature
from api.models.stripe_webhook import StripeWebhookEvent
from booking.errors import TransientError
from booking.services.reconciliation_service import reconcile_event, record_webhook_event
from database.connection import get_db_session

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/stripe")
async def receive_stripe_webhook(
    event: dict[str, Any] = Depends(validate_stripe_signature),
    session: AsyncSession = Depends(get_db_session),
) -> JSONResponse:
    """
    Receive and reconcile Stripe webhook events.

    The raw event is appended to the webhook log, then reconciled against
    payments and appointments. Ignored and unmatched events are answered
    with 200 so Stripe stops retrying them; transient failures (gateway or
    database) answer 503 so Stripe retries later.

    Returns:
        JSONResponse with {"status": processed | ignored | unmatched}
    """
    parsed = StripeWebhookEvent.model_validate(event)
    log_extra = {"event_id": parsed.id, "event_type": parsed.type}

    await record_webhook_event(session, event)

    try:
        result = await reconcile_event(session, event)
    except TransientError as e:
        await session.rollback()
        logger.error(f"Transient failure reconciling webhook: {e}", extra=log_extra)
        return JSONResponse(status_code=503, content=e.to_dict())
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Database error reconciling webhook: {e}", extra=log_extra, exc_info=True)
        return JSONResponse(
            status_code=503,
            content={"error_code": "DATABASE_UNAVAILABLE", "error": "Banco de dados indisponível."},
        )

    content: dict[str, Any] = {"status": result.outcome}
    if result.classification is not None:
        content["classification"] = result.classification.value
    if result.appointment_id is not None:
        content["appointment_id"] = str(result.appointment_id)
    return JSONResponse(status_code=200, content=content)
