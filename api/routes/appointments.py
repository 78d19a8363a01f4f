"""
API routes for the appointment lifecycle.

The calling customer is identified by the X-Customer-Id header. Booking
errors raised by the services propagate to the BookingError handler in
api/main.py, which turns them into {"error_code", "error"} responses.
"""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_customer_id
from api.models.booking import (
    AppointmentResponse,
    CancelRequest,
    CreateAppointmentRequest,
    RescheduleRequest,
)
from booking.services.appointment_service import (
    cancel_appointment,
    create_appointment,
    quote_cancellation,
    reschedule_appointment,
)
from database.connection import get_db_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.post("", status_code=201, response_model=AppointmentResponse)
async def book_appointment(
    body: CreateAppointmentRequest,
    customer_id: Annotated[UUID, Depends(get_customer_id)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
):
    """
    Book a slot. The appointment is created in `pending` with a snapshot of
    the resolved price, deposit and buffer.

    **Errors:**
    - **404**: Service not found or inactive
    - **409**: Slot no longer available
    - **422**: Start time invalid (past, outside opening hours, no offset)
    """
    appointment = await create_appointment(
        session,
        customer_id=customer_id,
        service_id=body.service_id,
        start=body.start,
        staff_id=body.staff_id,
        assignment_id=body.assignment_id,
    )
    return AppointmentResponse.model_validate(appointment)


@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule(
    appointment_id: UUID,
    body: RescheduleRequest,
    customer_id: Annotated[UUID, Depends(get_customer_id)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
):
    """
    Move a pending or reserved appointment.

    **Errors:**
    - **404**: Appointment not found
    - **409**: Status does not allow rescheduling, slot taken, or concurrent change
    - **422**: Inside the minimum notice window
    """
    appointment = await reschedule_appointment(
        session, appointment_id, customer_id, body.start
    )
    return AppointmentResponse.model_validate(appointment)


@router.get("/{appointment_id}/cancellation")
async def get_cancellation_quote(
    appointment_id: UUID,
    customer_id: Annotated[UUID, Depends(get_customer_id)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
):
    """What canceling now would refund and forfeit."""
    quote = await quote_cancellation(session, appointment_id, customer_id)
    return quote.to_dict()


@router.post("/{appointment_id}/cancel")
async def cancel(
    appointment_id: UUID,
    body: CancelRequest,
    customer_id: Annotated[UUID, Depends(get_customer_id)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
):
    """
    Cancel an appointment.

    Inside the cancellation threshold a paid deposit is forfeited: without
    `acknowledge_forfeit` the request is answered 409 DEPOSIT_FORFEIT with
    the quote and nothing changes.
    """
    outcome = await cancel_appointment(
        session,
        appointment_id,
        customer_id,
        acknowledge_forfeit=body.acknowledge_forfeit,
        reason=body.reason,
    )
    return {
        "appointment": AppointmentResponse.model_validate(outcome.appointment).model_dump(mode="json"),
        "quote": outcome.quote.to_dict(),
        "refunded_cents": outcome.refunded_cents,
        "refund_failures": outcome.refund_failures,
    }
