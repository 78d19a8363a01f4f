"""API route for opening Stripe checkouts."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_customer_id
from api.models.booking import CheckoutRequest
from booking.services.appointment_service import create_checkout
from database.connection import get_db_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/checkout")
async def open_checkout(
    body: CheckoutRequest,
    customer_id: Annotated[UUID, Depends(get_customer_id)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
):
    """
    Open (or reuse) a checkout for the deposit, the balance or the full total.

    The appointment is confirmed later by the payment webhook, never here.

    **Errors:**
    - **404**: Appointment not found
    - **409**: Appointment canceled or completed
    - **422**: Nothing left to pay
    - **503**: Payment gateway unavailable
    """
    result = await create_checkout(session, body.appointment_id, customer_id, body.mode)
    return result.to_dict()
