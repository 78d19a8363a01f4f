"""API routes for slot listing and per-day availability."""

import logging
from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_optional_customer_id
from booking.services.availability_service import (
    get_available_slots,
    get_customer_availability,
)
from database.connection import get_db_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["availability"])


@router.get("/slots")
async def list_slots(
    service_id: Annotated[UUID, Query()],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    day: Annotated[date, Query(alias="date")],
    staff_id: Annotated[UUID | None, Query()] = None,
):
    """
    Bookable start times of a service on a day.

    **Returns:**
    ```json
    {"slots": ["2025-06-10T09:00:00-03:00", "2025-06-10T09:30:00-03:00"]}
    ```
    """
    slots = await get_available_slots(session, service_id, day, staff_id=staff_id)
    return {"slots": slots}


@router.get("/availability")
async def list_availability(
    service_id: Annotated[UUID, Query()],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    customer_id: Annotated[UUID | None, Depends(get_optional_customer_id)],
    days: Annotated[int | None, Query(ge=1, le=120)] = None,
):
    """Per-day states (available, partially_booked, fully_booked, mine, past, closed)."""
    availability = await get_customer_availability(
        session, service_id, customer_id, days=days
    )
    return {"days": [day.to_dict() for day in availability]}
