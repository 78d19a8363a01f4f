"""Pydantic request/response models for the booking endpoints."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from database.models import AppointmentStatus


class CreateAppointmentRequest(BaseModel):
    """Body of POST /appointments. `start` must carry a UTC offset."""

    service_id: UUID
    start: datetime
    staff_id: UUID | None = None
    assignment_id: UUID | None = None


class RescheduleRequest(BaseModel):
    start: datetime


class CancelRequest(BaseModel):
    acknowledge_forfeit: bool = False
    reason: str | None = Field(default=None, max_length=500)


class CheckoutRequest(BaseModel):
    appointment_id: UUID
    mode: Literal["deposit", "balance", "full"] = "deposit"


class AppointmentResponse(BaseModel):
    """Appointment as returned to the customer."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    service_id: UUID
    assignment_id: UUID | None = None
    staff_id: UUID | None = None
    start_time: datetime
    end_time: datetime
    buffer_min: int
    status: AppointmentStatus
    total_cents: int
    deposit_cents: int
    version: int
    canceled_at: datetime | None = None
    cancellation_reason: str | None = None
