"""
SQLAlchemy ORM models for the booking engine.

This module defines the tables:
- customers: Clients that book appointments
- services: Catalog services with base pricing (read-only to the engine)
- service_assignments: Per-context overrides of a service's base values
- appointments: Reservations of a service time slot
- payments: One row per gateway payment object (checkout session)
- webhook_events: Append-only log of inbound gateway events
- reminders: Scheduled outbound notifications tied to an appointment
- business_hours: Opening hours per weekday
- blackouts: Business-wide or per-staff blocked time ranges

All models use:
- UUID primary keys (auto-generated)
- TIMESTAMP WITH TIME ZONE for datetime fields
- JSONB for raw gateway payloads
- Integer minor-currency units (cents) for money
"""

from datetime import UTC, datetime, time
from enum import Enum as PyEnum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(UTC)


# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# ============================================================================
# Enums
# ============================================================================


class AppointmentStatus(str, PyEnum):
    """Appointment lifecycle status."""

    PENDING = "pending"        # Booked, waiting for deposit
    RESERVED = "reserved"      # Slot held by staff without payment
    CONFIRMED = "confirmed"    # Deposit paid
    COMPLETED = "completed"
    CANCELED = "canceled"

    def __str__(self):
        return self.value


NON_TERMINAL_STATUSES = (
    AppointmentStatus.PENDING,
    AppointmentStatus.RESERVED,
    AppointmentStatus.CONFIRMED,
)

TERMINAL_STATUSES = (
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELED,
)


class PaymentStatus(str, PyEnum):
    """Gateway payment status as mirrored by reconciliation."""

    PENDING = "pending"
    APPROVED = "approved"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PaymentKind(str, PyEnum):
    """What a checkout is paying for."""

    DEPOSIT = "deposit"
    BALANCE = "balance"
    FULL = "full"


class ReminderStatus(str, PyEnum):
    """Delivery status of a scheduled reminder."""

    PENDING = "pending"
    SENT = "sent"
    ERROR = "error"


def _enum_column(enum_cls: type[PyEnum], name: str) -> SQLEnum:
    # values_callable stores the enum .value ("pending") instead of .name
    return SQLEnum(
        enum_cls,
        name=name,
        create_type=True,
        values_callable=lambda x: [e.value for e in x],
    )


# ============================================================================
# Catalog Models
# ============================================================================


class Customer(Base):
    """Customer model - clients with contact info used for reminders."""

    __tablename__ = "customers"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # WhatsApp number in E.164 format, target for reminders
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, nullable=False
    )

    appointments: Mapped[list["Appointment"]] = relationship(
        "Appointment", back_populates="customer"
    )

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, name='{self.first_name} {self.last_name}')>"


class Service(Base):
    """
    Service model - base configuration of a bookable service.

    Base values are stored as given by the catalog; they may be stale or
    inconsistent and are normalized by the pricing resolver on read.
    """

    __tablename__ = "services"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    base_duration_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    base_price_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    base_deposit_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    base_buffer_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    assignments: Mapped[list["ServiceAssignment"]] = relationship(
        "ServiceAssignment", back_populates="service", order_by="ServiceAssignment.created_at"
    )

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name='{self.name}')>"


class ServiceAssignment(Base):
    """
    ServiceAssignment model - per-context override of a service's base values.

    NULL override columns mean "not overridden". When use_service_defaults is
    true every override column is ignored.
    """

    __tablename__ = "service_assignments"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    service_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    context: Mapped[str | None] = mapped_column(String(100), nullable=True)

    use_service_defaults: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true", nullable=False
    )
    override_duration_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    override_price_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    override_deposit_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    override_buffer_min: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, nullable=False
    )

    service: Mapped["Service"] = relationship("Service", back_populates="assignments")

    def __repr__(self) -> str:
        return (
            f"<ServiceAssignment(id={self.id}, service_id={self.service_id}, "
            f"use_defaults={self.use_service_defaults})>"
        )


# ============================================================================
# Calendar Models
# ============================================================================


class BusinessHours(Base):
    """
    Opening hours per day of the week (0=Monday, ..., 6=Sunday).

    A weekday without a row uses the BUSINESS_OPEN_TIME/BUSINESS_CLOSE_TIME
    settings. A closed day offers no slots.
    """

    __tablename__ = "business_hours"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )

    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Null when closed
    start_hour: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_minute: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    end_hour: Mapped[int | None] = mapped_column(Integer, nullable=True)
    end_minute: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="valid_day_of_week"),
        CheckConstraint(
            "start_hour IS NULL OR (start_hour >= 0 AND start_hour <= 23)", name="valid_start_hour"
        ),
        CheckConstraint(
            "end_hour IS NULL OR (end_hour >= 0 AND end_hour <= 23)", name="valid_end_hour"
        ),
        CheckConstraint(
            "start_minute >= 0 AND start_minute <= 59 AND end_minute >= 0 AND end_minute <= 59",
            name="valid_minutes",
        ),
        CheckConstraint(
            "is_closed OR (start_hour IS NOT NULL AND end_hour IS NOT NULL)",
            name="open_day_has_hours",
        ),
    )

    def opening_hours(self) -> tuple[time, time] | None:
        """(open, close) of the day, or None when closed."""
        if self.is_closed or self.start_hour is None or self.end_hour is None:
            return None
        return time(self.start_hour, self.start_minute or 0), time(self.end_hour, self.end_minute or 0)

    def __repr__(self) -> str:
        if self.is_closed:
            return f"<BusinessHours(day={self.day_of_week}, closed)>"
        return (
            f"<BusinessHours(day={self.day_of_week}, "
            f"{self.start_hour:02d}:{self.start_minute:02d}-{self.end_hour:02d}:{self.end_minute:02d})>"
        )


class Blackout(Base):
    """
    Blackout model - time range in which nothing can be booked.

    staff_id NULL blocks the whole business (holidays, closures); otherwise
    only bookings with that staff member are blocked.
    """

    __tablename__ = "blackouts"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    staff_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)

    start_time: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    end_time: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_blackout_end_after_start"),
        Index("idx_blackouts_range", "start_time", "end_time"),
    )

    def __repr__(self) -> str:
        return f"<Blackout(id={self.id}, title='{self.title}', start={self.start_time})>"


# ============================================================================
# Transactional Models
# ============================================================================


class Appointment(Base):
    """
    Appointment model - reservation of a service time slot.

    Price, deposit and buffer are snapshots taken at booking time so later
    catalog changes never alter an existing appointment. Rows are never
    deleted; canceled/completed rows stay for history.

    `version` is bumped by every guarded write and used as an optimistic
    concurrency token by reschedule/cancel.
    """

    __tablename__ = "appointments"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )

    customer_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    service_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("services.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    assignment_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("service_assignments.id", ondelete="SET NULL"),
        nullable=True,
    )
    staff_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), nullable=True, index=True
    )

    # Scheduling
    start_time: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, index=True
    )
    end_time: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    buffer_min: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[AppointmentStatus] = mapped_column(
        _enum_column(AppointmentStatus, "appointment_status"),
        default=AppointmentStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Pricing snapshot
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    deposit_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    canceled_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    customer: Mapped["Customer"] = relationship("Customer", back_populates="appointments")
    service: Mapped["Service"] = relationship("Service")
    payments: Mapped[list["Payment"]] = relationship("Payment", back_populates="appointment")
    reminders: Mapped[list["Reminder"]] = relationship("Reminder", back_populates="appointment")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_appointment_end_after_start"),
        CheckConstraint("total_cents >= 0", name="check_appointment_total_non_negative"),
        CheckConstraint(
            "deposit_cents >= 0 AND deposit_cents <= total_cents",
            name="check_appointment_deposit_within_total",
        ),
        # Sweeper queries: pending by creation time, non-terminal by start time
        Index("idx_appointments_status_created", "status", "created_at"),
        Index("idx_appointments_status_start", "status", "start_time"),
        Index("idx_appointments_service_start", "service_id", "start_time"),
    )

    def __repr__(self) -> str:
        return f"<Appointment(id={self.id}, status='{self.status.value}', start={self.start_time})>"


class Payment(Base):
    """
    Payment model - one row per gateway payment object.

    Created when a checkout is initiated; only reconciliation updates
    status and payload afterwards.
    """

    __tablename__ = "payments"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    appointment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    provider: Mapped[str] = mapped_column(String(30), default="stripe", nullable=False)
    # Checkout session id (cs_...) or payment intent id (pi_...)
    provider_payment_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    kind: Mapped[PaymentKind] = mapped_column(
        _enum_column(PaymentKind, "payment_kind"), nullable=False
    )
    covers_deposit: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    appointment: Mapped["Appointment"] = relationship("Appointment", back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="check_payment_amount_positive"),
        Index("idx_payments_appointment_status", "appointment_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, provider_payment_id='{self.provider_payment_id}', status='{self.status.value}')>"


class WebhookEvent(Base):
    """
    WebhookEvent model - append-only log of inbound gateway events.

    Keyed by (provider, event_id). Never updated after insert.
    """

    __tablename__ = "webhook_events"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)

    received_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event"),
    )

    def __repr__(self) -> str:
        return f"<WebhookEvent(provider='{self.provider}', event_id='{self.event_id}')>"


class Reminder(Base):
    """
    Reminder model - scheduled outbound notification for one appointment.

    Created in batches when an appointment reaches confirmed; mutated only
    by the dispatcher.
    """

    __tablename__ = "reminders"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    appointment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    channel: Mapped[str] = mapped_column(String(20), default="whatsapp", nullable=False)
    template: Mapped[str] = mapped_column(String(50), nullable=False)
    to_address: Mapped[str] = mapped_column(String(100), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )

    status: Mapped[ReminderStatus] = mapped_column(
        _enum_column(ReminderStatus, "reminder_status"),
        default=ReminderStatus.PENDING,
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, nullable=False
    )

    appointment: Mapped[Optional["Appointment"]] = relationship(
        "Appointment", back_populates="reminders"
    )

    __table_args__ = (
        # Dispatcher query: due reminders by status
        Index("idx_reminders_status_scheduled", "status", "scheduled_at"),
        # One reminder per template per appointment
        UniqueConstraint("appointment_id", "template", name="uq_reminders_appointment_template"),
    )

    def __repr__(self) -> str:
        return f"<Reminder(id={self.id}, template='{self.template}', status='{self.status.value}')>"
