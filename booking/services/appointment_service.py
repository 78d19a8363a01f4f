"""
Appointment lifecycle operations.

Every status or schedule change is a guarded UPDATE:

    UPDATE appointments SET ..., version = version + 1
    WHERE id = :id AND status IN (:allowed) [AND version = :expected]

A write that matches no row means another request, webhook or sweep moved
the appointment first; customer-facing operations surface that as
StaleAppointmentError and leave the row untouched.

Operations:
- create_appointment: book a slot in `pending` with a pricing snapshot
- reschedule_appointment: move a pending/reserved appointment
- reserve_appointment: staff hold, pending -> reserved
- quote_cancellation / cancel_appointment: cancel with refund policy
- confirm_if_pending: pending -> confirmed on approved payment
- create_checkout: open a Stripe checkout for deposit, balance or full
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from booking.errors import (
    AppointmentNotFoundError,
    BookingValidationError,
    DepositForfeitWarning,
    IllegalTransitionError,
    InvalidStartTimeError,
    NothingToPayError,
    ReschedulingWindowError,
    SlotUnavailableError,
    StaleAppointmentError,
)
from booking.fsm import AppointmentEvent, AppointmentFSM
from booking.services.availability_service import (
    BusinessCalendar,
    check_slot_available,
    is_within_operating_window,
    load_business_calendar,
)
from booking.services.pricing_service import resolve_service_pricing
from database.models import (
    Appointment,
    AppointmentStatus,
    Customer,
    Payment,
    PaymentKind,
    PaymentStatus,
    Service,
)
from shared import stripe_client
from shared.config import get_settings

logger = logging.getLogger(__name__)

CHECKOUT_TITLES = {
    PaymentKind.DEPOSIT: "Sinal",
    PaymentKind.BALANCE: "Saldo",
    PaymentKind.FULL: "Integral",
}


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(UTC)


def _hours_until(start: datetime, now: datetime) -> float:
    return (start - now).total_seconds() / 3600


# ============================================================================
# Shared helpers
# ============================================================================


async def guarded_update(
    session: AsyncSession,
    appointment_id: UUID,
    allowed_statuses: Iterable[AppointmentStatus],
    values: dict[str, Any],
    expected_version: int | None = None,
    extra_conditions: Iterable[Any] = (),
) -> bool:
    """
    Apply `values` only if the row still has an allowed status (and version).

    `extra_conditions` are ANDed into the WHERE clause, so a caller can
    re-check eligibility at write time.

    Bumps `version`. Does not commit.

    Returns:
        True when exactly this call updated the row
    """
    conditions = [
        Appointment.id == appointment_id,
        Appointment.status.in_(tuple(allowed_statuses)),
    ]
    if expected_version is not None:
        conditions.append(Appointment.version == expected_version)
    conditions.extend(extra_conditions)

    result = await session.execute(
        update(Appointment)
        .where(*conditions)
        .values(**values, version=Appointment.version + 1, updated_at=datetime.now(UTC))
        .returning(Appointment.id)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none() is not None


async def get_appointment_for_customer(
    session: AsyncSession,
    appointment_id: UUID,
    customer_id: UUID | None,
) -> Appointment:
    """
    Load an appointment owned by `customer_id` (any owner when None).

    Raises:
        AppointmentNotFoundError: Missing or owned by someone else
    """
    appointment = await session.get(Appointment, appointment_id)
    if appointment is None or (customer_id is not None and appointment.customer_id != customer_id):
        raise AppointmentNotFoundError(details={"appointment_id": str(appointment_id)})
    return appointment


async def get_paid_total(session: AsyncSession, appointment_id: UUID) -> int:
    """Sum of approved payments of an appointment, in cents."""
    result = await session.execute(
        select(func.coalesce(func.sum(Payment.amount_cents), 0)).where(
            Payment.appointment_id == appointment_id,
            Payment.status == PaymentStatus.APPROVED,
        )
    )
    return int(result.scalar_one() or 0)


async def _lock_service(session: AsyncSession, service_id: UUID) -> None:
    # Serializes bookings of the same service until commit
    await session.execute(
        select(Service.id).where(Service.id == service_id).with_for_update()
    )


def _validate_start(
    start: datetime, duration_min: int, now: datetime, calendar: BusinessCalendar
) -> None:
    if start.tzinfo is None:
        raise InvalidStartTimeError("Informe o horário com fuso horário.")
    if start <= now:
        raise InvalidStartTimeError("O horário escolhido já passou.")
    if calendar.is_closed(calendar.local_day(start)):
        raise InvalidStartTimeError("Não atendemos neste dia.")
    if not is_within_operating_window(start, duration_min, calendar):
        raise InvalidStartTimeError("O horário escolhido está fora do horário de funcionamento.")


# ============================================================================
# Book
# ============================================================================


async def create_appointment(
    session: AsyncSession,
    customer_id: UUID,
    service_id: UUID,
    start: datetime,
    staff_id: UUID | None = None,
    assignment_id: UUID | None = None,
    now: datetime | None = None,
) -> Appointment:
    """
    Book a slot. The appointment starts in `pending`.

    Price, deposit and buffer are snapshotted from the pricing resolver so
    later catalog changes never alter this appointment.

    Raises:
        ServiceNotFoundError, InvalidStartTimeError, SlotUnavailableError
    """
    now = _now(now)
    pricing = await resolve_service_pricing(session, service_id, assignment_id)
    values = pricing.values

    if values.duration_min <= 0:
        raise BookingValidationError(
            "Serviço sem duração configurada.", details={"service_id": str(service_id)}
        )

    _validate_start(start, values.duration_min, now, await load_business_calendar(session))

    await _lock_service(session, service_id)
    if not await check_slot_available(session, service_id, start, values.duration_min, staff_id=staff_id):
        await session.rollback()
        raise SlotUnavailableError(details={"start": start.isoformat()})

    appointment = Appointment(
        customer_id=customer_id,
        service_id=service_id,
        assignment_id=pricing.assignment_id,
        staff_id=staff_id,
        start_time=start,
        end_time=start + timedelta(minutes=values.duration_min),
        buffer_min=values.buffer_min,
        status=AppointmentStatus.PENDING,
        total_cents=values.price_cents,
        deposit_cents=values.deposit_cents,
        version=1,
    )
    session.add(appointment)
    await session.commit()

    logger.info(
        f"Appointment booked: service={service_id} start={start.isoformat()} "
        f"total={values.price_cents} deposit={values.deposit_cents}",
        extra={"appointment_id": appointment.id, "customer_id": customer_id},
    )
    return appointment


# ============================================================================
# Reschedule
# ============================================================================


async def reschedule_appointment(
    session: AsyncSession,
    appointment_id: UUID,
    customer_id: UUID | None,
    new_start: datetime,
    now: datetime | None = None,
) -> Appointment:
    """
    Move a pending/reserved appointment to `new_start`, keeping its status.

    Both the current and the new start must be further away than the
    cancellation threshold. The booked duration is preserved.

    Raises:
        AppointmentNotFoundError, IllegalTransitionError, ReschedulingWindowError,
        InvalidStartTimeError, SlotUnavailableError, StaleAppointmentError
    """
    now = _now(now)
    settings = get_settings()
    threshold = settings.CANCELLATION_THRESHOLD_HOURS

    appointment = await get_appointment_for_customer(session, appointment_id, customer_id)
    expected_version = appointment.version

    if not AppointmentFSM(appointment.status).can_transition(AppointmentEvent.RESCHEDULE):
        raise IllegalTransitionError(
            "Apenas agendamentos pendentes ou reservados podem ser reagendados.",
            details={"status": appointment.status.value},
        )

    if _hours_until(appointment.start_time, now) <= threshold:
        raise ReschedulingWindowError(
            "Agendamento bloqueado para alterações.",
            details={"threshold_hours": threshold},
        )

    if new_start.tzinfo is not None and _hours_until(new_start, now) <= threshold:
        raise ReschedulingWindowError(
            "A nova data deve respeitar a antecedência mínima.",
            details={"threshold_hours": threshold},
        )

    duration = appointment.end_time - appointment.start_time
    duration_min = int(duration.total_seconds() // 60)
    _validate_start(new_start, duration_min, now, await load_business_calendar(session))

    await _lock_service(session, appointment.service_id)
    available = await check_slot_available(
        session,
        appointment.service_id,
        new_start,
        duration_min,
        staff_id=appointment.staff_id,
        exclude_appointment_id=appointment.id,
    )
    if not available:
        await session.rollback()
        raise SlotUnavailableError(details={"start": new_start.isoformat()})

    updated = await guarded_update(
        session,
        appointment.id,
        AppointmentFSM.sources_for(AppointmentEvent.RESCHEDULE),
        {"start_time": new_start, "end_time": new_start + duration},
        expected_version=expected_version,
    )
    if not updated:
        await session.rollback()
        logger.warning(
            f"Reschedule lost race (expected version {expected_version})",
            extra={"appointment_id": appointment.id},
        )
        raise StaleAppointmentError()

    await session.commit()
    await session.refresh(appointment)

    logger.info(
        f"Appointment rescheduled to {new_start.isoformat()}",
        extra={"appointment_id": appointment.id},
    )
    return appointment


# ============================================================================
# Reserve
# ============================================================================


async def reserve_appointment(
    session: AsyncSession,
    appointment_id: UUID,
) -> Appointment:
    """
    Staff hold: pending -> reserved, without payment.

    Called from staff tooling, there is no customer route for it.

    Raises:
        AppointmentNotFoundError, IllegalTransitionError, StaleAppointmentError
    """
    appointment = await get_appointment_for_customer(session, appointment_id, None)
    expected_version = appointment.version

    target = AppointmentFSM(appointment.status).transition(AppointmentEvent.RESERVE)

    updated = await guarded_update(
        session,
        appointment.id,
        AppointmentFSM.sources_for(AppointmentEvent.RESERVE),
        {"status": target},
        expected_version=expected_version,
    )
    if not updated:
        await session.rollback()
        logger.warning(
            f"Reserve lost race (expected version {expected_version})",
            extra={"appointment_id": appointment.id},
        )
        raise StaleAppointmentError()

    await session.commit()
    await session.refresh(appointment)

    logger.info("Appointment reserved by staff", extra={"appointment_id": appointment.id})
    return appointment



# ============================================================================
# Cancel
# ============================================================================


@dataclass(frozen=True)
class CancellationQuote:
    """
    What canceling now would mean for the customer.

    Outside the threshold everything paid is refunded; inside it the deposit
    is forfeited and only the amount paid beyond it is refunded.
    """

    appointment_id: UUID
    paid_cents: int
    deposit_cents: int
    refundable_cents: int
    forfeited_cents: int
    within_threshold: bool
    hours_until_start: float
    threshold_hours: int

    @property
    def requires_acknowledgement(self) -> bool:
        return self.within_threshold and self.forfeited_cents > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "appointment_id": str(self.appointment_id),
            "paid_cents": self.paid_cents,
            "deposit_cents": self.deposit_cents,
            "refundable_cents": self.refundable_cents,
            "forfeited_cents": self.forfeited_cents,
            "within_threshold": self.within_threshold,
            "hours_until_start": round(self.hours_until_start, 2),
            "threshold_hours": self.threshold_hours,
            "requires_acknowledgement": self.requires_acknowledgement,
        }


def build_cancellation_quote(
    appointment: Appointment,
    paid_cents: int,
    now: datetime,
    threshold_hours: int,
) -> CancellationQuote:
    hours_until = _hours_until(appointment.start_time, now)
    within = hours_until < threshold_hours
    paid = max(0, paid_cents)
    deposit = max(0, appointment.deposit_cents or 0)

    refundable = max(paid - deposit, 0) if within else paid

    return CancellationQuote(
        appointment_id=appointment.id,
        paid_cents=paid,
        deposit_cents=deposit,
        refundable_cents=refundable,
        forfeited_cents=paid - refundable,
        within_threshold=within,
        hours_until_start=hours_until,
        threshold_hours=threshold_hours,
    )


async def quote_cancellation(
    session: AsyncSession,
    appointment_id: UUID,
    customer_id: UUID | None,
    now: datetime | None = None,
) -> CancellationQuote:
    """
    Raises:
        AppointmentNotFoundError, IllegalTransitionError (terminal appointment)
    """
    now = _now(now)
    appointment = await get_appointment_for_customer(session, appointment_id, customer_id)

    if not AppointmentFSM(appointment.status).can_transition(AppointmentEvent.CANCEL):
        raise IllegalTransitionError(details={"status": appointment.status.value})

    paid = await get_paid_total(session, appointment.id)
    return build_cancellation_quote(
        appointment, paid, now, get_settings().CANCELLATION_THRESHOLD_HOURS
    )


@dataclass
class CancellationOutcome:
    appointment: Appointment
    quote: CancellationQuote
    refunded_cents: int = 0
    refund_failures: int = 0


def _payment_intent_id(payment: Payment) -> str | None:
    if payment.provider_payment_id.startswith("pi_"):
        return payment.provider_payment_id

    payload = payment.payload or {}
    intent = payload.get("payment_intent")
    if isinstance(intent, dict):
        return intent.get("id")
    if isinstance(intent, str):
        return intent
    if payload.get("object") == "payment_intent":
        return payload.get("id")
    return None


async def _refund_approved_payments(
    session: AsyncSession,
    appointment_id: UUID,
    amount_cents: int,
    gateway: Any,
) -> tuple[int, int]:
    """Refund up to `amount_cents` across approved payments, oldest first."""
    result = await session.execute(
        select(Payment)
        .where(
            Payment.appointment_id == appointment_id,
            Payment.status == PaymentStatus.APPROVED,
        )
        .order_by(Payment.created_at.asc())
    )
    payments = list(result.scalars().all())

    remaining = amount_cents
    refunded = 0
    failures = 0
    for payment in payments:
        if remaining <= 0:
            break
        amount = min(remaining, payment.amount_cents)
        remaining -= amount

        intent_id = _payment_intent_id(payment)
        if not intent_id:
            failures += 1
            logger.warning(
                f"Cannot refund payment {payment.id}: no payment intent recorded",
                extra={"appointment_id": appointment_id},
            )
            continue

        try:
            await gateway.refund_payment(intent_id, amount)
            refunded += amount
        except Exception as e:
            failures += 1
            logger.error(
                f"Refund of {amount} on {intent_id} failed: {e}",
                extra={"appointment_id": appointment_id},
                exc_info=True,
            )

    return refunded, failures


async def cancel_appointment(
    session: AsyncSession,
    appointment_id: UUID,
    customer_id: UUID | None,
    acknowledge_forfeit: bool = False,
    reason: str | None = None,
    now: datetime | None = None,
    gateway: Any = stripe_client,
) -> CancellationOutcome:
    """
    Cancel a non-terminal appointment.

    When canceling would forfeit a paid deposit the request must carry
    acknowledge_forfeit=True; otherwise DepositForfeitWarning is raised with
    the quote and nothing changes. Refunds are attempted after the status
    write and never undo the cancellation.

    Raises:
        AppointmentNotFoundError, IllegalTransitionError, DepositForfeitWarning,
        StaleAppointmentError
    """
    now = _now(now)
    appointment = await get_appointment_for_customer(session, appointment_id, customer_id)
    expected_version = appointment.version

    quote = await quote_cancellation(session, appointment_id, customer_id, now=now)
    if quote.requires_acknowledgement and not acknowledge_forfeit:
        logger.info(
            f"Cancellation needs forfeit acknowledgement (forfeit={quote.forfeited_cents})",
            extra={"appointment_id": appointment.id},
        )
        raise DepositForfeitWarning(quote)

    updated = await guarded_update(
        session,
        appointment.id,
        AppointmentFSM.sources_for(AppointmentEvent.CANCEL),
        {
            "status": AppointmentStatus.CANCELED,
            "canceled_at": now,
            "cancellation_reason": reason,
        },
        expected_version=expected_version,
    )
    if not updated:
        await session.rollback()
        raise StaleAppointmentError()

    await session.commit()
    await session.refresh(appointment)

    logger.info(
        f"Appointment canceled (within_threshold={quote.within_threshold}, "
        f"refundable={quote.refundable_cents}, forfeited={quote.forfeited_cents})",
        extra={"appointment_id": appointment.id},
    )

    outcome = CancellationOutcome(appointment=appointment, quote=quote)
    if quote.refundable_cents > 0:
        outcome.refunded_cents, outcome.refund_failures = await _refund_approved_payments(
            session, appointment.id, quote.refundable_cents, gateway
        )
    return outcome


# ============================================================================
# Confirm
# ============================================================================


async def confirm_if_pending(session: AsyncSession, appointment_id: UUID) -> bool:
    """
    Guarded pending -> confirmed. Does not commit.

    Returns:
        True only for the call that performed the flip
    """
    confirmed = await guarded_update(
        session,
        appointment_id,
        (AppointmentStatus.PENDING,),
        {"status": AppointmentStatus.CONFIRMED},
    )
    if confirmed:
        logger.info("Appointment confirmed by payment", extra={"appointment_id": appointment_id})
    return confirmed


# ============================================================================
# Pay
# ============================================================================


@dataclass(frozen=True)
class CheckoutResult:
    session_id: str
    url: str | None
    amount_cents: int
    kind: PaymentKind
    reused: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "url": self.url,
            "amount_cents": self.amount_cents,
            "kind": self.kind.value,
            "reused": self.reused,
        }


async def create_checkout(
    session: AsyncSession,
    appointment_id: UUID,
    customer_id: UUID | None,
    mode: PaymentKind | str,
    gateway: Any = stripe_client,
) -> CheckoutResult:
    """
    Open a checkout for the deposit, the remaining balance or the full total.

    Does not change the appointment status; only reconciliation of an
    approved payment does. An open pending checkout of the same kind and
    amount is reused.

    Raises:
        AppointmentNotFoundError, IllegalTransitionError, NothingToPayError,
        GatewayUnavailableError
    """
    kind = PaymentKind(mode)
    appointment = await get_appointment_for_customer(session, appointment_id, customer_id)

    if AppointmentFSM(appointment.status).is_terminal:
        raise IllegalTransitionError(details={"status": appointment.status.value})

    total = max(0, appointment.total_cents or 0)
    if total <= 0:
        raise NothingToPayError("Total inválido para o agendamento.")

    paid = await get_paid_total(session, appointment.id)

    if kind == PaymentKind.DEPOSIT:
        if appointment.deposit_cents <= 0:
            raise NothingToPayError("Sinal não configurado para este agendamento.")
        amount = appointment.deposit_cents
    elif kind == PaymentKind.BALANCE:
        amount = max(total - paid, 0)
    else:
        amount = total

    if amount <= 0:
        raise NothingToPayError()

    existing = (
        await session.execute(
            select(Payment)
            .where(
                Payment.appointment_id == appointment.id,
                Payment.provider == "stripe",
                Payment.kind == kind,
                Payment.status == PaymentStatus.PENDING,
            )
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
    ).scalar_one_or_none()

    if existing is not None and existing.amount_cents == amount:
        checkout = await gateway.retrieve_session(existing.provider_payment_id)
        if checkout.get("payment_status") == "paid":
            raise NothingToPayError("Este pagamento já foi concluído.")
        if checkout.get("status") in stripe_client.REUSABLE_SESSION_STATUSES:
            logger.info(
                f"Reusing open checkout {existing.provider_payment_id}",
                extra={"appointment_id": appointment.id},
            )
            return CheckoutResult(
                session_id=existing.provider_payment_id,
                url=checkout.get("url"),
                amount_cents=amount,
                kind=kind,
                reused=True,
            )

    service = await session.get(Service, appointment.service_id)
    customer = await session.get(Customer, appointment.customer_id)

    checkout = await gateway.create_checkout_session(
        appointment_id=str(appointment.id),
        customer_id=str(appointment.customer_id),
        amount_cents=amount,
        title=CHECKOUT_TITLES[kind],
        description=service.name if service else "Agendamento",
        kind=kind.value,
        customer_email=customer.email if customer else None,
    )

    session.add(
        Payment(
            appointment_id=appointment.id,
            provider="stripe",
            provider_payment_id=checkout["id"],
            kind=kind,
            covers_deposit=kind in (PaymentKind.DEPOSIT, PaymentKind.FULL),
            amount_cents=amount,
            status=PaymentStatus.PENDING,
            payload=checkout,
        )
    )
    await session.commit()

    return CheckoutResult(
        session_id=checkout["id"],
        url=checkout.get("url"),
        amount_cents=amount,
        kind=kind,
    )
