"""
Reminder scheduling and dispatch.

When an appointment reaches `confirmed`, two reminders are enqueued:
- reminder_24h: 24 hours before start
- reminder_2h: 2 hours before start

A periodic dispatcher picks due reminders, sends them through the
notification channel and records the outcome on the row (sent / error,
attempts, last_error). Reminders in `error` are picked up again while
attempts < REMINDER_MAX_ATTEMPTS and the appointment is still confirmed.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import and_, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    Appointment,
    AppointmentStatus,
    Customer,
    Reminder,
    ReminderStatus,
)
from shared.config import get_settings
from shared.notification_client import SUPPORTED_CHANNELS, NotificationClient

logger = logging.getLogger(__name__)

# template -> offset before start
DEFAULT_REMINDER_OFFSETS = {
    "reminder_24h": timedelta(hours=24),
    "reminder_2h": timedelta(hours=2),
}

NO_LONGER_CONFIRMED = "appointment no longer confirmed"


def _first_name(customer: Customer) -> str:
    return (customer.first_name or "").strip().split(" ")[0]


def render_reminder_message(template: str, first_name: str, local_start: datetime) -> str:
    hora = local_start.strftime("%H:%M")
    if template == "reminder_24h":
        return (
            f"Oi {first_name}! Lembrete: seu horário é amanhã às {hora}. "
            f"Qualquer imprevisto, avise por aqui."
        )
    return f"{first_name}, é hoje! Seu horário é às {hora}. Qualquer atraso avise por aqui. Até já!"


def build_default_reminders(
    appointment: Appointment,
    customer: Customer,
    tz: ZoneInfo,
) -> list[dict[str, Any]]:
    """
    Reminder rows for a confirmed appointment.

    Returns an empty list when the customer has no phone number.
    """
    if not customer.phone:
        logger.info(
            "Customer has no phone, no reminders enqueued",
            extra={"appointment_id": appointment.id, "customer_id": customer.id},
        )
        return []

    local_start = appointment.start_time.astimezone(tz)
    first_name = _first_name(customer)

    return [
        {
            "appointment_id": appointment.id,
            "channel": "whatsapp",
            "template": template,
            "to_address": customer.phone,
            "message": render_reminder_message(template, first_name, local_start),
            "scheduled_at": appointment.start_time - offset,
            "status": ReminderStatus.PENDING,
            "attempts": 0,
        }
        for template, offset in DEFAULT_REMINDER_OFFSETS.items()
    ]


async def enqueue_default_reminders(session: AsyncSession, appointment_id: UUID) -> int:
    """
    Insert the default reminders of an appointment. Does not commit.

    Rows already present for the same template are left untouched.

    Returns:
        Number of reminder rows built
    """
    appointment = await session.get(Appointment, appointment_id)
    if appointment is None:
        logger.warning(f"Cannot enqueue reminders: appointment {appointment_id} not found")
        return 0

    customer = await session.get(Customer, appointment.customer_id)
    if customer is None:
        logger.warning(
            "Cannot enqueue reminders: customer not found",
            extra={"appointment_id": appointment_id},
        )
        return 0

    rows = build_default_reminders(appointment, customer, ZoneInfo(get_settings().TIMEZONE))
    if not rows:
        return 0

    await session.execute(
        pg_insert(Reminder)
        .values(rows)
        .on_conflict_do_nothing(constraint="uq_reminders_appointment_template")
    )
    logger.info(
        f"Enqueued {len(rows)} reminders",
        extra={"appointment_id": appointment_id},
    )
    return len(rows)


@dataclass
class DispatchSummary:
    processed: int = 0
    sent: int = 0
    errors: int = 0


async def select_due_reminders(
    session: AsyncSession,
    limit: int,
    max_attempts: int,
    now: datetime,
) -> list[tuple[Reminder, AppointmentStatus]]:
    """Due pending reminders, plus retryable errored ones, oldest first."""
    result = await session.execute(
        select(Reminder, Appointment.status)
        .join(Appointment, Appointment.id == Reminder.appointment_id)
        .where(
            Reminder.scheduled_at <= now,
            or_(
                Reminder.status == ReminderStatus.PENDING,
                and_(
                    Reminder.status == ReminderStatus.ERROR,
                    Reminder.attempts < max_attempts,
                    Appointment.status == AppointmentStatus.CONFIRMED,
                ),
            ),
        )
        .order_by(Reminder.scheduled_at.asc())
        .limit(limit)
        .with_for_update(of=Reminder, skip_locked=True)
    )
    return [(row[0], row[1]) for row in result.all()]


async def process_due_reminders(
    session: AsyncSession,
    notifier: NotificationClient | None = None,
    limit: int | None = None,
    now: datetime | None = None,
) -> DispatchSummary:
    """
    Send due reminders and record each outcome.

    Every attempt increments `attempts`. Send failures and unsupported
    channels are stored as `error` with `last_error`; they never abort the
    batch. Commits once at the end.
    """
    settings = get_settings()
    notifier = notifier or NotificationClient()
    now = now or datetime.now(UTC)
    limit = limit or settings.REMINDER_BATCH_SIZE

    due = await select_due_reminders(session, limit, settings.REMINDER_MAX_ATTEMPTS, now)
    summary = DispatchSummary()
    if not due:
        logger.debug("No reminders due")
        return summary

    logger.info(f"Dispatching {len(due)} due reminders")

    for reminder, appointment_status in due:
        summary.processed += 1
        reminder.attempts = (reminder.attempts or 0) + 1

        if appointment_status != AppointmentStatus.CONFIRMED:
            reminder.status = ReminderStatus.ERROR
            reminder.last_error = NO_LONGER_CONFIRMED
            summary.errors += 1
            continue

        if reminder.channel not in SUPPORTED_CHANNELS:
            reminder.status = ReminderStatus.ERROR
            reminder.last_error = f"unsupported channel: {reminder.channel}"
            summary.errors += 1
            continue

        try:
            result = await notifier.send(reminder.to_address, reminder.message)
        except Exception as e:
            logger.error(
                f"Unexpected error sending reminder: {e}",
                extra={"reminder_id": reminder.id, "appointment_id": reminder.appointment_id},
                exc_info=True,
            )
            reminder.status = ReminderStatus.ERROR
            reminder.last_error = str(e) or type(e).__name__
            summary.errors += 1
            continue

        if result.ok:
            reminder.status = ReminderStatus.SENT
            reminder.sent_at = datetime.now(UTC)
            reminder.last_error = None
            summary.sent += 1
        else:
            reminder.status = ReminderStatus.ERROR
            reminder.last_error = result.note or "send fail"
            summary.errors += 1
            logger.warning(
                f"Reminder not delivered: {reminder.last_error}",
                extra={"reminder_id": reminder.id, "appointment_id": reminder.appointment_id},
            )

    await session.commit()

    logger.info(
        f"Reminder dispatch done: processed={summary.processed}, "
        f"sent={summary.sent}, errors={summary.errors}"
    )
    return summary
