"""
Maintenance worker - periodic appointment lifecycle sweeps.

Jobs:
1. expire_pending (every EXPIRATION_SWEEP_INTERVAL_SECONDS): cancel `pending`
   appointments older than the grace period whose deposit was not paid
2. finalize_past (every COMPLETION_SWEEP_INTERVAL_SECONDS): mark appointments
   that started more than COMPLETION_GRACE_HOURS ago as `completed`
3. dispatch_reminders (every REMINDER_DISPATCH_INTERVAL_SECONDS): send due
   reminders

Every status change is a guarded UPDATE that re-checks eligibility at write
time, so a webhook confirming an appointment between the sweep's SELECT and
its UPDATE always wins.

Architecture:
    - Single event loop, asyncio.sleep() between ticks
    - Per-row failures are logged and skipped, never abort a batch
    - Health check file under HEALTH_CHECK_DIR
    - Graceful shutdown on SIGTERM/SIGINT
"""

import asyncio
import json
import logging
import signal
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from booking.fsm import AppointmentEvent, AppointmentFSM
from booking.services.appointment_service import guarded_update
from booking.services.pricing_service import normalize_int
from booking.services.reminder_service import process_due_reminders
from database.connection import get_async_session
from database.models import (
    NON_TERMINAL_STATUSES,
    Appointment,
    AppointmentStatus,
    Payment,
    PaymentStatus,
)
from shared.config import get_settings
from shared.logging_config import configure_logging

logger = logging.getLogger(__name__)

# Global flag for graceful shutdown
shutdown_requested = False

EXPIRATION_REASON = "pending payment expired"


def signal_handler(signum: int, frame: Any) -> None:
    """
    Handle SIGTERM/SIGINT for graceful shutdown.
    """
    global shutdown_requested
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    shutdown_requested = True


@dataclass
class SweepResult:
    transitioned: int = 0
    failed: int = 0


# =============================================================================
# Job 1: Expire unpaid pending appointments
# =============================================================================


def determine_pending_to_cancel(
    appointments: Iterable[Appointment],
    paid_totals: dict[UUID, Any],
) -> list[Appointment]:
    """
    Pick pending appointments whose deposit is not covered.

    An appointment is a candidate when its deposit is missing or zero, or
    when the approved total paid is below the deposit. Amounts are
    normalized best-effort; negatives count as zero.
    """
    candidates = []
    for appointment in appointments:
        deposit = max(normalize_int(appointment.deposit_cents) or 0, 0)
        if deposit <= 0:
            candidates.append(appointment)
            continue

        paid = max(normalize_int(paid_totals.get(appointment.id)) or 0, 0)
        if paid < deposit:
            candidates.append(appointment)
    return candidates


async def get_paid_totals(session: AsyncSession, appointment_ids: list[UUID]) -> dict[UUID, int]:
    """Sum of approved payments per appointment."""
    if not appointment_ids:
        return {}

    result = await session.execute(
        select(Payment.appointment_id, func.sum(Payment.amount_cents))
        .where(
            Payment.appointment_id.in_(appointment_ids),
            Payment.status == PaymentStatus.APPROVED,
        )
        .group_by(Payment.appointment_id)
    )
    return {appointment_id: int(total or 0) for appointment_id, total in result.all()}


def _deposit_still_unpaid() -> Any:
    """Correlated condition: deposit missing, or approved payments below it."""
    paid = (
        select(func.coalesce(func.sum(Payment.amount_cents), 0))
        .where(
            Payment.appointment_id == Appointment.id,
            Payment.status == PaymentStatus.APPROVED,
        )
        .correlate(Appointment)
        .scalar_subquery()
    )
    return or_(Appointment.deposit_cents <= 0, paid < Appointment.deposit_cents)


async def cancel_expired_pending_appointments(
    session: AsyncSession,
    grace_hours: int = 2,
    batch_size: int = 200,
    now: datetime | None = None,
) -> SweepResult:
    """
    Cancel `pending` appointments created before now - grace_hours whose
    deposit is not paid.

    Each candidate is written with its own guarded UPDATE and commit.
    """
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(hours=grace_hours)

    result = await session.execute(
        select(Appointment)
        .where(
            Appointment.status == AppointmentStatus.PENDING,
            Appointment.created_at < cutoff,
        )
        .order_by(Appointment.created_at.asc())
        .limit(batch_size)
    )
    pending = list(result.scalars().all())

    sweep = SweepResult()
    if not pending:
        logger.info("No expired pending appointments")
        return sweep

    paid_totals = await get_paid_totals(session, [a.id for a in pending])
    candidates = determine_pending_to_cancel(pending, paid_totals)
    logger.info(f"Found {len(candidates)}/{len(pending)} pending appointments to expire")

    for appointment in candidates:
        appointment_id = appointment.id
        try:
            canceled = await guarded_update(
                session,
                appointment_id,
                AppointmentFSM.sources_for(AppointmentEvent.EXPIRE),
                {
                    "status": AppointmentStatus.CANCELED,
                    "canceled_at": now,
                    "cancellation_reason": EXPIRATION_REASON,
                },
                extra_conditions=(_deposit_still_unpaid(),),
            )
            await session.commit()
        except Exception as e:
            sweep.failed += 1
            logger.error(
                f"Error expiring appointment: {e}",
                extra={"appointment_id": appointment_id},
                exc_info=True,
            )
            await session.rollback()
            continue

        if canceled:
            sweep.transitioned += 1
            logger.info("Expired unpaid pending appointment", extra={"appointment_id": appointment_id})
        else:
            logger.info(
                "Appointment changed before expiration, skipped",
                extra={"appointment_id": appointment_id},
            )

    return sweep


# =============================================================================
# Job 2: Complete past appointments
# =============================================================================


async def finalize_past_appointments(
    session: AsyncSession,
    grace_hours: int = 3,
    batch_size: int = 500,
    now: datetime | None = None,
) -> SweepResult:
    """
    Mark non-terminal appointments that started at or before now - grace_hours
    as `completed`, batch_size rows per UPDATE, until none remain.
    """
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(hours=grace_hours)
    sweep = SweepResult()

    while True:
        ids = list(
            (
                await session.execute(
                    select(Appointment.id)
                    .where(
                        Appointment.status.in_(NON_TERMINAL_STATUSES),
                        Appointment.start_time <= cutoff,
                    )
                    .order_by(Appointment.start_time.asc())
                    .limit(batch_size)
                )
            )
            .scalars()
            .all()
        )
        if not ids:
            break

        try:
            result = await session.execute(
                update(Appointment)
                .where(
                    Appointment.id.in_(ids),
                    Appointment.status.in_(NON_TERMINAL_STATUSES),
                )
                .values(
                    status=AppointmentStatus.COMPLETED,
                    version=Appointment.version + 1,
                    updated_at=now,
                )
                .returning(Appointment.id)
                .execution_options(synchronize_session=False)
            )
            completed = len(result.all())
            await session.commit()
        except Exception as e:
            sweep.failed += len(ids)
            logger.error(f"Error completing batch of {len(ids)} appointments: {e}", exc_info=True)
            await session.rollback()
            break

        sweep.transitioned += completed
        logger.info(f"Completed {completed} past appointments")

        if len(ids) < batch_size:
            break

    return sweep


# =============================================================================
# Job runners
# =============================================================================


async def expire_pending() -> SweepResult:
    settings = get_settings()
    async with get_async_session() as session:
        return await cancel_expired_pending_appointments(
            session,
            grace_hours=settings.PENDING_EXPIRATION_GRACE_HOURS,
            batch_size=settings.EXPIRATION_BATCH_SIZE,
        )


async def finalize_past() -> SweepResult:
    settings = get_settings()
    async with get_async_session() as session:
        return await finalize_past_appointments(
            session,
            grace_hours=settings.COMPLETION_GRACE_HOURS,
            batch_size=settings.COMPLETION_BATCH_SIZE,
        )


async def dispatch_reminders() -> SweepResult:
    async with get_async_session() as session:
        summary = await process_due_reminders(session)
    return SweepResult(transitioned=summary.sent, failed=summary.errors)


async def run_job(job_name: str, job: Callable[[], Awaitable[SweepResult]]) -> None:
    """Run one job, log a summary and record it in the health check file."""
    started = time.monotonic()
    logger.info(f"Starting {job_name} job")

    try:
        result = await job()
    except Exception as e:
        logger.exception(f"Critical error in {job_name}: {e}")
        result = SweepResult(failed=1)

    duration = time.monotonic() - started
    logger.info(
        f"Completed {job_name} in {duration:.2f}s: "
        f"transitioned={result.transitioned}, failed={result.failed}"
    )

    await update_health_check(
        job_name=job_name,
        last_run=datetime.now(UTC),
        status="healthy" if result.failed == 0 else "unhealthy",
        processed=result.transitioned,
        errors=result.failed,
    )


# =============================================================================
# Health Check
# =============================================================================


async def update_health_check(
    job_name: str,
    last_run: datetime,
    status: str,
    processed: int,
    errors: int,
    health_dir: Path | None = None,
) -> None:
    """
    Update health check file with job statistics.

    Args:
        job_name: Name of the job
        last_run: Timestamp of job completion
        status: Health status ('healthy' or 'unhealthy')
        processed: Number of items processed
        errors: Number of errors encountered
        health_dir: Directory of the health file (default: HEALTH_CHECK_DIR)
    """
    health_dir = health_dir or Path(get_settings().HEALTH_CHECK_DIR)
    health_dir.mkdir(parents=True, exist_ok=True)
    health_file = health_dir / "maintenance_worker_health.json"
    temp_file = health_dir / f"maintenance_worker_health.{int(time.time())}.tmp"

    health_data: dict[str, Any] = {}
    if health_file.exists():
        try:
            health_data = json.loads(health_file.read_text())
        except (OSError, ValueError):
            logger.warning(f"Unreadable health check file {health_file}, rewriting")

    health_data[job_name] = {
        "last_run": last_run.isoformat(),
        "status": status,
        "processed": processed,
        "errors": errors,
    }

    all_healthy = all(
        job.get("status") == "healthy"
        for job in health_data.values()
        if isinstance(job, dict)
    )
    health_data["overall_status"] = "healthy" if all_healthy else "unhealthy"
    health_data["last_updated"] = datetime.now(UTC).isoformat()

    try:
        temp_file.write_text(json.dumps(health_data, indent=2))
        temp_file.rename(health_file)
        logger.debug(f"Health check file updated: {health_file}")
    except OSError as e:
        logger.error(f"Failed to write health check file: {e}", exc_info=True)


# =============================================================================
# Main Entry Point
# =============================================================================


def _is_due(last_run: float | None, interval_seconds: int, now: float) -> bool:
    return last_run is None or now - last_run >= interval_seconds


async def async_main(tick_seconds: float = 30.0) -> None:
    """
    Run the maintenance jobs on their intervals in a single event loop.

    All jobs run immediately on startup, then whenever their interval has
    elapsed. Handles graceful shutdown on SIGTERM/SIGINT.
    """
    settings = get_settings()

    logger.info("Maintenance worker starting...")
    logger.info(
        f"Configuration: expiration every {settings.EXPIRATION_SWEEP_INTERVAL_SECONDS}s "
        f"(grace {settings.PENDING_EXPIRATION_GRACE_HOURS}h), "
        f"completion every {settings.COMPLETION_SWEEP_INTERVAL_SECONDS}s "
        f"(grace {settings.COMPLETION_GRACE_HOURS}h), "
        f"reminders every {settings.REMINDER_DISPATCH_INTERVAL_SECONDS}s"
    )

    await update_health_check(
        job_name="startup",
        last_run=datetime.now(UTC),
        status="healthy",
        processed=0,
        errors=0,
    )

    jobs = [
        ("expire_pending", expire_pending, settings.EXPIRATION_SWEEP_INTERVAL_SECONDS),
        ("finalize_past", finalize_past, settings.COMPLETION_SWEEP_INTERVAL_SECONDS),
        ("dispatch_reminders", dispatch_reminders, settings.REMINDER_DISPATCH_INTERVAL_SECONDS),
    ]
    last_runs: dict[str, float | None] = {name: None for name, _, _ in jobs}

    while not shutdown_requested:
        for name, job, interval in jobs:
            if shutdown_requested:
                break
            now = time.monotonic()
            if _is_due(last_runs[name], interval, now):
                await run_job(name, job)
                last_runs[name] = now

        await asyncio.sleep(tick_seconds)

    logger.info("Maintenance worker shutting down gracefully...")


def run_maintenance_worker() -> None:
    """
    Synchronous entry point that sets up logging and signal handlers,
    then runs the async main function.
    """
    configure_logging()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    asyncio.run(async_main())


if __name__ == "__main__":
    run_maintenance_worker()
