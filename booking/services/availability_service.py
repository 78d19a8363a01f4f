"""
Availability calculator.

Computes bookable slots for a service on a given day and per-day occupancy
states over a window, using PostgreSQL appointments as the source of truth.

A slot [s, s + duration) is unavailable when it overlaps the busy interval
[start, end + buffer) of any non-terminal appointment of the same service
(and staff, when one is given). The buffer is the occupying appointment's
own snapshot, not the buffer of the service being queried.

All day boundaries are computed in the business timezone (TIMEZONE setting),
never in UTC.

Usage:
    from booking.services.availability_service import get_available_slots

    async with get_async_session() as session:
        slots = await get_available_slots(session, service_id, date(2025, 3, 10))
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Iterable, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from booking.services.pricing_service import resolve_service_pricing
from database.models import NON_TERMINAL_STATUSES, Appointment, Blackout, BusinessHours
from shared.config import get_settings

logger = logging.getLogger(__name__)

# Widest buffer we look back for when loading appointments that may still
# occupy the start of a window.
MAX_LOOKBACK = timedelta(days=1)


@dataclass(frozen=True)
class BusinessCalendar:
    """
    Operating window and slot grid of the business.

    `weekly_hours` maps a weekday (0=Monday) to its (open, close) times, or
    to None when the business is closed that day. Weekdays missing from the
    mapping use `open_time`/`close_time`.
    """

    tz: ZoneInfo
    open_time: time
    close_time: time
    step_minutes: int = 30
    fallback_buffer_min: int = 15
    weekly_hours: dict[int, tuple[time, time] | None] = field(
        default_factory=dict, compare=False, hash=False
    )

    @classmethod
    def from_settings(
        cls, weekly_hours: dict[int, tuple[time, time] | None] | None = None
    ) -> "BusinessCalendar":
        settings = get_settings()
        return cls(
            tz=ZoneInfo(settings.TIMEZONE),
            open_time=_parse_hhmm(settings.BUSINESS_OPEN_TIME),
            close_time=_parse_hhmm(settings.BUSINESS_CLOSE_TIME),
            step_minutes=settings.SLOT_STEP_MINUTES,
            fallback_buffer_min=max(0, settings.DEFAULT_BUFFER_MIN),
            weekly_hours=dict(weekly_hours or {}),
        )

    def hours_for(self, day: date) -> tuple[time, time] | None:
        """(open, close) of `day`, or None when closed."""
        if day.weekday() in self.weekly_hours:
            hours = self.weekly_hours[day.weekday()]
            if hours is None or hours[1] <= hours[0]:
                return None
            return hours
        return self.open_time, self.close_time

    def is_closed(self, day: date) -> bool:
        return self.hours_for(day) is None

    def opening(self, day: date) -> datetime | None:
        hours = self.hours_for(day)
        return datetime.combine(day, hours[0], tzinfo=self.tz) if hours else None

    def closing(self, day: date) -> datetime | None:
        hours = self.hours_for(day)
        return datetime.combine(day, hours[1], tzinfo=self.tz) if hours else None

    def slot_template(self, day: date) -> list[str]:
        hours = self.hours_for(day)
        if hours is None:
            return []
        return make_slots(hours[0].strftime("%H:%M"), hours[1].strftime("%H:%M"), self.step_minutes)

    def local_day(self, moment: datetime) -> date:
        return moment.astimezone(self.tz).date()

    def today(self, now: datetime | None = None) -> date:
        return self.local_day(now or datetime.now(self.tz))


def _parse_hhmm(value: str) -> time:
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


def make_slots(start: str = "09:00", end: str = "18:00", step_minutes: int = 30) -> list[str]:
    """
    Build the daily slot template as HH:MM strings.

    The close time itself is part of the template when it falls on the grid;
    whether a slot actually fits is decided per service duration.
    """
    step = step_minutes or 30
    cursor = datetime.combine(date(2000, 1, 1), _parse_hhmm(start))
    limit = datetime.combine(date(2000, 1, 1), _parse_hhmm(end))

    slots: list[str] = []
    while cursor <= limit:
        slots.append(cursor.strftime("%H:%M"))
        cursor += timedelta(minutes=step)
    return slots


# ============================================================================
# Busy intervals
# ============================================================================


@dataclass(frozen=True)
class BusyInterval:
    """Time occupied by an appointment, buffer included: [start, end)."""

    start: datetime
    end: datetime
    appointment_id: UUID | None = None
    customer_id: UUID | None = None

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start


def busy_interval_for(appointment: Appointment, fallback_buffer_min: int = 15) -> BusyInterval:
    """Busy interval of an appointment using its own buffer snapshot."""
    buffer_min = appointment.buffer_min
    if buffer_min is None:
        buffer_min = fallback_buffer_min
    return BusyInterval(
        start=appointment.start_time,
        end=appointment.end_time + timedelta(minutes=max(0, buffer_min)),
        appointment_id=appointment.id,
        customer_id=appointment.customer_id,
    )


def compute_day_slots(
    day: date,
    service_duration_min: int,
    busy: Iterable[BusyInterval],
    calendar: BusinessCalendar,
    now: datetime | None = None,
) -> list[datetime]:
    """
    Ordered bookable start times for `day`.

    A slot is kept when it ends by closing time, does not overlap any busy
    interval and (when `now` is given) starts after `now`. Closed days have
    no slots.
    """
    closing = calendar.closing(day)
    if closing is None:
        return []

    busy = list(busy)
    duration = timedelta(minutes=max(0, service_duration_min))
    template = calendar.slot_template(day)

    slots: list[datetime] = []
    for hhmm in template:
        start = datetime.combine(day, _parse_hhmm(hhmm), tzinfo=calendar.tz)
        end = start + duration
        if end > closing:
            continue
        if now is not None and start <= now:
            continue
        if any(interval.overlaps(start, end) for interval in busy):
            continue
        slots.append(start)
    return slots


def is_within_operating_window(
    start: datetime, duration_min: int, calendar: BusinessCalendar
) -> bool:
    """True when [start, start + duration) fits between opening and closing of its local day."""
    day = calendar.local_day(start)
    opening, closing = calendar.opening(day), calendar.closing(day)
    if opening is None or closing is None:
        return False
    end = start + timedelta(minutes=max(0, duration_min))
    return opening <= start and end <= closing


# ============================================================================
# Per-day occupancy
# ============================================================================


class DayState(str, Enum):
    """Occupancy state of a calendar day."""

    AVAILABLE = "available"
    PARTIALLY_BOOKED = "partially_booked"
    FULLY_BOOKED = "fully_booked"
    MINE = "mine"
    PAST = "past"
    CLOSED = "closed"


@dataclass
class DayAvailability:
    """Availability of one day for one customer."""

    day: date
    state: DayState
    slots: list[str] = field(default_factory=list)
    booked_slots: list[str] = field(default_factory=list)
    busy_intervals: list[BusyInterval] = field(default_factory=list)

    @property
    def disabled(self) -> bool:
        return self.state in (DayState.PAST, DayState.FULLY_BOOKED, DayState.CLOSED)

    def to_dict(self) -> dict:
        return {
            "date": self.day.isoformat(),
            "state": self.state.value,
            "disabled": self.disabled,
            "slots": self.slots,
            "booked_slots": self.booked_slots,
            "busy_intervals": [
                {"start": b.start.isoformat(), "end": b.end.isoformat()}
                for b in self.busy_intervals
            ],
        }


def build_availability(
    appointments: Iterable[Appointment],
    customer_id: Optional[UUID],
    today: date,
    calendar: BusinessCalendar,
    days: int = 60,
    service_duration_min: int | None = None,
    start_day: date | None = None,
    blackouts: Iterable[BusyInterval] = (),
) -> list[DayAvailability]:
    """
    Per-day states for `days` days starting at `start_day` (default: `today`,
    in the business timezone).

    - past: strictly before today, regardless of occupancy
    - mine: the customer owns a non-terminal appointment that day
    - closed: the business does not open that weekday
    - fully_booked: no slot left
    - partially_booked: some, not all, slots taken
    - available: nothing taken

    Blackouts count as busy time on every day they overlap.
    """
    total_days = max(1, days)
    first_day = start_day or today
    duration = service_duration_min if service_duration_min is not None else calendar.step_minutes

    per_day: dict[date, list[BusyInterval]] = {}
    booked_times: dict[date, set[str]] = {}
    my_days: set[date] = set()

    for appointment in appointments:
        if appointment.status not in NON_TERMINAL_STATUSES:
            continue
        local_start = appointment.start_time.astimezone(calendar.tz)
        day = local_start.date()
        per_day.setdefault(day, []).append(
            busy_interval_for(appointment, calendar.fallback_buffer_min)
        )
        booked_times.setdefault(day, set()).add(local_start.strftime("%H:%M"))
        if customer_id is not None and appointment.customer_id == customer_id:
            my_days.add(day)

    blackouts = list(blackouts)

    result: list[DayAvailability] = []
    for offset in range(total_days):
        day = first_day + timedelta(days=offset)
        day_start = datetime.combine(day, time.min, tzinfo=calendar.tz)
        day_end = day_start + timedelta(days=1)
        intervals = per_day.get(day, []) + [
            b for b in blackouts if b.overlaps(day_start, day_end)
        ]
        intervals.sort(key=lambda b: b.start)

        if day < today:
            state = DayState.PAST
        elif day in my_days:
            state = DayState.MINE
        elif calendar.is_closed(day):
            state = DayState.CLOSED
        elif not intervals:
            state = DayState.AVAILABLE
        else:
            capacity = len(compute_day_slots(day, duration, [], calendar))
            remaining = len(compute_day_slots(day, duration, intervals, calendar))
            if remaining == 0:
                state = DayState.FULLY_BOOKED
            elif remaining < capacity:
                state = DayState.PARTIALLY_BOOKED
            else:
                state = DayState.AVAILABLE

        result.append(
            DayAvailability(
                day=day,
                state=state,
                slots=calendar.slot_template(day),
                booked_slots=sorted(booked_times.get(day, set())),
                busy_intervals=intervals,
            )
        )

    return result


# ============================================================================
# Database entry points
# ============================================================================


async def load_business_calendar(session: AsyncSession) -> BusinessCalendar:
    """Settings calendar with the per-weekday hours of the business_hours table."""
    result = await session.execute(select(BusinessHours))
    weekly_hours = {row.day_of_week: row.opening_hours() for row in result.scalars().all()}
    return BusinessCalendar.from_settings(weekly_hours=weekly_hours)


async def load_blackouts(
    session: AsyncSession,
    window_start: datetime,
    window_end: datetime,
    staff_id: UUID | None = None,
) -> list[BusyInterval]:
    """Business-wide blackouts touching the window, plus those of `staff_id` when given."""
    owner = Blackout.staff_id.is_(None)
    if staff_id is not None:
        owner = or_(owner, Blackout.staff_id == staff_id)

    result = await session.execute(
        select(Blackout)
        .where(
            owner,
            Blackout.start_time < window_end,
            Blackout.end_time > window_start,
        )
        .order_by(Blackout.start_time)
    )
    return [
        BusyInterval(start=blackout.start_time, end=blackout.end_time)
        for blackout in result.scalars().all()
    ]


async def load_busy_intervals(
    session: AsyncSession,
    service_id: UUID,
    window_start: datetime,
    window_end: datetime,
    staff_id: UUID | None = None,
    exclude_appointment_id: UUID | None = None,
    fallback_buffer_min: int = 15,
) -> list[BusyInterval]:
    """
    Busy intervals touching [window_start, window_end).

    Covers non-terminal appointments of the service plus blackouts: the
    business-wide ones, and the ones of `staff_id` when a staff member is
    given.
    """
    conditions = [
        Appointment.service_id == service_id,
        Appointment.status.in_(NON_TERMINAL_STATUSES),
        Appointment.start_time < window_end,
        Appointment.end_time > window_start - MAX_LOOKBACK,
    ]
    if staff_id is not None:
        conditions.append(Appointment.staff_id == staff_id)
    if exclude_appointment_id is not None:
        conditions.append(Appointment.id != exclude_appointment_id)

    result = await session.execute(
        select(Appointment).where(*conditions).order_by(Appointment.start_time)
    )
    intervals = [
        busy_interval_for(appointment, fallback_buffer_min)
        for appointment in result.scalars().all()
    ]

    intervals.extend(await load_blackouts(session, window_start, window_end, staff_id=staff_id))

    return [b for b in intervals if b.overlaps(window_start, window_end)]


async def get_available_slots(
    session: AsyncSession,
    service_id: UUID,
    day: date,
    staff_id: UUID | None = None,
    assignment_id: UUID | None = None,
    now: datetime | None = None,
) -> list[str]:
    """
    Bookable start times for a service on a day, as ISO 8601 strings.

    Raises:
        ServiceNotFoundError: If the service does not exist or is inactive
    """
    calendar = await load_business_calendar(session)
    pricing = await resolve_service_pricing(session, service_id, assignment_id)

    opening, closing = calendar.opening(day), calendar.closing(day)
    if opening is None or closing is None:
        logger.info(f"Business closed on {day.isoformat()}, no slots for service {service_id}")
        return []

    busy = await load_busy_intervals(
        session,
        service_id,
        opening,
        closing,
        staff_id=staff_id,
        fallback_buffer_min=calendar.fallback_buffer_min,
    )

    slots = compute_day_slots(
        day,
        pricing.values.duration_min,
        busy,
        calendar,
        now=now or datetime.now(calendar.tz),
    )

    logger.info(
        f"Computed {len(slots)} slots for service {service_id} on {day.isoformat()} "
        f"(busy intervals: {len(busy)})"
    )
    return [slot.isoformat() for slot in slots]


async def check_slot_available(
    session: AsyncSession,
    service_id: UUID,
    start: datetime,
    duration_min: int,
    staff_id: UUID | None = None,
    exclude_appointment_id: UUID | None = None,
) -> bool:
    """
    True when [start, start + duration) overlaps no busy interval.

    `exclude_appointment_id` ignores the appointment being rescheduled.
    """
    calendar = BusinessCalendar.from_settings()
    end = start + timedelta(minutes=max(0, duration_min))
    busy = await load_busy_intervals(
        session,
        service_id,
        start,
        end,
        staff_id=staff_id,
        exclude_appointment_id=exclude_appointment_id,
        fallback_buffer_min=calendar.fallback_buffer_min,
    )
    if busy:
        logger.info(
            f"Slot {start.isoformat()} for service {service_id} conflicts with "
            f"{len(busy)} busy interval(s)"
        )
    return not busy


async def get_customer_availability(
    session: AsyncSession,
    service_id: UUID,
    customer_id: UUID | None,
    days: int | None = None,
    now: datetime | None = None,
) -> list[DayAvailability]:
    """Per-day availability of a service for the calling customer."""
    settings = get_settings()
    calendar = await load_business_calendar(session)
    total_days = max(1, days or settings.AVAILABILITY_DAYS)

    pricing = await resolve_service_pricing(session, service_id)

    today = calendar.today(now)
    window_start = datetime.combine(today, time.min, tzinfo=calendar.tz)
    window_end = window_start + timedelta(days=total_days)

    result = await session.execute(
        select(Appointment).where(
            Appointment.service_id == service_id,
            Appointment.status.in_(NON_TERMINAL_STATUSES),
            Appointment.start_time >= window_start,
            Appointment.start_time < window_end,
        )
    )
    appointments = list(result.scalars().all())
    blackouts = await load_blackouts(session, window_start, window_end)

    return build_availability(
        appointments,
        customer_id,
        today,
        calendar,
        days=total_days,
        service_duration_min=pricing.values.duration_min,
        blackouts=blackouts,
    )
