"""Builders shared by unit and integration tests."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock
from uuid import uuid4

from database.models import Appointment, AppointmentStatus, Customer


def make_appointment(**overrides) -> Appointment:
    """Build a detached Appointment with sensible defaults."""
    start = overrides.pop("start_time", datetime.now(UTC) + timedelta(days=3))
    duration = overrides.pop("duration_min", 60)
    values = {
        "id": uuid4(),
        "customer_id": uuid4(),
        "service_id": uuid4(),
        "assignment_id": None,
        "staff_id": None,
        "start_time": start,
        "end_time": start + timedelta(minutes=duration),
        "buffer_min": 15,
        "status": AppointmentStatus.PENDING,
        "total_cents": 10000,
        "deposit_cents": 3000,
        "version": 1,
        "created_at": datetime.now(UTC),
    }
    values.update(overrides)
    return Appointment(**values)


def make_customer(**overrides) -> Customer:
    values = {
        "id": uuid4(),
        "first_name": "Ana Paula",
        "last_name": "Souza",
        "phone": "+5511999990000",
        "email": "ana@example.com",
    }
    values.update(overrides)
    return Customer(**values)


def result_with(scalar=None, scalars=None, rows=None) -> MagicMock:
    """Fake SQLAlchemy Result for session.execute()."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalar_one.return_value = scalar
    result.scalars.return_value.all.return_value = scalars or []
    result.all.return_value = rows or []
    return result
