"""Integration tests for the booking endpoints (services mocked)."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from api.main import app
from booking.errors import (
    DepositForfeitWarning,
    ServiceNotFoundError,
    SlotUnavailableError,
    StaleAppointmentError,
)
from booking.services.appointment_service import (
    CancellationOutcome,
    CancellationQuote,
    CheckoutResult,
)
from booking.services.availability_service import DayAvailability, DayState
from database.connection import get_db_session
from database.models import AppointmentStatus, PaymentKind
from tests.helpers import make_appointment

CUSTOMER_ID = uuid4()
HEADERS = {"X-Customer-Id": str(CUSTOMER_ID)}


@pytest.fixture
def client():
    session = AsyncMock()

    async def override_session():
        yield session

    app.dependency_overrides[get_db_session] = override_session
    yield TestClient(app)
    app.dependency_overrides.clear()


def quote_for(appointment, forfeited=3000) -> CancellationQuote:
    return CancellationQuote(
        appointment_id=appointment.id,
        paid_cents=3000,
        deposit_cents=3000,
        refundable_cents=3000 - forfeited,
        forfeited_cents=forfeited,
        within_threshold=forfeited > 0,
        hours_until_start=10.0,
        threshold_hours=24,
    )


class TestCreateAppointment:
    def test_created(self, client):
        appointment = make_appointment(customer_id=CUSTOMER_ID)

        with patch("api.routes.appointments.create_appointment", new=AsyncMock(return_value=appointment)) as create:
            response = client.post(
                "/appointments",
                json={
                    "service_id": str(appointment.service_id),
                    "start": appointment.start_time.isoformat(),
                },
                headers=HEADERS,
            )

        assert response.status_code == 201
        body = response.json()
        assert body["id"] == str(appointment.id)
        assert body["status"] == "pending"
        assert body["deposit_cents"] == 3000
        assert create.await_args.kwargs["customer_id"] == CUSTOMER_ID

    def test_missing_identity_returns_401(self, client):
        response = client.post(
            "/appointments",
            json={"service_id": str(uuid4()), "start": datetime.now(UTC).isoformat()},
        )
        assert response.status_code == 401

    def test_slot_taken_returns_409(self, client):
        with patch(
            "api.routes.appointments.create_appointment",
            new=AsyncMock(side_effect=SlotUnavailableError()),
        ):
            response = client.post(
                "/appointments",
                json={"service_id": str(uuid4()), "start": "2030-03-11T10:00:00-03:00"},
                headers=HEADERS,
            )

        assert response.status_code == 409
        assert response.json()["error_code"] == "SLOT_UNAVAILABLE"

    def test_unknown_service_returns_404(self, client):
        with patch(
            "api.routes.appointments.create_appointment",
            new=AsyncMock(side_effect=ServiceNotFoundError()),
        ):
            response = client.post(
                "/appointments",
                json={"service_id": str(uuid4()), "start": "2030-03-11T10:00:00-03:00"},
                headers=HEADERS,
            )

        assert response.status_code == 404


class TestRescheduleAndCancel:
    def test_reschedule_stale_returns_409(self, client):
        with patch(
            "api.routes.appointments.reschedule_appointment",
            new=AsyncMock(side_effect=StaleAppointmentError()),
        ):
            response = client.post(
                f"/appointments/{uuid4()}/reschedule",
                json={"start": "2030-03-12T14:00:00-03:00"},
                headers=HEADERS,
            )

        assert response.status_code == 409
        assert response.json()["error_code"] == "STALE_APPOINTMENT"

    def test_cancel_without_acknowledgement_returns_quote(self, client):
        appointment = make_appointment(customer_id=CUSTOMER_ID, status=AppointmentStatus.CONFIRMED)
        warning = DepositForfeitWarning(quote_for(appointment))

        with patch("api.routes.appointments.cancel_appointment", new=AsyncMock(side_effect=warning)):
            response = client.post(
                f"/appointments/{appointment.id}/cancel", json={}, headers=HEADERS
            )

        assert response.status_code == 409
        body = response.json()
        assert body["error_code"] == "DEPOSIT_FORFEIT_CONFIRMATION_REQUIRED"
        assert body["details"]["quote"]["forfeited_cents"] == 3000

    def test_cancel_with_acknowledgement(self, client):
        appointment = make_appointment(
            customer_id=CUSTOMER_ID,
            status=AppointmentStatus.CANCELED,
            canceled_at=datetime.now(UTC),
        )
        outcome = CancellationOutcome(appointment=appointment, quote=quote_for(appointment))

        with patch("api.routes.appointments.cancel_appointment", new=AsyncMock(return_value=outcome)) as cancel:
            response = client.post(
                f"/appointments/{appointment.id}/cancel",
                json={"acknowledge_forfeit": True},
                headers=HEADERS,
            )

        assert response.status_code == 200
        assert response.json()["appointment"]["status"] == "canceled"
        assert cancel.await_args.kwargs["acknowledge_forfeit"] is True

    def test_cancellation_quote(self, client):
        appointment = make_appointment(start_time=datetime.now(UTC) + timedelta(hours=48))

        with patch(
            "api.routes.appointments.quote_cancellation",
            new=AsyncMock(return_value=quote_for(appointment, forfeited=0)),
        ):
            response = client.get(f"/appointments/{appointment.id}/cancellation", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["refundable_cents"] == 3000
        assert response.json()["requires_acknowledgement"] is False


class TestSlotsAndAvailability:
    def test_slots(self, client):
        slots = ["2030-03-11T09:00:00-03:00", "2030-03-11T09:30:00-03:00"]

        with patch("api.routes.slots.get_available_slots", new=AsyncMock(return_value=slots)) as get_slots:
            response = client.get(f"/slots?service_id={uuid4()}&date=2030-03-11")

        assert response.status_code == 200
        assert response.json() == {"slots": slots}
        assert get_slots.await_args.args[2].isoformat() == "2030-03-11"

    def test_slots_requires_date(self, client):
        response = client.get(f"/slots?service_id={uuid4()}")
        assert response.status_code == 422

    def test_availability(self, client):
        from datetime import date

        days = [DayAvailability(day=date(2030, 3, 11), state=DayState.MINE)]

        with patch(
            "api.routes.slots.get_customer_availability", new=AsyncMock(return_value=days)
        ) as get_days:
            response = client.get(f"/availability?service_id={uuid4()}&days=7", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["days"][0]["state"] == "mine"
        assert get_days.await_args.args[2] == CUSTOMER_ID
        assert get_days.await_args.kwargs["days"] == 7


class TestCheckout:
    def test_checkout(self, client):
        result = CheckoutResult(
            session_id="cs_test_1",
            url="https://checkout.stripe.com/c/pay/cs_test_1",
            amount_cents=3000,
            kind=PaymentKind.DEPOSIT,
        )

        with patch("api.routes.payments.create_checkout", new=AsyncMock(return_value=result)) as create:
            response = client.post(
                "/payments/checkout",
                json={"appointment_id": str(uuid4()), "mode": "deposit"},
                headers=HEADERS,
            )

        assert response.status_code == 200
        assert response.json()["session_id"] == "cs_test_1"
        assert create.await_args.args[3] == "deposit"

    def test_invalid_mode_rejected(self, client):
        response = client.post(
            "/payments/checkout",
            json={"appointment_id": str(uuid4()), "mode": "tip"},
            headers=HEADERS,
        )
        assert response.status_code == 422


class TestHealth:
    def test_database_down_reports_degraded(self, client):
        with patch("api.main.get_async_session", side_effect=RuntimeError("no db")):
            response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["postgres"] == "disconnected"
