"""Unit tests for the appointment state machine."""

import pytest

from booking.errors import IllegalTransitionError
from booking.fsm import AppointmentEvent, AppointmentFSM
from database.models import AppointmentStatus


class TestTransitions:
    @pytest.mark.parametrize(
        "status,event,expected",
        [
            (AppointmentStatus.PENDING, AppointmentEvent.RESERVE, AppointmentStatus.RESERVED),
            (AppointmentStatus.PENDING, AppointmentEvent.CONFIRM_PAYMENT, AppointmentStatus.CONFIRMED),
            (AppointmentStatus.PENDING, AppointmentEvent.EXPIRE, AppointmentStatus.CANCELED),
            (AppointmentStatus.PENDING, AppointmentEvent.RESCHEDULE, AppointmentStatus.PENDING),
            (AppointmentStatus.RESERVED, AppointmentEvent.CONFIRM_PAYMENT, AppointmentStatus.CONFIRMED),
            (AppointmentStatus.RESERVED, AppointmentEvent.RESCHEDULE, AppointmentStatus.RESERVED),
            (AppointmentStatus.CONFIRMED, AppointmentEvent.CANCEL, AppointmentStatus.CANCELED),
            (AppointmentStatus.CONFIRMED, AppointmentEvent.COMPLETE, AppointmentStatus.COMPLETED),
        ],
    )
    def test_allowed(self, status, event, expected):
        fsm = AppointmentFSM(status)
        assert fsm.transition(event) == expected
        assert fsm.status == expected

    @pytest.mark.parametrize(
        "status,event",
        [
            (AppointmentStatus.CONFIRMED, AppointmentEvent.RESCHEDULE),
            (AppointmentStatus.CONFIRMED, AppointmentEvent.EXPIRE),
            (AppointmentStatus.RESERVED, AppointmentEvent.EXPIRE),
            (AppointmentStatus.CONFIRMED, AppointmentEvent.CONFIRM_PAYMENT),
        ],
    )
    def test_rejected_leaves_status_unchanged(self, status, event):
        fsm = AppointmentFSM(status)

        with pytest.raises(IllegalTransitionError) as exc_info:
            fsm.transition(event)

        assert fsm.status == status
        assert exc_info.value.details == {"status": status.value, "event": event.value}
        assert exc_info.value.http_status == 409

    @pytest.mark.parametrize("status", [AppointmentStatus.CANCELED, AppointmentStatus.COMPLETED])
    def test_terminal_states_accept_nothing(self, status):
        fsm = AppointmentFSM(status)
        assert fsm.is_terminal
        for event in AppointmentEvent:
            assert not fsm.can_transition(event)

    def test_accepts_string_status(self):
        assert AppointmentFSM("pending").status == AppointmentStatus.PENDING


class TestSourcesFor:
    def test_expire_only_from_pending(self):
        assert AppointmentFSM.sources_for(AppointmentEvent.EXPIRE) == (AppointmentStatus.PENDING,)

    def test_reschedule_sources(self):
        assert set(AppointmentFSM.sources_for(AppointmentEvent.RESCHEDULE)) == {
            AppointmentStatus.PENDING,
            AppointmentStatus.RESERVED,
        }

    def test_cancel_sources_are_non_terminal(self):
        assert set(AppointmentFSM.sources_for(AppointmentEvent.CANCEL)) == {
            AppointmentStatus.PENDING,
            AppointmentStatus.RESERVED,
            AppointmentStatus.CONFIRMED,
        }
