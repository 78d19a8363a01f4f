"""
AppointmentFSM - transition table for the appointment lifecycle.

States:
    pending -> reserved -> confirmed -> completed
    pending | reserved | confirmed -> canceled

completed and canceled are terminal. Staff move pending to reserved through
`reserve_appointment`; the other events come from customer operations and
background jobs. The FSM only decides whether a
transition is legal and what the target status is; persistence happens in
the services through status-guarded UPDATE statements built from
`sources_for()`, so a concurrent writer that already moved the row makes the
guarded write match zero rows instead of overwriting it.
"""

import logging
from enum import Enum
from typing import ClassVar

from booking.errors import IllegalTransitionError
from database.models import AppointmentStatus

logger = logging.getLogger(__name__)


class AppointmentEvent(str, Enum):
    """Events that drive appointment status changes."""

    RESERVE = "reserve"                  # Staff holds the slot without payment
    CONFIRM_PAYMENT = "confirm_payment"  # Deposit approved by reconciliation
    RESCHEDULE = "reschedule"            # Start/end moved, status preserved
    CANCEL = "cancel"                    # Customer or staff cancellation
    EXPIRE = "expire"                    # Expiration sweep (deposit unpaid)
    COMPLETE = "complete"                # Completion sweep (slot has passed)


class AppointmentFSM:
    """
    Finite state machine for appointment status.

    Example:
        >>> fsm = AppointmentFSM(AppointmentStatus.PENDING)
        >>> fsm.transition(AppointmentEvent.CONFIRM_PAYMENT)
        <AppointmentStatus.CONFIRMED: 'confirmed'>
    """

    # from_status -> {event: to_status}
    TRANSITIONS: ClassVar[dict[AppointmentStatus, dict[AppointmentEvent, AppointmentStatus]]] = {
        AppointmentStatus.PENDING: {
            AppointmentEvent.RESERVE: AppointmentStatus.RESERVED,
            AppointmentEvent.CONFIRM_PAYMENT: AppointmentStatus.CONFIRMED,
            AppointmentEvent.RESCHEDULE: AppointmentStatus.PENDING,
            AppointmentEvent.CANCEL: AppointmentStatus.CANCELED,
            AppointmentEvent.EXPIRE: AppointmentStatus.CANCELED,
            AppointmentEvent.COMPLETE: AppointmentStatus.COMPLETED,
        },
        AppointmentStatus.RESERVED: {
            AppointmentEvent.CONFIRM_PAYMENT: AppointmentStatus.CONFIRMED,
            AppointmentEvent.RESCHEDULE: AppointmentStatus.RESERVED,
            AppointmentEvent.CANCEL: AppointmentStatus.CANCELED,
            AppointmentEvent.COMPLETE: AppointmentStatus.COMPLETED,
        },
        AppointmentStatus.CONFIRMED: {
            AppointmentEvent.CANCEL: AppointmentStatus.CANCELED,
            AppointmentEvent.COMPLETE: AppointmentStatus.COMPLETED,
        },
        # Terminal states
        AppointmentStatus.COMPLETED: {},
        AppointmentStatus.CANCELED: {},
    }

    def __init__(self, status: AppointmentStatus | str) -> None:
        self._status = AppointmentStatus(status)

    @property
    def status(self) -> AppointmentStatus:
        return self._status

    @property
    def is_terminal(self) -> bool:
        return not self.TRANSITIONS[self._status]

    def can_transition(self, event: AppointmentEvent) -> bool:
        return event in self.TRANSITIONS[self._status]

    def transition(self, event: AppointmentEvent) -> AppointmentStatus:
        """
        Apply an event and return the new status.

        Raises:
            IllegalTransitionError: If the event is not allowed from the
                current status. The FSM status is left unchanged.
        """
        allowed = self.TRANSITIONS[self._status]
        if event not in allowed:
            logger.info(
                f"Rejected transition: status={self._status.value} event={event.value}"
            )
            raise IllegalTransitionError(
                details={"status": self._status.value, "event": event.value}
            )

        to_status = allowed[event]
        logger.debug(f"Transition {self._status.value} --{event.value}--> {to_status.value}")
        self._status = to_status
        return to_status

    @classmethod
    def sources_for(cls, event: AppointmentEvent) -> tuple[AppointmentStatus, ...]:
        """Statuses from which `event` is legal (used as UPDATE guards)."""
        return tuple(
            status for status, events in cls.TRANSITIONS.items() if event in events
        )
