"""
Appointment lifecycle state machine.

Public exports:
    - AppointmentFSM: transition table and validator
    - AppointmentEvent: events that drive status changes
"""

from booking.fsm.appointment_fsm import AppointmentEvent, AppointmentFSM

__all__ = [
    "AppointmentEvent",
    "AppointmentFSM",
]
