"""
Booking services module.

Provides the business logic of the booking engine.

Services:
- pricing_service: final duration/price/deposit/buffer of a service
- availability_service: slot generation and per-day availability
- appointment_service: create, reschedule, reserve, cancel, confirm, checkout
- reconciliation_service: Stripe webhook events -> payments and appointments
- reminder_service: reminder scheduling and dispatch
"""

from booking.services.appointment_service import (
    CancellationOutcome,
    CancellationQuote,
    CheckoutResult,
    cancel_appointment,
    confirm_if_pending,
    create_appointment,
    create_checkout,
    get_paid_total,
    guarded_update,
    quote_cancellation,
    reschedule_appointment,
    reserve_appointment,
)
from booking.services.availability_service import (
    BusinessCalendar,
    DayAvailability,
    DayState,
    build_availability,
    check_slot_available,
    compute_day_slots,
    get_available_slots,
    get_customer_availability,
    load_blackouts,
    load_business_calendar,
    make_slots,
)
from booking.services.pricing_service import (
    Default,
    Override,
    ResolvedServiceValues,
    ServiceAssignmentOverride,
    ServiceBaseValues,
    resolve_final_service_values,
    resolve_service_pricing,
)
from booking.services.reconciliation_service import (
    ReconciliationResult,
    classify_event,
    reconcile_event,
    record_webhook_event,
    resolve_references,
)
from booking.services.reminder_service import (
    DispatchSummary,
    build_default_reminders,
    enqueue_default_reminders,
    process_due_reminders,
)

__all__ = [
    # Pricing
    "Default",
    "Override",
    "ResolvedServiceValues",
    "ServiceAssignmentOverride",
    "ServiceBaseValues",
    "resolve_final_service_values",
    "resolve_service_pricing",
    # Availability
    "BusinessCalendar",
    "DayAvailability",
    "DayState",
    "build_availability",
    "check_slot_available",
    "compute_day_slots",
    "get_available_slots",
    "get_customer_availability",
    "load_blackouts",
    "load_business_calendar",
    "make_slots",
    # Appointments
    "CancellationOutcome",
    "CancellationQuote",
    "CheckoutResult",
    "cancel_appointment",
    "confirm_if_pending",
    "create_appointment",
    "create_checkout",
    "get_paid_total",
    "guarded_update",
    "quote_cancellation",
    "reschedule_appointment",
    "reserve_appointment",
    # Reconciliation
    "ReconciliationResult",
    "classify_event",
    "reconcile_event",
    "record_webhook_event",
    "resolve_references",
    # Reminders
    "DispatchSummary",
    "build_default_reminders",
    "enqueue_default_reminders",
    "process_due_reminders",
]
