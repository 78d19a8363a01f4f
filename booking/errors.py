"""
Typed booking errors.

Every failure a booking operation can surface to a caller is a BookingError
subclass carrying:
- error_code: machine-readable code (e.g. "SLOT_UNAVAILABLE")
- message: short human-readable reason shown to the customer
- http_status: status the API maps the error to

State is never modified when one of these is raised.
"""

from typing import Any


class BookingError(Exception):
    """Base exception for booking engine errors."""

    error_code: str = "BOOKING_ERROR"
    http_status: int = 400
    default_message: str = "Não foi possível concluir a operação."

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error_code": self.error_code, "error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


# ============================================================================
# Validation errors (never retried)
# ============================================================================


class BookingValidationError(BookingError):
    """Request rejected by a business rule."""

    error_code = "VALIDATION_ERROR"
    http_status = 422


class IllegalTransitionError(BookingValidationError):
    """Status transition not permitted from the current state."""

    error_code = "ILLEGAL_TRANSITION"
    http_status = 409
    default_message = "Este agendamento não pode mais ser alterado."


class ReschedulingWindowError(BookingValidationError):
    error_code = "RESCHEDULE_WINDOW_CLOSED"
    default_message = "Reagendamentos só são permitidos com antecedência mínima."


class SlotUnavailableError(BookingValidationError):
    error_code = "SLOT_UNAVAILABLE"
    http_status = 409
    default_message = "Este horário não está mais disponível."


class InvalidStartTimeError(BookingValidationError):
    error_code = "INVALID_START_TIME"
    default_message = "Horário inválido para agendamento."


class NothingToPayError(BookingValidationError):
    error_code = "NOTHING_TO_PAY"
    default_message = "Não há valor pendente para este agendamento."


# ============================================================================
# Not found
# ============================================================================


class NotFoundError(BookingError):
    error_code = "NOT_FOUND"
    http_status = 404


class ServiceNotFoundError(NotFoundError):
    error_code = "SERVICE_NOT_FOUND"
    default_message = "Serviço não encontrado."


class AppointmentNotFoundError(NotFoundError):
    error_code = "APPOINTMENT_NOT_FOUND"
    default_message = "Agendamento não encontrado."


# ============================================================================
# Concurrency / confirmation paths
# ============================================================================


class StaleAppointmentError(BookingError):
    """Guarded write matched no row: the appointment changed concurrently."""

    error_code = "STALE_APPOINTMENT"
    http_status = 409
    default_message = "O agendamento foi alterado por outra operação. Tente novamente."


class DepositForfeitWarning(BookingError):
    """
    Cancellation would forfeit a paid deposit.

    Raised instead of canceling; the caller must repeat the request with
    acknowledge_forfeit=True. `quote` is the CancellationQuote shown to the
    customer.
    """

    error_code = "DEPOSIT_FORFEIT_CONFIRMATION_REQUIRED"
    http_status = 409
    default_message = (
        "Cancelamentos com menos antecedência que o prazo mínimo não têm o sinal "
        "devolvido. Confirme para cancelar mesmo assim."
    )

    def __init__(self, quote: Any, message: str | None = None):
        self.quote = quote
        super().__init__(message, details={"quote": quote.to_dict()})


# ============================================================================
# Transient infrastructure errors (retryable)
# ============================================================================


class TransientError(BookingError):
    """External dependency unavailable; safe to retry later."""

    error_code = "TEMPORARILY_UNAVAILABLE"
    http_status = 503
    default_message = "Serviço temporariamente indisponível. Tente novamente em instantes."


class GatewayUnavailableError(TransientError):
    error_code = "PAYMENT_GATEWAY_UNAVAILABLE"
