"""
Booking error taxonomy.

Request-path errors carry the HTTP status they map to; the exception handler
in main.py turns them into JSON responses. Task-path errors are interpreted by
the worker (terminal vs. retryable) and never reach an HTTP caller.
"""

from __future__ import annotations


class BookingError(Exception):
    """Base class for domain errors surfaced by the booking API."""

    status_code: int = 500
    code: str = "booking_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(BookingError):
    status_code = 400
    code = "validation_error"


class NotFoundError(BookingError):
    status_code = 404
    code = "not_found"


class ConflictError(BookingError):
    """Slot already reserved by an active hold or appointment."""

    status_code = 409
    code = "slot_conflict"


class InvalidTransitionError(ConflictError):
    code = "invalid_transition"


class ExpiredError(BookingError):
    """Hold TTL elapsed before the caller acted on it."""

    status_code = 410
    code = "hold_expired"


class ProviderError(BookingError):
    """External collaborator (calendar, payments, messaging) failed."""

    status_code = 502
    code = "provider_error"

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


# =============================================================================
# Task-path errors
# =============================================================================

class ConfigurationError(Exception):
    """Task cannot run as configured (unknown type). Terminal, no retry."""


class InvalidPayloadError(ConfigurationError):
    """Task payload does not match the schema of its task type. Terminal."""


class TransientHandlerFailure(Exception):
    """Handler failed for a reason worth retrying with backoff."""
