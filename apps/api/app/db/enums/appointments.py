"""Appointment and booking enums."""

from enum import Enum


class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle status. Transitions only move forward.

    Flow: pending_hold → pending_payment → confirmed
                 ↘               ↘ cancelled
                  cancelled (hold expired)
    """

    PENDING_HOLD = "pending_hold"  # Slot held, checkout not started
    PENDING_PAYMENT = "pending_payment"  # Payment intent created
    CONFIRMED = "confirmed"  # Payment succeeded
    CANCELLED = "cancelled"  # Payment failed or hold expired


# Statuses that occupy their time range
ACTIVE_APPOINTMENT_STATUSES = (
    AppointmentStatus.PENDING_HOLD,
    AppointmentStatus.PENDING_PAYMENT,
    AppointmentStatus.CONFIRMED,
)

APPOINTMENT_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING_HOLD: frozenset(
        {AppointmentStatus.PENDING_PAYMENT, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.PENDING_PAYMENT: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.CONFIRMED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
