"""Hold service - slot reservation and the appointment state machine.

Handles:
- Hold + pending appointment creation (single transaction, per-org lock)
- Expired hold cleanup on read
- Payment start / success / failure transitions
"""

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    ConflictError,
    ExpiredError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.db.enums import (
    APPOINTMENT_TRANSITIONS,
    AppointmentStatus,
    EventType,
    LeadStatus,
    PaymentStatus,
    QuoteStatus,
    TaskType,
)
from app.db.models import Appointment, Hold, Lead, Organization, Payment, Quote
from app.services import event_service, task_service
from app.services.availability_service import get_active_appointments, get_active_holds

logger = logging.getLogger(__name__)


# =============================================================================
# Helpers
# =============================================================================

def _transition(appointment: Appointment, new_status: AppointmentStatus) -> None:
    """Move an appointment forward; any other move is rejected."""
    current = AppointmentStatus(appointment.status)
    if new_status not in APPOINTMENT_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Appointment {appointment.id} cannot move from {current.value} to {new_status.value}"
        )
    appointment.status = new_status.value


def _lock_org(db: Session, org_id: UUID) -> Organization:
    """
    Lock the organization row for the rest of the transaction.

    Serializes conflict-check-then-insert for one org on PostgreSQL.
    SQLite ignores FOR UPDATE.
    """
    org = (
        db.query(Organization)
        .filter(Organization.id == org_id)
        .with_for_update()
        .one_or_none()
    )
    if not org:
        raise NotFoundError("Organization not found")
    return org


def quote_total_cents(quote: Quote, package_tier: str | None = None) -> int:
    """
    Total for the selected package tier, or the quote total when none is chosen.

    Raises ValidationError for a tier the quote does not offer.
    """
    if not package_tier:
        return quote.total_cents or 0
    for package in quote.packages or []:
        if package.get("tier") == package_tier:
            return int(package.get("subtotal_cents") or 0)
    raise ValidationError(f"Quote has no '{package_tier}' package")


def compute_deposit_cents(
    org: Organization,
    quote: Quote,
    package_tier: str | None = None,
) -> int:
    """Deposit charged at checkout: deposit_percent of the selected total, in cents."""
    percent = org.deposit_percent if org.deposit_percent is not None else settings.DEFAULT_DEPOSIT_PERCENT
    return round(quote_total_cents(quote, package_tier) * percent / 100)


def get_quote(db: Session, quote_id: UUID) -> Quote:
    quote = db.query(Quote).filter(Quote.id == quote_id).first()
    if not quote:
        raise NotFoundError("Quote not found")
    return quote


# =============================================================================
# Holds
# =============================================================================

def release_expired_holds(
    db: Session,
    org_id: UUID,
    now: datetime | None = None,
) -> int:
    """
    Cancel pending appointments whose hold has expired.

    Expiry is a query-time predicate; this cleanup runs on the next read so
    expired checkouts stop occupying their slot.
    """
    now = now or datetime.now(timezone.utc)
    stale = (
        db.query(Appointment)
        .join(Hold, Appointment.hold_id == Hold.id)
        .filter(
            Appointment.org_id == org_id,
            Appointment.status.in_(
                [AppointmentStatus.PENDING_HOLD.value, AppointmentStatus.PENDING_PAYMENT.value]
            ),
            Hold.expires_at < now,
        )
        .all()
    )
    for appointment in stale:
        _transition(appointment, AppointmentStatus.CANCELLED)
        event_service.record_event(
            db,
            org_id=appointment.org_id,
            lead_id=appointment.lead_id,
            event_type=EventType.HOLD_EXPIRED,
            metadata={"appointment_id": appointment.id, "hold_id": appointment.hold_id},
        )
    if stale:
        db.commit()
        logger.info("Released %s expired holds for org=%s", len(stale), org_id)
    return len(stale)


def find_conflicts(
    db: Session,
    org_id: UUID,
    slot_start: datetime,
    slot_end: datetime,
    now: datetime,
) -> tuple[list[Hold], list[Appointment]]:
    """Active holds and appointments overlapping [slot_start, slot_end)."""
    return (
        get_active_holds(db, org_id, slot_start, slot_end, now),
        get_active_appointments(db, org_id, slot_start, slot_end),
    )


def create_hold(
    db: Session,
    org: Organization,
    lead: Lead,
    slot_start: datetime,
    slot_end: datetime,
    now: datetime | None = None,
    package_tier: str | None = None,
) -> tuple[Hold, Appointment]:
    """
    Reserve [slot_start, slot_end) for a lead.

    Inserts the hold and its pending_hold appointment in one transaction.
    package_tier is kept on the appointment so checkout charges the same total.
    Raises ConflictError if any active hold or appointment overlaps.
    """
    now = now or datetime.now(timezone.utc)
    if slot_start.tzinfo is None or slot_end.tzinfo is None:
        raise ValidationError("slot_start and slot_end must include a timezone offset")
    if slot_end <= slot_start:
        raise ValidationError("slot_end must be after slot_start")
    if slot_start <= now:
        raise ValidationError("slot_start must be in the future")
    if lead.org_id != org.id:
        raise ValidationError("Lead does not belong to organization")

    release_expired_holds(db, org.id, now=now)

    try:
        _lock_org(db, org.id)
        holds, appointments = find_conflicts(db, org.id, slot_start, slot_end, now)
        if holds or appointments:
            raise ConflictError("Slot no longer available")

        hold = Hold(
            org_id=org.id,
            lead_id=lead.id,
            slot_start=slot_start,
            slot_end=slot_end,
            expires_at=now + timedelta(minutes=settings.HOLD_TTL_MINUTES),
            created_at=now,
        )
        db.add(hold)
        db.flush()

        appointment = Appointment(
            org_id=org.id,
            lead_id=lead.id,
            hold_id=hold.id,
            start_at=slot_start,
            end_at=slot_end,
            status=AppointmentStatus.PENDING_HOLD.value,
            package_tier=package_tier,
        )
        db.add(appointment)
        db.flush()

        event_service.record_event(
            db,
            org_id=org.id,
            lead_id=lead.id,
            event_type=EventType.HOLD_CREATED,
            metadata={
                "hold_id": hold.id,
                "appointment_id": appointment.id,
                "slot_start": slot_start,
                "slot_end": slot_end,
                "expires_at": hold.expires_at,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(hold)
    db.refresh(appointment)
    return hold, appointment


def get_hold(db: Session, hold_id: UUID, org_id: UUID) -> Hold:
    hold = db.query(Hold).filter(Hold.id == hold_id, Hold.org_id == org_id).first()
    if not hold:
        raise NotFoundError("Hold not found")
    return hold


def get_appointment(db: Session, appointment_id: UUID, org_id: UUID) -> Appointment:
    appointment = db.query(Appointment).filter(
        Appointment.id == appointment_id,
        Appointment.org_id == org_id,
    ).first()
    if not appointment:
        raise NotFoundError("Appointment not found")
    return appointment


# =============================================================================
# Payment transitions
# =============================================================================

async def begin_payment(
    db: Session,
    quote: Quote,
    appointment_id: UUID,
    hold_id: UUID,
    payments,
    now: datetime | None = None,
) -> tuple[Payment, str]:
    """
    pending_hold → pending_payment.

    Requires the hold to be unexpired (ExpiredError otherwise) and to belong
    to the quote's lead. Creates a payment intent for the deposit of the
    package chosen at hold time and records a pending Payment.
    Returns (payment, client_secret).
    """
    now = now or datetime.now(timezone.utc)
    org = quote.organization
    hold = get_hold(db, hold_id, org.id)
    appointment = get_appointment(db, appointment_id, org.id)

    if appointment.hold_id != hold.id:
        raise ValidationError("Appointment does not belong to hold")
    if hold.lead_id != quote.lead_id or appointment.lead_id != quote.lead_id:
        raise ValidationError("Hold does not belong to this quote's lead")
    if hold.is_expired(now):
        raise ExpiredError("Hold expired")

    _transition(appointment, AppointmentStatus.PENDING_PAYMENT)
    amount = compute_deposit_cents(org, quote, appointment.package_tier)

    try:
        intent = await payments.create_payment_intent(
            org,
            amount,
            {
                "quote_id": str(quote.id),
                "lead_id": str(quote.lead_id),
                "org_id": str(org.id),
                "appointment_id": str(appointment.id),
            },
        )
    except Exception:
        db.rollback()
        raise

    payment = Payment(
        org_id=org.id,
        lead_id=quote.lead_id,
        appointment_id=appointment.id,
        provider="stripe",
        amount_cents=amount,
        status=PaymentStatus.PENDING.value,
        external_id=intent.intent_id,
    )
    db.add(payment)
    event_service.record_event(
        db,
        org_id=org.id,
        lead_id=quote.lead_id,
        event_type=EventType.PAYMENT_INITIATED,
        metadata={
            "payment_intent_id": intent.intent_id,
            "amount": amount,
            "appointment_id": appointment.id,
        },
    )
    db.commit()
    db.refresh(payment)
    return payment, intent.client_secret


def _pending_payment_appointments(
    db: Session,
    org_id: UUID,
    lead_id: UUID,
    appointment_id: UUID | None,
) -> list[Appointment]:
    query = db.query(Appointment).filter(
        Appointment.org_id == org_id,
        Appointment.lead_id == lead_id,
        Appointment.status == AppointmentStatus.PENDING_PAYMENT.value,
    )
    if appointment_id:
        query = query.filter(Appointment.id == appointment_id)
    return query.all()


def confirm_payment(
    db: Session,
    org_id: UUID,
    lead_id: UUID,
    payment_intent_id: str,
    amount: int | None = None,
    appointment_id: UUID | None = None,
    quote_id: UUID | None = None,
) -> list[Appointment]:
    """
    pending_payment → confirmed (payment-success event).

    Marks the payment paid, the lead booked and the quote accepted, then
    enqueues calendar sync and reminder scheduling.
    """
    now = datetime.now(timezone.utc)
    db.query(Payment).filter(Payment.external_id == payment_intent_id).update(
        {Payment.status: PaymentStatus.PAID.value}, synchronize_session=False
    )

    appointments = _pending_payment_appointments(db, org_id, lead_id, appointment_id)
    if not appointments:
        logger.warning(
            "Payment %s succeeded but no pending appointment for org=%s", payment_intent_id, org_id
        )
        event_service.record_event(
            db,
            org_id=org_id,
            lead_id=lead_id,
            event_type=EventType.PAYMENT_UNMATCHED,
            metadata={"payment_intent_id": payment_intent_id, "amount": amount},
        )
        db.commit()
        return []

    for appointment in appointments:
        _transition(appointment, AppointmentStatus.CONFIRMED)

    lead = db.query(Lead).filter(Lead.id == lead_id, Lead.org_id == org_id).first()
    if lead:
        lead.status = LeadStatus.BOOKED.value
    if quote_id:
        quote = db.query(Quote).filter(Quote.id == quote_id, Quote.org_id == org_id).first()
        if quote:
            quote.status = QuoteStatus.ACCEPTED.value
            quote.accepted_at = now

    payload = {"lead_id": str(lead_id)}
    task_service.enqueue_task(
        db,
        org_id=org_id,
        lead_id=lead_id,
        task_type=TaskType.CREATE_CALENDAR_EVENT,
        payload={**payload, "quote_id": str(quote_id) if quote_id else None},
    )
    task_service.enqueue_task(
        db,
        org_id=org_id,
        lead_id=lead_id,
        task_type=TaskType.SCHEDULE_REMINDERS,
        payload=payload,
    )
    event_service.record_event(
        db,
        org_id=org_id,
        lead_id=lead_id,
        event_type=EventType.PAYMENT_SUCCEEDED,
        metadata={
            "payment_intent_id": payment_intent_id,
            "amount": amount,
            "appointment_ids": [str(a.id) for a in appointments],
        },
    )
    db.commit()
    return appointments


def fail_payment(
    db: Session,
    org_id: UUID,
    lead_id: UUID,
    payment_intent_id: str,
    appointment_id: UUID | None = None,
    now: datetime | None = None,
) -> list[Appointment]:
    """
    pending_payment → cancelled (payment-failure event).

    Ends the hold of each cancelled appointment in the same transaction so
    the slot is bookable again right away.
    """
    now = now or datetime.now(timezone.utc)
    db.query(Payment).filter(Payment.external_id == payment_intent_id).update(
        {Payment.status: PaymentStatus.FAILED.value}, synchronize_session=False
    )
    appointments = _pending_payment_appointments(db, org_id, lead_id, appointment_id)
    for appointment in appointments:
        _transition(appointment, AppointmentStatus.CANCELLED)
        if appointment.hold and not appointment.hold.is_expired(now):
            appointment.hold.expires_at = now

    event_service.record_event(
        db,
        org_id=org_id,
        lead_id=lead_id,
        event_type=EventType.PAYMENT_FAILED,
        metadata={
            "payment_intent_id": payment_intent_id,
            "appointment_ids": [str(a.id) for a in appointments],
        },
    )
    db.commit()
    return appointments
