"""Public booking router - slot lookup, slot holds and deposit checkout.

Unauthenticated; every request is scoped by a quote id, which resolves the
organization and the lead.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.core.deps import get_db, get_providers
from app.core.rate_limit import BOOKING_LIMIT, limiter
from app.schemas.booking import (
    AvailableSlotsResponse,
    HoldCreate,
    HoldRead,
    PaymentCreate,
    PaymentRead,
    TimeSlotRead,
)
from app.services import availability_service, hold_service
from app.services.integrations import Providers

router = APIRouter(prefix="/booking", tags=["booking"])


@router.get("/slots", response_model=AvailableSlotsResponse)
async def get_available_slots(
    quote_id: UUID = Query(...),
    db: Session = Depends(get_db),
    providers: Providers = Depends(get_providers),
):
    """Open slots for the quote's organization over the booking window."""
    quote = hold_service.get_quote(db, quote_id)
    slots = await availability_service.get_available_slots(
        db, quote.organization, providers.calendar
    )
    return AvailableSlotsResponse(
        slots=[TimeSlotRead(start=slot.start, end=slot.end) for slot in slots]
    )


@router.post("/hold", response_model=HoldRead)
@limiter.limit(BOOKING_LIMIT)
def create_hold(
    request: Request,
    data: HoldCreate,
    db: Session = Depends(get_db),
):
    """
    Hold a slot for the quote's lead.

    400 for a package tier the quote does not offer; 409 if the slot
    overlaps an active hold or appointment.
    """
    quote = hold_service.get_quote(db, data.quote_id)
    org = quote.organization
    total = hold_service.quote_total_cents(quote, data.package_tier)
    hold, appointment = hold_service.create_hold(
        db, org, quote.lead, data.slot_start, data.slot_end,
        package_tier=data.package_tier,
    )
    return HoldRead(
        hold_id=hold.id,
        appointment_id=appointment.id,
        expires_at=hold.expires_at,
        deposit_amount=hold_service.compute_deposit_cents(org, quote, data.package_tier),
        total_amount=total,
    )


@router.post("/pay", response_model=PaymentRead)
@limiter.limit(BOOKING_LIMIT)
async def start_payment(
    request: Request,
    data: PaymentCreate,
    db: Session = Depends(get_db),
    providers: Providers = Depends(get_providers),
):
    """
    Create a deposit payment intent for a held slot.

    410 if the hold has expired.
    """
    quote = hold_service.get_quote(db, data.quote_id)
    payment, client_secret = await hold_service.begin_payment(
        db, quote, data.appointment_id, data.hold_id, providers.payments
    )
    return PaymentRead(
        client_secret=client_secret,
        payment_intent_id=payment.external_id,
        amount=payment.amount_cents,
    )
