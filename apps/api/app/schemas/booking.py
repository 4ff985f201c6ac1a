"""Booking schemas - Pydantic models for the public booking API."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


# =============================================================================
# Slots
# =============================================================================

class TimeSlotRead(BaseModel):
    """An open slot (UTC)."""
    start: datetime
    end: datetime


class AvailableSlotsResponse(BaseModel):
    slots: list[TimeSlotRead]


# =============================================================================
# Hold / Pay
# =============================================================================

class HoldCreate(BaseModel):
    """Reserve a slot for the lead behind a quote."""
    quote_id: UUID
    slot_start: datetime
    slot_end: datetime
    package_tier: str | None = None  # one of quote.packages[].tier


class HoldRead(BaseModel):
    hold_id: UUID
    appointment_id: UUID
    expires_at: datetime
    deposit_amount: int  # cents
    total_amount: int  # cents


class PaymentCreate(BaseModel):
    quote_id: UUID
    appointment_id: UUID
    hold_id: UUID


class PaymentRead(BaseModel):
    client_secret: str
    payment_intent_id: str
    amount: int  # cents


# =============================================================================
# Cron / Webhooks
# =============================================================================

class RunTasksResponse(BaseModel):
    success: bool
    processed: int
    total: int
    failed: int
    retried: int


class WebhookAck(BaseModel):
    received: bool = True
