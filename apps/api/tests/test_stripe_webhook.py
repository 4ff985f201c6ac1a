"""Tests for the Stripe webhook endpoint and signature verification."""
import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.db.enums import AppointmentStatus, LeadStatus, PaymentStatus, QuoteStatus, TaskType
from app.db.models import Appointment, Payment, Task
from app.services import hold_service
from app.services.integrations.payments import verify_stripe_signature

SECRET = "whsec_test"


def _sign(body: bytes, secret: str = SECRET, timestamp: int | None = None) -> str:
    ts = timestamp if timestamp is not None else int(time.time())
    digest = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


async def _pending_payment(db, org, lead, quote, providers) -> Appointment:
    start = (datetime.now(timezone.utc) + timedelta(days=4)).replace(
        hour=10, minute=0, second=0, microsecond=0
    )
    hold, appointment = hold_service.create_hold(db, org, lead, start, start + timedelta(hours=2))
    await hold_service.begin_payment(db, quote, appointment.id, hold.id, providers.payments)
    db.refresh(appointment)
    return appointment


def _event(event_type: str, org, lead, quote, appointment) -> bytes:
    return json.dumps(
        {
            "id": "evt_1",
            "type": event_type,
            "data": {
                "object": {
                    "id": "pi_test_1",
                    "amount": 120000,
                    "metadata": {
                        "org_id": str(org.id),
                        "lead_id": str(lead.id),
                        "quote_id": str(quote.id),
                        "appointment_id": str(appointment.id),
                    },
                }
            },
        }
    ).encode()


@pytest.mark.asyncio
async def test_payment_succeeded_confirms_booking(client, db, org, lead, quote, providers):
    appointment = await _pending_payment(db, org, lead, quote, providers)
    body = _event("payment_intent.succeeded", org, lead, quote, appointment)

    response = await client.post(
        "/webhooks/stripe", content=body, headers={"Stripe-Signature": _sign(body)}
    )

    assert response.status_code == 200
    assert response.json() == {"received": True}
    db.expire_all()
    assert db.get(Appointment, appointment.id).status == AppointmentStatus.CONFIRMED.value
    assert db.query(Payment).one().status == PaymentStatus.PAID.value
    assert lead.status == LeadStatus.BOOKED.value
    assert quote.status == QuoteStatus.ACCEPTED.value
    types = sorted(t.type for t in db.query(Task).all())
    assert types == [TaskType.CREATE_CALENDAR_EVENT.value, TaskType.SCHEDULE_REMINDERS.value]


@pytest.mark.asyncio
async def test_payment_failed_cancels_appointment(client, db, org, lead, quote, providers):
    appointment = await _pending_payment(db, org, lead, quote, providers)
    body = _event("payment_intent.payment_failed", org, lead, quote, appointment)

    response = await client.post(
        "/webhooks/stripe", content=body, headers={"Stripe-Signature": _sign(body)}
    )

    assert response.status_code == 200
    db.expire_all()
    assert db.get(Appointment, appointment.id).status == AppointmentStatus.CANCELLED.value
    assert db.query(Payment).one().status == PaymentStatus.FAILED.value
    assert db.query(Task).count() == 0


@pytest.mark.asyncio
async def test_bad_signature_is_400(client, db, org, lead, quote, providers):
    appointment = await _pending_payment(db, org, lead, quote, providers)
    body = _event("payment_intent.succeeded", org, lead, quote, appointment)

    response = await client.post(
        "/webhooks/stripe", content=body, headers={"Stripe-Signature": _sign(body, "whsec_other")}
    )

    assert response.status_code == 400
    db.expire_all()
    assert db.get(Appointment, appointment.id).status == AppointmentStatus.PENDING_PAYMENT.value


@pytest.mark.asyncio
async def test_unhandled_event_type_is_acknowledged(client, db):
    body = json.dumps({"id": "evt_2", "type": "charge.refunded", "data": {"object": {}}}).encode()

    response = await client.post(
        "/webhooks/stripe", content=body, headers={"Stripe-Signature": _sign(body)}
    )

    assert response.status_code == 200
    assert response.json() == {"received": True}


# =============================================================================
# verify_stripe_signature
# =============================================================================

def test_signature_outside_tolerance_rejected():
    body = b'{"id": "evt_3"}'
    header = _sign(body, timestamp=1_000_000)

    assert verify_stripe_signature(body, header, SECRET, tolerance_seconds=300, now=1_000_200)
    assert not verify_stripe_signature(body, header, SECRET, tolerance_seconds=300, now=1_000_301)


def test_signature_accepts_any_matching_v1():
    body = b'{"id": "evt_4"}'
    ts = 1_700_000_000
    good = _sign(body, timestamp=ts).split(",v1=")[1]
    header = f"t={ts},v1={'0' * 64},v1={good}"

    assert verify_stripe_signature(body, header, SECRET, now=ts)


def test_signature_malformed_header_rejected():
    assert not verify_stripe_signature(b"{}", "garbage", SECRET)
    assert not verify_stripe_signature(b"{}", "t=abc,v1=00", SECRET)
    assert not verify_stripe_signature(b"{}", "", SECRET)


@pytest.mark.asyncio
async def test_payment_failed_reopens_slot_for_booking(client, db, org, lead, quote, providers):
    params = {"quote_id": str(quote.id)}
    target = (await client.get("/booking/slots", params=params)).json()["slots"][0]
    hold = (
        await client.post(
            "/booking/hold",
            json={"quote_id": str(quote.id), "slot_start": target["start"], "slot_end": target["end"]},
        )
    ).json()
    await client.post(
        "/booking/pay",
        json={
            "quote_id": str(quote.id),
            "appointment_id": hold["appointment_id"],
            "hold_id": hold["hold_id"],
        },
    )
    held = (await client.get("/booking/slots", params=params)).json()["slots"]
    assert target["start"] not in [s["start"] for s in held]

    appointment = db.get(Appointment, uuid.UUID(hold["appointment_id"]))
    body = _event("payment_intent.payment_failed", org, lead, quote, appointment)
    response = await client.post(
        "/webhooks/stripe", content=body, headers={"Stripe-Signature": _sign(body)}
    )

    assert response.status_code == 200
    reopened = (await client.get("/booking/slots", params=params)).json()["slots"]
    assert target["start"] in [s["start"] for s in reopened]
