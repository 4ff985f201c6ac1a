"""Webhook router - Stripe payment events and Twilio inbound SMS."""

import json
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Form, HTTPException, Request, Response
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import get_db
from app.db.enums import EventType, IntegrationKind, MessageChannel, MessageDirection
from app.db.models import Lead, OrgIntegration
from app.schemas.booking import WebhookAck
from app.services import event_service, hold_service, message_service
from app.services.integrations.payments import verify_stripe_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _coerce_uuid(raw_id: str | None) -> UUID | None:
    if not raw_id:
        return None
    try:
        return UUID(str(raw_id))
    except (TypeError, ValueError):
        logger.warning("Invalid UUID value '%s' in Stripe metadata", raw_id)
        return None


@router.post("/stripe", response_model=WebhookAck)
async def receive_stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Handle payment_intent.succeeded / payment_intent.payment_failed.

    The intent metadata (set at checkout) carries org, lead, quote and
    appointment ids.
    """
    body = await request.body()

    if settings.STRIPE_WEBHOOK_SECRET:
        signature = request.headers.get("Stripe-Signature", "")
        if not verify_stripe_signature(body, signature, settings.STRIPE_WEBHOOK_SECRET):
            logger.warning("Stripe webhook invalid signature")
            raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        event = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON")

    event_type = event.get("type")
    intent = (event.get("data") or {}).get("object") or {}
    metadata = intent.get("metadata") or {}
    org_id = _coerce_uuid(metadata.get("org_id"))
    lead_id = _coerce_uuid(metadata.get("lead_id"))

    if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        return WebhookAck()
    if not org_id or not lead_id:
        logger.warning("Stripe event %s missing org/lead metadata", event.get("id"))
        return WebhookAck()

    if event_type == "payment_intent.succeeded":
        hold_service.confirm_payment(
            db,
            org_id=org_id,
            lead_id=lead_id,
            payment_intent_id=intent.get("id"),
            amount=intent.get("amount"),
            appointment_id=_coerce_uuid(metadata.get("appointment_id")),
            quote_id=_coerce_uuid(metadata.get("quote_id")),
        )
    else:
        hold_service.fail_payment(
            db,
            org_id=org_id,
            lead_id=lead_id,
            payment_intent_id=intent.get("id"),
            appointment_id=_coerce_uuid(metadata.get("appointment_id")),
        )
    return WebhookAck()


EMPTY_TWIML = "<Response></Response>"


@router.post("/twilio")
def receive_twilio_sms(
    from_number: str = Form(..., alias="From"),
    to_number: str = Form(..., alias="To"),
    body: str = Form("", alias="Body"),
    message_sid: str | None = Form(None, alias="MessageSid"),
    db: Session = Depends(get_db),
):
    """
    Log an inbound SMS against the org that owns the receiving number.

    A body of exactly STOP from a known lead is recorded as an opt-out,
    which ends that lead's follow-ups.
    """
    integration = db.query(OrgIntegration).filter(
        OrgIntegration.kind == IntegrationKind.SMS.value,
        OrgIntegration.external_id == to_number,
        OrgIntegration.is_active.is_(True),
    ).first()
    if not integration:
        logger.warning("Inbound SMS to unknown number %s", to_number)
        return Response(content=EMPTY_TWIML, media_type="text/xml")

    org_id = integration.org_id
    lead = db.query(Lead).filter(Lead.org_id == org_id, Lead.phone == from_number).first()
    lead_id = lead.id if lead else None

    message_service.log_message(
        db,
        org_id=org_id,
        lead_id=lead_id,
        channel=MessageChannel.SMS,
        body=body,
        direction=MessageDirection.INBOUND,
        provider_id=message_sid,
    )
    if lead and body.strip().upper() == "STOP":
        event_service.record_event(
            db,
            org_id=org_id,
            lead_id=lead_id,
            event_type=EventType.SMS_OPT_OUT,
            metadata={"phone": from_number},
        )
    event_service.record_event(
        db,
        org_id=org_id,
        lead_id=lead_id,
        event_type=EventType.SMS_INBOUND,
        metadata={"from": from_number, "body": body[:200], "message_sid": message_sid},
    )
    db.commit()
    logger.info("Inbound SMS logged for org=%s lead=%s", org_id, lead_id)
    return Response(content=EMPTY_TWIML, media_type="text/xml")
