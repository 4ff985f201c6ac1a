"""Messaging task handlers - quotes, follow-ups, admin notifications."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from app.core.config import settings
from app.core.errors import ProviderError
from app.db.enums import EventType, LeadStatus, MessageChannel, QuoteStatus
from app.db.models import Lead, Organization, Quote
from app.services import event_service, followup_service, message_service
from app.services.integrations.messaging import render_template

logger = logging.getLogger(__name__)


def _get_quote(db, task, quote_id) -> Quote:
    quote = db.query(Quote).filter(Quote.id == quote_id, Quote.org_id == task.org_id).first()
    if not quote:
        raise ValueError(f"Quote {quote_id} not found")
    return quote


def _as_html(body: str) -> str:
    return body.replace("\n", "<br>")


async def process_send_quote(db, task, payload, *, sms, email) -> None:
    """Send the quote link over SMS and email, mark it sent, start follow-ups."""
    quote = _get_quote(db, task, payload.quote_id)
    lead = quote.lead
    org = quote.organization
    quote_link = f"{settings.APP_URL}/q/{quote.id}"
    variables = {"name": lead.name or "there", "company": org.name, "quote_link": quote_link}
    channels_sent = []

    sms_template = message_service.get_template(db, org.id, "quote_sent", MessageChannel.SMS)
    if sms_template and lead.phone:
        body = render_template(sms_template.body, variables)
        try:
            sid = await sms.send_sms(db, org, lead.phone, body)
        except ProviderError as exc:
            # Email still goes out
            logger.warning("Quote SMS failed for quote=%s: %s", quote.id, exc)
        else:
            message_service.log_message(db, org.id, lead.id, MessageChannel.SMS, body, provider_id=sid)
            channels_sent.append(MessageChannel.SMS.value)

    email_template = message_service.get_template(db, org.id, "quote_sent", MessageChannel.EMAIL)
    if email_template and lead.email:
        body = render_template(email_template.body, variables)
        provider_id = await email.send_email(
            lead.email,
            f"Your {quote.niche or 'project'} quote from {org.name}",
            _as_html(body),
        )
        message_service.log_message(
            db, org.id, lead.id, MessageChannel.EMAIL, body, provider_id=provider_id
        )
        channels_sent.append(MessageChannel.EMAIL.value)

    quote.status = QuoteStatus.SENT.value
    quote.sent_at = datetime.now(timezone.utc)
    if lead.status == LeadStatus.NEW.value:
        lead.status = LeadStatus.QUOTED.value

    event_service.record_event(
        db,
        org_id=org.id,
        lead_id=lead.id,
        event_type=EventType.QUOTE_SENT,
        metadata={"quote_id": quote.id, "channels": channels_sent},
    )
    followup_service.schedule_followups(
        db,
        org_id=org.id,
        lead_id=lead.id,
        trigger="quote_sent",
        context={"name": lead.name or "", "quote_link": quote_link, "company": org.name},
    )
    db.commit()


async def process_send_followup(db, task, payload, *, sms, email) -> None:
    """Send one follow-up step unless a stop condition now holds."""
    lead = db.query(Lead).filter(Lead.id == task.lead_id, Lead.org_id == task.org_id).first()
    if not lead:
        raise ValueError(f"Lead {task.lead_id} not found")

    reason = followup_service.should_stop_followups(db, task.org_id, lead.id)
    if reason:
        logger.info("Follow-up for lead=%s stopped: %s", lead.id, reason)
        event_service.record_event(
            db,
            org_id=task.org_id,
            lead_id=lead.id,
            event_type=EventType.FOLLOWUP_STOPPED,
            metadata={"reason": reason, "template_name": payload.template_name},
        )
        db.commit()
        return

    template = message_service.get_template(db, task.org_id, payload.template_name, payload.channel)
    if not template:
        logger.warning(
            "Follow-up template '%s' (%s) missing for org=%s",
            payload.template_name,
            payload.channel.value,
            task.org_id,
        )
        return

    org = db.query(Organization).filter(Organization.id == task.org_id).first()
    body = render_template(template.body, payload.context)
    provider_id = None
    if payload.channel == MessageChannel.SMS:
        if not lead.phone:
            return
        provider_id = await sms.send_sms(db, org, lead.phone, body)
    else:
        if not lead.email:
            return
        provider_id = await email.send_email(
            lead.email, f"Message from {org.name}", _as_html(body)
        )

    message_service.log_message(
        db, task.org_id, lead.id, payload.channel, body, provider_id=provider_id
    )
    event_service.record_event(
        db,
        org_id=task.org_id,
        lead_id=lead.id,
        event_type=EventType.FOLLOWUP_SENT,
        metadata={
            "channel": payload.channel.value,
            "template_name": payload.template_name,
            "rule_id": payload.rule_id,
        },
    )
    db.commit()


async def process_notify_admin_approval(db, task, payload, *, email) -> None:
    """Email the org that a quote needs manual approval."""
    quote = _get_quote(db, task, payload.quote_id)
    org = quote.organization
    lead = quote.lead

    if org.notification_email:
        await email.send_email(
            org.notification_email,
            f"Quote needs approval - {lead.name or 'Unknown'}",
            (
                f"<h2>Quote Needs Your Approval</h2>"
                f"<p><strong>Customer:</strong> {lead.name or 'Unknown'}</p>"
                f"<p><strong>Phone:</strong> {lead.phone or 'N/A'}</p>"
                f"<p><strong>Email:</strong> {lead.email or 'N/A'}</p>"
                f"<p><strong>Address:</strong> {lead.address or 'N/A'}</p>"
                f"<p><strong>Reason:</strong> {payload.reason}</p>"
                f'<p><a href="{settings.APP_URL}/app/leads/{lead.id}">Review Quote</a></p>'
            ),
        )
    else:
        logger.info("Org %s has no notification email; approval request logged only", org.id)

    event_service.record_event(
        db,
        org_id=org.id,
        lead_id=lead.id,
        event_type=EventType.ADMIN_NOTIFIED,
        metadata={
            "quote_id": quote.id,
            "reason": payload.reason,
            "notification_email": org.notification_email or "none",
        },
    )
    db.commit()
