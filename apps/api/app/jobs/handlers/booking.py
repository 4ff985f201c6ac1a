"""Booking task handlers - calendar sync and appointment reminders."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from app.core.errors import ProviderError, TransientHandlerFailure
from app.db.enums import AppointmentStatus, EventType, MessageChannel, ReminderType, TaskType
from app.db.models import Appointment, Lead, Organization, Quote
from app.services import event_service, message_service, task_service
from app.services.availability_service import get_timezone
from app.services.integrations.base import CalendarEventDetails
from app.services.integrations.messaging import render_template

logger = logging.getLogger(__name__)

REMINDER_OFFSETS = (
    (ReminderType.CUSTOMER_24H, timedelta(hours=24)),
    (ReminderType.CUSTOMER_2H, timedelta(hours=2)),
    (ReminderType.INTERNAL_24H, timedelta(hours=24)),
)


def _latest_confirmed_appointment(db, org_id, lead_id) -> Appointment | None:
    return (
        db.query(Appointment)
        .filter(
            Appointment.org_id == org_id,
            Appointment.lead_id == lead_id,
            Appointment.status == AppointmentStatus.CONFIRMED.value,
        )
        .order_by(Appointment.created_at.desc())
        .first()
    )


def _format_local(value: datetime, tz_name: str | None) -> tuple[str, str]:
    local = value.astimezone(get_timezone(tz_name))
    date_str = f"{local:%A, %B} {local.day}"
    time_str = local.strftime("%I:%M %p").lstrip("0")
    return date_str, time_str


async def process_create_calendar_event(db, task, payload, *, calendar, email) -> None:
    """Create the calendar event for a confirmed booking and email a job summary."""
    org = db.query(Organization).filter(Organization.id == task.org_id).first()
    appointment = _latest_confirmed_appointment(db, task.org_id, payload.lead_id)
    if not org or not appointment:
        logger.info("No confirmed appointment for lead=%s; skipping calendar event", payload.lead_id)
        return

    lead = db.query(Lead).filter(Lead.id == payload.lead_id, Lead.org_id == task.org_id).first()
    if not lead:
        raise ValueError(f"Lead {payload.lead_id} not found")

    package_info = ""
    if payload.quote_id:
        quote = db.query(Quote).filter(
            Quote.id == payload.quote_id, Quote.org_id == task.org_id
        ).first()
        if quote:
            package_info = f"Package total: ${quote.total_cents / 100:.2f}"

    # Already synced on an earlier attempt
    if not appointment.calendar_event_id:
        try:
            event_id = await calendar.create_event(
                db,
                org,
                CalendarEventDetails(
                    summary=f"{lead.niche or 'Appointment'} - {lead.name}",
                    description=f"Customer: {lead.name}\nPhone: {lead.phone or 'N/A'}\n{package_info}",
                    location=lead.address or "",
                    start=appointment.start_at,
                    end=appointment.end_at,
                ),
            )
        except ProviderError as exc:
            raise TransientHandlerFailure(f"Calendar event creation failed: {exc}") from exc
        appointment.calendar_event_id = event_id
        db.commit()

    if org.notification_email:
        date_str, time_str = _format_local(appointment.start_at, org.timezone)
        try:
            await email.send_email(
                org.notification_email,
                f"Job Sheet: {lead.name} - {date_str}",
                (
                    f"<h2>New booking</h2>"
                    f"<p><strong>Customer:</strong> {lead.name}</p>"
                    f"<p><strong>Phone:</strong> {lead.phone or 'N/A'}</p>"
                    f"<p><strong>Address:</strong> {lead.address or 'N/A'}</p>"
                    f"<p><strong>When:</strong> {date_str} at {time_str}</p>"
                    f"<p>{package_info}</p>"
                ),
            )
        except ProviderError as exc:
            logger.warning("Job summary email failed for appointment=%s: %s", appointment.id, exc)

    event_service.record_event(
        db,
        org_id=task.org_id,
        lead_id=payload.lead_id,
        event_type=EventType.CALENDAR_EVENT_CREATED,
        metadata={
            "calendar_event_id": appointment.calendar_event_id,
            "appointment_id": appointment.id,
        },
    )
    db.commit()


async def process_schedule_reminders(db, task, payload) -> None:
    """Chain send_reminder tasks at start - 24h and start - 2h (future times only)."""
    appointment = _latest_confirmed_appointment(db, task.org_id, payload.lead_id)
    if not appointment:
        logger.info("No confirmed appointment for lead=%s; no reminders", payload.lead_id)
        return

    now = datetime.now(timezone.utc)
    scheduled = []
    for reminder_type, offset in REMINDER_OFFSETS:
        run_at = appointment.start_at - offset
        if run_at <= now:
            continue
        task_service.enqueue_task(
            db,
            org_id=task.org_id,
            lead_id=payload.lead_id,
            task_type=TaskType.SEND_REMINDER,
            payload={
                "appointment_id": str(appointment.id),
                "reminder_type": reminder_type.value,
            },
            run_at=run_at,
        )
        scheduled.append(reminder_type.value)

    event_service.record_event(
        db,
        org_id=task.org_id,
        lead_id=payload.lead_id,
        event_type=EventType.REMINDERS_SCHEDULED,
        metadata={"appointment_id": appointment.id, "reminder_types": scheduled},
    )
    db.commit()


async def process_send_reminder(db, task, payload, *, sms, email) -> None:
    """Send a customer SMS or internal email reminder for a confirmed appointment."""
    appointment = db.query(Appointment).filter(
        Appointment.id == payload.appointment_id,
        Appointment.org_id == task.org_id,
    ).first()
    if not appointment or appointment.status != AppointmentStatus.CONFIRMED.value:
        logger.info("Appointment %s not confirmed; skipping reminder", payload.appointment_id)
        return

    lead = db.query(Lead).filter(Lead.id == appointment.lead_id).first()
    org = db.query(Organization).filter(Organization.id == task.org_id).first()
    if not lead or not org:
        return

    date_str, time_str = _format_local(appointment.start_at, org.timezone)
    delivered = False

    if payload.reminder_type in (ReminderType.CUSTOMER_24H, ReminderType.CUSTOMER_2H):
        template = message_service.get_template(
            db, org.id, "booking_confirmed", MessageChannel.SMS
        )
        if template and lead.phone:
            body = render_template(
                template.body,
                {"name": lead.name, "date": date_str, "time": time_str, "company": org.name},
            )
            sid = await sms.send_sms(db, org, lead.phone, body)
            message_service.log_message(
                db, org.id, lead.id, MessageChannel.SMS, body, provider_id=sid
            )
            delivered = True
    elif org.notification_email:
        await email.send_email(
            org.notification_email,
            f"Tomorrow: {lead.name} - {date_str}",
            (
                f"<h2>Appointment Reminder</h2>"
                f"<p><strong>Customer:</strong> {lead.name}</p>"
                f"<p><strong>Phone:</strong> {lead.phone or 'N/A'}</p>"
                f"<p><strong>Date:</strong> {date_str} at {time_str}</p>"
            ),
        )
        delivered = True

    event_service.record_event(
        db,
        org_id=task.org_id,
        lead_id=lead.id,
        event_type=EventType.REMINDER_SENT,
        metadata={
            "appointment_id": appointment.id,
            "reminder_type": payload.reminder_type.value,
            "delivered": delivered,
        },
    )
    db.commit()
