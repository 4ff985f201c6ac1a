from datetime import datetime, timedelta, timezone
import uuid

import pytest

from app.core.errors import ProviderError, TransientHandlerFailure
from app.db.enums import AppointmentStatus, EventType, MessageChannel, ReminderType, TaskType
from app.db.models import Appointment, Event, Hold, Message, MessageTemplate, Task
from app.jobs import payloads
from app.jobs.handlers import booking


def _fake_task(org, lead):
    return type("Task", (), {"id": uuid.uuid4(), "org_id": org.id, "lead_id": lead.id})()


def _appointment(db, org, lead, *, start, status=AppointmentStatus.CONFIRMED):
    hold = Hold(
        org_id=org.id,
        lead_id=lead.id,
        slot_start=start,
        slot_end=start + timedelta(hours=2),
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=10),
    )
    db.add(hold)
    db.flush()
    appointment = Appointment(
        org_id=org.id,
        lead_id=lead.id,
        hold_id=hold.id,
        start_at=start,
        end_at=start + timedelta(hours=2),
        status=status.value,
    )
    db.add(appointment)
    db.commit()
    return appointment


def _event_types(db) -> list[str]:
    return [e.type for e in db.query(Event).all()]


# =============================================================================
# create_calendar_event
# =============================================================================

@pytest.mark.asyncio
async def test_create_calendar_event_stores_event_id_and_emails_org(db, org, lead, quote, providers):
    start = datetime.now(timezone.utc) + timedelta(days=3)
    appointment = _appointment(db, org, lead, start=start)
    payload = payloads.CreateCalendarEventPayload(lead_id=lead.id, quote_id=quote.id)

    await booking.process_create_calendar_event(
        db, _fake_task(org, lead), payload, calendar=providers.calendar, email=providers.email
    )

    db.refresh(appointment)
    assert appointment.calendar_event_id == "evt_1"
    details = providers.calendar.events[0]
    assert details.summary == "roofing - Jamie Rivera"
    assert "Package total: $4800.00" in details.description
    assert providers.email.sent[0]["to"] == "owner@acme.test"
    assert EventType.CALENDAR_EVENT_CREATED.value in _event_types(db)


@pytest.mark.asyncio
async def test_create_calendar_event_provider_failure_is_retryable(db, org, lead, providers):
    appointment = _appointment(db, org, lead, start=datetime.now(timezone.utc) + timedelta(days=3))
    providers.calendar.error = ProviderError("google", "HTTP 503: unavailable")
    payload = payloads.CreateCalendarEventPayload(lead_id=lead.id)

    with pytest.raises(TransientHandlerFailure):
        await booking.process_create_calendar_event(
            db, _fake_task(org, lead), payload, calendar=providers.calendar, email=providers.email
        )

    db.refresh(appointment)
    assert appointment.calendar_event_id is None
    assert providers.email.sent == []


@pytest.mark.asyncio
async def test_create_calendar_event_is_idempotent(db, org, lead, providers):
    appointment = _appointment(db, org, lead, start=datetime.now(timezone.utc) + timedelta(days=3))
    appointment.calendar_event_id = "evt_existing"
    db.commit()
    payload = payloads.CreateCalendarEventPayload(lead_id=lead.id)

    await booking.process_create_calendar_event(
        db, _fake_task(org, lead), payload, calendar=providers.calendar, email=providers.email
    )

    assert providers.calendar.events == []
    db.refresh(appointment)
    assert appointment.calendar_event_id == "evt_existing"


@pytest.mark.asyncio
async def test_create_calendar_event_without_confirmed_appointment_is_noop(db, org, lead, providers):
    _appointment(
        db, org, lead,
        start=datetime.now(timezone.utc) + timedelta(days=3),
        status=AppointmentStatus.PENDING_PAYMENT,
    )
    payload = payloads.CreateCalendarEventPayload(lead_id=lead.id)

    await booking.process_create_calendar_event(
        db, _fake_task(org, lead), payload, calendar=providers.calendar, email=providers.email
    )

    assert providers.calendar.events == []
    assert providers.email.sent == []


# =============================================================================
# schedule_reminders
# =============================================================================

@pytest.mark.asyncio
async def test_schedule_reminders_chains_future_reminders(db, org, lead):
    start = (datetime.now(timezone.utc) + timedelta(days=3)).replace(microsecond=0)
    appointment = _appointment(db, org, lead, start=start)

    await booking.process_schedule_reminders(
        db, _fake_task(org, lead), payloads.ScheduleRemindersPayload(lead_id=lead.id)
    )

    tasks = db.query(Task).filter(Task.type == TaskType.SEND_REMINDER.value).all()
    by_type = {t.payload["reminder_type"]: t for t in tasks}
    assert set(by_type) == {"customer_24h", "customer_2h", "internal_24h"}
    assert by_type["customer_24h"].run_at == start - timedelta(hours=24)
    assert by_type["customer_2h"].run_at == start - timedelta(hours=2)
    assert all(t.payload["appointment_id"] == str(appointment.id) for t in tasks)
    assert EventType.REMINDERS_SCHEDULED.value in _event_types(db)


@pytest.mark.asyncio
async def test_schedule_reminders_skips_past_times(db, org, lead):
    _appointment(db, org, lead, start=datetime.now(timezone.utc) + timedelta(hours=5))

    await booking.process_schedule_reminders(
        db, _fake_task(org, lead), payloads.ScheduleRemindersPayload(lead_id=lead.id)
    )

    tasks = db.query(Task).filter(Task.type == TaskType.SEND_REMINDER.value).all()
    assert [t.payload["reminder_type"] for t in tasks] == ["customer_2h"]


# =============================================================================
# send_reminder
# =============================================================================

@pytest.mark.asyncio
async def test_customer_reminder_sends_rendered_sms(db, org, lead, providers):
    db.add(
        MessageTemplate(
            org_id=org.id,
            channel=MessageChannel.SMS.value,
            name="booking_confirmed",
            body="Hi {{name}}, see you {{date}} at {{time}}. - {{company}}",
        )
    )
    start = datetime(2030, 6, 4, 15, 30, tzinfo=timezone.utc)
    appointment = _appointment(db, org, lead, start=start)
    payload = payloads.SendReminderPayload(
        appointment_id=appointment.id, reminder_type=ReminderType.CUSTOMER_24H
    )

    await booking.process_send_reminder(
        db, _fake_task(org, lead), payload, sms=providers.sms, email=providers.email
    )

    sent = providers.sms.sent[0]
    assert sent["to"] == lead.phone
    assert sent["body"] == "Hi Jamie Rivera, see you Tuesday, June 4 at 3:30 PM. - Acme Roofing"
    message = db.query(Message).one()
    assert message.provider_id == "SM1"
    assert message.direction == "outbound"
    assert EventType.REMINDER_SENT.value in _event_types(db)


@pytest.mark.asyncio
async def test_internal_reminder_emails_org(db, org, lead, providers):
    appointment = _appointment(db, org, lead, start=datetime.now(timezone.utc) + timedelta(days=1))
    payload = payloads.SendReminderPayload(
        appointment_id=appointment.id, reminder_type=ReminderType.INTERNAL_24H
    )

    await booking.process_send_reminder(
        db, _fake_task(org, lead), payload, sms=providers.sms, email=providers.email
    )

    assert providers.sms.sent == []
    assert providers.email.sent[0]["subject"].startswith("Tomorrow: Jamie Rivera")


@pytest.mark.asyncio
async def test_reminder_skipped_for_cancelled_appointment(db, org, lead, providers):
    appointment = _appointment(
        db, org, lead,
        start=datetime.now(timezone.utc) + timedelta(days=1),
        status=AppointmentStatus.CANCELLED,
    )
    payload = payloads.SendReminderPayload(
        appointment_id=appointment.id, reminder_type=ReminderType.INTERNAL_24H
    )

    await booking.process_send_reminder(
        db, _fake_task(org, lead), payload, sms=providers.sms, email=providers.email
    )

    assert providers.email.sent == []
    assert EventType.REMINDER_SENT.value not in _event_types(db)
