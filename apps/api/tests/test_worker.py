from datetime import datetime, timedelta, timezone
import uuid

import pytest

from app.db.enums import AppointmentStatus, EventType, TaskStatus, TaskType
from app.db.models import Appointment, Event, Lead, Task
from app.jobs.payloads import ScheduleRemindersPayload
from app.jobs.registry import TaskHandlerSpec, build_task_handlers
from app.services import hold_service
from app.worker import RunResult, run_task_queue

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _queue(db, org, lead, *, task_type=TaskType.SCHEDULE_REMINDERS.value, payload=None, created_at=T0):
    task = Task(
        org_id=org.id,
        lead_id=lead.id,
        type=task_type,
        payload={"lead_id": str(lead.id)} if payload is None else payload,
        run_at=T0,
        created_at=created_at,
    )
    db.add(task)
    db.commit()
    return task


def _handlers(handler):
    return {TaskType.SCHEDULE_REMINDERS.value: TaskHandlerSpec(ScheduleRemindersPayload, handler)}


def _events(db, event_type: EventType) -> list[Event]:
    return db.query(Event).filter(Event.type == event_type.value).all()


@pytest.mark.asyncio
async def test_successful_task_marked_done(db, org, lead):
    seen = []

    async def handler(_db, task, payload):
        seen.append(payload.lead_id)

    task = _queue(db, org, lead)
    result = await run_task_queue(db, _handlers(handler), now=T0)

    assert result == RunResult(processed=1, total=1, failed=0, retried=0)
    assert seen == [lead.id]
    db.refresh(task)
    assert task.status == TaskStatus.DONE.value
    assert task.completed_at is not None


@pytest.mark.asyncio
async def test_transient_failure_retries_then_succeeds(db, org, lead):
    calls = {"count": 0}

    async def flaky(_db, task, payload):
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("calendar timeout")

    task = _queue(db, org, lead)
    handlers = _handlers(flaky)

    first = await run_task_queue(db, handlers, now=T0)
    db.refresh(task)
    assert first.retried == 1
    assert task.status == TaskStatus.QUEUED.value
    assert task.retry_count == 1
    assert task.run_at == T0 + timedelta(minutes=1)

    # Not due yet
    early = await run_task_queue(db, handlers, now=T0 + timedelta(seconds=30))
    assert early.total == 0

    second = await run_task_queue(db, handlers, now=T0 + timedelta(seconds=61))
    db.refresh(task)
    assert second.processed == 1
    assert task.status == TaskStatus.DONE.value
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_persistent_failure_exhausts_retries(db, org, lead):
    async def broken(_db, task, payload):
        raise RuntimeError("always down")

    task = _queue(db, org, lead)
    handlers = _handlers(broken)

    await run_task_queue(db, handlers, now=T0)
    db.refresh(task)
    assert task.run_at == T0 + timedelta(minutes=1)

    await run_task_queue(db, handlers, now=T0 + timedelta(minutes=1))
    db.refresh(task)
    assert task.retry_count == 2
    assert task.run_at == T0 + timedelta(minutes=5)

    result = await run_task_queue(db, handlers, now=T0 + timedelta(minutes=5))
    db.refresh(task)
    assert result.failed == 1
    assert task.status == TaskStatus.FAILED.value
    assert task.retry_count == 3
    assert "always down" in task.last_error

    # Never selected again
    later = await run_task_queue(db, handlers, now=T0 + timedelta(days=1))
    assert later.total == 0
    assert len(_events(db, EventType.TASK_RETRY_SCHEDULED)) == 2
    assert len(_events(db, EventType.TASK_FAILED)) == 1


@pytest.mark.asyncio
async def test_unknown_task_type_fails_without_retry(db, org, lead):
    task = _queue(db, org, lead, task_type="generate_pdf")

    result = await run_task_queue(db, {}, now=T0)

    db.refresh(task)
    assert result.failed == 1
    assert task.status == TaskStatus.FAILED.value
    assert task.retry_count == 0
    assert len(_events(db, EventType.TASK_UNHANDLED)) == 1


@pytest.mark.asyncio
async def test_invalid_payload_fails_without_calling_handler(db, org, lead):
    called = []

    async def handler(_db, task, payload):
        called.append(task.id)

    task = _queue(db, org, lead, payload={"lead_id": "not-a-uuid"})
    result = await run_task_queue(db, _handlers(handler), now=T0)

    db.refresh(task)
    assert result.failed == 1
    assert called == []
    assert task.status == TaskStatus.FAILED.value
    assert task.retry_count == 0
    event = _events(db, EventType.TASK_INVALID_PAYLOAD)[0]
    assert "lead_id" in event.metadata_json["error"]


@pytest.mark.asyncio
async def test_failing_task_does_not_abort_batch(db, org, lead):
    other_lead = Lead(org_id=org.id, name="Second Lead")
    db.add(other_lead)
    db.commit()
    handled = []

    async def handler(_db, task, payload):
        if payload.lead_id == lead.id:
            raise RuntimeError("first task breaks")
        handled.append(payload.lead_id)

    _queue(db, org, lead, created_at=T0 - timedelta(minutes=2))
    _queue(db, org, other_lead, created_at=T0 - timedelta(minutes=1))

    result = await run_task_queue(db, _handlers(handler), now=T0)

    assert result == RunResult(processed=1, total=2, failed=0, retried=1)
    assert handled == [other_lead.id]


@pytest.mark.asyncio
async def test_handler_writes_are_rolled_back_on_failure(db, org, lead):
    async def handler(_db, task, payload):
        _db.add(Lead(org_id=org.id, name="Should Not Persist"))
        _db.flush()
        raise RuntimeError("after partial write")

    _queue(db, org, lead)
    await run_task_queue(db, _handlers(handler), now=T0)

    assert db.query(Lead).filter(Lead.name == "Should Not Persist").count() == 0


@pytest.mark.asyncio
async def test_batch_size_limits_selection(db, org, lead):
    async def handler(_db, task, payload):
        return None

    for i in range(3):
        _queue(db, org, lead, created_at=T0 - timedelta(minutes=i))

    result = await run_task_queue(db, _handlers(handler), now=T0, batch_size=2)

    assert result.total == 2
    assert db.query(Task).filter(Task.status == TaskStatus.QUEUED.value).count() == 1


@pytest.mark.asyncio
async def test_payment_confirmation_chains_calendar_and_reminders(db, org, lead, quote, providers):
    now = datetime.now(timezone.utc)
    start = (now + timedelta(days=3)).replace(hour=10, minute=0, second=0, microsecond=0)
    hold, appointment = hold_service.create_hold(db, org, lead, start, start + timedelta(hours=2))
    payment, _ = await hold_service.begin_payment(
        db, quote, appointment.id, hold.id, providers.payments
    )
    hold_service.confirm_payment(
        db,
        org_id=org.id,
        lead_id=lead.id,
        payment_intent_id=payment.external_id,
        appointment_id=appointment.id,
        quote_id=quote.id,
    )
    handlers = build_task_handlers(providers)

    result = await run_task_queue(db, handlers)

    assert result.processed == 2
    db.refresh(appointment)
    assert appointment.status == AppointmentStatus.CONFIRMED.value
    assert appointment.calendar_event_id == "evt_1"
    reminders = db.query(Task).filter(Task.type == TaskType.SEND_REMINDER.value).all()
    assert sorted(t.payload["reminder_type"] for t in reminders) == [
        "customer_24h",
        "customer_2h",
        "internal_24h",
    ]
    assert all(t.run_at > now for t in reminders)
    # Reminders are scheduled for later, not picked up by this run
    assert all(t.status == TaskStatus.QUEUED.value for t in reminders)
