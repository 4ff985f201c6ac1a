"""Task service - persistence rules for the task queue (enqueue, select, retry/backoff)."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.enums import EventType, TaskStatus, TaskType
from app.db.models import Task
from app.services import event_service


def compute_backoff(retry_count: int, base: int | None = None) -> timedelta:
    """
    Delay before the next attempt after `retry_count` failures.

    base ** (retry_count - 1) minutes: 1, 4, 16 for retries 1, 2, 3.
    """
    if retry_count < 1:
        raise ValueError("retry_count must be >= 1")
    base = base if base is not None else settings.TASK_BACKOFF_BASE
    return timedelta(minutes=base ** (retry_count - 1))


def enqueue_task(
    db: Session,
    org_id: UUID,
    task_type: TaskType,
    payload: dict,
    lead_id: UUID | None = None,
    run_at: datetime | None = None,
) -> Task:
    """
    Add a task to the queue.

    If run_at is None, the task is due immediately and is picked up by the
    next runner invocation. Does not commit.
    """
    task = Task(
        org_id=org_id,
        lead_id=lead_id,
        type=task_type.value,
        payload=payload,
        run_at=run_at or datetime.now(timezone.utc),
        status=TaskStatus.QUEUED.value,
    )
    db.add(task)
    return task


def get_due_tasks(
    db: Session,
    now: datetime | None = None,
    limit: int | None = None,
) -> list[Task]:
    """
    Get queued tasks that are due to run, oldest first (FIFO by created_at).

    FOR UPDATE SKIP LOCKED keeps an overlapping invocation from selecting
    the same rows only while this transaction is open (PostgreSQL only).
    The runner commits when it marks the first task running, which releases
    the locks on the rest of the batch; from then on an overlapping run can
    select tasks 2..N again. There is no leasing beyond that.
    """
    now = now or datetime.now(timezone.utc)
    limit = limit or settings.TASK_BATCH_SIZE
    return (
        db.query(Task)
        .filter(
            Task.status == TaskStatus.QUEUED.value,
            Task.run_at <= now,
        )
        .order_by(Task.created_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )


def list_tasks(
    db: Session,
    org_id: UUID,
    status: TaskStatus | None = None,
    task_type: TaskType | None = None,
    lead_id: UUID | None = None,
    limit: int = 50,
) -> list[Task]:
    """List tasks for an organization with optional filters."""
    query = db.query(Task).filter(Task.org_id == org_id)
    if status:
        query = query.filter(Task.status == status.value)
    if task_type:
        query = query.filter(Task.type == task_type.value)
    if lead_id:
        query = query.filter(Task.lead_id == lead_id)
    return query.order_by(Task.created_at).limit(limit).all()


def mark_task_running(db: Session, task: Task) -> Task:
    """Mark a task as running."""
    task.status = TaskStatus.RUNNING.value
    db.commit()
    db.refresh(task)
    return task


def mark_task_done(db: Session, task: Task, now: datetime | None = None) -> Task:
    """Mark a task as done."""
    task.status = TaskStatus.DONE.value
    task.completed_at = now or datetime.now(timezone.utc)
    task.last_error = None
    db.commit()
    db.refresh(task)
    return task


def mark_task_failed(
    db: Session,
    task: Task,
    error: str,
    now: datetime | None = None,
    max_retries: int | None = None,
) -> Task:
    """
    Record a handler failure.

    Increments retry_count. If retries remain, requeue at now + backoff;
    otherwise the task is failed permanently. Records an Event either way.
    """
    now = now or datetime.now(timezone.utc)
    max_retries = max_retries or settings.TASK_MAX_RETRIES

    task.retry_count += 1
    task.last_error = error[:2000]
    if task.retry_count < max_retries:
        next_run = now + compute_backoff(task.retry_count)
        # run_at never moves backwards across retries
        task.run_at = max(next_run, task.run_at)
        task.status = TaskStatus.QUEUED.value
        event_type = EventType.TASK_RETRY_SCHEDULED
    else:
        task.status = TaskStatus.FAILED.value
        task.completed_at = now
        event_type = EventType.TASK_FAILED

    event_service.record_event(
        db,
        org_id=task.org_id,
        lead_id=task.lead_id,
        event_type=event_type,
        metadata={
            "task_id": task.id,
            "task_type": task.type,
            "error": error[:500],
            "retry_count": task.retry_count,
            "run_at": task.run_at if task.status == TaskStatus.QUEUED.value else None,
        },
    )
    db.commit()
    db.refresh(task)
    return task


def mark_task_unrunnable(
    db: Session,
    task: Task,
    event_type: EventType,
    error: str,
    now: datetime | None = None,
) -> Task:
    """
    Fail a task without retry (unknown type or invalid payload).

    These are configuration errors; retrying cannot fix them.
    """
    task.status = TaskStatus.FAILED.value
    task.last_error = error[:2000]
    task.completed_at = now or datetime.now(timezone.utc)
    event_service.record_event(
        db,
        org_id=task.org_id,
        lead_id=task.lead_id,
        event_type=event_type,
        metadata={
            "task_id": task.id,
            "task_type": task.type,
            "error": error[:500],
            "retry_count": task.retry_count,
        },
    )
    db.commit()
    db.refresh(task)
    return task
