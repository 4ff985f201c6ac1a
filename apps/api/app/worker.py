"""
Task queue runner.

Usage:
    python -m app.worker          # poll every WORKER_POLL_INTERVAL seconds
    python -m app.worker --once   # single invocation (cron-style)

Each invocation selects due tasks and runs their handlers sequentially.
The same runner backs GET /internal/cron/run-tasks.
"""

import argparse
import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Mapping

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    ConfigurationError,
    InvalidPayloadError,
    ProviderError,
    TransientHandlerFailure,
)
from app.core.structured_logging import build_log_context
from app.db.enums import EventType, TaskStatus
from app.db.models import Task
from app.db.session import SessionLocal
from app.jobs.payloads import parse_payload
from app.jobs.registry import TaskHandlerSpec, build_task_handlers, resolve_task_handler
from app.services import task_service
from app.services.integrations import build_providers

logger = logging.getLogger(__name__)

DONE = "done"
RETRIED = "retried"
FAILED = "failed"


@dataclass
class RunResult:
    processed: int = 0
    total: int = 0
    failed: int = 0
    retried: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


async def process_task(
    db: Session,
    task: Task,
    handlers: Mapping[str, TaskHandlerSpec],
    now: datetime,
) -> str:
    """
    Run one task and record its outcome. Never raises for handler failures.

    Returns "done", "retried" or "failed".
    """
    context = build_log_context(
        org_id=task.org_id, lead_id=task.lead_id, task_id=task.id, task_type=task.type
    )

    try:
        spec = resolve_task_handler(handlers, task.type)
        payload = parse_payload(spec.payload_model, task.payload)
    except InvalidPayloadError as exc:
        logger.error("Task %s has invalid payload: %s", task.id, exc, extra=context)
        task_service.mark_task_unrunnable(db, task, EventType.TASK_INVALID_PAYLOAD, str(exc), now=now)
        return FAILED
    except ConfigurationError as exc:
        logger.error("Task %s has no handler: %s", task.id, exc, extra=context)
        task_service.mark_task_unrunnable(db, task, EventType.TASK_UNHANDLED, str(exc), now=now)
        return FAILED

    task_service.mark_task_running(db, task)
    logger.info("Processing task %s (type=%s, retry=%s)", task.id, task.type, task.retry_count, extra=context)

    try:
        await spec.handler(db, task, payload)
    except Exception as exc:
        db.rollback()
        if not isinstance(exc, (TransientHandlerFailure, ProviderError)):
            logger.exception("Task %s raised unexpectedly", task.id, extra=context)
        error = f"{type(exc).__name__}: {exc}"
        task_service.mark_task_failed(db, task, error, now=now)
        if task.status == TaskStatus.FAILED.value:
            logger.error("Task %s failed permanently: %s", task.id, error, extra=context)
            return FAILED
        logger.warning(
            "Task %s failed (retry %s), next run at %s: %s",
            task.id,
            task.retry_count,
            task.run_at.isoformat(),
            error,
            extra=context,
        )
        return RETRIED

    task_service.mark_task_done(db, task, now=datetime.now(timezone.utc))
    logger.info("Task %s completed", task.id, extra=context)
    return DONE


async def run_task_queue(
    db: Session,
    handlers: Mapping[str, TaskHandlerSpec],
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
) -> RunResult:
    """Process up to batch_size due tasks, oldest first. One task's failure never aborts the batch."""
    now = now or datetime.now(timezone.utc)
    tasks = task_service.get_due_tasks(db, now=now, limit=batch_size)
    result = RunResult(total=len(tasks))
    if tasks:
        logger.info("Found %s due tasks", len(tasks))

    for task in tasks:
        outcome = await process_task(db, task, handlers, now)
        if outcome == DONE:
            result.processed += 1
        elif outcome == RETRIED:
            result.retried += 1
        else:
            result.failed += 1

    return result


async def worker_loop(once: bool = False) -> None:
    """Poll for due tasks until interrupted (or a single pass with once=True)."""
    handlers = build_task_handlers(build_providers())
    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s)",
        settings.WORKER_POLL_INTERVAL,
        settings.TASK_BATCH_SIZE,
    )

    while True:
        with SessionLocal() as db:
            result = await run_task_queue(db, handlers)
        if result.total:
            logger.info("Run finished: %s", result.as_dict())
        if once:
            return
        await asyncio.sleep(settings.WORKER_POLL_INTERVAL)


def main(argv: list[str] | None = None) -> None:
    """Entry point for the worker."""
    parser = argparse.ArgumentParser(description="Run the booking task queue.")
    parser.add_argument("--once", action="store_true", help="process one batch and exit")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if settings.SENTRY_DSN and not settings.is_dev:
        import sentry_sdk
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENV,
            integrations=[SqlalchemyIntegration()],
            send_default_pii=False,
        )

    try:
        asyncio.run(worker_loop(once=args.once))
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception("Worker crashed", extra=build_log_context(route="worker"))
        raise


if __name__ == "__main__":
    main()
