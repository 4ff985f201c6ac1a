"""Task handler registry, built explicitly at startup and injected into the runner."""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Awaitable, Callable, Mapping

from app.core.errors import ConfigurationError
from app.db.enums import TaskType
from app.jobs import payloads
from app.jobs.handlers import booking, messaging
from app.services.integrations import Providers

TaskHandler = Callable[[object, object, payloads.TaskPayload], Awaitable[None]]


@dataclass(frozen=True)
class TaskHandlerSpec:
    """Payload schema plus the handler that consumes it."""

    payload_model: type[payloads.TaskPayload]
    handler: TaskHandler


def build_task_handlers(providers: Providers) -> Mapping[str, TaskHandlerSpec]:
    """Map each task type to its payload model and a handler bound to its collaborators."""
    return {
        TaskType.CREATE_CALENDAR_EVENT.value: TaskHandlerSpec(
            payloads.CreateCalendarEventPayload,
            partial(
                booking.process_create_calendar_event,
                calendar=providers.calendar,
                email=providers.email,
            ),
        ),
        TaskType.SCHEDULE_REMINDERS.value: TaskHandlerSpec(
            payloads.ScheduleRemindersPayload,
            booking.process_schedule_reminders,
        ),
        TaskType.SEND_REMINDER.value: TaskHandlerSpec(
            payloads.SendReminderPayload,
            partial(booking.process_send_reminder, sms=providers.sms, email=providers.email),
        ),
        TaskType.SEND_QUOTE.value: TaskHandlerSpec(
            payloads.SendQuotePayload,
            partial(messaging.process_send_quote, sms=providers.sms, email=providers.email),
        ),
        TaskType.SEND_FOLLOWUP.value: TaskHandlerSpec(
            payloads.SendFollowupPayload,
            partial(messaging.process_send_followup, sms=providers.sms, email=providers.email),
        ),
        TaskType.NOTIFY_ADMIN_APPROVAL.value: TaskHandlerSpec(
            payloads.NotifyAdminApprovalPayload,
            partial(messaging.process_notify_admin_approval, email=providers.email),
        ),
    }


def resolve_task_handler(
    handlers: Mapping[str, TaskHandlerSpec],
    task_type: str,
) -> TaskHandlerSpec:
    spec = handlers.get(task_type)
    if not spec:
        raise ConfigurationError(f"Unknown task type: {task_type}")
    return spec
