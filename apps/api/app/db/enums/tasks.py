"""Task queue enums."""

from enum import Enum


class TaskType(str, Enum):
    """Types of queued tasks. Each has a payload model in app.jobs.payloads."""

    CREATE_CALENDAR_EVENT = "create_calendar_event"
    SCHEDULE_REMINDERS = "schedule_reminders"
    SEND_REMINDER = "send_reminder"
    SEND_QUOTE = "send_quote"
    SEND_FOLLOWUP = "send_followup"
    NOTIFY_ADMIN_APPROVAL = "notify_admin_approval"


class TaskStatus(str, Enum):
    """
    Task lifecycle status.

    Flow: queued → running → done
                        ↘ queued (retry with backoff)
                        ↘ failed (retries exhausted / misconfigured)
    """

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class ReminderType(str, Enum):
    CUSTOMER_24H = "customer_24h"
    CUSTOMER_2H = "customer_2h"
    INTERNAL_24H = "internal_24h"
