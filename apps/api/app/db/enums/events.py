"""Audit event types. Every state transition appends one Event row."""

from enum import Enum


class EventType(str, Enum):
    # Booking
    HOLD_CREATED = "hold_created"
    HOLD_EXPIRED = "hold_expired"
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_UNMATCHED = "payment_unmatched"
    CALENDAR_BUSY_UNAVAILABLE = "calendar_busy_unavailable"

    # Task queue
    TASK_RETRY_SCHEDULED = "task_retry_scheduled"
    TASK_FAILED = "task_failed"
    TASK_UNHANDLED = "task_unhandled"
    TASK_INVALID_PAYLOAD = "task_invalid_payload"

    # Handlers
    CALENDAR_EVENT_CREATED = "calendar_event_created"
    REMINDERS_SCHEDULED = "reminders_scheduled"
    REMINDER_SENT = "reminder_sent"
    QUOTE_SENT = "quote_sent"
    FOLLOWUPS_SCHEDULED = "followups_scheduled"
    FOLLOWUP_STOPPED = "followup_stopped"
    FOLLOWUP_SENT = "followup_sent"

    # Inbound SMS
    SMS_INBOUND = "sms_inbound"
    SMS_OPT_OUT = "sms_opt_out"
    ADMIN_NOTIFIED = "admin_notified"
