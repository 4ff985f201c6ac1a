"""Task payload models, one per task type, validated when a task is dequeued."""

from __future__ import annotations

from typing import ClassVar
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from app.core.errors import InvalidPayloadError
from app.db.enums import MessageChannel, ReminderType, TaskType


class TaskPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    task_type: ClassVar[TaskType]


class CreateCalendarEventPayload(TaskPayload):
    task_type: ClassVar[TaskType] = TaskType.CREATE_CALENDAR_EVENT

    lead_id: UUID
    quote_id: UUID | None = None


class ScheduleRemindersPayload(TaskPayload):
    task_type: ClassVar[TaskType] = TaskType.SCHEDULE_REMINDERS

    lead_id: UUID


class SendReminderPayload(TaskPayload):
    task_type: ClassVar[TaskType] = TaskType.SEND_REMINDER

    appointment_id: UUID
    reminder_type: ReminderType = Field(
        validation_alias=AliasChoices("reminder_type", "type")
    )


class SendQuotePayload(TaskPayload):
    task_type: ClassVar[TaskType] = TaskType.SEND_QUOTE

    quote_id: UUID


class SendFollowupPayload(TaskPayload):
    task_type: ClassVar[TaskType] = TaskType.SEND_FOLLOWUP

    channel: MessageChannel
    template_name: str = Field(min_length=1)
    context: dict[str, str] = Field(default_factory=dict)
    rule_id: UUID | None = None


class NotifyAdminApprovalPayload(TaskPayload):
    task_type: ClassVar[TaskType] = TaskType.NOTIFY_ADMIN_APPROVAL

    quote_id: UUID
    reason: str = "Quote requires manual review"


def parse_payload(model: type[TaskPayload], raw: dict | None) -> TaskPayload:
    """Validate a stored payload; schema mismatch is a terminal InvalidPayloadError."""
    try:
        return model.model_validate(raw or {})
    except PydanticValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}"
            for err in exc.errors()
        )
        raise InvalidPayloadError(f"Invalid {model.task_type.value} payload: {errors}") from exc
