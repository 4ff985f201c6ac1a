"""Enum definitions for application constants."""

from app.db.enums.appointments import (
    ACTIVE_APPOINTMENT_STATUSES,
    APPOINTMENT_TRANSITIONS,
    AppointmentStatus,
    PaymentStatus,
)
from app.db.enums.defaults import (
    DEFAULT_APPOINTMENT_STATUS,
    DEFAULT_LEAD_STATUS,
    DEFAULT_QUOTE_STATUS,
    DEFAULT_TASK_STATUS,
)
from app.db.enums.events import EventType
from app.db.enums.leads import (
    IntegrationKind,
    IntegrationProvider,
    LeadStatus,
    MessageChannel,
    MessageDirection,
    QuoteStatus,
)
from app.db.enums.tasks import ReminderType, TaskStatus, TaskType
