"""Centralized defaults for enums."""

from app.db.enums.appointments import AppointmentStatus
from app.db.enums.leads import LeadStatus, QuoteStatus
from app.db.enums.tasks import TaskStatus


DEFAULT_TASK_STATUS: TaskStatus = TaskStatus.QUEUED
DEFAULT_APPOINTMENT_STATUS: AppointmentStatus = AppointmentStatus.PENDING_HOLD
DEFAULT_LEAD_STATUS: LeadStatus = LeadStatus.NEW
DEFAULT_QUOTE_STATUS: QuoteStatus = QuoteStatus.DRAFT
