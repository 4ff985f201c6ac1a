"""SQLAlchemy ORM models."""

from app.db.models.appointments import Appointment, Hold, Payment
from app.db.models.messaging import FollowupRule, Message, MessageTemplate
from app.db.models.orgs import Lead, OrgIntegration, Organization, Quote
from app.db.models.tasks import Event, Task

__all__ = [
    "Appointment",
    "Event",
    "FollowupRule",
    "Hold",
    "Lead",
    "Message",
    "MessageTemplate",
    "OrgIntegration",
    "Organization",
    "Payment",
    "Quote",
    "Task",
]
