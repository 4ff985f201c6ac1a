"""Lead, quote and messaging enums."""

from enum import Enum


class LeadStatus(str, Enum):
    NEW = "new"
    QUOTED = "quoted"
    BOOKED = "booked"
    LOST = "lost"


class QuoteStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class MessageChannel(str, Enum):
    SMS = "sms"
    EMAIL = "email"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class IntegrationKind(str, Enum):
    CALENDAR = "calendar"
    SMS = "sms"


class IntegrationProvider(str, Enum):
    GOOGLE = "google"
    MICROSOFT = "microsoft"
    TWILIO = "twilio"
