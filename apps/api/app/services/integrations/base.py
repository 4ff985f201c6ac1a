"""Collaborator interfaces used by the booking services and task handlers.

Concrete clients live beside this module; tests substitute fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.db.models import Organization
from app.services.availability_service import BusyInterval


@dataclass(frozen=True)
class CalendarEventDetails:
    summary: str
    description: str
    location: str
    start: datetime
    end: datetime


@dataclass(frozen=True)
class PaymentIntent:
    intent_id: str
    client_secret: str


class CalendarProvider(ABC):
    @abstractmethod
    async def get_free_busy(
        self,
        db: Session,
        org: Organization,
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        """Busy time in [time_min, time_max). Empty when the org has no calendar."""

    @abstractmethod
    async def create_event(
        self,
        db: Session,
        org: Organization,
        details: CalendarEventDetails,
    ) -> str | None:
        """Create an event; returns its provider id, or None when no calendar is connected."""


class PaymentProvider(ABC):
    @abstractmethod
    async def create_payment_intent(
        self,
        org: Organization,
        amount_cents: int,
        metadata: dict[str, str],
    ) -> PaymentIntent:
        ...


class SmsProvider(ABC):
    @abstractmethod
    async def send_sms(self, db: Session, org: Organization, to: str, body: str) -> str:
        """Send an SMS from the org's number; returns the provider message id."""


class EmailProvider(ABC):
    @abstractmethod
    async def send_email(self, to: str | list[str], subject: str, html: str) -> str | None:
        ...
