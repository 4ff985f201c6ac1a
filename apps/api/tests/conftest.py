"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, schema created per test
- Organization / lead / quote fixtures
- Fake collaborators (calendar, payments, SMS, email)
- HTTPX AsyncClient wired to the app with overridden dependencies
"""
import os
import uuid
from typing import AsyncGenerator, Generator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

# Must be set before app modules read settings
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["FERNET_KEY"] = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="
os.environ["TESTING"] = "1"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["ENV"] = "test"

from app.main import app
from app.core.deps import get_db, get_providers
from app.db.base import Base
from app.db.models import Lead, Organization, Quote
from app.db.session import engine, SessionLocal
from app.services.integrations import Providers
from app.services.integrations.base import (
    CalendarProvider,
    EmailProvider,
    PaymentIntent,
    PaymentProvider,
    SmsProvider,
)


# =============================================================================
# Fake collaborators
# =============================================================================

class FakeCalendar(CalendarProvider):
    def __init__(self, busy=None, error: Exception | None = None):
        self.busy = list(busy or [])
        self.error = error
        self.events = []

    async def get_free_busy(self, db, org, time_min, time_max):
        if self.error:
            raise self.error
        return list(self.busy)

    async def create_event(self, db, org, details):
        if self.error:
            raise self.error
        self.events.append(details)
        return f"evt_{len(self.events)}"


class FakePayments(PaymentProvider):
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.intents = []

    async def create_payment_intent(self, org, amount_cents, metadata):
        if self.error:
            raise self.error
        intent_id = f"pi_test_{len(self.intents) + 1}"
        self.intents.append({"id": intent_id, "amount": amount_cents, "metadata": metadata})
        return PaymentIntent(intent_id=intent_id, client_secret=f"{intent_id}_secret")


class FakeSms(SmsProvider):
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.sent = []

    async def send_sms(self, db, org, to, body):
        if self.error:
            raise self.error
        self.sent.append({"to": to, "body": body})
        return f"SM{len(self.sent)}"


class FakeEmail(EmailProvider):
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.sent = []

    async def send_email(self, to, subject, html):
        if self.error:
            raise self.error
        self.sent.append({"to": to, "subject": subject, "html": html})
        return f"em_{len(self.sent)}"


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema per test on the shared in-memory connection."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def org(db: Session) -> Organization:
    """Organization on UTC with the default slot strategy."""
    org = Organization(
        id=uuid.uuid4(),
        name="Acme Roofing",
        slug=f"acme-{uuid.uuid4().hex[:8]}",
        timezone="UTC",
        deposit_percent=25,
        notification_email="owner@acme.test",
    )
    db.add(org)
    db.commit()
    return org


@pytest.fixture(scope="function")
def lead(db: Session, org: Organization) -> Lead:
    lead = Lead(
        id=uuid.uuid4(),
        org_id=org.id,
        name="Jamie Rivera",
        phone="+15555550100",
        email="jamie@example.com",
        address="1 Main St",
        niche="roofing",
    )
    db.add(lead)
    db.commit()
    return lead


@pytest.fixture(scope="function")
def quote(db: Session, org: Organization, lead: Lead) -> Quote:
    quote = Quote(
        id=uuid.uuid4(),
        org_id=org.id,
        lead_id=lead.id,
        niche="roofing",
        total_cents=480000,
    )
    db.add(quote)
    db.commit()
    return quote


# =============================================================================
# Collaborator Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def providers() -> Providers:
    return Providers(
        calendar=FakeCalendar(),
        payments=FakePayments(),
        sms=FakeSms(),
        email=FakeEmail(),
    )


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session, providers: Providers) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient for the public and internal endpoints."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_providers] = lambda: providers

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()
