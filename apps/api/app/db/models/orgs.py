"""SQLAlchemy ORM models for tenants, leads, quotes and provider connections."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.enums import DEFAULT_LEAD_STATUS, DEFAULT_QUOTE_STATUS
from app.db.types import JSONType, utcnow


class Organization(Base):
    """
    A service business (tenant).

    All booking entities belong to an organization and must be scoped by
    org_id in all queries.
    """

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    timezone: Mapped[str] = mapped_column(
        String(50), nullable=False, default="America/Los_Angeles"
    )
    # SlotStrategy config; NULL falls back to the default strategy
    slot_strategy: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    deposit_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=25)
    notification_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    integrations: Mapped[list["OrgIntegration"]] = relationship(back_populates="organization")


class Lead(Base):
    """A prospective customer of an organization."""

    __tablename__ = "leads"
    __table_args__ = (Index("idx_leads_org", "org_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    niche: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DEFAULT_LEAD_STATUS.value
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Quote(Base):
    """
    A priced offer for a lead.

    The quote id scopes the public booking endpoints (resolves org + lead).
    """

    __tablename__ = "quotes"
    __table_args__ = (Index("idx_quotes_lead", "lead_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    niche: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DEFAULT_QUOTE_STATUS.value
    )
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # [{"tier": "good", "subtotal_cents": 350000}, ...]
    packages: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    organization: Mapped["Organization"] = relationship()
    lead: Mapped["Lead"] = relationship()


class OrgIntegration(Base):
    """
    Connected external provider for an org (calendar or SMS).

    Credentials are Fernet-encrypted JSON (see app.core.encryption).
    """

    __tablename__ = "org_integrations"
    __table_args__ = (Index("idx_org_integrations_kind", "org_id", "kind", "is_active"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)  # calendar, sms
    provider: Mapped[str] = mapped_column(String(20), nullable=False)  # google, microsoft, twilio
    config_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Calendar id for calendars, sender number for SMS
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    organization: Mapped["Organization"] = relationship(back_populates="integrations")
