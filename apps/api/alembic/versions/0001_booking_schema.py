"""Booking schema - tenants, holds, appointments, payments, task queue

Revision ID: 0001_booking_schema
Revises:
Create Date: 2026-03-01

Creates every table used by slot booking, deposits and the task runner.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_booking_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create booking tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Organizations, leads, quotes
    # ==========================================================================
    op.execute('''
        CREATE TABLE organizations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            slug VARCHAR(100) UNIQUE NOT NULL,
            timezone VARCHAR(50) NOT NULL DEFAULT 'America/Los_Angeles',
            slot_strategy JSONB,
            deposit_percent INTEGER NOT NULL DEFAULT 25,
            notification_email VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE leads (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            phone VARCHAR(50),
            email VARCHAR(255),
            address TEXT,
            niche VARCHAR(50),
            status VARCHAR(20) NOT NULL DEFAULT 'new',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_leads_org ON leads(org_id, created_at)')

    op.execute('''
        CREATE TABLE quotes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            lead_id UUID NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            niche VARCHAR(50),
            status VARCHAR(20) NOT NULL DEFAULT 'draft',
            total_cents INTEGER NOT NULL DEFAULT 0,
            packages JSONB,
            sent_at TIMESTAMPTZ,
            accepted_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_quotes_lead ON quotes(lead_id)')

    op.execute('''
        CREATE TABLE org_integrations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            kind VARCHAR(20) NOT NULL,
            provider VARCHAR(20) NOT NULL,
            config_encrypted TEXT,
            external_id VARCHAR(255),
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute(
        'CREATE INDEX idx_org_integrations_kind ON org_integrations(org_id, kind, is_active)'
    )

    # ==========================================================================
    # Holds, appointments, payments
    # ==========================================================================
    op.execute('''
        CREATE TABLE holds (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            lead_id UUID NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            slot_start TIMESTAMPTZ NOT NULL,
            slot_end TIMESTAMPTZ NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CHECK (slot_end > slot_start)
        )
    ''')
    op.execute('CREATE INDEX idx_holds_org_range ON holds(org_id, slot_start, slot_end)')
    op.execute('CREATE INDEX idx_holds_org_expires ON holds(org_id, expires_at)')

    op.execute('''
        CREATE TABLE appointments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            lead_id UUID NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            hold_id UUID REFERENCES holds(id) ON DELETE SET NULL,
            start_at TIMESTAMPTZ NOT NULL,
            end_at TIMESTAMPTZ NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'pending_hold',
            package_tier VARCHAR(20),
            calendar_event_id VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CHECK (end_at > start_at)
        )
    ''')
    op.execute(
        'CREATE INDEX idx_appointments_org_range ON appointments(org_id, start_at, end_at)'
    )
    op.execute('CREATE INDEX idx_appointments_lead_status ON appointments(lead_id, status)')

    op.execute('''
        CREATE TABLE payments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            lead_id UUID NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            appointment_id UUID REFERENCES appointments(id) ON DELETE SET NULL,
            provider VARCHAR(20) NOT NULL DEFAULT 'stripe',
            amount_cents INTEGER NOT NULL,
            currency VARCHAR(3) NOT NULL DEFAULT 'usd',
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            external_id VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_payments_external ON payments(external_id)')

    # ==========================================================================
    # Task queue + event log
    # ==========================================================================
    op.execute('''
        CREATE TABLE tasks (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            lead_id UUID REFERENCES leads(id) ON DELETE CASCADE,
            type VARCHAR(50) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}',
            status VARCHAR(20) NOT NULL DEFAULT 'queued',
            run_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            retry_count INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            completed_at TIMESTAMPTZ
        )
    ''')
    op.execute('CREATE INDEX idx_tasks_due ON tasks(status, run_at)')
    op.execute('CREATE INDEX idx_tasks_org ON tasks(org_id, created_at)')

    op.execute('''
        CREATE TABLE events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            lead_id UUID,
            type VARCHAR(50) NOT NULL,
            metadata_json JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_events_org ON events(org_id, created_at)')
    op.execute('CREATE INDEX idx_events_lead ON events(lead_id, created_at)')

    # ==========================================================================
    # Messaging
    # ==========================================================================
    op.execute('''
        CREATE TABLE message_templates (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            channel VARCHAR(10) NOT NULL,
            name VARCHAR(100) NOT NULL,
            body TEXT NOT NULL
        )
    ''')
    op.execute(
        'CREATE INDEX idx_message_templates_name ON message_templates(org_id, name, channel)'
    )

    op.execute('''
        CREATE TABLE followup_rules (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            trigger VARCHAR(50) NOT NULL,
            steps JSONB NOT NULL DEFAULT '[]',
            enabled BOOLEAN NOT NULL DEFAULT true
        )
    ''')
    op.execute('CREATE INDEX idx_followup_rules_trigger ON followup_rules(org_id, trigger)')

    op.execute('''
        CREATE TABLE messages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            lead_id UUID REFERENCES leads(id) ON DELETE CASCADE,
            channel VARCHAR(10) NOT NULL,
            direction VARCHAR(10) NOT NULL,
            body TEXT NOT NULL,
            provider_id VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_messages_lead ON messages(org_id, lead_id, direction)')


def downgrade() -> None:
    """Drop booking tables."""
    for table in (
        'messages',
        'followup_rules',
        'message_templates',
        'events',
        'tasks',
        'payments',
        'appointments',
        'holds',
        'org_integrations',
        'quotes',
        'leads',
        'organizations',
    ):
        op.execute(f'DROP TABLE IF EXISTS {table} CASCADE')
