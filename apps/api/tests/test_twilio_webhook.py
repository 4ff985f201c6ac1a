"""Tests for the Twilio inbound SMS webhook."""
import uuid

import pytest

from app.core.encryption import encrypt_json
from app.db.enums import EventType, IntegrationKind, IntegrationProvider, MessageDirection
from app.db.models import Event, Message, OrgIntegration
from app.services import followup_service

ORG_NUMBER = "+15550001111"


@pytest.fixture
def sms_number(db, org) -> OrgIntegration:
    integration = OrgIntegration(
        id=uuid.uuid4(),
        org_id=org.id,
        kind=IntegrationKind.SMS.value,
        provider=IntegrationProvider.TWILIO.value,
        config_encrypted=encrypt_json({"account_sid": "AC1", "auth_token": "tok"}),
        external_id=ORG_NUMBER,
    )
    db.add(integration)
    db.commit()
    return integration


def _event_types(db) -> list[str]:
    return [e.type for e in db.query(Event).all()]


@pytest.mark.asyncio
async def test_stop_reply_is_logged_and_opts_lead_out(client, db, org, lead, sms_number):
    response = await client.post(
        "/webhooks/twilio",
        data={"From": lead.phone, "To": ORG_NUMBER, "Body": " stop ", "MessageSid": "SM900"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/xml")
    assert response.text == "<Response></Response>"

    message = db.query(Message).one()
    assert message.lead_id == lead.id
    assert message.direction == MessageDirection.INBOUND.value
    assert message.provider_id == "SM900"
    types = _event_types(db)
    assert EventType.SMS_OPT_OUT.value in types
    assert EventType.SMS_INBOUND.value in types
    assert followup_service.should_stop_followups(db, org.id, lead.id) == "opt_out"


@pytest.mark.asyncio
async def test_ordinary_reply_is_logged_without_opt_out(client, db, org, lead, sms_number):
    response = await client.post(
        "/webhooks/twilio",
        data={"From": lead.phone, "To": ORG_NUMBER, "Body": "What time works?", "MessageSid": "SM901"},
    )

    assert response.status_code == 200
    types = _event_types(db)
    assert types == [EventType.SMS_INBOUND.value]
    event = db.query(Event).one()
    assert event.metadata_json["body"] == "What time works?"
    assert event.metadata_json["message_sid"] == "SM901"


@pytest.mark.asyncio
async def test_stop_from_unknown_sender_is_logged_without_lead(client, db, org, sms_number):
    response = await client.post(
        "/webhooks/twilio",
        data={"From": "+15559999999", "To": ORG_NUMBER, "Body": "STOP"},
    )

    assert response.status_code == 200
    assert db.query(Message).one().lead_id is None
    assert _event_types(db) == [EventType.SMS_INBOUND.value]


@pytest.mark.asyncio
async def test_unknown_receiving_number_returns_empty_twiml(client, db, org, lead):
    response = await client.post(
        "/webhooks/twilio",
        data={"From": lead.phone, "To": "+15550002222", "Body": "STOP"},
    )

    assert response.status_code == 200
    assert response.text == "<Response></Response>"
    assert db.query(Message).count() == 0
    assert db.query(Event).count() == 0


@pytest.mark.asyncio
async def test_missing_sender_is_400(client, db, sms_number):
    response = await client.post("/webhooks/twilio", data={"To": ORG_NUMBER, "Body": "hi"})

    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"
    assert db.query(Message).count() == 0
