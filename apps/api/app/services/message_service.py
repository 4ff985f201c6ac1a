"""Message service - org templates and the message log."""

from uuid import UUID

from sqlalchemy.orm import Session

from app.db.enums import MessageChannel, MessageDirection
from app.db.models import Message, MessageTemplate


def get_template(
    db: Session,
    org_id: UUID,
    name: str,
    channel: MessageChannel,
) -> MessageTemplate | None:
    return db.query(MessageTemplate).filter(
        MessageTemplate.org_id == org_id,
        MessageTemplate.name == name,
        MessageTemplate.channel == channel.value,
    ).first()


def log_message(
    db: Session,
    org_id: UUID,
    lead_id: UUID | None,
    channel: MessageChannel,
    body: str,
    direction: MessageDirection = MessageDirection.OUTBOUND,
    provider_id: str | None = None,
) -> Message:
    """Append to the message log. Does not commit."""
    message = Message(
        org_id=org_id,
        lead_id=lead_id,
        channel=channel.value,
        direction=direction.value,
        body=body,
        provider_id=provider_id,
    )
    db.add(message)
    return message
