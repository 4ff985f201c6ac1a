"""Event service - append-only audit log of booking and task transitions."""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.db.enums import EventType
from app.db.models import Event


def record_event(
    db: Session,
    org_id: UUID,
    event_type: EventType,
    lead_id: UUID | None = None,
    metadata: dict[str, Any] | None = None,
) -> Event:
    """
    Append an Event row.

    Does not commit: the event joins the caller's transaction so it is
    persisted together with the state change it describes.
    """
    event = Event(
        org_id=org_id,
        lead_id=lead_id,
        type=event_type.value,
        metadata_json=_jsonable(metadata or {}),
    )
    db.add(event)
    return event


def list_events(
    db: Session,
    org_id: UUID,
    lead_id: UUID | None = None,
    event_type: EventType | None = None,
    limit: int = 100,
) -> list[Event]:
    """List events for an org, oldest first."""
    query = db.query(Event).filter(Event.org_id == org_id)
    if lead_id:
        query = query.filter(Event.lead_id == lead_id)
    if event_type:
        query = query.filter(Event.type == event_type.value)
    return query.order_by(Event.created_at).limit(limit).all()


def _jsonable(metadata: dict[str, Any]) -> dict[str, Any]:
    # UUIDs and datetimes are stored as strings
    result: dict[str, Any] = {}
    for key, value in metadata.items():
        if isinstance(value, UUID):
            result[key] = str(value)
        elif hasattr(value, "isoformat"):
            result[key] = value.isoformat()
        else:
            result[key] = value
    return result
