"""Follow-up service - rule-driven message sequences with stop conditions."""

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from app.db.enums import (
    ACTIVE_APPOINTMENT_STATUSES,
    EventType,
    LeadStatus,
    MessageDirection,
    PaymentStatus,
    TaskType,
)
from app.db.models import Appointment, FollowupRule, Lead, Message, Payment, Task
from app.services import event_service, task_service

logger = logging.getLogger(__name__)


def should_stop_followups(db: Session, org_id: UUID, lead_id: UUID) -> str | None:
    """
    Return the stop reason, or None if follow-ups may continue.

    Stops on an active booking, a paid payment, an inbound STOP, or a lost lead.
    """
    has_booking = db.query(Appointment.id).filter(
        Appointment.org_id == org_id,
        Appointment.lead_id == lead_id,
        Appointment.status.in_([s.value for s in ACTIVE_APPOINTMENT_STATUSES]),
    ).first()
    if has_booking:
        return "booking_exists"

    has_payment = db.query(Payment.id).filter(
        Payment.org_id == org_id,
        Payment.lead_id == lead_id,
        Payment.status == PaymentStatus.PAID.value,
    ).first()
    if has_payment:
        return "payment_received"

    opted_out = db.query(Message.id).filter(
        Message.org_id == org_id,
        Message.lead_id == lead_id,
        Message.direction == MessageDirection.INBOUND.value,
        Message.body.ilike("%stop%"),
    ).first()
    if opted_out:
        return "opt_out"

    lead = db.query(Lead).filter(Lead.id == lead_id, Lead.org_id == org_id).first()
    if lead and lead.status in (LeadStatus.LOST.value, LeadStatus.BOOKED.value):
        return f"lead_{lead.status}"

    return None


def schedule_followups(
    db: Session,
    org_id: UUID,
    lead_id: UUID,
    trigger: str,
    context: dict[str, str],
    now: datetime | None = None,
) -> list[Task]:
    """
    Enqueue one send_followup task per step of every enabled rule for `trigger`.

    Does not commit; the caller's transaction owns the new tasks.
    """
    now = now or datetime.now(timezone.utc)

    reason = should_stop_followups(db, org_id, lead_id)
    if reason:
        event_service.record_event(
            db,
            org_id=org_id,
            lead_id=lead_id,
            event_type=EventType.FOLLOWUP_STOPPED,
            metadata={"trigger": trigger, "reason": reason},
        )
        return []

    rules = db.query(FollowupRule).filter(
        FollowupRule.org_id == org_id,
        FollowupRule.trigger == trigger,
        FollowupRule.enabled.is_(True),
    ).all()
    if not rules:
        return []

    tasks: list[Task] = []
    for rule in rules:
        for step in rule.steps or []:
            tasks.append(
                task_service.enqueue_task(
                    db,
                    org_id=org_id,
                    lead_id=lead_id,
                    task_type=TaskType.SEND_FOLLOWUP,
                    payload={
                        "channel": step["channel"],
                        "template_name": step["template_name"],
                        "context": context,
                        "rule_id": str(rule.id),
                    },
                    run_at=now + timedelta(hours=step.get("delay_hours", 0)),
                )
            )

    event_service.record_event(
        db,
        org_id=org_id,
        lead_id=lead_id,
        event_type=EventType.FOLLOWUPS_SCHEDULED,
        metadata={"trigger": trigger, "rule_count": len(rules), "task_count": len(tasks)},
    )
    logger.info("Scheduled %s follow-ups for lead=%s trigger=%s", len(tasks), lead_id, trigger)
    return tasks
