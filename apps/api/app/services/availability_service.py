"""Availability service - open slot generation for an organization.

Handles:
- Slot strategy parsing from org config
- Pure slot generation (working hours, lead time, buffer, daily cap, weekends)
- Busy interval collection (calendar free/busy, active holds, active appointments)
"""

import logging
from collections import Counter
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, NamedTuple
from zoneinfo import ZoneInfo

from pydantic import AliasChoices, BaseModel, Field, model_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ProviderError, ValidationError
from app.db.enums import ACTIVE_APPOINTMENT_STATUSES, EventType
from app.db.models import Appointment, Hold, Organization
from app.services import event_service

logger = logging.getLogger(__name__)


# =============================================================================
# Types
# =============================================================================

class TimeSlot(NamedTuple):
    """Available time slot (UTC)."""
    start: datetime
    end: datetime


class BusyInterval(NamedTuple):
    """Occupied time range: calendar busy time, active hold, or active appointment."""
    start: datetime
    end: datetime


class WorkingHours(BaseModel):
    """Daily bookable window in the org's local time (whole hours)."""
    start_hour: int = Field(8, ge=0, le=23, validation_alias=AliasChoices("start_hour", "start"))
    end_hour: int = Field(17, ge=1, le=24, validation_alias=AliasChoices("end_hour", "end"))

    @model_validator(mode="after")
    def _check_order(self) -> "WorkingHours":
        if self.end_hour <= self.start_hour:
            raise ValueError("working_hours.end_hour must be after start_hour")
        return self


class SlotStrategy(BaseModel):
    """How candidate slots are generated for an org."""
    duration_minutes: int = Field(120, gt=0, le=24 * 60)
    lead_time_hours: int = Field(48, ge=0)
    buffer_minutes: int = Field(30, ge=0)
    max_per_day: int = Field(3, ge=1)
    working_hours: WorkingHours = Field(default_factory=WorkingHours)
    weekend_days: frozenset[int] = frozenset({5, 6})  # Monday=0, Sunday=6

    @classmethod
    def from_config(cls, config: dict | None) -> "SlotStrategy":
        """Parse an org's stored slot_strategy; None yields the default strategy."""
        if not config:
            return cls()
        try:
            return cls.model_validate(config)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid slot strategy configuration: {exc.errors()[0]['msg']}")


# =============================================================================
# Helpers
# =============================================================================

def get_timezone(name: str | None) -> ZoneInfo:
    """Get a ZoneInfo timezone with safe fallback."""
    if not name:
        return ZoneInfo(settings.DEFAULT_TIMEZONE)
    try:
        return ZoneInfo(name)
    except Exception:
        logger.warning("Unknown timezone '%s'; using %s", name, settings.DEFAULT_TIMEZONE)
        return ZoneInfo(settings.DEFAULT_TIMEZONE)


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """Half-open interval overlap: [start, end) intersects [other_start, other_end)."""
    return start < other_end and end > other_start


def _at_hour(day: date, hour: int, tz: ZoneInfo) -> datetime:
    if hour >= 24:
        return datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return datetime.combine(day, time(hour=hour), tzinfo=tz)


def _ceil_to_hour(value: datetime) -> datetime:
    floored = value.replace(minute=0, second=0, microsecond=0)
    return floored if floored == value else floored + timedelta(hours=1)


# =============================================================================
# Slot Generation
# =============================================================================

def generate_slots(
    strategy: SlotStrategy,
    busy_intervals: Iterable[BusyInterval],
    *,
    now: datetime,
    tz: ZoneInfo | timezone = timezone.utc,
    days_ahead: int = 14,
) -> list[TimeSlot]:
    """
    Generate ordered candidate slots between now + lead time and now + days_ahead.

    Pure: callers fetch busy intervals beforehand. An empty busy set means
    "no constraint".
    """
    busy = list(busy_intervals)
    hours = strategy.working_hours
    duration = timedelta(minutes=strategy.duration_minutes)
    step = timedelta(minutes=strategy.duration_minutes + strategy.buffer_minutes)

    now_local = now.astimezone(tz)
    earliest_start = now_local + timedelta(hours=strategy.lead_time_hours)
    horizon = now_local + timedelta(days=days_ahead)

    slots: list[TimeSlot] = []
    per_day: Counter[date] = Counter()
    cursor = _ceil_to_hour(earliest_start)

    while cursor < horizon:
        day = cursor.date()
        next_day_start = _at_hour(day + timedelta(days=1), hours.start_hour, tz)

        if cursor.weekday() in strategy.weekend_days:
            cursor = next_day_start
            continue

        day_start = _at_hour(day, hours.start_hour, tz)
        if cursor < day_start:
            cursor = day_start
            continue

        slot_end = cursor + duration
        if slot_end > _at_hour(day, hours.end_hour, tz):
            cursor = next_day_start
            continue

        if per_day[day] >= strategy.max_per_day:
            cursor = next_day_start
            continue

        has_conflict = any(overlaps(cursor, slot_end, b.start, b.end) for b in busy)
        if not has_conflict:
            slots.append(
                TimeSlot(
                    start=cursor.astimezone(timezone.utc),
                    end=slot_end.astimezone(timezone.utc),
                )
            )
            per_day[day] += 1

        cursor += step

    return slots


# =============================================================================
# Busy Intervals
# =============================================================================

def get_active_holds(
    db: Session,
    org_id,
    time_min: datetime,
    time_max: datetime,
    now: datetime,
) -> list[Hold]:
    """Unexpired holds overlapping [time_min, time_max)."""
    return db.query(Hold).filter(
        Hold.org_id == org_id,
        Hold.expires_at >= now,
        Hold.slot_start < time_max,
        Hold.slot_end > time_min,
    ).all()


def get_active_appointments(
    db: Session,
    org_id,
    time_min: datetime,
    time_max: datetime,
) -> list[Appointment]:
    """Non-cancelled appointments overlapping [time_min, time_max)."""
    return db.query(Appointment).filter(
        Appointment.org_id == org_id,
        Appointment.status.in_([s.value for s in ACTIVE_APPOINTMENT_STATUSES]),
        Appointment.start_at < time_max,
        Appointment.end_at > time_min,
    ).all()


async def collect_busy_intervals(
    db: Session,
    org: Organization,
    calendar,
    *,
    time_min: datetime,
    time_max: datetime,
    now: datetime,
) -> list[BusyInterval]:
    """
    Union of calendar busy time, active holds and active appointments.

    A calendar failure does not block booking: it is logged, recorded as a
    calendar_busy_unavailable event, and generation continues without
    calendar data.
    """
    busy: list[BusyInterval] = []

    try:
        busy.extend(await calendar.get_free_busy(db, org, time_min, time_max))
    except ProviderError as exc:
        logger.warning(
            "Calendar free/busy unavailable for org=%s; continuing without it: %s",
            org.id,
            exc,
        )
        event_service.record_event(
            db,
            org_id=org.id,
            event_type=EventType.CALENDAR_BUSY_UNAVAILABLE,
            metadata={"error": str(exc)[:500], "time_min": time_min, "time_max": time_max},
        )
        db.commit()

    busy.extend(
        BusyInterval(start=h.slot_start, end=h.slot_end)
        for h in get_active_holds(db, org.id, time_min, time_max, now)
    )
    busy.extend(
        BusyInterval(start=a.start_at, end=a.end_at)
        for a in get_active_appointments(db, org.id, time_min, time_max)
    )
    return busy


async def get_available_slots(
    db: Session,
    org: Organization,
    calendar,
    *,
    now: datetime | None = None,
    days_ahead: int | None = None,
) -> list[TimeSlot]:
    """Compute open slots for an org using its configured strategy."""
    from app.services import hold_service

    now = now or datetime.now(timezone.utc)
    days_ahead = days_ahead or settings.SLOT_DAYS_AHEAD
    strategy = SlotStrategy.from_config(org.slot_strategy)

    hold_service.release_expired_holds(db, org.id, now=now)

    time_min = now + timedelta(hours=strategy.lead_time_hours)
    time_max = now + timedelta(days=days_ahead)
    busy = await collect_busy_intervals(
        db, org, calendar, time_min=time_min, time_max=time_max, now=now
    )
    return generate_slots(
        strategy,
        busy,
        now=now,
        tz=get_timezone(org.timezone),
        days_ahead=days_ahead,
    )
