"""
Free-slot finder used for smart scheduling.

Given a user's working window on one calendar day and the events already booked in it,
return the open intervals long enough to hold a requested duration.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import InvalidInput
from .models import EventEntity
from .repositories import EventRepository, PreferencesRepository
from .settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_MIN_DURATION_MINUTES = 60
MAX_DURATION_MINUTES = 24 * 60

_HHMM = re.compile(r"^(\d{1,2}):(\d{2})$")


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class WorkingHours:
    """Daily working window in 'HH:MM' wall-clock form, placed on a day in `timezone`."""

    start: str
    end: str
    timezone: str = "UTC"


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class FreeSlot:
    """An open interval [start, end). Derived per request, never stored."""

    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60


def parse_hhmm(value: str) -> time:
    """Parse 'HH:MM' (24h clock) into a time, raising InvalidInput when malformed."""
    match = _HHMM.match((value or "").strip())
    if not match:
        raise InvalidInput(f"Invalid time '{value}'; expected HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise InvalidInput(f"Invalid time '{value}'; expected HH:MM")
    return time(hour, minute)


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidInput(f"Unknown timezone '{name}'") from e


# PUBLIC_INTERFACE
def working_window(target_date: date, hours: WorkingHours) -> Tuple[datetime, datetime]:
    """
    Place the working hours on `target_date` and return (day_start, day_end) in UTC.

    Raises InvalidInput when either bound is malformed or day_end is not after day_start.
    """
    tz = resolve_timezone(hours.timezone)
    day_start = datetime.combine(target_date, parse_hhmm(hours.start), tzinfo=tz)
    day_end = datetime.combine(target_date, parse_hhmm(hours.end), tzinfo=tz)
    if day_end <= day_start:
        raise InvalidInput(f"Working hours end ({hours.end}) must be after start ({hours.start})")
    return day_start.astimezone(timezone.utc), day_end.astimezone(timezone.utc)


# PUBLIC_INTERFACE
def check_duration(minutes: float) -> None:
    """Reject durations that are not a finite number of minutes in (0, 1440]."""
    if not math.isfinite(minutes) or minutes <= 0 or minutes > MAX_DURATION_MINUTES:
        raise InvalidInput(
            f"duration must be a positive number of minutes, at most {MAX_DURATION_MINUTES}"
        )


# PUBLIC_INTERFACE
def compute_free_slots(
    events: Iterable[EventEntity],
    day_start: datetime,
    day_end: datetime,
    min_duration_minutes: float = DEFAULT_MIN_DURATION_MINUTES,
) -> List[FreeSlot]:
    """
    Sweep busy events left to right and return the gaps in [day_start, day_end).

    Events may overlap or extend past the window; each is clamped to the window and the
    cursor only ever moves forward, so overlapping bookings merge into one busy span.
    Gaps shorter than `min_duration_minutes` are dropped. The result is chronological,
    non-overlapping, and may be empty.
    """
    check_duration(min_duration_minutes)
    if day_end <= day_start:
        raise InvalidInput("working window end must be after its start")

    min_length = timedelta(minutes=min_duration_minutes)
    ordered = sorted(events, key=lambda e: (e["start"], e["id"]))

    slots: List[FreeSlot] = []
    cursor = day_start
    for event in ordered:
        busy_start = max(event["start"], day_start)
        busy_end = min(event["end"], day_end)
        if busy_end <= day_start or busy_start >= day_end:
            continue
        if cursor < busy_start and busy_start - cursor >= min_length:
            slots.append(FreeSlot(cursor, busy_start))
        # Never move backwards: a contained event must not reopen busy time
        cursor = max(cursor, busy_end)

    if cursor < day_end and day_end - cursor >= min_length:
        slots.append(FreeSlot(cursor, day_end))
    return slots


def default_working_hours(settings: Settings) -> WorkingHours:
    return WorkingHours(
        start=settings.default_working_hours_start,
        end=settings.default_working_hours_end,
        timezone=settings.default_timezone,
    )


# PUBLIC_INTERFACE
def working_hours_for(user_id: str, preferences: PreferencesRepository, settings: Settings) -> WorkingHours:
    """Return the user's stored working hours, or the configured default window."""
    stored = preferences.get(user_id)
    if stored is None:
        return default_working_hours(settings)
    return WorkingHours(
        start=stored["working_hours_start"],
        end=stored["working_hours_end"],
        timezone=stored["timezone"] or settings.default_timezone,
    )


# PUBLIC_INTERFACE
def find_free_slots(
    events: EventRepository,
    user_id: str,
    target_date: date,
    min_duration_minutes: Optional[float] = None,
    working_hours: Optional[WorkingHours] = None,
) -> List[FreeSlot]:
    """
    Return the user's free slots on `target_date`.

    `min_duration_minutes` defaults to 60; `working_hours` defaults to 09:00-17:00 UTC.
    Raises InvalidInput for a duration outside (0, 1440] minutes or an unusable working window.
    No transaction wraps the read: a slot may already be stale when the caller acts on it.
    """
    duration = DEFAULT_MIN_DURATION_MINUTES if min_duration_minutes is None else min_duration_minutes
    check_duration(duration)
    hours = working_hours or WorkingHours(start="09:00", end="17:00")
    day_start, day_end = working_window(target_date, hours)

    busy = events.find_overlapping(user_id, day_start, day_end)
    slots = compute_free_slots(busy, day_start, day_end, duration)
    logger.debug(
        "Free slots for user %s on %s: %d busy event(s), %d slot(s) >= %s min",
        user_id, target_date.isoformat(), len(busy), len(slots), duration,
    )
    return slots
