from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from ..auth import get_current_user_id
from ..errors import NotFound
from ..free_slots import find_free_slots, resolve_timezone, working_hours_for
from ..realtime import ConnectionHub, get_hub
from ..repositories import Store, get_store
from ..schemas import (
    EventCreate,
    EventDuplicate,
    EventOut,
    EventUpdate,
    FreeSlotOut,
    FreeSlotsResponse,
    ReminderIn,
    WorkingHoursOut,
)
from ..settings import Settings, get_settings
from ..utils import as_utc, utcnow
from .calendars import resolve_calendar

router = APIRouter(
    prefix="/api/v1/events",
    tags=["events"],
)


class EventList(BaseModel):
    items: List[EventOut] = Field(..., description="Events sorted by start")


def _get_store(store: Store = Depends(get_store)) -> Store:
    """
    Dependency wrapper for the store to keep signatures clean.
    """
    return store


def _out(entity) -> EventOut:
    return EventOut(**entity)


# PUBLIC_INTERFACE
@router.get(
    "/suggestions/free-slots",
    response_model=FreeSlotsResponse,
    summary="Suggest free slots",
    description=(
        "Return open windows within the caller's working hours on a given day that are at "
        "least `duration` minutes long. Overlapping events are merged into one busy span."
    ),
    responses={
        200: {"description": "Free slots computed (possibly none)"},
        400: {"description": "Non-positive duration or unusable working hours"},
    },
)
def suggest_free_slots(
    day: Optional[date] = Query(None, alias="date", description="Calendar day, YYYY-MM-DD; today by default"),
    duration: float = Query(60, description="Minimum slot length in minutes"),
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
    settings: Settings = Depends(get_settings),
) -> FreeSlotsResponse:
    """
    Compute free slots for smart scheduling.
    """
    hours = working_hours_for(user_id, store.preferences, settings)
    target = day or utcnow().astimezone(resolve_timezone(hours.timezone)).date()
    slots = find_free_slots(store.events, user_id, target, duration, hours)
    return FreeSlotsResponse(
        day=target,
        working_hours=WorkingHoursOut(start=hours.start, end=hours.end, timezone=hours.timezone),
        free_slots=[
            FreeSlotOut(start=s.start, end=s.end, duration_minutes=s.duration_minutes) for s in slots
        ],
    )


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=EventList,
    summary="List Events",
    description="List the caller's events, optionally restricted to a time range and/or calendar.",
)
def list_events(
    start: Optional[datetime] = Query(None, description="Range start (ISO8601)"),
    end: Optional[datetime] = Query(None, description="Range end (ISO8601)"),
    calendar_id: Optional[int] = Query(None, description="Only events of this calendar"),
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
) -> EventList:
    items = store.events.list_range(user_id, as_utc(start), as_utc(end), calendar_id)
    return EventList(items=[_out(e) for e in items])


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=EventOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Event",
    description=(
        "Create an event in one of the caller's calendars (the default calendar when "
        "`calendar_id` is omitted). Without explicit reminders a 15 minute reminder is attached."
    ),
    responses={404: {"description": "Calendar not found"}},
)
def create_event(
    payload: EventCreate,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
    hub: ConnectionHub = Depends(get_hub),
) -> EventOut:
    calendar = resolve_calendar(store, user_id, payload.calendar_id)
    payload = payload.model_copy(update={"calendar_id": calendar["id"]})
    created = _out(store.events.create(user_id, payload))
    hub.publish(user_id, {"type": "event:created", "event": created.model_dump(mode="json")})
    return created


# PUBLIC_INTERFACE
@router.get(
    "/{event_id}",
    response_model=EventOut,
    summary="Get Event",
    responses={404: {"description": "Event not found"}},
)
def get_event(
    event_id: int,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
) -> EventOut:
    item = store.events.get(user_id, event_id)
    if not item:
        raise NotFound("Event not found")
    return _out(item)


# PUBLIC_INTERFACE
@router.patch(
    "/{event_id}",
    response_model=EventOut,
    summary="Update Event",
    description="Partially update an event. Moving the start or replacing reminders re-arms them.",
    responses={
        400: {"description": "Update would leave end at or before start"},
        404: {"description": "Event or calendar not found"},
    },
)
def update_event(
    event_id: int,
    payload: EventUpdate,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
    hub: ConnectionHub = Depends(get_hub),
) -> EventOut:
    if payload.calendar_id is not None:
        resolve_calendar(store, user_id, payload.calendar_id)
    updated = store.events.update(user_id, event_id, payload)
    if not updated:
        raise NotFound("Event not found")
    out = _out(updated)
    hub.publish(user_id, {"type": "event:updated", "event": out.model_dump(mode="json")})
    return out


# PUBLIC_INTERFACE
@router.delete(
    "/{event_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Event",
    responses={204: {"description": "Event deleted"}, 404: {"description": "Event not found"}},
)
def delete_event(
    event_id: int,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
    hub: ConnectionHub = Depends(get_hub),
) -> None:
    if not store.events.delete(user_id, event_id):
        raise NotFound("Event not found")
    hub.publish(user_id, {"type": "event:deleted", "id": event_id})
    return None


# PUBLIC_INTERFACE
@router.post(
    "/{event_id}/duplicate",
    response_model=EventOut,
    status_code=status.HTTP_201_CREATED,
    summary="Duplicate Event",
    description="Copy an event to `new_start` (default: one day later) with fresh reminders.",
    responses={404: {"description": "Event not found"}},
)
def duplicate_event(
    event_id: int,
    payload: Optional[EventDuplicate] = None,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
    hub: ConnectionHub = Depends(get_hub),
) -> EventOut:
    original = store.events.get(user_id, event_id)
    if not original:
        raise NotFound("Event not found")
    length = original["end"] - original["start"]
    new_start = payload.new_start if payload else None
    start = new_start or original["start"] + timedelta(days=1)
    copy = EventCreate(
        title=f"{original['title']} (Copy)"[:200],
        calendar_id=original["calendar_id"],
        description=original["description"],
        location=original["location"],
        start=start,
        end=start + length,
        all_day=original["all_day"],
        reminders=[
            ReminderIn(offset_minutes=r["offset_minutes"], channel=r["channel"])
            for r in original["reminders"]
        ],
    )
    created = _out(store.events.create(user_id, copy))
    hub.publish(user_id, {"type": "event:created", "event": created.model_dump(mode="json")})
    return created
