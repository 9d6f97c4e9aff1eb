from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from ..auth import get_current_user_id
from ..errors import InvalidInput, NotFound
from ..models import CalendarEntity
from ..realtime import ConnectionHub, get_hub
from ..repositories import Store, get_store
from ..schemas import CalendarCreate, CalendarDeleted, CalendarOut, CalendarUpdate

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/calendars",
    tags=["calendars"],
)


class CalendarList(BaseModel):
    items: List[CalendarOut] = Field(..., description="Calendars, default first")


def _get_store(store: Store = Depends(get_store)) -> Store:
    """
    Dependency wrapper for the store to keep signatures clean.
    """
    return store


# PUBLIC_INTERFACE
def resolve_calendar(store: Store, user_id: str, calendar_id: Optional[int]) -> CalendarEntity:
    """
    Return the calendar an event should be filed under.
    - None: the caller's default calendar, created on first use
    - otherwise the caller's own calendar with that id; NotFound when there is none
    """
    if calendar_id is None:
        return store.calendars.get_or_create_default(user_id)
    calendar = store.calendars.get(user_id, calendar_id)
    if calendar is None:
        raise NotFound("Calendar not found")
    return calendar


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=CalendarList,
    summary="List Calendars",
    description="List the caller's calendars. The default calendar is created on first use.",
)
def list_calendars(
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
) -> CalendarList:
    store.calendars.get_or_create_default(user_id)
    return CalendarList(items=[CalendarOut(**c) for c in store.calendars.list(user_id)])


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=CalendarOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Calendar",
    responses={201: {"description": "Calendar created"}, 422: {"description": "Validation error"}},
)
def create_calendar(
    payload: CalendarCreate,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
) -> CalendarOut:
    return CalendarOut(**store.calendars.create(user_id, payload))


# PUBLIC_INTERFACE
@router.get(
    "/{calendar_id}",
    response_model=CalendarOut,
    summary="Get Calendar",
    responses={404: {"description": "Calendar not found"}},
)
def get_calendar(
    calendar_id: int,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
) -> CalendarOut:
    return CalendarOut(**resolve_calendar(store, user_id, calendar_id))


# PUBLIC_INTERFACE
@router.put(
    "/{calendar_id}",
    response_model=CalendarOut,
    summary="Update Calendar",
    description="Update name, description, color, type or visibility; omitted fields are kept.",
    responses={404: {"description": "Calendar not found"}},
)
def update_calendar(
    calendar_id: int,
    payload: CalendarUpdate,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
) -> CalendarOut:
    updated = store.calendars.update(user_id, calendar_id, payload)
    if not updated:
        raise NotFound("Calendar not found")
    return CalendarOut(**updated)


# PUBLIC_INTERFACE
@router.put(
    "/{calendar_id}/visibility",
    response_model=CalendarOut,
    summary="Toggle Calendar Visibility",
    responses={404: {"description": "Calendar not found"}},
)
def toggle_visibility(
    calendar_id: int,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
) -> CalendarOut:
    current = resolve_calendar(store, user_id, calendar_id)
    updated = store.calendars.update(
        user_id, calendar_id, CalendarUpdate(is_visible=not current["is_visible"])
    )
    if not updated:
        raise NotFound("Calendar not found")
    return CalendarOut(**updated)


# PUBLIC_INTERFACE
@router.delete(
    "/{calendar_id}",
    response_model=CalendarDeleted,
    summary="Delete Calendar",
    description="Delete a calendar together with all of its events. The default calendar cannot be deleted.",
    responses={
        400: {"description": "Default calendar"},
        404: {"description": "Calendar not found"},
    },
)
def delete_calendar(
    calendar_id: int,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
    hub: ConnectionHub = Depends(get_hub),
) -> CalendarDeleted:
    calendar = resolve_calendar(store, user_id, calendar_id)
    if calendar["is_default"]:
        raise InvalidInput("Cannot delete default calendar")
    removed = store.events.delete_for_calendar(user_id, calendar_id)
    store.calendars.delete(user_id, calendar_id)
    logger.info("Deleted calendar %s of user %s with %d event(s)", calendar_id, user_id, removed)
    hub.publish(user_id, {"type": "calendar:deleted", "id": calendar_id, "deleted_events": removed})
    return CalendarDeleted(message="Calendar deleted successfully", deleted_events=removed)
