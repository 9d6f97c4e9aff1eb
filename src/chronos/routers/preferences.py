from __future__ import annotations

from fastapi import APIRouter, Depends

from ..auth import get_current_user_id
from ..free_slots import WorkingHours, working_hours_for, working_window
from ..repositories import Store, get_store
from ..schemas import WorkingHoursIn, WorkingHoursOut
from ..settings import Settings, get_settings
from ..utils import utcnow

router = APIRouter(
    prefix="/api/v1/preferences",
    tags=["preferences"],
)


def _get_store(store: Store = Depends(get_store)) -> Store:
    return store


# PUBLIC_INTERFACE
@router.get(
    "/working-hours",
    response_model=WorkingHoursOut,
    summary="Get working hours",
    description="The caller's working window, or the server default when none is stored.",
)
def get_working_hours(
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
    settings: Settings = Depends(get_settings),
) -> WorkingHoursOut:
    hours = working_hours_for(user_id, store.preferences, settings)
    return WorkingHoursOut(start=hours.start, end=hours.end, timezone=hours.timezone)


# PUBLIC_INTERFACE
@router.put(
    "/working-hours",
    response_model=WorkingHoursOut,
    summary="Set working hours",
    responses={400: {"description": "Malformed times, unknown timezone or end not after start"}},
)
def put_working_hours(
    payload: WorkingHoursIn,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
    settings: Settings = Depends(get_settings),
) -> WorkingHoursOut:
    """
    Store the caller's working window after checking it yields a usable day.
    """
    timezone = payload.timezone or settings.default_timezone
    hours = WorkingHours(start=payload.start.strip(), end=payload.end.strip(), timezone=timezone)
    working_window(utcnow().date(), hours)
    saved = store.preferences.upsert(user_id, hours.start, hours.end, payload.timezone)
    return WorkingHoursOut(
        start=saved["working_hours_start"],
        end=saved["working_hours_end"],
        timezone=saved["timezone"] or settings.default_timezone,
    )
