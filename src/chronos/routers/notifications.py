from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from ..auth import get_current_user_id
from ..errors import NotFound
from ..repositories import Store, get_store
from ..schemas import NotificationOut
from ..utils import pagination_envelope

router = APIRouter(
    prefix="/api/v1/notifications",
    tags=["notifications"],
)


class NotificationPage(BaseModel):
    """
    Envelope for paginated notifications, newest first.
    """
    items: List[NotificationOut] = Field(..., description="Notifications on this page")
    total: int = Field(..., description="Total number of notifications matching the query")
    limit: int
    offset: int
    unread_count: int = Field(..., description="Unread notifications of the user, ignoring filters")


class Message(BaseModel):
    message: str
    count: int = 0


def _get_store(store: Store = Depends(get_store)) -> Store:
    return store


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=NotificationPage,
    summary="List Notifications",
    description="List the caller's notifications, newest first, with the current unread count.",
)
def list_notifications(
    unread_only: bool = Query(False, description="Only unread notifications"),
    limit: int = Query(50, ge=0, le=500),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
) -> NotificationPage:
    items, total = store.notifications.list(user_id, unread_only=unread_only, limit=limit, offset=offset)
    envelope = pagination_envelope(
        items=[NotificationOut(**n) for n in items],  # type: ignore[arg-type]
        total=total,
        limit=limit,
        offset=offset,
        unread_count=store.notifications.unread_count(user_id),
    )
    return NotificationPage(**envelope)


# PUBLIC_INTERFACE
@router.put(
    "/read-all",
    response_model=Message,
    summary="Mark all read",
)
def mark_all_read(
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
) -> Message:
    changed = store.notifications.mark_all_read(user_id)
    return Message(message="All notifications marked as read", count=changed)


# PUBLIC_INTERFACE
@router.put(
    "/{notification_id}/read",
    response_model=NotificationOut,
    summary="Mark notification read",
    responses={404: {"description": "Notification not found"}},
)
def mark_read(
    notification_id: int,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
) -> NotificationOut:
    item = store.notifications.mark_read(user_id, notification_id)
    if not item:
        raise NotFound("Notification not found")
    return NotificationOut(**item)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.delete(
    "/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete notification",
    responses={404: {"description": "Notification not found"}},
)
def delete_notification(
    notification_id: int,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
) -> None:
    if not store.notifications.delete(user_id, notification_id):
        raise NotFound("Notification not found")
    return None


# PUBLIC_INTERFACE
@router.delete(
    "/",
    response_model=Message,
    summary="Delete all notifications",
)
def delete_all_notifications(
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
) -> Message:
    removed = store.notifications.delete_all(user_id)
    return Message(message="All notifications deleted", count=removed)
