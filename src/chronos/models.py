from __future__ import annotations

from datetime import datetime
from typing import List, Optional, TypedDict


# PUBLIC_INTERFACE
class EventReminder(TypedDict):
    """
    One reminder attached to an event.

    Fields:
    - offset_minutes: minutes before the event start at which the reminder fires
    - channel: 'notification' or 'email'
    - sent: flips False -> True once the reminder produced a notification; never reverts
    """

    offset_minutes: int
    channel: str
    sent: bool


# PUBLIC_INTERFACE
class CalendarEntity(TypedDict):
    """
    A named calendar owned by a user. Every user has exactly one default calendar,
    created on first use; it cannot be deleted.
    """

    id: int
    user_id: str
    name: str
    description: Optional[str]
    color: str
    type: str
    is_default: bool
    is_visible: bool
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class EventEntity(TypedDict):
    """
    A calendar event. `end` is always strictly after `start`; both are aware UTC datetimes.
    """

    id: int
    user_id: str
    calendar_id: int
    title: str
    description: Optional[str]
    location: Optional[str]
    start: datetime
    end: datetime
    all_day: bool
    reminders: List[EventReminder]
    created_at: datetime
    updated_at: datetime


class TodoReminder(TypedDict):
    enabled: bool
    time: Optional[datetime]
    sent: bool


# PUBLIC_INTERFACE
class TodoEntity(TypedDict):
    """
    A todo item owned by a user.

    Fields:
    - status: one of pending, in_progress, completed, cancelled
    - priority: one of low, medium, high, urgent
    - list: free-form list name ('inbox' by default)
    - due_date: optional aware UTC due instant
    - reminder: single reminder; fires when due_date enters the lookahead window
    - completed_at: set when status becomes completed, cleared when it leaves it
    - linked_event_id: the event this todo was scheduled into, if any
    """

    id: int
    user_id: str
    title: str
    description: Optional[str]
    status: str
    priority: str
    list: str
    due_date: Optional[datetime]
    reminder: TodoReminder
    completed_at: Optional[datetime]
    linked_event_id: Optional[int]
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class NotificationEntity(TypedDict):
    """A message shown to a user. Created by the reminder sweep; `read` flips on acknowledgment."""

    id: int
    user_id: str
    type: str
    title: str
    message: str
    read: bool
    action_url: Optional[str]
    related_event_id: Optional[int]
    related_todo_id: Optional[int]
    created_at: datetime


class PreferencesEntity(TypedDict):
    user_id: str
    working_hours_start: str
    working_hours_end: str
    timezone: Optional[str]
