from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from threading import RLock
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import InvalidInput
from .models import (
    CalendarEntity,
    EventEntity,
    EventReminder,
    NotificationEntity,
    PreferencesEntity,
    TodoEntity,
    TodoReminder,
)
from .schemas import (
    CalendarCreate,
    CalendarUpdate,
    EventCreate,
    EventUpdate,
    ReminderIn,
    TodoCreate,
    TodoReminderIn,
    TodoUpdate,
)
from .settings import get_settings
from .utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_EVENT_REMINDERS = [ReminderIn(offset_minutes=15)]
DEFAULT_CALENDAR_NAME = "My Calendar"
DEFAULT_CALENDAR_COLOR = "#3B82F6"


@dataclass(frozen=True)
class ListQuery:
    """
    Query parameters for listing todos.
    """
    limit: int = 50
    offset: int = 0
    status: Optional[str] = None
    priority: Optional[str] = None
    list_name: Optional[str] = None
    search: Optional[str] = None
    sort: str = "-created_at"  # allowed: created_at, -created_at, updated_at, -updated_at, due_date, -due_date


SORT_FIELDS = {"created_at", "updated_at", "due_date"}


def build_reminders(reminders: Optional[Iterable[ReminderIn]]) -> List[EventReminder]:
    """Turn requested reminder specs into fresh, unsent reminder records."""
    specs = DEFAULT_EVENT_REMINDERS if reminders is None else reminders
    return [{"offset_minutes": r.offset_minutes, "channel": r.channel, "sent": False} for r in specs]


def calendar_id_of(data: EventCreate) -> int:
    # Routers resolve a missing calendar to the default one before reaching storage
    if data.calendar_id is None:
        raise InvalidInput("calendar_id is required")
    return data.calendar_id


def build_todo_reminder(reminder: Optional[TodoReminderIn]) -> TodoReminder:
    if reminder is None:
        return {"enabled": False, "time": None, "sent": False}
    return {"enabled": reminder.enabled, "time": reminder.time, "sent": False}


def apply_event_changes(current: EventEntity, data: EventUpdate, now: datetime) -> EventEntity:
    """
    Merge an EventUpdate into a copy of `current`.

    Reminders are re-armed (sent=False) when the start moves or a new reminder list is
    supplied. Raises InvalidInput when the merged interval would not have end after start.
    """
    fields = data.model_fields_set
    updated: EventEntity = current.copy()  # type: ignore[assignment]
    for name in ("title", "calendar_id", "description", "location", "start", "end", "all_day"):
        if name in fields:
            value = getattr(data, name)
            if value is None and name in {"title", "calendar_id", "start", "end", "all_day"}:
                continue
            updated[name] = value  # type: ignore[literal-required]

    if updated["end"] <= updated["start"]:
        raise InvalidInput("end must be after start")

    if "reminders" in fields and data.reminders is not None:
        updated["reminders"] = build_reminders(data.reminders)
    elif "start" in fields and data.start is not None and data.start != current["start"]:
        updated["reminders"] = [{**r, "sent": False} for r in current["reminders"]]  # type: ignore[misc]
    else:
        updated["reminders"] = [dict(r) for r in current["reminders"]]  # type: ignore[misc]
    updated["updated_at"] = now
    return updated


def apply_todo_changes(current: TodoEntity, data: TodoUpdate, now: datetime) -> TodoEntity:
    """
    Merge a TodoUpdate into a copy of `current`, keeping completed_at in step with status.

    A new reminder payload or a moved due date re-arms the reminder.
    """
    fields = data.model_fields_set
    updated: TodoEntity = current.copy()  # type: ignore[assignment]
    for name in ("title", "status", "priority", "list"):
        value = getattr(data, name)
        if name in fields and value is not None:
            updated[name] = value  # type: ignore[literal-required]
    if "description" in fields:
        updated["description"] = data.description
    if "due_date" in fields:
        updated["due_date"] = data.due_date

    if "reminder" in fields and data.reminder is not None:
        updated["reminder"] = build_todo_reminder(data.reminder)
    elif updated["due_date"] != current["due_date"]:
        updated["reminder"] = {**current["reminder"], "sent": False}  # type: ignore[typeddict-item]
    else:
        updated["reminder"] = dict(current["reminder"])  # type: ignore[typeddict-item]

    if updated["status"] == "completed" and current["status"] != "completed":
        updated["completed_at"] = now
    elif updated["status"] != "completed":
        updated["completed_at"] = None
    updated["updated_at"] = now
    return updated


def apply_calendar_changes(current: CalendarEntity, data: CalendarUpdate, now: datetime) -> CalendarEntity:
    updated: CalendarEntity = current.copy()  # type: ignore[assignment]
    for name in ("name", "color", "type", "is_visible"):
        value = getattr(data, name)
        if name in data.model_fields_set and value is not None:
            updated[name] = value  # type: ignore[literal-required]
    if "description" in data.model_fields_set:
        updated["description"] = data.description
    updated["updated_at"] = now
    return updated


def reminder_matches(
    event: EventEntity, position: int, offset_minutes: Optional[int], start: Optional[datetime]
) -> bool:
    """
    True when reminder `position` of `event` is still the one a sweep read: same offset
    and the event has not moved. A None expectation is not checked.
    """
    if not (0 <= position < len(event["reminders"])):
        return False
    if offset_minutes is not None and event["reminders"][position]["offset_minutes"] != offset_minutes:
        return False
    if start is not None and event["start"] != start:
        return False
    return True


def _copy_event(event: EventEntity) -> EventEntity:
    copied: EventEntity = event.copy()  # type: ignore[assignment]
    copied["reminders"] = [dict(r) for r in event["reminders"]]  # type: ignore[misc]
    return copied


def _copy_todo(todo: TodoEntity) -> TodoEntity:
    copied: TodoEntity = todo.copy()  # type: ignore[assignment]
    copied["reminder"] = dict(todo["reminder"])  # type: ignore[typeddict-item]
    return copied


# PUBLIC_INTERFACE
class EventRepository(ABC):
    """Abstract repository contract for calendar event storage backends."""

    @abstractmethod
    def create(self, user_id: str, data: EventCreate) -> EventEntity:
        """Create and return a new EventEntity."""

    @abstractmethod
    def get(self, user_id: str, event_id: int) -> Optional[EventEntity]:
        """Return the user's event by id, or None if not found."""

    @abstractmethod
    def update(self, user_id: str, event_id: int, data: EventUpdate) -> Optional[EventEntity]:
        """Apply a partial update. Return the updated entity or None if not found."""

    @abstractmethod
    def delete(self, user_id: str, event_id: int) -> bool:
        """Delete an event. Return True if deleted, False if not found."""

    @abstractmethod
    def delete_for_calendar(self, user_id: str, calendar_id: int) -> int:
        """Delete every event of a calendar and return how many were removed."""

    @abstractmethod
    def list_range(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        calendar_id: Optional[int] = None,
    ) -> List[EventEntity]:
        """
        Return the user's events sorted by start. When both bounds are given only events
        overlapping [start, end] are returned.
        """

    @abstractmethod
    def find_overlapping(self, user_id: str, start: datetime, end: datetime) -> List[EventEntity]:
        """
        Return events with `event.start < end and event.end > start`, ordered by (start, id).
        """

    @abstractmethod
    def find_with_unsent_reminders(self, now: datetime) -> List[EventEntity]:
        """Return events (any user) starting after `now` that still carry an unsent reminder."""

    @abstractmethod
    def mark_reminder_sent(
        self,
        event_id: int,
        position: int,
        offset_minutes: Optional[int] = None,
        start: Optional[datetime] = None,
    ) -> bool:
        """
        Flip reminder `position` of the event to sent, only if it is still unsent.
        When `offset_minutes` and `start` are given the flip also requires the reminder
        to carry that offset and the event to still start at `start`, so a reminder list
        replaced or an event moved after it was read is left armed.
        Return True when this call performed the flip.
        """


# PUBLIC_INTERFACE
class CalendarRepository(ABC):
    """Abstract repository contract for calendar storage backends."""

    @abstractmethod
    def create(self, user_id: str, data: CalendarCreate) -> CalendarEntity:
        """Create and return a new, non-default CalendarEntity."""

    @abstractmethod
    def get(self, user_id: str, calendar_id: int) -> Optional[CalendarEntity]:
        """Return the user's calendar by id, or None if not found."""

    @abstractmethod
    def list(self, user_id: str) -> List[CalendarEntity]:
        """Return the user's calendars, default first, then by id."""

    @abstractmethod
    def update(self, user_id: str, calendar_id: int, data: CalendarUpdate) -> Optional[CalendarEntity]:
        """Apply a partial update. Return the updated entity or None if not found."""

    @abstractmethod
    def delete(self, user_id: str, calendar_id: int) -> bool:
        """Delete a calendar row. Return True if deleted, False if not found."""

    @abstractmethod
    def get_or_create_default(self, user_id: str) -> CalendarEntity:
        """Return the user's default calendar, creating it on first use."""


# PUBLIC_INTERFACE
class TodoRepository(ABC):
    """Abstract repository contract for todo storage backends."""

    @abstractmethod
    def create(self, user_id: str, data: TodoCreate) -> TodoEntity:
        """Create and return a new TodoEntity."""

    @abstractmethod
    def get(self, user_id: str, todo_id: int) -> Optional[TodoEntity]:
        """Return a TodoEntity by id, or None if not found."""

    @abstractmethod
    def update(self, user_id: str, todo_id: int, data: TodoUpdate) -> Optional[TodoEntity]:
        """Update fields of an existing TodoEntity. Return updated entity or None if not found."""

    @abstractmethod
    def delete(self, user_id: str, todo_id: int) -> bool:
        """Delete a TodoEntity by id. Return True if deleted, False if not found."""

    @abstractmethod
    def list(self, user_id: str, query: Optional[ListQuery] = None) -> Tuple[List[TodoEntity], int]:
        """
        Return a slice of the user's TodoEntities and total count matching filters.
        - Supports limit/offset
        - Filter by status, priority and list
        - Substring search across title and description (case-insensitive)
        - Sorting by created_at/updated_at/due_date (asc/desc)
        """

    @abstractmethod
    def find_due_for_reminder(self, now: datetime, until: datetime) -> List[TodoEntity]:
        """
        Return todos (any user) not completed, due within [now, until], with an enabled
        reminder that has not been sent.
        """

    @abstractmethod
    def mark_reminder_sent(self, todo_id: int) -> bool:
        """Flip the todo's reminder to sent if still unsent. Return True when this call flipped it."""

    @abstractmethod
    def distinct_lists(self, user_id: str) -> List[str]:
        """Return the names of the lists the user's todos belong to, sorted."""

    @abstractmethod
    def link_event(self, user_id: str, todo_id: int, event_id: int) -> Optional[TodoEntity]:
        """Record the event a todo was scheduled into. Return the todo or None if not found."""


# PUBLIC_INTERFACE
class NotificationRepository(ABC):
    """Abstract repository contract for notification storage backends."""

    @abstractmethod
    def create(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        related_event_id: Optional[int] = None,
        related_todo_id: Optional[int] = None,
    ) -> NotificationEntity:
        """Create and return an unread notification."""

    @abstractmethod
    def list(
        self, user_id: str, unread_only: bool = False, limit: int = 50, offset: int = 0
    ) -> Tuple[List[NotificationEntity], int]:
        """Return newest-first notifications of the user and the total matching count."""

    @abstractmethod
    def unread_count(self, user_id: str) -> int:
        """Return the number of unread notifications for the user."""

    @abstractmethod
    def mark_read(self, user_id: str, notification_id: int) -> Optional[NotificationEntity]:
        """Mark one notification read. Return it, or None if not found."""

    @abstractmethod
    def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification read and return how many changed."""

    @abstractmethod
    def delete(self, user_id: str, notification_id: int) -> bool:
        """Delete one notification."""

    @abstractmethod
    def delete_all(self, user_id: str) -> int:
        """Delete all of the user's notifications and return how many were removed."""

    @abstractmethod
    def purge_older_than(self, cutoff: datetime) -> int:
        """Delete notifications created before `cutoff` (any user)."""


# PUBLIC_INTERFACE
class PreferencesRepository(ABC):
    """Abstract repository contract for per-user scheduling preferences."""

    @abstractmethod
    def get(self, user_id: str) -> Optional[PreferencesEntity]:
        """Return stored preferences or None when the user has none."""

    @abstractmethod
    def upsert(self, user_id: str, start: str, end: str, timezone: Optional[str]) -> PreferencesEntity:
        """Create or replace the user's working hours."""


class _IdAllocator:
    def __init__(self) -> None:
        self._next_id = 1

    def next(self) -> int:
        i = self._next_id
        self._next_id += 1
        return i


class InMemoryEventRepository(EventRepository):
    """
    Thread-safe in-memory event repository suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[int, EventEntity] = {}
        self._ids = _IdAllocator()

    def create(self, user_id: str, data: EventCreate) -> EventEntity:
        now = utcnow()
        with self._lock:
            entity: EventEntity = {
                "id": self._ids.next(),
                "user_id": user_id,
                "calendar_id": calendar_id_of(data),
                "title": data.title,
                "description": data.description,
                "location": data.location,
                "start": data.start,
                "end": data.end,
                "all_day": data.all_day,
                "reminders": build_reminders(data.reminders),
                "created_at": now,
                "updated_at": now,
            }
            self._items[entity["id"]] = entity
            return _copy_event(entity)

    def get(self, user_id: str, event_id: int) -> Optional[EventEntity]:
        with self._lock:
            item = self._items.get(event_id)
            if item is None or item["user_id"] != user_id:
                return None
            return _copy_event(item)

    def update(self, user_id: str, event_id: int, data: EventUpdate) -> Optional[EventEntity]:
        with self._lock:
            existing = self._items.get(event_id)
            if existing is None or existing["user_id"] != user_id:
                return None
            updated = apply_event_changes(existing, data, utcnow())
            self._items[event_id] = updated
            return _copy_event(updated)

    def delete(self, user_id: str, event_id: int) -> bool:
        with self._lock:
            existing = self._items.get(event_id)
            if existing is None or existing["user_id"] != user_id:
                return False
            del self._items[event_id]
            return True

    def delete_for_calendar(self, user_id: str, calendar_id: int) -> int:
        with self._lock:
            doomed = [
                i for i, e in self._items.items()
                if e["user_id"] == user_id and e["calendar_id"] == calendar_id
            ]
            for i in doomed:
                del self._items[i]
            return len(doomed)

    def list_range(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        calendar_id: Optional[int] = None,
    ) -> List[EventEntity]:
        with self._lock:
            items = [e for e in self._items.values() if e["user_id"] == user_id]
            if calendar_id is not None:
                items = [e for e in items if e["calendar_id"] == calendar_id]
            if start is not None and end is not None:
                items = [e for e in items if e["start"] <= end and e["end"] >= start]
            items.sort(key=lambda e: (e["start"], e["id"]))
            return [_copy_event(e) for e in items]

    def find_overlapping(self, user_id: str, start: datetime, end: datetime) -> List[EventEntity]:
        with self._lock:
            items = [
                e for e in self._items.values()
                if e["user_id"] == user_id and e["start"] < end and e["end"] > start
            ]
            items.sort(key=lambda e: (e["start"], e["id"]))
            return [_copy_event(e) for e in items]

    def find_with_unsent_reminders(self, now: datetime) -> List[EventEntity]:
        with self._lock:
            items = [
                e for e in self._items.values()
                if e["start"] > now and any(not r["sent"] for r in e["reminders"])
            ]
            items.sort(key=lambda e: (e["start"], e["id"]))
            return [_copy_event(e) for e in items]

    def mark_reminder_sent(
        self,
        event_id: int,
        position: int,
        offset_minutes: Optional[int] = None,
        start: Optional[datetime] = None,
    ) -> bool:
        with self._lock:
            event = self._items.get(event_id)
            if event is None or not reminder_matches(event, position, offset_minutes, start):
                return False
            reminder = event["reminders"][position]
            if reminder["sent"]:
                return False
            reminder["sent"] = True
            return True


class InMemoryCalendarRepository(CalendarRepository):
    """
    Thread-safe in-memory calendar repository suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[int, CalendarEntity] = {}
        self._ids = _IdAllocator()

    def _insert(
        self,
        user_id: str,
        name: str,
        description: Optional[str],
        color: str,
        type: str,
        is_default: bool,
    ) -> CalendarEntity:
        now = utcnow()
        entity: CalendarEntity = {
            "id": self._ids.next(),
            "user_id": user_id,
            "name": name,
            "description": description,
            "color": color,
            "type": type,
            "is_default": is_default,
            "is_visible": True,
            "created_at": now,
            "updated_at": now,
        }
        self._items[entity["id"]] = entity
        return entity

    def create(self, user_id: str, data: CalendarCreate) -> CalendarEntity:
        with self._lock:
            entity = self._insert(user_id, data.name, data.description, data.color, data.type, False)
            return entity.copy()  # type: ignore[return-value]

    def get(self, user_id: str, calendar_id: int) -> Optional[CalendarEntity]:
        with self._lock:
            item = self._items.get(calendar_id)
            if item is None or item["user_id"] != user_id:
                return None
            return item.copy()  # type: ignore[return-value]

    def list(self, user_id: str) -> List[CalendarEntity]:
        with self._lock:
            items = [c for c in self._items.values() if c["user_id"] == user_id]
            items.sort(key=lambda c: (not c["is_default"], c["id"]))
            return [c.copy() for c in items]  # type: ignore[misc]

    def update(self, user_id: str, calendar_id: int, data: CalendarUpdate) -> Optional[CalendarEntity]:
        with self._lock:
            existing = self._items.get(calendar_id)
            if existing is None or existing["user_id"] != user_id:
                return None
            updated = apply_calendar_changes(existing, data, utcnow())
            self._items[calendar_id] = updated
            return updated.copy()  # type: ignore[return-value]

    def delete(self, user_id: str, calendar_id: int) -> bool:
        with self._lock:
            existing = self._items.get(calendar_id)
            if existing is None or existing["user_id"] != user_id:
                return False
            del self._items[calendar_id]
            return True

    def get_or_create_default(self, user_id: str) -> CalendarEntity:
        with self._lock:
            for c in self._items.values():
                if c["user_id"] == user_id and c["is_default"]:
                    return c.copy()  # type: ignore[return-value]
            entity = self._insert(user_id, DEFAULT_CALENDAR_NAME, None, DEFAULT_CALENDAR_COLOR, "personal", True)
            logger.info("Created default calendar %s for user %s", entity["id"], user_id)
            return entity.copy()  # type: ignore[return-value]


class InMemoryTodoRepository(TodoRepository):
    """
    Thread-safe in-memory todo repository suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[int, TodoEntity] = {}
        self._ids = _IdAllocator()

    def create(self, user_id: str, data: TodoCreate) -> TodoEntity:
        now = utcnow()
        with self._lock:
            entity: TodoEntity = {
                "id": self._ids.next(),
                "user_id": user_id,
                "title": data.title,
                "description": data.description,
                "status": data.status,
                "priority": data.priority,
                "list": data.list,
                "due_date": data.due_date,
                "reminder": build_todo_reminder(data.reminder),
                "completed_at": now if data.status == "completed" else None,
                "linked_event_id": None,
                "created_at": now,
                "updated_at": now,
            }
            self._items[entity["id"]] = entity
            return _copy_todo(entity)

    def get(self, user_id: str, todo_id: int) -> Optional[TodoEntity]:
        with self._lock:
            item = self._items.get(todo_id)
            if item is None or item["user_id"] != user_id:
                return None
            return _copy_todo(item)

    def update(self, user_id: str, todo_id: int, data: TodoUpdate) -> Optional[TodoEntity]:
        with self._lock:
            existing = self._items.get(todo_id)
            if existing is None or existing["user_id"] != user_id:
                return None
            updated = apply_todo_changes(existing, data, utcnow())
            self._items[todo_id] = updated
            return _copy_todo(updated)

    def delete(self, user_id: str, todo_id: int) -> bool:
        with self._lock:
            existing = self._items.get(todo_id)
            if existing is None or existing["user_id"] != user_id:
                return False
            del self._items[todo_id]
            return True

    def list(self, user_id: str, query: Optional[ListQuery] = None) -> Tuple[List[TodoEntity], int]:
        q = query or ListQuery()
        with self._lock:
            items: List[TodoEntity] = [t for t in self._items.values() if t["user_id"] == user_id]

            if q.status is not None:
                items = [t for t in items if t["status"] == q.status]
            if q.priority is not None:
                items = [t for t in items if t["priority"] == q.priority]
            if q.list_name is not None:
                items = [t for t in items if t["list"] == q.list_name]

            if q.search:
                s = q.search.lower()

                def matches(t: TodoEntity) -> bool:
                    title_ok = s in (t["title"] or "").lower()
                    desc_ok = s in (t["description"] or "").lower() if t["description"] else False
                    return title_ok or desc_ok

                items = [t for t in items if matches(t)]

            total = len(items)

            sort_key = q.sort.strip().lower() if q.sort else "-created_at"
            reverse = sort_key.startswith("-")
            field = sort_key[1:] if reverse else sort_key
            if field not in SORT_FIELDS:
                field = "created_at"

            def key(t: TodoEntity) -> Any:
                # Todos without a due date sort after dated ones in ascending order
                value = t[field]  # type: ignore[literal-required]
                return (value is None, value or datetime.min, t["id"])

            items_sorted = sorted(items, key=key, reverse=reverse)

            start = max(q.offset, 0)
            end = start + max(q.limit, 0)
            return [_copy_todo(t) for t in items_sorted[start:end]], total

    def find_due_for_reminder(self, now: datetime, until: datetime) -> List[TodoEntity]:
        with self._lock:
            items = [
                t for t in self._items.values()
                if t["status"] != "completed"
                and t["due_date"] is not None
                and now <= t["due_date"] <= until
                and t["reminder"]["enabled"]
                and not t["reminder"]["sent"]
            ]
            items.sort(key=lambda t: (t["due_date"], t["id"]))
            return [_copy_todo(t) for t in items]

    def mark_reminder_sent(self, todo_id: int) -> bool:
        with self._lock:
            todo = self._items.get(todo_id)
            if todo is None or todo["reminder"]["sent"]:
                return False
            todo["reminder"]["sent"] = True
            return True

    def distinct_lists(self, user_id: str) -> List[str]:
        with self._lock:
            return sorted({t["list"] for t in self._items.values() if t["user_id"] == user_id})

    def link_event(self, user_id: str, todo_id: int, event_id: int) -> Optional[TodoEntity]:
        with self._lock:
            existing = self._items.get(todo_id)
            if existing is None or existing["user_id"] != user_id:
                return None
            existing["linked_event_id"] = event_id
            existing["updated_at"] = utcnow()
            return _copy_todo(existing)


class InMemoryNotificationRepository(NotificationRepository):
    """Thread-safe in-memory notification repository."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[int, NotificationEntity] = {}
        self._ids = _IdAllocator()

    def create(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        related_event_id: Optional[int] = None,
        related_todo_id: Optional[int] = None,
    ) -> NotificationEntity:
        with self._lock:
            entity: NotificationEntity = {
                "id": self._ids.next(),
                "user_id": user_id,
                "type": type,
                "title": title,
                "message": message,
                "read": False,
                "action_url": action_url,
                "related_event_id": related_event_id,
                "related_todo_id": related_todo_id,
                "created_at": utcnow(),
            }
            self._items[entity["id"]] = entity
            return entity.copy()  # type: ignore[return-value]

    def _owned(self, user_id: str) -> List[NotificationEntity]:
        return [n for n in self._items.values() if n["user_id"] == user_id]

    def list(
        self, user_id: str, unread_only: bool = False, limit: int = 50, offset: int = 0
    ) -> Tuple[List[NotificationEntity], int]:
        with self._lock:
            items = self._owned(user_id)
            if unread_only:
                items = [n for n in items if not n["read"]]
            items.sort(key=lambda n: (n["created_at"], n["id"]), reverse=True)
            start = max(offset, 0)
            page = items[start:start + max(limit, 0)]
            return [n.copy() for n in page], len(items)  # type: ignore[misc]

    def unread_count(self, user_id: str) -> int:
        with self._lock:
            return sum(1 for n in self._owned(user_id) if not n["read"])

    def mark_read(self, user_id: str, notification_id: int) -> Optional[NotificationEntity]:
        with self._lock:
            item = self._items.get(notification_id)
            if item is None or item["user_id"] != user_id:
                return None
            item["read"] = True
            return item.copy()  # type: ignore[return-value]

    def mark_all_read(self, user_id: str) -> int:
        with self._lock:
            changed = 0
            for n in self._owned(user_id):
                if not n["read"]:
                    n["read"] = True
                    changed += 1
            return changed

    def delete(self, user_id: str, notification_id: int) -> bool:
        with self._lock:
            item = self._items.get(notification_id)
            if item is None or item["user_id"] != user_id:
                return False
            del self._items[notification_id]
            return True

    def delete_all(self, user_id: str) -> int:
        with self._lock:
            doomed = [n["id"] for n in self._owned(user_id)]
            for i in doomed:
                del self._items[i]
            return len(doomed)

    def purge_older_than(self, cutoff: datetime) -> int:
        with self._lock:
            doomed = [i for i, n in self._items.items() if n["created_at"] < cutoff]
            for i in doomed:
                del self._items[i]
            return len(doomed)


class InMemoryPreferencesRepository(PreferencesRepository):
    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[str, PreferencesEntity] = {}

    def get(self, user_id: str) -> Optional[PreferencesEntity]:
        with self._lock:
            item = self._items.get(user_id)
            return None if item is None else item.copy()  # type: ignore[return-value]

    def upsert(self, user_id: str, start: str, end: str, timezone: Optional[str]) -> PreferencesEntity:
        entity: PreferencesEntity = {
            "user_id": user_id,
            "working_hours_start": start,
            "working_hours_end": end,
            "timezone": timezone,
        }
        with self._lock:
            self._items[user_id] = entity
        return entity.copy()  # type: ignore[return-value]


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Store:
    """Bundle of the repositories one backend provides."""

    backend: str
    calendars: CalendarRepository
    events: EventRepository
    todos: TodoRepository
    notifications: NotificationRepository
    preferences: PreferencesRepository


# PUBLIC_INTERFACE
def create_memory_store() -> Store:
    """Return a fresh, empty in-memory store."""
    return Store(
        backend="memory",
        calendars=InMemoryCalendarRepository(),
        events=InMemoryEventRepository(),
        todos=InMemoryTodoRepository(),
        notifications=InMemoryNotificationRepository(),
        preferences=InMemoryPreferencesRepository(),
    )


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_store() -> Store:
    """
    Return the process-wide store configured by settings.
    - memory: in-memory repositories
    - sqlite: SQLite repositories sharing one database file
    """
    settings = get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import create_sqlite_store

        logger.info("Using SQLite store at %s", settings.sqlite_db_path)
        return create_sqlite_store(settings.sqlite_db_path)
    logger.info("Using in-memory store")
    return create_memory_store()


def retention_cutoff(now: datetime, days: int) -> datetime:
    return now - timedelta(days=days)
