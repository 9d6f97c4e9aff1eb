from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .utils import as_utc

# Shared type for incoming instants which can be a date, datetime, or ISO8601 string
InstantInput = Union[date, datetime, str]

TodoStatus = Literal["pending", "in_progress", "completed", "cancelled"]
TodoPriority = Literal["low", "medium", "high", "urgent"]
ReminderChannel = Literal["notification", "email"]
CalendarType = Literal["personal", "work", "family", "holiday", "birthday", "other"]
NotificationType = Literal[
    "event_reminder",
    "todo_reminder",
    "event_update",
    "todo_due",
    "focus_complete",
    "achievement",
    "system",
]


def _parse_instant(value: Optional[InstantInput], field: str = "value") -> Optional[datetime]:
    """
    Internal helper to normalize instant input into an aware UTC datetime.
    - If value is a string, attempt to parse via datetime.fromisoformat; if time is missing, set to 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - Naive datetimes are read as UTC; aware ones are converted to UTC.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return as_utc(value)

    if isinstance(value, date):
        return as_utc(datetime(value.year, value.month, value.day, 0, 0, 0))

    if isinstance(value, str):
        s = value.strip()
        # fromisoformat on older interpreters rejects the 'Z' suffix
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return as_utc(datetime.fromisoformat(s))
        except ValueError:
            try:
                d = date.fromisoformat(s)
                return as_utc(datetime(d.year, d.month, d.day, 0, 0, 0))
            except ValueError as e:
                raise ValueError(
                    f"Invalid {field} format. Use ISO8601 date or datetime string "
                    "(e.g., '2025-01-31' or '2025-01-31T13:45:00Z')."
                ) from e

    raise ValueError(f"Invalid type for {field}; expected date, datetime, or ISO8601 string.")


def _clean_title(v: Optional[str], max_length: int) -> Optional[str]:
    if v is None:
        return v
    s = v.strip()
    if not (1 <= len(s) <= max_length):
        raise ValueError(f"title length must be between 1 and {max_length} characters")
    return s


def _clean_name(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    s = v.strip()
    if not (1 <= len(s) <= 100):
        raise ValueError("name length must be between 1 and 100 characters")
    return s


# ---------------------------------------------------------------------------
# Calendars
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class CalendarCreate(BaseModel):
    """
    Schema for creating a calendar.
    """

    model_config = ConfigDict(
        json_schema_extra={"example": {"name": "Work", "color": "#10B981", "type": "work"}}
    )

    name: str = Field(..., description="Calendar name", min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: str = Field(default="#3B82F6", min_length=1, max_length=20, description="Display color")
    type: CalendarType = Field(default="personal")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_name(v)  # type: ignore[return-value]


# PUBLIC_INTERFACE
class CalendarUpdate(BaseModel):
    """Partial update for a calendar; only provided fields change."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = Field(default=None, min_length=1, max_length=20)
    type: Optional[CalendarType] = None
    is_visible: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return _clean_name(v)


# PUBLIC_INTERFACE
class CalendarOut(BaseModel):
    """Schema returned by the API for a calendar."""

    id: int
    user_id: str
    name: str
    description: Optional[str] = None
    color: str
    type: CalendarType
    is_default: bool
    is_visible: bool
    created_at: datetime
    updated_at: datetime


class CalendarDeleted(BaseModel):
    message: str
    deleted_events: int


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class ReminderIn(BaseModel):
    """Reminder requested for an event, expressed as minutes before its start."""

    offset_minutes: int = Field(default=15, ge=0, le=40320, description="Minutes before the event start")
    channel: ReminderChannel = Field(default="notification", description="Delivery channel")


class ReminderOut(ReminderIn):
    sent: bool = Field(..., description="Whether the reminder has already fired")


# PUBLIC_INTERFACE
class EventCreate(BaseModel):
    """
    Schema for creating a calendar event. `end` must be strictly after `start`.
    When `reminders` is omitted the event gets a single 15 minute reminder.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Design review",
                "calendar_id": 1,
                "start": "2025-02-03T10:00:00Z",
                "end": "2025-02-03T11:00:00Z",
                "reminders": [{"offset_minutes": 15}],
            }
        }
    )

    title: str = Field(..., description="Event title", min_length=1, max_length=200)
    calendar_id: Optional[int] = Field(default=None, description="Owning calendar; the default calendar when omitted")
    description: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[str] = Field(default=None, max_length=500)
    start: datetime = Field(..., description="Start instant (ISO8601)")
    end: datetime = Field(..., description="End instant (ISO8601)")
    all_day: bool = Field(default=False)
    reminders: Optional[List[ReminderIn]] = Field(default=None, description="Reminder offsets")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _clean_title(v, 200)  # type: ignore[return-value]

    @field_validator("start", "end", mode="before")
    @classmethod
    def parse_instants(cls, v: InstantInput) -> Optional[datetime]:
        return _parse_instant(v, "start/end")

    @model_validator(mode="after")
    def check_order(self) -> "EventCreate":
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self


# PUBLIC_INTERFACE
class EventUpdate(BaseModel):
    """
    Partial update for an event. Changing `start` or `reminders` re-arms every reminder.
    """

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    calendar_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[str] = Field(default=None, max_length=500)
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    all_day: Optional[bool] = None
    reminders: Optional[List[ReminderIn]] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _clean_title(v, 200)

    @field_validator("start", "end", mode="before")
    @classmethod
    def parse_instants(cls, v: Optional[InstantInput]) -> Optional[datetime]:
        return _parse_instant(v, "start/end")

    @model_validator(mode="after")
    def check_order(self) -> "EventUpdate":
        if self.start is not None and self.end is not None and self.end <= self.start:
            raise ValueError("end must be after start")
        return self


class EventDuplicate(BaseModel):
    new_start: Optional[datetime] = Field(
        default=None, description="Start of the copy; defaults to one day after the original"
    )

    @field_validator("new_start", mode="before")
    @classmethod
    def parse_new_start(cls, v: Optional[InstantInput]) -> Optional[datetime]:
        return _parse_instant(v, "new_start")


# PUBLIC_INTERFACE
class EventOut(BaseModel):
    """Schema returned by the API for a calendar event."""

    id: int
    user_id: str
    calendar_id: int
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start: datetime
    end: datetime
    all_day: bool
    reminders: List[ReminderOut]
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Free slots and working hours
# ---------------------------------------------------------------------------


class WorkingHoursIn(BaseModel):
    """
    Working window for free-slot suggestions. Format and ordering are checked by the
    free-slot service so that a bad window is rejected the same way everywhere.
    """

    model_config = ConfigDict(
        json_schema_extra={"example": {"start": "08:30", "end": "18:00", "timezone": "Europe/Paris"}}
    )

    start: str = Field(..., description="Start of the working day, HH:MM")
    end: str = Field(..., description="End of the working day, HH:MM")
    timezone: Optional[str] = Field(default=None, description="IANA zone; server default when omitted")


class WorkingHoursOut(BaseModel):
    start: str
    end: str
    timezone: str


class FreeSlotOut(BaseModel):
    start: datetime
    end: datetime
    duration_minutes: float


# PUBLIC_INTERFACE
class FreeSlotsResponse(BaseModel):
    """Open windows of at least the requested duration within the user's working hours."""

    day: date
    working_hours: WorkingHoursOut
    free_slots: List[FreeSlotOut]


# ---------------------------------------------------------------------------
# Todos
# ---------------------------------------------------------------------------


class TodoReminderIn(BaseModel):
    enabled: bool = Field(default=False, description="Send a reminder as the due date approaches")
    time: Optional[datetime] = Field(default=None, description="Informational reminder time")

    @field_validator("time", mode="before")
    @classmethod
    def parse_time(cls, v: Optional[InstantInput]) -> Optional[datetime]:
        return _parse_instant(v, "reminder.time")


class TodoReminderOut(TodoReminderIn):
    sent: bool = False


# PUBLIC_INTERFACE
class TodoCreate(BaseModel):
    """
    Schema for creating a new Todo item.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy groceries",
                "description": "Milk, eggs, bread",
                "status": "pending",
                "priority": "medium",
                "due_date": "2025-02-01T17:00:00Z",
                "reminder": {"enabled": True},
            }
        }
    )

    title: str = Field(..., description="Short title for the todo item", min_length=1, max_length=300)
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    status: TodoStatus = Field(default="pending", description="Workflow status")
    priority: TodoPriority = Field(default="medium")
    list: str = Field(default="inbox", min_length=1, max_length=100, description="List the todo belongs to")
    due_date: Optional[datetime] = Field(
        default=None,
        description="Due date/time of the todo item. Accepts ISO8601 date or datetime; dates are set to 00:00 UTC",
    )
    reminder: Optional[TodoReminderIn] = Field(default=None, description="Due-date reminder settings")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip whitespace and enforce 1..300 length.
        """
        if v is None:
            raise ValueError("title is required")
        return _clean_title(v, 300)  # type: ignore[return-value]

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[InstantInput]) -> Optional[datetime]:
        return _parse_instant(v, "due_date")


# PUBLIC_INTERFACE
class TodoUpdate(BaseModel):
    """
    Schema for updating an existing Todo item.
    All fields are optional; only provided fields will be updated.
    """

    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    description: Optional[str] = None
    status: Optional[TodoStatus] = None
    priority: Optional[TodoPriority] = None
    list: Optional[str] = Field(default=None, min_length=1, max_length=100)
    due_date: Optional[datetime] = None
    reminder: Optional[TodoReminderIn] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _clean_title(v, 300)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[InstantInput]) -> Optional[datetime]:
        return _parse_instant(v, "due_date")


# PUBLIC_INTERFACE
class TodoOut(BaseModel):
    """
    Schema returned by the API for a Todo item.
    """

    id: int = Field(..., description="Unique identifier of the todo item")
    user_id: str
    title: str
    description: Optional[str] = None
    status: TodoStatus
    priority: TodoPriority
    list: str
    due_date: Optional[datetime] = None
    reminder: TodoReminderOut
    completed_at: Optional[datetime] = None
    linked_event_id: Optional[int] = None
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


# PUBLIC_INTERFACE
class TodoConvert(BaseModel):
    """
    Schedule a todo as a calendar event. The event takes the todo's title and description;
    `calendar_id` defaults to the caller's default calendar.
    """

    model_config = ConfigDict(
        json_schema_extra={"example": {"start": "2025-02-03T14:00:00Z", "end": "2025-02-03T15:00:00Z"}}
    )

    start: datetime = Field(..., description="Start instant (ISO8601)")
    end: datetime = Field(..., description="End instant (ISO8601)")
    calendar_id: Optional[int] = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def parse_instants(cls, v: InstantInput) -> Optional[datetime]:
        return _parse_instant(v, "start/end")

    @model_validator(mode="after")
    def check_order(self) -> "TodoConvert":
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class NotificationOut(BaseModel):
    """Schema returned by the API (and pushed over the live channel) for a notification."""

    id: int
    user_id: str
    type: NotificationType
    title: str
    message: str
    read: bool
    action_url: Optional[str] = None
    related_event_id: Optional[int] = None
    related_todo_id: Optional[int] = None
    created_at: datetime