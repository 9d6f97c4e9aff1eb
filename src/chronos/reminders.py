"""
Reminder dispatch.

One sweep scans event reminders and todo due-date reminders, creates a notification for
each reminder whose trigger instant has passed, pushes it to the owner's live channel and
then flips the reminder's `sent` flag so later sweeps never reconsider it.

Event reminders trigger at `event.start - offset_minutes`; todo reminders trigger when the
due date enters a fixed lookahead window (one hour by default). The two rules differ on
purpose and are kept as they are.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Callable, Dict, Optional, Protocol

from .errors import TransientStoreFailure
from .models import EventEntity, NotificationEntity, TodoEntity
from .repositories import Store
from .schemas import NotificationOut
from .utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_TODO_LOOKAHEAD_MINUTES = 60


class Publisher(Protocol):
    def publish(self, user_id: str, message: Dict[str, Any]) -> None:
        ...


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class SweepResult:
    """Outcome of one sweep. `skipped` is True when the sweep did no work at all."""

    skipped: bool = False
    events_notified: int = 0
    todos_notified: int = 0
    failures: int = 0

    @property
    def notified(self) -> int:
        return self.events_notified + self.todos_notified


def event_trigger_instant(event: EventEntity, offset_minutes: int) -> datetime:
    return event["start"] - timedelta(minutes=offset_minutes)


def _lookahead_phrase(minutes: int) -> str:
    if minutes == 60:
        return "an hour"
    return f"{minutes} minutes"


# PUBLIC_INTERFACE
class ReminderDispatcher:
    """
    Runs reminder sweeps against a Store and a live-channel Publisher.

    The clock is injectable so sweeps can be driven deterministically. Sweeps never
    overlap: a sweep that starts while another is running returns a skipped result.
    """

    def __init__(
        self,
        store: Store,
        publisher: Optional[Publisher] = None,
        clock: Callable[[], datetime] = utcnow,
        todo_lookahead_minutes: int = DEFAULT_TODO_LOOKAHEAD_MINUTES,
    ) -> None:
        self._store = store
        self._publisher = publisher
        self._clock = clock
        self._todo_lookahead = timedelta(minutes=todo_lookahead_minutes)
        self._todo_lookahead_minutes = todo_lookahead_minutes
        self._running = Lock()

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Run one sweep at `now` (defaults to the injected clock).

        A store outage while querying skips the rest of the tick; the reminders are still
        unsent, so the next tick picks them up. A failure on one item is logged and the
        sweep moves on to the next.
        """
        if not self._running.acquire(blocking=False):
            logger.warning("Reminder sweep already in progress; skipping this tick")
            return SweepResult(skipped=True)
        try:
            return self._sweep(now or self._clock())
        finally:
            self._running.release()

    def _sweep(self, now: datetime) -> SweepResult:
        try:
            events = self._store.events.find_with_unsent_reminders(now)
        except TransientStoreFailure as e:
            logger.warning("Skipping reminder sweep, store unavailable: %s", e.message)
            return SweepResult(skipped=True)

        events_notified = failures = 0
        for event in events:
            for position, reminder in enumerate(event["reminders"]):
                if reminder["sent"] or now < event_trigger_instant(event, reminder["offset_minutes"]):
                    continue
                try:
                    self._dispatch_event_reminder(event, position, reminder["offset_minutes"])
                    events_notified += 1
                except Exception:
                    failures += 1
                    logger.exception(
                        "Failed to dispatch reminder %d of event %s", position, event["id"]
                    )

        try:
            todos = self._store.todos.find_due_for_reminder(now, now + self._todo_lookahead)
        except TransientStoreFailure as e:
            logger.warning("Skipping todo reminders this tick, store unavailable: %s", e.message)
            return SweepResult(
                skipped=events_notified == 0 and failures == 0,
                events_notified=events_notified,
                failures=failures,
            )

        todos_notified = 0
        for todo in todos:
            try:
                self._dispatch_todo_reminder(todo)
                todos_notified += 1
            except Exception:
                failures += 1
                logger.exception("Failed to dispatch reminder for todo %s", todo["id"])

        result = SweepResult(
            events_notified=events_notified, todos_notified=todos_notified, failures=failures
        )
        if result.notified or failures:
            logger.info(
                "Reminder sweep: %d event reminder(s), %d todo reminder(s), %d failure(s)",
                events_notified, todos_notified, failures,
            )
        else:
            logger.debug("Reminder sweep: nothing due")
        return result

    def _dispatch_event_reminder(self, event: EventEntity, position: int, offset_minutes: int) -> None:
        notification = self._store.notifications.create(
            user_id=event["user_id"],
            type="event_reminder",
            title="Event Reminder",
            message=f'"{event["title"]}" starts in {offset_minutes} minutes',
            action_url=f"/calendar?event={event['id']}",
            related_event_id=event["id"],
        )
        self._publish(
            event["user_id"],
            {
                "type": "event_reminder",
                "notification": self._serialize(notification),
                "event": {
                    "id": event["id"],
                    "title": event["title"],
                    "start": event["start"].isoformat(),
                    "location": event["location"],
                },
            },
        )
        self._mark_sent(
            lambda: self._store.events.mark_reminder_sent(event["id"], position, offset_minutes, event["start"]),
            f"reminder {position} of event {event['id']}",
        )

    def _dispatch_todo_reminder(self, todo: TodoEntity) -> None:
        notification = self._store.notifications.create(
            user_id=todo["user_id"],
            type="todo_reminder",
            title="Task Due Soon",
            message=f'"{todo["title"]}" is due in less than {_lookahead_phrase(self._todo_lookahead_minutes)}',
            action_url=f"/todos?id={todo['id']}",
            related_todo_id=todo["id"],
        )
        due = todo["due_date"]
        self._publish(
            todo["user_id"],
            {
                "type": "todo_reminder",
                "notification": self._serialize(notification),
                "todo": {
                    "id": todo["id"],
                    "title": todo["title"],
                    "due_date": due.isoformat() if due else None,
                },
            },
        )
        self._mark_sent(
            lambda: self._store.todos.mark_reminder_sent(todo["id"]),
            f"reminder of todo {todo['id']}",
        )

    def _mark_sent(self, flip: Callable[[], bool], label: str) -> None:
        try:
            flipped = flip()
        except TransientStoreFailure as e:
            # Notification already exists; the next tick will deliver it again
            logger.warning("Could not mark %s as sent, it may be redelivered: %s", label, e.message)
            return
        if not flipped:
            logger.warning("%s was already marked sent or changed since it was read", label)

    def _publish(self, user_id: str, message: Dict[str, Any]) -> None:
        if self._publisher is None:
            return
        try:
            self._publisher.publish(user_id, message)
        except Exception:
            # The notification is persisted; live delivery is best effort
            logger.exception("Failed to publish %s to user %s", message.get("type"), user_id)

    @staticmethod
    def _serialize(notification: NotificationEntity) -> Dict[str, Any]:
        return NotificationOut(**notification).model_dump(mode="json")  # type: ignore[arg-type]
