from datetime import datetime, timedelta, timezone
from threading import Event, Thread

from src.chronos.errors import TransientStoreFailure
from src.chronos.reminders import ReminderDispatcher, SweepResult, event_trigger_instant
from src.chronos.repositories import Store
from src.chronos.schemas import EventCreate, EventUpdate, ReminderIn, TodoCreate, TodoReminderIn, TodoUpdate


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def add_event(store, start, offsets=(15,), user_id="alice", title="Standup", location="Room 1"):
    return store.events.create(
        user_id,
        EventCreate(
            title=title,
            calendar_id=1,
            location=location,
            start=start,
            end=start + timedelta(hours=1),
            reminders=[ReminderIn(offset_minutes=o) for o in offsets],
        ),
    )


def add_todo(store, due, user_id="alice", title="File taxes", enabled=True):
    return store.todos.create(
        user_id,
        TodoCreate(title=title, due_date=due, reminder=TodoReminderIn(enabled=enabled)),
    )


def notifications_for(store, user_id="alice"):
    items, _ = store.notifications.list(user_id, limit=100)
    return items


class TestEventReminders:
    def test_fires_once_at_trigger_instant(self, store, publisher):
        dispatcher = ReminderDispatcher(store, publisher)
        event = add_event(store, utc(2030, 1, 1, 14, 0))

        assert dispatcher.sweep(utc(2030, 1, 1, 13, 44)).notified == 0
        assert notifications_for(store) == []

        result = dispatcher.sweep(utc(2030, 1, 1, 13, 45))
        assert result == SweepResult(events_notified=1)
        assert store.events.get("alice", event["id"])["reminders"][0]["sent"] is True

        assert dispatcher.sweep(utc(2030, 1, 1, 13, 46)).notified == 0
        notes = notifications_for(store)
        assert len(notes) == 1
        assert notes[0]["type"] == "event_reminder"
        assert notes[0]["title"] == "Event Reminder"
        assert notes[0]["message"] == '"Standup" starts in 15 minutes'
        assert notes[0]["related_event_id"] == event["id"]
        assert notes[0]["action_url"] == f"/calendar?event={event['id']}"
        assert len(publisher.messages) == 1

    def test_late_tick_still_delivers(self, store):
        dispatcher = ReminderDispatcher(store)
        add_event(store, utc(2030, 1, 1, 14, 0))
        assert dispatcher.sweep(utc(2030, 1, 1, 13, 59)).events_notified == 1

    def test_started_events_are_not_reminded(self, store):
        dispatcher = ReminderDispatcher(store)
        add_event(store, utc(2030, 1, 1, 14, 0))
        assert dispatcher.sweep(utc(2030, 1, 1, 14, 0)).notified == 0
        assert notifications_for(store) == []

    def test_each_reminder_of_an_event_fires_separately(self, store):
        dispatcher = ReminderDispatcher(store)
        add_event(store, utc(2030, 1, 1, 14, 0), offsets=(60, 10))

        assert dispatcher.sweep(utc(2030, 1, 1, 13, 0)).events_notified == 1
        assert dispatcher.sweep(utc(2030, 1, 1, 13, 30)).events_notified == 0
        assert dispatcher.sweep(utc(2030, 1, 1, 13, 50)).events_notified == 1
        messages = sorted(n["message"] for n in notifications_for(store))
        assert messages == ['"Standup" starts in 10 minutes', '"Standup" starts in 60 minutes']

    def test_published_payload(self, store, publisher):
        dispatcher = ReminderDispatcher(store, publisher)
        event = add_event(store, utc(2030, 1, 1, 14, 0))
        dispatcher.sweep(utc(2030, 1, 1, 13, 45))

        user_id, message = publisher.messages[0]
        assert user_id == "alice"
        assert message["type"] == "event_reminder"
        assert message["notification"]["related_event_id"] == event["id"]
        assert message["notification"]["read"] is False
        assert message["event"] == {
            "id": event["id"],
            "title": "Standup",
            "start": "2030-01-01T14:00:00+00:00",
            "location": "Room 1",
        }

    def test_moving_the_event_rearms_its_reminders(self, store):
        dispatcher = ReminderDispatcher(store)
        event = add_event(store, utc(2030, 1, 1, 14, 0))
        dispatcher.sweep(utc(2030, 1, 1, 13, 45))

        store.events.update("alice", event["id"], _move(event, timedelta(days=1)))
        assert dispatcher.sweep(utc(2030, 1, 2, 13, 45)).events_notified == 1

    def test_trigger_instant(self):
        event = {"start": utc(2030, 1, 1, 14, 0)}
        assert event_trigger_instant(event, 15) == utc(2030, 1, 1, 13, 45)

    def test_reminders_replaced_mid_sweep_stay_armed(self, store):
        event = add_event(store, utc(2030, 1, 1, 14, 0))
        replacing = ReplacingPublisher(store, [ReminderIn(offset_minutes=30)])
        dispatcher = ReminderDispatcher(store, replacing)

        assert dispatcher.sweep(utc(2030, 1, 1, 13, 45)).events_notified == 1
        reminders = store.events.get("alice", event["id"])["reminders"]
        assert reminders == [{"offset_minutes": 30, "channel": "notification", "sent": False}]

        assert dispatcher.sweep(utc(2030, 1, 1, 13, 46)).events_notified == 1
        assert store.events.get("alice", event["id"])["reminders"][0]["sent"] is True
        assert [n["message"] for n in notifications_for(store)] == [
            '"Standup" starts in 30 minutes',
            '"Standup" starts in 15 minutes',
        ]

    def test_stale_mark_sent_is_refused(self, store):
        event = add_event(store, utc(2030, 1, 1, 14, 0), offsets=(15, 60))
        store.events.update("alice", event["id"], EventUpdate(reminders=[ReminderIn(offset_minutes=60)]))
        assert store.events.mark_reminder_sent(event["id"], 0, 15, event["start"]) is False

        store.events.update("alice", event["id"], _move(event, timedelta(hours=2)))
        assert store.events.mark_reminder_sent(event["id"], 0, 60, event["start"]) is False
        assert store.events.get("alice", event["id"])["reminders"][0]["sent"] is False

        moved = store.events.get("alice", event["id"])
        assert store.events.mark_reminder_sent(event["id"], 0, 60, moved["start"]) is True


def _move(event, delta):
    return EventUpdate(start=event["start"] + delta, end=event["end"] + delta)


class ReplacingPublisher:
    """Replaces the event's reminders while its reminder is being delivered."""

    def __init__(self, store, reminders):
        self._store = store
        self._reminders = reminders
        self.replaced = False

    def publish(self, user_id, message):
        if not self.replaced:
            self.replaced = True
            self._store.events.update(
                user_id, message["event"]["id"], EventUpdate(reminders=self._reminders)
            )
        return 1


class TestTodoReminders:
    def test_only_fires_inside_the_lookahead(self, store):
        now = utc(2030, 1, 1, 12, 0)
        dispatcher = ReminderDispatcher(store)
        todo = add_todo(store, now + timedelta(minutes=90))

        assert dispatcher.sweep(now).todos_notified == 0

        assert dispatcher.sweep(now + timedelta(minutes=45)).todos_notified == 1
        assert dispatcher.sweep(now + timedelta(minutes=50)).todos_notified == 0

        notes = notifications_for(store)
        assert len(notes) == 1
        assert notes[0]["type"] == "todo_reminder"
        assert notes[0]["title"] == "Task Due Soon"
        assert notes[0]["message"] == '"File taxes" is due in less than an hour'
        assert notes[0]["related_todo_id"] == todo["id"]
        assert notes[0]["action_url"] == f"/todos?id={todo['id']}"
        assert store.todos.get("alice", todo["id"])["reminder"]["sent"] is True

    def test_completed_disabled_and_overdue_todos_are_skipped(self, store):
        now = utc(2030, 1, 1, 12, 0)
        dispatcher = ReminderDispatcher(store)
        done = add_todo(store, now + timedelta(minutes=30), title="Done")
        store.todos.update("alice", done["id"], TodoUpdate(status="completed"))
        add_todo(store, now + timedelta(minutes=30), title="Quiet", enabled=False)
        add_todo(store, now - timedelta(minutes=5), title="Overdue")

        assert dispatcher.sweep(now).todos_notified == 0

    def test_custom_lookahead_changes_the_message(self, store):
        now = utc(2030, 1, 1, 12, 0)
        dispatcher = ReminderDispatcher(store, todo_lookahead_minutes=120)
        add_todo(store, now + timedelta(minutes=90))
        assert dispatcher.sweep(now).todos_notified == 1
        assert notifications_for(store)[0]["message"] == '"File taxes" is due in less than 120 minutes'

    def test_published_payload(self, store, publisher):
        now = utc(2030, 1, 1, 12, 0)
        dispatcher = ReminderDispatcher(store, publisher)
        todo = add_todo(store, now + timedelta(minutes=30))
        dispatcher.sweep(now)

        _, message = publisher.messages[0]
        assert message["type"] == "todo_reminder"
        assert message["todo"] == {
            "id": todo["id"],
            "title": "File taxes",
            "due_date": "2030-01-01T12:30:00+00:00",
        }


class FlakyNotifications:
    """Wraps a notification repository and fails creation for chosen related ids."""

    def __init__(self, inner, failing_event_ids=()):
        self._inner = inner
        self._failing = set(failing_event_ids)

    def create(self, **kwargs):
        if kwargs.get("related_event_id") in self._failing:
            raise RuntimeError("boom")
        return self._inner.create(**kwargs)

    def __getattr__(self, name):
        return getattr(self._inner, name)


class UnreachableEvents:
    def find_with_unsent_reminders(self, now):
        raise TransientStoreFailure("database is locked")


class FailingMarkSent:
    def __init__(self, inner):
        self._inner = inner

    def mark_reminder_sent(self, event_id, position, *expected):
        raise TransientStoreFailure("disk I/O error")

    def __getattr__(self, name):
        return getattr(self._inner, name)


def _with(store, **replacements):
    parts = {
        "backend": store.backend,
        "calendars": store.calendars,
        "events": store.events,
        "todos": store.todos,
        "notifications": store.notifications,
        "preferences": store.preferences,
    }
    parts.update(replacements)
    return Store(**parts)


class TestFailureHandling:
    def test_one_failing_item_does_not_stop_the_sweep(self, store):
        first = add_event(store, utc(2030, 1, 1, 14, 0), title="First")
        add_event(store, utc(2030, 1, 1, 14, 5), title="Second")
        dispatcher = ReminderDispatcher(
            _with(store, notifications=FlakyNotifications(store.notifications, {first["id"]}))
        )

        result = dispatcher.sweep(utc(2030, 1, 1, 13, 55))
        assert result.events_notified == 1
        assert result.failures == 1
        assert [n["message"] for n in notifications_for(store)] == ['"Second" starts in 15 minutes']
        # The failed reminder is still unsent and is retried next tick
        assert store.events.get("alice", first["id"])["reminders"][0]["sent"] is False
        assert ReminderDispatcher(store).sweep(utc(2030, 1, 1, 13, 56)).events_notified == 1

    def test_store_outage_skips_the_tick(self, store):
        add_event(store, utc(2030, 1, 1, 14, 0))
        dispatcher = ReminderDispatcher(_with(store, events=UnreachableEvents()))
        assert dispatcher.sweep(utc(2030, 1, 1, 13, 50)) == SweepResult(skipped=True)
        assert notifications_for(store) == []

        assert ReminderDispatcher(store).sweep(utc(2030, 1, 1, 13, 51)).events_notified == 1

    def test_failed_mark_sent_is_redelivered(self, store):
        add_event(store, utc(2030, 1, 1, 14, 0))
        dispatcher = ReminderDispatcher(_with(store, events=FailingMarkSent(store.events)))

        assert dispatcher.sweep(utc(2030, 1, 1, 13, 45)).events_notified == 1
        assert dispatcher.sweep(utc(2030, 1, 1, 13, 46)).events_notified == 1
        assert len(notifications_for(store)) == 2

    def test_publisher_errors_do_not_fail_the_item(self, store):
        class BrokenPublisher:
            def publish(self, user_id, message):
                raise RuntimeError("socket gone")

        add_event(store, utc(2030, 1, 1, 14, 0))
        dispatcher = ReminderDispatcher(store, BrokenPublisher())
        result = dispatcher.sweep(utc(2030, 1, 1, 13, 45))
        assert result.events_notified == 1
        assert result.failures == 0

    def test_overlapping_sweep_is_skipped(self, store):
        entered, release = Event(), Event()

        class BlockingEvents:
            def find_with_unsent_reminders(self, now):
                entered.set()
                release.wait(5)
                return []

        blocking_store = _with(store, events=BlockingEvents())
        dispatcher = ReminderDispatcher(blocking_store, clock=lambda: utc(2030, 1, 1))
        worker = Thread(target=dispatcher.sweep)
        worker.start()
        try:
            assert entered.wait(5)
            assert dispatcher.sweep() == SweepResult(skipped=True)
        finally:
            release.set()
            worker.join(5)
        assert dispatcher.sweep().skipped is False
