from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Generator, List, Optional, Sequence, Tuple

from .errors import TransientStoreFailure
from .models import (
    CalendarEntity,
    EventEntity,
    EventReminder,
    NotificationEntity,
    PreferencesEntity,
    TodoEntity,
)
from .repositories import (
    DEFAULT_CALENDAR_COLOR,
    DEFAULT_CALENDAR_NAME,
    SORT_FIELDS,
    CalendarRepository,
    EventRepository,
    ListQuery,
    NotificationRepository,
    PreferencesRepository,
    Store,
    TodoRepository,
    apply_calendar_changes,
    apply_event_changes,
    apply_todo_changes,
    build_reminders,
    build_todo_reminder,
    calendar_id_of,
)
from .schemas import CalendarCreate, CalendarUpdate, EventCreate, EventUpdate, TodoCreate, TodoUpdate
from .utils import as_utc, utcnow

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS calendars (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT NULL,
        color TEXT NOT NULL,
        type TEXT NOT NULL,
        is_default INTEGER NOT NULL DEFAULT 0,
        is_visible INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    # At most one default calendar per user
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_calendars_default ON calendars(user_id) WHERE is_default = 1",
    """
    CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        calendar_id INTEGER NOT NULL,
        title TEXT NOT NULL,
        description TEXT NULL,
        location TEXT NULL,
        start_at TEXT NOT NULL,
        end_at TEXT NOT NULL,
        all_day INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_events_user_start ON events(user_id, start_at, end_at)",
    """
    CREATE TABLE IF NOT EXISTS event_reminders (
        event_id INTEGER NOT NULL,
        position INTEGER NOT NULL,
        offset_minutes INTEGER NOT NULL,
        channel TEXT NOT NULL,
        sent INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (event_id, position)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_event_reminders_sent ON event_reminders(sent, event_id)",
    """
    CREATE TABLE IF NOT EXISTS todos (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT NULL,
        status TEXT NOT NULL,
        priority TEXT NOT NULL,
        list_name TEXT NOT NULL,
        due_date TEXT NULL,
        reminder_enabled INTEGER NOT NULL DEFAULT 0,
        reminder_time TEXT NULL,
        reminder_sent INTEGER NOT NULL DEFAULT 0,
        completed_at TEXT NULL,
        linked_event_id INTEGER NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_todos_user_status ON todos(user_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_todos_due ON todos(due_date)",
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL,
        title TEXT NOT NULL,
        message TEXT NOT NULL,
        read INTEGER NOT NULL DEFAULT 0,
        action_url TEXT NULL,
        related_event_id INTEGER NULL,
        related_todo_id INTEGER NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, read, created_at)",
    """
    CREATE TABLE IF NOT EXISTS preferences (
        user_id TEXT PRIMARY KEY,
        working_hours_start TEXT NOT NULL,
        working_hours_end TEXT NOT NULL,
        timezone TEXT NULL
    )
    """,
)


def _dt(value: Optional[datetime]) -> Optional[str]:
    # Fixed-width UTC text keeps lexical order equal to chronological order
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_dt(s: Optional[str]) -> Optional[datetime]:
    if s is None:
        return None
    return as_utc(datetime.fromisoformat(s))


class SQLiteDatabase:
    """
    Owns the database file and hands out short-lived connections.

    sqlite3.OperationalError (locked or unreachable database) is re-raised as
    TransientStoreFailure so callers can tell it apart from programming errors.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._init_db()

    @contextmanager
    def connect(self) -> Generator[sqlite3.Connection, None, None]:
        try:
            conn = sqlite3.connect(self._db_path, timeout=5.0)
        except sqlite3.OperationalError as e:
            raise TransientStoreFailure(f"cannot open database: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            raise TransientStoreFailure(f"database operation failed: {e}") from e
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self.connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)


class SQLiteEventRepository(EventRepository):
    """SQLite-backed events with reminders kept in their own table."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self._db = db

    def _reminders_for(self, conn: sqlite3.Connection, ids: Sequence[int]) -> Dict[int, List[EventReminder]]:
        found: Dict[int, List[EventReminder]] = {i: [] for i in ids}
        if not ids:
            return found
        placeholders = ",".join("?" for _ in ids)
        rows = conn.execute(
            f"SELECT * FROM event_reminders WHERE event_id IN ({placeholders}) ORDER BY event_id, position",
            list(ids),
        ).fetchall()
        for row in rows:
            found[int(row["event_id"])].append(
                {
                    "offset_minutes": int(row["offset_minutes"]),
                    "channel": str(row["channel"]),
                    "sent": bool(row["sent"]),
                }
            )
        return found

    def _rows_to_entities(self, conn: sqlite3.Connection, rows: Sequence[sqlite3.Row]) -> List[EventEntity]:
        reminders = self._reminders_for(conn, [int(r["id"]) for r in rows])
        return [
            {
                "id": int(row["id"]),
                "user_id": str(row["user_id"]),
                "calendar_id": int(row["calendar_id"]),
                "title": str(row["title"]),
                "description": row["description"],
                "location": row["location"],
                "start": _parse_dt(row["start_at"]),  # type: ignore[typeddict-item]
                "end": _parse_dt(row["end_at"]),  # type: ignore[typeddict-item]
                "all_day": bool(row["all_day"]),
                "reminders": reminders[int(row["id"])],
                "created_at": _parse_dt(row["created_at"]),  # type: ignore[typeddict-item]
                "updated_at": _parse_dt(row["updated_at"]),  # type: ignore[typeddict-item]
            }
            for row in rows
        ]

    def _write_reminders(self, conn: sqlite3.Connection, event_id: int, reminders: List[EventReminder]) -> None:
        conn.execute("DELETE FROM event_reminders WHERE event_id = ?", (event_id,))
        conn.executemany(
            "INSERT INTO event_reminders (event_id, position, offset_minutes, channel, sent) VALUES (?, ?, ?, ?, ?)",
            [
                (event_id, pos, r["offset_minutes"], r["channel"], 1 if r["sent"] else 0)
                for pos, r in enumerate(reminders)
            ],
        )

    def _fetch_one(self, conn: sqlite3.Connection, user_id: str, event_id: int) -> Optional[EventEntity]:
        row = conn.execute(
            "SELECT * FROM events WHERE id = ? AND user_id = ?", (event_id, user_id)
        ).fetchone()
        return self._rows_to_entities(conn, [row])[0] if row else None

    def create(self, user_id: str, data: EventCreate) -> EventEntity:
        now = _dt(utcnow())
        with self._db.connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO events (user_id, calendar_id, title, description, location,
                    start_at, end_at, all_day, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    calendar_id_of(data),
                    data.title,
                    data.description,
                    data.location,
                    _dt(data.start),
                    _dt(data.end),
                    1 if data.all_day else 0,
                    now,
                    now,
                ),
            )
            new_id = int(cur.lastrowid)
            self._write_reminders(conn, new_id, build_reminders(data.reminders))
            created = self._fetch_one(conn, user_id, new_id)
            assert created is not None
            return created

    def get(self, user_id: str, event_id: int) -> Optional[EventEntity]:
        with self._db.connect() as conn:
            return self._fetch_one(conn, user_id, event_id)

    def update(self, user_id: str, event_id: int, data: EventUpdate) -> Optional[EventEntity]:
        with self._db.connect() as conn:
            current = self._fetch_one(conn, user_id, event_id)
            if current is None:
                return None
            updated = apply_event_changes(current, data, utcnow())
            conn.execute(
                """
                UPDATE events
                SET calendar_id = ?, title = ?, description = ?, location = ?,
                    start_at = ?, end_at = ?, all_day = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    updated["calendar_id"],
                    updated["title"],
                    updated["description"],
                    updated["location"],
                    _dt(updated["start"]),
                    _dt(updated["end"]),
                    1 if updated["all_day"] else 0,
                    _dt(updated["updated_at"]),
                    event_id,
                ),
            )
            self._write_reminders(conn, event_id, updated["reminders"])
            return self._fetch_one(conn, user_id, event_id)

    def delete(self, user_id: str, event_id: int) -> bool:
        with self._db.connect() as conn:
            cur = conn.execute("DELETE FROM events WHERE id = ? AND user_id = ?", (event_id, user_id))
            if cur.rowcount == 0:
                return False
            conn.execute("DELETE FROM event_reminders WHERE event_id = ?", (event_id,))
            return True

    def delete_for_calendar(self, user_id: str, calendar_id: int) -> int:
        with self._db.connect() as conn:
            conn.execute(
                """
                DELETE FROM event_reminders WHERE event_id IN (
                    SELECT id FROM events WHERE user_id = ? AND calendar_id = ?
                )
                """,
                (user_id, calendar_id),
            )
            cur = conn.execute(
                "DELETE FROM events WHERE user_id = ? AND calendar_id = ?", (user_id, calendar_id)
            )
            return cur.rowcount

    def list_range(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        calendar_id: Optional[int] = None,
    ) -> List[EventEntity]:
        clauses = ["user_id = ?"]
        params: list = [user_id]
        if calendar_id is not None:
            clauses.append("calendar_id = ?")
            params.append(calendar_id)
        if start is not None and end is not None:
            clauses.append("start_at <= ? AND end_at >= ?")
            params.extend([_dt(end), _dt(start)])
        with self._db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM events WHERE {' AND '.join(clauses)} ORDER BY start_at, id", params
            ).fetchall()
            return self._rows_to_entities(conn, rows)

    def find_overlapping(self, user_id: str, start: datetime, end: datetime) -> List[EventEntity]:
        with self._db.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM events
                WHERE user_id = ? AND start_at < ? AND end_at > ?
                ORDER BY start_at, id
                """,
                (user_id, _dt(end), _dt(start)),
            ).fetchall()
            return self._rows_to_entities(conn, rows)

    def find_with_unsent_reminders(self, now: datetime) -> List[EventEntity]:
        with self._db.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM events e
                WHERE e.start_at > ?
                  AND EXISTS (SELECT 1 FROM event_reminders r WHERE r.event_id = e.id AND r.sent = 0)
                ORDER BY e.start_at, e.id
                """,
                (_dt(now),),
            ).fetchall()
            return self._rows_to_entities(conn, rows)

    def mark_reminder_sent(
        self,
        event_id: int,
        position: int,
        offset_minutes: Optional[int] = None,
        start: Optional[datetime] = None,
    ) -> bool:
        sql = "UPDATE event_reminders SET sent = 1 WHERE event_id = ? AND position = ? AND sent = 0"
        params: list = [event_id, position]
        if offset_minutes is not None:
            sql += " AND offset_minutes = ?"
            params.append(offset_minutes)
        if start is not None:
            sql += " AND EXISTS (SELECT 1 FROM events WHERE id = ? AND start_at = ?)"
            params.extend([event_id, _dt(start)])
        with self._db.connect() as conn:
            return conn.execute(sql, params).rowcount == 1


class SQLiteCalendarRepository(CalendarRepository):
    """SQLite-backed calendars; the partial unique index keeps one default per user."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self._db = db

    def _row_to_entity(self, row: sqlite3.Row) -> CalendarEntity:
        return {
            "id": int(row["id"]),
            "user_id": str(row["user_id"]),
            "name": str(row["name"]),
            "description": row["description"],
            "color": str(row["color"]),
            "type": str(row["type"]),
            "is_default": bool(row["is_default"]),
            "is_visible": bool(row["is_visible"]),
            "created_at": _parse_dt(row["created_at"]),  # type: ignore[typeddict-item]
            "updated_at": _parse_dt(row["updated_at"]),  # type: ignore[typeddict-item]
        }

    def _fetch_one(self, conn: sqlite3.Connection, user_id: str, calendar_id: int) -> Optional[CalendarEntity]:
        row = conn.execute(
            "SELECT * FROM calendars WHERE id = ? AND user_id = ?", (calendar_id, user_id)
        ).fetchone()
        return self._row_to_entity(row) if row else None

    def create(self, user_id: str, data: CalendarCreate) -> CalendarEntity:
        now = _dt(utcnow())
        with self._db.connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO calendars (user_id, name, description, color, type, is_default, is_visible,
                    created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 0, 1, ?, ?)
                """,
                (user_id, data.name, data.description, data.color, data.type, now, now),
            )
            created = self._fetch_one(conn, user_id, int(cur.lastrowid))
            assert created is not None
            return created

    def get(self, user_id: str, calendar_id: int) -> Optional[CalendarEntity]:
        with self._db.connect() as conn:
            return self._fetch_one(conn, user_id, calendar_id)

    def list(self, user_id: str) -> List[CalendarEntity]:
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM calendars WHERE user_id = ? ORDER BY is_default DESC, id", (user_id,)
            ).fetchall()
            return [self._row_to_entity(r) for r in rows]

    def update(self, user_id: str, calendar_id: int, data: CalendarUpdate) -> Optional[CalendarEntity]:
        with self._db.connect() as conn:
            current = self._fetch_one(conn, user_id, calendar_id)
            if current is None:
                return None
            updated = apply_calendar_changes(current, data, utcnow())
            conn.execute(
                """
                UPDATE calendars
                SET name = ?, description = ?, color = ?, type = ?, is_visible = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    updated["name"],
                    updated["description"],
                    updated["color"],
                    updated["type"],
                    1 if updated["is_visible"] else 0,
                    _dt(updated["updated_at"]),
                    calendar_id,
                ),
            )
            return self._fetch_one(conn, user_id, calendar_id)

    def delete(self, user_id: str, calendar_id: int) -> bool:
        with self._db.connect() as conn:
            cur = conn.execute("DELETE FROM calendars WHERE id = ? AND user_id = ?", (calendar_id, user_id))
            return cur.rowcount > 0

    def get_or_create_default(self, user_id: str) -> CalendarEntity:
        now = _dt(utcnow())
        with self._db.connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO calendars (user_id, name, description, color, type, is_default,
                    is_visible, created_at, updated_at)
                VALUES (?, ?, NULL, ?, 'personal', 1, 1, ?, ?)
                """,
                (user_id, DEFAULT_CALENDAR_NAME, DEFAULT_CALENDAR_COLOR, now, now),
            )
            if cur.rowcount == 1:
                logger.info("Created default calendar %s for user %s", cur.lastrowid, user_id)
            row = conn.execute(
                "SELECT * FROM calendars WHERE user_id = ? AND is_default = 1", (user_id,)
            ).fetchone()
            return self._row_to_entity(row)


class SQLiteTodoRepository(TodoRepository):
    """
    Lightweight SQLite repository implementing the TodoRepository interface.
    """

    def __init__(self, db: SQLiteDatabase) -> None:
        self._db = db

    def _row_to_entity(self, row: sqlite3.Row) -> TodoEntity:
        return {
            "id": int(row["id"]),
            "user_id": str(row["user_id"]),
            "title": str(row["title"]),
            "description": row["description"],
            "status": str(row["status"]),
            "priority": str(row["priority"]),
            "list": str(row["list_name"]),
            "due_date": _parse_dt(row["due_date"]),
            "reminder": {
                "enabled": bool(row["reminder_enabled"]),
                "time": _parse_dt(row["reminder_time"]),
                "sent": bool(row["reminder_sent"]),
            },
            "completed_at": _parse_dt(row["completed_at"]),
            "linked_event_id": row["linked_event_id"],
            "created_at": _parse_dt(row["created_at"]),  # type: ignore[typeddict-item]
            "updated_at": _parse_dt(row["updated_at"]),  # type: ignore[typeddict-item]
        }

    def _fetch_one(self, conn: sqlite3.Connection, user_id: str, todo_id: int) -> Optional[TodoEntity]:
        row = conn.execute(
            "SELECT * FROM todos WHERE id = ? AND user_id = ?", (todo_id, user_id)
        ).fetchone()
        return self._row_to_entity(row) if row else None

    def create(self, user_id: str, data: TodoCreate) -> TodoEntity:
        now = utcnow()
        reminder = build_todo_reminder(data.reminder)
        with self._db.connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO todos (user_id, title, description, status, priority, list_name, due_date,
                    reminder_enabled, reminder_time, reminder_sent, completed_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?)
                """,
                (
                    user_id,
                    data.title,
                    data.description,
                    data.status,
                    data.priority,
                    data.list,
                    _dt(data.due_date),
                    1 if reminder["enabled"] else 0,
                    _dt(reminder["time"]),
                    _dt(now) if data.status == "completed" else None,
                    _dt(now),
                    _dt(now),
                ),
            )
            created = self._fetch_one(conn, user_id, int(cur.lastrowid))
            assert created is not None
            return created

    def get(self, user_id: str, todo_id: int) -> Optional[TodoEntity]:
        with self._db.connect() as conn:
            return self._fetch_one(conn, user_id, todo_id)

    def update(self, user_id: str, todo_id: int, data: TodoUpdate) -> Optional[TodoEntity]:
        with self._db.connect() as conn:
            current = self._fetch_one(conn, user_id, todo_id)
            if current is None:
                return None
            updated = apply_todo_changes(current, data, utcnow())
            conn.execute(
                """
                UPDATE todos
                SET title = ?, description = ?, status = ?, priority = ?, list_name = ?, due_date = ?,
                    reminder_enabled = ?, reminder_time = ?, reminder_sent = ?, completed_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    updated["title"],
                    updated["description"],
                    updated["status"],
                    updated["priority"],
                    updated["list"],
                    _dt(updated["due_date"]),
                    1 if updated["reminder"]["enabled"] else 0,
                    _dt(updated["reminder"]["time"]),
                    1 if updated["reminder"]["sent"] else 0,
                    _dt(updated["completed_at"]),
                    _dt(updated["updated_at"]),
                    todo_id,
                ),
            )
            return self._fetch_one(conn, user_id, todo_id)

    def delete(self, user_id: str, todo_id: int) -> bool:
        with self._db.connect() as conn:
            cur = conn.execute("DELETE FROM todos WHERE id = ? AND user_id = ?", (todo_id, user_id))
            return cur.rowcount > 0

    def list(self, user_id: str, query: Optional[ListQuery] = None) -> Tuple[List[TodoEntity], int]:
        q = query or ListQuery()
        clauses = ["user_id = ?"]
        params: list = [user_id]

        if q.status is not None:
            clauses.append("status = ?")
            params.append(q.status)
        if q.priority is not None:
            clauses.append("priority = ?")
            params.append(q.priority)
        if q.list_name is not None:
            clauses.append("list_name = ?")
            params.append(q.list_name)
        if q.search:
            # Substring search on title and description
            clauses.append("(title LIKE ? OR description LIKE ?)")
            like = f"%{q.search}%"
            params.extend([like, like])

        where_sql = f"WHERE {' AND '.join(clauses)}"

        sort = q.sort.strip().lower() if q.sort else "-created_at"
        reverse = sort.startswith("-")
        field = sort[1:] if reverse else sort
        if field not in SORT_FIELDS:
            field = "created_at"
        direction = "DESC" if reverse else "ASC"
        order_sql = f"ORDER BY ({field} IS NULL) {direction}, {field} {direction}, id {direction}"

        with self._db.connect() as conn:
            count_row = conn.execute(f"SELECT COUNT(*) AS cnt FROM todos {where_sql}", params).fetchone()
            total = int(count_row["cnt"]) if count_row else 0
            rows = conn.execute(
                f"SELECT * FROM todos {where_sql} {order_sql} LIMIT ? OFFSET ?",
                [*params, max(q.limit, 0), max(q.offset, 0)],
            ).fetchall()
            return [self._row_to_entity(r) for r in rows], total

    def find_due_for_reminder(self, now: datetime, until: datetime) -> List[TodoEntity]:
        with self._db.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM todos
                WHERE status != 'completed'
                  AND due_date IS NOT NULL AND due_date >= ? AND due_date <= ?
                  AND reminder_enabled = 1 AND reminder_sent = 0
                ORDER BY due_date, id
                """,
                (_dt(now), _dt(until)),
            ).fetchall()
            return [self._row_to_entity(r) for r in rows]

    def mark_reminder_sent(self, todo_id: int) -> bool:
        with self._db.connect() as conn:
            cur = conn.execute(
                "UPDATE todos SET reminder_sent = 1 WHERE id = ? AND reminder_sent = 0", (todo_id,)
            )
            return cur.rowcount == 1

    def distinct_lists(self, user_id: str) -> List[str]:
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT list_name FROM todos WHERE user_id = ? ORDER BY list_name", (user_id,)
            ).fetchall()
            return [str(r["list_name"]) for r in rows]

    def link_event(self, user_id: str, todo_id: int, event_id: int) -> Optional[TodoEntity]:
        with self._db.connect() as conn:
            cur = conn.execute(
                "UPDATE todos SET linked_event_id = ?, updated_at = ? WHERE id = ? AND user_id = ?",
                (event_id, _dt(utcnow()), todo_id, user_id),
            )
            if cur.rowcount == 0:
                return None
            return self._fetch_one(conn, user_id, todo_id)


class SQLiteNotificationRepository(NotificationRepository):
    def __init__(self, db: SQLiteDatabase) -> None:
        self._db = db

    def _row_to_entity(self, row: sqlite3.Row) -> NotificationEntity:
        return {
            "id": int(row["id"]),
            "user_id": str(row["user_id"]),
            "type": str(row["type"]),
            "title": str(row["title"]),
            "message": str(row["message"]),
            "read": bool(row["read"]),
            "action_url": row["action_url"],
            "related_event_id": row["related_event_id"],
            "related_todo_id": row["related_todo_id"],
            "created_at": _parse_dt(row["created_at"]),  # type: ignore[typeddict-item]
        }

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
        with self._db.connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO notifications (user_id, type, title, message, read, action_url,
                    related_event_id, related_todo_id, created_at)
                VALUES (?, ?, ?, ?, 0, ?, ?, ?, ?)
                """,
                (user_id, type, title, message, action_url, related_event_id, related_todo_id, _dt(utcnow())),
            )
            row = conn.execute("SELECT * FROM notifications WHERE id = ?", (cur.lastrowid,)).fetchone()
            return self._row_to_entity(row)

    def list(
        self, user_id: str, unread_only: bool = False, limit: int = 50, offset: int = 0
    ) -> Tuple[List[NotificationEntity], int]:
        where_sql = "WHERE user_id = ?" + (" AND read = 0" if unread_only else "")
        with self._db.connect() as conn:
            total = int(conn.execute(f"SELECT COUNT(*) FROM notifications {where_sql}", (user_id,)).fetchone()[0])
            rows = conn.execute(
                f"SELECT * FROM notifications {where_sql} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                (user_id, max(limit, 0), max(offset, 0)),
            ).fetchall()
            return [self._row_to_entity(r) for r in rows], total

    def unread_count(self, user_id: str) -> int:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM notifications WHERE user_id = ? AND read = 0", (user_id,)
            ).fetchone()
            return int(row[0])

    def mark_read(self, user_id: str, notification_id: int) -> Optional[NotificationEntity]:
        with self._db.connect() as conn:
            cur = conn.execute(
                "UPDATE notifications SET read = 1 WHERE id = ? AND user_id = ?", (notification_id, user_id)
            )
            if cur.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM notifications WHERE id = ?", (notification_id,)).fetchone()
            return self._row_to_entity(row)

    def mark_all_read(self, user_id: str) -> int:
        with self._db.connect() as conn:
            cur = conn.execute("UPDATE notifications SET read = 1 WHERE user_id = ? AND read = 0", (user_id,))
            return cur.rowcount

    def delete(self, user_id: str, notification_id: int) -> bool:
        with self._db.connect() as conn:
            cur = conn.execute(
                "DELETE FROM notifications WHERE id = ? AND user_id = ?", (notification_id, user_id)
            )
            return cur.rowcount > 0

    def delete_all(self, user_id: str) -> int:
        with self._db.connect() as conn:
            return conn.execute("DELETE FROM notifications WHERE user_id = ?", (user_id,)).rowcount

    def purge_older_than(self, cutoff: datetime) -> int:
        with self._db.connect() as conn:
            return conn.execute("DELETE FROM notifications WHERE created_at < ?", (_dt(cutoff),)).rowcount


class SQLitePreferencesRepository(PreferencesRepository):
    def __init__(self, db: SQLiteDatabase) -> None:
        self._db = db

    def get(self, user_id: str) -> Optional[PreferencesEntity]:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM preferences WHERE user_id = ?", (user_id,)).fetchone()
            if row is None:
                return None
            return {
                "user_id": str(row["user_id"]),
                "working_hours_start": str(row["working_hours_start"]),
                "working_hours_end": str(row["working_hours_end"]),
                "timezone": row["timezone"],
            }

    def upsert(self, user_id: str, start: str, end: str, timezone: Optional[str]) -> PreferencesEntity:
        with self._db.connect() as conn:
            conn.execute(
                """
                INSERT INTO preferences (user_id, working_hours_start, working_hours_end, timezone)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    working_hours_start = excluded.working_hours_start,
                    working_hours_end = excluded.working_hours_end,
                    timezone = excluded.timezone
                """,
                (user_id, start, end, timezone),
            )
        return {
            "user_id": user_id,
            "working_hours_start": start,
            "working_hours_end": end,
            "timezone": timezone,
        }


# PUBLIC_INTERFACE
def create_sqlite_store(db_path: str) -> Store:
    """Return a Store whose repositories share one SQLite database file."""
    db = SQLiteDatabase(db_path)
    return Store(
        backend="sqlite",
        calendars=SQLiteCalendarRepository(db),
        events=SQLiteEventRepository(db),
        todos=SQLiteTodoRepository(db),
        notifications=SQLiteNotificationRepository(db),
        preferences=SQLitePreferencesRepository(db),
    )
