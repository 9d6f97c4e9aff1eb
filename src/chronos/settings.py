from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import List

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/chronos.db'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - DEFAULT_WORKING_HOURS_START / DEFAULT_WORKING_HOURS_END: 'HH:MM', default 09:00-17:00
    - DEFAULT_TIMEZONE: IANA zone name used to place working hours on a day (default 'UTC')
    - ENABLE_REMINDER_SCHEDULER: 'false' to keep the reminder sweep from starting with the app
    - REMINDER_SWEEP_INTERVAL_SECONDS: sweep period, default 60
    - TODO_REMINDER_LOOKAHEAD_MINUTES: how far ahead a todo due date triggers a reminder, default 60
    - NOTIFICATION_RETENTION_DAYS: notifications older than this are purged, default 30
    - LOG_LEVEL: root logging level, default 'INFO'
    """

    persistence_backend: str
    sqlite_db_path: str
    cors_allow_origins: List[str]
    default_working_hours_start: str
    default_working_hours_end: str
    default_timezone: str
    enable_reminder_scheduler: bool
    reminder_sweep_interval_seconds: int
    todo_reminder_lookahead_minutes: int
    notification_retention_days: int
    log_level: str


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_bool(value: str, default: bool = False) -> bool:
    v = value.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_positive_int(value: str, default: int) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


def _parse_working_hours(start: str, end: str) -> tuple[str, str]:
    start, end = start.strip(), end.strip()
    if not (_HHMM.match(start) and _HHMM.match(end)) or end <= start:
        # Misconfigured window; the zero-padded format makes string order match time order
        return "09:00", "17:00"
    return start, end


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sqlite"}:
        backend = "memory"

    sqlite_path = _get_env("SQLITE_DB_PATH", "./data/chronos.db").strip()
    origins = _parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*"))

    wh_start, wh_end = _parse_working_hours(
        _get_env("DEFAULT_WORKING_HOURS_START", "09:00"),
        _get_env("DEFAULT_WORKING_HOURS_END", "17:00"),
    )

    return Settings(
        persistence_backend=backend,
        sqlite_db_path=sqlite_path,
        cors_allow_origins=origins,
        default_working_hours_start=wh_start,
        default_working_hours_end=wh_end,
        default_timezone=_get_env("DEFAULT_TIMEZONE", "UTC").strip(),
        enable_reminder_scheduler=_parse_bool(_get_env("ENABLE_REMINDER_SCHEDULER", "true"), True),
        reminder_sweep_interval_seconds=_parse_positive_int(
            _get_env("REMINDER_SWEEP_INTERVAL_SECONDS", "60"), 60
        ),
        todo_reminder_lookahead_minutes=_parse_positive_int(
            _get_env("TODO_REMINDER_LOOKAHEAD_MINUTES", "60"), 60
        ),
        notification_retention_days=_parse_positive_int(
            _get_env("NOTIFICATION_RETENTION_DAYS", "30"), 30
        ),
        log_level=_get_env("LOG_LEVEL", "INFO").strip().upper(),
    )
