from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import register_exception_handlers
from .logging_config import configure_logging
from .realtime import get_hub
from .realtime import router as realtime_router
from .reminders import ReminderDispatcher
from .repositories import get_store
from .routers import calendars as calendars_router
from .routers import events as events_router
from .routers import notifications as notifications_router
from .routers import preferences as preferences_router
from .routers import todos as todos_router
from .scheduler import ReminderScheduler
from .settings import get_settings

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {"name": "calendars", "description": "Per-user calendars; every user has one default calendar."},
    {"name": "events", "description": "Calendar events and free-slot suggestions."},
    {
        "name": "todos",
        "description": "CRUD operations for Todo items with filtering, sorting, and pagination.",
    },
    {"name": "notifications", "description": "Reminder notifications and read state."},
    {"name": "preferences", "description": "Per-user working hours used for scheduling."},
    {"name": "realtime", "description": "WebSocket live-update channel."},
]

_settings = get_settings()
configure_logging(_settings.log_level)


def build_reminder_scheduler() -> ReminderScheduler:
    """Wire the reminder sweep to the configured store and the live-update hub."""
    store = get_store()
    dispatcher = ReminderDispatcher(
        store,
        publisher=get_hub(),
        todo_lookahead_minutes=_settings.todo_reminder_lookahead_minutes,
    )
    return ReminderScheduler(
        dispatcher,
        notifications=store.notifications,
        interval_seconds=_settings.reminder_sweep_interval_seconds,
        retention_days=_settings.notification_retention_days,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the reminder scheduler with the app and stop it on shutdown."""
    scheduler: Optional[ReminderScheduler] = None
    if _settings.enable_reminder_scheduler:
        scheduler = build_reminder_scheduler()
        scheduler.start()
    else:
        logger.info("Reminder scheduler disabled by configuration")
    app.state.reminder_scheduler = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()
        app.state.reminder_scheduler = None


app = FastAPI(
    title="Chronos Backend",
    description="Calendar, todo and notification API with free-slot suggestions and timed reminders.",
    version="0.1.0",
    openapi_tags=openapi_tags,
    lifespan=lifespan,
)

# Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
allow_all = (_settings.cors_allow_origins == ["*"]) or (len(_settings.cors_allow_origins) == 0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all else _settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Return a consistent JSON structure for request validation errors.

    Response format:
        {
            "error": "ValidationError",
            "detail": [... pydantic/fastapi error details ...],
            "message": "Request validation failed"
        }
    """
    return JSONResponse(
        status_code=422,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


# PUBLIC_INTERFACE
@app.get("/", summary="Health Check", tags=["health"])
def health_check(request: Request):
    """
    Health check endpoint.

    Returns:
        A JSON object indicating service health, storage backend and scheduler state.
    """
    scheduler = getattr(request.app.state, "reminder_scheduler", None)
    return {
        "message": "Healthy",
        "backend": _settings.persistence_backend,
        "scheduler_running": bool(scheduler and scheduler.running),
    }


app.include_router(calendars_router.router)
app.include_router(events_router.router)
app.include_router(todos_router.router)
app.include_router(notifications_router.router)
app.include_router(preferences_router.router)
app.include_router(realtime_router)
