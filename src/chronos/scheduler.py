from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from .errors import TransientStoreFailure
from .reminders import ReminderDispatcher, SweepResult
from .repositories import NotificationRepository, retention_cutoff
from .utils import utcnow

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "reminder_sweep"
PURGE_JOB_ID = "notification_purge"


# PUBLIC_INTERFACE
class ReminderScheduler:
    """
    Owns the periodic reminder sweep and the notification retention purge.

    The dispatcher is injected; `tick_now()` runs one sweep synchronously so the
    behaviour can be exercised without waiting on wall-clock timers.
    """

    def __init__(
        self,
        dispatcher: ReminderDispatcher,
        notifications: Optional[NotificationRepository] = None,
        interval_seconds: int = 60,
        retention_days: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._dispatcher = dispatcher
        self._notifications = notifications
        self._interval_seconds = interval_seconds
        self._retention_days = retention_days
        self._clock = clock
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return bool(self._scheduler and self._scheduler.running)

    def start(self) -> None:
        """Start the background jobs. Calling start on a running scheduler is a no-op."""
        if self.running:
            return
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.add_job(
            self.tick_now,
            "interval",
            seconds=self._interval_seconds,
            id=SWEEP_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        if self._notifications is not None:
            scheduler.add_job(
                self.purge_expired,
                "interval",
                hours=1,
                id=PURGE_JOB_ID,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Reminder scheduler started (every %ss)", self._interval_seconds)

    def stop(self) -> None:
        """Stop the jobs, waiting for an in-flight sweep to finish."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=True)
        self._scheduler = None
        logger.info("Reminder scheduler stopped")

    def tick_now(self) -> SweepResult:
        """Run one reminder sweep immediately on the calling thread."""
        return self._dispatcher.sweep(self._clock())

    def purge_expired(self) -> int:
        """Delete notifications older than the retention window. Returns how many were removed."""
        if self._notifications is None:
            return 0
        cutoff = retention_cutoff(self._clock(), self._retention_days)
        try:
            removed = self._notifications.purge_older_than(cutoff)
        except TransientStoreFailure as e:
            logger.warning("Skipping notification purge, store unavailable: %s", e.message)
            return 0
        if removed:
            logger.info("Purged %d notification(s) older than %s", removed, cutoff.isoformat())
        return removed
