"""APScheduler-backed delivery of notification requests and daily refreshes."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

import pytz
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from notifications import DailyRepeat, NotificationRequest, OneOff

LOGGER = logging.getLogger(__name__)

NOTIFICATION_JOBSTORE = "notifications"
REFRESH_JOB_ID = "daily-refresh"


class PrayerScheduler:
    """Wrap APScheduler as a notification transport.

    Each request becomes a job whose id is the request identifier, added with
    ``replace_existing`` so scheduling the same identifier again replaces the
    pending job.
    """

    def __init__(
        self,
        timezone: str,
        on_notify: Optional[Callable[[NotificationRequest], None]] = None,
        misfire_grace_time: int = 60,
    ) -> None:
        self._scheduler = BackgroundScheduler(
            timezone=timezone,
            jobstores={"default": MemoryJobStore(), NOTIFICATION_JOBSTORE: MemoryJobStore()},
        )
        self._timezone = pytz.timezone(timezone)
        self._on_notify = on_notify
        self._misfire_grace_time = misfire_grace_time

    def start(self, paused: bool = False) -> None:
        if not self._scheduler.running:
            LOGGER.info("Starting background scheduler")
            self._scheduler.start(paused=paused)

    def shutdown(self) -> None:
        if self._scheduler.running:
            LOGGER.info("Stopping background scheduler")
            self._scheduler.shutdown(wait=False)

    @property
    def timezone(self) -> str:
        return self._timezone.zone

    def set_timezone(self, timezone: str) -> None:
        """Use *timezone* for triggers scheduled from now on."""
        if timezone == self.timezone:
            return
        LOGGER.debug("Switching trigger timezone from %s to %s", self.timezone, timezone)
        self._timezone = pytz.timezone(timezone)

    def schedule(self, request: NotificationRequest) -> None:
        """Upsert the job for *request*."""
        if isinstance(request.trigger, DailyRepeat):
            trigger = CronTrigger(
                hour=request.trigger.hour,
                minute=request.trigger.minute,
                timezone=self._timezone,
            )
        elif isinstance(request.trigger, OneOff):
            trigger = DateTrigger(run_date=request.trigger.timestamp, timezone=self._timezone)
        else:
            raise TypeError(f"Unsupported trigger {request.trigger!r}")

        job = self._scheduler.add_job(
            self._deliver,
            trigger=trigger,
            args=[request],
            id=request.identifier,
            name=request.title,
            jobstore=NOTIFICATION_JOBSTORE,
            replace_existing=True,
            coalesce=True,
            misfire_grace_time=self._misfire_grace_time,
        )
        LOGGER.debug("Scheduled notification job %s (%s)", job.id, request.trigger)

    def cancel_all(self) -> None:
        self._scheduler.remove_all_jobs(jobstore=NOTIFICATION_JOBSTORE)
        LOGGER.debug("Removed all notification jobs")

    def pending_identifiers(self) -> List[str]:
        return [job.id for job in self._scheduler.get_jobs(jobstore=NOTIFICATION_JOBSTORE)]

    def schedule_refresh(self, next_run: datetime, refresh_callback: Callable[[], None]) -> None:
        """Schedule a single refresh job, replacing any existing one."""
        with suppress_not_found():
            self._scheduler.remove_job(REFRESH_JOB_ID)

        trigger = DateTrigger(run_date=next_run, timezone=self._timezone)
        job = self._scheduler.add_job(refresh_callback, trigger=trigger, id=REFRESH_JOB_ID)
        LOGGER.debug("Scheduled refresh job %s at %s", job.id, next_run)

    def _deliver(self, request: NotificationRequest) -> None:
        LOGGER.info("Delivering notification %s", request.identifier)
        if self._on_notify is None:
            return
        try:
            self._on_notify(request)
        except Exception:
            LOGGER.exception("Notification handler failed for %s", request.identifier)


class suppress_not_found:
    """Context manager that suppresses APScheduler job lookup errors."""

    def __enter__(self) -> None:  # pragma: no cover - trivial
        return None

    def __exit__(self, exc_type, exc, tb) -> bool:  # pragma: no cover - trivial
        if exc_type is None:
            return False
        return isinstance(exc, JobLookupError)
