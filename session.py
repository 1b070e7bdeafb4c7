"""Single-user coordinator for the daily timeline, completion and notifications."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from typing import Callable, List, Optional, Protocol

from completion import CompletionStore, CompletionTracker, completed_count
from notifications import NotificationScheduler, RefreshResult
from prayer_times import CalculationParams, CalculationUnavailable, LocationInfo, TimeMarkSet
from ramadan import build_ramadan_window
from settings import Settings
from timeline import PrayerInstant, PrayerName, Resolution, build_schedule, resolve_next

LOGGER = logging.getLogger(__name__)


class Calculator(Protocol):
    def compute_daily_times(
        self, day: date, location: LocationInfo, params: Optional[CalculationParams] = None
    ) -> TimeMarkSet: ...


class SessionStore(CompletionStore, Protocol):
    def load_marks(self, day: date) -> Optional[TimeMarkSet]: ...

    def latest_marks(self) -> Optional[TimeMarkSet]: ...

    def save_marks(self, marks: TimeMarkSet) -> None: ...


class PrayerSession:
    """Owns today's instants for one user.

    ``tick`` and ``toggle`` only work on what is already loaded and never call
    the calculator. Calculator calls happen in ``load_day`` and ``catch_up``,
    which the application runs off the UI thread; the session lock is not held
    while they wait. When the calculator fails, the last known schedule (or the
    cached marks of a previous day) is kept and ``stale`` is set.
    """

    def __init__(
        self,
        calculator: Calculator,
        storage: SessionStore,
        notifier: NotificationScheduler,
        location: LocationInfo,
        settings: Settings,
        now_provider: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._calculator = calculator
        self._storage = storage
        self._tracker = CompletionTracker(storage)
        self._notifier = notifier
        self.location = location
        self.settings = settings
        self._now = now_provider
        self._lock = threading.RLock()
        self._refresh_guard = threading.Lock()
        self._catch_up_guard = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="notification-refresh")

        self.marks: Optional[TimeMarkSet] = None
        self.instants: List[PrayerInstant] = []
        self.stale = False
        self.last_resolution: Optional[Resolution] = None
        self._tomorrow_marks: Optional[TimeMarkSet] = None
        self._tomorrow_failed = False
        self._tomorrow_due = False
        self._reload_due = False
        self._failed_day: Optional[date] = None

    @property
    def day(self) -> Optional[date]:
        return self.marks.day if self.marks else None

    @property
    def pending_work(self) -> bool:
        """True when a tick found calculator work for :meth:`catch_up`."""
        with self._lock:
            return self._reload_due or self._tomorrow_due

    def load_day(self, day: date) -> bool:
        """Build the schedule of *day*; keep the previous one if the calculator fails."""
        with self._lock:
            location, params = self.location, self.settings.calculation_params
        try:
            marks = self._calculator.compute_daily_times(day, location, params)
        except CalculationUnavailable:
            LOGGER.warning("Time marks unavailable for %s; keeping last known schedule", day, exc_info=True)
            with self._lock:
                self.stale = True
                self._failed_day = day
                self._reload_due = False
                if self.marks is None:
                    self._apply_cached(day)
            return False

        self._storage.save_marks(marks)
        with self._lock:
            self._apply(marks, day)
            self.stale = False
            self._failed_day = None
            LOGGER.info("Loaded schedule for %s (%d/5 prayed)", day, completed_count(self.instants))
        return True

    def catch_up(self) -> bool:
        """Run the calculator calls deferred by :meth:`tick`.

        Returns True when new marks were loaded. Concurrent calls return False
        immediately.
        """
        if not self._catch_up_guard.acquire(blocking=False):
            LOGGER.debug("Catch-up already running; skipping")
            return False
        try:
            with self._lock:
                reload_due = self._reload_due
                today = self._now().date()
            loaded = self.load_day(today) if reload_due else False

            with self._lock:
                tomorrow_due = self._tomorrow_due and self.marks is not None
            if tomorrow_due:
                loaded = self._load_tomorrow() or loaded
            return loaded
        finally:
            self._catch_up_guard.release()

    def tick(self) -> Optional[Resolution]:
        """Re-resolve the next prayer against the loaded schedule.

        A date change or a missing schedule is only recorded; the reload runs
        in :meth:`catch_up`. A day whose reload already failed is not retried
        until the next explicit :meth:`load_day`.
        """
        with self._lock:
            now = self._now()
            today = now.date()
            if (self.marks is None or self.marks.day != today) and self._failed_day != today:
                if not self._reload_due:
                    LOGGER.debug("Schedule for %s not loaded; reload deferred", today)
                self._reload_due = True
            if not self.instants:
                return None
            return self._resolve(now)

    def toggle(self, name: str) -> Optional[Resolution]:
        with self._lock:
            if not self.instants:
                return None
            self._tracker.toggle(self.instants, name)
            return self._resolve(self._now())

    def update_settings(self, settings: Settings) -> None:
        with self._lock:
            recalculate = settings.calculation_params != self.settings.calculation_params
            self.settings = settings
            if recalculate and self.marks is not None:
                LOGGER.debug("Calculation parameters changed; recompute of %s deferred", self.marks.day)
                self._reset_tomorrow()
                self._failed_day = None
                self._reload_due = True

    def update_location(self, location: LocationInfo) -> bool:
        with self._lock:
            self.location = location
            self._reset_tomorrow()
            day = self._now().date()
        return self.load_day(day)

    def refresh_notifications(self) -> Optional[RefreshResult]:
        """Re-arm the day's notifications; skipped when a refresh is already running."""
        if not self._refresh_guard.acquire(blocking=False):
            LOGGER.info("Notification refresh already in flight; skipping")
            return None
        try:
            with self._lock:
                if self.marks is None:
                    LOGGER.warning("No schedule loaded; nothing to notify")
                    return None
                instants = list(self.instants)
                settings = self.settings
                marks = self.marks

            if not (settings.prayer_notifications or settings.reminders_enabled or settings.ramadan_reminders):
                self._notifier.cancel_all()
                return RefreshResult()

            window = None
            if settings.ramadan_reminders:
                window = build_ramadan_window(marks, settings.sehri_offset_minutes, settings.iftar_offset_minutes)
            result = self._notifier.refresh(instants, settings, ramadan_window=window, now=self._now())
            if result.error is not None:
                LOGGER.warning("Partial notification failure: %s", result.error.failures)
            return result
        finally:
            self._refresh_guard.release()

    def refresh_notifications_async(self) -> "Future[Optional[RefreshResult]]":
        return self._executor.submit(self.refresh_notifications)

    def next_refresh_time(self) -> datetime:
        """Five past midnight after the loaded day, in the clock's zone."""
        now = self._now()
        day = (self.day or now.date()) + timedelta(days=1)
        naive = datetime.combine(day, time(hour=0, minute=5))
        tzinfo = now.tzinfo
        if tzinfo is not None and hasattr(tzinfo, "localize"):
            return tzinfo.localize(naive)
        return naive.replace(tzinfo=tzinfo)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
        self._notifier.shutdown()

    def _apply(self, marks: TimeMarkSet, day: date) -> None:
        self.marks = marks
        self.instants = self._tracker.restore(build_schedule(marks, day))
        self._reload_due = False
        self._reset_tomorrow()

    def _apply_cached(self, day: date) -> None:
        cached = self._storage.load_marks(day) or self._storage.latest_marks()
        if cached is None:
            LOGGER.warning("No cached time marks; nothing to show for %s", day)
            return
        LOGGER.info("Using cached time marks of %s for %s", cached.day, day)
        self._apply(replace(cached, day=day), day)

    def _reset_tomorrow(self) -> None:
        self._tomorrow_marks = None
        self._tomorrow_failed = False
        self._tomorrow_due = False

    def _load_tomorrow(self) -> bool:
        with self._lock:
            if self.marks is None:
                return False
            tomorrow = self.marks.day + timedelta(days=1)
            location, params = self.location, self.settings.calculation_params
        try:
            marks = self._calculator.compute_daily_times(tomorrow, location, params)
        except CalculationUnavailable:
            LOGGER.warning("Tomorrow's marks unavailable; countdown uses today's Fajr")
            with self._lock:
                self._tomorrow_failed = True
                self._tomorrow_due = False
            return False

        with self._lock:
            if self.marks is None or self.marks.day + timedelta(days=1) != tomorrow:
                LOGGER.debug("Schedule changed while fetching %s; discarding", tomorrow)
                return False
            self._tomorrow_marks = marks
            self._tomorrow_due = False
        return True

    def _resolve(self, now: datetime) -> Resolution:
        tomorrow_fajr = self._tomorrow_marks.mark(PrayerName.FAJR.value) if self._tomorrow_marks else None
        resolution = resolve_next(self.instants, now, tomorrow_fajr)
        if resolution.is_rollover and self._tomorrow_marks is None and not self._tomorrow_failed:
            self._tomorrow_due = True
        self.last_resolution = resolution
        return resolution
