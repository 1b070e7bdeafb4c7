"""Derivation and dispatch of prayer notification requests."""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Dict, List, Optional, Protocol, Union

from adhan_player import get_adhan_by_value
from ramadan import RamadanWindow
from settings import Settings
from timeline import PrayerInstant, PrayerName

LOGGER = logging.getLogger(__name__)

KIND_PRAYER_TIME = "prayer-time"
KIND_REMINDER = "prayer-reminder"
KIND_RAMADAN = "ramadan-special"


@dataclass(frozen=True)
class NotificationChannel:
    id: str
    name: str
    importance: str
    bypass_dnd: bool = False


FAJR_CHANNEL = NotificationChannel("fajr-prayer", "Fajr Prayer", "high", bypass_dnd=True)
REGULAR_CHANNEL = NotificationChannel("regular-prayers", "Regular Prayers", "default")
REMINDER_CHANNEL = NotificationChannel("prayer-reminders", "Prayer Reminders", "low")
RAMADAN_CHANNEL = NotificationChannel("ramadan-special", "Ramadan Special", "high", bypass_dnd=True)
CHANNELS = {channel.id: channel for channel in (FAJR_CHANNEL, REGULAR_CHANNEL, REMINDER_CHANNEL, RAMADAN_CHANNEL)}


@dataclass(frozen=True)
class DailyRepeat:
    hour: int
    minute: int


@dataclass(frozen=True)
class OneOff:
    timestamp: datetime


Trigger = Union[DailyRepeat, OneOff]


@dataclass(frozen=True)
class NotificationRequest:
    identifier: str
    title: str
    body: str
    channel: NotificationChannel
    trigger: Trigger
    kind: str = KIND_PRAYER_TIME
    prayer: Optional[str] = None
    sound: Optional[str] = None


class NotificationTransport(Protocol):
    def schedule(self, request: NotificationRequest) -> None: ...

    def cancel_all(self) -> None: ...


class SchedulingPartialFailure(RuntimeError):
    """One or more notification requests could not be scheduled."""

    def __init__(self, failures: Dict[str, str]) -> None:
        super().__init__(f"Failed to schedule {len(failures)} notification(s): {', '.join(sorted(failures))}")
        self.failures = failures


@dataclass
class RefreshResult:
    scheduled: int = 0
    identifiers: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    error: Optional[SchedulingPartialFailure] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ChannelPolicy:
    """Choose the channel of a request from its kind and prayer."""

    fajr: NotificationChannel = FAJR_CHANNEL
    regular: NotificationChannel = REGULAR_CHANNEL
    reminder: NotificationChannel = REMINDER_CHANNEL
    ramadan: NotificationChannel = RAMADAN_CHANNEL

    def channel_for(self, kind: str, prayer: Optional[str] = None) -> NotificationChannel:
        if kind == KIND_RAMADAN:
            return self.ramadan
        if kind == KIND_REMINDER:
            return self.reminder
        if prayer == PrayerName.FAJR.value:
            return self.fajr
        return self.regular


def daily_identifier(prayer: str) -> str:
    return f"{prayer.lower()}-daily"


def reminder_identifier(prayer: str) -> str:
    return f"{prayer.lower()}-reminder"


def ramadan_identifier(kind: str, day_number: int) -> str:
    return f"ramadan-{kind}-day-{day_number}"


class NotificationScheduler:
    """Arm the day's notifications through an upserting transport.

    Requests carry fixed identifiers, so refreshing twice replaces the pending
    requests instead of duplicating them. A failing dispatch does not stop the
    remaining ones; failures come back in :class:`RefreshResult`. A dispatch
    that outlives its timeout keeps running; the next refresh or cancel waits
    for it so it cannot overwrite a newer job with the same identifier.
    """

    def __init__(
        self,
        transport: NotificationTransport,
        channel_policy: Optional[ChannelPolicy] = None,
        dispatch_timeout: Optional[float] = None,
    ) -> None:
        self._transport = transport
        self._policy = channel_policy or ChannelPolicy()
        self._dispatch_timeout = dispatch_timeout
        self._executor: Optional[ThreadPoolExecutor] = None
        self._late: List[Future] = []
        if dispatch_timeout is not None:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="notification-dispatch")

    def build_requests(
        self,
        instants: List[PrayerInstant],
        settings: Settings,
        now: datetime,
        ramadan_window: Optional[RamadanWindow] = None,
        skipped: Optional[List[str]] = None,
    ) -> List[NotificationRequest]:
        skipped = skipped if skipped is not None else []
        requests: List[NotificationRequest] = []
        tz = now.tzinfo
        sound = get_adhan_by_value(settings.selected_adhan).notification_sound if settings.sound_enabled else None

        for instant in instants:
            if not instant.actionable:
                continue
            prayer = instant.name.value
            clock = instant.at(tz)

            if settings.prayer_notifications:
                requests.append(
                    NotificationRequest(
                        identifier=daily_identifier(prayer),
                        title=f"{prayer} Prayer Time",
                        body=f"It's time for {prayer} prayer. May Allah accept your prayers.",
                        channel=self._policy.channel_for(KIND_PRAYER_TIME, prayer),
                        trigger=DailyRepeat(hour=clock.hour, minute=clock.minute),
                        kind=KIND_PRAYER_TIME,
                        prayer=prayer,
                        sound=sound,
                    )
                )

            offset = settings.reminder_offset(prayer)
            if not settings.reminders_enabled or offset <= 0:
                continue
            reminder_time = clock - timedelta(minutes=offset)
            if reminder_time <= now:
                LOGGER.debug("Reminder for %s at %s already passed; skipping for today", prayer, reminder_time)
                skipped.append(reminder_identifier(prayer))
                continue
            requests.append(
                NotificationRequest(
                    identifier=reminder_identifier(prayer),
                    title=f"{prayer} Prayer Reminder",
                    body=f"{prayer} prayer starts in {offset} minutes. Prepare for prayer.",
                    channel=self._policy.channel_for(KIND_REMINDER, prayer),
                    trigger=OneOff(timestamp=reminder_time),
                    kind=KIND_REMINDER,
                    prayer=prayer,
                )
            )

        if ramadan_window is not None and settings.ramadan_reminders:
            requests.extend(self._ramadan_requests(ramadan_window, now, skipped))
        return requests

    def _ramadan_requests(
        self, window: RamadanWindow, now: datetime, skipped: List[str]
    ) -> List[NotificationRequest]:
        day = window.day_number
        entries = [
            ("sehri", window.sehri, "Time for Sehri", f"Sehri time for Day {day}. Have a blessed fast!"),
            ("iftar", window.iftar, "Iftar Time", f"Iftar time for Day {day}. Break your fast with dates!"),
        ]
        requests = []
        for kind, when, title, body in entries:
            identifier = ramadan_identifier(kind, day)
            timestamp = _localize(when, now.tzinfo)
            if timestamp <= now:
                LOGGER.debug("Ramadan %s for day %d already passed; skipping", kind, day)
                skipped.append(identifier)
                continue
            requests.append(
                NotificationRequest(
                    identifier=identifier,
                    title=title,
                    body=body,
                    channel=self._policy.channel_for(KIND_RAMADAN),
                    trigger=OneOff(timestamp=timestamp),
                    kind=KIND_RAMADAN,
                )
            )
        return requests

    def refresh(
        self,
        instants: List[PrayerInstant],
        settings: Settings,
        ramadan_window: Optional[RamadanWindow] = None,
        now: Optional[datetime] = None,
    ) -> RefreshResult:
        now = now or datetime.now()
        self._await_late_dispatches()
        result = RefreshResult()
        requests = self.build_requests(instants, settings, now, ramadan_window, skipped=result.skipped)
        failures: Dict[str, str] = {}

        for request in requests:
            try:
                self._dispatch(request)
            except Exception as exc:
                LOGGER.error("Error scheduling %s notification: %s", request.identifier, exc)
                failures[request.identifier] = str(exc) or exc.__class__.__name__
                continue
            result.scheduled += 1
            result.identifiers.append(request.identifier)
            LOGGER.debug("Scheduled %s (%s) on channel %s", request.identifier, request.trigger, request.channel.id)

        if failures:
            result.error = SchedulingPartialFailure(failures)
        LOGGER.info(
            "Notification refresh: %d scheduled, %d skipped, %d failed",
            result.scheduled,
            len(result.skipped),
            len(failures),
        )
        return result

    def cancel_all(self) -> bool:
        self._await_late_dispatches()
        try:
            self._transport.cancel_all()
        except Exception:
            LOGGER.exception("Error cancelling notifications")
            return False
        LOGGER.info("All scheduled notifications cancelled")
        return True

    def shutdown(self) -> None:
        if self._executor:
            self._executor.shutdown(wait=False)

    def _dispatch(self, request: NotificationRequest) -> None:
        if self._executor is None:
            self._transport.schedule(request)
            return
        future = self._executor.submit(self._transport.schedule, request)
        try:
            future.result(timeout=self._dispatch_timeout)
        except FutureTimeoutError as exc:
            if not future.cancel():
                self._late.append(future)
            raise TimeoutError(f"dispatch timed out after {self._dispatch_timeout}s") from exc

    def _await_late_dispatches(self) -> None:
        late, self._late = self._late, []
        pending = [future for future in late if not future.done()]
        if pending:
            LOGGER.info("Waiting for %d timed-out dispatch(es) before scheduling again", len(pending))
            wait(pending)


def _localize(value: datetime, tz: Optional[tzinfo]) -> datetime:
    if tz is None or value.tzinfo is not None:
        return value
    if hasattr(tz, "localize"):
        return tz.localize(value)
    return value.replace(tzinfo=tz)
