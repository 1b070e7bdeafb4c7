"""Daily prayer timeline: building the instants and resolving the next one."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from enum import Enum
from typing import List, Optional, Union

from prayer_times import TimeMarkSet, parse_clock

LOGGER = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


class PrayerName(str, Enum):
    FAJR = "Fajr"
    SUNRISE = "Sunrise"
    DHUHR = "Dhuhr"
    ASR = "Asr"
    MAGHRIB = "Maghrib"
    ISHA = "Isha"


SCHEDULE_ORDER = [
    PrayerName.FAJR,
    PrayerName.SUNRISE,
    PrayerName.DHUHR,
    PrayerName.ASR,
    PrayerName.MAGHRIB,
    PrayerName.ISHA,
]
ACTIONABLE_PRAYERS = [name for name in SCHEDULE_ORDER if name is not PrayerName.SUNRISE]


class CompletionState(Enum):
    NOT_APPLICABLE = "not_applicable"
    PENDING = "pending"
    DONE = "done"


@dataclass
class PrayerInstant:
    name: PrayerName
    clock_time: str
    day: date
    completion_state: CompletionState
    is_upcoming: bool = False
    minutes_until: Optional[int] = None

    @property
    def actionable(self) -> bool:
        return self.completion_state is not CompletionState.NOT_APPLICABLE

    @property
    def minutes_since_midnight(self) -> int:
        return clock_to_minutes(self.clock_time)

    def at(self, tz: Optional[tzinfo] = None) -> datetime:
        """Return the instant as a datetime, localized to *tz* when given."""
        naive = datetime.combine(self.day, parse_clock(self.clock_time))
        if tz is None:
            return naive
        if hasattr(tz, "localize"):
            return tz.localize(naive)
        return naive.replace(tzinfo=tz)


@dataclass
class RolloverToTomorrow:
    """Every prayer of today has passed; the next one is tomorrow's Fajr."""

    clock_time: str
    day: date
    minutes_until: int
    name: PrayerName = PrayerName.FAJR


@dataclass
class Resolution:
    instants: List[PrayerInstant]
    next: Union[PrayerInstant, RolloverToTomorrow]

    @property
    def is_rollover(self) -> bool:
        return isinstance(self.next, RolloverToTomorrow)


def clock_to_minutes(clock: str) -> int:
    parsed = parse_clock(clock)
    return parsed.hour * 60 + parsed.minute


def format_countdown(minutes: Optional[int]) -> str:
    if not minutes:
        return ""
    hours, mins = divmod(int(minutes), 60)
    if hours > 0:
        return f"{hours}h {mins}m"
    return f"{mins}m"


def build_schedule(marks: TimeMarkSet, day: Optional[date] = None) -> List[PrayerInstant]:
    """Create the six instants of *day* in their fixed order."""
    day = day or marks.day
    instants = [
        PrayerInstant(
            name=name,
            clock_time=marks.mark(name.value),
            day=day,
            completion_state=(
                CompletionState.NOT_APPLICABLE if name is PrayerName.SUNRISE else CompletionState.PENDING
            ),
        )
        for name in SCHEDULE_ORDER
    ]
    LOGGER.debug("Built schedule for %s: %s", day, [(i.name.value, i.clock_time) for i in instants])
    return instants


def resolve_next(
    instants: List[PrayerInstant],
    now: datetime,
    tomorrow_fajr: Optional[str] = None,
) -> Resolution:
    """Mark the upcoming instant relative to *now* or report a rollover.

    Past prayers keep their completion state; only the user marks a prayer done.
    When every prayer has passed, the countdown is computed against
    *tomorrow_fajr* (tomorrow's Fajr mark). Without it today's Fajr is used.
    """
    now_minutes = now.hour * 60 + now.minute
    for instant in instants:
        instant.is_upcoming = False
        instant.minutes_until = None

    for instant in instants:
        if not instant.actionable:
            continue
        minutes = instant.minutes_since_midnight
        if minutes < now_minutes:
            continue
        instant.is_upcoming = True
        instant.minutes_until = minutes - now_minutes
        LOGGER.debug("Next prayer is %s in %d minutes", instant.name.value, instant.minutes_until)
        return Resolution(instants=instants, next=instant)

    fajr = next(i for i in instants if i.name is PrayerName.FAJR)
    if tomorrow_fajr is None:
        LOGGER.debug("Tomorrow's Fajr unknown; using today's mark %s", fajr.clock_time)
        tomorrow_fajr = fajr.clock_time
    rollover = RolloverToTomorrow(
        clock_time=tomorrow_fajr,
        day=fajr.day + timedelta(days=1),
        minutes_until=(MINUTES_PER_DAY - now_minutes) + clock_to_minutes(tomorrow_fajr),
    )
    LOGGER.debug("All prayers passed; rollover to Fajr in %d minutes", rollover.minutes_until)
    return Resolution(instants=instants, next=rollover)


def find_instant(instants: List[PrayerInstant], name: Union[str, PrayerName]) -> Optional[PrayerInstant]:
    key = name.value if isinstance(name, PrayerName) else str(name)
    for instant in instants:
        if instant.name.value.lower() == key.lower():
            return instant
    return None
