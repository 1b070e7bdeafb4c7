from datetime import date, datetime

import pytest

from completion import CompletionTracker, completed_count, completion_map, completion_ratio
from prayer_times import TimeMarkSet
from timeline import CompletionState, PrayerName, build_schedule, find_instant

DAY = date(2026, 3, 1)


class _MemoryStore:
    def __init__(self) -> None:
        self.days: dict = {}
        self.saves = 0

    def load_completion(self, day: date) -> dict:
        return dict(self.days.get(day, {}))

    def save_completion(self, day: date, completion: dict) -> None:
        self.saves += 1
        self.days[day] = dict(completion)


@pytest.fixture
def instants():
    return build_schedule(
        TimeMarkSet(
            day=DAY,
            fajr="05:10",
            sunrise="06:30",
            dhuhr="12:15",
            asr="15:45",
            maghrib="18:20",
            isha="19:40",
        )
    )


def test_toggle_twice_restores_pending(instants):
    tracker = CompletionTracker(_MemoryStore())

    tracker.toggle(instants, "Dhuhr")
    assert find_instant(instants, "Dhuhr").completion_state is CompletionState.DONE
    tracker.toggle(instants, "dhuhr")
    assert find_instant(instants, "Dhuhr").completion_state is CompletionState.PENDING


def test_toggle_sunrise_is_a_no_op(instants):
    store = _MemoryStore()
    tracker = CompletionTracker(store)

    tracker.toggle(instants, PrayerName.SUNRISE)

    assert find_instant(instants, "Sunrise").completion_state is CompletionState.NOT_APPLICABLE
    assert store.saves == 0


def test_toggle_unknown_prayer_is_ignored(instants):
    store = _MemoryStore()

    CompletionTracker(store).toggle(instants, "Tahajjud")

    assert store.saves == 0
    assert completed_count(instants) == 0


def test_toggle_persists_the_days_map(instants):
    store = _MemoryStore()

    CompletionTracker(store).toggle(instants, "Fajr")

    assert store.days[DAY] == {"Fajr": True, "Dhuhr": False, "Asr": False, "Maghrib": False, "Isha": False}


def test_toggle_with_clock_keeps_single_upcoming(instants):
    tracker = CompletionTracker(_MemoryStore())

    tracker.toggle(instants, "Fajr", now=datetime(2026, 3, 1, 13, 0))

    assert [i.name for i in instants if i.is_upcoming] == [PrayerName.ASR]


def test_restore_applies_stored_completion(instants):
    store = _MemoryStore()
    store.days[DAY] = {"Fajr": True, "Asr": True, "Sunrise": True}

    CompletionTracker(store).restore(instants)

    assert completion_map(instants) == {
        "Fajr": True,
        "Dhuhr": False,
        "Asr": True,
        "Maghrib": False,
        "Isha": False,
    }
    assert find_instant(instants, "Sunrise").completion_state is CompletionState.NOT_APPLICABLE


def test_completion_ratio(instants):
    tracker = CompletionTracker(_MemoryStore())
    assert completion_ratio(instants) == 0.0

    tracker.toggle(instants, "Fajr")
    tracker.toggle(instants, "Maghrib")

    assert completed_count(instants) == 2
    assert completion_ratio(instants) == pytest.approx(0.4)
    assert completion_ratio([]) == 0.0
