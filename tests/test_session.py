import threading
from datetime import date, datetime, timedelta

import pytest

from notifications import RefreshResult
from prayer_times import CalculationUnavailable, LocationInfo, TimeMarkSet
from session import PrayerSession
from settings import Settings
from storage import JsonStorage
from timeline import CompletionState, PrayerName, find_instant

DAY = date(2026, 3, 1)


def marks_for(day: date, fajr: str = "05:10") -> TimeMarkSet:
    return TimeMarkSet(
        day=day,
        fajr=fajr,
        sunrise="06:30",
        dhuhr="12:15",
        asr="15:45",
        maghrib="18:20",
        isha="19:40",
    )


class _FakeCalculator:
    def __init__(self) -> None:
        self.fail = False
        self.calls: list[date] = []

    def compute_daily_times(self, day, location, params=None):
        self.calls.append(day)
        if self.fail:
            raise CalculationUnavailable("offline")
        fajr = "05:09" if day > DAY else "05:10"
        return marks_for(day, fajr)


class _MemoryStore:
    def __init__(self) -> None:
        self.days: dict = {}
        self.marks: dict = {}

    def load_completion(self, day):
        return dict(self.days.get(day, {}))

    def save_completion(self, day, completion):
        self.days[day] = dict(completion)

    def load_marks(self, day):
        return self.marks.get(day)

    def latest_marks(self):
        return self.marks[max(self.marks)] if self.marks else None

    def save_marks(self, marks):
        self.marks[marks.day] = marks


class _FakeNotifier:
    def __init__(self) -> None:
        self.refreshes: list = []
        self.cancelled = 0
        self.gate = None

    def refresh(self, instants, settings, ramadan_window=None, now=None):
        if self.gate is not None:
            self.gate.wait(5)
        self.refreshes.append((instants, ramadan_window, now))
        return RefreshResult(scheduled=len(instants))

    def cancel_all(self):
        self.cancelled += 1
        return True

    def shutdown(self):
        return None


class _Clock:
    def __init__(self, value: datetime) -> None:
        self.value = value

    def __call__(self) -> datetime:
        return self.value


LOCATION = LocationInfo("Makkah", "Saudi Arabia", 21.4225, 39.8262, "Asia/Riyadh")


@pytest.fixture
def clock():
    return _Clock(datetime(2026, 3, 1, 13, 0))


@pytest.fixture
def calculator():
    return _FakeCalculator()


@pytest.fixture
def notifier():
    return _FakeNotifier()


@pytest.fixture
def store():
    return _MemoryStore()


@pytest.fixture
def session(calculator, store, notifier, clock):
    session = PrayerSession(calculator, store, notifier, LOCATION, Settings(), now_provider=clock)
    yield session
    session.shutdown()


def test_tick_never_calls_the_calculator(session, calculator, clock):
    for _ in range(5):
        assert session.tick() is None
    assert calculator.calls == []
    assert session.pending_work

    assert session.catch_up()
    resolution = session.tick()

    assert calculator.calls == [DAY]
    assert session.day == DAY
    assert resolution.next.name is PrayerName.ASR
    assert resolution.next.minutes_until == 165
    assert session.last_resolution is resolution
    assert not session.pending_work


def test_offline_ticks_do_not_retry_a_failed_day(session, calculator):
    calculator.fail = True
    session.tick()

    assert session.catch_up() is False
    for _ in range(5):
        session.tick()

    assert calculator.calls == [DAY]
    assert session.stale
    assert not session.pending_work


def test_failed_calculation_keeps_last_schedule(session, calculator):
    session.load_day(DAY)
    calculator.fail = True

    assert session.load_day(DAY) is False
    assert session.stale
    assert session.day == DAY
    assert len(session.instants) == 6

    calculator.fail = False
    assert session.load_day(DAY)
    assert not session.stale


def test_cold_start_offline_uses_cached_marks(session, calculator, store, clock):
    store.save_marks(marks_for(DAY - timedelta(days=1), fajr="05:11"))
    calculator.fail = True

    assert session.load_day(DAY) is False

    assert session.stale
    assert session.day == DAY
    assert find_instant(session.instants, "Fajr").clock_time == "05:11"
    assert session.tick().next.name is PrayerName.ASR


def test_loaded_marks_are_cached(session, store):
    session.load_day(DAY)

    assert store.load_marks(DAY) == marks_for(DAY)


def test_cold_start_offline_with_json_store(tmp_path, calculator, notifier, clock):
    storage = JsonStorage(tmp_path / "config.json")
    storage.save_marks(marks_for(DAY))
    calculator.fail = True
    session = PrayerSession(calculator, storage, notifier, LOCATION, Settings(), now_provider=clock)
    try:
        session.load_day(DAY)
    finally:
        session.shutdown()

    assert [i.clock_time for i in session.instants] == ["05:10", "06:30", "12:15", "15:45", "18:20", "19:40"]


def test_date_change_rebuilds_schedule_with_fresh_completion(session, clock):
    session.load_day(DAY)
    session.toggle("Fajr")
    assert find_instant(session.instants, "Fajr").completion_state is CompletionState.DONE

    clock.value = datetime(2026, 3, 2, 0, 1)
    session.tick()
    assert session.day == DAY
    assert session.pending_work

    session.catch_up()
    resolution = session.tick()

    assert session.day == DAY + timedelta(days=1)
    assert find_instant(session.instants, "Fajr").completion_state is CompletionState.PENDING
    assert resolution.next.name is PrayerName.FAJR


def test_completion_survives_reload_of_same_day(session):
    session.load_day(DAY)
    session.toggle("Asr")

    session.load_day(DAY)

    assert find_instant(session.instants, "Asr").completion_state is CompletionState.DONE


def test_rollover_uses_tomorrows_fajr_after_catch_up(session, calculator, clock):
    session.load_day(DAY)
    clock.value = datetime(2026, 3, 1, 20, 30)

    first = session.tick()
    assert first.is_rollover
    assert first.next.clock_time == "05:10"
    assert calculator.calls == [DAY]

    assert session.catch_up()
    resolution = session.tick()

    assert resolution.next.clock_time == "05:09"
    assert resolution.next.minutes_until == 210 + 309
    assert calculator.calls == [DAY, DAY + timedelta(days=1)]

    session.tick()
    assert not session.pending_work


def test_failed_tomorrow_fetch_is_remembered(session, calculator, clock):
    session.load_day(DAY)
    clock.value = datetime(2026, 3, 1, 20, 30)
    calculator.fail = True

    session.tick()
    assert session.catch_up() is False
    for _ in range(5):
        resolution = session.tick()

    assert resolution.next.clock_time == "05:10"
    assert calculator.calls == [DAY, DAY + timedelta(days=1)]
    assert not session.pending_work


def test_tick_does_not_wait_for_a_slow_calculator(session, calculator, clock):
    session.load_day(DAY)
    clock.value = datetime(2026, 3, 1, 20, 30)
    session.tick()
    entered = threading.Event()
    release = threading.Event()
    original = calculator.compute_daily_times

    def slow(day, location, params=None):
        entered.set()
        release.wait(5)
        return original(day, location, params)

    calculator.compute_daily_times = slow
    worker = threading.Thread(target=session.catch_up)
    worker.start()
    try:
        assert entered.wait(5)
        assert session.tick().is_rollover
    finally:
        release.set()
        worker.join()


def test_refresh_passes_current_schedule(session, notifier, clock):
    session.load_day(DAY)

    result = session.refresh_notifications()

    assert result.scheduled == 6
    instants, _, now = notifier.refreshes[0]
    assert [i.name for i in instants] == [i.name for i in session.instants]
    assert now == clock.value


def test_refresh_without_schedule_is_skipped(session, notifier):
    assert session.refresh_notifications() is None
    assert notifier.refreshes == []


def test_all_toggles_off_cancels_everything(session, notifier):
    session.load_day(DAY)
    session.update_settings(Settings(prayer_notifications=False, reminders_enabled=False, ramadan_reminders=False))

    result = session.refresh_notifications()

    assert result.scheduled == 0
    assert notifier.cancelled == 1
    assert notifier.refreshes == []


def test_concurrent_refresh_is_skipped_while_in_flight(session, notifier):
    session.load_day(DAY)
    notifier.gate = threading.Event()

    future = session.refresh_notifications_async()
    while not session._refresh_guard.locked():
        pass
    skipped = session.refresh_notifications()
    notifier.gate.set()

    assert skipped is None
    assert future.result(timeout=5).scheduled == 6
    assert len(notifier.refreshes) == 1


def test_changed_calculation_method_recomputes_on_catch_up(session, calculator):
    session.load_day(DAY)
    calls = len(calculator.calls)

    session.update_settings(Settings(calculation_method="UmmAlQura"))
    assert len(calculator.calls) == calls
    assert session.pending_work

    session.catch_up()
    assert len(calculator.calls) == calls + 1


def test_next_refresh_is_after_midnight(session):
    session.load_day(DAY)

    assert session.next_refresh_time() == datetime(2026, 3, 2, 0, 5)
