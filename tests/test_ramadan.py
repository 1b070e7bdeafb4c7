from datetime import date, datetime

from hijridate import Hijri

from prayer_times import TimeMarkSet
from ramadan import build_ramadan_window, ramadan_day_number, sehri_iftar_times


def gregorian(year: int, month: int, day: int) -> date:
    return date(*Hijri(year, month, day).to_gregorian().datetuple())


def marks_for(day: date) -> TimeMarkSet:
    return TimeMarkSet(
        day=day,
        fajr="05:10",
        sunrise="06:30",
        dhuhr="12:15",
        asr="15:45",
        maghrib="18:20",
        isha="19:40",
    )


def test_ramadan_day_number_inside_ramadan():
    assert ramadan_day_number(gregorian(1447, 9, 10)) == 10
    assert ramadan_day_number(gregorian(1447, 9, 1)) == 1


def test_ramadan_day_number_outside_ramadan():
    assert ramadan_day_number(gregorian(1447, 10, 5)) is None
    assert ramadan_day_number(date(1800, 1, 1)) is None


def test_sehri_and_iftar_offsets():
    sehri, iftar = sehri_iftar_times(marks_for(date(2026, 3, 1)), 10, 3)

    assert sehri == datetime(2026, 3, 1, 5, 0)
    assert iftar == datetime(2026, 3, 1, 18, 23)


def test_window_only_built_during_ramadan():
    inside = build_ramadan_window(marks_for(gregorian(1447, 9, 10)))
    outside = build_ramadan_window(marks_for(gregorian(1447, 10, 5)))

    assert inside is not None
    assert inside.day_number == 10
    assert inside.sehri.time().strftime("%H:%M") == "05:00"
    assert inside.iftar.time().strftime("%H:%M") == "18:20"
    assert outside is None
