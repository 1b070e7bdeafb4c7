"""Ramadan day lookup and the sehri/iftar windows derived from the daily marks."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Tuple

from hijridate import Gregorian

from prayer_times import TimeMarkSet, parse_clock

LOGGER = logging.getLogger(__name__)

RAMADAN_MONTH = 9


@dataclass(frozen=True)
class RamadanWindow:
    day_number: int
    sehri: datetime
    iftar: datetime


def ramadan_day_number(day: date) -> Optional[int]:
    """Return the day of Ramadan (1-30) for *day*, or None outside Ramadan."""
    try:
        hijri = Gregorian(day.year, day.month, day.day).to_hijri()
    except (OverflowError, ValueError):
        LOGGER.warning("Date %s is outside the supported Hijri range", day)
        return None
    if hijri.month != RAMADAN_MONTH:
        return None
    return hijri.day


def sehri_iftar_times(
    marks: TimeMarkSet,
    sehri_offset_minutes: int = 10,
    iftar_offset_minutes: int = 0,
) -> Tuple[datetime, datetime]:
    """Sehri ends *sehri_offset_minutes* before Fajr; iftar is Maghrib plus its offset."""
    fajr = datetime.combine(marks.day, parse_clock(marks.fajr))
    maghrib = datetime.combine(marks.day, parse_clock(marks.maghrib))
    return (
        fajr - timedelta(minutes=sehri_offset_minutes),
        maghrib + timedelta(minutes=iftar_offset_minutes),
    )


def build_ramadan_window(
    marks: TimeMarkSet,
    sehri_offset_minutes: int = 10,
    iftar_offset_minutes: int = 0,
) -> Optional[RamadanWindow]:
    day_number = ramadan_day_number(marks.day)
    if day_number is None:
        return None
    sehri, iftar = sehri_iftar_times(marks, sehri_offset_minutes, iftar_offset_minutes)
    LOGGER.debug("Ramadan day %d: sehri=%s iftar=%s", day_number, sehri, iftar)
    return RamadanWindow(day_number=day_number, sehri=sehri, iftar=iftar)
