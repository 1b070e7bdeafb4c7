"""Utilities for detecting location and fetching the daily time marks."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Dict, Optional

import pytz
import requests
from tzlocal import get_localzone_name

LOGGER = logging.getLogger(__name__)

ALADHAN_TIMINGS_URL = "https://api.aladhan.com/v1/timings"
ALADHAN_TIMINGS_BY_CITY_URL = "https://api.aladhan.com/v1/timingsByCity"
MARK_ORDER = ["Fajr", "Sunrise", "Dhuhr", "Asr", "Maghrib", "Isha"]

# AlAdhan method ids for the named calculation methods offered in settings.
CALCULATION_METHODS: Dict[str, int] = {
    "Karachi": 1,
    "NorthAmerica": 2,
    "MuslimWorldLeague": 3,
    "UmmAlQura": 4,
    "Egyptian": 5,
    "Kuwait": 9,
    "Qatar": 10,
    "Singapore": 11,
    "MoonsightingCommittee": 15,
    "Dubai": 16,
}
DEFAULT_METHOD = "MuslimWorldLeague"
MADHAB_SCHOOLS: Dict[str, int] = {"Shafi": 0, "Hanafi": 1}

DEFAULT_LOCATION = {
    "city": "Makkah",
    "country": "Saudi Arabia",
    "latitude": 21.4225,
    "longitude": 39.8262,
    "timezone": "Asia/Riyadh",
}


class CalculationUnavailable(RuntimeError):
    """Raised when the daily time marks cannot be produced."""


@dataclass
class LocationInfo:
    city: str
    country: str
    latitude: Optional[float]
    longitude: Optional[float]
    timezone: Optional[str]


@dataclass(frozen=True)
class CalculationParams:
    method: str = DEFAULT_METHOD
    madhab: str = "Shafi"

    @property
    def method_id(self) -> int:
        return CALCULATION_METHODS.get(self.method, CALCULATION_METHODS[DEFAULT_METHOD])

    @property
    def school(self) -> int:
        return MADHAB_SCHOOLS.get(self.madhab, 0)


@dataclass(frozen=True)
class TimeMarkSet:
    """The six wall-clock marks of one calendar date, as 24-hour ``HH:MM`` strings."""

    day: date
    fajr: str
    sunrise: str
    dhuhr: str
    asr: str
    maghrib: str
    isha: str

    def mark(self, name: str) -> str:
        return getattr(self, name.lower())

    def as_dict(self) -> Dict[str, str]:
        return {name: self.mark(name) for name in MARK_ORDER}


def parse_clock(value: str) -> time:
    """Parse ``HH:MM`` (tolerating suffixes such as ``"05:10 (EET)"``)."""
    clean = "".join(ch for ch in str(value) if ch.isdigit() or ch == ":")[:5]
    if len(clean) != 5:
        raise ValueError(f"Invalid clock time: {value!r}")
    hour, minute = map(int, clean.split(":"))
    return time(hour=hour, minute=minute)


def resolve_timezone(name: Optional[str]) -> pytz.BaseTzInfo:
    """Return a pytz zone for *name*, falling back to the system zone then UTC."""
    candidates = [name]
    try:
        candidates.append(get_localzone_name())
    except Exception:  # pragma: no cover - platform dependent
        LOGGER.debug("System timezone lookup failed", exc_info=True)
    for candidate in candidates:
        if not candidate:
            continue
        try:
            return pytz.timezone(candidate)
        except pytz.UnknownTimeZoneError:
            LOGGER.warning("Unknown timezone '%s'; trying next fallback", candidate)
    return pytz.UTC


class PrayerTimesService:
    """Computes daily time marks through the AlAdhan API."""

    def __init__(self, timeout: int = 10) -> None:
        self.timeout = timeout

    def compute_daily_times(
        self,
        day: date,
        location: LocationInfo,
        params: Optional[CalculationParams] = None,
    ) -> TimeMarkSet:
        params = params or CalculationParams()
        use_city_lookup = location.latitude is None or location.longitude is None
        LOGGER.debug(
            "Fetching time marks for %s, %s (date=%s mode=%s method=%s)",
            location.city,
            location.country,
            day,
            "city" if use_city_lookup else "coordinates",
            params.method,
        )

        query: Dict[str, object] = {
            "method": params.method_id,
            "school": params.school,
            "date": day.strftime("%d-%m-%Y"),
        }
        if use_city_lookup:
            query.update({"city": location.city, "country": location.country})
            url = ALADHAN_TIMINGS_BY_CITY_URL
        else:
            query.update({"latitude": location.latitude, "longitude": location.longitude})
            url = ALADHAN_TIMINGS_URL

        try:
            response = requests.get(url, params=query, timeout=self.timeout)
            LOGGER.debug("Time marks response status: %s", response.status_code)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise CalculationUnavailable(f"AlAdhan request failed: {exc}") from exc

        if payload.get("code") != 200:
            raise CalculationUnavailable(f"Invalid response from AlAdhan API: {payload.get('status')}")

        timings: Dict[str, str] = (payload.get("data") or {}).get("timings") or {}
        marks: Dict[str, str] = {}
        for name in MARK_ORDER:
            raw = timings.get(name)
            if raw is None:
                raise CalculationUnavailable(f"AlAdhan response is missing {name}")
            try:
                marks[name.lower()] = parse_clock(raw).strftime("%H:%M")
            except ValueError as exc:
                raise CalculationUnavailable(str(exc)) from exc

        LOGGER.debug("Parsed time marks for %s: %s", day, marks)
        return TimeMarkSet(day=day, **marks)


def detect_location_from_ip(timeout: int = 5) -> LocationInfo:
    """Attempt to detect approximate location using the ipinfo.io service."""
    LOGGER.debug("Requesting IP-based location from ipinfo.io (timeout=%s)", timeout)
    response = requests.get("https://ipinfo.io/json", timeout=timeout)
    LOGGER.debug("ipinfo.io response status: %s", response.status_code)
    response.raise_for_status()
    payload = response.json()

    loc_token = payload.get("loc", "0,0")
    latitude, longitude = map(float, loc_token.split(","))
    timezone = resolve_timezone(payload.get("timezone")).zone

    LOGGER.debug(
        "Constructed LocationInfo from ipinfo.io: city=%s country=%s tz=%s",
        payload.get("city", ""),
        payload.get("country", ""),
        timezone,
    )
    return LocationInfo(
        city=payload.get("city", ""),
        country=payload.get("country", ""),
        latitude=latitude,
        longitude=longitude,
        timezone=timezone,
    )


def build_location_from_config(location_cfg: Optional[Dict[str, object]]) -> Optional[LocationInfo]:
    """Create a LocationInfo instance if the stored settings contain the required data."""
    if not isinstance(location_cfg, dict):
        return None

    try:
        return LocationInfo(
            city=str(location_cfg.get("city", "")),
            country=str(location_cfg.get("country", "")),
            latitude=_safe_float(location_cfg.get("latitude")),
            longitude=_safe_float(location_cfg.get("longitude")),
            timezone=str(location_cfg.get("timezone")) if location_cfg.get("timezone") else None,
        )
    except (KeyError, TypeError, ValueError):
        LOGGER.exception("Invalid location config: %s", location_cfg)
        return None


def default_location() -> LocationInfo:
    return LocationInfo(
        city=str(DEFAULT_LOCATION["city"]),
        country=str(DEFAULT_LOCATION["country"]),
        latitude=float(DEFAULT_LOCATION["latitude"]),
        longitude=float(DEFAULT_LOCATION["longitude"]),
        timezone=str(DEFAULT_LOCATION["timezone"]),
    )


def now_in(location: LocationInfo) -> datetime:
    return datetime.now(resolve_timezone(location.timezone))


def _safe_float(value: Optional[object]) -> Optional[float]:
    try:
        if value in (None, ""):
            return None
        return float(value)
    except (TypeError, ValueError):
        return None
