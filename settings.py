"""User preferences shared by the scheduling components."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from adhan_player import ADHAN_VALUES, DEFAULT_ADHAN
from prayer_times import CALCULATION_METHODS, DEFAULT_METHOD, MADHAB_SCHOOLS, CalculationParams

LOGGER = logging.getLogger(__name__)

DEFAULT_REMINDER_MINUTES = 15


def _default_offsets() -> Dict[str, int]:
    return {name: DEFAULT_REMINDER_MINUTES for name in ["Fajr", "Dhuhr", "Asr", "Maghrib", "Isha"]}


@dataclass
class Settings:
    prayer_notifications: bool = True
    reminders_enabled: bool = True
    reminder_offsets: Dict[str, int] = field(default_factory=_default_offsets)
    ramadan_reminders: bool = True
    sound_enabled: bool = True
    selected_adhan: str = DEFAULT_ADHAN
    sehri_offset_minutes: int = 10
    iftar_offset_minutes: int = 0
    tick_seconds: int = 30
    dispatch_timeout: Optional[float] = 5.0
    calculation_method: str = DEFAULT_METHOD
    madhab: str = "Shafi"
    auto_location: bool = True
    location: Optional[Dict[str, Any]] = None

    @property
    def calculation_params(self) -> CalculationParams:
        return CalculationParams(method=self.calculation_method, madhab=self.madhab)

    def reminder_offset(self, prayer: str) -> int:
        return int(self.reminder_offsets.get(prayer, 0) or 0)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "Settings":
        """Build settings from stored JSON, replacing invalid values with defaults."""
        settings = cls()
        if not isinstance(payload, dict):
            return settings

        for key in ("prayer_notifications", "reminders_enabled", "ramadan_reminders", "sound_enabled", "auto_location"):
            if key in payload:
                setattr(settings, key, bool(payload[key]))

        offsets = payload.get("reminder_offsets")
        if isinstance(offsets, dict):
            for name, minutes in offsets.items():
                value = _as_int(minutes)
                if value is None or value < 0:
                    LOGGER.warning("Ignoring invalid reminder offset %r for %s", minutes, name)
                    continue
                settings.reminder_offsets[str(name)] = value

        adhan = payload.get("selected_adhan")
        if adhan is not None:
            if adhan in ADHAN_VALUES:
                settings.selected_adhan = str(adhan)
            else:
                LOGGER.warning("Unknown adhan '%s'; keeping %s", adhan, settings.selected_adhan)

        for key in ("sehri_offset_minutes", "iftar_offset_minutes"):
            value = _as_int(payload.get(key))
            if value is not None and value >= 0:
                setattr(settings, key, value)

        tick = _as_int(payload.get("tick_seconds"))
        if tick is not None:
            settings.tick_seconds = min(60, max(1, tick))

        if "dispatch_timeout" in payload:
            timeout = payload.get("dispatch_timeout")
            try:
                settings.dispatch_timeout = float(timeout) if timeout is not None else None
            except (TypeError, ValueError):
                LOGGER.warning("Invalid dispatch timeout %r; keeping default", timeout)

        method = payload.get("calculation_method")
        if method in CALCULATION_METHODS:
            settings.calculation_method = str(method)
        elif method is not None:
            LOGGER.warning("Unknown calculation method '%s'; using %s", method, DEFAULT_METHOD)

        madhab = payload.get("madhab")
        if madhab in MADHAB_SCHOOLS:
            settings.madhab = str(madhab)

        if isinstance(payload.get("location"), dict):
            settings.location = dict(payload["location"])

        return settings


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
