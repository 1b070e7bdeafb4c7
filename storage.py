"""JSON file persistence for settings, per-date completion and cached time marks."""
from __future__ import annotations

import json
import logging
import threading
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

from prayer_times import MARK_ORDER, TimeMarkSet
from settings import Settings

LOGGER = logging.getLogger(__name__)

MARKS_CACHE_DAYS = 7


class JsonStorage:
    """Keeps settings, the completion map and cached time marks in one JSON document."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def load_settings(self) -> Settings:
        payload = self._load_json()
        return Settings.from_dict(payload.get("settings"))

    def save_settings(self, settings: Settings) -> None:
        with self._lock:
            payload = self._load_json()
            payload["settings"] = settings.to_dict()
            self._save_json(payload)
        LOGGER.debug("Persisted settings to %s", self.path)

    def load_completion(self, day: date) -> Dict[str, bool]:
        completion = self._load_json().get("completion", {})
        stored = completion.get(day.isoformat(), {}) if isinstance(completion, dict) else {}
        return {str(name): bool(done) for name, done in stored.items()} if isinstance(stored, dict) else {}

    def save_completion(self, day: date, completion: Dict[str, bool]) -> None:
        with self._lock:
            payload = self._load_json()
            if not isinstance(payload.get("completion"), dict):
                payload["completion"] = {}
            payload["completion"][day.isoformat()] = dict(completion)
            self._save_json(payload)
        LOGGER.debug("Persisted completion for %s: %s", day, completion)

    def load_marks(self, day: date) -> Optional[TimeMarkSet]:
        """Return the cached marks of *day*, if any."""
        cached = self._load_json().get("marks")
        if not isinstance(cached, dict):
            return None
        return _marks_from_dict(day, cached.get(day.isoformat()))

    def latest_marks(self) -> Optional[TimeMarkSet]:
        """Return the most recently cached day's marks, if any."""
        cached = self._load_json().get("marks")
        if not isinstance(cached, dict) or not cached:
            return None
        latest = max(cached)
        try:
            day = date.fromisoformat(latest)
        except ValueError:
            LOGGER.warning("Ignoring cached marks with invalid date %r", latest)
            return None
        return _marks_from_dict(day, cached[latest])

    def save_marks(self, marks: TimeMarkSet) -> None:
        with self._lock:
            payload = self._load_json()
            cached = payload.get("marks")
            if not isinstance(cached, dict):
                cached = {}
            cached[marks.day.isoformat()] = marks.as_dict()
            payload["marks"] = {key: cached[key] for key in sorted(cached)[-MARKS_CACHE_DAYS:]}
            self._save_json(payload)
        LOGGER.debug("Cached time marks for %s", marks.day)

    def _load_json(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, ValueError):
            LOGGER.exception("Failed to read %s; starting from an empty store", self.path)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _save_json(self, payload: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)


def _marks_from_dict(day: date, stored: Any) -> Optional[TimeMarkSet]:
    if not isinstance(stored, dict):
        return None
    try:
        return TimeMarkSet(day=day, **{name.lower(): str(stored[name]) for name in MARK_ORDER})
    except KeyError:
        LOGGER.warning("Ignoring incomplete cached marks for %s: %s", day, stored)
        return None
