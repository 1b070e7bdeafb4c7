"""Per-day prayer completion toggled by the user."""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Protocol, Union

from timeline import CompletionState, PrayerInstant, PrayerName, find_instant, resolve_next

LOGGER = logging.getLogger(__name__)


class CompletionStore(Protocol):
    def load_completion(self, day: date) -> Dict[str, bool]: ...

    def save_completion(self, day: date, completion: Dict[str, bool]) -> None: ...


class CompletionTracker:
    """Flip prayers between pending and done and persist the day's map."""

    def __init__(self, storage: CompletionStore) -> None:
        self._storage = storage

    def toggle(
        self,
        instants: List[PrayerInstant],
        name: Union[str, PrayerName],
        now: Optional[datetime] = None,
        tomorrow_fajr: Optional[str] = None,
    ) -> List[PrayerInstant]:
        instant = find_instant(instants, name)
        if instant is None:
            LOGGER.warning("Ignoring toggle for unknown prayer %s", name)
            return instants
        if not instant.actionable:
            LOGGER.debug("Ignoring toggle for %s; it is not a prayer", instant.name.value)
            return instants

        if instant.completion_state is CompletionState.DONE:
            instant.completion_state = CompletionState.PENDING
        else:
            instant.completion_state = CompletionState.DONE
            LOGGER.info("Prayer completed: %s on %s", instant.name.value, instant.day)

        if now is not None:
            resolve_next(instants, now, tomorrow_fajr)

        self._storage.save_completion(instant.day, completion_map(instants))
        return instants

    def restore(self, instants: List[PrayerInstant]) -> List[PrayerInstant]:
        """Apply the stored completion of the instants' day to a fresh schedule."""
        if not instants:
            return instants
        stored = self._storage.load_completion(instants[0].day)
        for instant in instants:
            if instant.actionable and stored.get(instant.name.value):
                instant.completion_state = CompletionState.DONE
        LOGGER.debug("Restored completion for %s: %s", instants[0].day, stored)
        return instants


def completion_map(instants: List[PrayerInstant]) -> Dict[str, bool]:
    return {
        instant.name.value: instant.completion_state is CompletionState.DONE
        for instant in instants
        if instant.actionable
    }


def completed_count(instants: List[PrayerInstant]) -> int:
    return sum(1 for done in completion_map(instants).values() if done)


def completion_ratio(instants: List[PrayerInstant]) -> float:
    actionable = completion_map(instants)
    if not actionable:
        return 0.0
    return completed_count(instants) / len(actionable)
