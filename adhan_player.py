"""Adhan sound catalogue and the single-slot preview session."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol

LOGGER = logging.getLogger(__name__)

ASSETS_ROOT = Path(__file__).parent / "assets"


class PreviewState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"


class AudioResourceError(RuntimeError):
    """Raised when an adhan resource cannot be loaded or played."""


@dataclass(frozen=True)
class AdhanOption:
    value: str
    label: str
    preview_source: Optional[str] = None
    notification_sound: Optional[str] = None

    @property
    def playable(self) -> bool:
        return self.value != "silent" and bool(self.preview_source)


DEFAULT_ADHAN = "makkah"

ADHAN_OPTIONS: List[AdhanOption] = [
    AdhanOption("makkah", "Adhan 1", "adhan/azan1.mp3", "azan1.mp3"),
    AdhanOption("madinah", "Adhan 2", "adhan/azan2.mp3", "azan2.mp3"),
    AdhanOption("alaqsa", "Adhan 3", "adhan/azan3.mp3", "azan3.mp3"),
    AdhanOption("egypt", "Adhan 4", "adhan/azan4.mp3", "azan4.mp3"),
    AdhanOption("silent", "Silent"),
]
ADHAN_VALUES = frozenset(option.value for option in ADHAN_OPTIONS)


def get_adhan_by_value(value: Optional[str]) -> AdhanOption:
    for option in ADHAN_OPTIONS:
        if option.value == value:
            return option
    return ADHAN_OPTIONS[0]


class AudioTransport(Protocol):
    def load_and_play(self, source: Path, on_finished: Callable[[], None]) -> Any: ...

    def stop(self, handle: Any) -> None: ...

    def unload(self, handle: Any) -> None: ...


class AdhanPreviewPlayer:
    """Play one adhan preview at a time.

    Previewing the option that is already playing stops it. Previewing another
    option stops and unloads the current resource before the new one is loaded.
    Calls are serialized, so a preview requested while a load is in flight waits
    for that load and then replaces it.
    """

    def __init__(
        self,
        transport: AudioTransport,
        assets_root: Optional[Path] = None,
        on_error: Optional[Callable[[AudioResourceError], None]] = None,
    ) -> None:
        self._transport = transport
        self._assets_root = Path(assets_root) if assets_root else ASSETS_ROOT
        self._on_error = on_error
        self._lock = threading.RLock()
        self._state = PreviewState.IDLE
        self._option: Optional[AdhanOption] = None
        self._handle: Any = None
        self._generation = 0
        self.last_error: Optional[AudioResourceError] = None

    @property
    def state(self) -> PreviewState:
        return self._state

    @property
    def loaded_option(self) -> Optional[AdhanOption]:
        return self._option if self._state is PreviewState.PLAYING else None

    def preview(self, option: AdhanOption) -> PreviewState:
        with self._lock:
            if self._state is not PreviewState.IDLE:
                same = self._option is not None and self._option.value == option.value
                self._unload_locked()
                if same:
                    LOGGER.debug("Preview of %s stopped by reselect", option.value)
                    return self._state

            if not option.playable:
                LOGGER.debug("Adhan option %s has no playable resource", option.value)
                return self._state

            self._generation += 1
            generation = self._generation
            self._state = PreviewState.LOADING
            self._option = option
            source = self._assets_root / str(option.preview_source)
            LOGGER.debug("Loading adhan preview %s from %s", option.value, source)
            try:
                handle = self._transport.load_and_play(source, lambda: self._on_finished(generation))
            except Exception as exc:
                error = exc if isinstance(exc, AudioResourceError) else AudioResourceError(str(exc))
                self._fail_locked(error)
                return self._state

            if generation != self._generation:
                # Finished or stopped while the transport was still loading.
                self._release(handle)
                return self._state

            self._handle = handle
            self._state = PreviewState.PLAYING
            self.last_error = None
            LOGGER.info("Playing adhan preview %s", option.value)
            return self._state

    def stop(self) -> None:
        with self._lock:
            if self._state is PreviewState.IDLE:
                return
            self._unload_locked()

    def _on_finished(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._state is PreviewState.IDLE:
                LOGGER.debug("Ignoring finished event from an unloaded preview")
                return
            LOGGER.debug("Adhan preview %s finished", self._option.value if self._option else "?")
            self._unload_locked()

    def _unload_locked(self) -> None:
        handle = self._handle
        self._generation += 1
        self._handle = None
        self._option = None
        self._state = PreviewState.IDLE
        if handle is not None:
            self._release(handle)

    def _release(self, handle: Any) -> None:
        try:
            self._transport.stop(handle)
            self._transport.unload(handle)
        except Exception:
            LOGGER.exception("Failed to unload adhan preview resource")

    def _fail_locked(self, error: AudioResourceError) -> None:
        LOGGER.error("Adhan preview failed: %s", error)
        self._generation += 1
        self._handle = None
        self._option = None
        self._state = PreviewState.IDLE
        self.last_error = error
        if self._on_error:
            self._on_error(error)
