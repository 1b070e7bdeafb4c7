"""Qt Multimedia audio output used for adhan previews and alerts."""
from __future__ import annotations

import itertools
import logging
from pathlib import Path
from typing import Callable, Optional

try:  # Prefer PyQt5 multimedia bindings, fall back to Qt for Python variants
    from PyQt5 import QtCore, QtMultimedia  # type: ignore
except Exception:  # pragma: no cover - fallback path
    try:
        from PySide2 import QtCore, QtMultimedia  # type: ignore
    except Exception:
        from PySide6 import QtCore, QtMultimedia  # type: ignore

from adhan_player import AudioResourceError

LOGGER = logging.getLogger(__name__)


class QtAudioTransport(QtCore.QObject):
    """Load, play and unload one audio file at a time on a QMediaPlayer."""

    def __init__(self, volume: float = 1.0, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self._player = QtMultimedia.QMediaPlayer(self)
        self._audio_output = None
        if hasattr(QtMultimedia, "QAudioOutput"):
            self._audio_output = QtMultimedia.QAudioOutput()
            if hasattr(self._audio_output, "setParent"):
                self._audio_output.setParent(self)
            if hasattr(self._player, "setAudioOutput"):
                self._player.setAudioOutput(self._audio_output)
            self._audio_output.setVolume(volume)
        elif hasattr(self._player, "setVolume"):
            # Qt5 API uses direct volume control on the player
            self._player.setVolume(int(volume * 100))

        self._using_new_api = hasattr(self._player, "setSource")
        self._tokens = itertools.count(1)
        self._active: Optional[int] = None
        self._on_finished: Optional[Callable[[], None]] = None

        self._player.mediaStatusChanged.connect(self._on_media_status)  # type: ignore
        if hasattr(self._player, "errorOccurred"):
            self._player.errorOccurred.connect(self._on_error)  # type: ignore
        elif hasattr(self._player, "error"):
            self._player.error.connect(self._on_error)  # type: ignore

    def load_and_play(self, source: Path, on_finished: Callable[[], None]) -> int:
        target = Path(source)
        if not target.exists():
            raise AudioResourceError(f"Adhan audio file missing: {target}")

        if self._active is not None:
            self.unload(self._active)

        url = QtCore.QUrl.fromLocalFile(str(target))
        if self._using_new_api:
            self._player.setSource(url)
        else:
            self._player.setMedia(QtMultimedia.QMediaContent(url))  # type: ignore[attr-defined]

        handle = next(self._tokens)
        self._active = handle
        self._on_finished = on_finished
        LOGGER.debug("Playing audio via Qt multimedia: %s (handle=%s)", target, handle)
        self._player.play()
        return handle

    def stop(self, handle: int) -> None:
        if handle != self._active:
            return
        LOGGER.debug("Stopping audio handle %s", handle)
        self._on_finished = None
        self._player.stop()

    def unload(self, handle: int) -> None:
        if handle != self._active:
            return
        self._on_finished = None
        self._active = None
        if self._using_new_api:
            self._player.setSource(QtCore.QUrl())
        else:
            self._player.setMedia(QtMultimedia.QMediaContent())  # type: ignore[attr-defined]
        LOGGER.debug("Unloaded audio handle %s", handle)

    def _on_media_status(self, status: object) -> None:
        end_of_media = getattr(QtMultimedia.QMediaPlayer, "EndOfMedia", None)
        if end_of_media is None:
            end_of_media = QtMultimedia.QMediaPlayer.MediaStatus.EndOfMedia  # type: ignore[attr-defined]
        if status != end_of_media:
            return
        callback, self._on_finished = self._on_finished, None
        if callback:
            callback()

    def _on_error(self, *args: object) -> None:  # pragma: no cover - backend dependent
        no_error = getattr(QtMultimedia.QMediaPlayer, "NoError", None)
        if args and no_error is not None and args[0] == no_error:
            return
        LOGGER.error("Audio playback error: %s", getattr(self._player, "errorString", lambda: "unknown")())
