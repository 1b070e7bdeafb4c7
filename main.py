"""Entry point for the prayer reminder tray application."""
from __future__ import annotations

import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set

try:  # Prefer PyQt5, fall back to Qt for Python if available
    from PyQt5 import QtCore, QtGui, QtWidgets  # type: ignore
except Exception:  # pragma: no cover - fallback only used when PyQt5 missing
    try:
        from PySide2 import QtCore, QtGui, QtWidgets  # type: ignore
    except Exception:
        from PySide6 import QtCore, QtGui, QtWidgets  # type: ignore

try:  # Compatibility alias for Qt signal and slot decorators
    Signal = QtCore.pyqtSignal  # type: ignore[attr-defined]
    Slot = QtCore.pyqtSlot  # type: ignore[attr-defined]
except AttributeError:  # pragma: no cover - PySide compatibility
    Signal = QtCore.Signal  # type: ignore[attr-defined]
    Slot = QtCore.Slot  # type: ignore[attr-defined]

from adhan_player import ADHAN_OPTIONS, ASSETS_ROOT, AdhanPreviewPlayer, AudioResourceError, get_adhan_by_value
from audio_backend import QtAudioTransport
from completion import completed_count
from notifications import KIND_PRAYER_TIME, NotificationRequest, NotificationScheduler
from prayer_times import (
    LocationInfo,
    PrayerTimesService,
    build_location_from_config,
    default_location,
    detect_location_from_ip,
    now_in,
    resolve_timezone,
)
from scheduler import PrayerScheduler
from session import PrayerSession
from storage import JsonStorage
from timeline import ACTIONABLE_PRAYERS, CompletionState, Resolution, format_countdown

APP_ROOT = Path(__file__).parent
CONFIG_PATH = APP_ROOT / "config.json"

logging.basicConfig(level=logging.DEBUG, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
LOGGER = logging.getLogger(__name__)


class _AsyncDispatcher(QtCore.QObject):
    """Provide main-thread delivery for background task callbacks."""

    success = Signal(object)
    error = Signal(object)

    def __init__(
        self,
        owner: "PrayerApp",
        on_success: Callable[[Any], None],
        on_error: Callable[[Exception], None],
    ) -> None:
        super().__init__()
        self._owner = owner
        self._on_success = on_success
        self._on_error = on_error
        self.success.connect(self._handle_success)  # type: ignore[attr-defined]
        self.error.connect(self._handle_error)  # type: ignore[attr-defined]

    @Slot(object)
    def _handle_success(self, result: Any) -> None:
        try:
            self._on_success(result)
        finally:
            self._owner._async_dispatchers.discard(self)
            self.deleteLater()

    @Slot(object)
    def _handle_error(self, exc: Exception) -> None:
        try:
            self._on_error(exc)
        finally:
            self._owner._async_dispatchers.discard(self)
            self.deleteLater()


class _NotificationBridge(QtCore.QObject):
    """Carry scheduler callbacks from APScheduler threads to the Qt thread."""

    delivered = Signal(object)
    refresh_requested = Signal()

    def __init__(
        self,
        on_delivered: Callable[[NotificationRequest], None],
        on_refresh: Callable[[], None],
    ) -> None:
        super().__init__()
        self.delivered.connect(on_delivered)  # type: ignore[attr-defined]
        self.refresh_requested.connect(on_refresh)  # type: ignore[attr-defined]


class PrayerApp(QtWidgets.QApplication):
    """Coordinates the tray icon, the prayer session and audio playback."""

    def __init__(self, argv: list[str]) -> None:
        super().__init__(argv)
        self.setApplicationName("Prayer Times")
        self.setQuitOnLastWindowClosed(False)

        self._executor = ThreadPoolExecutor(max_workers=2)
        self._async_dispatchers: Set[_AsyncDispatcher] = set()
        self._catching_up = False
        self.storage = JsonStorage(CONFIG_PATH)
        self.settings = self.storage.load_settings()
        LOGGER.debug("Loaded settings: %s", self.settings)

        location = build_location_from_config(self.settings.location) or default_location()
        timezone = resolve_timezone(location.timezone).zone

        self._bridge = _NotificationBridge(self._on_notification, self.refresh_prayer_times)
        self.scheduler = PrayerScheduler(timezone, on_notify=self._bridge.delivered.emit)
        self.scheduler.start()

        notifier = NotificationScheduler(self.scheduler, dispatch_timeout=self.settings.dispatch_timeout)
        self.session = PrayerSession(
            PrayerTimesService(),
            self.storage,
            notifier,
            location,
            self.settings,
            now_provider=lambda: now_in(self.session.location),
        )

        self.preview_player = AdhanPreviewPlayer(QtAudioTransport(parent=self), on_error=self._on_preview_error)
        self.alert_audio = QtAudioTransport(parent=self)

        self.tray_icon: Optional[QtWidgets.QSystemTrayIcon] = None
        self.prayer_actions: Dict[str, QtWidgets.QAction] = {}
        self._setup_tray_icon()

        self.tick_timer = QtCore.QTimer(self)
        self.tick_timer.timeout.connect(self.tick)  # type: ignore
        self.tick_timer.start(self.settings.tick_seconds * 1000)

        self.aboutToQuit.connect(self._cleanup)  # type: ignore
        QtCore.QTimer.singleShot(100, self.refresh_prayer_times)

    # ------------------------------------------------------------------
    @Slot()
    def refresh_prayer_times(self) -> None:
        LOGGER.debug("Refreshing prayer times (auto_location=%s)", self.settings.auto_location)

        def task() -> bool:
            if self.settings.auto_location:
                location = self._detect_location()
                if location is not None:
                    return self.session.update_location(location)
            return self.session.load_day(now_in(self.session.location).date())

        self._run_async(task, self._handle_refresh_success, self._handle_refresh_error)

    def _detect_location(self) -> Optional[LocationInfo]:
        try:
            location = detect_location_from_ip()
        except Exception:  # pragma: no cover - network failure
            LOGGER.warning("Automatic location detection failed; keeping %s", self.session.location.city, exc_info=True)
            return None
        self.settings.location = {
            "city": location.city,
            "country": location.country,
            "latitude": location.latitude,
            "longitude": location.longitude,
            "timezone": location.timezone,
        }
        self.storage.save_settings(self.settings)
        return location

    def _handle_refresh_success(self, loaded: bool) -> None:
        if not loaded:
            LOGGER.warning("Prayer times unavailable; showing last known schedule")
        self.scheduler.set_timezone(resolve_timezone(self.session.location.timezone).zone)
        self.tick()
        future = self.session.refresh_notifications_async()
        future.add_done_callback(self._log_refresh_result)
        self.scheduler.schedule_refresh(self.session.next_refresh_time(), self._bridge.refresh_requested.emit)

    def _handle_refresh_error(self, error: Exception) -> None:
        LOGGER.error("Failed to refresh prayer times", exc_info=error)
        self._show_message("Error", "Unable to fetch prayer times. Please try again.")

    @staticmethod
    def _log_refresh_result(future) -> None:
        try:
            result = future.result()
        except Exception:
            LOGGER.exception("Notification refresh raised")
            return
        if result is not None and not result.ok:
            LOGGER.warning("Some notifications were not scheduled: %s", result.error)

    def tick(self) -> None:
        resolution = self.session.tick()
        self._update_tray(resolution)
        if self.session.pending_work and not self._catching_up:
            self._catching_up = True
            self._run_async(self.session.catch_up, self._handle_catch_up, self._handle_catch_up_error)

    def _handle_catch_up(self, loaded: bool) -> None:
        self._catching_up = False
        if loaded:
            self.tick()

    def _handle_catch_up_error(self, error: Exception) -> None:
        self._catching_up = False
        LOGGER.error("Deferred prayer time update failed", exc_info=error)

    def toggle_prayer(self, name: str) -> None:
        resolution = self.session.toggle(name)
        self._update_tray(resolution)

    def preview_adhan(self, value: str) -> None:
        self.preview_player.preview(get_adhan_by_value(value))

    def _on_preview_error(self, error: AudioResourceError) -> None:
        self._show_message("Adhan", f"Unable to play preview: {error}")

    def _on_notification(self, request: NotificationRequest) -> None:
        self._show_message(request.title, request.body)
        if request.kind != KIND_PRAYER_TIME or not request.sound:
            return
        option = get_adhan_by_value(self.settings.selected_adhan)
        if not option.playable:
            return
        try:
            self.alert_audio.load_and_play(ASSETS_ROOT / str(option.preview_source), lambda: None)
        except AudioResourceError:
            LOGGER.exception("Failed to play Adhan audio")

    # -- System tray ---------------------------------------------------------
    def _setup_tray_icon(self) -> None:
        if not QtWidgets.QSystemTrayIcon.isSystemTrayAvailable():
            LOGGER.warning("System tray not available on this system")
            return

        icon_path = APP_ROOT / "assets" / "app_icon.ico"
        icon = QtGui.QIcon(str(icon_path)) if icon_path.exists() else self.style().standardIcon(QtWidgets.QStyle.SP_ComputerIcon)
        tray = QtWidgets.QSystemTrayIcon(icon, self)

        menu = QtWidgets.QMenu()
        refresh_action = menu.addAction("Refresh Prayer Times")
        refresh_action.triggered.connect(self.refresh_prayer_times)  # type: ignore

        prayed_menu = menu.addMenu("Mark Prayed")
        for name in ACTIONABLE_PRAYERS:
            action = prayed_menu.addAction(name.value)
            action.setCheckable(True)
            action.triggered.connect(partial(self.toggle_prayer, name.value))  # type: ignore
            self.prayer_actions[name.value] = action

        preview_menu = menu.addMenu("Preview Adhan")
        for option in ADHAN_OPTIONS:
            action = preview_menu.addAction(option.label)
            action.setEnabled(option.playable)
            action.triggered.connect(partial(self.preview_adhan, option.value))  # type: ignore
        stop_action = preview_menu.addAction("Stop Preview")
        stop_action.triggered.connect(self.preview_player.stop)  # type: ignore

        menu.addSeparator()
        quit_action = menu.addAction("Quit")
        quit_action.triggered.connect(self.quit)  # type: ignore

        tray.setContextMenu(menu)
        tray.setToolTip("Prayer Times")
        tray.show()
        self.tray_icon = tray
        self._tray_menu = menu

    def _update_tray(self, resolution: Optional[Resolution]) -> None:
        for instant in self.session.instants:
            action = self.prayer_actions.get(instant.name.value)
            if action is not None:
                action.setChecked(instant.completion_state is CompletionState.DONE)
        if not self.tray_icon:
            return
        if resolution is None:
            self.tray_icon.setToolTip("Prayer Times")
            return
        upcoming = resolution.next
        lines = [f"Next: {upcoming.name.value} {upcoming.clock_time} (in {format_countdown(upcoming.minutes_until) or 'now'})"]
        lines.append(f"Prayed today: {completed_count(self.session.instants)}/{len(ACTIONABLE_PRAYERS)}")
        if self.session.stale:
            lines.append("Prayer times may be out of date")
        self.tray_icon.setToolTip("\n".join(lines))

    def _show_message(self, title: str, body: str) -> None:
        LOGGER.info("%s: %s", title, body)
        if self.tray_icon:
            self.tray_icon.showMessage(title, body)

    # ------------------------------------------------------------------
    def _run_async(self, func, on_success, on_error) -> None:
        LOGGER.debug("Submitting background task %s", getattr(func, "__name__", func))
        dispatcher = _AsyncDispatcher(self, on_success, on_error)
        self._async_dispatchers.add(dispatcher)
        future = self._executor.submit(func)

        def _done(future_result) -> None:
            try:
                result = future_result.result()
            except Exception as exc:  # pragma: no cover - UI glue
                LOGGER.exception("Background task %s raised an exception", getattr(func, "__name__", func), exc_info=exc)
                dispatcher.error.emit(exc)
            else:
                dispatcher.success.emit(result)

        future.add_done_callback(_done)

    def _cleanup(self) -> None:
        self.tick_timer.stop()
        self.preview_player.stop()
        self.scheduler.shutdown()
        self.session.shutdown()
        self._executor.shutdown(wait=False)
        if self.tray_icon:
            self.tray_icon.hide()


def main() -> int:
    app = PrayerApp(sys.argv)
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
