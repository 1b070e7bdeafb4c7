from pathlib import Path

import pytest

from adhan_player import (
    ADHAN_OPTIONS,
    AdhanPreviewPlayer,
    AudioResourceError,
    PreviewState,
    get_adhan_by_value,
)


class _FakeTransport:
    """Records load/stop/unload calls and keeps each finished callback."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.finished: dict = {}
        self.fail_next = False
        self._next = 0

    def load_and_play(self, source: Path, on_finished):
        if self.fail_next:
            self.fail_next = False
            raise AudioResourceError(f"missing {source.name}")
        self._next += 1
        self.calls.append(("load", source.name, self._next))
        self.finished[self._next] = on_finished
        return self._next

    def stop(self, handle) -> None:
        self.calls.append(("stop", handle))

    def unload(self, handle) -> None:
        self.calls.append(("unload", handle))


@pytest.fixture
def transport() -> _FakeTransport:
    return _FakeTransport()


@pytest.fixture
def player(transport, tmp_path) -> AdhanPreviewPlayer:
    return AdhanPreviewPlayer(transport, assets_root=tmp_path)


def test_catalogue_lookup_falls_back_to_first_option():
    assert get_adhan_by_value("madinah").label == "Adhan 2"
    assert get_adhan_by_value("unknown") is ADHAN_OPTIONS[0]
    assert not get_adhan_by_value("silent").playable


def test_reselecting_playing_option_stops_it(player, transport):
    makkah = get_adhan_by_value("makkah")

    assert player.preview(makkah) is PreviewState.PLAYING
    assert player.loaded_option is makkah
    assert player.preview(makkah) is PreviewState.IDLE

    assert transport.calls == [("load", "azan1.mp3", 1), ("stop", 1), ("unload", 1)]
    assert player.loaded_option is None


def test_switching_option_unloads_before_loading(player, transport):
    player.preview(get_adhan_by_value("makkah"))
    state = player.preview(get_adhan_by_value("madinah"))

    assert state is PreviewState.PLAYING
    assert transport.calls == [
        ("load", "azan1.mp3", 1),
        ("stop", 1),
        ("unload", 1),
        ("load", "azan2.mp3", 2),
    ]
    assert player.loaded_option.value == "madinah"


def test_silent_option_loads_nothing(player, transport):
    assert player.preview(get_adhan_by_value("silent")) is PreviewState.IDLE
    assert transport.calls == []


def test_silent_option_stops_current_preview(player, transport):
    player.preview(get_adhan_by_value("egypt"))

    assert player.preview(get_adhan_by_value("silent")) is PreviewState.IDLE
    assert transport.calls[-2:] == [("stop", 1), ("unload", 1)]


def test_load_failure_returns_to_idle(transport, tmp_path):
    errors = []
    player = AdhanPreviewPlayer(transport, assets_root=tmp_path, on_error=errors.append)
    transport.fail_next = True

    state = player.preview(get_adhan_by_value("alaqsa"))

    assert state is PreviewState.IDLE
    assert isinstance(player.last_error, AudioResourceError)
    assert errors == [player.last_error]
    assert player.preview(get_adhan_by_value("alaqsa")) is PreviewState.PLAYING
    assert player.last_error is None


def test_playback_finishing_unloads_resource(player, transport):
    player.preview(get_adhan_by_value("makkah"))

    transport.finished[1]()

    assert player.state is PreviewState.IDLE
    assert transport.calls[-2:] == [("stop", 1), ("unload", 1)]


def test_stale_finished_callback_is_ignored(player, transport):
    player.preview(get_adhan_by_value("makkah"))
    player.preview(get_adhan_by_value("madinah"))

    transport.finished[1]()

    assert player.state is PreviewState.PLAYING
    assert player.loaded_option.value == "madinah"
    assert ("unload", 2) not in transport.calls


def test_stop_when_idle_is_a_no_op(player, transport):
    player.stop()
    assert transport.calls == []
