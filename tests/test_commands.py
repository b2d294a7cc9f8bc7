"""Tests for remote command validation and dispatch."""

import pytest

from companion_server.commands import CommandDispatcher
from companion_server.errors import (
    InvalidCommandError, InvalidRepeatModeError, InvalidVolumeError,
)

from .conftest import FakeMediaSurface


@pytest.fixture
def surface():
    return FakeMediaSurface()


@pytest.fixture
def dispatcher(surface):
    return CommandDispatcher(lambda: surface)


class TestSimpleCommands:
    """Tests for commands without a value."""

    @pytest.mark.parametrize("command", [
        "playPause", "play", "pause", "volumeUp", "volumeDown",
        "mute", "unmute", "next", "previous",
    ])
    def test_forwarded_without_value(self, dispatcher, surface, command):
        dispatcher.dispatch(command, "ignored")
        assert surface.executed == [(command,)]

    @pytest.mark.parametrize("command", ["stop", "", "PLAY", None, 7, ["play"]])
    def test_unknown_command(self, dispatcher, surface, command):
        with pytest.raises(InvalidCommandError) as exc_info:
            dispatcher.dispatch(command)

        assert exc_info.value.code == "INVALID_COMMAND"
        assert exc_info.value.status == 400
        assert str(command) in exc_info.value.message
        assert surface.executed == []


class TestSetVolume:
    """Tests for setVolume validation."""

    @pytest.mark.parametrize("volume", [0, 1, 50, 99.5, 100])
    def test_in_range_forwarded_unchanged(self, dispatcher, surface, volume):
        dispatcher.dispatch("setVolume", volume)
        assert surface.executed == [("setVolume", volume)]

    @pytest.mark.parametrize("volume", [-1, 100.01, 150, float("nan"), "50", None, True, [50]])
    def test_invalid_rejected(self, dispatcher, surface, volume):
        with pytest.raises(InvalidVolumeError) as exc_info:
            dispatcher.dispatch("setVolume", volume)

        assert exc_info.value.code == "INVALID_VOLUME"
        assert surface.executed == []

    def test_message_names_value(self, dispatcher):
        with pytest.raises(InvalidVolumeError) as exc_info:
            dispatcher.dispatch("setVolume", 150)
        assert exc_info.value.message == "Volume '150' is invalid"


class TestRepeatMode:
    """Tests for repeatMode validation."""

    @pytest.mark.parametrize("mode", ["NONE", "ALL", "ONE"])
    def test_valid_modes(self, dispatcher, surface, mode):
        dispatcher.dispatch("repeatMode", mode)
        assert surface.executed == [("repeatMode", mode)]

    @pytest.mark.parametrize("mode", ["none", "SHUFFLE", "", None, 1])
    def test_invalid_modes(self, dispatcher, surface, mode):
        with pytest.raises(InvalidRepeatModeError) as exc_info:
            dispatcher.dispatch("repeatMode", mode)

        assert exc_info.value.code == "INVALID_REPEAT_MODE"
        assert surface.executed == []


class TestUnavailablePlayer:
    """Commands are dropped when no player is attached."""

    def test_valid_command_dropped_silently(self):
        dispatcher = CommandDispatcher(lambda: None)
        dispatcher.dispatch("play")
        dispatcher.dispatch("setVolume", 10)

    def test_invalid_command_still_rejected(self):
        dispatcher = CommandDispatcher(lambda: None)
        with pytest.raises(InvalidVolumeError):
            dispatcher.dispatch("setVolume", 500)

    def test_surface_fetched_per_dispatch(self, surface):
        holder = {"surface": None}
        dispatcher = CommandDispatcher(lambda: holder["surface"])

        dispatcher.dispatch("play")
        holder["surface"] = surface
        dispatcher.dispatch("pause")

        assert surface.executed == [("pause",)]
