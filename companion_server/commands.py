"""
Remote control command validation and forwarding to the player
"""
import logging
import math
from typing import Any, Callable, Optional, Protocol

from .errors import InvalidCommandError, InvalidRepeatModeError, InvalidVolumeError

logger = logging.getLogger("companion_server")

SIMPLE_COMMANDS = frozenset({
    "playPause", "play", "pause", "volumeUp", "volumeDown",
    "mute", "unmute", "next", "previous",
})
REPEAT_MODES = ("NONE", "ALL", "ONE")


class MediaSurface(Protocol):
    """The player view; accepts commands and answers playlist queries"""

    def execute(self, command: str, *args: Any) -> None: ...

    def request_playlists(self, request_id: str) -> None: ...


MediaSurfaceAccessor = Callable[[], Optional[MediaSurface]]


def validate_volume(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidVolumeError(value)
    if math.isnan(value) or value < 0 or value > 100:
        raise InvalidVolumeError(value)
    return value


def validate_repeat_mode(value: Any) -> str:
    if value not in REPEAT_MODES:
        raise InvalidRepeatModeError(value)
    return value


class CommandDispatcher:
    """
    Validates a command and forwards it to the player.

    Commands sent while the player is unavailable are dropped without an
    error; invalid commands are rejected either way.
    """

    def __init__(self, get_media_surface: MediaSurfaceAccessor):
        self._get_media_surface = get_media_surface

    def dispatch(self, command: Any, value: Any = None) -> None:
        if not isinstance(command, str):
            raise InvalidCommandError(command)

        if command in SIMPLE_COMMANDS:
            args = ()
        elif command == "setVolume":
            args = (validate_volume(value),)
        elif command == "repeatMode":
            args = (validate_repeat_mode(value),)
        else:
            raise InvalidCommandError(command)

        surface = self._get_media_surface()
        if surface is None:
            logger.debug("Player unavailable, dropping command %s", command)
            return
        surface.execute(command, *args)
