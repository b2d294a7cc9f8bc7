"""
Player state: the in-memory authoritative store and the reduced view
sent to companion clients
"""
import copy
import logging
from typing import Callable, List, Optional

logger = logging.getLogger("companion_server")

StateListener = Callable[[dict], None]

QUEUE_FIELDS = (
    "autoplay", "items", "automixItems", "isGenerating",
    "isInfinite", "repeatMode", "selectedItemIndex",
)
VIDEO_FIELDS = ("author", "title", "album", "thumbnails", "durationSeconds", "id")


class PlayerStateStore:
    """Holds the current player state and notifies listeners on change"""

    def __init__(self, initial: Optional[dict] = None):
        self._state: dict = initial or {
            "trackState": -1,
            "videoProgress": 0,
            "volume": 0,
            "queue": None,
            "videoDetails": None,
        }
        self._listeners: List[StateListener] = []

    def get_state(self) -> dict:
        return copy.deepcopy(self._state)

    def update(self, **changes) -> None:
        """Merge changes into the state and notify every listener"""
        self._state.update(changes)
        snapshot = self.get_state()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("State listener failed")

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)


def transform_player_state(state: dict) -> dict:
    """Project the full player state onto the fields companions may see"""
    queue = state.get("queue")
    video = state.get("videoDetails")
    return {
        "player": {
            "trackState": state.get("trackState"),
            "videoProgress": state.get("videoProgress"),
            "queue": {field: queue.get(field) for field in QUEUE_FIELDS} if queue else None,
        },
        "video": {field: video.get(field) for field in VIDEO_FIELDS} if video else None,
    }
