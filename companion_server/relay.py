"""
Request/response correlation for queries answered asynchronously by the player
"""
import asyncio
import logging
from typing import Any, Dict, List

from .commands import MediaSurfaceAccessor
from .errors import YtmResultTimeoutError, YtmUnavailableError
from .utils import generate_request_id

logger = logging.getLogger("companion_server")

PLAYLIST_TIMEOUT = 5.0


class PlaylistRelay:
    """
    Sends playlist queries to the player and matches the replies.

    Each query registers one pending future under its correlation id; the
    entry is removed on reply or timeout, and only the first completion wins.
    """

    def __init__(self, get_media_surface: MediaSurfaceAccessor, timeout: float = PLAYLIST_TIMEOUT):
        self._get_media_surface = get_media_surface
        self.timeout = timeout
        self._pending: Dict[str, asyncio.Future] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def get_playlists(self) -> List[Dict[str, Any]]:
        surface = self._get_media_surface()
        if surface is None:
            raise YtmUnavailableError()

        request_id = generate_request_id()
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            surface.request_playlists(request_id)
            return await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError:
            logger.warning("⏱️ Playlist request %s timed out", request_id)
            raise YtmResultTimeoutError() from None
        finally:
            self._pending.pop(request_id, None)

    def resolve(self, request_id: str, playlists: List[Dict[str, Any]]) -> bool:
        """Complete a pending query; unknown or finished ids are ignored"""
        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            logger.debug("Ignoring late playlist response %s", request_id)
            return False
        future.set_result(playlists)
        return True
