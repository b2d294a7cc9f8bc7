"""
Realtime channel: authenticated WebSocket subscribers receiving player events
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional

from aiohttp import WSCloseCode, web

from .errors import RealtimeUnauthorizedError
from .state import transform_player_state
from .tokens import TokenStore

logger = logging.getLogger("companion_server")

STATE_UPDATE = "state-update"
PLAYLIST_CREATED = "playlist-created"
PLAYLIST_DELETED = "playlist-deleted"


def handshake_token(request: web.Request) -> Optional[str]:
    """Bearer token from the Authorization header or the token query parameter"""
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip()
    return request.query.get("token")


class RealtimeBroadcaster:
    """
    Fans upstream events out to every subscriber.

    publish() only enqueues; a single pump task sends events in the order
    they were published. Late joiners get no replay.
    """

    def __init__(self, token_store: TokenStore):
        self._token_store = token_store
        self.subscribers: Dict[web.WebSocketResponse, str] = {}
        self._queue: Optional[asyncio.Queue] = None
        self._pump_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        self._queue = asyncio.Queue()
        self._pump_task = asyncio.create_task(self._pump())

    async def stop(self) -> None:
        if self._pump_task is not None:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            self._pump_task = None
        self._queue = None

        for ws in list(self.subscribers):
            await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")
        self.subscribers.clear()

    # ============================================================
    # UPSTREAM EVENTS
    # ============================================================

    def publish(self, event: str, data: Any) -> None:
        if self._queue is None:
            logger.debug("Realtime channel not running, dropping %s", event)
            return
        self._queue.put_nowait((event, data))

    def state_changed(self, state: dict) -> None:
        self.publish(STATE_UPDATE, transform_player_state(state))

    def playlist_created(self, playlist: dict) -> None:
        self.publish(PLAYLIST_CREATED, playlist)

    def playlist_deleted(self, playlist_id: str) -> None:
        self.publish(PLAYLIST_DELETED, playlist_id)

    async def _pump(self) -> None:
        while True:
            event, data = await self._queue.get()
            try:
                await self.broadcast(event, data)
            except (TypeError, ValueError):
                logger.exception("Dropping unserializable %s event", event)

    async def broadcast(self, event: str, data: Any) -> None:
        """Send one event to all subscribers, dropping dead connections"""
        if not self.subscribers:
            return

        message = json.dumps({"event": event, "data": data})
        dead_sockets = set()
        for ws in list(self.subscribers):
            if ws.closed:
                dead_sockets.add(ws)
                continue
            try:
                await ws.send_str(message)
            except Exception as e:
                logger.debug(f"Failed to send to WebSocket: {e}")
                dead_sockets.add(ws)

        for ws in dead_sockets:
            self.subscribers.pop(ws, None)

    # ============================================================
    # WEBSOCKET ENDPOINT
    # ============================================================

    async def handle(self, request: web.Request) -> web.WebSocketResponse:
        """Admit a subscriber after checking its handshake token"""
        app_id = self._token_store.validate(handshake_token(request))
        if app_id is None:
            logger.warning("Rejected realtime connection from %s", request.remote)
            raise RealtimeUnauthorizedError()

        ws = web.WebSocketResponse(heartbeat=30)
        await ws.prepare(request)

        self.subscribers[ws] = app_id
        logger.info(f"📡 Realtime client {app_id} connected (total: {len(self.subscribers)})")

        try:
            async for msg in ws:
                # Handle ping/pong for keepalive
                if msg.type == web.WSMsgType.TEXT and msg.data == "ping":
                    await ws.send_str("pong")
        finally:
            self.subscribers.pop(ws, None)
            logger.info(f"📡 Realtime client {app_id} disconnected (remaining: {len(self.subscribers)})")

        return ws
