"""
HTTP API for companion apps
Pairing, playlists, state and remote commands behind auth + rate limit gates
"""
import json
import logging
from typing import Any, Dict, Optional

from aiohttp import web

from .commands import CommandDispatcher, MediaSurfaceAccessor
from .errors import (
    CompanionError, InvalidBodyError, RateLimitError, UnauthenticatedError,
)
from .pairing import PairingCoordinator, WindowOpener
from .rate_limit import GLOBAL_ROUTE, KEY_ADDRESS, RateLimiter, RouteLimit
from .realtime import RealtimeBroadcaster
from .relay import PlaylistRelay
from .settings import SettingsStore
from .state import PlayerStateStore, transform_player_state
from .tokens import AuthToken, TokenStore
from .utils import client_address, connection_closed

logger = logging.getLogger("companion_server")

API_PREFIX = "/api/v1"

ROUTE_REQUEST_CODE = f"{API_PREFIX}/auth/requestcode"
ROUTE_REQUEST_TOKEN = f"{API_PREFIX}/auth/request"
ROUTE_PLAYLISTS = f"{API_PREFIX}/playlists"
ROUTE_STATE = f"{API_PREFIX}/state"
ROUTE_COMMAND = f"{API_PREFIX}/command"
ROUTE_REALTIME = f"{API_PREFIX}/realtime"

ROUTE_LIMITS: Dict[str, RouteLimit] = {
    GLOBAL_ROUTE: RouteLimit(limit=100, window=60, keying=KEY_ADDRESS),
    ROUTE_REQUEST_CODE: RouteLimit(limit=5, window=60),
    ROUTE_REQUEST_TOKEN: RouteLimit(limit=5, window=60),
    # Playlists are fetched live from the player; clients should cache them
    ROUTE_PLAYLISTS: RouteLimit(limit=1, window=30),
    # Clients should follow the realtime channel instead of polling
    ROUTE_STATE: RouteLimit(limit=1, window=5),
    ROUTE_COMMAND: RouteLimit(limit=2, window=1),
}

AUTHENTICATED_ROUTES = frozenset({ROUTE_PLAYLISTS, ROUTE_STATE, ROUTE_COMMAND})


def presented_token(request: web.Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if not header:
        return None
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip()
    return header.strip()


async def read_json(request: web.Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidBodyError() from None
    if not isinstance(body, dict):
        raise InvalidBodyError()
    return body


def require_app_name(body: Dict[str, Any]) -> str:
    app_name = body.get("appName")
    if not isinstance(app_name, str) or not app_name.strip():
        raise InvalidBodyError(message="appName is required")
    return app_name


# ============================================================
# MIDDLEWARES
# ============================================================

@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Render companion errors as {"error": CODE, "message": ...}"""
    try:
        return await handler(request)
    except RateLimitError as e:
        response = web.json_response(e.to_dict(), status=e.status)
        response.headers["Retry-After"] = str(e.retry_after_seconds)
        return response
    except CompanionError as e:
        return web.json_response(e.to_dict(), status=e.status)


def make_session_gate(server: "CompanionServer"):
    """
    Gate run before every handler: global limit by address, then the
    token check for protected routes, then the route's own limit keyed by
    token identity when authenticated.
    """

    @web.middleware
    async def session_gate(request: web.Request, handler) -> web.StreamResponse:
        address = client_address(request)
        server.rate_limiter.enforce(GLOBAL_ROUTE, None, address)

        resource = request.match_info.route.resource
        route = resource.canonical if resource is not None else None

        identity = None
        if route in AUTHENTICATED_ROUTES:
            token = server.token_store.lookup(presented_token(request))
            if token is None:
                raise UnauthenticatedError()
            request["auth_token"] = token
            identity = token.id

        if route in server.rate_limiter.routes:
            server.rate_limiter.enforce(route, identity, address)

        return await handler(request)

    return session_gate


# ============================================================
# SERVER
# ============================================================

class CompanionServer:
    """Owns the companion components and the host-facing event hooks"""

    def __init__(
        self,
        settings: SettingsStore,
        state_store: PlayerStateStore,
        get_media_surface: MediaSurfaceAccessor,
        open_window: WindowOpener,
        route_limits: Optional[Dict[str, RouteLimit]] = None,
        pairing_options: Optional[Dict[str, float]] = None,
        playlist_timeout: float = 5.0,
    ):
        self.settings = settings
        self.state_store = state_store
        self.token_store = TokenStore(settings)
        self.pairing = PairingCoordinator(settings, self.token_store, open_window, **(pairing_options or {}))
        self.rate_limiter = RateLimiter(route_limits or ROUTE_LIMITS)
        self.commands = CommandDispatcher(get_media_surface)
        self.playlist_relay = PlaylistRelay(get_media_surface, timeout=playlist_timeout)
        self.broadcaster = RealtimeBroadcaster(self.token_store)

    def setup(self, app: web.Application) -> None:
        app[COMPANION_KEY] = self
        app.middlewares.append(error_middleware)
        app.middlewares.append(make_session_gate(self))

        app.router.add_post(ROUTE_REQUEST_CODE, self.api_request_code)
        app.router.add_post(ROUTE_REQUEST_TOKEN, self.api_request_token)
        app.router.add_get(ROUTE_PLAYLISTS, self.api_playlists)
        app.router.add_get(ROUTE_STATE, self.api_state)
        app.router.add_post(ROUTE_COMMAND, self.api_command)
        app.router.add_get(ROUTE_REALTIME, self.broadcaster.handle)

        app.on_startup.append(self.on_startup)
        app.on_cleanup.append(self.on_cleanup)

    async def on_startup(self, app: web.Application) -> None:
        await self.broadcaster.start()
        self.state_store.add_listener(self.broadcaster.state_changed)
        logger.info("🎛️ Companion API ready at %s", API_PREFIX)

    async def on_cleanup(self, app: web.Application) -> None:
        self.state_store.remove_listener(self.broadcaster.state_changed)
        await self.broadcaster.stop()

    # Host hooks, called by the player view

    def playlist_created(self, playlist: Dict[str, Any]) -> None:
        self.broadcaster.playlist_created(playlist)

    def playlist_deleted(self, playlist_id: str) -> None:
        self.broadcaster.playlist_deleted(playlist_id)

    def playlists_response(self, request_id: str, playlists) -> bool:
        return self.playlist_relay.resolve(request_id, playlists)

    # ============================================================
    # AUTHORIZATION
    # ============================================================

    async def api_request_code(self, request: web.Request) -> web.Response:
        """Issue a temporary code the companion shows to the user"""
        body = await read_json(request)
        code = await self.pairing.request_code(require_app_name(body))
        return web.json_response({"code": code})

    async def api_request_token(self, request: web.Request) -> web.Response:
        """Exchange a temporary code for a token once the user approves"""
        body = await read_json(request)
        token: AuthToken = await self.pairing.confirm(
            require_app_name(body),
            body.get("code"),
            lambda: connection_closed(request),
        )
        return web.json_response({"token": token.value})

    # ============================================================
    # PLAYER
    # ============================================================

    async def api_playlists(self, request: web.Request) -> web.Response:
        playlists = await self.playlist_relay.get_playlists()
        return web.json_response(playlists)

    async def api_state(self, request: web.Request) -> web.Response:
        return web.json_response(transform_player_state(self.state_store.get_state()))

    async def api_command(self, request: web.Request) -> web.Response:
        body = await read_json(request)
        self.commands.dispatch(body.get("command"), body.get("data"))
        return web.Response(status=204)


COMPANION_KEY = web.AppKey("companion", CompanionServer)
