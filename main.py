#!/usr/bin/env python3
"""
YTMD Companion Server - Entry Point
Pairing + rate limited REST control + realtime state channel
"""
import logging
from typing import Optional

from aiohttp import web

from companion_server.api import COMPANION_KEY, CompanionServer
from companion_server.commands import MediaSurfaceAccessor
from companion_server.pairing import WindowOpener
from companion_server.settings import ALLOW_PAIRING, PORT, SERVER_HOST, SettingsStore
from companion_server.state import PlayerStateStore
from companion_server.window import open_terminal_window

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("companion_server")


def no_media_surface():
    return None


def create_app(
    settings: Optional[SettingsStore] = None,
    state_store: Optional[PlayerStateStore] = None,
    get_media_surface: MediaSurfaceAccessor = no_media_surface,
    open_window: WindowOpener = open_terminal_window,
    **options,
) -> web.Application:
    """Create and configure the aiohttp application"""
    app = web.Application()
    server = CompanionServer(
        settings or SettingsStore(),
        state_store or PlayerStateStore(),
        get_media_surface,
        open_window,
        **options,
    )
    server.setup(app)
    return app


def main():
    settings = SettingsStore.from_data_dir()
    app = create_app(settings=settings)
    if ALLOW_PAIRING:
        app[COMPANION_KEY].pairing.set_enabled(True)

    logger.info(f"🚀 Starting companion server on {SERVER_HOST}:{PORT}")
    web.run_app(app, host=SERVER_HOST, port=PORT)


if __name__ == "__main__":
    main()
