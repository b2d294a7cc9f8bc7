"""Test configuration and fixtures."""

import asyncio
from typing import Optional

import pytest

from companion_server.api import COMPANION_KEY
from companion_server.settings import SettingsStore
from companion_server.state import PlayerStateStore
from companion_server.tokens import TokenStore
from main import create_app


class FakeMediaSurface:
    """Records everything sent to the player."""

    def __init__(self):
        self.executed = []
        self.playlist_requests = []

    def execute(self, command, *args):
        self.executed.append((command, *args))

    def request_playlists(self, request_id):
        self.playlist_requests.append(request_id)


class FakeAuthorizationWindow:
    def __init__(self, session):
        self.session = session
        self.closed = False

    def close(self):
        self.closed = True


class WindowFactory:
    """
    Opens fake confirmation windows.

    decision: True approves, False denies, "close" closes the window,
    None leaves the session waiting.
    """

    def __init__(self):
        self.decision = None
        self.windows = []

    def __call__(self, session):
        window = FakeAuthorizationWindow(session)
        self.windows.append(window)
        decision = self.decision
        if decision == "close":
            asyncio.get_running_loop().call_soon(session.window_closed)
        elif decision is not None:
            asyncio.get_running_loop().call_soon(session.decide, decision)
        return window


class SurfaceHolder:
    def __init__(self):
        self.surface: Optional[FakeMediaSurface] = FakeMediaSurface()

    def __call__(self):
        return self.surface


async def wait_until(predicate, timeout: float = 1.0):
    """Poll predicate until true or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def settings():
    return SettingsStore()


@pytest.fixture
def token_store(settings):
    return TokenStore(settings)


@pytest.fixture
def window_factory():
    return WindowFactory()


@pytest.fixture
def surface_holder():
    return SurfaceHolder()


@pytest.fixture
def state_store():
    return PlayerStateStore()


@pytest.fixture
def app(settings, state_store, surface_holder, window_factory):
    return create_app(
        settings=settings,
        state_store=state_store,
        get_media_surface=surface_holder,
        open_window=window_factory,
        pairing_options={
            "confirm_timeout": 0.5,
            "poll_interval": 0.02,
            "code_wait": 0.2,
        },
        playlist_timeout=0.2,
    )


@pytest.fixture
def companion(app):
    return app[COMPANION_KEY]


@pytest.fixture
async def client(aiohttp_client, app):
    return await aiohttp_client(app)


@pytest.fixture
def auth_headers(companion):
    token = companion.token_store.issue("test-app")
    return {"Authorization": token.value}
