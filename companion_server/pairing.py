"""
Companion pairing: temporary code issuance and the human confirmation window

A companion asks for a temporary code, shows it to the user, then presents it
back. Presenting a valid code opens a confirmation window on the host; the
first of approve, deny, window closed, connection lost or timeout decides.
"""
import asyncio
import dataclasses
import enum
import hmac
import logging
import time
from typing import Callable, Dict, Optional, Protocol, Set

from .errors import (
    AuthorizationDeniedError, AuthorizationDisabledError,
    AuthorizationInvalidError, AuthorizationTimeoutError,
)
from .settings import AUTH_WINDOW_ENABLED_KEY, SettingsStore
from .tokens import AuthToken, TokenStore
from .utils import generate_auth_code, generate_session_id

logger = logging.getLogger("companion_server")

CONFIRM_TIMEOUT = 30.0
CONNECTION_POLL_INTERVAL = 0.25
CODE_LIFETIME = 60.0
CODE_WAIT = 10.0


class PairingOutcome(str, enum.Enum):
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"
    CONNECTION_LOST = "CONNECTION_LOST"


@dataclasses.dataclass
class TemporaryAuthCode:
    app_id: str
    code: str
    expires_at: float

    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at


class AuthorizationWindow(Protocol):
    def close(self) -> None: ...


WindowOpener = Callable[["PairingSession"], AuthorizationWindow]


class PairingSession:
    """
    One confirmation window interaction.

    The session owns its result future, its deadline timer and its
    connection watcher; resolve() settles it once and releases both.
    """

    def __init__(self, session_id: str, app_id: str, code: str):
        self.id = session_id
        self.app_id = app_id
        self.code = code
        self.started_at = time.time()
        self._result: asyncio.Future = asyncio.get_running_loop().create_future()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._watcher: Optional[asyncio.Task] = None

    @property
    def outcome(self) -> Optional[PairingOutcome]:
        return self._result.result() if self._result.done() else None

    @property
    def has_pending_handles(self) -> bool:
        return self._timer is not None or self._watcher is not None

    def start(self, timeout: float, poll_interval: float, connection_closed: Callable[[], bool]) -> None:
        if self._result.done():
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(timeout, self.resolve, PairingOutcome.TIMED_OUT)
        self._watcher = loop.create_task(self._watch_connection(connection_closed, poll_interval))

    async def _watch_connection(self, connection_closed: Callable[[], bool], poll_interval: float) -> None:
        while not self._result.done():
            await asyncio.sleep(poll_interval)
            if connection_closed():
                self.resolve(PairingOutcome.CONNECTION_LOST)

    def decide(self, authorized: bool) -> bool:
        """Decision reported by the confirmation window"""
        return self.resolve(PairingOutcome.APPROVED if authorized else PairingOutcome.DENIED)

    def approve(self) -> bool:
        return self.decide(True)

    def deny(self) -> bool:
        return self.decide(False)

    def window_closed(self) -> bool:
        return self.resolve(PairingOutcome.CANCELLED)

    def resolve(self, outcome: PairingOutcome) -> bool:
        """Settle the session; later calls are ignored and return False"""
        if self._result.done():
            return False
        self._result.set_result(outcome)
        self._release()
        return True

    def _release(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._watcher is not None:
            self._watcher.cancel()
            self._watcher = None

    async def wait(self) -> PairingOutcome:
        return await asyncio.shield(self._result)


class PairingCoordinator:
    """Issues temporary codes and runs confirmation sessions"""

    def __init__(
        self,
        settings: SettingsStore,
        token_store: TokenStore,
        open_window: WindowOpener,
        confirm_timeout: float = CONFIRM_TIMEOUT,
        poll_interval: float = CONNECTION_POLL_INTERVAL,
        code_lifetime: float = CODE_LIFETIME,
        code_wait: float = CODE_WAIT,
    ):
        self._settings = settings
        self._token_store = token_store
        self._open_window = open_window
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self.code_lifetime = code_lifetime
        self.code_wait = code_wait
        self._pending_code: Optional[TemporaryAuthCode] = None
        self._code_expiry: Optional[asyncio.TimerHandle] = None
        self._code_slot = asyncio.Condition()
        self._sessions: Dict[str, PairingSession] = {}
        self._notify_tasks: Set[asyncio.Task] = set()

    # ============================================================
    # FEATURE FLAG
    # ============================================================

    def is_enabled(self) -> bool:
        return self._settings.get_secret(AUTH_WINDOW_ENABLED_KEY) == "true"

    def set_enabled(self, enabled: bool) -> None:
        self._settings.set_secret(AUTH_WINDOW_ENABLED_KEY, "true" if enabled else "false")
        logger.info("Companion authorization %s", "enabled" if enabled else "disabled")

    # ============================================================
    # TEMPORARY CODES
    # ============================================================

    def _slot_free(self) -> bool:
        if self._pending_code is not None and self._pending_code.expired():
            self._clear_code()
        return self._pending_code is None

    async def request_code(self, app_id: str) -> str:
        """
        Issue a temporary code for app_id.

        Only one code is outstanding at a time; waits for the slot up to
        code_wait seconds before raising AuthorizationTimeoutError. A repeat
        request from the app holding the slot replaces its code.
        """
        async with self._code_slot:
            if self._pending_code is not None and self._pending_code.app_id == app_id:
                logger.info("Replacing authorization code for %s", app_id)
                self._clear_code()
            try:
                await asyncio.wait_for(self._code_slot.wait_for(self._slot_free), self.code_wait)
            except asyncio.TimeoutError:
                logger.warning("⏳ No authorization code available for %s", app_id)
                raise AuthorizationTimeoutError() from None

            pending = TemporaryAuthCode(
                app_id=app_id,
                code=generate_auth_code(),
                expires_at=time.monotonic() + self.code_lifetime,
            )
            self._pending_code = pending
            self._code_expiry = asyncio.get_running_loop().call_later(
                self.code_lifetime, self._expire_code, pending
            )
            logger.info("🔢 Issued authorization code for %s", app_id)
            return pending.code

    def consume_code(self, app_id, code) -> bool:
        """Check and remove the pending code in one step"""
        pending = self._pending_code
        if pending is None or pending.expired():
            return False
        if not isinstance(app_id, str) or not isinstance(code, str):
            return False
        if pending.app_id != app_id or not hmac.compare_digest(pending.code.encode(), code.encode()):
            return False
        self._clear_code()
        return True

    def _expire_code(self, pending: TemporaryAuthCode) -> None:
        if self._pending_code is pending:
            logger.info("Authorization code for %s expired", pending.app_id)
            self._clear_code()

    def _clear_code(self) -> None:
        self._pending_code = None
        if self._code_expiry is not None:
            self._code_expiry.cancel()
            self._code_expiry = None
        task = asyncio.get_running_loop().create_task(self._notify_slot())
        self._notify_tasks.add(task)
        task.add_done_callback(self._notify_tasks.discard)

    async def _notify_slot(self) -> None:
        async with self._code_slot:
            self._code_slot.notify_all()

    # ============================================================
    # CONFIRMATION
    # ============================================================

    @property
    def active_sessions(self) -> Dict[str, PairingSession]:
        return dict(self._sessions)

    def get_session(self, session_id: str) -> Optional[PairingSession]:
        """Lookup used by the confirmation window to show app name and code"""
        return self._sessions.get(session_id)

    async def confirm(self, app_id, code, connection_closed: Callable[[], bool] = lambda: False) -> AuthToken:
        """
        Exchange a temporary code for a token after the user approves.

        Raises:
            AuthorizationDisabledError: pairing is switched off
            AuthorizationInvalidError: code unknown, expired or already used
            AuthorizationDeniedError: user denied, closed the window, the
                client went away or the window timed out
        """
        if not self.is_enabled():
            raise AuthorizationDisabledError()

        if not self.consume_code(app_id, code):
            raise AuthorizationInvalidError()

        session = PairingSession(generate_session_id(), app_id, code)
        self._sessions[session.id] = session
        logger.info("🪪 Authorization requested by %s", app_id)

        window = None
        try:
            session.start(self.confirm_timeout, self.poll_interval, connection_closed)
            window = self._open_window(session)
            outcome = await session.wait()
        finally:
            session.resolve(PairingOutcome.CANCELLED)
            self._sessions.pop(session.id, None)
            if window is not None:
                window.close()

        if outcome is not PairingOutcome.APPROVED:
            logger.info("🚫 Authorization for %s ended: %s", app_id, outcome.value)
            raise AuthorizationDeniedError()

        token = self._token_store.issue(app_id)
        self.set_enabled(False)
        logger.info("✅ Authorization approved for %s", app_id)
        return token
