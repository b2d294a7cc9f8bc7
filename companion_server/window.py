"""
Terminal confirmation window for standalone runs
The operator answers y/n on stdin; closing is a deny
"""
import asyncio
import logging
import sys
from typing import TextIO

from .pairing import PairingSession

logger = logging.getLogger("companion_server")


class TerminalAuthorizationWindow:
    """One-shot prompt bound to a single pairing session"""

    def __init__(self, session: PairingSession, stdin: TextIO = sys.stdin, stdout: TextIO = sys.stdout):
        self._session = session
        self._stdin = stdin
        self._stdout = stdout
        self._loop = asyncio.get_running_loop()
        self._closed = False

        self._stdout.write(
            f"\n🔔 '{session.app_id}' wants to control playback.\n"
            f"   Confirm the code shown by the app: {session.code}\n"
            f"   Allow? [y/N] "
        )
        self._stdout.flush()
        self._loop.add_reader(self._stdin.fileno(), self._on_input)

    def _on_input(self) -> None:
        line = self._stdin.readline()
        if not line:
            # stdin closed
            self._session.window_closed()
        else:
            self._session.decide(line.strip().lower() in ("y", "yes"))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._loop.remove_reader(self._stdin.fileno())
        self._stdout.write("\n")
        self._stdout.flush()
        logger.debug("Authorization window for %s closed", self._session.app_id)


def open_terminal_window(session: PairingSession) -> TerminalAuthorizationWindow:
    return TerminalAuthorizationWindow(session)
