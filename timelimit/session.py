"""Session control — who is at the console, and how to tell or stop them.

The engine only talks to ``SessionControl``. ``MacSession`` is the macOS
implementation: the console user comes from SystemConfiguration, everything
visible to the user goes through ``osascript`` and ``say``.
"""

from __future__ import annotations

import abc
import logging
import os
import subprocess
from pathlib import Path

import timelimit.config as config
from timelimit.errors import CapabilityError, NoConsoleUserError

log = logging.getLogger(__name__)

# Console owner when nobody is logged in at the GUI
_LOGIN_WINDOW_USERS = frozenset({"", "loginwindow", "root"})


class SessionControl(abc.ABC):
    """Capabilities the limit engine needs from the user's session."""

    @abc.abstractmethod
    def current_user(self) -> str:
        """Name of the user logged in at the console."""

    @abc.abstractmethod
    def notify(self, title: str, message: str) -> None:
        """Post a non-blocking notification."""

    @abc.abstractmethod
    def alert(self, title: str, message: str) -> None:
        """Show a dialog; returns once it is dismissed or gives up."""

    @abc.abstractmethod
    def speak(self, message: str) -> None:
        """Read ``message`` out loud."""

    @abc.abstractmethod
    def write_status_line(self, message: str) -> None:
        """Replace the one-line status shown to the user."""

    @abc.abstractmethod
    def force_logout(self) -> None:
        """End the current user's session."""

    @abc.abstractmethod
    def sleep_system(self) -> None:
        """Put the machine to sleep."""


def _quote(text: str) -> str:
    """Escape text for use inside an AppleScript string literal."""
    return text.replace("\\", "\\\\").replace('"', '\\"')


def _console_user() -> tuple[str | None, int | None]:
    """(name, uid) of the console owner."""
    from SystemConfiguration import SCDynamicStoreCopyConsoleUser

    name, uid, _gid = SCDynamicStoreCopyConsoleUser(None, None, None)
    return name, uid


class MacSession(SessionControl):
    """macOS session control via SystemConfiguration, osascript and say.

    When running as root (a LaunchDaemon), user-facing commands are run inside
    the console user's GUI session with ``launchctl asuser``.
    """

    def __init__(self, status_path: Path | None = None,
                 give_up_after: int = config.ALERT_GIVE_UP_SECONDS):
        self.status_path = status_path or config.STATUS_PATH
        self.give_up_after = give_up_after
        self._user: str | None = None
        self._uid: int | None = None

    def current_user(self) -> str:
        try:
            user, uid = _console_user()
        except Exception as e:
            raise CapabilityError(f"cannot determine console user: {e}") from e
        if not user or user in _LOGIN_WINDOW_USERS:
            raise NoConsoleUserError(f"no user logged in at the console (found {user!r})")
        log.debug("found console user %r (uid=%s)", user, uid)
        self._user, self._uid = str(user), uid
        return self._user

    def notify(self, title: str, message: str) -> None:
        log.warning("show notification: %s: %s", title, message)
        script = 'display notification "%s" with title "%s" sound name "Pop"' % (
            _quote(message), _quote(title),
        )
        self._osascript(script)

    def alert(self, title: str, message: str) -> None:
        log.warning("show alert: %s: %s", title, message)
        script = (
            'tell app "System Events" to display dialog "%s" with title "%s" '
            'with icon note buttons {"OK"} default button "OK" giving up after %d'
        ) % (_quote(message), _quote(title), self.give_up_after)
        self._osascript(script, timeout=self.give_up_after + config.COMMAND_TIMEOUT)

    def speak(self, message: str) -> None:
        log.info("say: %s", message)
        self._run(["say", message])

    def write_status_line(self, message: str) -> None:
        try:
            self.status_path.parent.mkdir(parents=True, exist_ok=True)
            self.status_path.write_text(message.strip() + "\n")
        except OSError as e:
            raise CapabilityError(f"cannot write status to {self.status_path}: {e}") from e
        log.debug("status: %s", message)

    def force_logout(self) -> None:
        log.warning("logout current user")
        self._osascript('tell application "loginwindow" to «event aevtrlgo»')

    def sleep_system(self) -> None:
        log.warning("putting system to sleep")
        self._osascript('tell app "System Events" to sleep')

    # ── internal ────────────────────────────────────────────────────────

    def _osascript(self, script: str, timeout: float = config.COMMAND_TIMEOUT) -> str:
        return self._run(["osascript", "-e", script], timeout=timeout)

    def _as_console_user(self, cmd: list[str]) -> list[str]:
        if os.geteuid() != 0 or self._uid is None or self._user is None:
            return cmd
        return ["launchctl", "asuser", str(self._uid), "sudo", "-u", self._user, *cmd]

    def _run(self, cmd: list[str], timeout: float = config.COMMAND_TIMEOUT) -> str:
        cmd = self._as_console_user(cmd)
        log.debug("running %s", cmd)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise CapabilityError(f"{cmd[0]} failed: {e}") from e
        if result.returncode != 0:
            raise CapabilityError(
                f"{cmd[0]} exited with {result.returncode}: {result.stderr.strip()}"
            )
        return result.stdout
