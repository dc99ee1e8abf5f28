"""Terminal multiplexer adapter.

This module is the only place that talks to tmux. Everything above it
(topology planner, session discovery, delivery protocol, orchestrator)
depends on the narrow TerminalAdapter protocol, so tests can substitute an
in-memory fake.

Security:
- No shell=True in subprocess calls
- Timeout enforcement on every tmux call
- Session names are matched exactly (``=name``)
"""

import logging
import subprocess
from enum import Enum
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10
SUBMIT_KEY = "C-m"

# stderr fragments tmux prints when there is simply nothing to list
_NO_SERVER_MARKERS = ("no server running", "error connecting to", "no sessions")


class TmuxError(Exception):
    """Raised when a tmux command fails."""

    def __init__(self, message: str, command: list[str] | None = None, stderr: str = ""):
        super().__init__(message)
        self.command = command or []
        self.stderr = stderr


class SplitDirection(str, Enum):
    """Direction of a pane split."""

    HORIZONTAL = "-h"  # side by side
    VERTICAL = "-v"  # stacked


@runtime_checkable
class TerminalAdapter(Protocol):
    """Primitive terminal-multiplexer operations consumed by agentgrid.

    Every mutating call raises on failure; query calls raise when the
    underlying listing cannot be produced.
    """

    def session_exists(self, session: str) -> bool: ...

    def list_sessions(self) -> list[tuple[str, int]]: ...

    def create_session(self, session: str) -> None: ...

    def kill_session(self, session: str) -> None: ...

    def rename_window(self, session: str, window: str) -> None: ...

    def split_region(self, target: str, direction: SplitDirection) -> None: ...

    def resize_region(
        self, target: str, width: int | None = None, height: int | None = None
    ) -> None: ...

    def set_region_title(self, target: str, title: str) -> None: ...

    def show_region_titles(self, session: str) -> None: ...

    def list_regions(self, session: str) -> list[tuple[int, str]]: ...

    def send_keys(self, target: str, keys: str) -> None: ...

    def send_text(self, target: str, text: str) -> None: ...

    def send_keys_with_submit(self, target: str, text: str) -> None: ...

    def capture_region_text(self, target: str) -> str: ...

    def get_window_size(self, session: str) -> tuple[int, int]: ...

    def get_region_pid(self, target: str) -> int: ...

    def get_agent_pid(self, target: str) -> int | None: ...


class TmuxAdapter:
    """TerminalAdapter backed by the tmux binary."""

    def __init__(self, tmux_path: str = "tmux", timeout: int = DEFAULT_TIMEOUT, pgrep_path: str = "pgrep"):
        """Initialize adapter.

        Args:
            tmux_path: tmux executable
            timeout: Per-call timeout in seconds
            pgrep_path: pgrep executable, used to find a pane's agent process
        """
        self.tmux_path = tmux_path
        self.timeout = timeout
        self.pgrep_path = pgrep_path

    def _run(self, args: list[str], check: bool = True) -> subprocess.CompletedProcess:
        """Run one tmux command.

        Args:
            args: tmux arguments
            check: Raise TmuxError on non-zero exit

        Returns:
            Completed process with text output

        Raises:
            TmuxError: If tmux is missing, times out, or (with check) fails
        """
        cmd = [self.tmux_path, *args]
        logger.debug(f"tmux: {' '.join(args)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise TmuxError(f"tmux not found: {self.tmux_path}", cmd) from e
        except subprocess.TimeoutExpired as e:
            raise TmuxError(f"tmux timed out after {self.timeout}s: {' '.join(args)}", cmd) from e

        if check and result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise TmuxError(f"tmux {args[0]} failed: {stderr or 'exit ' + str(result.returncode)}", cmd, stderr)

        return result

    # Sessions

    def session_exists(self, session: str) -> bool:
        result = self._run(["has-session", "-t", f"={session}"], check=False)
        return result.returncode == 0

    def list_sessions(self) -> list[tuple[str, int]]:
        """List sessions with the pane count of their current window.

        Returns:
            [(session_name, pane_count)], in tmux order; empty when no server runs

        Raises:
            TmuxError: If tmux fails for any other reason
        """
        result = self._run(["list-sessions", "-F", "#{session_name}"], check=False)
        if result.returncode != 0:
            stderr = (result.stderr or "").strip().lower()
            if any(marker in stderr for marker in _NO_SERVER_MARKERS):
                return []
            raise TmuxError(f"tmux list-sessions failed: {stderr}", ["list-sessions"], stderr)

        sessions = []
        for line in result.stdout.splitlines():
            name = line.strip()
            if not name:
                continue
            try:
                count = len(self.list_regions(name))
            except TmuxError as e:
                logger.debug(f"Could not count panes of {name}: {e}")
                count = 0
            sessions.append((name, count))
        return sessions

    def create_session(self, session: str) -> None:
        if self.session_exists(session):
            raise TmuxError(f"session {session} already exists")
        self._run(["new-session", "-d", "-s", session])

    def kill_session(self, session: str) -> None:
        if not self.session_exists(session):
            return
        self._run(["kill-session", "-t", f"={session}"])

    def rename_window(self, session: str, window: str) -> None:
        self._run(["rename-window", "-t", session, window])

    def attach_session(self, session: str) -> int:
        """Attach the current terminal to a session (blocks until detach).

        Returns:
            tmux exit code
        """
        if not self.session_exists(session):
            raise TmuxError(f"session {session} does not exist")
        return subprocess.run([self.tmux_path, "attach-session", "-t", session], check=False).returncode

    # Panes

    def split_region(self, target: str, direction: SplitDirection) -> None:
        self._run(["split-window", SplitDirection(direction).value, "-t", target])

    def resize_region(self, target: str, width: int | None = None, height: int | None = None) -> None:
        if width is None and height is None:
            raise ValueError("resize_region needs a width or a height")
        args = ["resize-pane", "-t", target]
        if width is not None:
            args += ["-x", str(width)]
        if height is not None:
            args += ["-y", str(height)]
        self._run(args)

    def set_region_title(self, target: str, title: str) -> None:
        self._run(["select-pane", "-t", target, "-T", title])

    def show_region_titles(self, session: str) -> None:
        """Show pane titles in the borders and stop tmux from renaming the window."""
        self._run(["set-option", "-t", session, "pane-border-status", "top"])
        self._run(["set-option", "-t", session, "pane-border-format", "#T"])
        self._run(["set-window-option", "-t", session, "automatic-rename", "off"])
        self._run(["set-window-option", "-t", session, "allow-rename", "off"])

    def list_regions(self, session: str) -> list[tuple[int, str]]:
        result = self._run(["list-panes", "-t", session, "-F", "#{pane_index}\t#{pane_title}"])
        regions = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            index, _, title = line.partition("\t")
            try:
                regions.append((int(index), title))
            except ValueError:
                logger.debug(f"Ignoring unparseable list-panes line: {line!r}")
        return regions

    def send_keys(self, target: str, keys: str) -> None:
        """Send tmux key names (``C-m``, ``C-c``, ...)."""
        self._run(["send-keys", "-t", target, keys])

    def send_text(self, target: str, text: str) -> None:
        """Type ``text`` literally, even when it spells a key name."""
        self._run(["send-keys", "-l", "-t", target, text])

    def send_keys_with_submit(self, target: str, text: str) -> None:
        self.send_text(target, text)
        self.send_keys(target, SUBMIT_KEY)

    def capture_region_text(self, target: str) -> str:
        return self._run(["capture-pane", "-p", "-t", target]).stdout

    def get_window_size(self, session: str) -> tuple[int, int]:
        result = self._run(["display-message", "-p", "-t", session, "#{window_width}\t#{window_height}"])
        width, _, height = result.stdout.strip().partition("\t")
        try:
            return int(width), int(height)
        except ValueError as e:
            raise TmuxError(f"Unexpected window size output: {result.stdout!r}") from e

    def get_region_pid(self, target: str) -> int:
        result = self._run(["display-message", "-p", "-t", target, "#{pane_pid}"])
        try:
            return int(result.stdout.strip())
        except ValueError as e:
            raise TmuxError(f"Unexpected pane pid output: {result.stdout!r}") from e

    def get_agent_pid(self, target: str) -> int | None:
        """PID of the program started in a pane.

        ``#{pane_pid}`` is the pane's shell; a launch command typed into it
        runs as the shell's newest child.

        Returns:
            The child's PID, or None while the shell has no child

        Raises:
            TmuxError: If the pane or pgrep cannot be queried
        """
        shell_pid = self.get_region_pid(target)
        cmd = [self.pgrep_path, "-n", "-P", str(shell_pid)]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout, check=False)
        except FileNotFoundError as e:
            raise TmuxError(f"pgrep not found: {self.pgrep_path}", cmd) from e
        except subprocess.TimeoutExpired as e:
            raise TmuxError(f"pgrep timed out after {self.timeout}s", cmd) from e

        # pgrep exits 1 when nothing matched
        if result.returncode == 1:
            return None
        if result.returncode != 0:
            raise TmuxError(f"pgrep failed: {(result.stderr or '').strip()}", cmd, result.stderr or "")
        try:
            return int(result.stdout.split()[0])
        except (IndexError, ValueError) as e:
            raise TmuxError(f"Unexpected pgrep output: {result.stdout!r}", cmd) from e


__all__ = [
    "SUBMIT_KEY",
    "SplitDirection",
    "TerminalAdapter",
    "TmuxAdapter",
    "TmuxError",
]
