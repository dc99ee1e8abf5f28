"""
Shared test fixtures and configuration for agentgrid tests.

This module provides common fixtures used across all test types:
- FakeTmuxAdapter, an in-memory stand-in for tmux
- Real short-lived processes for lifecycle tests
- Fast timing policy and wired-up components
"""

import subprocess
import threading
import time
from dataclasses import dataclass, field

import pytest

from agentgrid.delivery import DeliveryProtocol
from agentgrid.lifecycle import ProcessRegistry, Supervisor, is_alive
from agentgrid.team_orchestrator import TeamOrchestrator
from agentgrid.timing import TimingPolicy
from agentgrid.tmux_adapter import SplitDirection, TmuxError

# Above the largest possible Linux pid_max (2**22), so never a real process
FAKE_PID_BASE = 4_195_000


def start_process(seconds: int = 60, ignore_graceful: bool = False) -> subprocess.Popen:
    """Start a real process and reap it in the background once it exits.

    Reaping keeps the PID from lingering as a zombie, which would still
    answer ``os.kill(pid, 0)``.
    """
    if ignore_graceful:
        cmd = ["sh", "-c", "trap '' INT TERM; while :; do sleep 1; done"]
    else:
        cmd = ["sleep", str(seconds)]
    proc = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    threading.Thread(target=proc.wait, daemon=True).start()
    if ignore_graceful:
        # Give the shell time to install its trap
        time.sleep(0.3)
    return proc


def stop_process(proc: subprocess.Popen) -> None:
    if proc.poll() is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        pass


# ============================================================================
# FAKE TMUX
# ============================================================================


@dataclass
class FakePane:
    index: int
    title: str = ""
    text: str = ""
    pid: int = 0
    keys: list[str] = field(default_factory=list)
    typed: list[str] = field(default_factory=list)
    agent_pid: int | None = None
    proc: subprocess.Popen | None = None


class FakeTmuxAdapter:
    """In-memory TerminalAdapter.

    Splitting inserts the new pane right after its target and renumbers the
    panes, the way tmux does. Each pane's own PID stands for its shell and
    never changes. A launch command starts an agent as a separate process:
    a fake PID, or with ``launch_processes`` a real ``sleep``.
    """

    def __init__(self, base_index: int = 0, width: int = 200, height: int = 50, launch_processes: bool = False):
        self.base_index = base_index
        self.width = width
        self.height = height
        self.launch_processes = launch_processes
        self.ready_text = "claude >"
        self.sessions: dict[str, list[FakePane]] = {}
        self.windows: dict[str, str] = {}
        self.calls: list[tuple] = []
        self._failures: dict[str, int | None] = {}
        self._next_pid = FAKE_PID_BASE

    # Test helpers

    def fail(self, method: str, times: int | None = 1) -> None:
        """Make the next ``times`` calls of ``method`` raise TmuxError (None: always)."""
        self._failures[method] = times

    def _record(self, method: str, *args) -> None:
        self.calls.append((method, *args))
        if method in self._failures:
            remaining = self._failures[method]
            if remaining is None:
                raise TmuxError(f"{method} failed (fake)")
            if remaining > 0:
                self._failures[method] = remaining - 1
                raise TmuxError(f"{method} failed (fake)")

    def calls_of(self, method: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == method]

    def add_session(self, name: str, panes: int = 1) -> None:
        self.sessions[name] = [self._new_pane(self.base_index + i) for i in range(panes)]

    def pane(self, target: str) -> FakePane:
        session, _, rest = target.partition(":")
        panes = self.sessions.get(session)
        if panes is None:
            raise TmuxError(f"can't find session: {session}")
        if not rest:
            return panes[0]
        index = int(rest.rpartition(".")[2])
        for pane in panes:
            if pane.index == index:
                return pane
        raise TmuxError(f"can't find pane: {target}")

    def processes(self) -> list[subprocess.Popen]:
        return [p.proc for panes in self.sessions.values() for p in panes if p.proc is not None]

    def cleanup(self) -> None:
        for panes in self.sessions.values():
            for pane in panes:
                if pane.proc is not None:
                    stop_process(pane.proc)

    def _new_pane(self, index: int) -> FakePane:
        self._next_pid += 1
        return FakePane(index=index, pid=self._next_pid)

    # TerminalAdapter

    def session_exists(self, session: str) -> bool:
        self._record("session_exists", session)
        return session in self.sessions

    def list_sessions(self) -> list[tuple[str, int]]:
        self._record("list_sessions")
        return [(name, len(panes)) for name, panes in self.sessions.items()]

    def create_session(self, session: str) -> None:
        self._record("create_session", session)
        if session in self.sessions:
            raise TmuxError(f"duplicate session: {session}")
        self.add_session(session)

    def kill_session(self, session: str) -> None:
        self._record("kill_session", session)
        for pane in self.sessions.pop(session, []):
            if pane.proc is not None:
                stop_process(pane.proc)
        self.windows.pop(session, None)

    def rename_window(self, session: str, window: str) -> None:
        self._record("rename_window", session, window)
        self.windows[session] = window

    def split_region(self, target: str, direction: SplitDirection) -> None:
        self._record("split_region", target, direction)
        session = target.partition(":")[0]
        panes = self.sessions[session]
        position = panes.index(self.pane(target))
        panes.insert(position + 1, self._new_pane(0))
        for offset, pane in enumerate(panes):
            pane.index = self.base_index + offset

    def resize_region(self, target: str, width: int | None = None, height: int | None = None) -> None:
        self._record("resize_region", target, width, height)
        self.pane(target)

    def set_region_title(self, target: str, title: str) -> None:
        self._record("set_region_title", target, title)
        self.pane(target).title = title

    def show_region_titles(self, session: str) -> None:
        self._record("show_region_titles", session)

    def list_regions(self, session: str) -> list[tuple[int, str]]:
        self._record("list_regions", session)
        if session not in self.sessions:
            raise TmuxError(f"can't find session: {session}")
        return [(pane.index, pane.title) for pane in self.sessions[session]]

    def send_keys(self, target: str, keys: str) -> None:
        self._record("send_keys", target, keys)
        self.pane(target).keys.append(keys)

    def send_text(self, target: str, text: str) -> None:
        self._record("send_text", target, text)
        pane = self.pane(target)
        pane.keys.append(text)
        pane.typed.append(text)

    def send_keys_with_submit(self, target: str, text: str) -> None:
        self._record("send_keys_with_submit", target, text)
        pane = self.pane(target)
        pane.keys.append(text)
        if text.startswith("cat "):
            return
        if pane.agent_pid is None:
            if self.launch_processes:
                pane.proc = start_process()
                pane.agent_pid = pane.proc.pid
            else:
                self._next_pid += 1
                pane.agent_pid = self._next_pid
        pane.text = self.ready_text

    def capture_region_text(self, target: str) -> str:
        self._record("capture_region_text", target)
        return self.pane(target).text

    def get_window_size(self, session: str) -> tuple[int, int]:
        self._record("get_window_size", session)
        return self.width, self.height

    def get_region_pid(self, target: str) -> int:
        self._record("get_region_pid", target)
        return self.pane(target).pid

    def get_agent_pid(self, target: str) -> int | None:
        self._record("get_agent_pid", target)
        pane = self.pane(target)
        if pane.agent_pid is None or (pane.proc is not None and not is_alive(pane.agent_pid)):
            return None
        return pane.agent_pid

    def attach_session(self, session: str) -> int:
        self._record("attach_session", session)
        return 0


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def fake_adapter():
    """FakeTmuxAdapter with no real processes."""
    adapter = FakeTmuxAdapter()
    yield adapter
    adapter.cleanup()


@pytest.fixture
def process_adapter():
    """FakeTmuxAdapter that starts a real ``sleep`` per launched agent."""
    adapter = FakeTmuxAdapter(launch_processes=True)
    yield adapter
    adapter.cleanup()


@pytest.fixture
def make_adapter():
    """Factory for FakeTmuxAdapter with custom geometry or base index."""
    adapters = []

    def _make(**kwargs) -> FakeTmuxAdapter:
        adapter = FakeTmuxAdapter(**kwargs)
        adapters.append(adapter)
        return adapter

    yield _make
    for adapter in adapters:
        adapter.cleanup()


@pytest.fixture
def fast_timing():
    return TimingPolicy.fast()


@pytest.fixture
def registry():
    return ProcessRegistry()


@pytest.fixture
def supervisor(registry, fast_timing):
    return Supervisor(registry, fast_timing)


@pytest.fixture
def spawn():
    """Factory for real processes, all killed at teardown."""
    procs = []

    def _spawn(seconds: int = 60, ignore_graceful: bool = False) -> subprocess.Popen:
        proc = start_process(seconds, ignore_graceful=ignore_graceful)
        procs.append(proc)
        return proc

    yield _spawn
    for proc in procs:
        stop_process(proc)


@pytest.fixture
def make_orchestrator(fast_timing):
    """Build a TeamOrchestrator around a given adapter."""

    def _make(adapter) -> TeamOrchestrator:
        registry = ProcessRegistry()
        return TeamOrchestrator(
            adapter=adapter,
            registry=registry,
            supervisor=Supervisor(registry, fast_timing),
            delivery=DeliveryProtocol(adapter, registry, fast_timing),
            timing=fast_timing,
        )

    return _make
