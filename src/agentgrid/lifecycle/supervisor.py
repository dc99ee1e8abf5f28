"""Supervisor - graceful-then-forceful termination of supervised processes.

Philosophy:
- Ruthless simplicity: SIGINT, poll, SIGKILL
- Single responsibility: Termination only (tracking lives in the registry)
- Standard library: os.kill + ThreadPoolExecutor
- Self-contained: Every process is attempted, failures are collected

Public API (Studs):
    Supervisor - Termination service over a ProcessRegistry
    TerminationError - Aggregated per-process failures
    TerminationFailure - One failed termination
    ProcessNotFoundError - Unknown (session, pane)
"""

import logging
import os
import signal
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from agentgrid.lifecycle.process_registry import ProcessRecord, ProcessRegistry, RegistryKey, is_alive
from agentgrid.roles import PaneAddress
from agentgrid.timing import TimingPolicy

logger = logging.getLogger(__name__)


class ProcessNotFoundError(KeyError):
    """Raised when no process is registered for a (session, pane)."""

    pass


@dataclass
class TerminationFailure:
    """One process that could not be terminated."""

    key: RegistryKey
    pid: int
    stage: str
    error: str

    def describe(self) -> str:
        session, pane = self.key
        return f"{session}:{pane} (pid {self.pid}) {self.stage}: {self.error}"


class TerminationError(Exception):
    """Raised after a termination pass in which some processes failed.

    Every process was still attempted; ``failures`` lists them all.
    """

    def __init__(self, failures: list[TerminationFailure]):
        self.failures = failures
        details = "; ".join(f.describe() for f in failures)
        super().__init__(f"{len(failures)} process(es) failed to terminate: {details}")


class Supervisor:
    """Terminate supervised processes with deadline escalation.

    Example:
        >>> supervisor = Supervisor(registry, TimingPolicy())
        >>> supervisor.terminate_all_processes()
    """

    def __init__(
        self,
        registry: ProcessRegistry,
        timing: TimingPolicy | None = None,
        graceful_signal: int = signal.SIGINT,
    ):
        """Initialize supervisor.

        Args:
            registry: Registry of supervised processes
            timing: Deadline and poll interval (default: production values)
            graceful_signal: First signal sent before escalating to SIGKILL (default
                SIGINT, the interrupt an interactive agent handles like Ctrl-C)
        """
        self.registry = registry
        self.timing = timing or TimingPolicy()
        self.graceful_signal = graceful_signal

    def _send_signal(self, pid: int, sig: int) -> None:
        os.kill(pid, sig)

    def _signal_graceful(self, record: ProcessRecord) -> bool:
        """Send the graceful signal.

        Returns:
            True if the process was signalled, False if it was already gone

        Raises:
            OSError: If signalling a live process failed
        """
        if not is_alive(record.pid):
            return False
        try:
            self._send_signal(record.pid, self.graceful_signal)
        except ProcessLookupError:
            return False
        except OSError:
            if not is_alive(record.pid):
                return False
            raise
        return True

    def _force_kill(self, key: RegistryKey, pid: int) -> TerminationFailure | None:
        try:
            self._send_signal(pid, signal.SIGKILL)
        except ProcessLookupError:
            return None
        except OSError as e:
            if is_alive(pid):
                return TerminationFailure(key, pid, "force", str(e))
            return None
        logger.info(f"Process force killed: {key[0]}:{key[1]} pid={pid}")
        return None

    def _wait_for_exit(self, remaining: dict[RegistryKey, int]) -> None:
        """Poll until every PID in ``remaining`` is gone or the deadline passes.

        ``remaining`` is trimmed in place; survivors stay in it.
        """
        deadline = time.monotonic() + self.timing.termination_deadline
        while remaining and time.monotonic() < deadline:
            for key, pid in list(remaining.items()):
                if not is_alive(pid):
                    logger.info(f"Process terminated gracefully: {key[0]}:{key[1]} pid={pid}")
                    del remaining[key]
            if remaining:
                time.sleep(self.timing.termination_poll_interval)

    def terminate_all_processes(self, session_name: str | None = None) -> None:
        """Terminate every tracked process (optionally of one session).

        1. Snapshot the registry under its lock, then release it
        2. Send the graceful signal to each entry concurrently
        3. Poll liveness until all are dead or the deadline passes
        4. SIGKILL the survivors
        5. Clear the registry (or remove the session's keys)

        Args:
            session_name: Limit the pass to one session

        Raises:
            TerminationError: After all processes were attempted, if any failed
        """
        if session_name is None:
            snapshot = self.registry.get_all_processes()
        else:
            snapshot = self.registry.get_session_processes(session_name)

        failures: list[TerminationFailure] = []
        remaining: dict[RegistryKey, int] = {}

        if snapshot:
            logger.info(f"Terminating {len(snapshot)} process(es)")
            with ThreadPoolExecutor(max_workers=len(snapshot)) as executor:
                futures = {executor.submit(self._signal_graceful, record): key for key, record in snapshot.items()}
                for future in as_completed(futures):
                    key = futures[future]
                    pid = snapshot[key].pid
                    try:
                        if future.result():
                            remaining[key] = pid
                        else:
                            logger.debug(f"Process already gone: {key[0]}:{key[1]} pid={pid}")
                    except OSError as e:
                        logger.warning(f"Graceful signal failed for pid {pid}, escalating: {e}")
                        remaining[key] = pid

            self._wait_for_exit(remaining)

            for key, pid in remaining.items():
                failure = self._force_kill(key, pid)
                if failure:
                    failures.append(failure)

        if session_name is None:
            self.registry.clear()
        else:
            self.registry.remove(snapshot.keys())

        if failures:
            for failure in failures:
                logger.error(f"Failed to terminate {failure.describe()}")
            raise TerminationError(failures)

    def terminate_process(self, session_name: str, pane: PaneAddress) -> None:
        """Terminate one process with the same escalation.

        The record is removed only when termination succeeded.

        Raises:
            ProcessNotFoundError: If nothing is registered for (session, pane)
            TerminationError: If the process survived SIGKILL
        """
        record = self.registry.get_process_info(session_name, pane)
        if record is None:
            raise ProcessNotFoundError(f"process not found: {session_name}:{pane}")

        key = record.key
        try:
            signalled = self._signal_graceful(record)
        except OSError as e:
            logger.warning(f"Graceful signal failed for pid {record.pid}, escalating: {e}")
            signalled = True

        if signalled:
            remaining = {key: record.pid}
            self._wait_for_exit(remaining)
            if remaining:
                failure = self._force_kill(key, record.pid)
                if failure:
                    raise TerminationError([failure])

        self.registry.unregister_process(session_name, pane)
        logger.info(f"Process terminated: {session_name}:{pane} pid={record.pid}")

    def cleanup_dead_processes(self) -> int:
        return self.registry.cleanup_dead_processes()


__all__ = [
    "ProcessNotFoundError",
    "Supervisor",
    "TerminationError",
    "TerminationFailure",
]
