"""Process Registry - lock-guarded map of supervised processes.

Philosophy:
- Ruthless simplicity: One dict, one lock
- Single responsibility: Tracking and liveness only
- Standard library: os.kill probes, threading.Lock
- Self-contained: Records never leave the registry by reference

Public API (Studs):
    ProcessRegistry - Registry of supervised processes
    ProcessRecord - One supervised process
    ProcessStatus - running / dead
    is_alive - Non-destructive PID existence probe
"""

import logging
import os
import threading
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum

from agentgrid.roles import PaneAddress

logger = logging.getLogger(__name__)

RegistryKey = tuple[str, PaneAddress]


class ProcessStatus(str, Enum):
    """Observed state of a supervised process."""

    RUNNING = "running"
    DEAD = "dead"


@dataclass
class ProcessRecord:
    """One supervised process, keyed by (session, pane)."""

    pid: int
    session_name: str
    pane: PaneAddress
    command: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    status: ProcessStatus = ProcessStatus.RUNNING
    last_check: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def key(self) -> RegistryKey:
        return (self.session_name, self.pane)

    def to_dict(self) -> dict[str, str | int]:
        return {
            "key": f"{self.session_name}:{self.pane}",
            "pid": self.pid,
            "session": self.session_name,
            "pane": str(self.pane),
            "command": self.command,
            "start_time": self.start_time.strftime("%Y-%m-%d %H:%M:%S"),
            "status": self.status.value,
            "last_check": self.last_check.strftime("%Y-%m-%d %H:%M:%S"),
        }


def is_alive(pid: int) -> bool:
    """Check whether a PID exists without signalling it.

    Any error, including "no such process" and "permission denied", counts
    as not alive. Never raises.
    """
    # os.kill(0, ...) and negative PIDs address process groups
    if not isinstance(pid, int) or isinstance(pid, bool) or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except (OSError, OverflowError):
        return False
    return True


class ProcessRegistry:
    """In-memory registry of supervised processes.

    Every read and write path takes the same lock. Callers only ever get
    copies of records.

    Example:
        >>> registry = ProcessRegistry()
        >>> registry.register_process("team", pane, "claude", 4242)
        >>> registry.is_process_running("team", pane)
    """

    def __init__(self):
        """Initialize empty registry."""
        self._processes: dict[RegistryKey, ProcessRecord] = {}
        self._lock = threading.Lock()

    def register_process(self, session_name: str, pane: PaneAddress, command: str, pid: int) -> None:
        """Insert or overwrite the record for (session, pane). Last write wins."""
        record = ProcessRecord(pid=pid, session_name=session_name, pane=pane, command=command)
        with self._lock:
            self._processes[record.key] = record
        logger.info(f"Process registered: session={session_name} pane={pane} pid={pid}")

    def unregister_process(self, session_name: str, pane: PaneAddress) -> bool:
        """Remove a record.

        Returns:
            True if a record was removed
        """
        with self._lock:
            record = self._processes.pop((session_name, pane), None)
        if record is None:
            return False
        logger.info(f"Process unregistered: session={session_name} pane={pane} pid={record.pid}")
        return True

    def is_process_running(self, session_name: str, pane: PaneAddress) -> bool:
        """Live probe of the registered PID (False when not registered)."""
        with self._lock:
            record = self._processes.get((session_name, pane))
            pid = record.pid if record else None
        return pid is not None and is_alive(pid)

    def get_process_info(self, session_name: str, pane: PaneAddress) -> ProcessRecord | None:
        with self._lock:
            record = self._processes.get((session_name, pane))
            return replace(record) if record else None

    def get_all_processes(self) -> dict[RegistryKey, ProcessRecord]:
        """Snapshot of every record (copies)."""
        with self._lock:
            return {key: replace(record) for key, record in self._processes.items()}

    def get_session_processes(self, session_name: str) -> dict[RegistryKey, ProcessRecord]:
        """Snapshot of the records of one session (copies)."""
        with self._lock:
            return {
                key: replace(record)
                for key, record in self._processes.items()
                if record.session_name == session_name
            }

    def remove(self, keys) -> int:
        """Remove the given keys in one locked step.

        Returns:
            Number of records removed
        """
        with self._lock:
            removed = 0
            for key in keys:
                if self._processes.pop(key, None) is not None:
                    removed += 1
            return removed

    def clear(self) -> None:
        with self._lock:
            self._processes = {}

    def refresh_status(self) -> list[ProcessRecord]:
        """Re-probe every PID and update status and last_check.

        Returns:
            Copies of the records that went from running to dead on this pass
        """
        newly_dead = []
        now = datetime.now(UTC)
        with self._lock:
            for record in self._processes.values():
                if is_alive(record.pid):
                    record.status = ProcessStatus.RUNNING
                else:
                    if record.status != ProcessStatus.DEAD:
                        newly_dead.append(record)
                    record.status = ProcessStatus.DEAD
                record.last_check = now
            return [replace(record) for record in newly_dead]

    def cleanup_dead_processes(self) -> int:
        """Remove records that are marked dead or whose PID is gone.

        Returns:
            Number of records removed
        """
        with self._lock:
            dead_keys = [
                key
                for key, record in self._processes.items()
                if record.status == ProcessStatus.DEAD or not is_alive(record.pid)
            ]
            for key in dead_keys:
                record = self._processes.pop(key)
                logger.info(f"Dead process cleaned up: {record.session_name}:{record.pane} pid={record.pid}")
        return len(dead_keys)

    def get_process_status(self) -> dict:
        """Summary of the registry for status displays."""
        records = self.get_all_processes()
        running = sum(1 for r in records.values() if r.status == ProcessStatus.RUNNING)
        return {
            "total_processes": len(records),
            "running_count": running,
            "dead_count": len(records) - running,
            "processes": [r.to_dict() for r in records.values()],
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._processes)


__all__ = [
    "ProcessRecord",
    "ProcessRegistry",
    "ProcessStatus",
    "RegistryKey",
    "is_alive",
]
