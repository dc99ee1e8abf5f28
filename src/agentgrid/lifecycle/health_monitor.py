"""Health Monitor - background liveness loop over the process registry.

Philosophy:
- Ruthless simplicity: One thread, one tick, one stop event
- Single responsibility: Observe and report, never remove
- Standard library: threading only
- Self-contained: Errors inside a tick never end the loop

Public API (Studs):
    HealthMonitor - Periodic liveness checker
    DeathListener - Callback type for running -> dead transitions
"""

import logging
import threading
from collections.abc import Callable

from agentgrid.lifecycle.process_registry import ProcessRecord, ProcessRegistry

logger = logging.getLogger(__name__)

DeathListener = Callable[[ProcessRecord], None]


class HealthMonitor:
    """Periodically re-probe every registered PID.

    Deaths are reported through log warnings and listeners; dead records
    stay in the registry until cleanup or termination removes them.

    Example:
        >>> monitor = HealthMonitor(registry, interval=5.0)
        >>> monitor.add_listener(lambda record: print(record.pid))
        >>> monitor.start()
        >>> monitor.stop()
    """

    def __init__(self, registry: ProcessRegistry, interval: float = 5.0):
        """Initialize health monitor.

        Args:
            registry: Registry to watch
            interval: Seconds between ticks
        """
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.registry = registry
        self.interval = interval
        self._listeners: list[DeathListener] = []
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def add_listener(self, listener: DeathListener) -> None:
        self._listeners.append(listener)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def check_now(self) -> list[ProcessRecord]:
        """Run one health tick synchronously.

        Returns:
            Records that died since the previous tick
        """
        newly_dead = self.registry.refresh_status()
        for record in newly_dead:
            logger.warning(
                f"Dead process detected: session={record.session_name} pane={record.pane} "
                f"pid={record.pid} started={record.start_time.isoformat()}"
            )
            for listener in self._listeners:
                try:
                    listener(record)
                except Exception as e:
                    logger.error(f"Process death listener failed: {e}")
        if newly_dead:
            logger.debug(f"Health check completed: {len(newly_dead)} newly dead")
        return newly_dead

    def _loop(self) -> None:
        logger.info("Process monitoring started")
        while not self._stop_event.wait(self.interval):
            try:
                self.check_now()
            except Exception as e:
                logger.error(f"Error in health check loop: {e}")
        logger.info("Process monitoring stopped")

    def start(self) -> None:
        """Start the background loop (no-op if already running)."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="agentgrid-health", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to stop and wait for it to exit."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout if timeout is not None else self.interval * 2)
            self._thread = None


__all__ = ["DeathListener", "HealthMonitor"]
