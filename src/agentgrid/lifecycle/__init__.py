"""Process Lifecycle Module.

Tracks, health-checks and terminates the agent processes started in a team's
panes.

Core Components:
- ProcessRegistry: Lock-guarded map of supervised processes
- Supervisor: Concurrent graceful-then-forceful termination
- HealthMonitor: Background liveness loop
"""

from .health_monitor import (
    DeathListener,
    HealthMonitor,
)
from .process_registry import (
    ProcessRecord,
    ProcessRegistry,
    ProcessStatus,
    RegistryKey,
    is_alive,
)
from .supervisor import (
    ProcessNotFoundError,
    Supervisor,
    TerminationError,
    TerminationFailure,
)

__all__ = [
    # Registry
    "ProcessRegistry",
    "ProcessRecord",
    "ProcessStatus",
    "RegistryKey",
    "is_alive",
    # Termination
    "Supervisor",
    "TerminationError",
    "TerminationFailure",
    "ProcessNotFoundError",
    # Health
    "HealthMonitor",
    "DeathListener",
]
