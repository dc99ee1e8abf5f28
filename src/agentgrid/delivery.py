"""Readiness-gated delivery of initial instructions.

For one pane, the protocol walks a fixed state sequence:

    AWAITING_PANE_READY -> SPAWNING -> AWAITING_PROCESS_READY
             -> DELIVERING -> CONFIRMING -> DONE

1. Wait until the pane shows up in the session listing
2. Type the launch command and register the agent's PID (the pane shell's child)
3. Wait until the agent prints something that looks like a prompt
4. Send a ``cat <file>`` directive (with retries)
5. Press the submit key a few more times to push the directive through

A readiness timeout on the agent process is only a warning: agents that
print nothing recognisable still get their instructions.

Security:
- Payload paths are shell-quoted before being typed into the pane
- Only regular, non-empty files are delivered
"""

import logging
import shlex
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from agentgrid.lifecycle.process_registry import ProcessRegistry
from agentgrid.roles import PaneAddress, Role
from agentgrid.timing import TimingPolicy
from agentgrid.tmux_adapter import SUBMIT_KEY, TerminalAdapter, TmuxError

logger = logging.getLogger(__name__)

DELIVERY_ATTEMPTS = 3
SUBMIT_REPEAT = 3
READINESS_MARKERS = ("claude", ">", "$")
READY_TEXT_THRESHOLD = 10


class DeliveryError(Exception):
    """Base class for per-pane delivery failures.

    ``outcome`` carries what was known about the pane when it failed.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.outcome: "DeliveryOutcome | None" = None


class PaneNotReady(DeliveryError):
    """Raised when a pane never appeared or the agent could not be started."""

    pass


class ProcessNotReady(DeliveryError):
    """Raised when the agent never printed a recognisable prompt."""

    pass


class DeliveryFailed(DeliveryError):
    """Raised when every delivery attempt failed."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class DeliveryState(str, Enum):
    """Where a pane is in the delivery sequence."""

    SPAWNING = "spawning"
    AWAITING_PANE_READY = "awaiting_pane_ready"
    AWAITING_PROCESS_READY = "awaiting_process_ready"
    DELIVERING = "delivering"
    CONFIRMING = "confirming"
    DONE = "done"
    FAILED = "failed"


class DeliveryStatus(str, Enum):
    """Final result for one pane."""

    PENDING = "pending"
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    FAILED = "failed"


class AttemptResult(str, Enum):
    """Result of one try at sending the directive."""

    SENT = "sent"
    FAILED = "failed"


@dataclass
class DeliveryAttempt:
    """One try at sending the directive."""

    target: str
    number: int
    result: AttemptResult
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.result == AttemptResult.SENT


@dataclass
class DeliveryOutcome:
    """Result of spawn-and-deliver for one role."""

    role: Role
    pane: PaneAddress
    status: DeliveryStatus = DeliveryStatus.PENDING
    state: DeliveryState = DeliveryState.SPAWNING
    pid: int | None = None
    process_ready: bool = False
    attempts: list[DeliveryAttempt] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status in (DeliveryStatus.DELIVERED, DeliveryStatus.SKIPPED)


def build_directive(payload: Path | str | None) -> str | None:
    """Shell directive that prints the payload file into the agent's prompt.

    Args:
        payload: Instruction file, or None

    Returns:
        ``cat <quoted path>``, or None when there is nothing to deliver
        (no payload, missing file, empty file)
    """
    if payload is None:
        return None
    path = Path(payload)
    if not path.is_file():
        return None
    try:
        if not path.read_text(encoding="utf-8", errors="replace").strip():
            return None
    except OSError:
        return None
    return f"cat {shlex.quote(str(path))}"


def is_process_ready(text: str) -> bool:
    """Heuristic: the pane shows a prompt marker or a bit of output."""
    if any(marker in text for marker in READINESS_MARKERS):
        return True
    return len(text.strip()) > READY_TEXT_THRESHOLD


class DeliveryProtocol:
    """Spawn an agent in a pane and hand it its instructions.

    Example:
        >>> protocol = DeliveryProtocol(adapter, registry, TimingPolicy())
        >>> outcome = protocol.spawn_and_deliver("team", Role.anchor1(), pane, "claude", Path("po.md"))
        >>> outcome.status
        <DeliveryStatus.DELIVERED: 'delivered'>
    """

    def __init__(self, adapter: TerminalAdapter, registry: ProcessRegistry, timing: TimingPolicy | None = None):
        self.adapter = adapter
        self.registry = registry
        self.timing = timing or TimingPolicy()

    def wait_for_pane_ready(self, session: str, pane: PaneAddress) -> None:
        """Poll the session listing until the pane exists.

        Raises:
            PaneNotReady: If the pane did not appear before the timeout
        """
        deadline = time.monotonic() + self.timing.pane_ready_timeout
        while True:
            try:
                if any(index == pane.index for index, _ in self.adapter.list_regions(session)):
                    return
            except TmuxError as e:
                logger.debug(f"Pane listing failed for {session}: {e}")
            if time.monotonic() >= deadline:
                raise PaneNotReady(f"Pane {pane} not ready after {self.timing.pane_ready_timeout}s")
            time.sleep(self.timing.pane_ready_interval)

    def wait_for_process_ready(self, pane: PaneAddress) -> None:
        """Poll the pane text until the agent looks ready.

        Raises:
            ProcessNotReady: If no readiness marker appeared before the timeout
        """
        deadline = time.monotonic() + self.timing.process_ready_timeout
        while True:
            try:
                if is_process_ready(self.adapter.capture_region_text(pane.target)):
                    return
            except TmuxError as e:
                logger.debug(f"Capture failed for {pane}: {e}")
            if time.monotonic() >= deadline:
                raise ProcessNotReady(f"Process in {pane} not ready after {self.timing.process_ready_timeout}s")
            time.sleep(self.timing.process_ready_interval)

    def wait_for_agent_pid(self, pane: PaneAddress) -> int | None:
        """Poll until the launched agent shows up as a process of the pane.

        Returns:
            The agent's PID, or None if none appeared before the timeout

        Raises:
            TmuxError: If the pane's processes cannot be queried at all
        """
        deadline = time.monotonic() + self.timing.pane_ready_timeout
        while True:
            pid = self.adapter.get_agent_pid(pane.target)
            if pid is not None or time.monotonic() >= deadline:
                return pid
            time.sleep(self.timing.pane_ready_interval)

    def spawn_and_deliver(
        self,
        session: str,
        role: Role,
        pane: PaneAddress,
        launch_command: str,
        payload: Path | str | None,
    ) -> DeliveryOutcome:
        """Run the full delivery sequence for one pane.

        Args:
            session: Session name
            role: Role living in the pane
            pane: Pane address
            launch_command: Command that starts the agent
            payload: Instruction file for the role (None to skip delivery)

        Returns:
            DeliveryOutcome with status DELIVERED or SKIPPED

        Raises:
            PaneNotReady: If the pane never appeared or the launch failed
            DeliveryFailed: If all delivery attempts failed
        """
        outcome = DeliveryOutcome(role=role, pane=pane)
        try:
            self._spawn(session, pane, launch_command, outcome)
            self._await_process(pane, outcome)

            directive = build_directive(payload)
            if directive is None:
                logger.info(f"No instructions to deliver for {role.title} ({payload})")
                outcome.status = DeliveryStatus.SKIPPED
                outcome.state = DeliveryState.DONE
                return outcome

            outcome.state = DeliveryState.DELIVERING
            self._deliver(pane, directive, outcome)
            time.sleep(self.timing.post_send_delay)

            outcome.state = DeliveryState.CONFIRMING
            self._confirm(pane, outcome)
        except DeliveryError as e:
            outcome.status = DeliveryStatus.FAILED
            outcome.error = str(e)
            e.outcome = outcome
            logger.error(f"Delivery to {role.title} ({pane}) failed in state {outcome.state.value}: {e}")
            outcome.state = DeliveryState.FAILED
            raise

        outcome.status = DeliveryStatus.DELIVERED
        outcome.state = DeliveryState.DONE
        logger.info(f"Instructions delivered to {role.title} ({pane})")
        return outcome

    def _spawn(self, session: str, pane: PaneAddress, launch_command: str, outcome: DeliveryOutcome) -> None:
        outcome.state = DeliveryState.AWAITING_PANE_READY
        self.wait_for_pane_ready(session, pane)

        outcome.state = DeliveryState.SPAWNING
        try:
            self.adapter.send_keys_with_submit(pane.target, launch_command)
        except TmuxError as e:
            raise PaneNotReady(f"Failed to start {launch_command!r} in {pane}: {e}") from e

        try:
            outcome.pid = self.wait_for_agent_pid(pane)
        except TmuxError as e:
            outcome.warnings.append(f"process not tracked: {e}")
            logger.warning(f"Could not read agent PID of {pane}, process will not be tracked: {e}")
            return

        if outcome.pid is None:
            outcome.warnings.append("process not tracked: no agent process found")
            logger.warning(f"No agent process appeared in {pane}, process will not be tracked")
        else:
            self.registry.register_process(session, pane, launch_command, outcome.pid)

    def _await_process(self, pane: PaneAddress, outcome: DeliveryOutcome) -> None:
        outcome.state = DeliveryState.AWAITING_PROCESS_READY
        try:
            self.wait_for_process_ready(pane)
        except ProcessNotReady as e:
            outcome.warnings.append(str(e))
            logger.warning(f"{e}, delivering anyway")
        else:
            outcome.process_ready = True

    def _deliver(self, pane: PaneAddress, directive: str, outcome: DeliveryOutcome) -> None:
        for number in range(1, DELIVERY_ATTEMPTS + 1):
            try:
                self.adapter.send_keys_with_submit(pane.target, directive)
            except TmuxError as e:
                outcome.attempts.append(DeliveryAttempt(pane.target, number, AttemptResult.FAILED, str(e)))
                if number < DELIVERY_ATTEMPTS:
                    logger.warning(
                        f"Delivery to {pane} failed on attempt {number}/{DELIVERY_ATTEMPTS}, "
                        f"retrying in {self.timing.delivery_retry_delay}s: {e}"
                    )
                    time.sleep(self.timing.delivery_retry_delay)
                continue

            outcome.attempts.append(DeliveryAttempt(pane.target, number, AttemptResult.SENT))
            if number > 1:
                logger.info(f"Delivery to {pane} succeeded on attempt {number}/{DELIVERY_ATTEMPTS}")
            return

        raise DeliveryFailed(f"Delivery to {pane} failed after {DELIVERY_ATTEMPTS} attempts", DELIVERY_ATTEMPTS)

    def _confirm(self, pane: PaneAddress, outcome: DeliveryOutcome) -> None:
        time.sleep(self.timing.confirm_delay)
        for i in range(SUBMIT_REPEAT):
            try:
                self.adapter.send_keys(pane.target, SUBMIT_KEY)
            except TmuxError as e:
                outcome.warnings.append(f"confirm {i + 1} failed: {e}")
                logger.warning(f"Confirm keystroke {i + 1}/{SUBMIT_REPEAT} to {pane} failed: {e}")
            if i < SUBMIT_REPEAT - 1:
                time.sleep(self.timing.submit_interval)


__all__ = [
    "DELIVERY_ATTEMPTS",
    "AttemptResult",
    "READINESS_MARKERS",
    "SUBMIT_REPEAT",
    "DeliveryAttempt",
    "DeliveryError",
    "DeliveryFailed",
    "DeliveryOutcome",
    "DeliveryProtocol",
    "DeliveryState",
    "DeliveryStatus",
    "PaneNotReady",
    "ProcessNotReady",
    "build_directive",
    "is_process_ready",
]
