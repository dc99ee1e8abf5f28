"""Ad-hoc messages to one agent of a running team.

The target is either a pane of an integrated session (picked by the role's
layout position) or the per-role group session ``<base>-<token>``.

Sending clears the agent's prompt first (Ctrl-C, then Ctrl-U), types the
message and submits it. An optional context reset asks the agent to drop
its previous role before the message is sent.
"""

import logging
import time
from dataclasses import dataclass

from agentgrid.roles import ANCHOR_COUNT, Role
from agentgrid.tmux_adapter import SUBMIT_KEY, TerminalAdapter, TmuxError

logger = logging.getLogger(__name__)

CANCEL_KEY = "C-c"
CLEAR_LINE_KEY = "C-u"
RESET_MESSAGE = "Please forget the previous role definitions and context, and wait for new instructions."


class MessageSendError(Exception):
    """Raised when a message cannot be routed or typed."""

    pass


@dataclass(frozen=True)
class MessageDelays:
    """Pauses between keystrokes, in seconds."""

    clear: float = 0.4
    additional_clear: float = 0.2
    message: float = 0.3
    execute: float = 0.5

    @classmethod
    def none(cls) -> "MessageDelays":
        return cls(clear=0, additional_clear=0, message=0, execute=0)


class MessageSender:
    """Send messages to agents through a TerminalAdapter.

    Example:
        >>> sender = MessageSender(TmuxAdapter())
        >>> sender.send("team", Role.worker(2), "Run the test suite", worker_count=4)
        'team:team.3'
    """

    def __init__(self, adapter: TerminalAdapter, delays: MessageDelays | None = None):
        self.adapter = adapter
        self.delays = delays or MessageDelays()

    def resolve_target(self, session: str, role: Role, worker_count: int) -> str:
        """Find the tmux target of a role.

        Args:
            session: Integrated session name or group base name
            role: Role to address
            worker_count: Team size the session was built with

        Returns:
            tmux target string

        Raises:
            MessageSendError: If the role cannot be located
        """
        if not role.is_anchor and role.number > worker_count:
            raise MessageSendError(f"{role.title} is not part of a team with {worker_count} workers")

        try:
            if self.adapter.session_exists(session):
                regions = self.adapter.list_regions(session)
                expected = ANCHOR_COUNT + worker_count
                if len(regions) != expected:
                    raise MessageSendError(
                        f"Session '{session}' has {len(regions)} panes, expected {expected} for an integrated team"
                    )
                index = sorted(i for i, _ in regions)[role.layout_position]
                return f"{session}:{session}.{index}"

            group_session = f"{session}-{role.token}"
            if self.adapter.session_exists(group_session):
                return group_session
        except TmuxError as e:
            raise MessageSendError(f"Failed to inspect session '{session}': {e}") from e

        raise MessageSendError(f"Session '{session}' not found (neither integrated nor '{session}-{role.token}')")

    def _keys(self, target: str, keys: str, step: str, delay: float, literal: bool = False) -> None:
        try:
            if literal:
                self.adapter.send_text(target, keys)
            else:
                self.adapter.send_keys(target, keys)
        except TmuxError as e:
            raise MessageSendError(f"{step} failed: {e}") from e
        time.sleep(delay)

    def reset_context(self, target: str) -> None:
        logger.info(f"Resetting agent context at {target}")
        self._keys(target, RESET_MESSAGE, "reset message", self.delays.message, literal=True)
        # Agents need longer to settle after a reset
        self._keys(target, SUBMIT_KEY, "reset submit", self.delays.execute * 3)

    def send(
        self,
        session: str,
        role: Role,
        message: str,
        worker_count: int,
        reset_context: bool = False,
    ) -> str:
        """Deliver one message.

        Returns:
            The tmux target the message was sent to

        Raises:
            MessageSendError: On routing or keystroke failure
        """
        if not message:
            raise MessageSendError("message must not be empty")

        target = self.resolve_target(session, role, worker_count)
        logger.info(f"Sending message to {role.title} at {target}")

        if reset_context:
            self.reset_context(target)

        self._keys(target, CANCEL_KEY, "prompt clear", self.delays.clear)
        self._keys(target, CLEAR_LINE_KEY, "additional clear", self.delays.additional_clear)
        self._keys(target, message, "message", self.delays.message, literal=True)
        self._keys(target, SUBMIT_KEY, "submit", self.delays.execute)
        return target


__all__ = [
    "MessageDelays",
    "MessageSendError",
    "MessageSender",
    "RESET_MESSAGE",
]
