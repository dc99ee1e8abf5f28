"""Team roles and pane addresses.

A team always has two anchor roles (the product owner and the manager) and
K worker roles. Roles are a closed set: the token of every role is derived
from its kind, so matching a session or pane name against the role set is a
plain function over this module rather than a compiled pattern.

Public API:
    RoleKind - Anchor1 / Anchor2 / Worker
    Role - One role of a team
    PaneAddress - Locator of a pane inside a tmux session
    team_roles - Roles of a team in layout order
    parse_role_token - Map a token back to its Role
"""

from dataclasses import dataclass
from enum import Enum

ANCHOR1_TOKEN = "po"
ANCHOR2_TOKEN = "manager"
WORKER_TOKEN_PREFIX = "worker"

ANCHOR_COUNT = 2


class RoleKind(str, Enum):
    """Kind of a team role."""

    ANCHOR1 = "anchor1"
    ANCHOR2 = "anchor2"
    WORKER = "worker"


@dataclass(frozen=True)
class Role:
    """One role of a team.

    Anchors carry number 0; workers are numbered from 1.
    """

    kind: RoleKind
    number: int = 0

    def __post_init__(self):
        if self.kind == RoleKind.WORKER and self.number < 1:
            raise ValueError(f"Worker roles are numbered from 1, got {self.number}")
        if self.kind != RoleKind.WORKER and self.number != 0:
            raise ValueError(f"Anchor roles carry no number, got {self.number}")

    @classmethod
    def anchor1(cls) -> "Role":
        return cls(RoleKind.ANCHOR1)

    @classmethod
    def anchor2(cls) -> "Role":
        return cls(RoleKind.ANCHOR2)

    @classmethod
    def worker(cls, number: int) -> "Role":
        return cls(RoleKind.WORKER, number)

    @property
    def is_anchor(self) -> bool:
        return self.kind != RoleKind.WORKER

    @property
    def token(self) -> str:
        """Short name used in group session names (``team-po``, ``team-worker2``)."""
        if self.kind == RoleKind.ANCHOR1:
            return ANCHOR1_TOKEN
        if self.kind == RoleKind.ANCHOR2:
            return ANCHOR2_TOKEN
        return f"{WORKER_TOKEN_PREFIX}{self.number}"

    @property
    def title(self) -> str:
        """Pane title shown in the pane border."""
        if self.kind == RoleKind.ANCHOR1:
            return "PO"
        if self.kind == RoleKind.ANCHOR2:
            return "Manager"
        return f"Worker{self.number}"

    @property
    def layout_position(self) -> int:
        """Zero-based position of the role's pane in the integrated layout."""
        if self.kind == RoleKind.ANCHOR1:
            return 0
        if self.kind == RoleKind.ANCHOR2:
            return 1
        return ANCHOR_COUNT + self.number - 1

    def __str__(self) -> str:
        return self.token


@dataclass(frozen=True)
class PaneAddress:
    """Locator of one pane within a tmux session.

    Addresses are created by the topology planner and never mutated.
    """

    session: str
    window: str
    index: int

    @property
    def target(self) -> str:
        """tmux target string (``session:window.pane``)."""
        return f"{self.session}:{self.window}.{self.index}"

    def __str__(self) -> str:
        return self.target


def team_roles(worker_count: int) -> list[Role]:
    """Return the 2+K roles of a team in layout order.

    Args:
        worker_count: Number of worker roles (K)

    Returns:
        [Anchor1, Anchor2, Worker1, ..., WorkerK]
    """
    roles = [Role.anchor1(), Role.anchor2()]
    roles.extend(Role.worker(n) for n in range(1, worker_count + 1))
    return roles


def parse_role_token(token: str) -> Role | None:
    """Map a role token back to its role.

    ``po`` and ``manager`` are the anchors; ``worker<n>`` with n >= 1 (digits
    only) is a worker. Anything else is not a role token.

    Args:
        token: Candidate token

    Returns:
        Matching Role, or None
    """
    if token == ANCHOR1_TOKEN:
        return Role.anchor1()
    if token == ANCHOR2_TOKEN:
        return Role.anchor2()
    if not token.startswith(WORKER_TOKEN_PREFIX):
        return None

    digits = token[len(WORKER_TOKEN_PREFIX) :]
    if not digits or not digits.isascii() or not digits.isdigit():
        return None
    number = int(digits)
    if number < 1:
        return None
    return Role.worker(number)


__all__ = [
    "ANCHOR1_TOKEN",
    "ANCHOR2_TOKEN",
    "ANCHOR_COUNT",
    "WORKER_TOKEN_PREFIX",
    "PaneAddress",
    "Role",
    "RoleKind",
    "parse_role_token",
    "team_roles",
]
