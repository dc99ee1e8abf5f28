"""Topology planner - integrated team layout.

Turns a fresh single-pane tmux session into 2+K named panes:

    +-----------+-----------+
    |    PO     |  Worker1  |
    |           +-----------+
    +-----------+  Worker2  |
    |  Manager  +-----------+
    |           |  WorkerK  |
    +-----------+-----------+

The left column is a fixed 50% of the window width split into two equal
anchor panes. The right column is built by always re-splitting the same
pivot pane (the first worker pane), which yields K stacked slices instead of
a balanced binary subdivision.

Sizing: every worker pane is resized to ``height // K`` in order. The
remainder rows of that division are not redistributed; the region that
tmux grows last keeps them.

Public API:
    TopologyPlanner - Builds and resolves layouts through a TerminalAdapter
    Topology - Role -> pane mapping plus the steps that produced it
    LayoutStep - One split/resize/title operation
    build_steps - Pure step sequence for a layout
    worker_height - Height assigned to each worker pane
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from agentgrid.roles import ANCHOR_COUNT, PaneAddress, Role, team_roles
from agentgrid.tmux_adapter import SplitDirection, TerminalAdapter, TmuxError

logger = logging.getLogger(__name__)

LEFT_COLUMN_PERCENT = 50
DEFAULT_WINDOW_WIDTH = 120
DEFAULT_WINDOW_HEIGHT = 40


class ConfigurationError(ValueError):
    """Raised when a team is requested with an invalid worker count."""

    pass


class TopologyError(Exception):
    """Raised when building the layout fails part way.

    The partially built session is left in place; the caller destroys it.
    """

    pass


class StepKind(str, Enum):
    """Kind of layout operation."""

    SPLIT = "split"
    RESIZE = "resize"
    TITLE = "title"


@dataclass(frozen=True)
class LayoutStep:
    """One adapter operation of a layout build."""

    kind: StepKind
    target: PaneAddress
    direction: SplitDirection | None = None
    width: int | None = None
    height: int | None = None
    title: str | None = None

    def describe(self) -> str:
        if self.kind == StepKind.SPLIT:
            return f"split {self.target} {self.direction.name.lower()}"
        if self.kind == StepKind.RESIZE:
            dims = []
            if self.width is not None:
                dims.append(f"width={self.width}")
            if self.height is not None:
                dims.append(f"height={self.height}")
            return f"resize {self.target} {' '.join(dims)}"
        return f"title {self.target} {self.title!r}"


@dataclass
class Topology:
    """Role to pane mapping of one integrated session."""

    session: str
    panes: dict[Role, PaneAddress]
    steps: list[LayoutStep] = field(default_factory=list)
    width: int = DEFAULT_WINDOW_WIDTH
    height: int = DEFAULT_WINDOW_HEIGHT

    def __post_init__(self):
        workers = [role for role in self.panes if not role.is_anchor]
        if len(self.panes) != ANCHOR_COUNT + len(workers) or not workers:
            raise TopologyError(f"Topology for {self.session} must hold two anchors and at least one worker")
        if len(set(self.panes.values())) != len(self.panes):
            raise TopologyError(f"Topology for {self.session} has duplicate pane addresses")

    @property
    def worker_count(self) -> int:
        return len(self.panes) - ANCHOR_COUNT

    @property
    def pane_count(self) -> int:
        return len(self.panes)

    @property
    def worker_height(self) -> int:
        return worker_height(self.height, self.worker_count)

    @property
    def remainder_rows(self) -> int:
        """Rows left over by the integer division of the worker column."""
        return self.height - self.worker_height * self.worker_count

    def address_for(self, role: Role) -> PaneAddress:
        return self.panes[role]

    def roles(self) -> list[Role]:
        """Roles in layout order."""
        return sorted(self.panes, key=lambda role: role.layout_position)

    def addresses(self) -> list[PaneAddress]:
        return [self.panes[role] for role in self.roles()]


def validate_worker_count(worker_count: int) -> None:
    """Reject worker counts that cannot produce a layout.

    Raises:
        ConfigurationError: If worker_count is not a positive integer
    """
    if isinstance(worker_count, bool) or not isinstance(worker_count, int):
        raise ConfigurationError(f"worker count must be an integer, got {worker_count!r}")
    if worker_count <= 0:
        raise ConfigurationError(f"worker count must be greater than 0, got: {worker_count}")


def worker_height(total_height: int, worker_count: int) -> int:
    """Height of each worker pane (``floor(total_height / K)``).

    Raises:
        ConfigurationError: If worker_count <= 0
    """
    validate_worker_count(worker_count)
    return total_height // worker_count


def role_addresses(session: str, window: str, base_index: int, worker_count: int) -> dict[Role, PaneAddress]:
    """Addresses of every role, by layout position from the pane base index."""
    return {
        role: PaneAddress(session, window, base_index + role.layout_position)
        for role in team_roles(worker_count)
    }


def build_steps(
    session: str,
    window: str,
    base_index: int,
    worker_count: int,
    width: int,
    height: int,
) -> list[LayoutStep]:
    """Ordered adapter operations that build the integrated layout.

    Args:
        session: Session name
        window: Window name
        base_index: Index of the session's single initial pane
        worker_count: Number of worker panes (K >= 1)
        width: Window width in columns
        height: Window height in rows

    Returns:
        Split steps, then resize steps, then title steps

    Raises:
        ConfigurationError: If worker_count <= 0
    """
    validate_worker_count(worker_count)
    addresses = role_addresses(session, window, base_index, worker_count)
    anchor1 = addresses[Role.anchor1()]
    pivot = addresses[Role.worker(1)]

    steps = [
        LayoutStep(StepKind.SPLIT, anchor1, direction=SplitDirection.HORIZONTAL),
        LayoutStep(StepKind.SPLIT, anchor1, direction=SplitDirection.VERTICAL),
    ]
    # Always split the same pivot so the right column stays a single stack
    for _ in range(2, worker_count + 1):
        steps.append(LayoutStep(StepKind.SPLIT, pivot, direction=SplitDirection.VERTICAL))

    left_width = width * LEFT_COLUMN_PERCENT // 100
    steps.append(LayoutStep(StepKind.RESIZE, anchor1, width=left_width))
    steps.append(LayoutStep(StepKind.RESIZE, anchor1, height=height // 2))

    per_worker = worker_height(height, worker_count)
    for number in range(1, worker_count + 1):
        steps.append(LayoutStep(StepKind.RESIZE, addresses[Role.worker(number)], height=per_worker))

    # Resizing the workers drags the column border; restore the 50/50 split
    steps.append(LayoutStep(StepKind.RESIZE, anchor1, width=left_width))

    for role in team_roles(worker_count):
        steps.append(LayoutStep(StepKind.TITLE, addresses[role], title=role.title))

    return steps


class TopologyPlanner:
    """Build integrated layouts through a TerminalAdapter.

    Example:
        >>> planner = TopologyPlanner(TmuxAdapter())
        >>> topology = planner.plan_topology("team", 4)
        >>> topology.pane_count
        6
    """

    def __init__(self, adapter: TerminalAdapter):
        self.adapter = adapter

    def plan_topology(self, session: str, worker_count: int) -> Topology:
        """Split an existing single-pane session into the team layout.

        Args:
            session: Name of an existing, freshly created session
            worker_count: Number of worker panes (K)

        Returns:
            Topology with 2+K distinct pane addresses

        Raises:
            ConfigurationError: If worker_count <= 0 (no adapter call is made)
            TopologyError: If any adapter call fails; no rollback is attempted
        """
        validate_worker_count(worker_count)

        window = session
        try:
            self.adapter.rename_window(session, window)
            width, height = self._window_size(session)

            regions = self.adapter.list_regions(session)
            if len(regions) != 1:
                raise TopologyError(f"Session {session} must have exactly one pane, found {len(regions)}")
            base_index = regions[0][0]

            self.adapter.show_region_titles(session)

            steps = build_steps(session, window, base_index, worker_count, width, height)
            for step in steps:
                self._apply(step)
        except TmuxError as e:
            raise TopologyError(f"Failed to build layout for {session}: {e}") from e

        topology = Topology(
            session=session,
            panes=role_addresses(session, window, base_index, worker_count),
            steps=steps,
            width=width,
            height=height,
        )
        logger.info(
            f"Layout created for {session}: {worker_count} workers, {topology.pane_count} panes, "
            f"worker height {topology.worker_height} (+{topology.remainder_rows} remainder rows)"
        )
        return topology

    def resolve_topology(self, session: str, worker_count: int) -> Topology:
        """Rebuild the role mapping of an already laid-out session.

        Raises:
            ConfigurationError: If worker_count <= 0
            TopologyError: If the session cannot be listed or has the wrong pane count
        """
        validate_worker_count(worker_count)
        try:
            regions = self.adapter.list_regions(session)
        except TmuxError as e:
            raise TopologyError(f"Failed to list panes of {session}: {e}") from e

        expected = ANCHOR_COUNT + worker_count
        if len(regions) != expected:
            raise TopologyError(f"Session {session} has {len(regions)} panes, expected {expected}")

        base_index = min(index for index, _ in regions)
        return Topology(session=session, panes=role_addresses(session, session, base_index, worker_count))

    def _window_size(self, session: str) -> tuple[int, int]:
        try:
            width, height = self.adapter.get_window_size(session)
        except TmuxError as e:
            logger.warning(f"Failed to get window size, using defaults: {e}")
            return DEFAULT_WINDOW_WIDTH, DEFAULT_WINDOW_HEIGHT

        if width <= 0:
            logger.warning(f"Invalid window width {width}, using default")
            width = DEFAULT_WINDOW_WIDTH
        if height <= 0:
            logger.warning(f"Invalid window height {height}, using default")
            height = DEFAULT_WINDOW_HEIGHT
        return width, height

    def _apply(self, step: LayoutStep) -> None:
        logger.debug(step.describe())
        target = step.target.target
        if step.kind == StepKind.SPLIT:
            self.adapter.split_region(target, step.direction)
        elif step.kind == StepKind.RESIZE:
            self.adapter.resize_region(target, width=step.width, height=step.height)
        else:
            self.adapter.set_region_title(target, step.title)


__all__ = [
    "ConfigurationError",
    "LayoutStep",
    "StepKind",
    "Topology",
    "TopologyError",
    "TopologyPlanner",
    "build_steps",
    "role_addresses",
    "validate_worker_count",
    "worker_height",
]
