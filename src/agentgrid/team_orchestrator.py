"""Team orchestrator - the upward interface of agentgrid.

Wires the topology planner, delivery protocol, process registry and
supervisor together. Everything is passed in explicitly; there is no module
level state, so several orchestrators (or tests) can coexist.

A team is either integrated (one session, 2+K panes) or a group of
single-pane ``<session>-<token>`` sessions, one per role.

Per-pane failures never abort a team launch: a pane that cannot be spawned
or whose instructions cannot be delivered is reported in the
TeamLaunchResult and the remaining panes are still processed.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from agentgrid.delivery import (
    DeliveryError,
    DeliveryOutcome,
    DeliveryProtocol,
    DeliveryStatus,
)
from agentgrid.lifecycle import (
    ProcessRegistry,
    ProcessStatus,
    Supervisor,
    TerminationError,
    is_alive,
)
from agentgrid.roles import ANCHOR_COUNT, PaneAddress, Role, team_roles
from agentgrid.timing import TimingPolicy
from agentgrid.tmux_adapter import TerminalAdapter, TmuxError
from agentgrid.topology import (
    Topology,
    TopologyError,
    TopologyPlanner,
    validate_worker_count,
)

logger = logging.getLogger(__name__)


@dataclass
class TeamLaunchResult:
    """Aggregated per-role outcomes of a team launch."""

    session: str
    outcomes: dict[Role, DeliveryOutcome] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.success)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def all_succeeded(self) -> bool:
        """Check if every pane was spawned and initialized."""
        return all(o.success for o in self.outcomes.values())

    def get_failures(self) -> list[DeliveryOutcome]:
        """Get only failed outcomes."""
        return [o for o in self.outcomes.values() if not o.success]

    def get_successes(self) -> list[DeliveryOutcome]:
        return [o for o in self.outcomes.values() if o.success]

    def format_summary(self) -> str:
        """Format summary of results."""
        skipped = sum(1 for o in self.outcomes.values() if o.status == DeliveryStatus.SKIPPED)
        return f"Total: {self.total}, Succeeded: {self.succeeded}, Failed: {self.failed}, Skipped: {skipped}"


class TeamOrchestrator:
    """Create, launch, inspect and shut down agent teams.

    Example:
        >>> orchestrator = TeamOrchestrator.create(TmuxAdapter(), TimingPolicy())
        >>> orchestrator.create_topology("team", 4)
        >>> result = orchestrator.spawn_and_initialize_all("team", 4, payloads, "claude")
        >>> orchestrator.shutdown("team")
    """

    def __init__(
        self,
        adapter: TerminalAdapter,
        registry: ProcessRegistry,
        supervisor: Supervisor,
        delivery: DeliveryProtocol,
        timing: TimingPolicy | None = None,
        planner: TopologyPlanner | None = None,
    ):
        self.adapter = adapter
        self.registry = registry
        self.supervisor = supervisor
        self.delivery = delivery
        self.timing = timing or TimingPolicy()
        self.planner = planner or TopologyPlanner(adapter)
        self._topologies: dict[str, Topology] = {}
        self._groups: dict[str, dict[Role, PaneAddress]] = {}

    @classmethod
    def create(cls, adapter: TerminalAdapter, timing: TimingPolicy | None = None) -> "TeamOrchestrator":
        """Wire a fresh registry, supervisor and delivery protocol around an adapter."""
        timing = timing or TimingPolicy()
        registry = ProcessRegistry()
        return cls(
            adapter=adapter,
            registry=registry,
            supervisor=Supervisor(registry, timing),
            delivery=DeliveryProtocol(adapter, registry, timing),
            timing=timing,
        )

    def get_topology(self, session: str) -> Topology | None:
        return self._topologies.get(session)

    def create_topology(self, session: str, worker_count: int, reset: bool = False) -> Topology:
        """Create the session and lay out 2+K panes.

        Args:
            session: Session name
            worker_count: Number of worker panes (K)
            reset: Kill an existing session of the same name first

        Returns:
            The new Topology

        Raises:
            ConfigurationError: If worker_count <= 0 (nothing is touched)
            TopologyError: If the session exists (without reset) or the layout fails
        """
        validate_worker_count(worker_count)

        try:
            exists = self.adapter.session_exists(session)
        except TmuxError as e:
            raise TopologyError(f"Failed to check session {session}: {e}") from e

        if exists:
            if not reset:
                raise TopologyError(f"Session {session} already exists (use reset to replace it)")
            logger.info(f"Resetting existing session {session}")
            self._terminate_quietly(session)
            try:
                self.adapter.kill_session(session)
            except TmuxError as e:
                raise TopologyError(f"Failed to kill existing session {session}: {e}") from e
            self._topologies.pop(session, None)

        try:
            self.adapter.create_session(session)
        except TmuxError as e:
            raise TopologyError(f"Failed to create session {session}: {e}") from e

        try:
            topology = self.planner.plan_topology(session, worker_count)
        except TopologyError:
            logger.error(f"Layout failed, destroying partial session {session}")
            try:
                self.adapter.kill_session(session)
            except TmuxError as kill_error:
                logger.error(f"Failed to destroy partial session {session}: {kill_error}")
            raise

        self._topologies[session] = topology
        return topology

    def spawn_and_initialize_all(
        self,
        session: str,
        worker_count: int,
        payloads: dict[Role, Path | None],
        launch_command: str,
    ) -> TeamLaunchResult:
        """Start an agent in every pane and deliver its instructions.

        Panes are processed one at a time in layout order with a pause in
        between; agents started in parallel fight over shared state.

        Args:
            session: Session created by create_topology (or an adopted one)
            worker_count: Number of worker panes (K)
            payloads: Instruction file per role (missing roles are skipped)
            launch_command: Command that starts one agent

        Returns:
            TeamLaunchResult with one outcome per role

        Raises:
            ConfigurationError: If worker_count <= 0
            TopologyError: If the session's layout cannot be resolved
        """
        topology = self._topology_for(session, worker_count)
        panes = {role: topology.address_for(role) for role in topology.roles()}
        return self._spawn_all(session, panes, payloads, launch_command)

    def _spawn_all(
        self,
        session: str,
        panes: dict[Role, PaneAddress],
        payloads: dict[Role, Path | None],
        launch_command: str,
    ) -> TeamLaunchResult:
        result = TeamLaunchResult(session=session)

        for position, (role, pane) in enumerate(panes.items()):
            if position > 0:
                time.sleep(self.timing.spawn_interval)
            logger.info(f"Starting {role.title} in {pane}")
            try:
                outcome = self.delivery.spawn_and_deliver(
                    pane.session, role, pane, launch_command, payloads.get(role)
                )
            except DeliveryError as e:
                outcome = e.outcome or DeliveryOutcome(
                    role=role, pane=pane, status=DeliveryStatus.FAILED, error=str(e)
                )
            result.outcomes[role] = outcome

        log = logger.info if result.all_succeeded else logger.warning
        log(f"Team {session} launched: {result.format_summary()}")
        return result

    def shutdown(self, session: str) -> None:
        """Terminate the session's processes and kill the session.

        Raises:
            TerminationError: If some processes survived (after the session was killed)
            TmuxError: If the session could not be killed
        """
        termination_error = None
        try:
            self.supervisor.terminate_all_processes(session)
        except TerminationError as e:
            termination_error = e

        try:
            self.adapter.kill_session(session)
        except TmuxError as e:
            logger.error(f"Failed to kill session {session}: {e}")
            if termination_error is None:
                raise
        finally:
            self._topologies.pop(session, None)

        if termination_error is not None:
            raise termination_error
        logger.info(f"Team {session} shut down")

    def get_status(self, session: str) -> dict[PaneAddress, ProcessStatus]:
        """Live status of every tracked process of a session."""
        return {
            record.pane: ProcessStatus.RUNNING if is_alive(record.pid) else ProcessStatus.DEAD
            for record in self.registry.get_session_processes(session).values()
        }

    def adopt_session(self, session: str, worker_count: int, command: str = "") -> Topology:
        """Track the agent processes of an already running team.

        Lets a new process (for example a later CLI call) report status of
        or shut down a team it did not start.

        Raises:
            TopologyError: If the session does not have the team layout
        """
        topology = self.planner.resolve_topology(session, worker_count)
        self._track_agents({role: topology.address_for(role) for role in topology.roles()}, command)
        self._topologies[session] = topology
        return topology

    # Group teams: one single-pane session per role

    def create_group_sessions(
        self, session: str, worker_count: int, reset: bool = False
    ) -> dict[Role, PaneAddress]:
        """Create one ``<session>-<token>`` session per role.

        Args:
            session: Group base name
            worker_count: Number of worker sessions (K)
            reset: Kill existing sessions of the group first

        Returns:
            Pane address of every role, in layout order

        Raises:
            ConfigurationError: If worker_count <= 0 (nothing is touched)
            TopologyError: If a session exists (without reset) or creation fails;
                sessions created by this call are killed again
        """
        validate_worker_count(worker_count)
        names = {role: f"{session}-{role.token}" for role in team_roles(worker_count)}

        try:
            existing = [name for name in names.values() if self.adapter.session_exists(name)]
        except TmuxError as e:
            raise TopologyError(f"Failed to check sessions of group {session}: {e}") from e
        if existing and not reset:
            raise TopologyError(f"Sessions already exist: {', '.join(existing)} (use reset to replace them)")
        for name in existing:
            logger.info(f"Resetting existing session {name}")
            self._terminate_quietly(name)
            try:
                self.adapter.kill_session(name)
            except TmuxError as e:
                raise TopologyError(f"Failed to kill existing session {name}: {e}") from e

        created = []
        panes = {}
        try:
            for role, name in names.items():
                self.adapter.create_session(name)
                created.append(name)
                self.adapter.rename_window(name, name)
                pane = self._single_pane(name)
                self.adapter.set_region_title(pane.target, role.title)
                panes[role] = pane
        except TmuxError as e:
            logger.error(f"Group creation failed, destroying {len(created)} session(s) of {session}")
            for name in created:
                try:
                    self.adapter.kill_session(name)
                except TmuxError as kill_error:
                    logger.error(f"Failed to destroy session {name}: {kill_error}")
            raise TopologyError(f"Failed to create group {session}: {e}") from e

        self._groups[session] = panes
        logger.info(f"Group {session} created: {len(panes)} sessions")
        return panes

    def get_group_panes(self, session: str, worker_count: int) -> dict[Role, PaneAddress]:
        """Pane address of every role of an existing group.

        Raises:
            ConfigurationError: If worker_count <= 0
            TopologyError: If a role's session is missing
        """
        validate_worker_count(worker_count)
        panes = self._groups.get(session)
        if panes is not None and len(panes) == ANCHOR_COUNT + worker_count:
            return panes

        panes = {}
        for role in team_roles(worker_count):
            try:
                panes[role] = self._single_pane(f"{session}-{role.token}")
            except TmuxError as e:
                raise TopologyError(f"Group {session} has no session for {role.title}: {e}") from e
        self._groups[session] = panes
        return panes

    def spawn_and_initialize_group(
        self,
        session: str,
        worker_count: int,
        payloads: dict[Role, Path | None],
        launch_command: str,
    ) -> TeamLaunchResult:
        """Start an agent in every session of a group and deliver its instructions.

        Same sequencing and failure isolation as spawn_and_initialize_all.

        Raises:
            ConfigurationError: If worker_count <= 0
            TopologyError: If a role's session is missing
        """
        panes = self.get_group_panes(session, worker_count)
        return self._spawn_all(session, panes, payloads, launch_command)

    def adopt_group_sessions(self, session: str, worker_count: int, command: str = "") -> dict[Role, PaneAddress]:
        """Track the agent processes of an already running group.

        Raises:
            TopologyError: If a role's session is missing
        """
        panes = self.get_group_panes(session, worker_count)
        self._track_agents(panes, command)
        return panes

    def delete_team_sessions(self, session: str, worker_count: int) -> list[str]:
        """Kill the integrated session and every ``<session>-<token>`` group session.

        Agents running in those sessions are terminated first, whether or
        not this orchestrator started them.

        Returns:
            Names of the sessions that were killed
        """
        validate_worker_count(worker_count)
        names = [session] + [f"{session}-{role.token}" for role in team_roles(worker_count)]
        killed = []
        for name in names:
            try:
                if not self.adapter.session_exists(name):
                    continue
                self._track_session_agents(name)
                self._terminate_quietly(name)
                self.adapter.kill_session(name)
            except TmuxError as e:
                logger.error(f"Failed to delete session {name}: {e}")
                continue
            self._topologies.pop(name, None)
            killed.append(name)
            logger.info(f"Deleted session {name}")
        self._groups.pop(session, None)
        return killed

    def _single_pane(self, name: str) -> PaneAddress:
        regions = self.adapter.list_regions(name)
        if not regions:
            raise TmuxError(f"session {name} has no panes")
        return PaneAddress(name, name, min(index for index, _ in regions))

    def _track_agents(self, panes: dict[Role, PaneAddress], command: str) -> None:
        for role, pane in panes.items():
            try:
                pid = self.adapter.get_agent_pid(pane.target)
            except TmuxError as e:
                logger.warning(f"Could not read agent PID of {role.title} ({pane}): {e}")
                continue
            if pid is None:
                logger.warning(f"No agent running in {role.title} ({pane})")
                continue
            self.registry.register_process(pane.session, pane, command, pid)

    def _track_session_agents(self, name: str) -> None:
        """Register the agents of every untracked pane of a session."""
        try:
            for index, _ in self.adapter.list_regions(name):
                pane = PaneAddress(name, name, index)
                if self.registry.get_process_info(name, pane) is not None:
                    continue
                pid = self.adapter.get_agent_pid(pane.target)
                if pid is not None:
                    self.registry.register_process(name, pane, "", pid)
        except TmuxError as e:
            logger.warning(f"Could not look up agents of {name}, killing it without termination: {e}")

    def _topology_for(self, session: str, worker_count: int) -> Topology:
        validate_worker_count(worker_count)
        topology = self._topologies.get(session)
        if topology is None or topology.worker_count != worker_count:
            topology = self.planner.resolve_topology(session, worker_count)
            self._topologies[session] = topology
        return topology

    def _terminate_quietly(self, session: str) -> None:
        try:
            self.supervisor.terminate_all_processes(session)
        except TerminationError as e:
            logger.warning(f"Some processes of {session} could not be terminated: {e}")


__all__ = ["TeamLaunchResult", "TeamOrchestrator"]
