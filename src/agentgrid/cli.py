"""Command-line interface for agentgrid.

Commands:
    - start: Create the team layout and start every agent
    - status: Show live per-pane process status
    - stop: Terminate the team's processes and kill its sessions
    - sessions: Show discovered sessions and how they are classified
    - send: Send an ad-hoc message to one agent
"""

import logging
import sys
import time

import click
from rich.console import Console
from rich.table import Table

from agentgrid import __version__
from agentgrid.config_manager import AgentGridConfig, ConfigError, ConfigManager
from agentgrid.delivery import DeliveryStatus
from agentgrid.lifecycle import HealthMonitor, ProcessRecord, ProcessStatus, TerminationError
from agentgrid.messaging import MessageSender, MessageSendError
from agentgrid.roles import ANCHOR_COUNT, Role, parse_role_token
from agentgrid.session_discovery import Classification, DiscoveryError, SessionDiscovery
from agentgrid.team_orchestrator import TeamLaunchResult, TeamOrchestrator
from agentgrid.tmux_adapter import TmuxAdapter, TmuxError
from agentgrid.topology import ConfigurationError, TopologyError

logger = logging.getLogger(__name__)

__all__ = ["main"]

_STATUS_STYLES = {
    DeliveryStatus.DELIVERED: "green",
    DeliveryStatus.SKIPPED: "yellow",
    DeliveryStatus.FAILED: "red",
    DeliveryStatus.PENDING: "dim",
}

_CLASSIFICATION_STYLES = {
    Classification.INTEGRATED: "green",
    Classification.GROUP_MEMBER: "cyan",
    Classification.CANDIDATE: "yellow",
    Classification.UNRELATED: "dim",
}

# Errors that end a command with exit code 1 and a red message
_EXPECTED_ERRORS = (
    ConfigError,
    ConfigurationError,
    TopologyError,
    DiscoveryError,
    TerminationError,
    MessageSendError,
    TmuxError,
)


def _load_config(ctx: click.Context) -> AgentGridConfig:
    return ConfigManager.load_config(ctx.obj.get("config_path"))


def _build_orchestrator(config: AgentGridConfig) -> TeamOrchestrator:
    timing = ConfigManager.get_timing_policy(config)
    return TeamOrchestrator.create(TmuxAdapter(), timing)


def _resolve_session(adapter, config: AgentGridConfig, session: str | None, worker_count: int) -> str:
    if session:
        return session
    discovery = SessionDiscovery(adapter, fallback_name=config.default_session)
    return discovery.find_default_session(ANCHOR_COUNT + worker_count)


def _run(console: Console, action, *args) -> None:
    """Run a command body with the shared error handling."""
    try:
        action(*args)
    except _EXPECTED_ERRORS as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled[/yellow]")
        sys.exit(130)


def _launch_table(result: TeamLaunchResult) -> Table:
    table = Table(title=f"Team {result.session}")
    table.add_column("Role", style="bold")
    table.add_column("Pane")
    table.add_column("PID", justify="right")
    table.add_column("Instructions")
    table.add_column("Notes", style="dim")

    for role, outcome in result.outcomes.items():
        style = _STATUS_STYLES[outcome.status]
        notes = outcome.error or "; ".join(outcome.warnings)
        table.add_row(
            role.title,
            str(outcome.pane),
            str(outcome.pid) if outcome.pid else "-",
            f"[{style}]{outcome.status.value}[/{style}]",
            notes,
        )
    return table


@click.group(context_settings={"help_option_names": ["--help", "-h"]})
@click.option("--config", "config_path", help="Config file path", type=click.Path())
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """agentgrid - supervised multi-agent tmux teams.

    Builds one tmux session with a product owner pane, a manager pane and
    K worker panes, starts an agent in each pane and hands every agent its
    instructions.

    \b
    Examples:
        agentgrid start                  # Default session, 4 workers
        agentgrid start team -w 2 --attach
        agentgrid status team
        agentgrid send worker2 "Run the tests" --session team
        agentgrid stop team

    \b
    CONFIGURATION:
        Config file: ~/.agentgrid/config.toml
        Keys: default_session, worker_count, launch_command, instructions_dir,
              anchor1_instructions, anchor2_instructions, worker_instructions, [timing]
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@main.command(name="start")
@click.argument("session", required=False)
@click.option("--workers", "-w", type=int, help="Number of worker panes (default from config)")
@click.option("--launch-command", help="Command that starts one agent (default from config)")
@click.option("--reset", is_flag=True, help="Replace an existing session of the same name")
@click.option("--individual", is_flag=True, help="One <session>-<role> session per agent")
@click.option("--attach", is_flag=True, help="Attach to the session when done")
@click.option("--supervise", is_flag=True, help="Keep running, report dead agents, stop the team on Ctrl-C")
@click.pass_context
def start_command(
    ctx: click.Context,
    session: str | None,
    workers: int | None,
    launch_command: str | None,
    reset: bool,
    individual: bool,
    attach: bool,
    supervise: bool,
) -> None:
    """Create the team layout and start every agent.

    \b
    Examples:
        agentgrid start
        agentgrid start team --workers 2 --reset
        agentgrid start team --individual
    """
    console = Console()

    def body():
        config = _load_config(ctx)
        worker_count = workers if workers is not None else config.worker_count
        session_name = session or config.default_session
        orchestrator = _build_orchestrator(config)

        console.print(f"[dim]Creating {session_name} with {worker_count} workers...[/dim]")
        payloads = ConfigManager.resolve_payloads(config, worker_count)
        command = launch_command or config.launch_command
        if individual:
            panes = orchestrator.create_group_sessions(session_name, worker_count, reset=reset)
            console.print(f"[green]✓[/green] Sessions ready: {len(panes)} sessions")
            result = orchestrator.spawn_and_initialize_group(session_name, worker_count, payloads, command)
            attach_target = panes[Role.anchor1()].session
        else:
            topology = orchestrator.create_topology(session_name, worker_count, reset=reset)
            console.print(f"[green]✓[/green] Layout ready: {topology.pane_count} panes")
            result = orchestrator.spawn_and_initialize_all(session_name, worker_count, payloads, command)
            attach_target = session_name

        console.print(_launch_table(result))
        console.print(result.format_summary())

        if supervise:
            _supervise(console, orchestrator, session_name, worker_count, individual)
            return
        if attach:
            orchestrator.adapter.attach_session(attach_target)
        if not result.all_succeeded:
            sys.exit(1)

    _run(console, body)


def _supervise(
    console: Console, orchestrator: TeamOrchestrator, session: str, worker_count: int, individual: bool
) -> None:
    monitor = HealthMonitor(orchestrator.registry, orchestrator.timing.health_check_interval)

    def report(record: ProcessRecord) -> None:
        console.print(f"[red]Agent in {record.pane} (pid {record.pid}) exited[/red]")

    monitor.add_listener(report)
    monitor.start()
    console.print("[dim]Supervising team, press Ctrl-C to stop it...[/dim]")
    try:
        while monitor.running:
            time.sleep(orchestrator.timing.health_check_interval)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping team...[/yellow]")
    finally:
        monitor.stop()
    if individual:
        orchestrator.delete_team_sessions(session, worker_count)
    else:
        orchestrator.shutdown(session)
    console.print(f"[green]✓[/green] Team {session} stopped")


@main.command(name="status")
@click.argument("session", required=False)
@click.option("--workers", "-w", type=int, help="Number of worker panes (default from config)")
@click.pass_context
def status_command(ctx: click.Context, session: str | None, workers: int | None) -> None:
    """Show live per-pane process status of a team."""
    console = Console()

    def body():
        config = _load_config(ctx)
        worker_count = workers if workers is not None else config.worker_count
        orchestrator = _build_orchestrator(config)
        session_name = _resolve_session(orchestrator.adapter, config, session, worker_count)

        if orchestrator.adapter.session_exists(session_name):
            topology = orchestrator.adopt_session(session_name, worker_count)
            panes = {role: topology.address_for(role) for role in topology.roles()}
        else:
            panes = orchestrator.adopt_group_sessions(session_name, worker_count)

        table = Table(title=f"Team {session_name}")
        table.add_column("Role", style="bold")
        table.add_column("Pane")
        table.add_column("PID", justify="right")
        table.add_column("Status")
        for role, pane in panes.items():
            record = orchestrator.registry.get_process_info(pane.session, pane)
            state = orchestrator.get_status(pane.session).get(pane)
            if state is None:
                table.add_row(role.title, str(pane), "-", "[dim]untracked[/dim]")
                continue
            style = "green" if state == ProcessStatus.RUNNING else "red"
            table.add_row(role.title, str(pane), str(record.pid), f"[{style}]{state.value}[/{style}]")
        console.print(table)

    _run(console, body)


@main.command(name="stop")
@click.argument("session", required=False)
@click.option("--workers", "-w", type=int, help="Number of worker panes (default from config)")
@click.option("--all", "delete_all", is_flag=True, help="Also delete per-role <session>-<role> sessions")
@click.pass_context
def stop_command(ctx: click.Context, session: str | None, workers: int | None, delete_all: bool) -> None:
    """Terminate a team's agents and kill its session (or its per-role sessions)."""
    console = Console()

    def body():
        config = _load_config(ctx)
        worker_count = workers if workers is not None else config.worker_count
        orchestrator = _build_orchestrator(config)
        session_name = _resolve_session(orchestrator.adapter, config, session, worker_count)

        if orchestrator.adapter.session_exists(session_name):
            try:
                orchestrator.adopt_session(session_name, worker_count)
            except TopologyError as e:
                console.print(f"[yellow]{e}; killing the session without process tracking[/yellow]")
            orchestrator.shutdown(session_name)
            console.print(f"[green]✓[/green] Stopped {session_name}")
            if not delete_all:
                return

        # Group sessions of an --individual team, or everything with --all
        killed = orchestrator.delete_team_sessions(session_name, worker_count)
        for name in killed:
            console.print(f"[green]✓[/green] Deleted {name}")
        if not killed and not delete_all:
            console.print(f"[yellow]Session {session_name} not found[/yellow]")
            sys.exit(1)

    _run(console, body)


@main.command(name="sessions")
@click.option("--workers", "-w", type=int, help="Number of worker panes (default from config)")
@click.pass_context
def sessions_command(ctx: click.Context, workers: int | None) -> None:
    """List tmux sessions and how they relate to agentgrid."""
    console = Console()

    def body():
        config = _load_config(ctx)
        worker_count = workers if workers is not None else config.worker_count
        discovery = SessionDiscovery(TmuxAdapter(), fallback_name=config.default_session)
        records = discovery.discover(ANCHOR_COUNT + worker_count)

        if not records:
            console.print("[yellow]No tmux sessions found.[/yellow]")
        else:
            table = Table(title="tmux sessions")
            table.add_column("Session", style="bold")
            table.add_column("Panes", justify="right")
            table.add_column("Type")
            table.add_column("Group")
            for record in records.values():
                style = _CLASSIFICATION_STYLES[record.classification]
                table.add_row(
                    record.name,
                    str(record.region_count),
                    f"[{style}]{record.classification.value}[/{style}]",
                    record.group_base or "",
                )
            console.print(table)

        console.print(f"Default session: [cyan]{discovery.find_default_session(ANCHOR_COUNT + worker_count)}[/cyan]")

    _run(console, body)


@main.command(name="send")
@click.argument("role")
@click.argument("message")
@click.option("--session", "-s", help="Team session or group base (default: discovered)")
@click.option("--workers", "-w", type=int, help="Number of worker panes (default from config)")
@click.option("--reset-context", is_flag=True, help="Ask the agent to forget its previous role first")
@click.pass_context
def send_command(
    ctx: click.Context,
    role: str,
    message: str,
    session: str | None,
    workers: int | None,
    reset_context: bool,
) -> None:
    """Send MESSAGE to one agent (po, manager, worker1, worker2, ...).

    \b
    Examples:
        agentgrid send manager "Summarize progress"
        agentgrid send worker1 "Pick up the next task" --reset-context
    """
    console = Console()

    def body():
        target_role = parse_role_token(role)
        if target_role is None:
            raise MessageSendError(f"Unknown role '{role}' (use po, manager or worker<n>)")

        config = _load_config(ctx)
        worker_count = workers if workers is not None else config.worker_count
        adapter = TmuxAdapter()
        session_name = _resolve_session(adapter, config, session, worker_count)

        target = MessageSender(adapter).send(
            session_name, target_role, message, worker_count, reset_context=reset_context
        )
        console.print(f"[green]✓[/green] Sent to {target_role.title} ({target})")

    _run(console, body)


if __name__ == "__main__":
    main()
