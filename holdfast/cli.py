"""
Holdfast CLI - Typer Commands

Command line front end over the session engine. Every command opens the
SQLite repository from config, runs one engine call and prints the result.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from holdfast.config import load_config
from holdfast.engine import Engine, create_engine
from holdfast.exceptions import CooldownError, HoldfastError
from holdfast.goals import GoalProgressTracker
from holdfast.logging.viewer import format_entry_line, query_logs
from holdfast.persistence.models import EndReason, OwnerSettings, PauseReason
from holdfast.persistence.repository import HoldfastRepository
from holdfast.timing import format_duration, format_time_remaining

logger = logging.getLogger(__name__)
console = Console()

T = TypeVar("T")

app = typer.Typer(
    name="holdfast",
    help="Timed restriction sessions with pause cooldowns, goals and an emergency unlock",
    add_completion=False,
)

OwnerOption = typer.Option(None, "--owner", "-o", help="Owner ID (defaults to config)")


def _run(owner: str | None, action: Callable[[Engine, str], Awaitable[T]]) -> T:
    """Open the repository, run one engine action and map domain errors to exit 1."""
    try:
        config = load_config()
        owner_id = owner or config.default_owner
        with HoldfastRepository(config.db_path) as repo:
            engine = create_engine(repo, config)
            return asyncio.run(action(engine, owner_id))
    except CooldownError as e:
        console.print(f"[bold red]Cooldown active:[/bold red] {e.message}")
        if e.next_available is not None:
            console.print(f"  Next available: {e.next_available:%Y-%m-%d %H:%M:%S %Z}")
        if e.remaining_seconds is not None:
            console.print(f"  Remaining: {format_time_remaining(e.remaining_seconds)}")
        raise typer.Exit(1)
    except HoldfastError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        raise typer.Exit(1)


@app.command()
def start(
    goal_hours: float = typer.Option(None, "--goal-hours", "-g", help="Goal duration in hours"),
    hardcore: bool = typer.Option(False, "--hardcore", help="Enable hardcore mode"),
    keyholder: bool = typer.Option(False, "--keyholder", help="Require keyholder approval"),
    notes: str = typer.Option(None, "--notes", help="Session notes"),
    owner: str = OwnerOption,
) -> None:
    """Start a new session."""

    async def action(engine: Engine, owner_id: str):
        goal = int(goal_hours * 3600) if goal_hours else None
        return await engine.start_session(
            owner_id,
            goal_duration=goal,
            is_hardcore_mode=hardcore,
            keyholder_approval_required=keyholder,
            notes=notes,
        )

    session = _run(owner, action)
    console.print(f"[green]Started session {session.id[:8]}[/green] for {session.owner_id}")
    if session.goal_duration:
        console.print(f"  Goal: {format_duration(session.goal_duration)}")


@app.command()
def pause(
    reason: str = typer.Option(
        PauseReason.OTHER.value,
        "--reason",
        "-r",
        help="Cleaning, Medical, Exercise, Other, or free text",
    ),
    notes: str = typer.Option(None, "--notes", help="Pause notes"),
    owner: str = OwnerOption,
) -> None:
    """Pause the current session."""
    try:
        pause_reason = PauseReason(reason)
        custom_reason = None
    except ValueError:
        pause_reason = PauseReason.OTHER
        custom_reason = reason

    async def action(engine: Engine, owner_id: str):
        session = await engine.require_open_session(owner_id)
        return await engine.pause_session(
            session.id, reason=pause_reason, custom_reason=custom_reason, notes=notes
        )

    session = _run(owner, action)
    console.print(f"[yellow]Paused session {session.id[:8]}[/yellow] ({custom_reason or pause_reason.value})")


@app.command()
def resume(
    notes: str = typer.Option(None, "--notes", help="Resume notes"),
    owner: str = OwnerOption,
) -> None:
    """Resume the paused session."""

    async def action(engine: Engine, owner_id: str):
        session = await engine.require_open_session(owner_id)
        return await engine.resume_session(session.id, notes=notes)

    session = _run(owner, action)
    console.print(
        f"[green]Resumed session {session.id[:8]}[/green] "
        f"(total paused {format_duration(session.accumulated_pause_time)})"
    )


@app.command()
def end(
    reason: str = typer.Option(EndReason.MANUAL.value, "--reason", "-r", help="End reason"),
    owner: str = OwnerOption,
) -> None:
    """End the current session."""

    async def action(engine: Engine, owner_id: str):
        session = await engine.require_open_session(owner_id)
        return await engine.end_session(session.id, end_reason=reason)

    result = _run(owner, action)
    console.print(f"[green]Ended session {result.session.id[:8]}[/green]")
    console.print(f"  Total:     {format_duration(result.total_duration)}")
    console.print(f"  Effective: {format_duration(result.effective_duration)}")
    for goal in result.completed_goals:
        console.print(f"  [bold magenta]Goal completed:[/bold magenta] {goal.title}")


@app.command()
def unlock(
    reason: str = typer.Argument(..., help="Emergency reason, e.g. 'Medical Emergency'"),
    notes: str = typer.Option(None, "--notes", help="Additional notes"),
    owner: str = OwnerOption,
) -> None:
    """Emergency unlock: end the current session immediately."""

    async def action(engine: Engine, owner_id: str):
        session = await engine.require_open_session(owner_id)
        return await engine.perform_emergency_unlock(session.id, owner_id, reason, notes)

    result = _run(owner, action)
    if not result.success:
        console.print(f"[bold red]{result.message}[/bold red]")
        raise typer.Exit(1)
    console.print(f"[bold green]{result.message}[/bold green]")


@app.command()
def status(owner: str = OwnerOption) -> None:
    """Show the current session."""

    async def action(engine: Engine, owner_id: str):
        session = await engine.lifecycle.get_current_session(owner_id)
        if session is None:
            return None
        stats = await engine.lifecycle.get_session_stats(session.id)
        pause_status = await engine.lifecycle.get_pause_status(session.id)
        progress = await engine.get_goal_progress(session.id)
        return session, stats, pause_status, progress

    found = _run(owner, action)
    if found is None:
        console.print("[dim]No active session[/dim]")
        return

    session, stats, pause_status, progress = found
    state = "[yellow]PAUSED[/yellow]" if session.is_paused else "[green]ACTIVE[/green]"
    lines = [
        f"Session:   {session.id[:8]}  {state}",
        f"Started:   {session.start_time:%Y-%m-%d %H:%M:%S %Z}",
        f"Elapsed:   {format_duration(stats.total_duration)}",
        f"Effective: {format_duration(stats.effective_time)}",
        f"Paused:    {format_duration(stats.total_pause_time)} ({stats.pause_percentage:.1f}%)",
    ]
    if session.is_paused:
        lines.append(f"Current pause: {format_duration(pause_status.current_pause_duration)}")
    elif pause_status.cooldown is not None:
        lines.append(f"Pause: {pause_status.cooldown.message}")
    else:
        lines.append("Pause: available now")
    if progress is not None:
        lines.append(
            f"Goal:      {progress.progress:.1f}% of {format_duration(progress.goal_time)}"
            f" ({format_duration(progress.time_remaining)} left)"
        )
    if session.is_hardcore_mode:
        lines.append("[red]Hardcore mode[/red]")

    console.print(Panel("\n".join(lines), title=f"Holdfast - {session.owner_id}", border_style="cyan"))


@app.command()
def history(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of sessions to show"),
    owner: str = OwnerOption,
) -> None:
    """List recent sessions."""

    async def action(engine: Engine, owner_id: str):
        return await engine.repository.sessions.list_by_owner(owner_id, limit=limit)

    sessions = _run(owner, action)
    if not sessions:
        console.print("[dim]No sessions found[/dim]")
        return

    table = Table(title="Sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Started")
    table.add_column("Total")
    table.add_column("Effective")
    table.add_column("End reason")

    for s in sessions:
        table.add_row(
            s.id[:8],
            f"{s.start_time:%Y-%m-%d %H:%M}",
            format_duration(s.final_duration) if s.final_duration is not None else "-",
            format_duration(s.final_effective_duration)
            if s.final_effective_duration is not None
            else "-",
            s.end_reason or ("[green]open[/green]" if s.is_open else "-"),
        )
    console.print(table)


@app.command(name="goal-add")
def goal_add(
    title: str = typer.Argument(..., help="Goal title"),
    hours: float = typer.Argument(..., help="Target effective hours"),
    description: str = typer.Option(None, "--description", "-d", help="Goal description"),
    owner: str = OwnerOption,
) -> None:
    """Add a duration goal."""
    if hours <= 0:
        console.print("[bold red]Error:[/bold red] Target hours must be positive")
        raise typer.Exit(1)

    async def action(engine: Engine, owner_id: str):
        return await engine.add_duration_goal(owner_id, title, int(hours * 3600), description)

    goal = _run(owner, action)
    console.print(f"[green]Added goal '{goal.title}'[/green] ({format_duration(int(goal.target_value))})")


@app.command()
def goals(owner: str = OwnerOption) -> None:
    """List goals and their progress."""

    async def action(engine: Engine, owner_id: str):
        items = await engine.repository.goals.list_by_owner(owner_id)
        stats = await engine.goal_tracker.get_goal_statistics(owner_id)
        return items, stats

    items, stats = _run(owner, action)
    if not items:
        console.print("[dim]No goals found[/dim]")
        return

    table = Table(title="Goals")
    table.add_column("Title", style="cyan")
    table.add_column("Progress")
    table.add_column("Target")
    table.add_column("Status")

    for goal in items:
        pct = GoalProgressTracker.calculate_progress(goal)
        table.add_row(
            goal.title,
            f"{pct:.1f}%",
            format_duration(int(goal.target_value)),
            "[green]completed[/green]" if goal.is_completed else "active",
        )
    console.print(table)
    console.print(
        f"[dim]{stats.completed}/{stats.total} completed ({stats.completion_rate}%), "
        f"average active progress {stats.average_progress}%[/dim]"
    )


@app.command()
def settings(
    emergency_cooldown_hours: float = typer.Option(
        None,
        "--emergency-cooldown-hours",
        help="Hours between emergency unlocks (0 disables)",
    ),
    owner: str = OwnerOption,
) -> None:
    """Show or change owner settings."""

    async def action(engine: Engine, owner_id: str):
        current = await engine.get_settings(owner_id)
        if emergency_cooldown_hours is not None:
            current = OwnerSettings(
                owner_id=owner_id,
                emergency_unlock_cooldown_hours=emergency_cooldown_hours,
                is_hardcore_mode=current.is_hardcore_mode,
                active_restrictions=current.active_restrictions,
            )
            await engine.save_settings(current)
        stats = await engine.emergency.get_emergency_unlock_stats(owner_id)
        return current, stats

    current, stats = _run(owner, action)
    if emergency_cooldown_hours is not None:
        console.print(f"[green]Settings saved for {current.owner_id}[/green]")

    hours = current.emergency_unlock_cooldown_hours
    console.print(f"Emergency cooldown: {f'{hours:g}h' if hours else 'disabled'}")
    console.print(f"Hardcore mode: {'on' if current.is_hardcore_mode else 'off'}")
    if current.active_restrictions:
        console.print(f"Restrictions: {', '.join(current.active_restrictions)}")
    console.print(f"Emergency unlocks (30d): {stats.total_unlocks}")
    if stats.is_on_cooldown and stats.cooldown_until is not None:
        console.print(f"[yellow]Emergency unlock on cooldown until {stats.cooldown_until:%Y-%m-%d %H:%M:%S %Z}[/yellow]")


@app.command()
def logs(
    log_type: str = typer.Option("all", "--type", "-t", help="Log type: lifecycle, emergency, all"),
    since: str = typer.Option(
        None, "--since", "-s", help="Time filter (ISO or relative: 1h, 30m, 2d)"
    ),
    session: str = typer.Option(None, "--session", help="Filter by session ID"),
    owner: str = typer.Option(None, "--owner", "-o", help="Filter by owner"),
    tail: int = typer.Option(20, "--tail", "-n", help="Show last N entries"),
) -> None:
    """View structured lifecycle and emergency logs."""
    try:
        entries = query_logs(
            log_type=log_type,
            since=since,
            session_id=session,
            owner_id=owner,
            limit=tail,
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not entries:
        console.print("[dim]No log entries found[/dim]")
        return

    for entry in reversed(entries):
        line = escape(format_entry_line(entry))
        if entry.get("_source") == "emergency":
            color = "green" if entry.get("success") else "red"
            console.print(f"[{color}]{line}[/{color}]")
        elif entry.get("error"):
            console.print(f"[red]{line}[/red]")
        else:
            console.print(f"[dim]{line}[/dim]")


def main() -> None:
    """Entry point for the `holdfast` command."""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    app()


if __name__ == "__main__":
    main()
