"""
RoundStats CLI - Command Line Interface for server log ingestion

Provides commands for:
- Ingesting server logs once or on a schedule
- Inspecting and resetting checkpoints
- Printing leaderboards and global stats
- Converting between player id formats
"""

import logging
import platform as plat
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from roundstats import __version__
from roundstats.context import AppContext, get_context
from roundstats.core.config import (
    configure_logging,
    generate_default_config,
    load_config,
    set_config,
)
from roundstats.core.errors import RunInProgressError
from roundstats.core.identity import (
    account_id_to_legacy_id,
    account_id_to_steam64,
    detect_id_format,
    to_account_id,
)
from roundstats.ingest.logfiles import read_log_lines
from roundstats.ingest.pipeline import IngestionSummary
from roundstats.ingest.watcher import LogDirectoryWatcher

app = typer.Typer(
    name="roundstats",
    help="CS2 server log ingestion and cumulative leaderboards",
    add_completion=False,
)
console = Console()

logger = logging.getLogger(__name__)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]RoundStats[/bold blue] v{__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML, TOML or JSON config file",
        exists=True,
        dir_okay=False,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Enable verbose output",
    ),
) -> None:
    """RoundStats - CS2 server log ingestion"""
    config = load_config(config_file)
    if verbose:
        config.logging.level = "DEBUG"
    configure_logging(config.logging)
    set_config(config)


def _context() -> AppContext:
    return get_context()


def _parse_date(value: Optional[str], option: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        console.print(f"[red]Error:[/red] {option} must be YYYY-MM-DD, got {value!r}")
        raise typer.Exit(1)


def _print_summary(summary: IngestionSummary) -> None:
    table = Table(title=f"Server {summary.server_id}", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    status = "[green]success[/green]" if summary.success else "[red]failed[/red]"
    table.add_row("Status", status)
    table.add_row("Map", summary.map_name or "-")
    table.add_row("Inserted", str(summary.inserted))
    table.add_row("Skipped", str(summary.skipped))
    table.add_row("Lines", f"{summary.processed_lines}/{summary.total_lines}")
    table.add_row("Matches started", str(summary.matches_started))
    if summary.restart_detected:
        table.add_row("Restart", "[yellow]log restarted, reprocessed from line 1[/yellow]")
    if summary.malformed_rows:
        table.add_row("Malformed rows", f"[yellow]{summary.malformed_rows}[/yellow]")
    if summary.message:
        table.add_row("Message", summary.message)
    if summary.error:
        table.add_row("Error", f"[red]{summary.error}[/red]")
    table.add_row("Duration", f"{summary.duration_seconds:.2f}s")
    console.print(table)


@app.command()
def ingest(
    server_ids: Optional[list[int]] = typer.Argument(
        None,
        help="Servers to ingest (defaults to the configured server ids)",
    ),
) -> None:
    """
    Process new lines of each server's latest log.

    Exits non-zero if any server run failed.
    """
    context = _context()
    targets = server_ids or context.config.ingestion.server_ids

    failed = False
    for server_id in targets:
        try:
            summary = context.scheduler.trigger(server_id, trigger="cli")
        except RunInProgressError as e:
            console.print(f"[yellow]Skipped:[/yellow] {e}")
            continue
        _print_summary(summary)
        failed = failed or not summary.success

    if failed:
        raise typer.Exit(1)


@app.command()
def status(
    server_ids: Optional[list[int]] = typer.Argument(
        None,
        help="Servers to inspect (defaults to the configured server ids)",
    ),
) -> None:
    """Show log size, checkpoint and pending lines per server."""
    context = _context()
    targets = server_ids or context.config.ingestion.server_ids

    table = Table(title="Ingestion Status")
    table.add_column("Server", style="cyan")
    table.add_column("Log file")
    table.add_column("Lines", justify="right")
    table.add_column("Checkpoint", justify="right")
    table.add_column("Pending", justify="right")

    for server_id in targets:
        log_path = context.pipeline.log_path(server_id)
        checkpoint = context.checkpoints.read(server_id)
        if not log_path.exists():
            table.add_row(str(server_id), "[yellow]missing[/yellow]", "-", str(checkpoint), "-")
            continue
        total = len(read_log_lines(log_path))
        pending = total if checkpoint > total else total - checkpoint
        table.add_row(str(server_id), log_path.name, str(total), str(checkpoint), str(pending))

    console.print(table)


@app.command("reset-checkpoint")
def reset_checkpoint(
    server_id: int = typer.Argument(..., help="Server whose checkpoint to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """
    Delete a server's checkpoint so the next run reads the log from line 1.

    Rows already stored are kept; reprocessing assigns fresh match ids.
    """
    if not yes:
        typer.confirm(f"Reset checkpoint for server {server_id}?", abort=True)

    deleted = _context().checkpoints.delete(server_id)
    if deleted:
        console.print(f"[green]Checkpoint reset for server {server_id}[/green]")
    else:
        console.print(f"[yellow]No checkpoint for server {server_id}[/yellow]")


@app.command()
def leaderboard(
    server_id: Optional[int] = typer.Option(None, "--server", "-s", help="Only this server"),
    start_date: Optional[str] = typer.Option(None, "--from", "--start", help="Start date (YYYY-MM-DD)"),
    end_date: Optional[str] = typer.Option(None, "--to", "--end", help="End date (YYYY-MM-DD)"),
    limit: int = typer.Option(20, "--limit", "-n", min=1, max=500, help="Rows to show"),
    registered: bool = typer.Option(False, "--registered", help="Only linked accounts"),
    naive: bool = typer.Option(False, "--naive", help="Sum every round (diagnostic)"),
) -> None:
    """Print the ranked leaderboard."""
    start = _parse_date(start_date, "--from")
    end = _parse_date(end_date, "--to")

    result = _context().leaderboard.leaderboard(
        server_id=server_id,
        start_date=start,
        end_date=end,
        limit=limit,
        registered_only=registered,
        naive=naive,
    )

    if not result["leaderboard"]:
        console.print(f"[yellow]{result.get('message', 'No players found')}[/yellow]")
        return

    title = "Leaderboard (naive sum)" if naive else "Leaderboard"
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Player", style="cyan")
    table.add_column("Kills", justify="right", style="green")
    table.add_column("Deaths", justify="right")
    table.add_column("K/D", justify="right")
    table.add_column("Matches", justify="right")
    table.add_column("Rounds", justify="right")

    for row in result["leaderboard"]:
        stats = row["stats"]
        table.add_row(
            str(row["rank"]),
            row["display_name"],
            str(stats["total_kills"]),
            str(stats["total_deaths"]),
            f"{stats['kdr']:.2f}",
            str(stats["matches_played"]),
            str(stats["rounds_played"]),
        )

    console.print(table)


@app.command()
def stats() -> None:
    """Print global totals."""
    result = _context().leaderboard.global_stats()
    data = result["stats"]

    table = Table(title="Global Stats", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Matches", str(data["total_matches"]))
    table.add_row("Rounds", str(data["total_rounds"]))
    table.add_row("Kills", str(data["total_kills"]))
    table.add_row("Deaths", str(data["total_deaths"]))
    table.add_row("Unique players", str(data["unique_players"]))
    table.add_row("Registered players", str(result["registered_players_count"]))
    table.add_row("Maps", str(data["maps_played"]))
    table.add_row("Last match", str(data["last_match"] or "-"))
    console.print(table)


@app.command()
def schedule(
    watch: bool = typer.Option(
        False,
        "--watch/--no-watch",
        "-w",
        help="Also process logs as soon as they change",
    ),
) -> None:
    """
    Run ingestion for every configured server on a fixed interval.

    Blocks until interrupted.
    """
    context = _context()
    ingestion = context.config.ingestion

    console.print("\n[bold blue]RoundStats[/bold blue] - Scheduled ingestion\n")
    console.print(f"[cyan]Logs:[/cyan] {context.logs_dir}")
    console.print(f"[cyan]Servers:[/cyan] {', '.join(str(s) for s in ingestion.server_ids)}")
    console.print(f"[cyan]Interval:[/cyan] {ingestion.interval_seconds}s")
    console.print(f"[cyan]Watch:[/cyan] {'Yes' if watch else 'No'}")
    console.print("\nPress [bold]Ctrl+C[/bold] to stop...\n")

    context.scheduler.add_listener(_print_summary)

    watcher = None
    if watch:
        watcher = LogDirectoryWatcher(
            context.logs_dir,
            context.scheduler,
            debounce_seconds=context.config.watcher.debounce_seconds,
            server_ids=ingestion.server_ids,
        )
        watcher.start()

    try:
        # Returns once Ctrl+C stops the loop
        context.scheduler.start(blocking=True)
    finally:
        console.print("\n[yellow]Stopping scheduler...[/yellow]")
        if watcher is not None:
            watcher.stop()
        if context.scheduler.is_started:
            context.scheduler.stop()


@app.command()
def convert(
    player_id: str = typer.Argument(
        ...,
        help="steam64 id, STEAM_X:Y:Z id or raw account id",
    ),
) -> None:
    """Show a player id in all three formats."""
    overrides = _context().config.identity.overrides
    account_id = to_account_id(player_id, overrides)
    if account_id is None:
        console.print(f"[red]Error:[/red] Unrecognized player id: {player_id!r}")
        raise typer.Exit(1)

    panel = Panel(
        f"[cyan]Input format:[/cyan] {detect_id_format(player_id)}\n"
        f"[cyan]Account ID:[/cyan] {account_id}\n"
        f"[cyan]Steam64:[/cyan] {account_id_to_steam64(account_id)}\n"
        f"[cyan]Legacy:[/cyan] {account_id_to_legacy_id(account_id)}",
        title="[bold blue]Player ID[/bold blue]",
        expand=False,
    )
    console.print(panel)


@app.command("init-config")
def init_config(
    path: Path = typer.Argument(
        Path("roundstats.yaml"),
        help="Where to write the config (.yaml, .yml or .json)",
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
) -> None:
    """Write a default configuration file."""
    if path.exists() and not force:
        console.print(f"[red]Error:[/red] {path} already exists (use --force)")
        raise typer.Exit(1)
    generate_default_config(path)
    console.print(f"[green]Config written to:[/green] {path}")


@app.command()
def info() -> None:
    """
    Display information about RoundStats and the environment.
    """
    context = _context()
    config = context.config

    console.print(f"\n[bold blue]RoundStats[/bold blue] v{__version__}\n")

    table = Table(show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Python", plat.python_version())
    table.add_row("Platform", plat.system())
    table.add_row("Database", config.storage.database_url)

    logs_dir = context.logs_dir
    folder_status = "[green]exists[/green]" if logs_dir.exists() else "[yellow]not found[/yellow]"
    table.add_row("Logs folder", f"{logs_dir} ({folder_status})")
    table.add_row("Servers", ", ".join(str(s) for s in config.ingestion.server_ids))
    table.add_row("Stored rounds", str(context.db.count_records()))
    steam_status = "[green]enabled[/green]" if context.steam.enabled else "[yellow]no API key[/yellow]"
    table.add_row("Steam lookups", steam_status)

    console.print(table)


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
