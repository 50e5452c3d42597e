"""
inatsync sync - mirror one user's records into the local cache.

Loads configuration (config files, .env, INATSYNC_* variables, then flags),
runs the sync service under asyncio, and renders the run report.
"""

import asyncio
import time
from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text

from inatsync.cli.errors import ExitCode, handle_error, print_error, setup_logging
from inatsync.core.api.fetcher import create_client
from inatsync.core.config import SyncConfig, load_config
from inatsync.core.sync.models import SyncReport
from inatsync.core.sync.service import SyncService

console = Console()


def build_config(
    *,
    endpoint: str | None = None,
    data_dir: Path | None = None,
    workers: int | None = None,
    batch_size: int | None = None,
) -> SyncConfig:
    """
    Load configuration and apply command-line overrides.

    Raises:
        ValidationError: If the merged settings are invalid
    """
    config = load_config(use_cache=False)
    overrides: dict[str, Any] = {}
    if endpoint is not None:
        overrides["api_url"] = endpoint
    if data_dir is not None:
        overrides["data_dir"] = data_dir
    if workers is not None:
        overrides["max_workers"] = workers
    if batch_size is not None:
        overrides["batch_size"] = batch_size
    if not overrides:
        return config
    return SyncConfig(**{**config.model_dump(), **overrides})


async def run_sync(config: SyncConfig, login: str) -> SyncReport:
    """Open a client and sync one owner."""
    async with create_client(config) as client:
        service = SyncService.from_config(config, client)
        return await service.sync_owner(login)


def render_report(report: SyncReport, config: SyncConfig, elapsed: float) -> None:
    """Print the run summary and per-kind write counts."""
    stats_table = Table(title="Sync Statistics", show_header=False, box=None)
    stats_table.add_column("Metric", style="cyan", no_wrap=True, width=20)
    stats_table.add_column("Count", justify="right", style="bold")

    stats_table.add_row("User", Text(f"{report.login} ({report.owner_id})", style="bold"))
    stats_table.add_row("Observations listed", str(report.listed))
    stats_table.add_row("Fetched", Text(str(report.fetched), style="green"))
    stats_table.add_row("Unchanged", Text(str(report.unchanged), style="dim"))
    stats_table.add_row("Files written", Text(str(report.total_written), style="blue"))

    console.print()
    console.print(stats_table)

    if report.written:
        kinds_table = Table(title="Written by Kind", border_style="cyan")
        kinds_table.add_column("Kind", style="cyan", width=25)
        kinds_table.add_column("Files", justify="right", style="green", width=10)
        for kind, count in sorted(report.written.items()):
            kinds_table.add_row(kind, str(count))
        console.print()
        console.print(kinds_table)

    console.print()
    console.print(f"[dim]Cache: {config.data_dir}[/dim]")
    console.print(f"[dim]Completed in {elapsed:.2f}s[/dim]")


def sync(
    ctx: typer.Context,
    user: Annotated[
        str,
        typer.Option(
            "--user",
            "-u",
            envvar="INATSYNC_USER",
            help="Login of the user whose observations are mirrored",
        ),
    ],
    endpoint: Annotated[
        str | None,
        typer.Option(
            "--endpoint",
            help="API base URL (default: https://api.inaturalist.org/v1)",
        ),
    ] = None,
    data_dir: Annotated[
        Path | None,
        typer.Option(
            "--data-dir",
            "-d",
            help="Cache root directory",
        ),
    ] = None,
    workers: Annotated[
        int | None,
        typer.Option(
            "--workers",
            "-w",
            help="Concurrent requests per batch (must be smaller than the batch size)",
        ),
    ] = None,
    batch_size: Annotated[
        int | None,
        typer.Option(
            "--batch-size",
            help="Observations fetched per batch",
        ),
    ] = None,
    debug: Annotated[
        bool,
        typer.Option(
            "--debug",
            help="Enable debug mode with full tracebacks and verbose logging",
        ),
    ] = False,
) -> None:
    """
    Sync a user's observations and everything they reference.

    Unchanged records are confirmed with conditional requests and left
    untouched; changed records are re-fetched and normalized into one file
    per entity.

    Examples:
        inatsync sync --user kueda
        inatsync sync -u kueda --data-dir ./cache
        INATSYNC_USER=kueda inatsync sync --debug
    """
    debug = debug or bool((ctx.obj or {}).get("debug"))
    setup_logging(debug)

    try:
        config = build_config(
            endpoint=endpoint,
            data_dir=data_dir,
            workers=workers,
            batch_size=batch_size,
        )
    except ValidationError as e:
        print_error(
            "Invalid configuration",
            reason=str(e),
            solution="check .inatsync.json, INATSYNC_* variables and flags",
        )
        raise typer.Exit(ExitCode.USER_ERROR)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(f"Syncing {user}...", total=None)
            start_time = time.time()
            report = asyncio.run(run_sync(config, user))
            elapsed = time.time() - start_time
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted; completed batches stay cached[/yellow]")
        raise typer.Exit(ExitCode.SIGINT)
    except Exception as e:
        handle_error(e, "sync")
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    render_report(report, config, elapsed)
