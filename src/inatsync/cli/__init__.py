"""
inatsync CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import typer
from rich.console import Console

from inatsync import __version__
from inatsync.cli import status, sync
from inatsync.core.config.env import load_layered_env

# Create the main Typer app
app = typer.Typer(
    name="inatsync",
    help="Keep a local per-entity cache of one user's iNaturalist records",
    no_args_is_help=True,
    add_completion=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


def _print_version(value: bool) -> None:
    if value:
        console.print(f"inatsync {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_print_version,
        is_eager=True,
        help="Show the version and exit",
    ),
) -> None:
    """
    inatsync - iNaturalist personal data mirror.

    Mirrors one user's observations, and every record they embed, into a
    directory of YAML files: one file per entity, each carrying the time and
    etag of the response it came from so later runs only re-fetch what
    changed.

    Quick Start:
        inatsync sync --user kueda     # Mirror kueda's observations
        inatsync status                # See what is cached
    """
    # Precedence: OS env > project .env > user .env
    load_layered_env()

    # Store debug flag in context for subcommands
    ctx.obj = {"debug": debug}


app.command(name="sync")(sync.sync)
app.command(name="status")(status.status)


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
