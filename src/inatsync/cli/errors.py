"""
Standardized error handling and exit codes for the inatsync CLI.

Expected failures (configuration mistakes, unreachable server, broken cache)
are printed as a short problem statement with a hint; everything else goes
through the panel renderer in ``handle_error``.
"""

import logging
import sys
import traceback
from enum import IntEnum

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from inatsync.core.exceptions import (
    CacheCorruptionError,
    SyncError,
    TransportError,
)

console = Console(stderr=True)

# Set by setup_logging; controls traceback output
_debug_mode = False


class ExitCode(IntEnum):
    """Standard exit codes for inatsync operations."""

    SUCCESS = 0
    """Sync completed."""

    GENERAL_ERROR = 1
    """Sync failed; completed work stays cached."""

    USER_ERROR = 2
    """Invalid configuration or arguments."""

    SIGINT = 130
    """Terminated by SIGINT (Ctrl+C) - Unix standard."""


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging for CLI commands.

    Args:
        debug: If True, enable DEBUG level logging and full tracebacks
    """
    global _debug_mode
    _debug_mode = debug

    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it

    Example:
        >>> print_error(
        ...     "Invalid configuration",
        ...     reason="max_workers (20) must be smaller than batch_size (20)",
        ...     solution="inatsync sync --workers 4",
        ... )
    """
    console.print(f"[red]Error:[/red] {problem}")

    if reason:
        console.print(f"[dim]{escape(reason)}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def _hint(error: SyncError) -> str | None:
    if isinstance(error, TransportError):
        return "Check your network connection or the --endpoint URL"
    if isinstance(error, CacheCorruptionError):
        return f"Delete {error.path} and run the sync again"
    return None


def handle_error(error: Exception, command_name: str) -> None:
    """
    Display an error with a user-friendly panel.

    Args:
        error: The exception that was raised
        command_name: Name of the command that failed
    """
    error_text = Text()
    if isinstance(error, SyncError):
        error_text.append("Error: ", style="bold red")
        error_text.append(str(error))

        if error.context:
            error_text.append("\n\nContext:\n", style="dim")
            for key, value in error.context.items():
                error_text.append(f"  {key}: ", style="cyan")
                error_text.append(f"{value}\n", style="white")

        if hint := _hint(error):
            error_text.append("\n→ ", style="cyan")
            error_text.append(hint)
        title = "[bold red]Sync Failed[/bold red]"
    else:
        error_text.append("Unexpected error in ", style="bold red")
        error_text.append(command_name, style="bold yellow")
        error_text.append(": ", style="bold red")
        error_text.append(str(error))
        title = "[bold red]Unexpected Error[/bold red]"

    console.print()
    console.print(Panel(error_text, title=title, border_style="red", expand=False))

    if _debug_mode:
        console.print("\n[dim]Full traceback:[/dim]")
        console.print("".join(traceback.format_exception(error)))
    else:
        console.print("[dim]Run with --debug for full traceback[/dim]")
    console.print()
