"""
inatsync status - summarize what the local cache holds.
"""

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from inatsync.cli.errors import ExitCode, handle_error
from inatsync.core.cache.models import ENTITY_KINDS
from inatsync.core.cache.store import CacheStore
from inatsync.core.config import load_config

console = Console()


def status(
    data_dir: Annotated[
        Path | None,
        typer.Option(
            "--data-dir",
            "-d",
            help="Cache root directory",
        ),
    ] = None,
) -> None:
    """
    Show cached entity counts and synced users.

    Examples:
        inatsync status
        inatsync status --data-dir ./cache
    """
    try:
        root = data_dir if data_dir is not None else load_config(use_cache=False).data_dir
        store = CacheStore(root)

        counts = {kind: len(store.entity_ids(kind)) for kind in ENTITY_KINDS}
        owners = store.aliases(CacheStore.OWNER_KIND)
        listings = {
            login: store.read_id_listing(owner_id) for login, owner_id in owners.items()
        }
    except Exception as e:
        handle_error(e, "status")
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    if not any(counts.values()):
        console.print(f"[yellow]Cache at {root} is empty.[/yellow]")
        console.print("[dim]Run 'inatsync sync --user LOGIN' to populate it.[/dim]")
        return

    if owners:
        users_table = Table(title="Synced Users", border_style="green")
        users_table.add_column("Login", style="cyan")
        users_table.add_column("ID", justify="right")
        users_table.add_column("Observations", justify="right", style="green")
        users_table.add_column("Listed At", style="dim", no_wrap=True)
        for login, owner_id in owners.items():
            listing = listings[login]
            users_table.add_row(
                login,
                str(owner_id),
                str(len(listing.ids)) if listing else "-",
                listing.header.captured_at.isoformat() if listing else "-",
            )
        console.print(users_table)
        console.print()

    kinds_table = Table(title="Cached Entities", border_style="cyan")
    kinds_table.add_column("Kind", style="cyan", width=25)
    kinds_table.add_column("Files", justify="right", style="green", width=10)
    for kind, count in counts.items():
        if count:
            kinds_table.add_row(kind, str(count))
    console.print(kinds_table)
    console.print(f"\n[dim]Cache: {root}[/dim]")
