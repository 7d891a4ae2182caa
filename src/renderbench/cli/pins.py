# Copyright (c) Syntropy Systems
"""renderbench pins command."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from renderbench.config import get_db_path, require_bench_dir
from renderbench.protocol import IDENTITY_KEY_PREFIX, identity_key
from renderbench.store import SQLiteStore

console = Console()


def pins(
    clear: Optional[str] = typer.Option(
        None,
        "--clear",
        help="Forget the pinned identity for a session group",
    ),
) -> None:
    """List pinned device identities, or clear one."""
    try:
        bench_dir = require_bench_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    store = SQLiteStore(get_db_path(bench_dir))

    if clear is not None:
        key = identity_key(clear)
        if store.get(key) is None:
            console.print(f"[yellow]No pinned identity for group {clear!r}[/yellow]")
            return
        store.delete(key)
        console.print(f"[green]Cleared pinned identity for group {clear!r}[/green]")
        return

    pairs = store.items(IDENTITY_KEY_PREFIX)
    if not pairs:
        console.print("[dim]No pinned identities[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Group")
    table.add_column("Identity")
    for key, value in pairs:
        table.add_row(key[len(IDENTITY_KEY_PREFIX):], value)
    console.print(table)
