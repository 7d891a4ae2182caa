# Copyright (c) Syntropy Systems
"""renderbench validate command."""
from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from renderbench.validator import MAX_PRINTED_ERRORS, validate_paths

console = Console()


def validate(
    files: list[Path] = typer.Argument(
        ...,
        help="JSONL result files to check",
    ),
) -> None:
    """Validate JSONL result files against the record schema.

    Exits non-zero if any file has a problem.
    """
    report = validate_paths(files)

    for result in report.files:
        if result.ok:
            console.print(
                f"[green]\\[OK][/green] {escape(result.path)}: {result.records} record(s) validated",
                highlight=False,
            )
        else:
            console.print(
                f"[red]\\[FAIL][/red] {escape(result.path)}: {len(result.issues)} issue(s) "
                f"across {result.records} record(s)",
                highlight=False,
            )

    issues = report.issues
    for issue in issues[:MAX_PRINTED_ERRORS]:
        console.print(f"  {issue}", markup=False, highlight=False)
    if len(issues) > MAX_PRINTED_ERRORS:
        console.print(f"  ... {len(issues) - MAX_PRINTED_ERRORS} more error(s) omitted")

    if not report.ok:
        console.print(
            f"\n[red]Validation failed:[/red] {len(issues)} issue(s) in "
            f"{sum(1 for f in report.files if not f.ok)} file(s)"
        )
        raise typer.Exit(1)

    console.print(
        f"\n[green]All {report.total_records} record(s) in {len(report.files)} file(s) are valid[/green]"
    )
