# Copyright (c) Syntropy Systems
"""renderbench plan command."""
from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from renderbench.config import apply_overrides, load_config
from renderbench.errors import BenchError
from renderbench.plan import PlanCursor, build_plan

console = Console()


def plan(
    config_file: Path | None = typer.Option(
        None,
        "--config", "-c",
        help="Suite configuration YAML (default: .renderbench/config.yaml)",
    ),
    instances: str | None = typer.Option(
        None,
        "--instances", "-i",
        help="Comma-separated instance counts, e.g. 4,8,16",
    ),
    trials: int | None = typer.Option(
        None,
        "--trials", "-t",
        help="Trials per instance count",
    ),
    shuffle: bool | None = typer.Option(
        None,
        "--shuffle/--no-shuffle",
        help="Shuffle the plan with the seeded generator",
    ),
    seed: int | None = typer.Option(
        None,
        "--seed",
        help="Shuffle seed",
    ),
) -> None:
    """Preview the condition plan without measuring anything."""
    try:
        config = load_config(config_file)
        apply_overrides(
            config,
            {"instances": instances, "trials": trials, "shuffle": shuffle, "seed": seed},
        )
        config.validate()
        conditions = build_plan(config.instances, config.trials, config.shuffle, config.seed)
    except (BenchError, OSError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    title = "Plan"
    if config.shuffle:
        title += f" (shuffled, seed={config.seed})"
    table = Table(title=title)
    table.add_column("#", style="dim")
    table.add_column("Instances", justify="right")
    table.add_column("Trial", justify="right")
    table.add_column("Pause before")

    cursor = PlanCursor(conditions)
    while (condition := cursor.current) is not None:
        if cursor.index == 0:
            pause = f"warmup {config.warmup_ms}ms"
        elif cursor.changes_block():
            pause = f"between-instances {config.between_instances_ms}ms"
        else:
            pause = f"cooldown {config.cooldown_ms}ms"
        table.add_row(
            str(cursor.index + 1),
            str(condition.instances),
            f"{condition.trial}/{config.trials}",
            pause,
        )
        cursor.advance()

    console.print(table)
    console.print(f"\n[bold]{len(conditions)} condition(s)[/bold]")
