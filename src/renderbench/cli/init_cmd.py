# Copyright (c) Syntropy Systems
"""renderbench init command."""

from pathlib import Path

import typer
import yaml
from rich.console import Console

from renderbench.config import BENCH_DIR_NAME, SuiteConfig
from renderbench.store import init_db

console = Console()

# Keys written to a fresh config.yaml; everything else keeps its default.
_INIT_KEYS = (
    "instances",
    "trials",
    "shuffle",
    "seed",
    "duration_ms",
    "warmup_ms",
    "cooldown_ms",
    "between_instances_ms",
    "pre_idle_ms",
    "post_idle_ms",
    "layout",
    "spacing",
    "collect_perf",
    "run_mode",
    "order_mode",
    "order_slots",
    "pin_identity",
    "session_group",
    "entry_timeout_ms",
)


def init(
    path: Path = typer.Argument(
        Path(),
        help="Directory to initialize (default: current directory)",
    ),
) -> None:
    """Initialize a new renderbench project.

    Creates a .renderbench directory with configuration, key-value store and
    a results directory.
    """
    target = path.resolve()
    bench_dir = target / BENCH_DIR_NAME

    if bench_dir.exists():
        console.print(f"[yellow]Already initialized:[/yellow] {bench_dir}")
        return

    bench_dir.mkdir(parents=True)
    results_dir = bench_dir / "results"
    results_dir.mkdir()

    defaults = SuiteConfig().to_dict()
    config = {key: defaults[key] for key in _INIT_KEYS}

    config_path = bench_dir / "config.yaml"
    with config_path.open("w") as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)

    db_path = bench_dir / "renderbench.db"
    init_db(db_path)

    console.print(f"[green]Initialized renderbench project:[/green] {bench_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")
    console.print(f"  [dim]store:[/dim] {db_path}")
    console.print(f"  [dim]results:[/dim] {results_dir}")
