# Copyright (c) Syntropy Systems
"""renderbench run command."""
from __future__ import annotations

import sqlite3
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from renderbench.clock import MonotonicClock, SimulatedClock
from renderbench.config import (
    apply_overrides,
    find_bench_dir,
    get_db_path,
    get_results_dir,
    load_config,
)
from renderbench.errors import BenchError
from renderbench.fingerprint import query_gpu_name
from renderbench.simulated import (
    SimulatedImmersiveEnvironment,
    SteppedFrameScheduler,
    SyntheticAssetLoader,
    simulated_backend,
)
from renderbench.sink import JsonlFileSink
from renderbench.store import MemoryStore, SQLiteStore
from renderbench.suite import Suite, run_suite

console = Console()

BACKENDS = ("webgl2", "webgpu")


def run(
    backend: str = typer.Option(
        ...,
        "--backend", "-b",
        help="Graphics backend to run: webgl2 or webgpu",
    ),
    mode: str | None = typer.Option(
        None,
        "--mode", "-m",
        help="Surfaces to run: canvas, xr or both",
    ),
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
    trials: int | None = typer.Option(None, "--trials", "-t", help="Trials per instance count"),
    duration_ms: int | None = typer.Option(None, "--duration-ms", help="Measured window length"),
    order_mode: str | None = typer.Option(
        None,
        "--order-mode",
        help="unconstrained, fixed-ABBA, fixed-BAAB or externally-assigned",
    ),
    order_index: int | None = typer.Option(None, "--order-index", help="1-based position in the order table"),
    assigned_backend: str | None = typer.Option(None, "--assigned-backend", help="Backend assigned externally"),
    pin_identity: bool | None = typer.Option(
        None,
        "--pin-identity/--no-pin-identity",
        help="Pin the device identity for the session group",
    ),
    session_group: str | None = typer.Option(None, "--session-group", help="Identity pin group key"),
    output_dir: Path | None = typer.Option(
        None,
        "--output-dir", "-o",
        help="Directory for JSONL results (default: .renderbench/results)",
    ),
    view_count: int = typer.Option(2, "--views", help="Views per simulated immersive frame"),
    end_after_frames: int | None = typer.Option(
        None,
        "--end-after-frames",
        help="End the simulated immersive session after N frames",
    ),
    realtime: bool = typer.Option(
        False,
        "--realtime",
        help="Pace simulated frames in real time instead of virtual time",
    ),
) -> None:
    """Run a suite against the simulated surfaces.

    Drives the full trial state machine headlessly and writes the same JSONL
    records a device run would produce.
    """
    backend = backend.lower()
    if backend not in BACKENDS:
        console.print(f"[red]Error:[/red] backend must be one of {', '.join(BACKENDS)}")
        raise typer.Exit(1)

    bench_dir = find_bench_dir()
    try:
        config = load_config(config_file, bench_dir=bench_dir)
        apply_overrides(
            config,
            {
                "run_mode": mode,
                "instances": instances,
                "trials": trials,
                "duration_ms": duration_ms,
                "order_mode": order_mode,
                "order_index": order_index,
                "assigned_backend": assigned_backend,
                "pin_identity": pin_identity,
                "session_group": session_group,
            },
        )
    except (BenchError, OSError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    results_dir = output_dir or get_results_dir(bench_dir)
    sink = JsonlFileSink(results_dir)
    clock = MonotonicClock() if realtime else SimulatedClock(epoch_origin_ms=time.time() * 1000)

    try:
        store = SQLiteStore(get_db_path(bench_dir)) if bench_dir is not None else MemoryStore()
        suite = Suite(
            config,
            simulated_backend(backend, identity=query_gpu_name()),
            clock=clock,
            sink=sink,
            loader=SyntheticAssetLoader(),
            scheduler=SteppedFrameScheduler(clock),
            environment=SimulatedImmersiveEnvironment(
                clock,
                view_count=view_count,
                end_after_frames=end_after_frames,
            ),
            store=store,
            on_status=lambda message: console.print(f"[dim]{escape(message)}[/dim]"),
        )
        result = run_suite(suite)
    except (BenchError, OSError, sqlite3.Error) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    for path in dict.fromkeys(sink.written):
        console.print(f"[green]Wrote[/green] {path}")
    summary = f"{len(result.canvas_records)} canvas / {len(result.xr_records)} immersive record(s)"
    if result.aborted:
        console.print(f"[yellow]Suite {result.suite_id} aborted:[/yellow] {summary}")
    else:
        console.print(f"[green]Suite {result.suite_id} complete:[/green] {summary}")
