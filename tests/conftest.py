# Copyright (c) Syntropy Systems
"""Pytest fixtures for renderbench tests."""

import os
import tempfile
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from renderbench.clock import SimulatedClock
from renderbench.config import SuiteConfig
from renderbench.context import SuiteContext
from renderbench.fingerprint import collect_env
from renderbench.simulated import NullRenderer, SyntheticAssetLoader, simulated_backend
from renderbench.sink import MemorySink

# Store original cwd at module load time
_original_cwd = Path.cwd()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def bench_project(temp_dir: Path) -> Generator[Path, None, None]:
    """Create a temporary renderbench project directory."""
    from renderbench.store import init_db

    bench_dir = temp_dir / ".renderbench"
    bench_dir.mkdir()
    results_dir = bench_dir / "results"
    results_dir.mkdir()

    # Initialize key-value store
    init_db(bench_dir / "renderbench.db")

    # Change to temp directory
    os.chdir(temp_dir)

    yield temp_dir

    # Always return to original cwd
    os.chdir(_original_cwd)


@pytest.fixture
def fast_config() -> SuiteConfig:
    """A small, quick suite configuration."""
    return SuiteConfig(
        instances=[4, 8],
        trials=2,
        duration_ms=100,
        warmup_ms=20,
        cooldown_ms=10,
        between_instances_ms=30,
        suite_id="suite_test",
    )


@pytest.fixture
def make_context() -> Callable[..., SuiteContext]:
    """Factory for a suite context on a simulated clock with an in-memory sink."""

    def factory(
        config: SuiteConfig,
        backend_name: str = "webgl2",
        renderer: NullRenderer | None = None,
    ) -> SuiteContext:
        config.validate()
        backend = simulated_backend(backend_name, renderer=renderer)
        return SuiteContext(
            config=config,
            backend=backend,
            clock=SimulatedClock(epoch_origin_ms=1_700_000_000_000.0),
            sink=MemorySink(),
            asset=SyntheticAssetLoader().load(config.model_url),
            env=collect_env(config, backend),
        )

    return factory
