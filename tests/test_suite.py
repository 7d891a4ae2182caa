# Copyright (c) Syntropy Systems
"""Integration tests for full suite runs on the simulated surfaces."""

from collections.abc import Sequence
from pathlib import Path
from typing import Optional

import pytest

from renderbench.clock import SimulatedClock
from renderbench.config import SuiteConfig
from renderbench.errors import IdentityMismatch, InvalidConfiguration, OrderViolation
from renderbench.handoff import REST_KEY
from renderbench.models.base import JSONObject
from renderbench.simulated import (
    NullRenderer,
    SimulatedImmersiveEnvironment,
    SteppedFrameScheduler,
    SyntheticAssetLoader,
    simulated_backend,
)
from renderbench.sink import JsonlFileSink, MemorySink
from renderbench.store import MemoryStore
from renderbench.suite import Suite, SuiteResult, run_suite
from renderbench.validator import validate_paths


def _suite(
    config: SuiteConfig,
    *,
    backend: str = "webgl2",
    identity: Optional[str] = None,
    renderer: Optional[NullRenderer] = None,
    store: Optional[MemoryStore] = None,
    sink: Optional[object] = None,
    view_count: int = 2,
    entry_delay_ms: float = 0.0,
    request_delay_ms: float = 0.0,
) -> Suite:
    clock = SimulatedClock(epoch_origin_ms=1_700_000_000_000.0)
    return Suite(
        config,
        simulated_backend(backend, identity=identity, renderer=renderer),
        clock=clock,
        sink=sink or MemorySink(),  # type: ignore[arg-type]
        loader=SyntheticAssetLoader(),
        scheduler=SteppedFrameScheduler(clock),
        environment=SimulatedImmersiveEnvironment(
            clock,
            view_count=view_count,
            entry_delay_ms=entry_delay_ms,
            request_delay_ms=request_delay_ms,
        ),
        store=store,
    )


def _config(**overrides: object) -> SuiteConfig:
    values: dict[str, object] = {
        "instances": [4, 8],
        "trials": 1,
        "duration_ms": 100,
        "warmup_ms": 20,
        "cooldown_ms": 10,
        "between_instances_ms": 30,
        "suite_id": "suite_int",
    }
    values.update(overrides)
    return SuiteConfig(**values)  # type: ignore[arg-type]


class TestSuiteRun:
    """Tests for complete suites."""

    def test_both_phases(self) -> None:
        sink = MemorySink()
        result = run_suite(_suite(_config(), sink=sink, store=MemoryStore()))

        assert isinstance(result, SuiteResult)
        assert len(result.canvas_records) == 2
        assert len(result.xr_records) == 2
        assert not result.aborted
        assert result.final_phase == "xr"
        assert result.destinations == [
            "suite_int_webgl2_canvas.jsonl",
            "suite_int_webgl2_xr.jsonl",
        ]
        assert [dest for dest, _ in sink.writes] == result.destinations

    def test_canvas_only(self) -> None:
        result = run_suite(_suite(_config(run_mode="canvas")))

        assert len(result.canvas_records) == 2
        assert result.xr_records == []
        assert result.final_phase == "canvas"

    def test_xr_only_skips_canvas(self) -> None:
        renderer = NullRenderer()
        result = run_suite(_suite(_config(run_mode="xr"), renderer=renderer))

        assert result.canvas_records == []
        assert len(result.xr_records) == 2
        assert all(immersive for _, immersive in renderer.instance_calls)

    def test_aborted_immersive_phase(self) -> None:
        result = run_suite(_suite(_config(), view_count=3))

        assert len(result.canvas_records) == 2
        assert result.aborted
        assert result.xr_records[0]["abort_code"] == "view-count-exceeded"

    def test_custom_destinations(self) -> None:
        sink = MemorySink()
        _ = run_suite(_suite(_config(out="a.jsonl", out_xr="b.jsonl"), sink=sink))

        assert [dest for dest, _ in sink.writes] == ["a.jsonl", "b.jsonl"]

    def test_env_carries_identity_and_order(self) -> None:
        result = run_suite(
            _suite(_config(run_mode="canvas", order_mode="abba", order_index=1))
        )

        env = result.canvas_records[0]["env"]
        assert isinstance(env, dict)
        assert env["api"] == "webgl2"
        assert env["gpu_identity"] == "simulated|null"
        assert env["order_control"]["orderMode"] == "fixed-ABBA"  # type: ignore[index]
        assert env["contextAttributes"] is not None


class TestSuiteProtocol:
    """Tests for checks that must fail before measuring."""

    def test_order_violation_measures_nothing(self) -> None:
        renderer = NullRenderer()
        sink = MemorySink()
        suite = _suite(
            _config(order_mode="fixed-ABBA", order_index=2),
            backend="webgl2",
            renderer=renderer,
            sink=sink,
        )

        with pytest.raises(OrderViolation):
            _ = run_suite(suite)

        assert renderer.instance_calls == []
        assert sink.writes == []

    def test_order_accepts_expected_backend(self) -> None:
        result = run_suite(
            _suite(_config(run_mode="canvas", order_mode="fixed-ABBA", order_index=2), backend="webgpu")
        )

        assert result.canvas_records[0]["api"] == "webgpu"

    def test_pin_requires_store(self) -> None:
        with pytest.raises(InvalidConfiguration):
            _ = run_suite(_suite(_config(pin_identity=True)))

    def test_pin_mismatch_across_suites(self) -> None:
        store = MemoryStore()
        config = _config(run_mode="canvas", pin_identity=True, session_group="lab")
        _ = run_suite(_suite(config, identity="gpu-a", store=store))

        renderer = NullRenderer()
        with pytest.raises(IdentityMismatch):
            _ = run_suite(
                _suite(
                    _config(run_mode="canvas", pin_identity=True, session_group="lab"),
                    backend="webgpu",
                    identity="gpu-b",
                    renderer=renderer,
                    store=store,
                )
            )
        assert renderer.instance_calls == []

    def test_pin_shared_across_backends(self) -> None:
        store = MemoryStore()
        _ = run_suite(
            _suite(_config(run_mode="canvas", pin_identity=True), backend="webgl2", store=store)
        )
        result = run_suite(
            _suite(_config(run_mode="canvas", pin_identity=True), backend="webgpu", store=store)
        )

        assert len(result.canvas_records) == 2

    def test_invalid_config(self) -> None:
        with pytest.raises(InvalidConfiguration):
            _ = run_suite(_suite(_config(trials=0)))


class TestRestHandoffAcrossSuites:
    """Tests for the rest interval between consecutive suites."""

    def test_second_suite_logs_first(self) -> None:
        store = MemoryStore()
        _ = run_suite(_suite(_config(suite_id="first", run_mode="canvas"), store=store))
        assert store.get(REST_KEY) is not None

        result = run_suite(
            _suite(_config(suite_id="second", run_mode="canvas"), backend="webgpu", store=store)
        )

        env = result.canvas_records[0]["env"]
        assert isinstance(env, dict)
        rest = env["rest"]
        assert isinstance(rest, dict)
        assert rest["previousSuiteId"] == "first"
        assert rest["previousApi"] == "webgl2"
        assert rest["previousFinalPhase"] == "canvas"
        assert rest["previousOutFile"] == "first_webgl2_canvas.jsonl"
        assert rest["restElapsedMs"] is not None


class TestEmittedRecordsValidate:
    """Records written by a suite pass the validator."""

    def test_files_validate_clean(self, temp_dir: Path) -> None:
        sink = JsonlFileSink(temp_dir)
        _ = run_suite(_suite(_config(), sink=sink, store=MemoryStore()))
        _ = run_suite(
            _suite(_config(suite_id="suite_abort"), backend="webgpu", sink=sink, view_count=3)
        )

        report = validate_paths(sink.written)

        assert len(sink.written) == 4
        assert [str(issue) for issue in report.issues] == []
        assert report.ok
        assert report.total_records == 7


class _FailingSink(MemorySink):
    """Sink whose writes to one destination suffix fail."""

    def __init__(self, suffix: str) -> None:
        super().__init__()
        self.suffix = suffix

    def write(self, destination: str, records: Sequence[JSONObject]) -> None:
        if destination.endswith(self.suffix):
            msg = f"No space left writing {destination}"
            raise OSError(msg)
        super().write(destination, records)


class TestEntryTimeoutInSuite:
    """The entry timeout runs on the suite clock in combined runs."""

    def test_late_entry_emits_entry_timeout(self) -> None:
        config = _config(entry_timeout_ms=1000, entry_grace_ms=0)
        result = run_suite(_suite(config, store=MemoryStore(), entry_delay_ms=60_000))

        assert len(result.canvas_records) == 2
        assert len(result.xr_records) == 1
        abort = result.xr_records[0]
        assert abort["abort_code"] == "entry-timeout"
        assert abort["condition_count"] == 2
        assert result.aborted
        assert result.final_phase == "xr"

    def test_entry_before_deadline(self) -> None:
        config = _config(entry_timeout_ms=1000, entry_grace_ms=0)
        result = run_suite(_suite(config, entry_delay_ms=500))

        assert len(result.xr_records) == 2
        assert not result.aborted

    def test_request_in_flight_gets_grace(self) -> None:
        config = _config(entry_timeout_ms=1000, entry_grace_ms=5000)
        result = run_suite(_suite(config, request_delay_ms=3000))

        assert len(result.xr_records) == 2
        assert not result.aborted

    def test_grace_shorter_than_request(self) -> None:
        config = _config(entry_timeout_ms=1000, entry_grace_ms=500)
        result = run_suite(_suite(config, request_delay_ms=3000))

        assert [r["abort_code"] for r in result.xr_records] == ["entry-timeout"]

    def test_timeout_ignored_outside_combined_runs(self) -> None:
        config = _config(run_mode="xr", entry_timeout_ms=1000)
        result = run_suite(_suite(config, entry_delay_ms=60_000))

        assert len(result.xr_records) == 2
        assert not result.aborted


class TestSinkFailures:
    """A failed write surfaces from the suite instead of stalling it."""

    def test_windowed_write_failure_raises(self) -> None:
        with pytest.raises(OSError, match="No space left"):
            _ = run_suite(_suite(_config(run_mode="canvas"), sink=_FailingSink("_canvas.jsonl")))

    def test_immersive_write_failure_raises(self) -> None:
        with pytest.raises(OSError, match="No space left"):
            _ = run_suite(_suite(_config(run_mode="xr"), sink=_FailingSink("_xr.jsonl")))

    def test_immersive_abort_write_failure_raises(self) -> None:
        sink = _FailingSink("_xr.jsonl")
        with pytest.raises(OSError, match="No space left"):
            _ = run_suite(_suite(_config(run_mode="xr"), sink=sink, view_count=3))
