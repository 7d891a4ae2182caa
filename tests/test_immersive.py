# Copyright (c) Syntropy Systems
"""Tests for the immersive surface driver."""

import asyncio
from collections.abc import Callable

import pytest

from renderbench.config import SuiteConfig
from renderbench.context import SuiteContext
from renderbench.drivers import ImmersiveDriver, ImmersiveState
from renderbench.plan import build_plan
from renderbench.simulated import EYE_HEIGHT, EYE_WIDTH, NullRenderer, SimulatedImmersiveEnvironment
from renderbench.sink import MemorySink
from renderbench.supervisor import EntryTimeoutSupervisor


@pytest.fixture
def xr_config() -> SuiteConfig:
    return SuiteConfig(
        instances=[4, 8],
        trials=1,
        duration_ms=100,
        warmup_ms=20,
        between_instances_ms=30,
        run_mode="xr",
        suite_id="suite_xr",
    )


FRAME_MS = 1000 / 90


def _run(driver: ImmersiveDriver) -> list[dict[str, object]]:
    cfg = driver.ctx.config
    return asyncio.run(driver.run(build_plan(cfg.instances, cfg.trials, cfg.shuffle, cfg.seed)))


def _aborts(records: list[dict[str, object]]) -> list[dict[str, object]]:
    return [r for r in records if r.get("aborted") is True]


class TestImmersiveCompletion:
    """Tests for sessions that run the whole plan."""

    def test_completes_without_abort(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        renderer = NullRenderer()
        ctx = make_context(xr_config, renderer=renderer)
        environment = SimulatedImmersiveEnvironment(ctx.clock)
        driver = ImmersiveDriver(ctx, environment)

        records = _run(driver)

        assert len(records) == 2
        assert _aborts(records) == []
        assert driver.state is ImmersiveState.ENDED
        assert environment.sessions[0].ended
        assert renderer.instance_calls == [(4, True), (8, True)]

    def test_record_shape(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        driver = ImmersiveDriver(ctx, SimulatedImmersiveEnvironment(ctx.clock))

        record = _run(driver)[0]

        assert record["mode"] == "xr"
        assert record["timing_primary_source"] == "frame_timestamp"
        assert record["timing_secondary_source"] == "wall_clock"
        viewports = record["xr_viewports"]
        assert isinstance(viewports, list)
        assert viewports[0] == {"x": 0.0, "y": 0.0, "w": float(EYE_WIDTH), "h": float(EYE_HEIGHT)}
        pixels = record["xr_effective_pixels"]
        assert isinstance(pixels, dict)
        assert pixels["requested_scale_factor"] == 1.0
        assert pixels["applied_scale_factor"] == 1.0
        assert pixels["first_frame_total_px"] == 2 * EYE_WIDTH * EYE_HEIGHT
        assert pixels["first_frame_per_view_px"] == [EYE_WIDTH * EYE_HEIGHT] * 2
        cadence = record["xr_cadence_secondary"]
        assert isinstance(cadence, dict)
        assert cadence["frames"] > 0

    def test_flushes_once(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        driver = ImmersiveDriver(ctx, SimulatedImmersiveEnvironment(ctx.clock))

        _ = _run(driver)

        sink = ctx.sink
        assert isinstance(sink, MemorySink)
        assert [dest for dest, _ in sink.writes] == ["suite_xr_webgl2_xr.jsonl"]

    def test_session_telemetry(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        xr_config.xr_scale_factor = 0.5
        ctx = make_context(xr_config)
        driver = ImmersiveDriver(ctx, SimulatedImmersiveEnvironment(ctx.clock))

        _ = _run(driver)

        assert ctx.env["xr_scale_factor_requested"] == 0.5
        assert ctx.env["xr_scale_factor_applied"] == 0.5
        assert "xr_enter_to_first_frame_ms" in ctx.env
        assert ctx.env["xr_dom_overlay_requested"] is True

    def test_unsupported_environment(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        environment = SimulatedImmersiveEnvironment(ctx.clock, supported=False)
        driver = ImmersiveDriver(ctx, environment)

        records = _run(driver)

        assert records == []
        assert environment.requests == 0
        assert "xr_skipped_reason" in ctx.env


class TestComparabilityGuard:
    """Tests for the view-count guard."""

    def test_extra_view_aborts_session(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        environment = SimulatedImmersiveEnvironment(ctx.clock, view_count=3)
        driver = ImmersiveDriver(ctx, environment)

        records = _run(driver)

        assert len(records) == 1
        abort = records[0]
        assert abort["aborted"] is True
        assert abort["abort_code"] == "view-count-exceeded"
        assert abort["observed_view_count"] == 3
        assert abort["expected_max_views"] == 2
        assert ctx.env["xr_observed_view_count"] == 3
        assert environment.sessions[0].ended
        assert driver.state is ImmersiveState.ENDED

        sink = ctx.sink
        assert isinstance(sink, MemorySink)
        assert len(sink.writes) == 1

    def test_higher_limit_allows_views(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        xr_config.max_views = 4
        ctx = make_context(xr_config)
        driver = ImmersiveDriver(ctx, SimulatedImmersiveEnvironment(ctx.clock, view_count=3))

        records = _run(driver)

        assert len(records) == 2
        assert _aborts(records) == []

    def test_guard_during_pre_idle_blank(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        xr_config.pre_idle_ms = 50
        renderer = NullRenderer()
        ctx = make_context(xr_config, renderer=renderer)
        # Frame 4 (44ms) lands inside the 20-70ms pre-idle blank.
        environment = SimulatedImmersiveEnvironment(ctx.clock, view_overrides={4: 3})
        driver = ImmersiveDriver(ctx, environment)

        records = _run(driver)

        assert len(records) == 1
        abort = records[0]
        assert abort["abort_code"] == "view-count-exceeded"
        assert abort["observed_view_count"] == 3
        assert abort["instances"] == 4
        assert abort["condition_index"] == 1
        assert abort["partial_trial"] == {
            "elapsed_ms": None,
            "frames_collected_primary": 0,
            "frames_collected_secondary": 0,
        }
        assert renderer.draw_calls == 0
        assert renderer.clear_calls == 1
        assert environment.sessions[0].ended
        assert driver.state is ImmersiveState.ENDED

        sink = ctx.sink
        assert isinstance(sink, MemorySink)
        assert len(sink.writes) == 1

    def test_guard_during_inter_trial_pause(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        # Trial 1 closes on frame 11 (122ms); frame 13 (144ms) is in the 30ms pause.
        environment = SimulatedImmersiveEnvironment(ctx.clock, view_overrides={13: 3})
        driver = ImmersiveDriver(ctx, environment)

        records = _run(driver)

        assert len(records) == 2
        assert "aborted" not in records[0]
        abort = records[1]
        assert abort["abort_code"] == "view-count-exceeded"
        assert abort["observed_view_count"] == 3
        assert abort["instances"] == 8
        assert abort["condition_index"] == 2
        assert abort["partial_trial"] == {
            "elapsed_ms": None,
            "frames_collected_primary": 0,
            "frames_collected_secondary": 0,
        }
        assert len(_aborts(records)) == 1

        sink = ctx.sink
        assert isinstance(sink, MemorySink)
        assert len(sink.writes) == 1


class TestEarlyEnd:
    """Tests for sessions the environment ends."""

    def test_external_end_yields_one_abort(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        environment = SimulatedImmersiveEnvironment(ctx.clock, end_after_frames=5)
        driver = ImmersiveDriver(ctx, environment)

        records = _run(driver)

        aborts = _aborts(records)
        assert len(aborts) == 1
        assert aborts[0]["abort_code"] == "session-ended-early"
        assert aborts[0]["condition_index"] == 1
        assert aborts[0]["instances"] == 4
        assert aborts[0]["observed_view_count"] == 0
        # Frames 2-5 fall in the first window (opened at 20ms): 3 intervals.
        assert aborts[0]["partial_trial"] == {
            "elapsed_ms": pytest.approx(5 * FRAME_MS - 20),
            "frames_collected_primary": 3,
            "frames_collected_secondary": 3,
        }
        assert driver.state is ImmersiveState.ENDED

        sink = ctx.sink
        assert isinstance(sink, MemorySink)
        assert len(sink.writes) == 1

    def test_external_end_between_trials(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        # Frame 13 (144ms) is inside the pause after trial 1 closes at 122ms.
        environment = SimulatedImmersiveEnvironment(ctx.clock, end_after_frames=13)
        driver = ImmersiveDriver(ctx, environment)

        records = _run(driver)

        assert len(records) == 2
        assert records[0]["instances"] == 4
        aborts = _aborts(records)
        assert len(aborts) == 1
        assert aborts[0]["abort_code"] == "session-ended-early"
        assert aborts[0]["instances"] == 8
        assert aborts[0]["condition_index"] == 2
        assert aborts[0]["partial_trial"] == {
            "elapsed_ms": None,
            "frames_collected_primary": 0,
            "frames_collected_secondary": 0,
        }
        assert driver.state is ImmersiveState.ENDED

        sink = ctx.sink
        assert isinstance(sink, MemorySink)
        assert len(sink.writes) == 1

    def test_end_after_plan_complete_has_no_abort(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        environment = SimulatedImmersiveEnvironment(ctx.clock)
        driver = ImmersiveDriver(ctx, environment)

        records = _run(driver)
        environment.sessions[0].end()

        assert _aborts(records) == []
        sink = ctx.sink
        assert isinstance(sink, MemorySink)
        assert len(sink.writes) == 1

    def test_renderer_failure_ends_session_with_abort(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config, renderer=NullRenderer(fail_on_draw=1))
        environment = SimulatedImmersiveEnvironment(ctx.clock)
        driver = ImmersiveDriver(ctx, environment)

        records = _run(driver)

        assert len(records) == 1
        assert records[0]["abort_code"] == "session-ended-early"
        assert environment.sessions[0].ended


class TestSessionStart:
    """Tests for session acquisition failures."""

    def test_retries_before_progress(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        environment = SimulatedImmersiveEnvironment(ctx.clock, fail_requests=1)
        driver = ImmersiveDriver(ctx, environment)

        records = _run(driver)

        assert environment.requests == 2
        assert len(records) == 2
        assert _aborts(records) == []

    def test_gives_up_after_max_attempts(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        environment = SimulatedImmersiveEnvironment(ctx.clock, fail_requests=10)
        driver = ImmersiveDriver(ctx, environment, max_start_attempts=3)

        records = _run(driver)

        assert environment.requests == 3
        assert records == []
        assert driver.state is ImmersiveState.ENDED
        sink = ctx.sink
        assert isinstance(sink, MemorySink)
        assert sink.writes == []

    def test_failure_after_progress_aborts(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        ctx.records_emitted = 4
        environment = SimulatedImmersiveEnvironment(ctx.clock, fail_requests=1)
        driver = ImmersiveDriver(ctx, environment)

        records = _run(driver)

        assert environment.requests == 1
        assert len(records) == 1
        assert records[0]["abort_code"] == "session-start-failed"
        assert "xr_abort_reason" in ctx.env


class TestEntryTimeout:
    """Tests for the entry-timeout supervisor wiring."""

    def test_never_entered(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        xr_config.entry_timeout_ms = 20
        ctx = make_context(xr_config)
        environment = SimulatedImmersiveEnvironment(ctx.clock, never_enter=True)
        driver = ImmersiveDriver(ctx, environment)
        driver.supervisor = EntryTimeoutSupervisor(ctx.clock, 20, 0, driver.on_entry_timeout)

        records = _run(driver)

        assert driver.timed_out
        assert len(records) == 1
        abort = records[0]
        assert abort["abort_code"] == "entry-timeout"
        assert abort["instances"] is None
        assert abort["condition_index"] is None
        assert abort["condition_count"] == 2
        assert environment.requests == 0
        assert "xr_skipped_reason" in ctx.env

    def test_entered_in_time(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        driver = ImmersiveDriver(ctx, SimulatedImmersiveEnvironment(ctx.clock))
        supervisor = EntryTimeoutSupervisor(ctx.clock, 5000, 0, driver.on_entry_timeout)
        driver.supervisor = supervisor

        records = _run(driver)

        assert len(records) == 2
        assert not supervisor.fired
        assert not supervisor.armed

    def test_request_in_flight_extends_deadline(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        environment = SimulatedImmersiveEnvironment(ctx.clock, request_delay_ms=50)
        driver = ImmersiveDriver(ctx, environment)
        supervisor = EntryTimeoutSupervisor(ctx.clock, 20, 100, driver.on_entry_timeout)
        driver.supervisor = supervisor

        records = _run(driver)

        assert supervisor.extended
        assert not supervisor.fired
        assert not driver.timed_out
        assert len(records) == 2
        assert _aborts(records) == []

    def test_grace_expires_during_request(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        environment = SimulatedImmersiveEnvironment(ctx.clock, request_delay_ms=50)
        driver = ImmersiveDriver(ctx, environment)
        supervisor = EntryTimeoutSupervisor(ctx.clock, 20, 10, driver.on_entry_timeout)
        driver.supervisor = supervisor

        records = _run(driver)

        assert supervisor.extended
        assert supervisor.fired
        assert driver.timed_out
        assert environment.requests == 1
        assert environment.sessions == []
        assert [r["abort_code"] for r in records] == ["entry-timeout"]


class TestPoselessFrames:
    """Frames delivered without a viewer pose."""

    def test_interval_counted_without_drawing(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        environment = SimulatedImmersiveEnvironment(ctx.clock, view_overrides={5: None})
        driver = ImmersiveDriver(ctx, environment)

        records = _run(driver)

        # Trial 1 sees frames 2-11; frame 5 has no pose.
        first = records[0]
        summary = first["summary"]
        assert isinstance(summary, dict)
        assert summary["frames"] == 9
        viewports = first["xr_viewports"]
        assert isinstance(viewports, list)
        assert len(viewports) == 2 * 9
        assert _aborts(records) == []

    def test_window_cannot_close_without_pose(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        ctx = make_context(xr_config)
        # Frame 11 would close trial 1; without a pose frame 12 closes it instead.
        environment = SimulatedImmersiveEnvironment(ctx.clock, view_overrides={11: None})
        driver = ImmersiveDriver(ctx, environment)

        records = _run(driver)

        first = records[0]
        summary = first["summary"]
        assert isinstance(summary, dict)
        assert summary["frames"] == 10
        assert summary["duration_ms"] == pytest.approx(12 * FRAME_MS - 20)
        viewports = first["xr_viewports"]
        assert isinstance(viewports, list)
        assert len(viewports) == 2 * 10
        assert len(records) == 2


class TestPreIdle:
    """Pre-idle blanks before each immersive trial."""

    def test_blank_before_each_trial(
        self, xr_config: SuiteConfig, make_context: Callable[..., SuiteContext]
    ) -> None:
        xr_config.pre_idle_ms = 50
        renderer = NullRenderer()
        ctx = make_context(xr_config, renderer=renderer)
        driver = ImmersiveDriver(ctx, SimulatedImmersiveEnvironment(ctx.clock))

        records = _run(driver)

        assert len(records) == 2
        assert _aborts(records) == []
        assert all(r["preIdleMs"] == 50 for r in records)
        # One blank in each pre-idle wait plus one in the pause between trials.
        assert renderer.clear_calls == 3
