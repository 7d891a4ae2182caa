# Copyright (c) Syntropy Systems
"""Immersive surface driver.

The environment, not the harness, delivers frames and may end the session at
any time. Frame callbacks are plain functions that re-register themselves
first; the plan itself advances in a separate task that awaits one future per
trial and sleeps through the pauses between trials.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from renderbench.abort import AbortController, TrialProgress
from renderbench.errors import SessionAcquisitionFailure
from renderbench.fingerprint import reset_session_telemetry
from renderbench.models.records import (
    AbortCode,
    EffectivePixels,
    TrialRecord,
    Viewport,
)
from renderbench.plan import PlanCursor
from renderbench.stats import FrameStats, derive_extras, summarize_series

if TYPE_CHECKING:
    from renderbench.context import SuiteContext
    from renderbench.models.base import JSONObject
    from renderbench.perf import TrialPerfRecorder
    from renderbench.plan import Condition
    from renderbench.supervisor import EntryTimeoutSupervisor
    from renderbench.surfaces import ImmersiveEnvironment, ImmersiveSession, XRFrame, XRView

logger = logging.getLogger(__name__)

PRIMARY_TIMING_SOURCE = "frame_timestamp"
SECONDARY_TIMING_SOURCE = "wall_clock"


class ImmersiveState(str, Enum):
    AWAITING_SESSION = "awaiting-session"
    SESSION_STARTING = "session-starting"
    PRE_IDLE_BLANK = "pre-idle-blank"
    MEASURING = "measuring"
    INTER_TRIAL_PAUSE = "inter-trial-pause"
    ABORTING = "aborting"
    FLUSHING = "flushing"
    ENDED = "ended"


_TERMINAL_STATES = frozenset(
    {ImmersiveState.ABORTING, ImmersiveState.FLUSHING, ImmersiveState.ENDED}
)


class _TrialWindow:
    """Mutable state of the trial currently being measured."""

    def __init__(self, condition: Condition, base: dict[str, Any]) -> None:
        self.condition = condition
        self.base = base
        self.stats = FrameStats()
        self.secondary: list[float] = []
        self.viewports: list[Viewport] = []
        self.last_t: float | None = None
        self.last_now: float | None = None
        self.first_frame_px: float | None = None
        self.first_frame_view_px: list[float] = []
        self.perf: TrialPerfRecorder | None = None


class ImmersiveDriver:
    """Runs a plan inside one immersive session.

    Any session that ends with the plan incomplete yields exactly one abort
    record; the record log is flushed at most once per session.
    """

    ctx: SuiteContext
    environment: ImmersiveEnvironment
    controller: AbortController
    supervisor: EntryTimeoutSupervisor | None
    state: ImmersiveState
    cursor: PlanCursor | None
    session: ImmersiveSession | None
    timed_out: bool

    def __init__(
        self,
        ctx: SuiteContext,
        environment: ImmersiveEnvironment,
        controller: AbortController | None = None,
        supervisor: EntryTimeoutSupervisor | None = None,
        max_start_attempts: int = 3,
    ) -> None:
        self.ctx = ctx
        self.environment = environment
        self.controller = controller or AbortController(ctx, ctx.xr_destination, mode="xr")
        self.controller.progress = self.progress
        self.supervisor = supervisor
        self.max_start_attempts = max_start_attempts
        self.state = ImmersiveState.AWAITING_SESSION
        self.cursor = None
        self.session = None
        self.timed_out = False

        self._window: _TrialWindow | None = None
        self._trial_done: asyncio.Future[None] | None = None
        self._blank_pending = False
        self._entry_requested_at: float | None = None
        self._acquire_task: asyncio.Future[ImmersiveSession | None] | None = None
        self._plan_task: asyncio.Future[None] | None = None
        self._ended: asyncio.Future[None] | None = None

    # -- progress -----------------------------------------------------------

    def progress(self) -> TrialProgress:
        """Snapshot of the in-flight trial for abort records."""
        cursor = self.cursor
        count = len(cursor) if cursor is not None else None
        if cursor is None or self.session is None:
            return TrialProgress(condition_count=count)

        snapshot = TrialProgress(
            condition=cursor.current,
            condition_index=cursor.position,
            condition_count=count,
        )
        window = self._window
        if window is not None:
            snapshot.elapsed_ms = window.stats.elapsed_ms(self.ctx.clock.now_ms())
            snapshot.frames_primary = len(window.stats)
            snapshot.frames_secondary = len(window.secondary)
            snapshot.viewports = list(window.viewports)
            snapshot.cadence_secondary = summarize_series(window.secondary)
            snapshot.effective_pixels = self._effective_pixels(window)
        return snapshot

    def _effective_pixels(self, window: _TrialWindow | None) -> EffectivePixels:
        applied = self.ctx.env.get("xr_scale_factor_applied")
        return EffectivePixels(
            requested_scale_factor=self.ctx.config.xr_scale_factor,
            applied_scale_factor=applied if isinstance(applied, (int, float)) else None,
            first_frame_total_px=window.first_frame_px if window else None,
            first_frame_per_view_px=list(window.first_frame_view_px) if window else [],
        )

    # -- acquisition --------------------------------------------------------

    async def run(self, plan: list[Condition]) -> list[JSONObject]:
        """Acquire a session and measure the plan in it. Returns the wire records."""
        if not self.environment.is_supported():
            self.ctx.env["xr_skipped_reason"] = "immersive sessions not supported"
            self.ctx.status("Immersive sessions not supported here (windowed only)")
            self.state = ImmersiveState.ENDED
            return []

        self.cursor = PlanCursor(plan)
        if self.supervisor is not None:
            self.supervisor.arm()

        self._acquire_task = asyncio.ensure_future(self._acquire())
        try:
            session = await self._acquire_task
        except asyncio.CancelledError:
            if not self.timed_out:
                raise
            return self.controller.records
        finally:
            if self.supervisor is not None:
                self.supervisor.cancel()

        if session is not None:
            await self._run_session(session)
        return self.controller.records

    async def _acquire(self) -> ImmersiveSession | None:
        attempts = 0
        while True:
            self.state = ImmersiveState.AWAITING_SESSION
            self.ctx.status("Ready (immersive). Waiting for session entry")
            await self.environment.wait_for_entry()

            self.state = ImmersiveState.SESSION_STARTING
            self._entry_requested_at = self.ctx.clock.now_ms()
            if self.supervisor is not None:
                self.supervisor.begin_request()
            try:
                return await self.environment.request_session(
                    scale_factor=self.ctx.config.xr_scale_factor
                )
            except SessionAcquisitionFailure as e:
                attempts += 1
                if not self._retry_after_start_failure(e, attempts):
                    return None
            finally:
                if self.supervisor is not None:
                    self.supervisor.end_request()

    def _retry_after_start_failure(self, error: SessionAcquisitionFailure, attempts: int) -> bool:
        reason = f"Immersive session failed to start: {error}"
        if self.ctx.records_emitted > 0:
            self.ctx.env["xr_abort_reason"] = reason
            self.controller.abort(AbortCode.SESSION_START_FAILED, reason)
            self.controller.flush()
            self.state = ImmersiveState.ENDED
            return False

        self.ctx.status(reason)
        if attempts >= self.max_start_attempts:
            self.ctx.status(f"Giving up after {attempts} failed session request(s)")
            self.state = ImmersiveState.ENDED
            return False
        if self.supervisor is not None:
            self.supervisor.arm()
        return True

    def on_entry_timeout(self) -> None:
        """Supervisor callback: the immersive phase was never entered."""
        if self.session is not None or self.state in _TERMINAL_STATES:
            return
        self.timed_out = True
        cfg = self.ctx.config
        reason = f"Immersive session not entered within {cfg.entry_timeout_ms}ms"
        self.ctx.env["xr_skipped_reason"] = reason
        self.controller.abort(AbortCode.ENTRY_TIMEOUT, reason)
        self.controller.flush()
        self.state = ImmersiveState.ENDED
        if self._acquire_task is not None and not self._acquire_task.done():
            self._acquire_task.cancel()

    # -- session ------------------------------------------------------------

    async def _run_session(self, session: ImmersiveSession) -> None:
        loop = asyncio.get_running_loop()
        self.session = session
        self._ended = loop.create_future()
        self.controller.begin_session()

        env = self.ctx.env
        reset_session_telemetry(env, self.ctx.config.max_views)
        env["xr_scale_factor_requested"] = self.ctx.config.xr_scale_factor
        env["xr_scale_factor_applied"] = session.scale_factor

        session.add_end_listener(self._on_session_end)
        self.ctx.status("Immersive session started")
        session.request_frame(self._on_frame)

        self._plan_task = asyncio.ensure_future(self._run_plan(session))
        try:
            await self._ended
        finally:
            if not self._plan_task.done():
                self._plan_task.cancel()
            await asyncio.gather(self._plan_task, return_exceptions=True)

    async def _run_plan(self, session: ImmersiveSession) -> None:
        cfg = self.ctx.config
        clock = self.ctx.clock
        renderer = self.ctx.backend.renderer
        cursor = self.cursor
        if cursor is None:
            return

        try:
            await clock.sleep(cfg.warmup_ms)
            while self.state not in _TERMINAL_STATES:
                condition = cursor.current
                if condition is None:
                    self.state = ImmersiveState.FLUSHING
                    self.controller.flush()
                    self.ctx.status(f"Done (immersive). {len(self.controller.records)} trial(s)")
                    session.end()
                    return

                renderer.set_instances(
                    condition.instances, cfg.spacing, cfg.layout, cfg.seed, immersive=True
                )
                self.state = ImmersiveState.PRE_IDLE_BLANK
                self._blank_pending = True
                if cfg.pre_idle_ms > 0:
                    await clock.sleep(cfg.pre_idle_ms)
                if self.state in _TERMINAL_STATES:
                    return

                trial_done = self._begin_measuring(condition)
                await trial_done

                if cursor.exhausted:
                    continue
                pause = cfg.between_instances_ms if cursor.changes_block() else cfg.warmup_ms
                await clock.sleep(pause + cfg.post_idle_ms)
        except Exception:
            logger.exception("Immersive plan failed")
            self._end_session()

    def _begin_measuring(self, condition: Condition) -> asyncio.Future[None]:
        cfg = self.ctx.config
        cursor = self.cursor
        index = cursor.position if cursor is not None else None
        count = len(cursor) if cursor is not None else None

        window = _TrialWindow(
            condition, self.ctx.record_base("xr", condition, index, count)
        )
        window.perf = self.ctx.perf_recorder(
            f"trial_{self.ctx.backend.name}_xr_inst{condition.instances}"
            f"_t{condition.trial}_idx{index}"
        )
        window.stats.mark_start(self.ctx.clock.now_ms())
        self._window = window
        self._trial_done = asyncio.get_running_loop().create_future()
        self.state = ImmersiveState.MEASURING
        self._blank_pending = False
        self.ctx.status(
            f"Immersive run {index}/{count}: instances={condition.instances}, "
            f"trial={condition.trial}/{cfg.trials} (preIdle {cfg.pre_idle_ms}ms)"
        )
        return self._trial_done

    # -- frame loop ---------------------------------------------------------

    def _on_frame(self, t_ms: float, frame: XRFrame) -> None:
        session = frame.session
        if session is not self.session or session.ended:
            return
        session.request_frame(self._on_frame)
        try:
            self._handle_frame(t_ms, frame)
        except Exception:
            logger.exception("Renderer failed during immersive frame")
            self._end_session()

    def _handle_frame(self, t_ms: float, frame: XRFrame) -> None:
        if self.state in _TERMINAL_STATES:
            return
        views = frame.views
        if views is not None and len(views) > self.ctx.config.max_views:
            self._abort_for_comparability(len(views))
            return

        renderer = self.ctx.backend.renderer
        window = self._window
        if self.state is not ImmersiveState.MEASURING or window is None:
            if self._blank_pending:
                renderer.clear()
                self._blank_pending = False
                self._note_first_frame()
            return

        clock = self.ctx.clock
        now = clock.now_ms()
        if window.last_t is not None and window.last_now is not None:
            window.stats.add_sample(t_ms - window.last_t)
            window.secondary.append(now - window.last_now)
        window.last_t = t_ms
        window.last_now = now

        # Without a viewer pose the interval still counts but nothing is drawn
        # and the window cannot close on this frame.
        if views is None:
            return
        self._draw_views(window, views)
        self._note_first_frame()

        start = window.stats.start_ms if window.stats.start_ms is not None else now
        if now - start > self.ctx.config.duration_ms:
            self._close_trial(window, now)

    def _draw_views(self, window: _TrialWindow, views: list[XRView]) -> None:
        renderer = self.ctx.backend.renderer
        clock = self.ctx.clock
        work_start = clock.now_ms()
        total_px = 0.0
        view_px: list[float] = []
        for i, view in enumerate(views):
            vp = view.viewport
            window.viewports.append(Viewport(x=vp.x, y=vp.y, w=vp.width, h=vp.height))
            px = vp.width * vp.height
            total_px += px
            view_px.append(px)
            renderer.set_camera(view.projection, view.view, i)
            renderer.draw_frame(i)
        if window.first_frame_px is None:
            window.first_frame_px = total_px
            window.first_frame_view_px = view_px
        if window.perf is not None:
            window.perf.record_task(work_start, clock.now_ms() - work_start)

    def _note_first_frame(self) -> None:
        env = self.ctx.env
        if self._entry_requested_at is None or "xr_enter_to_first_frame_ms" in env:
            return
        env["xr_enter_to_first_frame_ms"] = self.ctx.clock.now_ms() - self._entry_requested_at
        env["xr_dom_overlay_requested"] = self.ctx.config.hud_enabled

    def _close_trial(self, window: _TrialWindow, now: float) -> None:
        cfg = self.ctx.config
        window.stats.end_ms = now
        summary = window.stats.finalize()
        extras = derive_extras(summary, window.stats.samples)
        perf = None
        if window.perf is not None:
            perf = window.perf.finish(window.stats.start_ms or 0.0, now)

        record = TrialRecord(
            **window.base,
            summary=summary,
            extras=extras,
            perf=perf,
            timing_primary_source=PRIMARY_TIMING_SOURCE,
            timing_secondary_source=SECONDARY_TIMING_SOURCE,
            xr_cadence_secondary=summarize_series(window.secondary),
            xr_effective_pixels=self._effective_pixels(window),
            xr_viewports=list(window.viewports),
            frames_ms=list(window.stats.samples) if cfg.store_frames else None,
            frames_ms_now=list(window.secondary) if cfg.store_frames else None,
        )
        self.controller.append(record)
        if self.cursor is not None:
            self.cursor.advance()

        self._window = None
        self.state = ImmersiveState.INTER_TRIAL_PAUSE
        self._blank_pending = True
        if self._trial_done is not None and not self._trial_done.done():
            self._trial_done.set_result(None)

    # -- termination --------------------------------------------------------

    def _abort_for_comparability(self, observed_views: int) -> None:
        max_views = self.ctx.config.max_views
        reason = (
            f"Immersive session aborted: observed {observed_views} views; "
            f"max allowed is {max_views} for cross-API comparability."
        )
        env = self.ctx.env
        env["xr_abort_reason"] = reason
        env["xr_observed_view_count"] = observed_views
        env["xr_expected_max_views"] = max_views

        self.controller.abort(AbortCode.VIEW_COUNT_EXCEEDED, reason, observed_views)
        self.state = ImmersiveState.ABORTING
        self.controller.flush()
        self.ctx.status(reason)
        self._end_session()

    def _end_session(self) -> None:
        """Harness-initiated end; the end listener does the bookkeeping."""
        session = self.session
        if session is not None and not session.ended:
            session.end()
        elif not (self._ended is None or self._ended.done()):
            self._on_session_end()

    def _on_session_end(self) -> None:
        if self.state is ImmersiveState.ENDED:
            return
        cursor = self.cursor
        if not self.controller.flushed:
            if cursor is not None and not cursor.exhausted:
                env = self.ctx.env
                reason = env.get("xr_abort_reason")
                if not isinstance(reason, str) or not reason:
                    reason = "Immersive session ended before suite completion."
                    env["xr_abort_reason"] = reason
                observed = env.setdefault("xr_observed_view_count", 0)
                env["xr_expected_max_views"] = self.ctx.config.max_views
                self.controller.abort(
                    AbortCode.SESSION_ENDED_EARLY,
                    reason,
                    observed if isinstance(observed, int) else 0,
                )
            self.controller.flush()

        self.state = ImmersiveState.ENDED
        self.ctx.status("Immersive session ended")
        if self._trial_done is not None and not self._trial_done.done():
            self._trial_done.cancel()
        plan_task = self._plan_task
        if (
            plan_task is not None
            and not plan_task.done()
            and plan_task is not asyncio.current_task()
        ):
            plan_task.cancel()
        if self._ended is not None and not self._ended.done():
            self._ended.set_result(None)
