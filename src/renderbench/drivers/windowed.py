# Copyright (c) Syntropy Systems
"""Windowed surface driver: a harness-scheduled render-and-measure loop."""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from renderbench.abort import AbortController
from renderbench.camera import default_camera
from renderbench.models.records import TrialRecord
from renderbench.plan import PlanCursor
from renderbench.stats import FrameStats, derive_extras

if TYPE_CHECKING:
    from renderbench.context import SuiteContext
    from renderbench.models.base import JSONObject
    from renderbench.plan import Condition
    from renderbench.surfaces import FrameScheduler

logger = logging.getLogger(__name__)


class WindowedDriver:
    """Runs every condition of a plan on the windowed surface, one at a time.

    Per trial: optional pre-idle blank, a measured window of frame callbacks,
    optional post-idle blank. Between trials a cooldown elapses, or the longer
    between-instances pause when the instance count changes.
    """

    ctx: SuiteContext
    scheduler: FrameScheduler
    controller: AbortController
    cursor: PlanCursor | None

    def __init__(
        self,
        ctx: SuiteContext,
        scheduler: FrameScheduler,
        controller: AbortController | None = None,
    ) -> None:
        self.ctx = ctx
        self.scheduler = scheduler
        self.controller = controller or AbortController(
            ctx, ctx.canvas_destination, mode="canvas"
        )
        self.cursor = None

    async def run(self, plan: list[Condition]) -> list[JSONObject]:
        """Measure the plan and flush its records. Returns the wire records."""
        cfg = self.ctx.config
        clock = self.ctx.clock
        renderer = self.ctx.backend.renderer
        cursor = self.cursor = PlanCursor(plan)
        self.controller.begin_session()

        try:
            while (condition := cursor.current) is not None:
                position = cursor.index + 1
                self.ctx.status(
                    f"Canvas run {position}/{len(cursor)}: instances={condition.instances}, "
                    f"trial={condition.trial}/{cfg.trials} (warmup {cfg.warmup_ms}ms)"
                )
                renderer.set_instances(
                    condition.instances, cfg.spacing, cfg.layout, cfg.seed
                )
                await clock.sleep(cfg.warmup_ms)

                record = await self.run_trial(condition, position, len(cursor))
                self.controller.append(record)
                cursor.advance()

                if cursor.exhausted:
                    break
                if cursor.changes_block():
                    self.ctx.status(f"Between-instances cooldown ({cfg.between_instances_ms}ms)")
                    await clock.sleep(cfg.between_instances_ms)
                else:
                    await clock.sleep(cfg.cooldown_ms)
        finally:
            self.controller.flush()

        self.ctx.status(f"Done (canvas). {len(self.controller.records)} trial(s)")
        return self.controller.records

    async def run_trial(self, condition: Condition, index: int, count: int) -> TrialRecord:
        """Run one measured window and build its record."""
        cfg = self.ctx.config
        clock = self.ctx.clock
        backend = self.ctx.backend
        renderer = backend.renderer

        base = self.ctx.record_base("canvas", condition, index, count)
        recorder = self.ctx.perf_recorder(
            f"trial_{backend.name}_canvas_inst{condition.instances}_t{condition.trial}_idx{index}"
        )

        if cfg.pre_idle_ms > 0:
            renderer.clear()
            await clock.sleep(cfg.pre_idle_ms)

        projection, view = default_camera(cfg.canvas_width, cfg.canvas_height)
        renderer.set_camera(projection, view)

        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        stats = FrameStats()
        stats.mark_start(clock.now_ms())
        last_t: float | None = None

        def on_frame(t_ms: float) -> None:
            nonlocal last_t
            if done.done():
                return
            try:
                if last_t is not None:
                    stats.add_sample(t_ms - last_t)
                last_t = t_ms

                work_start = clock.now_ms()
                renderer.draw_frame()
                if recorder is not None:
                    recorder.record_task(work_start, clock.now_ms() - work_start)
            except Exception as e:
                done.set_exception(e)
                return

            start = stats.start_ms if stats.start_ms is not None else t_ms
            if t_ms - start < cfg.duration_ms:
                self.scheduler.request_frame(on_frame)
            else:
                stats.end_ms = clock.now_ms()
                done.set_result(None)

        self.scheduler.request_frame(on_frame)
        await done

        summary = stats.finalize()
        extras = derive_extras(summary, stats.samples)
        perf = None
        if recorder is not None:
            perf = recorder.finish(stats.start_ms or 0.0, stats.end_ms or 0.0)

        if cfg.post_idle_ms > 0:
            renderer.clear()
            await clock.sleep(cfg.post_idle_ms)

        return TrialRecord(
            **base,
            summary=summary,
            extras=extras,
            perf=perf,
            frames_ms=list(stats.samples) if cfg.store_frames else None,
        )
