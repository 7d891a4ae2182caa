# Copyright (c) Syntropy Systems
"""Suite orchestration: protocol checks, planning, then the surface phases."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from renderbench.context import SuiteContext
from renderbench.drivers import ImmersiveDriver, WindowedDriver
from renderbench.errors import InvalidConfiguration
from renderbench.fingerprint import collect_env
from renderbench.handoff import consume_rest_handoff, write_rest_handoff
from renderbench.plan import build_plan
from renderbench.protocol import ProtocolGuard
from renderbench.supervisor import EntryTimeoutSupervisor

if TYPE_CHECKING:
    from renderbench.clock import Clock
    from renderbench.config import SuiteConfig
    from renderbench.context import StatusCallback
    from renderbench.models.base import JSONObject
    from renderbench.sink import RecordSink
    from renderbench.store import KeyValueStore
    from renderbench.surfaces import AssetLoader, Backend, FrameScheduler, ImmersiveEnvironment

logger = logging.getLogger(__name__)


@dataclass
class SuiteResult:
    """Wire records produced by each phase of a suite."""

    suite_id: str
    canvas_records: list[JSONObject] = field(default_factory=list)
    xr_records: list[JSONObject] = field(default_factory=list)
    final_phase: str | None = None
    destinations: list[str] = field(default_factory=list)

    @property
    def records(self) -> list[JSONObject]:
        return [*self.canvas_records, *self.xr_records]

    @property
    def aborted(self) -> bool:
        return any(record.get("aborted") is True for record in self.xr_records)


class Suite:
    """One benchmark invocation against a single backend.

    Configuration and protocol errors raise before anything is measured. Once
    measurement starts, failures end up as abort records instead.
    """

    def __init__(
        self,
        config: SuiteConfig,
        backend: Backend,
        *,
        clock: Clock,
        sink: RecordSink,
        loader: AssetLoader,
        scheduler: FrameScheduler | None = None,
        environment: ImmersiveEnvironment | None = None,
        store: KeyValueStore | None = None,
        on_status: StatusCallback | None = None,
    ) -> None:
        self.config = config
        self.backend = backend
        self.clock = clock
        self.sink = sink
        self.loader = loader
        self.scheduler = scheduler
        self.environment = environment
        self.store = store
        self.on_status = on_status
        self.context: SuiteContext | None = None

    def check_protocol(self) -> None:
        """Run the order and identity checks; raises ProtocolViolation."""
        cfg = self.config
        guard = ProtocolGuard(self.store, slots=cfg.order_slots)
        guard.validate_order(
            self.backend.name,
            cfg.order_mode,
            cfg.order_index,
            cfg.assigned_backend,
        )
        if cfg.pin_identity:
            if self.store is None:
                msg = "pin_identity requires a key-value store"
                raise InvalidConfiguration(msg)
            guard.validate_identity(cfg.session_group, self.backend.identity)

    def _epoch_now(self) -> float:
        return self.clock.epoch_origin_ms() + self.clock.now_ms()

    async def run(self) -> SuiteResult:
        cfg = self.config.validate()
        if cfg.run_mode in ("canvas", "both") and self.scheduler is None:
            msg = f"run_mode={cfg.run_mode} needs a frame scheduler"
            raise InvalidConfiguration(msg)
        if cfg.run_mode in ("xr", "both") and self.environment is None:
            msg = f"run_mode={cfg.run_mode} needs an immersive environment"
            raise InvalidConfiguration(msg)

        self.check_protocol()
        plan = build_plan(cfg.instances, cfg.trials, cfg.shuffle, cfg.seed)

        asset = self.loader.load(cfg.model_url)
        self.backend.renderer.set_mesh(asset.mesh)

        env = collect_env(cfg, self.backend)
        if self.store is not None:
            env["rest"] = consume_rest_handoff(
                self.store, self._epoch_now(), cfg.recommended_rest_ms
            )

        ctx = self.context = SuiteContext(
            config=cfg,
            backend=self.backend,
            clock=self.clock,
            sink=self.sink,
            asset=asset,
            env=env,
            on_status=self.on_status,
        )
        result = SuiteResult(suite_id=cfg.suite_id)
        ctx.status(
            f"Suite {cfg.suite_id}: api={self.backend.name}, mode={cfg.run_mode}, "
            f"instances={cfg.instances}, trials={cfg.trials}, durationMs={cfg.duration_ms}"
        )

        if cfg.run_mode in ("canvas", "both") and self.scheduler is not None:
            windowed = WindowedDriver(ctx, self.scheduler)
            result.canvas_records = await windowed.run(plan)
            windowed.controller.raise_write_error()
            result.final_phase = "canvas"
            result.destinations.append(ctx.canvas_destination)
        else:
            ctx.status("Skipping canvas suite (mode=xr)")

        if cfg.run_mode in ("xr", "both") and self.environment is not None:
            immersive = ImmersiveDriver(ctx, self.environment)
            if cfg.run_mode == "both" and cfg.entry_timeout_ms > 0:
                immersive.supervisor = EntryTimeoutSupervisor(
                    self.clock,
                    cfg.entry_timeout_ms,
                    cfg.entry_grace_ms,
                    immersive.on_entry_timeout,
                )
            result.xr_records = await immersive.run(plan)
            immersive.controller.raise_write_error()
            if immersive.controller.flushed:
                result.final_phase = "xr"
                result.destinations.append(ctx.xr_destination)

        if self.store is not None:
            write_rest_handoff(
                self.store,
                self._epoch_now(),
                suite_id=cfg.suite_id,
                api=self.backend.name,
                run_mode=cfg.run_mode,
                final_phase=result.final_phase,
                out_file=result.destinations[-1] if result.destinations else None,
                url=str(env.get("url")),
            )
        return result


def run_suite(suite: Suite) -> SuiteResult:
    """Run a suite on a fresh event loop."""
    return asyncio.run(suite.run())
