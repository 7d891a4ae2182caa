# Copyright (c) Syntropy Systems
"""Suite-wide state shared by the drivers and the abort controller."""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional

from renderbench.models.records import AssetMeta, AssetTiming
from renderbench.perf import TrialPerfRecorder

if TYPE_CHECKING:
    from renderbench.clock import Clock
    from renderbench.config import SuiteConfig
    from renderbench.models.base import JSONObject
    from renderbench.plan import Condition
    from renderbench.sink import RecordSink
    from renderbench.surfaces import Backend, LoadedAsset

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]


@dataclass
class SuiteContext:
    """Everything a driver needs that outlives a single trial.

    Only the active driver moves its plan cursor; only the abort controller
    touches its flushed flag. The context itself just carries shared inputs.
    """

    config: SuiteConfig
    backend: Backend
    clock: Clock
    sink: RecordSink
    asset: LoadedAsset
    env: JSONObject = field(default_factory=dict)
    on_status: Optional[StatusCallback] = None
    last_status: str = ""
    records_emitted: int = 0

    @property
    def suite_id(self) -> str:
        return self.config.suite_id

    @property
    def canvas_destination(self) -> str:
        return self.config.out or f"{self.suite_id}_{self.backend.name}_canvas.jsonl"

    @property
    def xr_destination(self) -> str:
        return self.config.out_xr or f"{self.suite_id}_{self.backend.name}_xr.jsonl"

    def status(self, message: str) -> None:
        """Report a human-readable state transition."""
        self.last_status = message
        logger.info(message)
        if self.on_status is not None:
            self.on_status(message)

    def now_iso(self) -> str:
        """Current clock time as an ISO-8601 UTC timestamp."""
        epoch_ms = self.clock.epoch_origin_ms() + self.clock.now_ms()
        moment = datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=epoch_ms)
        return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def perf_recorder(self, trial_id: str) -> TrialPerfRecorder | None:
        """Return a started perf recorder for a trial, or None when perf is off."""
        if not self.config.collect_perf:
            return None
        recorder = TrialPerfRecorder(
            self.clock,
            trial_id,
            detail=self.config.perf_detail,
            model_resource=self.asset.resource,
        )
        recorder.start()
        return recorder

    def record_base(
        self,
        mode: str,
        condition: Condition | None,
        index: int | None,
        count: int | None,
    ) -> dict[str, Any]:
        """Common record fields for one condition (or none, for aborts)."""
        cfg = self.config
        return {
            "api": self.backend.name,
            "mode": mode,
            "asset_url": cfg.model_url,
            "instances": condition.instances if condition else None,
            "trial": condition.trial if condition else None,
            "trials": cfg.trials,
            "duration_ms": cfg.duration_ms,
            "warmup_ms": cfg.warmup_ms,
            "cooldown_ms": cfg.cooldown_ms,
            "pre_idle_ms": cfg.pre_idle_ms,
            "post_idle_ms": cfg.post_idle_ms,
            "between_instances_ms": cfg.between_instances_ms,
            "layout": cfg.layout,
            "seed": cfg.seed,
            "shuffle": cfg.shuffle,
            "spacing": cfg.spacing,
            "collect_perf": cfg.collect_perf,
            "perf_detail": cfg.perf_detail,
            "condition_index": index,
            "condition_count": count,
            "suite_id": self.suite_id,
            "started_at": self.now_iso(),
            "asset_timing": AssetTiming.model_validate(self.asset.timing),
            "asset_meta": AssetMeta.model_validate(self.asset.meta),
            "env": copy.deepcopy(self.env),
        }
