# Copyright (c) Syntropy Systems
"""Per-trial performance telemetry (process memory, long frame tasks)."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, cast

from renderbench.models.records import LongTaskSummary, Perf

try:
    import psutil
except ImportError:
    psutil = None

if TYPE_CHECKING:
    from renderbench.clock import Clock
    from renderbench.models.base import JSONObject

logger = logging.getLogger(__name__)

# Render work at or above this duration counts as a long task.
LONG_TASK_MS = 50.0


def snapshot_memory() -> JSONObject | None:
    """Return resident/virtual memory of this process, or None without psutil."""
    if psutil is None:
        return None
    try:
        info = psutil.Process().memory_info()
        rss = cast("int", info.rss)
        vms = cast("int", info.vms)
    except (AttributeError, OSError) as exc:
        logger.debug("Memory snapshot failed: %s", exc)
        return None
    else:
        return {"rss_bytes": rss, "vms_bytes": vms}


@dataclass
class LongTask:
    """A frame callback whose render work ran long."""

    start_ms: float
    duration_ms: float


class TrialPerfRecorder:
    """Collects the perf block for one trial.

    Created when a measured window opens; ``finish`` is called once after it
    closes.
    """

    trial_id: str
    _clock: Clock
    _detail: bool
    _model_resource: JSONObject | None
    _started_ms: float | None
    _memory_start: JSONObject | None
    _tasks: list[LongTask]

    def __init__(
        self,
        clock: Clock,
        trial_id: str,
        *,
        detail: bool = False,
        model_resource: JSONObject | None = None,
    ) -> None:
        self.trial_id = trial_id
        self._clock = clock
        self._detail = detail
        self._model_resource = model_resource
        self._started_ms = None
        self._memory_start = None
        self._tasks = []

    def start(self) -> None:
        """Mark the trial start and snapshot memory."""
        self._started_ms = self._clock.now_ms()
        self._memory_start = snapshot_memory()

    def record_task(self, start_ms: float, duration_ms: float) -> None:
        """Note one unit of render work; keeps it only if it ran long."""
        if duration_ms >= LONG_TASK_MS:
            self._tasks.append(LongTask(start_ms=start_ms, duration_ms=duration_ms))

    def summarize_long_tasks(self, t0: float, t1: float) -> LongTaskSummary:
        """Summarize long tasks overlapping [t0, t1]."""
        count = 0
        total = 0.0
        longest = 0.0
        hits: list[JSONObject] = []
        for task in self._tasks:
            end = task.start_ms + task.duration_ms
            if end < t0 or task.start_ms > t1:
                continue
            count += 1
            total += task.duration_ms
            longest = max(longest, task.duration_ms)
            if self._detail:
                hits.append({"startTime": task.start_ms, "duration": task.duration_ms})
        return LongTaskSummary(
            count=count,
            total_ms=total,
            max_ms=longest,
            entries=hits if self._detail else None,
        )

    def finish(self, window_start_ms: float, window_end_ms: float) -> Perf:
        """Build the perf block for the closed window."""
        now = self._clock.now_ms()
        measure = None if self._started_ms is None else now - self._started_ms
        return Perf(
            trial_measure_ms=measure,
            memory_start=self._memory_start,
            memory_end=snapshot_memory(),
            longtask=self.summarize_long_tasks(window_start_ms, window_end_ms),
            model_resource=self._model_resource,
            time_origin=self._clock.epoch_origin_ms(),
        )
