# Copyright (c) Syntropy Systems
"""Pydantic models for trial and abort records (the JSONL wire format)."""

from __future__ import annotations

from enum import Enum
from typing import ClassVar, Literal, Optional, Union

from pydantic import Field
from typing_extensions import TypeAlias

from .base import JSONObject, OpenBlob, WireModel

SCHEMA_VERSION = "1.2.0"


class AbortCode(str, Enum):
    """Closed set of reasons an immersive session produced an abort record."""

    VIEW_COUNT_EXCEEDED = "view-count-exceeded"
    SESSION_ENDED_EARLY = "session-ended-early"
    SESSION_START_FAILED = "session-start-failed"
    ENTRY_TIMEOUT = "entry-timeout"


class Summary(WireModel):
    """Percentile summary of one trial's primary frame-interval series."""

    frames: int
    duration_ms: float
    mean_ms: float
    p50_ms: float
    p95_ms: float
    p99_ms: float


class CadenceSummary(WireModel):
    """Summary of a secondary cadence series (no wall duration)."""

    frames: int
    mean_ms: float
    p50_ms: float
    p95_ms: float
    p99_ms: float


class Extras(WireModel):
    """Derived jank counters."""

    fps_effective: float
    fps_from_mean: float
    target_ms: float
    missed_1p5x: int
    missed_2x: int
    missed_1p5x_pct: float
    max_frame_ms: float
    jank_p99_over_p50: float


class LongTaskSummary(WireModel):
    """Frame callbacks whose render work ran long."""

    OMIT_IF_NONE: ClassVar[frozenset[str]] = frozenset({"entries"})

    count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    entries: Optional[list[JSONObject]] = None


class Perf(WireModel):
    """Optional per-trial performance telemetry block."""

    trial_measure_ms: Optional[float] = None
    memory_start: Optional[JSONObject] = None
    memory_end: Optional[JSONObject] = None
    longtask: LongTaskSummary = Field(default_factory=LongTaskSummary)
    model_resource: Optional[JSONObject] = None
    time_origin: float = Field(alias="timeOrigin")


class Viewport(WireModel):
    """Viewport rectangle reported by the immersive environment."""

    x: float
    y: float
    w: float
    h: float


class EffectivePixels(WireModel):
    """Rendered pixel totals of the first measured immersive frame."""

    requested_scale_factor: float
    applied_scale_factor: Optional[float] = None
    first_frame_total_px: Optional[float] = None
    first_frame_per_view_px: list[float] = Field(default_factory=list)


class PartialTrial(WireModel):
    """Snapshot of an in-progress trial at abort time."""

    elapsed_ms: Optional[float] = None
    frames_collected_primary: int = 0
    frames_collected_secondary: int = 0


class AssetTiming(OpenBlob):
    """Asset loading timings reported by the loader."""

    fetch_ms: float
    parse_ms: float
    total_ms: float


class AssetMeta(OpenBlob):
    """Geometry metadata reported by the loader."""

    vertex_count: int
    index_count: int
    triangle_count: int
    has_indices: bool


class RecordBase(WireModel):
    """Fields common to every record."""

    schema_version: str = SCHEMA_VERSION
    api: str
    mode: Literal["canvas", "xr"]
    asset_url: str = Field(alias="modelUrl")
    instances: Optional[int] = None
    trial: Optional[int] = None
    trials: int
    duration_ms: int = Field(alias="durationMs")
    warmup_ms: int = Field(alias="warmupMs")
    cooldown_ms: int = Field(alias="cooldownMs")
    pre_idle_ms: int = Field(alias="preIdleMs")
    post_idle_ms: int = Field(alias="postIdleMs")
    between_instances_ms: int = Field(alias="betweenInstancesMs")
    layout: str
    seed: int
    shuffle: bool
    spacing: float
    collect_perf: bool = Field(alias="collectPerf")
    perf_detail: bool = Field(alias="perfDetail")
    condition_index: Optional[int] = None
    condition_count: Optional[int] = None
    suite_id: str = Field(alias="suiteId")
    started_at: str = Field(alias="startedAt")
    asset_timing: AssetTiming
    asset_meta: AssetMeta
    env: JSONObject = Field(default_factory=dict)


class TrialRecord(RecordBase):
    """A completed trial."""

    OMIT_IF_NONE: ClassVar[frozenset[str]] = frozenset(
        {
            "frames_ms",
            "frames_ms_now",
            "timing_primary_source",
            "timing_secondary_source",
            "xr_viewports",
            "xr_effective_pixels",
        }
    )

    summary: Summary
    extras: Extras
    perf: Optional[Perf] = None
    frames_ms: Optional[list[float]] = None
    frames_ms_now: Optional[list[float]] = None
    timing_primary_source: Optional[str] = None
    timing_secondary_source: Optional[str] = None
    xr_cadence_secondary: Optional[CadenceSummary] = None
    xr_effective_pixels: Optional[EffectivePixels] = None
    xr_viewports: Optional[list[Viewport]] = None

    def to_wire(self) -> JSONObject:
        data = super().to_wire()
        if self.mode == "canvas":
            data.pop("xr_cadence_secondary", None)
        return data


class AbortRecord(RecordBase):
    """Terminal record for an immersive session that ended with an incomplete plan."""

    mode: Literal["canvas", "xr"] = "xr"
    aborted: Literal[True] = True
    abort_code: AbortCode
    abort_reason: str
    observed_view_count: int = 0
    expected_max_views: int
    partial_trial: PartialTrial = Field(default_factory=PartialTrial)
    xr_viewports: list[Viewport] = Field(default_factory=list)
    xr_cadence_secondary: Optional[CadenceSummary] = None
    xr_effective_pixels: Optional[EffectivePixels] = None


BenchRecord: TypeAlias = Union[TrialRecord, AbortRecord]
