# Copyright (c) Syntropy Systems
"""Required-field tables for each supported record schema version.

Every field names the first version in which it is required. Records of an
older version only have that field checked when it is present; ``since=None``
marks a field that is never required.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from renderbench.models.records import SCHEMA_VERSION, AbortCode

SUPPORTED_SCHEMA_VERSIONS = ("1.0.0", "1.1.0", SCHEMA_VERSION)
VALID_APIS = frozenset({"webgl2", "webgpu"})
VALID_MODES = frozenset({"canvas", "xr"})
LEGACY_ABORT_CODES = frozenset(
    {"xr_view_count_exceeded", "xr_session_ended_early", "xr_session_start_failed", "xr_entry_timeout"}
)
VALID_ABORT_CODES = frozenset(code.value for code in AbortCode) | LEGACY_ABORT_CODES

V1_0 = "1.0.0"
V1_1 = "1.1.0"
V1_2 = "1.2.0"


@dataclass(frozen=True)
class FieldSpec:
    """Expected JSON type(s) of one field, plus nested shape."""

    name: str
    types: tuple[str, ...]
    since: Optional[str] = V1_0
    children: tuple[FieldSpec, ...] = ()
    items: Optional[tuple[str, ...]] = None
    item_children: tuple[FieldSpec, ...] = ()
    choices: Optional[frozenset[str]] = None


def version_key(version: str) -> tuple[int, ...]:
    return tuple(int(part) for part in version.split("."))


def is_required(spec: FieldSpec, version: str) -> bool:
    return spec.since is not None and version_key(version) >= version_key(spec.since)


def _numbers(*names: str, since: Optional[str] = V1_0) -> tuple[FieldSpec, ...]:
    return tuple(FieldSpec(name, ("number",), since) for name in names)


NUM = ("number",)
STR = ("string",)
BOOL = ("boolean",)
OBJ = ("object",)
ARR = ("array",)
NUM_OR_NULL = ("number", "null")
STR_OR_NULL = ("string", "null")
OBJ_OR_NULL = ("object", "null")
ARR_OR_NULL = ("array", "null")
BOOL_OR_NULL = ("boolean", "null")

REST_FIELDS = (
    FieldSpec("restStartTs", NUM_OR_NULL),
    FieldSpec("restEndTs", NUM_OR_NULL),
    FieldSpec("restElapsedMs", NUM_OR_NULL),
    FieldSpec("recommendedRestMs", NUM_OR_NULL),
    FieldSpec("previousSuiteId", STR_OR_NULL),
    FieldSpec("previousApi", STR_OR_NULL),
    FieldSpec("previousRunMode", STR_OR_NULL),
    FieldSpec("previousFinalPhase", STR_OR_NULL),
    FieldSpec("previousOutFile", STR_OR_NULL),
    FieldSpec("previousUrl", STR_OR_NULL),
)

ENV_FIELDS = (
    FieldSpec("api", STR),
    FieldSpec("powerPreferenceRequested", STR),
    FieldSpec("hudEnabled", BOOL),
    FieldSpec("hudHz", NUM),
    FieldSpec("xr_expected_max_views", NUM),
    FieldSpec("ua", STR),
    FieldSpec("xr_scale_factor_requested", NUM, V1_1),
    FieldSpec("xr_scale_factor_applied", NUM_OR_NULL, V1_1),
    FieldSpec("runMode", STR, V1_1),
    FieldSpec("order_control", OBJ_OR_NULL, V1_1),
    FieldSpec("uaData", OBJ_OR_NULL, V1_1),
    FieldSpec("platform", STR_OR_NULL, V1_1),
    FieldSpec("language", STR_OR_NULL, V1_1),
    FieldSpec("languages", ARR_OR_NULL, V1_1),
    FieldSpec("hardwareConcurrency", NUM_OR_NULL, V1_1),
    FieldSpec("deviceMemory", NUM_OR_NULL, V1_1),
    FieldSpec("maxTouchPoints", NUM_OR_NULL, V1_1),
    FieldSpec("isSecureContext", BOOL, V1_1),
    FieldSpec("crossOriginIsolated", BOOL, V1_1),
    FieldSpec("visibilityState", STR, V1_1),
    FieldSpec("dpr", NUM, V1_1),
    FieldSpec("canvas_css", OBJ, V1_1),
    FieldSpec("canvas_px", OBJ, V1_1),
    FieldSpec("url", STR, V1_1),
    # Per-session immersive telemetry
    FieldSpec("xr_enter_to_first_frame_ms", NUM, None),
    FieldSpec("xr_dom_overlay_requested", BOOL, None),
    FieldSpec("xr_abort_reason", STR, None),
    FieldSpec("xr_skipped_reason", STR, None),
    FieldSpec("xr_observed_view_count", NUM, None),
    FieldSpec("rest", OBJ_OR_NULL, None, children=REST_FIELDS),
)

API_ENV_FIELDS: dict[str, tuple[FieldSpec, ...]] = {
    "webgl2": (
        FieldSpec("contextAttributes", OBJ_OR_NULL, V1_1),
        FieldSpec("gpu", OBJ_OR_NULL, V1_1),
    ),
    "webgpu": (
        FieldSpec("adapterRequest", OBJ_OR_NULL, V1_1),
        FieldSpec("xrCompatibleRequested", BOOL_OR_NULL, V1_1),
        FieldSpec("adapter", OBJ_OR_NULL, V1_1),
        FieldSpec("adapter_features", ARR_OR_NULL, V1_1),
        FieldSpec("adapter_limits", OBJ_OR_NULL, V1_1),
        FieldSpec("device_features", ARR_OR_NULL, V1_1),
        FieldSpec("device_limits", OBJ_OR_NULL, V1_1),
        FieldSpec("colorFormat", STR_OR_NULL, V1_1),
    ),
}

COMMON_FIELDS = (
    FieldSpec("api", STR, choices=VALID_APIS),
    FieldSpec("mode", STR, choices=VALID_MODES),
    FieldSpec("modelUrl", STR),
    FieldSpec("instances", NUM_OR_NULL),
    FieldSpec("trial", NUM_OR_NULL),
    *_numbers("trials", "durationMs", "warmupMs", "cooldownMs", "betweenInstancesMs"),
    FieldSpec("layout", STR),
    FieldSpec("seed", NUM),
    FieldSpec("shuffle", BOOL),
    FieldSpec("spacing", NUM),
    FieldSpec("collectPerf", BOOL),
    FieldSpec("perfDetail", BOOL),
    FieldSpec("condition_index", NUM_OR_NULL),
    FieldSpec("condition_count", NUM_OR_NULL),
    FieldSpec("suiteId", STR),
    FieldSpec("startedAt", STR),
    FieldSpec("asset_timing", OBJ, children=_numbers("fetch_ms", "parse_ms", "total_ms")),
    FieldSpec(
        "asset_meta",
        OBJ,
        children=(
            *_numbers("vertex_count", "index_count", "triangle_count"),
            FieldSpec("has_indices", BOOL),
        ),
    ),
    FieldSpec("env", OBJ, children=ENV_FIELDS),
)

VIEWPORT_FIELDS = _numbers("x", "y", "w", "h")

CADENCE_FIELDS = _numbers("frames", "mean_ms", "p50_ms", "p95_ms", "p99_ms")

EFFECTIVE_PIXEL_FIELDS = (
    FieldSpec("requested_scale_factor", NUM),
    FieldSpec("applied_scale_factor", NUM_OR_NULL),
    FieldSpec("first_frame_total_px", NUM_OR_NULL),
    FieldSpec("first_frame_per_view_px", ARR, items=NUM),
)

PERF_FIELDS = (
    FieldSpec("trial_measure_ms", NUM_OR_NULL),
    FieldSpec("memory_start", OBJ_OR_NULL),
    FieldSpec("memory_end", OBJ_OR_NULL),
    FieldSpec("model_resource", OBJ_OR_NULL),
    FieldSpec("timeOrigin", NUM),
    FieldSpec(
        "longtask",
        OBJ,
        children=(
            *_numbers("count", "total_ms", "max_ms"),
            FieldSpec("entries", ARR, None),
        ),
    ),
)

TRIAL_FIELDS = (
    FieldSpec(
        "summary",
        OBJ,
        children=_numbers("frames", "duration_ms", "mean_ms", "p50_ms", "p95_ms", "p99_ms"),
    ),
    FieldSpec(
        "extras",
        OBJ,
        children=_numbers(
            "fps_effective",
            "fps_from_mean",
            "target_ms",
            "missed_1p5x",
            "missed_2x",
            "missed_1p5x_pct",
            "max_frame_ms",
            "jank_p99_over_p50",
        ),
    ),
    FieldSpec("perf", OBJ_OR_NULL, children=PERF_FIELDS),
    FieldSpec("frames_ms", ARR, None, items=NUM),
    FieldSpec("frames_ms_now", ARR, None, items=NUM),
)

CANVAS_TRIAL_FIELDS = _numbers("preIdleMs", "postIdleMs")

XR_TRIAL_FIELDS = (
    FieldSpec("xr_viewports", ARR, items=OBJ, item_children=VIEWPORT_FIELDS),
    FieldSpec("xr_cadence_secondary", OBJ_OR_NULL, V1_2, children=CADENCE_FIELDS),
    FieldSpec("xr_effective_pixels", OBJ, V1_2, children=EFFECTIVE_PIXEL_FIELDS),
    FieldSpec("timing_primary_source", STR, None),
    FieldSpec("timing_secondary_source", STR, None),
)

ABORT_FIELDS = (
    FieldSpec("aborted", BOOL),
    FieldSpec("abort_code", STR, choices=VALID_ABORT_CODES),
    FieldSpec("abort_reason", STR),
    *_numbers("observed_view_count", "expected_max_views", "preIdleMs", "postIdleMs"),
    FieldSpec("xr_viewports", ARR, items=OBJ, item_children=VIEWPORT_FIELDS),
    FieldSpec("xr_cadence_secondary", OBJ_OR_NULL, None, children=CADENCE_FIELDS),
    FieldSpec("xr_effective_pixels", OBJ, None, children=EFFECTIVE_PIXEL_FIELDS),
)

PARTIAL_TRIAL_FIELDS = (
    FieldSpec("elapsed_ms", NUM_OR_NULL),
    FieldSpec("frames_collected_primary", NUM, V1_2),
    FieldSpec("frames_collected_secondary", NUM, V1_2),
)

# Pre-1.2.0 partial trials carry either a single count or the t/now pair.
LEGACY_PARTIAL_SINGLE = FieldSpec("frames_collected", NUM)
LEGACY_PARTIAL_PAIR = _numbers("frames_collected_t", "frames_collected_now")
