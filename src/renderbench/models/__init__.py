# Copyright (c) Syntropy Systems
"""Pydantic models for renderbench records."""

from .base import JSONObject, JSONValue, OpenBlob, WireModel
from .records import (
    SCHEMA_VERSION,
    AbortCode,
    AbortRecord,
    AssetMeta,
    AssetTiming,
    BenchRecord,
    CadenceSummary,
    EffectivePixels,
    Extras,
    LongTaskSummary,
    PartialTrial,
    Perf,
    Summary,
    TrialRecord,
    Viewport,
)

__all__ = [
    "SCHEMA_VERSION",
    "AbortCode",
    "AbortRecord",
    "AssetMeta",
    "AssetTiming",
    "BenchRecord",
    "CadenceSummary",
    "EffectivePixels",
    "Extras",
    "JSONObject",
    "JSONValue",
    "LongTaskSummary",
    "OpenBlob",
    "PartialTrial",
    "Perf",
    "Summary",
    "TrialRecord",
    "Viewport",
    "WireModel",
]
