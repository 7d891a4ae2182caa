# Copyright (c) Syntropy Systems
"""Frame-interval statistics: percentile summaries and jank counters."""
from __future__ import annotations

import math
from typing import TYPE_CHECKING

from renderbench.models.records import CadenceSummary, Extras, Summary

if TYPE_CHECKING:
    from collections.abc import Sequence

# Refresh-rate targets (ms per frame) for 120/90/72/60 Hz, in tie-break order.
TARGET_FRAME_MS: tuple[float, ...] = (1000 / 120, 1000 / 90, 1000 / 72, 1000 / 60)


def percentile(sorted_samples: Sequence[float], p: float) -> float:
    """Nearest-rank percentile with index ``floor(p * (n - 1))``.

    The index is clamped to ``[0, n - 1]``. An empty sequence yields 0.0.
    """
    if not sorted_samples:
        return 0.0
    n = len(sorted_samples)
    index = min(n - 1, max(0, math.floor(p * (n - 1))))
    return sorted_samples[index]


def _ratio(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return 0.0
    return numerator / denominator


class FrameStats:
    """Accumulates frame-interval samples for exactly one trial.

    Not re-entrant: feed it from a single frame callback chain.
    """

    samples: list[float]
    start_ms: float | None
    end_ms: float | None

    def __init__(self) -> None:
        self.samples = []
        self.start_ms = None
        self.end_ms = None
        self._finalized = False

    def __len__(self) -> int:
        return len(self.samples)

    def mark_start(self, now_ms: float) -> None:
        """Record the wall-clock start of the measured window."""
        self.start_ms = now_ms

    def add_sample(self, delta_ms: float) -> None:
        """Append one inter-frame delta."""
        if self._finalized:
            msg = "Cannot add samples to a finalized trial"
            raise RuntimeError(msg)
        if delta_ms < 0:
            msg = f"Frame delta must be non-negative, got {delta_ms}"
            raise ValueError(msg)
        self.samples.append(delta_ms)

    def elapsed_ms(self, now_ms: float) -> float | None:
        """Wall time since the window opened, or None when not started."""
        if self.start_ms is None:
            return None
        return max(0.0, now_ms - self.start_ms)

    def finalize(self, start_ms: float | None = None, end_ms: float | None = None) -> Summary:
        """Close the sample stream and reduce it to a Summary.

        ``duration_ms`` is the wall span between the start and end marks, not
        the sum of deltas.
        """
        if start_ms is not None:
            self.start_ms = start_ms
        if end_ms is not None:
            self.end_ms = end_ms
        self._finalized = True

        begin = self.start_ms if self.start_ms is not None else 0.0
        end = self.end_ms if self.end_ms is not None else begin
        ordered = sorted(self.samples)
        n = len(ordered) or 1
        return Summary(
            frames=len(self.samples),
            duration_ms=end - begin,
            mean_ms=sum(self.samples) / n,
            p50_ms=percentile(ordered, 0.50),
            p95_ms=percentile(ordered, 0.95),
            p99_ms=percentile(ordered, 0.99),
        )


def summarize_series(samples: Sequence[float]) -> CadenceSummary | None:
    """Summarize a secondary cadence series; None when it is empty."""
    if not samples:
        return None
    ordered = sorted(samples)
    return CadenceSummary(
        frames=len(samples),
        mean_ms=sum(samples) / len(samples),
        p50_ms=percentile(ordered, 0.50),
        p95_ms=percentile(ordered, 0.95),
        p99_ms=percentile(ordered, 0.99),
    )


def nearest_target_ms(p50_ms: float) -> float:
    """Return the refresh target closest to the median frame time.

    Ties resolve to the earlier entry of TARGET_FRAME_MS.
    """
    best = TARGET_FRAME_MS[0]
    best_distance = abs(p50_ms - best)
    for candidate in TARGET_FRAME_MS:
        distance = abs(p50_ms - candidate)
        if distance < best_distance:
            best_distance = distance
            best = candidate
    return best


def derive_extras(summary: Summary, samples: Sequence[float]) -> Extras:
    """Compute fps and missed-frame counters from a summary and its samples.

    Ratios with a zero denominator are reported as 0.0 so records stay
    JSON-serializable.
    """
    target_ms = nearest_target_ms(summary.p50_ms)

    max_ms = 0.0
    missed_1p5x = 0
    missed_2x = 0
    for dt in samples:
        max_ms = max(max_ms, dt)
        if dt > 1.5 * target_ms:
            missed_1p5x += 1
        if dt > 2.0 * target_ms:
            missed_2x += 1

    return Extras(
        fps_effective=_ratio(summary.frames, summary.duration_ms / 1000),
        fps_from_mean=_ratio(1000, summary.mean_ms),
        target_ms=target_ms,
        missed_1p5x=missed_1p5x,
        missed_2x=missed_2x,
        missed_1p5x_pct=_ratio(missed_1p5x, len(samples)),
        max_frame_ms=max_ms,
        jank_p99_over_p50=_ratio(summary.p99_ms, summary.p50_ms),
    )
