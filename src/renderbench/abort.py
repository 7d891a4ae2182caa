# Copyright (c) Syntropy Systems
"""Abort and partial-result controller.

Owns the per-session record log and its flushed flag. A session produces at
most one abort record and its log is written to the sink at most once.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional

from renderbench.models.records import (
    AbortCode,
    AbortRecord,
    CadenceSummary,
    EffectivePixels,
    PartialTrial,
    Viewport,
)

if TYPE_CHECKING:
    from renderbench.context import SuiteContext
    from renderbench.models.base import JSONObject
    from renderbench.models.records import BenchRecord
    from renderbench.plan import Condition

logger = logging.getLogger(__name__)


@dataclass
class TrialProgress:
    """Snapshot of whatever trial is in flight when an abort happens."""

    condition: Optional[Condition] = None
    condition_index: Optional[int] = None
    condition_count: Optional[int] = None
    elapsed_ms: Optional[float] = None
    frames_primary: int = 0
    frames_secondary: int = 0
    viewports: list[Viewport] = field(default_factory=list)
    cadence_secondary: Optional[CadenceSummary] = None
    effective_pixels: Optional[EffectivePixels] = None


ProgressSource = Callable[[], TrialProgress]


class AbortController:
    """Accumulates one session's records and writes them out exactly once."""

    records: list[JSONObject]
    flushed: bool
    abort_record: AbortRecord | None
    progress: ProgressSource | None
    write_error: OSError | None

    def __init__(
        self,
        ctx: SuiteContext,
        destination: str,
        *,
        mode: str = "xr",
        progress: ProgressSource | None = None,
    ) -> None:
        self.ctx = ctx
        self.destination = destination
        self.mode = mode
        self.progress = progress
        self.records = []
        self.flushed = False
        self.abort_record = None
        self.write_error = None

    def begin_session(self) -> None:
        """Start a fresh session log."""
        self.records = []
        self.flushed = False
        self.abort_record = None
        self.write_error = None

    @property
    def aborted(self) -> bool:
        return self.abort_record is not None

    def append(self, record: BenchRecord) -> None:
        """Add a finished record to the pending log."""
        if self.flushed:
            msg = f"Record log for {self.destination} was already flushed"
            raise RuntimeError(msg)
        self.records.append(record.to_wire())
        self.ctx.records_emitted += 1

    def build_abort_record(
        self,
        code: AbortCode,
        reason: str,
        observed_view_count: int = 0,
    ) -> AbortRecord:
        """Build an abort record from the current progress snapshot."""
        snapshot = self.progress() if self.progress is not None else TrialProgress()
        base = self.ctx.record_base(
            self.mode,
            snapshot.condition,
            snapshot.condition_index,
            snapshot.condition_count,
        )
        pixels = snapshot.effective_pixels or EffectivePixels(
            requested_scale_factor=self.ctx.config.xr_scale_factor,
        )
        return AbortRecord(
            **base,
            abort_code=code,
            abort_reason=reason,
            observed_view_count=observed_view_count,
            expected_max_views=self.ctx.config.max_views,
            partial_trial=PartialTrial(
                elapsed_ms=snapshot.elapsed_ms,
                frames_collected_primary=snapshot.frames_primary,
                frames_collected_secondary=snapshot.frames_secondary,
            ),
            xr_viewports=snapshot.viewports,
            xr_cadence_secondary=snapshot.cadence_secondary,
            xr_effective_pixels=pixels,
        )

    def abort(
        self,
        code: AbortCode,
        reason: str,
        observed_view_count: int = 0,
    ) -> AbortRecord | None:
        """Record the session's terminal abort; a no-op once one exists or after flush."""
        if self.abort_record is not None or self.flushed:
            logger.debug("Ignoring %s abort: session already terminated", code.value)
            return None
        record = self.build_abort_record(code, reason, observed_view_count)
        self.append(record)
        self.abort_record = record
        logger.warning("Session aborted (%s): %s", code.value, reason)
        return record

    def flush(self) -> bool:
        """Write the pending log once. Returns False if it was already flushed.

        A failed write is kept on ``write_error``; ``raise_write_error`` raises
        it again once the caller is back outside the frame loop.
        """
        if self.flushed:
            return False
        self.flushed = True
        if self.records:
            try:
                self.ctx.sink.write(self.destination, self.records)
            except OSError as e:
                self.write_error = e
                logger.error(
                    "Could not write %d record(s) to %s: %s",
                    len(self.records),
                    self.destination,
                    e,
                )
                self.ctx.status(f"Could not save records to {self.destination}")
                return True
        self.ctx.status(f"Saved {len(self.records)} record(s) to {self.destination}")
        return True

    def raise_write_error(self) -> None:
        """Re-raise a failed flush, if there was one."""
        if self.write_error is not None:
            raise self.write_error
