# Copyright (c) Syntropy Systems
"""Record sinks: where flushed record logs end up."""
from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from renderbench.models.base import JSONObject

logger = logging.getLogger(__name__)


def to_jsonl(records: Sequence[JSONObject]) -> str:
    """Serialize records as newline-delimited JSON."""
    return "".join(json.dumps(record, allow_nan=False) + "\n" for record in records)


class RecordSink(Protocol):
    """Persists one flushed record log."""

    def write(self, destination: str, records: Sequence[JSONObject]) -> None:
        ...


class JsonlFileSink:
    """Writes each flushed log to ``<directory>/<destination>``."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.written: list[Path] = []

    def write(self, destination: str, records: Sequence[JSONObject]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / destination
        with path.open("a") as f:
            _ = f.write(to_jsonl(records))
            _ = f.flush()
        self.written.append(path)
        logger.info("Wrote %d record(s) to %s", len(records), path)


class MemorySink:
    """Keeps flushed logs in memory."""

    def __init__(self) -> None:
        self.writes: list[tuple[str, list[JSONObject]]] = []

    def write(self, destination: str, records: Sequence[JSONObject]) -> None:
        self.writes.append((destination, list(records)))

    def records(self, destination: str | None = None) -> list[JSONObject]:
        """Return every record written, optionally for one destination."""
        return [
            record
            for dest, batch in self.writes
            if destination is None or dest == destination
            for record in batch
        ]
