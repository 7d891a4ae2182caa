# Copyright (c) Syntropy Systems
"""Rest handoff between consecutive suites.

A suite leaves a token in the key-value store when it finishes; the next suite
consumes it so the rest interval between the two can be logged.
"""
from __future__ import annotations

import json
import logging
import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from renderbench.models.base import JSONObject, JSONValue
    from renderbench.store import KeyValueStore

logger = logging.getLogger(__name__)

REST_KEY = "renderbench_rest_v1"

_PREVIOUS_FIELDS = (
    "previousSuiteId",
    "previousApi",
    "previousRunMode",
    "previousFinalPhase",
    "previousOutFile",
    "previousUrl",
)


def _finite(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def consume_rest_handoff(
    store: KeyValueStore,
    now_epoch_ms: float,
    recommended_rest_ms: int | None = None,
) -> JSONObject:
    """Read and delete the pending handoff token.

    Always returns the full rest block; fields are None when no usable token
    was found.
    """
    rest: dict[str, JSONValue] = {
        "restStartTs": None,
        "restEndTs": None,
        "restElapsedMs": None,
        "recommendedRestMs": (
            recommended_rest_ms if recommended_rest_ms and recommended_rest_ms > 0 else None
        ),
    }
    rest.update(dict.fromkeys(_PREVIOUS_FIELDS))

    raw = store.get(REST_KEY)
    if not raw:
        return rest
    store.delete(REST_KEY)

    try:
        token = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding unreadable rest handoff token")
        return rest
    if not isinstance(token, dict):
        return rest

    start = _finite(token.get("restStartTs"))
    rest["restStartTs"] = start
    rest["restEndTs"] = now_epoch_ms
    rest["restElapsedMs"] = None if start is None else max(0.0, now_epoch_ms - start)
    for key in _PREVIOUS_FIELDS:
        value = token.get(key)
        rest[key] = value if isinstance(value, str) else None
    return rest


def write_rest_handoff(
    store: KeyValueStore,
    now_epoch_ms: float,
    *,
    suite_id: str | None = None,
    api: str | None = None,
    run_mode: str | None = None,
    final_phase: str | None = None,
    out_file: str | None = None,
    url: str | None = None,
) -> None:
    """Leave a token for the next suite marking the start of the rest interval."""
    token = {
        "restStartTs": now_epoch_ms,
        "previousSuiteId": suite_id,
        "previousApi": api,
        "previousRunMode": run_mode,
        "previousFinalPhase": final_phase,
        "previousOutFile": out_file,
        "previousUrl": url,
    }
    store.set(REST_KEY, json.dumps(token))
