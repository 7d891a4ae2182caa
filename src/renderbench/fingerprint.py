# Copyright (c) Syntropy Systems
"""Environment fingerprint attached to every record as the ``env`` blob."""
from __future__ import annotations

import locale
import os
import platform
import shutil
import subprocess
import sys
from typing import TYPE_CHECKING, cast

try:
    import psutil
except ImportError:
    psutil = None

if TYPE_CHECKING:
    from renderbench.config import SuiteConfig
    from renderbench.models.base import JSONObject, JSONValue
    from renderbench.surfaces import Backend

# Per-session immersive telemetry; cleared whenever a new session starts.
SESSION_TELEMETRY_KEYS = (
    "xr_enter_to_first_frame_ms",
    "xr_dom_overlay_requested",
    "xr_abort_reason",
    "xr_observed_view_count",
    "xr_skipped_reason",
)


def query_gpu_name() -> str | None:
    """Return the first GPU name reported by nvidia-smi, if any."""
    nvidia_smi = shutil.which("nvidia-smi")
    if nvidia_smi is None:
        return None
    try:
        result = subprocess.run(  # noqa: S603
            [nvidia_smi, "--query-gpu=name", "--format=csv,noheader"],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    name = result.stdout.strip().split("\n")[0].strip()
    return name or None


def _total_memory_gb() -> float | None:
    if psutil is None:
        return None
    try:
        total = cast("int", psutil.virtual_memory().total)
    except (AttributeError, OSError):
        return None
    return round(total / (1024**3), 2)


def _language() -> str | None:
    lang = locale.getlocale()[0]
    return lang.replace("_", "-") if lang else None


def user_agent() -> str:
    """A user-agent style string for the Python host."""
    return (
        f"renderbench python/{platform.python_version()} "
        f"({platform.system()} {platform.release()}; {platform.machine()})"
    )


def collect_env(config: SuiteConfig, backend: Backend) -> JSONObject:
    """Build the env blob for a suite run.

    Host facts are Python-side analogs of the browser fingerprint fields; the
    backend contributes its own adapter/device blob on top.
    """
    language = _language()
    env: dict[str, JSONValue] = {
        "api": backend.name,
        "powerPreferenceRequested": "high-performance",
        "hudEnabled": config.hud_enabled,
        "hudHz": config.hud_hz,
        "xr_expected_max_views": config.max_views,
        "xr_scale_factor_requested": config.xr_scale_factor,
        "xr_scale_factor_applied": None,
        "runMode": config.run_mode,
        "order_control": {
            "orderMode": config.order_mode,
            "orderIndex": config.order_index,
            "assignedBackend": config.assigned_backend,
            "orderSeed": config.order_seed,
            "pinIdentity": config.pin_identity,
            "sessionGroup": config.session_group,
        },
        "ua": user_agent(),
        "uaData": {
            "implementation": platform.python_implementation(),
            "pythonVersion": platform.python_version(),
            "system": platform.system(),
        },
        "platform": sys.platform,
        "language": language,
        "languages": [language] if language else None,
        "hardwareConcurrency": os.cpu_count(),
        "deviceMemory": _total_memory_gb(),
        "maxTouchPoints": None,
        "isSecureContext": True,
        "crossOriginIsolated": False,
        "visibilityState": "visible",
        "dpr": 1.0,
        "canvas_css": {"w": config.canvas_width, "h": config.canvas_height},
        "canvas_px": {"w": config.canvas_width, "h": config.canvas_height},
        "url": f"renderbench://{backend.name}/{config.suite_id}",
        "gpu_identity": backend.identity,
    }
    env.update(backend.env)
    return env


def reset_session_telemetry(env: JSONObject, max_views: int) -> None:
    """Drop stale immersive telemetry before a new session starts."""
    for key in SESSION_TELEMETRY_KEYS:
        env.pop(key, None)
    env["xr_expected_max_views"] = max_views
