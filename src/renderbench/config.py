# Copyright (c) Syntropy Systems
"""Configuration management for renderbench."""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional, cast

import yaml

from renderbench.errors import InvalidConfiguration

BENCH_DIR_NAME = ".renderbench"

RUN_MODES = ("canvas", "xr", "both")
LAYOUTS = ("line", "grid", "spiral", "random")

ORDER_UNCONSTRAINED = "unconstrained"
ORDER_FIXED_ABBA = "fixed-ABBA"
ORDER_FIXED_BAAB = "fixed-BAAB"
ORDER_EXTERNAL = "externally-assigned"
ORDER_MODES = (ORDER_UNCONSTRAINED, ORDER_FIXED_ABBA, ORDER_FIXED_BAAB, ORDER_EXTERNAL)

# Names accepted from older query-string style configs.
_ORDER_MODE_ALIASES = {
    "none": ORDER_UNCONSTRAINED,
    "unconstrained": ORDER_UNCONSTRAINED,
    "abba": ORDER_FIXED_ABBA,
    "fixed-abba": ORDER_FIXED_ABBA,
    "baab": ORDER_FIXED_BAAB,
    "fixed-baab": ORDER_FIXED_BAAB,
    "randomized": ORDER_EXTERNAL,
    "externally-assigned": ORDER_EXTERNAL,
}


def normalize_order_mode(value: str) -> str:
    """Map an order-mode name or alias to its canonical spelling."""
    canonical = _ORDER_MODE_ALIASES.get(value.strip().lower())
    if canonical is None:
        msg = f"Unknown order mode {value!r} (expected one of {', '.join(ORDER_MODES)})"
        raise InvalidConfiguration(msg)
    return canonical


def _default_suite_id() -> str:
    return f"suite_{int(time.time() * 1000)}"


@dataclass
class SuiteConfig:
    """Configuration for one benchmark suite. Treat as immutable once validated."""

    # Plan
    instances: list[int] = field(default_factory=lambda: [4])
    trials: int = 1
    shuffle: bool = False
    seed: int = 12345

    # Timing (milliseconds)
    duration_ms: int = 10000
    warmup_ms: int = 500
    cooldown_ms: int = 250
    between_instances_ms: int = 800
    pre_idle_ms: int = 0
    post_idle_ms: int = 0

    # Scene
    model_url: str = "./assets/model.glb"
    layout: str = "line"
    spacing: float = 0.35
    canvas_width: int = 1280
    canvas_height: int = 720

    # Telemetry
    collect_perf: bool = True
    perf_detail: bool = False
    store_frames: bool = False
    hud_enabled: bool = True
    hud_hz: float = 2.0

    # Surfaces
    run_mode: str = "both"
    max_views: int = 2
    xr_scale_factor: float = 1.0
    entry_timeout_ms: int = 0
    entry_grace_ms: int = 5000

    # Protocol
    order_mode: str = ORDER_UNCONSTRAINED
    order_index: int = 0
    assigned_backend: Optional[str] = None
    order_seed: Optional[str] = None
    order_slots: dict[str, str] = field(
        default_factory=lambda: {"A": "webgl2", "B": "webgpu"}
    )
    pin_identity: bool = False
    session_group: str = "default"

    # Output
    suite_id: str = field(default_factory=_default_suite_id)
    out: Optional[str] = None
    out_xr: Optional[str] = None
    recommended_rest_ms: Optional[int] = None

    def validate(self) -> SuiteConfig:
        """Check and normalize every field; raise InvalidConfiguration on bad input."""
        if not self.instances:
            msg = "instances must list at least one instance count"
            raise InvalidConfiguration(msg)
        if any(
            isinstance(n, bool) or not isinstance(n, int) or n <= 0
            for n in self.instances
        ):
            msg = f"instances must be positive integers, got {self.instances}"
            raise InvalidConfiguration(msg)
        if self.trials < 1:
            msg = f"trials must be >= 1, got {self.trials}"
            raise InvalidConfiguration(msg)
        for name in (
            "duration_ms",
            "warmup_ms",
            "cooldown_ms",
            "between_instances_ms",
            "pre_idle_ms",
            "post_idle_ms",
            "entry_timeout_ms",
            "entry_grace_ms",
        ):
            if getattr(self, name) < 0:
                msg = f"{name} must be >= 0, got {getattr(self, name)}"
                raise InvalidConfiguration(msg)
        if self.duration_ms == 0:
            msg = "duration_ms must be > 0"
            raise InvalidConfiguration(msg)
        if not self.spacing > 0:
            msg = f"spacing must be > 0, got {self.spacing}"
            raise InvalidConfiguration(msg)
        if self.max_views < 1:
            msg = f"max_views must be >= 1, got {self.max_views}"
            raise InvalidConfiguration(msg)

        self.layout = self.layout.lower()
        if self.layout not in LAYOUTS:
            msg = f"layout must be one of {', '.join(LAYOUTS)}, got {self.layout!r}"
            raise InvalidConfiguration(msg)
        self.run_mode = self.run_mode.lower()
        if self.run_mode not in RUN_MODES:
            msg = f"run_mode must be one of {', '.join(RUN_MODES)}, got {self.run_mode!r}"
            raise InvalidConfiguration(msg)
        self.order_mode = normalize_order_mode(self.order_mode)
        if self.assigned_backend is not None:
            self.assigned_backend = self.assigned_backend.lower() or None

        self.seed = self.seed & 0xFFFFFFFF
        self.xr_scale_factor = min(2.0, max(0.25, self.xr_scale_factor))
        self.hud_hz = min(10.0, max(0.5, self.hud_hz))
        return self

    def to_dict(self) -> dict[str, object]:
        """Return the configuration as a plain dict (for YAML dumps)."""
        return asdict(self)


def find_bench_dir(start_path: Path | None = None) -> Path | None:
    """Find the nearest .renderbench directory by walking up from start_path.

    Returns None if no .renderbench directory is found.
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()

    while current != current.parent:
        bench_dir = current / BENCH_DIR_NAME
        if bench_dir.is_dir():
            return bench_dir
        current = current.parent

    # Check root
    bench_dir = current / BENCH_DIR_NAME
    if bench_dir.is_dir():
        return bench_dir

    return None


def require_bench_dir() -> Path:
    """Get the .renderbench directory or raise an error if not found."""
    bench_dir = find_bench_dir()
    if bench_dir is None:
        msg = "No .renderbench directory found. Run 'renderbench init' first."
        raise RuntimeError(
            msg
        )
    return bench_dir


def _coerce(name: str, value: object, default: object) -> object:
    """Coerce a YAML scalar to the type of the field default."""
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, str)):
            return str(value).strip().lower() in ("1", "true", "yes", "on")
    elif isinstance(default, int):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
    elif isinstance(default, float):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif isinstance(default, list):
        if isinstance(value, str):
            value = [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(value, list):
            try:
                return [int(cast("int", item)) for item in value]
            except (TypeError, ValueError) as e:
                msg = f"{name} must be a list of integers, got {value!r}"
                raise InvalidConfiguration(msg) from e
    elif isinstance(default, dict):
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
    elif value is None:
        if default is None:
            return None
    elif isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value)

    msg = f"Invalid value for {name}: {value!r}"
    raise InvalidConfiguration(msg)


def config_from_mapping(data: dict[str, object]) -> SuiteConfig:
    """Build a SuiteConfig from a mapping, ignoring unknown keys."""
    config = SuiteConfig()
    for spec in fields(SuiteConfig):
        if spec.name not in data:
            continue
        value = data[spec.name]
        default = getattr(config, spec.name)
        if default is None and isinstance(value, (int, float)) and spec.name.endswith("_ms"):
            setattr(config, spec.name, int(value))
            continue
        setattr(config, spec.name, _coerce(spec.name, value, default))
    return config


def apply_overrides(config: SuiteConfig, overrides: dict[str, object]) -> SuiteConfig:
    """Apply command-line overrides; None means "not given"."""
    for name, value in overrides.items():
        if value is None:
            continue
        if not hasattr(config, name):
            msg = f"Unknown configuration field {name!r}"
            raise InvalidConfiguration(msg)
        default = getattr(config, name)
        setattr(config, name, value if default is None else _coerce(name, value, default))
    return config


def load_config(
    config_path: Path | None = None,
    bench_dir: Path | None = None,
) -> SuiteConfig:
    """Load suite configuration from YAML or defaults.

    Looks for config in:
    1. Provided config_path
    2. Provided bench_dir / config.yaml
    3. Nearest .renderbench directory walking up
    4. Defaults
    """
    if config_path is None:
        if bench_dir is None:
            bench_dir = find_bench_dir()
        if bench_dir is not None:
            config_path = bench_dir / "config.yaml"

    if config_path is None or not config_path.exists():
        return SuiteConfig()

    with config_path.open() as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        msg = f"{config_path} must contain a mapping"
        raise InvalidConfiguration(msg)

    return config_from_mapping(cast("dict[str, object]", data))


def get_db_path(bench_dir: Path | None = None) -> Path:
    """Get the path to the SQLite key-value store."""
    if bench_dir is None:
        bench_dir = find_bench_dir()

    if bench_dir is None:
        msg = "No .renderbench directory found. Run 'renderbench init' first."
        raise RuntimeError(
            msg
        )

    return bench_dir / "renderbench.db"


def get_results_dir(bench_dir: Path | None = None) -> Path:
    """Get the directory JSONL results are written to."""
    if bench_dir is None:
        bench_dir = find_bench_dir()

    if bench_dir is None:
        return Path.cwd()

    return bench_dir / "results"
