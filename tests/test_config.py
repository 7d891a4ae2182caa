# Copyright (c) Syntropy Systems
"""Tests for suite configuration."""

from pathlib import Path

import pytest
import yaml

from renderbench.config import (
    SuiteConfig,
    apply_overrides,
    config_from_mapping,
    find_bench_dir,
    load_config,
    normalize_order_mode,
)
from renderbench.errors import InvalidConfiguration


class TestSuiteConfig:
    """Tests for SuiteConfig validation."""

    def test_defaults_validate(self) -> None:
        config = SuiteConfig().validate()

        assert config.instances == [4]
        assert config.run_mode == "both"
        assert config.order_mode == "unconstrained"
        assert config.suite_id.startswith("suite_")

    def test_clamps(self) -> None:
        config = SuiteConfig(xr_scale_factor=5.0, hud_hz=100.0, seed=-1).validate()

        assert config.xr_scale_factor == 2.0
        assert config.hud_hz == 10.0
        assert config.seed == 0xFFFFFFFF

    def test_normalizes_names(self) -> None:
        config = SuiteConfig(layout="GRID", run_mode="XR", order_mode="abba").validate()

        assert config.layout == "grid"
        assert config.run_mode == "xr"
        assert config.order_mode == "fixed-ABBA"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"instances": []},
            {"instances": [0]},
            {"trials": 0},
            {"duration_ms": 0},
            {"warmup_ms": -1},
            {"spacing": 0.0},
            {"max_views": 0},
            {"layout": "ring"},
            {"run_mode": "desktop"},
            {"order_mode": "zigzag"},
        ],
    )
    def test_rejects_bad_values(self, overrides: dict[str, object]) -> None:
        config = SuiteConfig(**overrides)  # type: ignore[arg-type]

        with pytest.raises(InvalidConfiguration):
            _ = config.validate()


class TestOrderModeNames:
    """Tests for order-mode aliases."""

    @pytest.mark.parametrize(
        ("name", "canonical"),
        [
            ("none", "unconstrained"),
            ("ABBA", "fixed-ABBA"),
            ("fixed-BAAB", "fixed-BAAB"),
            ("randomized", "externally-assigned"),
        ],
    )
    def test_aliases(self, name: str, canonical: str) -> None:
        assert normalize_order_mode(name) == canonical


class TestLoading:
    """Tests for YAML loading and overrides."""

    def test_defaults_without_project(self, temp_dir: Path) -> None:
        config = load_config(bench_dir=temp_dir)

        assert config.trials == 1

    def test_load_yaml(self, temp_dir: Path) -> None:
        path = temp_dir / "suite.yaml"
        path.write_text(
            yaml.dump(
                {
                    "instances": "2, 4,8",
                    "trials": 3,
                    "shuffle": "true",
                    "spacing": 1,
                    "assigned_backend": "webgpu",
                    "order_slots": {"A": "webgpu", "B": "webgl2"},
                    "unknown_key": 1,
                }
            )
        )

        config = load_config(path)

        assert config.instances == [2, 4, 8]
        assert config.trials == 3
        assert config.shuffle is True
        assert config.spacing == 1.0
        assert config.assigned_backend == "webgpu"
        assert config.order_slots == {"A": "webgpu", "B": "webgl2"}

    def test_optional_ms_field(self) -> None:
        config = config_from_mapping({"recommended_rest_ms": 60000})

        assert config.recommended_rest_ms == 60000

    def test_non_mapping_rejected(self, temp_dir: Path) -> None:
        path = temp_dir / "suite.yaml"
        path.write_text("- 1\n- 2\n")

        with pytest.raises(InvalidConfiguration):
            _ = load_config(path)

    def test_bad_instances(self) -> None:
        with pytest.raises(InvalidConfiguration):
            _ = config_from_mapping({"instances": ["a", "b"]})

    def test_overrides_skip_none(self) -> None:
        config = apply_overrides(
            SuiteConfig(trials=2),
            {"trials": None, "instances": "4,16", "pin_identity": True},
        )

        assert config.trials == 2
        assert config.instances == [4, 16]
        assert config.pin_identity is True

    def test_unknown_override(self) -> None:
        with pytest.raises(InvalidConfiguration):
            _ = apply_overrides(SuiteConfig(), {"frobnicate": 1})

    def test_find_bench_dir(self, bench_project: Path) -> None:
        nested = bench_project / "a" / "b"
        nested.mkdir(parents=True)

        assert find_bench_dir(nested) == (bench_project / ".renderbench").resolve()
