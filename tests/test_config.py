"""
tests/test_config.py — Unit tests for core.config.load_config.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from core.config import (
    CONFIG_ENV_VAR,
    DriveSenseConfig,
    SynthesisConfig,
    config_from_dict,
    load_config,
)


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:

    def test_builtin_defaults(self) -> None:
        cfg = DriveSenseConfig()
        assert cfg.pipeline.latency_s == pytest.approx(2.2)
        assert cfg.synthesis.box_width == 14.0
        assert cfg.synthesis.box_height == 22.0
        assert cfg.synthesis.box_center == (42.0, 28.0)
        assert cfg.knowledge.table_path is None

    def test_shipped_yaml_matches_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        cfg = load_config()
        assert cfg.pipeline == DriveSenseConfig().pipeline
        assert cfg.synthesis == SynthesisConfig()


class TestLoading:

    def test_partial_file_keeps_other_defaults(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "c.yaml", "pipeline:\n  latency_s: 0.5\n")
        cfg = load_config(path)
        assert cfg.pipeline.latency_s == 0.5
        assert cfg.synthesis == SynthesisConfig()

    def test_pairs_become_tuples(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "c.yaml", "synthesis:\n  box_center: [10, 20]\n")
        cfg = load_config(path)
        assert cfg.synthesis.box_center == (10.0, 20.0)

    def test_env_var_is_used(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = _write(tmp_path / "env.yaml", "web:\n  port: 9000\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert load_config().web.port == 9000

    def test_overrides_win_over_file(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "c.yaml", "pipeline:\n  latency_s: 1.0\n")
        cfg = load_config(path, overrides={"pipeline": {"latency_s": 0.25}})
        assert cfg.pipeline.latency_s == 0.25

    def test_missing_explicit_path_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_missing_env_path_raises(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "gone.yaml"))
        with pytest.raises(FileNotFoundError):
            load_config()

    def test_non_mapping_file_rejected(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "c.yaml", "- just\n- a list\n")
        with pytest.raises(ValueError):
            load_config(path)


class TestValidation:

    @pytest.mark.parametrize("raw", [
        {"pipeline": {"latency_s": 0}},
        {"pipeline": {"latency_s": 120}},
        {"synthesis": {"confidence_floor": 0.95, "confidence_span": 0.1}},
        {"synthesis": {"intensity_floor": 0.9, "intensity_span": 0.2}},
        {"synthesis": {"box_jitter": -1}},
        {"synthesis": {"box_width": 0}},
        {"synthesis": {"box_center": [1, 2, 3]}},
        {"web": {"port": 70000}},
        {"logging": {"level": "LOUD"}},
        {"pipeline": {"latency": 1.0}},
        {"telemetry": {}},
        {"pipeline": "fast"},
    ])
    def test_invalid_values_raise(self, raw: dict) -> None:
        with pytest.raises(ValueError):
            config_from_dict(raw)

    def test_config_is_frozen(self) -> None:
        cfg = DriveSenseConfig()
        with pytest.raises(AttributeError):
            cfg.pipeline.latency_s = 1.0  # type: ignore[misc]
