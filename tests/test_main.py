"""
tests/test_main.py — Headless CLI runs end to end on real timer threads.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from main import EXIT_ERROR, EXIT_OK, EXIT_REJECTED, main


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "drivesense.yaml"
    path.write_text(yaml.safe_dump({
        "pipeline": {"latency_s": 0.05},
        "logging": {"level": "DEBUG", "log_dir": str(tmp_path / "logs")},
    }))
    return path


def _run(config_file: Path, *args: str) -> int:
    return main([*args, "--config", str(config_file), "--seed", "1", "--no-banner"])


class TestHeadless:

    def test_image_reaches_decision(self, tmp_path, config_file, png_bytes, capsys) -> None:
        image = tmp_path / "street.png"
        image.write_bytes(png_bytes)
        assert _run(config_file, str(image)) == EXIT_OK
        out = capsys.readouterr().out
        assert "state       : PROCESSING" in out
        assert "state       : COMPLETE" in out
        assert "command     :" in out

    def test_logs_written(self, tmp_path, config_file, png_bytes) -> None:
        image = tmp_path / "street.png"
        image.write_bytes(png_bytes)
        _run(config_file, str(image))
        logs = list((tmp_path / "logs").glob("drivesense_*.jsonl"))
        assert logs
        assert "synthesis_committed" in logs[0].read_text(encoding="utf-8")

    def test_non_image_rejected(self, tmp_path, config_file, capsys) -> None:
        notes = tmp_path / "notes.txt"
        notes.write_text("turn left at the lights")
        assert _run(config_file, str(notes)) == EXIT_REJECTED
        assert "[REJECTED]" in capsys.readouterr().err

    def test_missing_file(self, tmp_path, config_file) -> None:
        assert _run(config_file, str(tmp_path / "absent.png")) == EXIT_REJECTED

    def test_no_images(self, config_file, capsys) -> None:
        assert _run(config_file) == EXIT_OK
        assert "No images given" in capsys.readouterr().out


class TestConfigErrors:

    def test_missing_config(self, tmp_path) -> None:
        assert main(["--config", str(tmp_path / "nope.yaml"), "--no-banner"]) == EXIT_ERROR

    def test_invalid_latency_override(self, config_file, capsys) -> None:
        assert _run(config_file, "--latency", "-1") == EXIT_ERROR
        assert "configuration" in capsys.readouterr().err
