"""
tests/test_logger.py — Structured JSONL logger.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from core.logger import DriveSenseLogger, configure_logger, get_logger


def _records(logger: DriveSenseLogger) -> list[dict]:
    logger.flush()
    path = logger.current_path
    assert path is not None
    return [json.loads(line) for line in Path(path).read_text(encoding="utf-8").splitlines()]


class TestDriveSenseLogger:

    def test_startup_record(self, tmp_path: Path) -> None:
        logger = DriveSenseLogger(log_dir=tmp_path)
        try:
            first = _records(logger)[0]
            assert first["phase"] == "system"
            assert first["event"] == "startup"
            assert logger.current_path.name.startswith("drivesense_")
            assert logger.current_path.suffix == ".jsonl"
        finally:
            logger.close()

    def test_record_shape(self, tmp_path: Path) -> None:
        logger = DriveSenseLogger(log_dir=tmp_path, level="DEBUG")
        try:
            logger.debug("pipeline", "probe", {"n": 1})
            rec = _records(logger)[-1]
            assert set(rec) == {"timestamp_iso", "level", "phase", "event", "data"}
            assert rec["level"] == "DEBUG"
            assert rec["data"] == {"n": 1}
        finally:
            logger.close()

    def test_level_filter(self, tmp_path: Path) -> None:
        logger = DriveSenseLogger(log_dir=tmp_path, level="WARN")
        try:
            logger.info("pipeline", "dropped")
            logger.warn("pipeline", "kept")
            events = [r["event"] for r in _records(logger)]
            assert "dropped" not in events
            assert "kept" in events
        finally:
            logger.close()

    def test_perf_latency(self, tmp_path: Path) -> None:
        logger = DriveSenseLogger(log_dir=tmp_path)
        try:
            logger.perf("pipeline", "timed", 12.34567, {"k": "v"})
            rec = _records(logger)[-1]
            assert rec["level"] == "PERF"
            assert rec["latency_ms"] == pytest.approx(12.346)
        finally:
            logger.close()

    def test_unknown_level(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            DriveSenseLogger(log_dir=tmp_path, level="CHATTY")


class TestSingleton:

    def test_configure_replaces_instance(self, tmp_path: Path) -> None:
        logger = configure_logger(log_dir=tmp_path / "a")
        assert get_logger() is logger
        assert logger.log_dir == tmp_path / "a"

    def test_controller_events_logged(self, log, controller, scheduler, png_bytes) -> None:
        controller.submit(png_bytes)
        scheduler.advance(3.0)
        events = [r["event"] for r in _records(log)]
        assert "submit_accepted" in events
        assert "synthesis_committed" in events
