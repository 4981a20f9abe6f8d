"""
core/logger.py — JSONL structured logger for DriveSense.

DriveSenseLogger writes one JSON object per line to
``<log_dir>/drivesense_{date}.jsonl``, opening a new file when the date
changes. WARN and above are mirrored to stdlib logging (stderr).

Usage::

    from core.logger import get_logger
    log = get_logger()
    log.info("pipeline", "submit_accepted", {"handle_id": "img-3f2a"})
    log.perf("pipeline", "synthesis_committed", latency_ms=2201.4)
"""

from __future__ import annotations

import json
import logging
import platform
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

# ── stdlib mirror logger (stderr for WARN+) ──────────────────
_stdlib = logging.getLogger("drivesense")
if not _stdlib.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s — %(message)s"))
    _stdlib.addHandler(_handler)
_stdlib.setLevel(logging.DEBUG)
_stdlib.propagate = False

_LEVELS: dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "PERF": 20,
    "WARN": 30,
    "ERROR": 40,
    "CRITICAL": 50,
}

_DEFAULT_LOG_DIR = Path("logs")

_instance: Optional["DriveSenseLogger"] = None
_instance_lock = threading.Lock()


class DriveSenseLogger:
    """
    Singleton JSONL structured logger.

    Fields written per entry::

        {
          "timestamp_iso": "2026-10-16T09:12:03.512211+00:00",
          "level": "INFO",
          "phase": "pipeline",
          "event": "submit_accepted",
          "data": {"handle_id": "img-3f2a"},
          "latency_ms": 2201.4
        }

    ``latency_ms`` is only present on PERF entries.

    Do not instantiate directly — use :func:`get_logger`.

    Args:
        log_dir: Directory receiving the daily ``.jsonl`` files.
        level: Minimum level written (``DEBUG`` | ``INFO`` | ``WARN`` | ``ERROR``).
    """

    def __init__(self, log_dir: Path | str = _DEFAULT_LOG_DIR, level: str = "INFO") -> None:
        self._lock = threading.Lock()
        self._file: Optional[Any] = None
        self._current_date: str = ""
        self._log_dir = Path(log_dir)
        self._min_level = _level_value(level)
        self._write_startup()

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    @property
    def current_path(self) -> Optional[Path]:
        """Path of the file currently being written, or None before the first entry."""
        if not self._current_date:
            return None
        return self._log_dir / f"drivesense_{self._current_date}.jsonl"

    # ── public logging methods ────────────────────────────────

    def debug(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self._write("DEBUG", phase, event, data)

    def info(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """
        Write an INFO-level entry.

        Args:
            phase: Subsystem (e.g. ``'pipeline'``, ``'web_app'``).
            event: Short event identifier (e.g. ``'submit_accepted'``).
            data: Optional dict of additional context.
        """
        self._write("INFO", phase, event, data)

    def warn(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """Write a WARN-level entry and mirror it to stderr."""
        self._write("WARN", phase, event, data)
        _stdlib.warning("[%s] %s | %s", phase, event, data or {})

    def error(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """Write an ERROR-level entry and mirror it to stderr."""
        self._write("ERROR", phase, event, data)
        _stdlib.error("[%s] %s | %s", phase, event, data or {})

    def critical(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """Write a CRITICAL-level entry and mirror it to stderr."""
        self._write("CRITICAL", phase, event, data)
        _stdlib.critical("[%s] %s | %s", phase, event, data or {})

    def perf(
        self,
        phase: str,
        event: str,
        latency_ms: float,
        data: Optional[dict] = None,
    ) -> None:
        """
        Write a PERF entry for latency tracking.

        Args:
            phase: Subsystem the measurement belongs to.
            event: What was measured.
            latency_ms: Measured latency in milliseconds.
            data: Optional additional context.
        """
        self._write("PERF", phase, event, data, latency_ms=latency_ms)

    def flush(self) -> None:
        """Flush the underlying file buffer."""
        with self._lock:
            if self._file and not self._file.closed:
                self._file.flush()

    def close(self) -> None:
        """Close the current file; the next write reopens it."""
        with self._lock:
            if self._file and not self._file.closed:
                self._file.close()
            self._file = None
            self._current_date = ""

    # ── internals ─────────────────────────────────────────────

    def _write(
        self,
        level: str,
        phase: str,
        event: str,
        data: Optional[dict],
        latency_ms: Optional[float] = None,
    ) -> None:
        if _LEVELS[level] < self._min_level:
            return

        now = datetime.now(tz=timezone.utc)
        record: dict[str, Any] = {
            "timestamp_iso": now.isoformat(),
            "level": level,
            "phase": phase,
            "event": event,
            "data": data or {},
        }
        if latency_ms is not None:
            record["latency_ms"] = round(latency_ms, 3)

        line = json.dumps(record, ensure_ascii=False, separators=(",", ":"), default=str)

        with self._lock:
            self._rotate_if_needed(now)
            if self._file and not self._file.closed:
                self._file.write(line + "\n")

    def _rotate_if_needed(self, now: datetime) -> None:
        """Open a new file when the calendar date changes. Caller holds the lock."""
        today = now.strftime("%Y-%m-%d")
        if today != self._current_date or self._file is None:
            if self._file and not self._file.closed:
                self._file.close()
            self._current_date = today
            self._log_dir.mkdir(parents=True, exist_ok=True)
            self._file = open(  # noqa: SIM115
                self._log_dir / f"drivesense_{today}.jsonl",
                "a",
                encoding="utf-8",
                buffering=1,
            )

    def _write_startup(self) -> None:
        self.info(
            phase="system",
            event="startup",
            data={
                "python_version": sys.version.split()[0],
                "platform": platform.platform(),
                "log_dir": str(self._log_dir),
            },
        )


def _level_value(level: str) -> int:
    key = level.strip().upper()
    if key == "WARNING":
        key = "WARN"
    if key not in _LEVELS:
        raise ValueError(f"Unknown log level {level!r}")
    return _LEVELS[key]


def get_logger() -> DriveSenseLogger:
    """
    Return the singleton :class:`DriveSenseLogger`, creating it on first use.

    Thread-safe (double-checked creation lock).
    """
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                _instance = DriveSenseLogger()
    return _instance


def configure_logger(log_dir: Path | str = _DEFAULT_LOG_DIR, level: str = "INFO") -> DriveSenseLogger:
    """
    Replace the singleton with one writing to ``log_dir`` at ``level``.

    The previous instance's file is closed. Modules holding a reference
    obtained earlier keep logging through the old object, so call this
    before constructing controllers.
    """
    global _instance
    with _instance_lock:
        if _instance is not None:
            _instance.close()
        _instance = DriveSenseLogger(log_dir=log_dir, level=level)
    return _instance
