"""
core/config.py — Typed configuration loader for DriveSense.

Loads config/drivesense.yaml and validates all values into frozen
dataclasses. Downstream modules take these objects; never read YAML directly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from core.constants import C

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DRIVESENSE_CONFIG"


# ──────────────────────────────────────────────
# Dataclass hierarchy mirroring drivesense.yaml
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class PipelineConfig:
    """Pipeline controller timing."""

    latency_s: float = C.SIMULATED_LATENCY_S


@dataclass(frozen=True)
class SynthesisConfig:
    """
    Cosmetic ranges used by the detection synthesizer.

    Confidence is ``confidence_floor + U[0, confidence_span)``; the box and
    hotspot centres are jittered by up to ``±*_jitter`` percentage points.
    """

    confidence_floor: float = C.CONFIDENCE_FLOOR
    confidence_span: float = C.CONFIDENCE_SPAN
    box_center: tuple[float, float] = C.BOX_CENTER
    box_jitter: float = C.BOX_JITTER
    box_width: float = C.BOX_WIDTH
    box_height: float = C.BOX_HEIGHT
    include_hotspot: bool = True
    hotspot_center: tuple[float, float] = C.HOTSPOT_CENTER
    hotspot_jitter: float = C.HOTSPOT_JITTER
    intensity_floor: float = C.INTENSITY_FLOOR
    intensity_span: float = C.INTENSITY_SPAN


@dataclass(frozen=True)
class KnowledgeConfig:
    """Knowledge table source; ``None`` keeps the built-in table."""

    table_path: Optional[str] = None


@dataclass(frozen=True)
class WebConfig:
    """FastAPI server settings."""

    host: str = "0.0.0.0"
    port: int = 7860
    max_upload_bytes: int = C.MAX_UPLOAD_BYTES


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logger settings."""

    level: str = "INFO"
    log_dir: str = "logs"


@dataclass(frozen=True)
class DriveSenseConfig:
    """Root configuration object."""

    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    knowledge: KnowledgeConfig = field(default_factory=KnowledgeConfig)
    web: WebConfig = field(default_factory=WebConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# ──────────────────────────────────────────────
# Loader
# ──────────────────────────────────────────────

_PAIR_FIELDS = ("box_center", "hotspot_center")


def _merge(defaults: dict, overrides: dict) -> dict:
    """
    Deep-merge *overrides* into *defaults*, returning a new dict.

    Nested dicts are merged recursively; scalar values in overrides win.
    """
    result: dict = dict(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def _resolve_path(config_path: Path | str | None) -> Optional[Path]:
    if config_path is not None:
        resolved = Path(config_path)
        if not resolved.exists():
            raise FileNotFoundError(f"Config file not found: {resolved}")
        return resolved
    if CONFIG_ENV_VAR in os.environ:
        resolved = Path(os.environ[CONFIG_ENV_VAR])
        if not resolved.exists():
            raise FileNotFoundError(
                f"{CONFIG_ENV_VAR} points to missing file: {resolved}"
            )
        return resolved
    candidate = Path(__file__).resolve().parent.parent / "config" / "drivesense.yaml"
    if candidate.exists():
        return candidate
    return None


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name, {}) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{name}' must be a mapping, got {type(value).__name__}")
    return value


def _synthesis_from(raw: dict) -> SynthesisConfig:
    values = dict(raw)
    for name in _PAIR_FIELDS:
        if name in values:
            pair = values[name]
            if not isinstance(pair, (list, tuple)) or len(pair) != 2:
                raise ValueError(f"synthesis.{name} must be a pair [x, y], got {pair!r}")
            values[name] = (float(pair[0]), float(pair[1]))
    return SynthesisConfig(**values)


def config_from_dict(raw: dict[str, Any]) -> DriveSenseConfig:
    """
    Build and validate a :class:`DriveSenseConfig` from a plain mapping.

    Missing sections and keys fall back to defaults.

    Raises:
        ValueError: On unknown keys, wrong shapes or out-of-range values.
    """
    known = {f.name for f in fields(DriveSenseConfig)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Unknown config section(s): {sorted(unknown)}")

    try:
        config = DriveSenseConfig(
            pipeline=PipelineConfig(**_section(raw, "pipeline")),
            synthesis=_synthesis_from(_section(raw, "synthesis")),
            knowledge=KnowledgeConfig(**_section(raw, "knowledge")),
            web=WebConfig(**_section(raw, "web")),
            logging=LoggingConfig(**_section(raw, "logging")),
        )
    except TypeError as exc:
        raise ValueError(f"Invalid config value: {exc}") from exc

    validate_config(config)
    return config


def load_config(
    config_path: Path | str | None = None,
    overrides: Optional[dict[str, Any]] = None,
) -> DriveSenseConfig:
    """
    Load, validate, and return a :class:`DriveSenseConfig`.

    Search order for the file:

    1. *config_path* argument (if provided)
    2. ``DRIVESENSE_CONFIG`` environment variable
    3. ``config/drivesense.yaml`` in the project root
    4. Built-in defaults (no file required)

    Args:
        config_path: Optional explicit YAML path.
        overrides: Nested mapping applied on top of the file (CLI flags).

    Raises:
        FileNotFoundError: If an explicit or env-provided path does not exist.
        ValueError: If the file or overrides contain invalid values.
    """
    resolved_path = _resolve_path(config_path)

    raw: dict = {}
    if resolved_path is not None:
        logger.info("Loading config from: %s", resolved_path)
        with resolved_path.open("r", encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file must be a YAML mapping, got: {type(loaded)}")
        raw = loaded
    else:
        logger.info("No config file found — using built-in defaults")

    if overrides:
        raw = _merge(raw, overrides)

    config = config_from_dict(raw)
    logger.debug("Config loaded: %s", config)
    return config


def validate_config(config: DriveSenseConfig) -> None:
    """
    Check range constraints on a configuration.

    Raises:
        ValueError: If any value violates a hard constraint.
    """
    latency = config.pipeline.latency_s
    if not (0.0 < latency <= C.MAX_LATENCY_S):
        raise ValueError(
            f"pipeline.latency_s must be in (0, {C.MAX_LATENCY_S}], got {latency}"
        )

    syn = config.synthesis
    if syn.confidence_floor < 0.0 or syn.confidence_span < 0.0:
        raise ValueError("synthesis confidence floor/span must be non-negative")
    if syn.confidence_floor + syn.confidence_span > 1.0:
        raise ValueError(
            "synthesis.confidence_floor + confidence_span must be ≤ 1, got "
            f"{syn.confidence_floor + syn.confidence_span}"
        )
    if syn.intensity_floor < 0.0 or syn.intensity_span < 0.0:
        raise ValueError("synthesis intensity floor/span must be non-negative")
    if syn.intensity_floor + syn.intensity_span > 1.0:
        raise ValueError(
            "synthesis.intensity_floor + intensity_span must be ≤ 1, got "
            f"{syn.intensity_floor + syn.intensity_span}"
        )
    if syn.box_jitter < 0.0 or syn.hotspot_jitter < 0.0:
        raise ValueError("synthesis jitter values must be non-negative")
    if syn.box_width <= 0.0 or syn.box_height <= 0.0:
        raise ValueError(
            f"synthesis box size must be positive, got {syn.box_width}x{syn.box_height}"
        )

    if not (0 < config.web.port < 65536):
        raise ValueError(f"web.port must be a valid TCP port, got {config.web.port}")
    if config.web.max_upload_bytes <= 0:
        raise ValueError("web.max_upload_bytes must be positive")

    if config.logging.level.upper() not in {"DEBUG", "INFO", "WARN", "WARNING", "ERROR"}:
        raise ValueError(f"logging.level not recognised: {config.logging.level!r}")
