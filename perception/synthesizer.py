"""
perception/synthesizer.py — Detection synthesizer.

Stands in for an object detector followed by a knowledge-graph query: picks
one label from the knowledge table and produces a matching detection record
and reasoning record. Randomness only affects which entry is picked and the
cosmetic numeric variance; the ranges themselves come from
:class:`~core.config.SynthesisConfig`.

Pass a seeded ``random.Random`` for reproducible output::

    detection, reasoning = synthesize(KNOWLEDGE_TABLE, rng=random.Random(7))
"""

from __future__ import annotations

import math
import random
import uuid
from dataclasses import dataclass
from typing import Optional

from core.config import SynthesisConfig
from core.constants import DrivingAction
from knowledge.table import KnowledgeTable, lookup


@dataclass(frozen=True)
class BoundingBox:
    """Box in percentages of the rendered image extent (may spill past 0–100)."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class Hotspot:
    """Point of visual emphasis, in percentages, with intensity in [0, 1)."""

    x: float
    y: float
    intensity: float

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "intensity": self.intensity}


@dataclass(frozen=True)
class DetectionResult:
    """Synthesized stand-in for one object-detector output."""

    id: str
    label: str
    confidence: float
    bounding_box: BoundingBox
    hotspot: Optional[Hotspot] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "confidence": self.confidence,
            "bounding_box": self.bounding_box.to_dict(),
            "hotspot": self.hotspot.to_dict() if self.hotspot else None,
        }


@dataclass(frozen=True)
class ReasoningResult:
    """Synthesized stand-in for a knowledge-graph query result."""

    query: str
    concept: str
    action: DrivingAction

    def to_dict(self) -> dict:
        return {"query": self.query, "concept": self.concept, "action": self.action.value}


def _jitter(rng: random.Random, center: float, spread: float) -> float:
    """Return ``center`` moved by up to ``±spread``."""
    return center + (rng.random() * 2.0 - 1.0) * spread


def _band(rng: random.Random, floor: float, span: float) -> float:
    """Sample ``[floor, floor + span)``, clamped against float rounding at the top."""
    if span <= 0.0:
        return floor
    return min(floor + rng.random() * span, math.nextafter(floor + span, floor))


def synthesize(
    table: KnowledgeTable,
    rng: Optional[random.Random] = None,
    config: Optional[SynthesisConfig] = None,
) -> tuple[DetectionResult, ReasoningResult]:
    """
    Produce a paired detection and reasoning record from *table*.

    The label is drawn uniformly from the table's keys; ``concept``,
    ``action`` and ``query`` are copied verbatim from the matching entry,
    so ``detection.label`` always identifies the entry behind the reasoning.

    Args:
        table: Knowledge table to draw from.
        rng: Random source; a fresh unseeded ``random.Random`` when omitted.
        config: Cosmetic ranges; defaults to :class:`SynthesisConfig`.

    Returns:
        ``(DetectionResult, ReasoningResult)``.

    Raises:
        ValueError: If *table* is empty.
    """
    if not table:
        raise ValueError("Cannot synthesize a detection from an empty knowledge table")
    rng = rng if rng is not None else random.Random()
    cfg = config if config is not None else SynthesisConfig()

    # Sorted so a seeded rng picks the same label regardless of insertion order
    label = rng.choice(sorted(table))
    entry = lookup(table, label)

    confidence = _band(rng, cfg.confidence_floor, cfg.confidence_span)

    box = BoundingBox(
        x=_jitter(rng, cfg.box_center[0], cfg.box_jitter),
        y=_jitter(rng, cfg.box_center[1], cfg.box_jitter),
        width=cfg.box_width,
        height=cfg.box_height,
    )

    hotspot: Optional[Hotspot] = None
    if cfg.include_hotspot:
        hotspot = Hotspot(
            x=_jitter(rng, cfg.hotspot_center[0], cfg.hotspot_jitter),
            y=_jitter(rng, cfg.hotspot_center[1], cfg.hotspot_jitter),
            intensity=_band(rng, cfg.intensity_floor, cfg.intensity_span),
        )

    detection = DetectionResult(
        id=f"perception-id-{uuid.uuid4().hex[:12]}",
        label=entry.label,
        confidence=confidence,
        bounding_box=box,
        hotspot=hotspot,
    )
    reasoning = ReasoningResult(
        query=entry.query,
        concept=entry.concept,
        action=entry.action,
    )
    return detection, reasoning
