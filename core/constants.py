"""
core/constants.py — System constants for DriveSense.

Pipeline lifecycle states, the fixed driving-action vocabulary, and the
simulated timing / synthesis defaults grouped on one frozen class.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar


# ──────────────────────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────────────────────

class PipelineState(Enum):
    """Lifecycle states of the perception → reasoning pipeline."""

    IDLE = "IDLE"
    PROCESSING = "PROCESSING"
    COMPLETE = "COMPLETE"


class DrivingAction(Enum):
    """Recommended driving actions a knowledge entry may resolve to."""

    STOP = "STOP"
    GO = "GO"
    CAUTION = "CAUTION"
    SLOW_DOWN = "SLOW_DOWN"

    @classmethod
    def parse(cls, value: "DrivingAction | str") -> "DrivingAction":
        """
        Coerce ``value`` to a :class:`DrivingAction`.

        Args:
            value: An existing member or its string name (case-insensitive).

        Raises:
            ValueError: If ``value`` names no known action.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(
                f"Unknown driving action {value!r}; "
                f"expected one of {[a.value for a in cls]}"
            ) from None


# ──────────────────────────────────────────────────────────────
# Frozen constants dataclass
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DriveSenseConstants:
    """
    Frozen holder for DriveSense defaults. Use the class attributes directly.

    Example::

        from core.constants import C

        print(C.SIMULATED_LATENCY_S)   # 2.2
    """

    # ── Timing ────────────────────────────────────────────────
    SIMULATED_LATENCY_S: ClassVar[float] = 2.2
    """Seconds the pipeline stays in PROCESSING before a result is committed."""

    MAX_LATENCY_S: ClassVar[float] = 30.0
    """Upper bound accepted for a configured simulated latency."""

    # ── Synthesis ranges ──────────────────────────────────────
    CONFIDENCE_FLOOR: ClassVar[float] = 0.89
    CONFIDENCE_SPAN: ClassVar[float] = 0.10

    BOX_CENTER: ClassVar[tuple[float, float]] = (42.0, 28.0)
    BOX_JITTER: ClassVar[float] = 3.0
    BOX_WIDTH: ClassVar[float] = 14.0
    BOX_HEIGHT: ClassVar[float] = 22.0

    HOTSPOT_CENTER: ClassVar[tuple[float, float]] = (50.0, 40.0)
    HOTSPOT_JITTER: ClassVar[float] = 10.0
    INTENSITY_FLOOR: ClassVar[float] = 0.8
    INTENSITY_SPAN: ClassVar[float] = 0.2

    # ── Input boundary ────────────────────────────────────────
    IMAGE_MIME_PREFIX: ClassVar[str] = "image/"
    MAX_UPLOAD_BYTES: ClassVar[int] = 20 * 1024 * 1024
    DISPLAY_URI_SCHEME: ClassVar[str] = "blob:drivesense"
    REVOKED_URI_HISTORY: ClassVar[int] = 256

    States: ClassVar[type[PipelineState]] = PipelineState
    Actions: ClassVar[type[DrivingAction]] = DrivingAction


#: Convenience alias: ``from core.constants import C``
C = DriveSenseConstants
