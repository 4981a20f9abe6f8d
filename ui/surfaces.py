"""
ui/surfaces.py — Headless rendering surfaces for the DriveSense pipeline.

Each surface turns a :class:`~pipeline.controller.PipelineSnapshot` into a
small view model and, once attached, keeps the latest one up to date from
``ON_STATE_CHANGED`` events. Surfaces only read snapshots; they own no
pipeline state and never call back into the controller.

Coordinates are percentages of the displayed image's rendered extent. Values
outside 0–100 are passed through unchanged; clipping is the renderer's job.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.constants import DrivingAction, PipelineState
from pipeline.controller import ON_STATE_CHANGED, PipelineController, PipelineSnapshot

# Tone names mirror the web dashboard's CSS classes
TONE_DESTRUCTIVE = "destructive"
TONE_PRIMARY = "primary"
TONE_AMBER = "amber"
TONE_SUCCESS = "success"

_ACTION_TONES: dict[DrivingAction, str] = {
    DrivingAction.STOP: TONE_DESTRUCTIVE,
    DrivingAction.GO: TONE_PRIMARY,
    DrivingAction.CAUTION: TONE_AMBER,
    DrivingAction.SLOW_DOWN: TONE_AMBER,
}


def action_tone(action: Optional[DrivingAction]) -> str:
    """Colour tone for an action in the reasoning panel."""
    if action is None:
        return "foreground"
    return _ACTION_TONES.get(action, "foreground")


def format_percent(value: float) -> str:
    """``0.9342`` → ``'93.4%'``."""
    return f"{value * 100:.1f}%"


# ── View models ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OverlayView:
    """Bounding box + hotspot overlay drawn over the image."""

    detection_id: str
    left: float
    top: float
    width: float
    height: float
    label_text: str
    confidence_text: str
    tone: str
    hotspot_x: float
    hotspot_y: float
    hotspot_intensity: Optional[float]

    def css_box(self) -> Dict[str, str]:
        return {
            "left": f"{self.left}%",
            "top": f"{self.top}%",
            "width": f"{self.width}%",
            "height": f"{self.height}%",
        }


@dataclass(frozen=True)
class TraceView:
    """Side-panel reasoning trace."""

    mode: str  # "processing" | "empty" | "content"
    concept: str = ""
    confidence_text: str = ""
    action: str = ""
    action_tone: str = "foreground"
    query: str = ""


@dataclass(frozen=True)
class BannerView:
    """HUD driving-command banner."""

    visible: bool
    text: str = ""
    border_tone: str = TONE_PRIMARY
    spinning: bool = False


# ── Surfaces ──────────────────────────────────────────────────────────────────

class _Surface(ABC):
    """Base: keeps the last rendered view, refreshed from controller events."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._view: Any = self.render(PipelineSnapshot.idle())
        self._controller: Optional[PipelineController] = None

    @abstractmethod
    def render(self, snapshot: PipelineSnapshot) -> Any:
        """Build this surface's view model for *snapshot*."""

    @property
    def view(self) -> Any:
        with self._lock:
            return self._view

    def attach(self, controller: PipelineController) -> None:
        """Subscribe to *controller* and render its current snapshot."""
        self._controller = controller
        controller.subscribe(ON_STATE_CHANGED, self._on_state_changed)
        self._update(controller.current_state())

    def detach(self) -> None:
        if self._controller is not None:
            self._controller.unsubscribe(ON_STATE_CHANGED, self._on_state_changed)
            self._controller = None

    def _on_state_changed(self, data: Dict[str, Any]) -> None:
        self._update(data["snapshot"])

    def _update(self, snapshot: PipelineSnapshot) -> None:
        view = self.render(snapshot)
        with self._lock:
            self._view = view


class BoundingBoxOverlay(_Surface):
    """Renders the detection box, label badge and hotspot."""

    def render(self, snapshot: PipelineSnapshot) -> Optional[OverlayView]:
        det = snapshot.detection
        if det is None:
            return None
        box = det.bounding_box
        alert = "red" in det.label or "stop" in det.label
        if det.hotspot is not None:
            hx, hy, intensity = det.hotspot.x, det.hotspot.y, det.hotspot.intensity
        else:
            (hx, hy), intensity = box.center, None
        return OverlayView(
            detection_id=det.id,
            left=box.x,
            top=box.y,
            width=box.width,
            height=box.height,
            label_text=det.label.replace("_", " "),
            confidence_text=format_percent(det.confidence),
            tone=TONE_DESTRUCTIVE if alert else TONE_PRIMARY,
            hotspot_x=hx,
            hotspot_y=hy,
            hotspot_intensity=intensity,
        )


class ReasoningTrace(_Surface):
    """Renders the knowledge-graph reasoning side panel."""

    def render(self, snapshot: PipelineSnapshot) -> TraceView:
        if snapshot.state is PipelineState.PROCESSING:
            return TraceView(mode="processing")
        det, rsn = snapshot.detection, snapshot.reasoning
        if det is None or rsn is None:
            return TraceView(mode="empty")
        return TraceView(
            mode="content",
            concept=rsn.concept,
            confidence_text=format_percent(det.confidence),
            action=rsn.action.value,
            action_tone=action_tone(rsn.action),
            query=rsn.query,
        )


class DecisionBanner(_Surface):
    """Renders the floating DRIVING COMMAND banner."""

    def render(self, snapshot: PipelineSnapshot) -> BannerView:
        if snapshot.image is None:
            return BannerView(visible=False)
        if snapshot.is_processing:
            return BannerView(visible=True, text="ANALYZING...", spinning=True)
        action = snapshot.reasoning.action if snapshot.reasoning else None
        if action is None:
            return BannerView(visible=False)
        if action is DrivingAction.STOP:
            tone = TONE_DESTRUCTIVE
        elif action is DrivingAction.GO:
            tone = TONE_SUCCESS
        else:
            tone = TONE_PRIMARY
        return BannerView(visible=True, text=action.value, border_tone=tone)


def render_hud(snapshot: PipelineSnapshot) -> str:
    """Plain-text HUD combining all three surfaces (used by the CLI)."""
    lines = [f"state       : {snapshot.state.value}"]
    if snapshot.image is not None:
        img = snapshot.image
        lines.append(f"image       : {img.display_uri} ({img.mime_type}, {img.width}x{img.height})")

    overlay = BoundingBoxOverlay().render(snapshot)
    if overlay is not None:
        lines.append(
            f"detection   : {overlay.label_text} {overlay.confidence_text} "
            f"box=({overlay.left:.1f}%, {overlay.top:.1f}%, {overlay.width:.0f}x{overlay.height:.0f})"
        )

    trace = ReasoningTrace().render(snapshot)
    if trace.mode == "content":
        lines.append(f"concept     : {trace.concept}")
        lines.append("query       :")
        lines.extend(f"    {q}" for q in trace.query.splitlines())

    banner = DecisionBanner().render(snapshot)
    if banner.visible:
        lines.append(f"command     : {banner.text}")
    return "\n".join(lines)
