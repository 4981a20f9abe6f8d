"""
pipeline/controller.py — PipelineController: owner of the DriveSense pipeline state.

Accepts an image, holds the pipeline in PROCESSING for a simulated latency,
then commits a paired detection + reasoning result::

    submit(image) ─► PROCESSING ─(latency)─► synthesize() ─► COMPLETE

The controller is the only writer of the (state, image, detection,
reasoning) tuple. It is kept as one immutable :class:`PipelineSnapshot`
swapped under a lock, so readers never observe a torn combination.
Rendering surfaces subscribe to the internal EventBus and read snapshots;
they never hold a reference to controller internals.

At most one submission is in flight: a newer ``submit`` or a ``reset``
cancels the pending deferred step, and a generation check drops any
completion that still slips through.
"""

from __future__ import annotations

import random
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from core.config import DriveSenseConfig
from core.constants import PipelineState
from core.fsm import PipelineFSM
from core.logger import get_logger
from knowledge.table import KNOWLEDGE_TABLE, KnowledgeTable, load_knowledge_table
from perception.image_handle import (
    DisplayUriRegistry,
    ImageHandle,
    InvalidInputError,
    inspect_image,
)
from perception.synthesizer import DetectionResult, ReasoningResult, synthesize
from pipeline.scheduler import DeferredTask, Scheduler, ThreadingScheduler

# ── EventBus event-name constants ─────────────────────────────────────────────

ON_STATE_CHANGED  = "ON_STATE_CHANGED"
"""Fired on every snapshot swap; payload ``{"snapshot": PipelineSnapshot}``."""

ON_SUBMITTED      = "ON_SUBMITTED"
"""Fired after an image is accepted and the pipeline entered PROCESSING."""

ON_RESULT_READY   = "ON_RESULT_READY"
"""Fired when the deferred synthesis commits and the pipeline is COMPLETE."""

ON_RESET          = "ON_RESET"
"""Fired after :meth:`PipelineController.reset` returned the pipeline to IDLE."""

ON_INPUT_REJECTED = "ON_INPUT_REJECTED"
"""Fired when a submission is rejected as invalid input (state unchanged)."""


class PipelineClosedError(RuntimeError):
    """Raised by :meth:`PipelineController.submit` after :meth:`shutdown`."""


# ── Snapshot ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PipelineSnapshot:
    """
    Immutable view of the pipeline at one instant.

    Only three shapes are constructible:

    * ``IDLE``       — no image, no results
    * ``PROCESSING`` — image, no results
    * ``COMPLETE``   — image, detection and reasoning
    """

    state: PipelineState
    image: Optional[ImageHandle] = None
    detection: Optional[DetectionResult] = None
    reasoning: Optional[ReasoningResult] = None
    submission_id: int = 0

    def __post_init__(self) -> None:
        has_results = (self.detection is not None, self.reasoning is not None)
        if has_results[0] != has_results[1]:
            raise ValueError("detection and reasoning must be set together")
        complete = self.state is PipelineState.COMPLETE
        if complete != has_results[0]:
            raise ValueError(f"{self.state.value} snapshot with results={has_results[0]}")
        if (self.state is PipelineState.IDLE) != (self.image is None):
            raise ValueError(f"{self.state.value} snapshot with image={self.image is not None}")

    @classmethod
    def idle(cls, submission_id: int = 0) -> "PipelineSnapshot":
        return cls(state=PipelineState.IDLE, submission_id=submission_id)

    @property
    def is_processing(self) -> bool:
        return self.state is PipelineState.PROCESSING

    @property
    def detections(self) -> tuple[DetectionResult, ...]:
        """All detections in this snapshot (zero or one in this demo)."""
        return (self.detection,) if self.detection is not None else ()

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe dict; the image payload itself is omitted."""
        return {
            "state": self.state.value,
            "submission_id": self.submission_id,
            "image": self.image.to_dict() if self.image else None,
            "detection": self.detection.to_dict() if self.detection else None,
            "reasoning": self.reasoning.to_dict() if self.reasoning else None,
        }


# ── Controller ────────────────────────────────────────────────────────────────

class PipelineController:
    """
    Owns the pipeline lifecycle and the live image handle.

    Args:
        knowledge: Read-only label → entry table. Defaults to the built-in
            :data:`~knowledge.table.KNOWLEDGE_TABLE`.
        config: Root configuration; only ``pipeline`` and ``synthesis`` are read.
        scheduler: Deferred-task substrate. Defaults to
            :class:`~pipeline.scheduler.ThreadingScheduler`.
        rng: Random source handed to the synthesizer (seed it for repeatable runs).
        uri_registry: Registry minting and revoking display URIs.

    Example::

        ctrl = PipelineController()
        ctrl.subscribe(ON_RESULT_READY, lambda d: print(d["snapshot"].reasoning.action))
        ctrl.submit(open("street.jpg", "rb").read(), mime_type="image/jpeg")
        snap = ctrl.wait_until_complete(timeout=5.0)
        ctrl.shutdown()
    """

    def __init__(
        self,
        knowledge: Optional[KnowledgeTable] = None,
        config: Optional[DriveSenseConfig] = None,
        scheduler: Optional[Scheduler] = None,
        rng: Optional[random.Random] = None,
        uri_registry: Optional[DisplayUriRegistry] = None,
    ) -> None:
        self._log = get_logger()
        self._config = config if config is not None else DriveSenseConfig()
        self._knowledge = knowledge if knowledge is not None else KNOWLEDGE_TABLE
        if not self._knowledge:
            raise ValueError("PipelineController needs a non-empty knowledge table")
        self._scheduler: Scheduler = scheduler if scheduler is not None else ThreadingScheduler()
        self._rng = rng if rng is not None else random.Random()
        self._uris = uri_registry if uri_registry is not None else DisplayUriRegistry()

        # RLock: subscribers run under the lock and may read current_state()
        self._lock = threading.RLock()
        self._state_changed = threading.Condition(self._lock)
        self._fsm = PipelineFSM(on_transition=self._on_fsm_transition)
        self._snapshot = PipelineSnapshot.idle()
        self._generation = 0
        self._pending: Optional[DeferredTask] = None
        self._submitted_at = 0.0
        self._closed = False

        self._subscribers: Dict[str, List[Callable[[Dict[str, Any]], None]]] = (
            defaultdict(list)
        )

        self._log.info("pipeline", "controller_ready", {
            "latency_s": self._config.pipeline.latency_s,
            "knowledge_labels": sorted(self._knowledge),
            "scheduler": type(self._scheduler).__name__,
        })

    @classmethod
    def from_config(
        cls,
        config: DriveSenseConfig,
        scheduler: Optional[Scheduler] = None,
        rng: Optional[random.Random] = None,
    ) -> "PipelineController":
        """Build a controller, loading the knowledge table named in *config* if any."""
        table = KNOWLEDGE_TABLE
        if config.knowledge.table_path:
            table = load_knowledge_table(config.knowledge.table_path)
        return cls(knowledge=table, config=config, scheduler=scheduler, rng=rng)

    # ── Read-only accessors ───────────────────────────────────────────────────

    @property
    def config(self) -> DriveSenseConfig:
        return self._config

    @property
    def knowledge(self) -> KnowledgeTable:
        return self._knowledge

    @property
    def uri_registry(self) -> DisplayUriRegistry:
        return self._uris

    @property
    def fsm(self) -> PipelineFSM:
        return self._fsm

    @property
    def closed(self) -> bool:
        return self._closed

    def current_state(self) -> PipelineSnapshot:
        """Return the latest immutable snapshot."""
        with self._lock:
            return self._snapshot

    # ── EventBus ──────────────────────────────────────────────────────────────

    def subscribe(self, event: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        """
        Register *callback* to receive payloads whenever *event* is published.

        Callbacks run synchronously, in registration order, while the
        controller lock is held, so they see events in commit order. Keep
        them short; exceptions are logged and never reach the controller.

        Args:
            event:    One of the ``ON_*`` module-level constants.
            callback: Callable ``(data: dict) → None``.
        """
        with self._lock:
            self._subscribers[event].append(callback)
        self._log.debug("pipeline", "event_subscribed", {"event": event})

    def unsubscribe(self, event: str, callback: Callable[[Dict[str, Any]], None]) -> bool:
        """Remove a callback. Returns False if it was not registered."""
        with self._lock:
            try:
                self._subscribers[event].remove(callback)
            except ValueError:
                return False
        return True

    def publish(self, event: str, data: Dict[str, Any]) -> None:
        """Dispatch *event* to every registered callback with payload *data*."""
        with self._lock:
            callbacks = list(self._subscribers.get(event, []))
            for cb in callbacks:
                try:
                    cb(data)
                except Exception as exc:  # noqa: BLE001
                    self._log.error("pipeline", "event_callback_error", {
                        "event": event,
                        "error": str(exc),
                    })

    # ── Public operations ─────────────────────────────────────────────────────

    def submit(self, payload: bytes, mime_type: Optional[str] = None) -> ImageHandle:
        """
        Accept a new image and start a simulated pipeline run.

        Releases the previous image's display URI, clears any results,
        enters PROCESSING and schedules one deferred synthesis after
        ``config.pipeline.latency_s``. Any pending synthesis from an
        earlier submission is cancelled and can never commit.

        Args:
            payload: Raw image bytes.
            mime_type: MIME type claimed by the caller, if known.

        Returns:
            The new live :class:`~perception.image_handle.ImageHandle`.

        Raises:
            InvalidInputError: The payload is not image data. Nothing changed.
            PipelineClosedError: :meth:`shutdown` was already called.
        """
        try:
            info = inspect_image(payload, mime_type)
        except InvalidInputError as exc:
            self._log.warn("pipeline", "submit_rejected", {
                "reason": exc.reason,
                "detail": exc.detail,
                "claimed_mime": mime_type,
            })
            self.publish(ON_INPUT_REJECTED, {
                "reason": exc.reason,
                "snapshot": self.current_state(),
            })
            raise

        data = bytes(payload)
        latency_s = self._config.pipeline.latency_s

        with self._lock:
            if self._closed:
                raise PipelineClosedError("PipelineController has been shut down")

            self._cancel_pending()
            self._release_image(reason="superseded")
            handle = self._uris.create(data, info.mime_type, info)

            self._generation += 1
            generation = self._generation
            self._fsm.transition(PipelineState.PROCESSING, reason="submit")
            snapshot = PipelineSnapshot(
                state=PipelineState.PROCESSING,
                image=handle,
                submission_id=generation,
            )
            self._swap(snapshot)

            self._submitted_at = time.perf_counter()
            self._pending = self._scheduler.call_later(
                latency_s,
                lambda: self._complete(generation),
                name=f"drivesense-synthesis-{generation}",
            )

            self._log.info("pipeline", "submit_accepted", {
                "submission_id": generation,
                "handle_id": handle.handle_id,
                "mime_type": handle.mime_type,
                "width": handle.width,
                "height": handle.height,
                "size_bytes": handle.size_bytes,
            })
            self.publish(ON_SUBMITTED, {"snapshot": snapshot})

        return handle

    def reset(self, reason: str = "reset") -> PipelineSnapshot:
        """
        Return to IDLE from any state.

        Cancels a pending synthesis, releases the live image URI and clears
        results. Safe to call repeatedly.
        """
        with self._lock:
            cancelled = self._cancel_pending()
            released = self._release_image(reason=reason)
            self._generation += 1
            self._fsm.reset(reason=reason)
            snapshot = PipelineSnapshot.idle(submission_id=self._generation)
            self._swap(snapshot)

            self._log.info("pipeline", "reset", {
                "reason": reason,
                "cancelled_pending": cancelled,
                "released_image": released,
            })
            self.publish(ON_RESET, {"snapshot": snapshot, "reason": reason})
            return snapshot

    def wait_until_complete(self, timeout: Optional[float] = None) -> Optional[PipelineSnapshot]:
        """
        Block until the pipeline leaves PROCESSING.

        Only meaningful with a scheduler that fires on its own thread
        (:class:`~pipeline.scheduler.ThreadingScheduler`).

        Returns:
            The COMPLETE snapshot, or None on timeout or if the pipeline is
            (or ends up) IDLE.
        """
        with self._state_changed:
            self._state_changed.wait_for(
                lambda: self._snapshot.state is not PipelineState.PROCESSING,
                timeout=timeout,
            )
            if self._snapshot.state is PipelineState.COMPLETE:
                return self._snapshot
            return None

    def shutdown(self) -> None:
        """
        Reset, release the live image and refuse further submissions.

        Idempotent; safe to call from any thread.
        """
        with self._lock:
            if self._closed:
                return
            self.reset(reason="shutdown")
            self._closed = True
        self._log.info("pipeline", "controller_shutdown", {
            "live_uris": self._uris.live_count,
        })
        self._log.flush()

    def __enter__(self) -> "PipelineController":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

    # ── Internals ─────────────────────────────────────────────────────────────

    def _complete(self, generation: int) -> None:
        """Deferred step: synthesize and commit, unless superseded."""
        with self._lock:
            current = self._snapshot
            if generation != self._generation or current.state is not PipelineState.PROCESSING:
                self._log.debug("pipeline", "stale_completion_suppressed", {
                    "submission_id": generation,
                    "current_submission_id": self._generation,
                })
                return

            self._pending = None
            try:
                detection, reasoning = synthesize(
                    self._knowledge, rng=self._rng, config=self._config.synthesis
                )
            except Exception as exc:  # noqa: BLE001
                self._log.error("pipeline", "synthesis_exception", {
                    "submission_id": generation,
                    "error": str(exc),
                })
                self.reset(reason="synthesis_failed")
                return

            self._fsm.transition(PipelineState.COMPLETE, reason="synthesis_done")
            snapshot = PipelineSnapshot(
                state=PipelineState.COMPLETE,
                image=current.image,
                detection=detection,
                reasoning=reasoning,
                submission_id=generation,
            )
            self._swap(snapshot)

            self._log.perf(
                "pipeline",
                "synthesis_committed",
                (time.perf_counter() - self._submitted_at) * 1_000.0,
                {
                    "submission_id": generation,
                    "label": detection.label,
                    "confidence": round(detection.confidence, 4),
                    "action": reasoning.action.value,
                },
            )
            self.publish(ON_RESULT_READY, {"snapshot": snapshot})

    def _swap(self, snapshot: PipelineSnapshot) -> None:
        """Install *snapshot* and notify. Caller holds ``self._lock``."""
        self._snapshot = snapshot
        self._state_changed.notify_all()
        self.publish(ON_STATE_CHANGED, {"snapshot": snapshot})

    def _cancel_pending(self) -> bool:
        """Cancel the in-flight deferred synthesis, if any. Caller holds the lock."""
        task, self._pending = self._pending, None
        if task is None:
            return False
        cancelled = task.cancel()
        self._log.debug("pipeline", "pending_cancelled", {
            "task": task.name,
            "cancelled": cancelled,
        })
        return cancelled

    def _release_image(self, reason: str) -> bool:
        """Revoke the live handle's display URI. Caller holds the lock."""
        handle = self._snapshot.image
        if handle is None:
            return False
        released = self._uris.revoke(handle.display_uri)
        if released:
            self._log.info("pipeline", "image_released", {
                "handle_id": handle.handle_id,
                "reason": reason,
            })
        else:
            self._log.warn("pipeline", "image_release_duplicate", {
                "handle_id": handle.handle_id,
                "reason": reason,
            })
        return released

    def _on_fsm_transition(
        self,
        from_state: PipelineState,
        to_state: PipelineState,
        reason: str,
    ) -> None:
        """Wired to :class:`~core.fsm.PipelineFSM` as ``on_transition``."""
        self._log.info("pipeline", "fsm_transition", {
            "from": from_state.value,
            "to": to_state.value,
            "reason": reason,
        })
