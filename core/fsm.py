"""
core/fsm.py — Validated state machine for the DriveSense pipeline.

Thread-safe FSM with an explicit transition map, per-state enter callbacks,
transition history (last 50), and an external on_transition hook.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from core.constants import PipelineState

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """
    Raised when a requested transition is not in the valid transition map.

    Args:
        from_state: State at the time of the illegal attempt.
        to_state: Requested target state.
        reason: Caller-supplied reason string.
    """

    def __init__(
        self,
        from_state: PipelineState,
        to_state: PipelineState,
        reason: str = "",
    ) -> None:
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        super().__init__(
            f"Invalid transition {from_state.value} → {to_state.value}"
            + (f" (reason: {reason})" if reason else "")
        )


# Valid transition map
# PROCESSING → PROCESSING is a resubmission that supersedes the pending one.
_VALID_TRANSITIONS: dict[PipelineState, list[PipelineState]] = {
    PipelineState.IDLE: [
        PipelineState.PROCESSING,
    ],
    PipelineState.PROCESSING: [
        PipelineState.PROCESSING,
        PipelineState.COMPLETE,
    ],
    PipelineState.COMPLETE: [
        PipelineState.PROCESSING,
    ],
}

_MAX_HISTORY = 50


class PipelineFSM:
    """
    Finite state machine tracking the pipeline lifecycle.

    Illegal transitions raise :class:`InvalidTransitionError` immediately;
    :meth:`reset` returns to IDLE from anywhere.

    Args:
        on_transition: Optional callback invoked after every successful
            transition with signature ``(from_state, to_state, reason)``.
    """

    def __init__(
        self,
        on_transition: Callable[[PipelineState, PipelineState, str], None] | None = None,
    ) -> None:
        self._state: PipelineState = PipelineState.IDLE
        self._lock = threading.Lock()
        self._history: list[dict] = []
        self._external_callback = on_transition
        self._last_transition: dict | None = None

        logger.debug("PipelineFSM initialised in state: %s", self._state.value)

    @property
    def current_state(self) -> PipelineState:
        """Return the current state (thread-safe read)."""
        with self._lock:
            return self._state

    def transition(self, new_state: PipelineState, reason: str = "") -> None:
        """
        Attempt a validated state transition.

        Args:
            new_state: Target state.
            reason: Human-readable reason recorded in history.

        Raises:
            InvalidTransitionError: If the transition is not in the valid map.
        """
        with self._lock:
            from_state = self._state
            if new_state not in _VALID_TRANSITIONS.get(from_state, []):
                raise InvalidTransitionError(from_state, new_state, reason)
            self._state = new_state
            self._record(from_state, new_state, reason)

        logger.info(
            "FSM: %s → %s%s",
            from_state.value,
            new_state.value,
            f" [{reason}]" if reason else "",
        )
        self._after_transition(from_state, new_state, reason)

    def reset(self, reason: str = "RESET") -> None:
        """
        Force the FSM back to IDLE unconditionally.

        Bypasses the transition map; resetting an IDLE machine is allowed
        and still recorded.
        """
        with self._lock:
            from_state = self._state
            self._state = PipelineState.IDLE
            self._record(from_state, PipelineState.IDLE, reason)

        logger.info("FSM: RESET from %s → IDLE", from_state.value)
        self._after_transition(from_state, PipelineState.IDLE, reason)

    def get_history(self) -> list[dict]:
        """
        Return a copy of the last (up to 50) transition records, oldest first.

        Each record has keys ``from``, ``to``, ``reason`` and ``timestamp``.
        """
        with self._lock:
            return list(self._history)

    def can_transition(self, target: PipelineState) -> bool:
        """Return True if ``target`` is reachable from the current state."""
        return target in _VALID_TRANSITIONS.get(self._state, [])

    # ── enter hooks, dispatched by name ───────────────────────

    def _on_enter_idle(self) -> None:
        logger.debug("FSM enter: IDLE — awaiting an image")

    def _on_enter_processing(self) -> None:
        logger.debug("FSM enter: PROCESSING — perception + reasoning simulated")

    def _on_enter_complete(self) -> None:
        logger.debug("FSM enter: COMPLETE — detection and reasoning available")

    # ── internals ─────────────────────────────────────────────

    def _record(self, from_state: PipelineState, to_state: PipelineState, reason: str) -> None:
        """Append a history record. Caller holds ``self._lock``."""
        record = {
            "from": from_state.value,
            "to": to_state.value,
            "reason": reason,
            "timestamp": time.time(),
        }
        self._history.append(record)
        if len(self._history) > _MAX_HISTORY:
            self._history.pop(0)
        self._last_transition = record

    def _after_transition(
        self, from_state: PipelineState, to_state: PipelineState, reason: str
    ) -> None:
        """Fire the enter hook and the external callback outside the lock."""
        method_name = f"_on_enter_{to_state.value.lower()}"
        method = getattr(self, method_name, None)
        if callable(method):
            try:
                method()
            except Exception as exc:  # noqa: BLE001
                logger.warning("on_enter callback %r raised: %s", method_name, exc)

        if self._external_callback is not None:
            try:
                self._external_callback(from_state, to_state, reason)
            except Exception as exc:  # noqa: BLE001
                logger.warning("FSM external callback raised: %s", exc)

    def __repr__(self) -> str:
        with self._lock:
            state_str = self._state.value
            if self._last_transition:
                last = f"{self._last_transition['from']}→{self._last_transition['to']}"
                if self._last_transition["reason"]:
                    last += f"[{self._last_transition['reason']}]"
            else:
                last = "none"
        return f"PipelineFSM(state={state_str}, last={last})"
