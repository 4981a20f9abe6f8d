"""
pipeline/scheduler.py — Cancellable deferred tasks.

The controller never sleeps: it asks a scheduler to run a callback after a
delay and keeps the returned :class:`DeferredTask` so the callback can be
cancelled when a newer submission or a reset supersedes it.

Two substrates share the ``call_later(delay_s, fn)`` interface:

* :class:`ThreadingScheduler` — daemon ``threading.Timer`` threads.
* :class:`ManualScheduler`    — virtual clock advanced explicitly; due
  callbacks run on the thread calling :meth:`ManualScheduler.advance`.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class DeferredTask:
    """
    Handle for one scheduled callback.

    :meth:`cancel` before the callback starts guarantees it never runs.
    Cancelling after it ran is a no-op returning False.
    """

    def __init__(self, fn: Callable[[], None], delay_s: float, name: str = "") -> None:
        self._fn = fn
        self.delay_s = delay_s
        self.name = name
        self._lock = threading.Lock()
        self._cancelled = False
        self._started = False
        self._done = threading.Event()
        self._on_cancel: Optional[Callable[[], None]] = None

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    @property
    def done(self) -> bool:
        """True once the callback has finished (or the task was cancelled)."""
        return self._done.is_set()

    def cancel(self) -> bool:
        """Prevent the callback from running. Returns False if it already started."""
        with self._lock:
            if self._started or self._cancelled:
                return False
            self._cancelled = True
            hook = self._on_cancel
        self._done.set()
        if hook is not None:
            hook()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the task finished or was cancelled."""
        return self._done.wait(timeout)

    def run(self) -> None:
        """Run the callback unless cancelled. Called by the owning scheduler."""
        with self._lock:
            if self._cancelled or self._started:
                return
            self._started = True
        try:
            self._fn()
        except Exception:  # noqa: BLE001
            logger.exception("Deferred task %r raised", self.name or self._fn)
        finally:
            self._done.set()

    def __repr__(self) -> str:
        status = "cancelled" if self.cancelled else ("done" if self.done else "pending")
        return f"DeferredTask(name={self.name!r}, delay_s={self.delay_s}, {status})"


class Scheduler(Protocol):
    """Anything that can run a callback later and hand back a cancellable task."""

    def call_later(self, delay_s: float, fn: Callable[[], None], name: str = "") -> DeferredTask:
        ...


class ThreadingScheduler:
    """Runs each task on its own daemon ``threading.Timer``."""

    def call_later(self, delay_s: float, fn: Callable[[], None], name: str = "") -> DeferredTask:
        task = DeferredTask(fn, delay_s, name=name)
        timer = threading.Timer(delay_s, task.run)
        timer.daemon = True
        if name:
            timer.name = name
        task._on_cancel = timer.cancel
        timer.start()
        return task


class ManualScheduler:
    """
    Scheduler driven by a virtual clock.

    Nothing runs until :meth:`advance` (or :meth:`run_pending`) is called;
    tasks then fire in due-time order, ties broken by scheduling order.

    Example::

        sched = ManualScheduler()
        ctrl = PipelineController(scheduler=sched)
        ctrl.submit(png_bytes)
        sched.advance(2.2)   # deferred synthesis commits here
    """

    def __init__(self) -> None:
        self._now = 0.0
        self._lock = threading.Lock()
        self._queue: list[tuple[float, int, DeferredTask]] = []
        self._seq = itertools.count()

    @property
    def now(self) -> float:
        with self._lock:
            return self._now

    @property
    def pending(self) -> int:
        """Number of scheduled tasks that are neither run nor cancelled."""
        with self._lock:
            return sum(1 for _, _, task in self._queue if not task.cancelled)

    def call_later(self, delay_s: float, fn: Callable[[], None], name: str = "") -> DeferredTask:
        task = DeferredTask(fn, delay_s, name=name)
        with self._lock:
            heapq.heappush(self._queue, (self._now + delay_s, next(self._seq), task))
        return task

    def advance(self, seconds: float) -> int:
        """
        Move the clock forward by *seconds*, running every task that falls due.

        Returns:
            Number of tasks whose callbacks ran.
        """
        if seconds < 0:
            raise ValueError(f"Cannot move the clock backwards ({seconds})")
        with self._lock:
            target = self._now + seconds
        ran = 0
        while True:
            with self._lock:
                if not self._queue or self._queue[0][0] > target:
                    self._now = target
                    return ran
                due, _, task = heapq.heappop(self._queue)
                self._now = max(self._now, due)
            if not task.cancelled:
                task.run()
                ran += 1

    def run_pending(self) -> int:
        """Advance exactly to the last scheduled due time and run everything."""
        with self._lock:
            if not self._queue:
                return 0
            horizon = max(due for due, _, _ in self._queue) - self._now
        return self.advance(max(horizon, 0.0))
