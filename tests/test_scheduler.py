"""
tests/test_scheduler.py — Deferred task substrates.
"""

from __future__ import annotations

import threading
import unittest
from typing import Callable

from pipeline.scheduler import DeferredTask, ManualScheduler, ThreadingScheduler


class TestDeferredTask:

    def test_runs_once(self) -> None:
        calls: list[int] = []
        task = DeferredTask(lambda: calls.append(1), 0.0)
        task.run()
        task.run()
        assert calls == [1]
        assert task.done
        assert task.cancel() is False

    def test_cancel_before_run(self) -> None:
        calls: list[int] = []
        task = DeferredTask(lambda: calls.append(1), 0.0, name="t")
        assert task.cancel() is True
        assert task.cancel() is False
        task.run()
        assert calls == []
        assert task.cancelled and task.done

    def test_exception_is_contained(self) -> None:
        def boom() -> None:
            raise RuntimeError("boom")

        task = DeferredTask(boom, 0.0, name="boom")
        task.run()
        assert task.done


class TestManualScheduler(unittest.TestCase):
    """Virtual clock ordering and cancellation."""

    def setUp(self) -> None:
        self.sched = ManualScheduler()
        self.calls: list[str] = []

    def _append(self, tag: str) -> Callable[[], None]:
        return lambda: self.calls.append(tag)

    def test_nothing_runs_until_advanced(self) -> None:
        self.sched.call_later(1.0, self._append("a"))
        self.assertEqual(self.calls, [])
        self.assertEqual(self.sched.pending, 1)
        self.assertEqual(self.sched.advance(0.5), 0)
        self.assertEqual(self.sched.advance(0.5), 1)
        self.assertEqual(self.calls, ["a"])
        self.assertAlmostEqual(self.sched.now, 1.0)

    def test_due_order_with_ties(self) -> None:
        self.sched.call_later(2.0, self._append("late"))
        self.sched.call_later(1.0, self._append("first"))
        self.sched.call_later(1.0, self._append("second"))
        self.assertEqual(self.sched.advance(5.0), 3)
        self.assertEqual(self.calls, ["first", "second", "late"])

    def test_cancelled_tasks_skipped(self) -> None:
        task = self.sched.call_later(1.0, self._append("x"))
        task.cancel()
        self.assertEqual(self.sched.pending, 0)
        self.assertEqual(self.sched.advance(2.0), 0)
        self.assertEqual(self.calls, [])

    def test_task_scheduled_from_callback(self) -> None:
        def chain() -> None:
            self.calls.append("outer")
            self.sched.call_later(0.5, self._append("inner"))

        self.sched.call_later(1.0, chain)
        self.sched.advance(2.0)
        self.assertEqual(self.calls, ["outer", "inner"])

    def test_run_pending(self) -> None:
        self.assertEqual(self.sched.run_pending(), 0)
        self.sched.call_later(3.0, self._append("a"))
        self.sched.call_later(7.0, self._append("b"))
        self.assertEqual(self.sched.run_pending(), 2)
        self.assertAlmostEqual(self.sched.now, 7.0)

    def test_negative_advance_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.sched.advance(-1.0)


class TestThreadingScheduler:

    def test_fires_on_timer_thread(self) -> None:
        fired = threading.Event()
        task = ThreadingScheduler().call_later(0.01, fired.set, name="probe")
        assert fired.wait(2.0)
        assert task.wait(2.0)
        assert not task.cancelled

    def test_cancel_prevents_run(self) -> None:
        fired = threading.Event()
        task = ThreadingScheduler().call_later(0.5, fired.set)
        assert task.cancel() is True
        assert not fired.wait(0.8)
        assert task.done
