# Overview: Cancellable timers for the location capture and dashboard poll loops.

"""
Scheduling

Every periodic activity is owned by a TaskHandle so it can be cancelled
deterministically (logout, tracker stop, dashboard disconnect).

- ThreadScheduler: daemon threads; used by the running server
- ManualScheduler: simulated clock driven by advance(); used by tests

Callbacks run on the scheduler's thread (ThreadScheduler) or inside
advance() (ManualScheduler). A callback that raises is logged and the loop
keeps going.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from typing import Callable


logger = logging.getLogger(__name__)


class TaskHandle:
    """Handle for a pending one-shot or repeating task."""

    def __init__(self, name: str = "task"):
        self.name = name
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "pending"
        return f"<TaskHandle {self.name} {state}>"


class Scheduler:
    """Interface shared by the thread-backed and manual schedulers."""

    def call_later(self, delay: float, callback: Callable[[], None], *, name: str = "task") -> TaskHandle:
        raise NotImplementedError

    def call_every(
        self,
        interval: float,
        callback: Callable[[], None],
        *,
        first_delay: float | None = None,
        name: str = "task",
    ) -> TaskHandle:
        """Run `callback` every `interval` seconds; first run after `first_delay` (default: interval)."""
        raise NotImplementedError

    def monotonic(self) -> float:
        raise NotImplementedError

    def shutdown(self) -> None:
        pass


def _run_callback(handle: TaskHandle, callback: Callable[[], None]) -> None:
    try:
        callback()
    except Exception:
        logger.exception("Scheduled task %s failed", handle.name)


class ThreadScheduler(Scheduler):
    def __init__(self):
        self._handles: set[TaskHandle] = set()
        self._lock = threading.Lock()

    def _track(self, handle: TaskHandle) -> None:
        with self._lock:
            self._handles.add(handle)

    def _forget(self, handle: TaskHandle) -> None:
        with self._lock:
            self._handles.discard(handle)

    def call_later(self, delay, callback, *, name="task"):
        handle = TaskHandle(name)

        def _run() -> None:
            try:
                if not handle._cancelled.wait(max(0.0, delay)):
                    _run_callback(handle, callback)
            finally:
                self._forget(handle)

        self._track(handle)
        threading.Thread(target=_run, name=f"stockrun-{name}", daemon=True).start()
        return handle

    def call_every(self, interval, callback, *, first_delay=None, name="task"):
        handle = TaskHandle(name)
        delay = interval if first_delay is None else first_delay

        def _run() -> None:
            try:
                if handle._cancelled.wait(max(0.0, delay)):
                    return
                _run_callback(handle, callback)
                while not handle._cancelled.wait(interval):
                    _run_callback(handle, callback)
            finally:
                self._forget(handle)

        self._track(handle)
        threading.Thread(target=_run, name=f"stockrun-{name}", daemon=True).start()
        return handle

    def monotonic(self) -> float:
        return time.monotonic()

    def shutdown(self) -> None:
        with self._lock:
            handles = list(self._handles)
        for handle in handles:
            handle.cancel()


class ManualScheduler(Scheduler):
    """
    Deterministic scheduler for tests.

    Nothing runs until advance() moves the simulated clock; tasks due at or
    before the new time run in due order (ties in scheduling order).
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue: list[tuple[float, int, TaskHandle, Callable[[], None], float | None]] = []
        self._seq = itertools.count()

    def call_later(self, delay, callback, *, name="task"):
        handle = TaskHandle(name)
        heapq.heappush(self._queue, (self._now + max(0.0, delay), next(self._seq), handle, callback, None))
        return handle

    def call_every(self, interval, callback, *, first_delay=None, name="task"):
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = TaskHandle(name)
        delay = interval if first_delay is None else first_delay
        heapq.heappush(self._queue, (self._now + max(0.0, delay), next(self._seq), handle, callback, interval))
        return handle

    def monotonic(self) -> float:
        return self._now

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running due tasks. Returns how many callbacks ran."""
        target = self._now + seconds
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback, interval = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = due
            _run_callback(handle, callback)
            ran += 1
            if interval is not None and not handle.cancelled:
                heapq.heappush(self._queue, (due + interval, next(self._seq), handle, callback, interval))
        self._now = target
        return ran

    def pending(self) -> list[TaskHandle]:
        return [entry[2] for entry in sorted(self._queue) if not entry[2].cancelled]

    def shutdown(self) -> None:
        for entry in self._queue:
            entry[2].cancel()
        self._queue.clear()
