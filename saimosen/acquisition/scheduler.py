"""Fixed-delay scheduling for acquisition cycles and device timers."""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Protocol

logger = logging.getLogger(__name__)

Task = Callable[[], None]


class CancellableHandle(Protocol):
    def cancel(self) -> bool:  # pragma: no cover - protocol signature
        ...

    @property
    def cancelled(self) -> bool:  # pragma: no cover - protocol signature
        ...


class Scheduler(Protocol):
    """Timer primitive drivers use to run their periodic work."""

    def schedule_fixed_delay(self, task: Task, initial_delay_s: float, period_s: float) -> CancellableHandle:  # pragma: no cover - protocol signature
        ...

    def schedule_once(self, task: Task, delay_s: float) -> CancellableHandle:  # pragma: no cover - protocol signature
        ...


class ScheduledHandle:
    """Cancellable handle for a task running on its own timer thread."""

    def __init__(self, task: Task, initial_delay_s: float, period_s: Optional[float], name: str) -> None:
        if initial_delay_s < 0:
            raise ValueError("initial_delay_s must not be negative")
        if period_s is not None and period_s <= 0:
            raise ValueError("period_s must be positive")
        self._task = task
        self._initial_delay_s = initial_delay_s
        self._period_s = period_s
        self._stop = threading.Event()
        self._finished = threading.Event()
        self._runs = 0
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    @property
    def runs(self) -> int:
        return self._runs

    @property
    def period_s(self) -> Optional[float]:
        return self._period_s

    def start(self) -> "ScheduledHandle":
        self._thread.start()
        return self

    def cancel(self) -> bool:
        """Stop future runs; a run already in progress is allowed to finish."""

        already = self._stop.is_set()
        self._stop.set()
        return not already and not self._finished.is_set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    def _run(self) -> None:
        try:
            if self._stop.wait(self._initial_delay_s):
                return
            while True:
                try:
                    self._task()
                except Exception:
                    # A failing task ends its schedule, like a fixed-delay executor does.
                    logger.exception("Scheduled task %s failed; no further runs", self._thread.name)
                    self._stop.set()
                    return
                self._runs += 1
                if self._period_s is None:
                    return
                if self._stop.wait(self._period_s):
                    return
        finally:
            self._finished.set()


class FixedDelayScheduler:
    """Runs each scheduled task on a daemon thread.

    The period is measured from the end of one run to the start of the next,
    so a slow cycle never overlaps the following one.
    """

    def __init__(self, name: str = "saimosen") -> None:
        self._name = name
        self._handles: List[ScheduledHandle] = []
        self._lock = threading.Lock()
        self._counter = 0

    def _next_name(self, kind: str) -> str:
        with self._lock:
            self._counter += 1
            return f"{self._name}-{kind}-{self._counter}"

    def _track(self, handle: ScheduledHandle) -> ScheduledHandle:
        with self._lock:
            self._handles = [entry for entry in self._handles if not entry.done]
            self._handles.append(handle)
        return handle.start()

    def schedule_fixed_delay(self, task: Task, initial_delay_s: float, period_s: float) -> ScheduledHandle:
        return self._track(ScheduledHandle(task, initial_delay_s, period_s, self._next_name("periodic")))

    def schedule_once(self, task: Task, delay_s: float) -> ScheduledHandle:
        return self._track(ScheduledHandle(task, delay_s, None, self._next_name("once")))

    def shutdown(self, wait: bool = True, timeout: float = 2.0) -> None:
        with self._lock:
            handles, self._handles = self._handles, []
        for handle in handles:
            handle.cancel()
        if wait:
            for handle in handles:
                handle.join(timeout)
