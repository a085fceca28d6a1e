"""Clocks and a cancellable task scheduler driven by them."""

from __future__ import annotations

import heapq
import itertools
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in the local timezone."""

    def now(self) -> datetime:
        return datetime.now()


class VirtualClock:
    """A clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = start or datetime(2024, 1, 1, 9, 0, 0)

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta | float) -> datetime:
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        if delta < timedelta(0):
            raise ValueError("Cannot move a virtual clock backwards.")
        self._now += delta
        return self._now

    def set(self, value: datetime) -> None:
        if value < self._now:
            raise ValueError("Cannot move a virtual clock backwards.")
        self._now = value


class ScheduledTask:
    """Handle returned by the scheduler; ``cancel()`` is idempotent."""

    __slots__ = ("due", "callback", "args", "interval", "name", "_cancelled")

    def __init__(
        self,
        due: datetime,
        callback: Callable[..., Any],
        args: tuple[Any, ...],
        interval: Optional[timedelta],
        name: str,
    ) -> None:
        self.due = due
        self.callback = callback
        self.args = args
        self.interval = interval
        self.name = name
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "pending"
        return f"<ScheduledTask {self.name} due={self.due.isoformat()} {state}>"


class Scheduler:
    """Runs callbacks at clock times; the owner calls ``run_pending`` to drive it.

    Nothing runs on a background thread. With a :class:`VirtualClock`,
    :meth:`advance` steps the clock through every due task in order.
    """

    def __init__(self, clock: Clock) -> None:
        self.clock = clock
        self._queue: list[tuple[datetime, int, ScheduledTask]] = []
        self._counter = itertools.count()

    def call_later(
        self, delay: timedelta, callback: Callable[..., Any], *args: Any, name: str = ""
    ) -> ScheduledTask:
        task = ScheduledTask(
            self.clock.now() + delay, callback, args, None, name or callback.__name__
        )
        self._push(task)
        return task

    def call_every(
        self, interval: timedelta, callback: Callable[..., Any], *args: Any, name: str = ""
    ) -> ScheduledTask:
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        task = ScheduledTask(
            self.clock.now() + interval, callback, args, interval, name or callback.__name__
        )
        self._push(task)
        return task

    def run_pending(self) -> int:
        """Run every task due at the current clock time. Returns the count run."""
        ran = 0
        now = self.clock.now()
        while self._queue and self._queue[0][0] <= now:
            _, _, task = heapq.heappop(self._queue)
            if task.cancelled:
                continue
            self._run(task)
            ran += 1
        return ran

    def advance(self, delta: timedelta | float) -> int:
        """Move a virtual clock forward, firing tasks at their own due times."""
        clock = self.clock
        if not isinstance(clock, VirtualClock):
            raise TypeError("advance() requires a VirtualClock")
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        target = clock.now() + delta
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, task = heapq.heappop(self._queue)
            if task.cancelled:
                continue
            if due > clock.now():
                clock.set(due)
            self._run(task)
            ran += 1
        clock.set(target)
        return ran

    def seconds_until_next(self) -> Optional[float]:
        self._drop_cancelled_head()
        if not self._queue:
            return None
        delta = (self._queue[0][0] - self.clock.now()).total_seconds()
        return max(delta, 0.0)

    def pending(self) -> list[ScheduledTask]:
        return sorted(
            (task for _, _, task in self._queue if not task.cancelled),
            key=lambda task: task.due,
        )

    def _push(self, task: ScheduledTask) -> None:
        heapq.heappush(self._queue, (task.due, next(self._counter), task))

    def _drop_cancelled_head(self) -> None:
        while self._queue and self._queue[0][2].cancelled:
            heapq.heappop(self._queue)

    def _run(self, task: ScheduledTask) -> None:
        if task.interval is not None:
            next_due = task.due + task.interval
            now = self.clock.now()
            if next_due <= now:
                # Skip missed periods instead of firing a burst.
                next_due = now + task.interval
            task.due = next_due
            self._push(task)
        try:
            task.callback(*task.args)
        except Exception:
            logger.exception("Scheduled task %s failed.", task.name)
