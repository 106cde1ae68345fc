"""Timers used by the client-side reconciler.

``AsyncioScheduler`` runs on the event loop; ``ManualScheduler`` only moves when
told to, so guard windows and debounces can be driven step by step.
"""
import asyncio
import heapq
import itertools
import time
from typing import Callable, List, Optional, Protocol, Tuple


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now(self) -> float:
        """Wall clock, epoch seconds."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def now(self) -> float:
        return time.time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class ManualTimer:
    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start
        self._counter = itertools.count()
        self._timers: List[Tuple[float, int, ManualTimer]] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self._now + max(0.0, delay), callback)
        heapq.heappush(self._timers, (timer.when, next(self._counter), timer))
        return timer

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self._now + seconds
        while self._timers and self._timers[0][0] <= target:
            when, _, timer = heapq.heappop(self._timers)
            self._now = when
            if not timer.cancelled:
                timer.callback()
        self._now = target

    @property
    def pending(self) -> int:
        return sum(1 for _, _, timer in self._timers if not timer.cancelled)
