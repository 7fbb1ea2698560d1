"""
Deferred callbacks for delayed health events.

The event manager only needs three things from a scheduler: the current
time, a way to run a callback after a delay, and a way to cancel it.

- `LoopScheduler` runs callbacks on the asyncio event loop that also
  serves HTTP requests, so a firing timer never interleaves with an
  ingestion in progress.
- `VirtualScheduler` keeps its own clock. Nothing fires until `advance()`
  is called, which makes delay logic deterministic in tests and lets the
  offline replay tool run without waiting.
"""

import asyncio
import heapq
import itertools
import time
from typing import Any, Callable, List, Optional, Protocol, Tuple


class Scheduler(Protocol):
    def now_ms(self) -> int: ...

    def schedule_after(self, delay_seconds: float, callback: Callable[[], None]) -> Any: ...

    def cancel(self, handle: Any) -> None: ...


class LoopScheduler:
    """Wall clock + `loop.call_later`."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def schedule_after(self, delay_seconds: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(max(0.0, delay_seconds), callback)

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()


class VirtualHandle:
    __slots__ = ("deadline_ms", "callback", "cancelled")

    def __init__(self, deadline_ms: int, callback: Callable[[], None]):
        self.deadline_ms = deadline_ms
        self.callback = callback
        self.cancelled = False


class VirtualScheduler:
    """Manually advanced clock, in epoch milliseconds."""

    def __init__(self, start_ms: int = 0):
        self._now = start_ms
        self._queue: List[Tuple[int, int, VirtualHandle]] = []
        self._seq = itertools.count()

    def now_ms(self) -> int:
        return self._now

    def schedule_after(self, delay_seconds: float, callback: Callable[[], None]) -> VirtualHandle:
        deadline = self._now + max(0, int(round(delay_seconds * 1000)))
        handle = VirtualHandle(deadline, callback)
        heapq.heappush(self._queue, (deadline, next(self._seq), handle))
        return handle

    def cancel(self, handle: VirtualHandle) -> None:
        handle.cancelled = True

    def pending(self) -> int:
        return sum(1 for _, _, handle in self._queue if not handle.cancelled)

    def advance(self, seconds: float = 0) -> None:
        """Move the clock forward, firing every callback that falls due."""

        target = self._now + int(round(seconds * 1000))
        while self._queue and self._queue[0][0] <= target:
            deadline, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, deadline)
            handle.cancelled = True
            handle.callback()
        self._now = target

    def advance_minutes(self, minutes: float) -> None:
        self.advance(minutes * 60)
