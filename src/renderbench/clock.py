# Copyright (c) Syntropy Systems
"""Wall-clock sources for the single-threaded frame loop."""
from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Clock(Protocol):
    """Millisecond clock plus the two ways the drivers yield to the loop."""

    def now_ms(self) -> float:
        ...

    def epoch_origin_ms(self) -> float:
        ...

    async def sleep(self, ms: float) -> None:
        ...

    def call_later(self, ms: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class MonotonicClock:
    """Real time from time.perf_counter, delays on the running event loop."""

    def __init__(self) -> None:
        self._origin_epoch_ms = time.time() * 1000 - time.perf_counter() * 1000

    def now_ms(self) -> float:
        return time.perf_counter() * 1000

    def epoch_origin_ms(self) -> float:
        """Epoch milliseconds corresponding to now_ms() == 0."""
        return self._origin_epoch_ms

    async def sleep(self, ms: float) -> None:
        await asyncio.sleep(max(0.0, ms) / 1000)

    def call_later(self, ms: float, callback: Callable[[], None]) -> TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0.0, ms) / 1000, callback)


class VirtualTimer:
    """Pending callback on a SimulatedClock."""

    def __init__(self, deadline_ms: float, callback: Callable[[], None]) -> None:
        self.deadline_ms = deadline_ms
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class SimulatedClock:
    """Virtual time that only moves when the loop has nothing else to do.

    Sleeps and scheduled callbacks are kept on a heap ordered by deadline.
    After the loop has turned ``settle_rounds`` times since the last timer
    fired, time jumps to the earliest deadline and that one timer fires.
    Timers fire in deadline order, ties in scheduling order.
    """

    settle_rounds: int = 8

    def __init__(self, start_ms: float = 0.0, epoch_origin_ms: float = 0.0) -> None:
        self._now = start_ms
        self._epoch_origin = epoch_origin_ms
        self._timers: list[tuple[float, int, VirtualTimer]] = []
        self._seq = itertools.count()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pumping = False

    def now_ms(self) -> float:
        return self._now

    def epoch_origin_ms(self) -> float:
        return self._epoch_origin

    @property
    def pending(self) -> int:
        """Number of timers that have neither fired nor been cancelled."""
        return sum(1 for _, _, timer in self._timers if not timer.cancelled)

    def advance(self, ms: float) -> None:
        """Move virtual time forward without firing anything."""
        if ms < 0:
            msg = f"Cannot move a clock backwards ({ms} ms)"
            raise ValueError(msg)
        self._now += ms

    async def sleep(self, ms: float) -> None:
        if ms <= 0:
            await asyncio.sleep(0)
            return
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def wake() -> None:
            if not waiter.done():
                waiter.set_result(None)

        timer = self.call_later(ms, wake)
        try:
            await waiter
        finally:
            timer.cancel()

    def call_later(self, ms: float, callback: Callable[[], None]) -> VirtualTimer:
        timer = VirtualTimer(self._now + max(0.0, ms), callback)
        self._attach()
        heapq.heappush(self._timers, (timer.deadline_ms, next(self._seq), timer))
        self._wake()
        return timer

    def _attach(self) -> None:
        loop = asyncio.get_running_loop()
        if loop is not self._loop:
            # Timers never outlive the loop that set them.
            self._loop = loop
            self._timers.clear()
            self._pumping = False

    def _wake(self) -> None:
        if self._pumping or self._loop is None:
            return
        self._pumping = True
        self._loop.call_soon(self._pump, self.settle_rounds)

    def _pump(self, rounds: int) -> None:
        loop = self._loop
        if loop is None:
            return
        if rounds > 0:
            loop.call_soon(self._pump, rounds - 1)
            return

        self._pumping = False
        while self._timers and self._timers[0][2].cancelled:
            heapq.heappop(self._timers)
        if not self._timers:
            return

        deadline, _, timer = heapq.heappop(self._timers)
        self._now = max(self._now, deadline)
        try:
            timer.callback()
        finally:
            if self._timers:
                self._wake()
