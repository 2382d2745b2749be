"""Injectable time sources."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, List


Sleeper = Callable[[float], Awaitable[None]]


class Clock:
    """Wall clock in epoch seconds plus a monotonic timer for latency."""

    def now(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()


class ManualClock(Clock):
    """Clock that only moves when told to. Used for deterministic cooldowns."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def monotonic(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        self._now += max(0.0, float(seconds))
        return self._now


async def real_sleep(seconds: float) -> None:
    await asyncio.sleep(max(0.0, float(seconds)))


class RecordingSleeper:
    """Sleeper that records requested delays and returns immediately."""

    def __init__(self, clock: ManualClock | None = None) -> None:
        self.delays: List[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.delays.append(float(seconds))
        if self._clock is not None:
            self._clock.advance(seconds)
