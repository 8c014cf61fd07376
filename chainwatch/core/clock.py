"""Injectable time source — wall clock, monotonic clock, sleep, and timers.

Components take a ``Clock`` instead of calling ``time``/``asyncio`` directly
so tests can drive cooldowns, windows and loops without real waiting.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Protocol


class TimerHandle(Protocol):
    """Anything with a ``cancel()`` — ``asyncio.TimerHandle`` satisfies this."""

    def cancel(self) -> None: ...


class Clock:
    """Real clock backed by ``time`` and the running asyncio loop."""

    def time(self) -> float:
        """Wall-clock seconds since the epoch."""
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Schedule *callback* after *delay* seconds on the running loop."""
        return asyncio.get_running_loop().call_later(delay, callback)


SYSTEM_CLOCK = Clock()
