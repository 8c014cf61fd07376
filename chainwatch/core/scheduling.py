"""PeriodicTask — cancellable background loop with an in-flight guard."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from chainwatch.core.clock import SYSTEM_CLOCK, Clock

logger = structlog.stdlib.get_logger()


class PeriodicTask:
    """Runs an async callable every ``interval_secs`` until stopped.

    A pass never overlaps with itself: ``run_once()`` called while a pass is
    in flight returns ``False`` without queuing another run.  ``stop()``
    cancels the sleeping loop but waits for an in-flight pass to finish.

    Usage::

        task = PeriodicTask("ledger_poll", poller.poll_once, interval_secs=5)
        await task.start()
        ...
        await task.stop()
    """

    def __init__(
        self,
        name: str,
        fn: Callable[[], Awaitable[object]],
        interval_secs: float,
        clock: Clock | None = None,
        run_immediately: bool = True,
    ) -> None:
        self._name = name
        self._fn = fn
        self._interval_secs = interval_secs
        self._clock = clock or SYSTEM_CLOCK
        self._run_immediately = run_immediately
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._in_flight: asyncio.Task[object] | None = None
        self._run_count = 0
        self._error_count = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    @property
    def run_count(self) -> int:
        return self._run_count

    @property
    def error_count(self) -> int:
        return self._error_count

    async def start(self) -> None:
        """Start the background loop. Idempotent."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=self._name)
        logger.debug("periodic_task_started", task=self._name, interval_secs=self._interval_secs)

    async def stop(self) -> None:
        """Cancel the loop and await any pass that is still in flight."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        pending = self._in_flight
        if pending is not None and not pending.done():
            await asyncio.wait({pending})
            if not pending.cancelled() and pending.exception() is not None:
                logger.error(
                    "periodic_task_error_on_stop",
                    task=self._name,
                    error=str(pending.exception()),
                )
        self._in_flight = None
        logger.debug("periodic_task_stopped", task=self._name, runs=self._run_count)

    async def run_once(self) -> bool:
        """Run one pass now. Returns False if a pass was already in flight."""
        if self.in_flight:
            logger.debug("periodic_task_skipped", task=self._name)
            return False
        # Shielded so that cancelling the loop never aborts a pass midway.
        self._in_flight = asyncio.ensure_future(self._fn())
        try:
            await asyncio.shield(self._in_flight)
            self._run_count += 1
        except Exception:
            self._error_count += 1
            logger.exception(
                "periodic_task_error",
                task=self._name,
                error_count=self._error_count,
            )
        return True

    async def _loop(self) -> None:
        if not self._run_immediately:
            await self._clock.sleep(self._interval_secs)
        while self._running:
            await self.run_once()
            await self._clock.sleep(self._interval_secs)
