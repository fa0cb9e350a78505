"""Fixed-interval poll scheduler.

Drives one callback (a session's reconciliation) on a fixed interval
until cancelled or until its stop condition holds.  Once stopped it
never fires again; a new scheduler is needed to poll again.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from androidtv2mqtt._clock import ClockPort, SystemClock

logger = logging.getLogger(__name__)


class PollScheduler:
    """Fire *callback* every *interval* seconds.

    ``cancel()`` wakes a pending sleep and prevents further firings.  A
    callback that is already running is allowed to finish.

    Args:
        callback: Coroutine function invoked on every tick.  Its
            exceptions are logged; they do not end the loop.
        interval: Seconds between the end of one firing and the next.
        clock: Clock providing ``sleep``.
        should_stop: Checked before and after every firing; when it
            returns True the scheduler stops for good.
        name: Used in log messages.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[object]],
        *,
        interval: float,
        clock: ClockPort | None = None,
        should_stop: Callable[[], bool] | None = None,
        name: str = "poll",
    ) -> None:
        if interval <= 0:
            msg = f"Poll interval must be positive, got {interval}"
            raise ValueError(msg)
        self._callback = callback
        self._interval = interval
        self._clock = clock if clock is not None else SystemClock()
        self._should_stop = should_stop if should_stop is not None else (lambda: False)
        self._name = name
        self._cancelled = asyncio.Event()
        self._fire_count = 0
        self._running = False

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def fire_count(self) -> int:
        """Number of times the callback has been started."""
        return self._fire_count

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def running(self) -> bool:
        return self._running

    def cancel(self) -> None:
        """Stop future firings.  Idempotent."""
        self._cancelled.set()

    async def run(self) -> None:
        """Run until cancelled or until the stop condition holds."""
        self._running = True
        try:
            while not self.cancelled:
                await self._sleep(self._interval)
                if self.cancelled or self._stopping():
                    break
                self._fire_count += 1
                try:
                    await self._callback()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("%s: poll callback failed", self._name)
                if self._stopping():
                    break
        finally:
            self._running = False

    def _stopping(self) -> bool:
        if self._should_stop():
            logger.info(
                "%s: stopping after %d polls, stop condition reached",
                self._name,
                self._fire_count,
            )
            self._cancelled.set()
            return True
        return False

    async def _sleep(self, seconds: float) -> None:
        """Sleep that returns early when :meth:`cancel` is called."""
        sleep_task = asyncio.ensure_future(self._clock.sleep(seconds))
        cancel_task = asyncio.ensure_future(self._cancelled.wait())

        _, pending = await asyncio.wait(
            {sleep_task, cancel_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
