"""Clock port and system adapter.

Provides ClockPort (Protocol) and SystemClock.  The poll scheduler and
the health reporter depend on the port only, so tests can inject a
deterministic fake that advances time without waiting.

**Why monotonic?** time.monotonic() is immune to NTP adjustments and
manual system-clock changes, making it suitable for measuring elapsed
durations. The epoch is arbitrary — only *differences* between now()
calls are meaningful (PEP 418).
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Monotonic clock with an awaitable sleep.

    ``now()`` measures elapsed time (uptime, poll timing).  ``sleep()``
    suspends the calling task; the poll scheduler waits on it between
    reconciliation cycles.
    """

    def now(self) -> float:
        """Return monotonic time in seconds.

        Returns:
            A float representing seconds from an arbitrary epoch.
            Only the *difference* between two calls is meaningful.
        """
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for *seconds*."""
        ...


class SystemClock:
    """Production clock wrapping ``time.monotonic()`` and ``asyncio.sleep``.

    Satisfies :class:`ClockPort` via structural subtyping — no
    base-class inheritance required (PEP 544).
    """

    def now(self) -> float:
        """Return monotonic time in seconds."""
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        """Sleep on the running event loop."""
        await asyncio.sleep(seconds)
