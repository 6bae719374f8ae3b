"""Time budgets for a trade.

A Budget is created once per trade and handed to every stage; each network
call is bounded by whatever is left of it.
"""

import asyncio
import time
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


class Budget:
    """Absolute deadline on the monotonic clock. ``None`` seconds means unbounded."""

    def __init__(self, seconds: Optional[float] = None):
        self.seconds = seconds
        self._deadline = None if seconds is None else time.monotonic() + seconds

    @classmethod
    def unbounded(cls) -> "Budget":
        return cls(None)

    def remaining(self) -> Optional[float]:
        """Seconds left (never negative), or None when unbounded."""
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def cap(self, limit: Optional[float]) -> Optional[float]:
        """The smaller of ``limit`` and the remaining budget."""
        remaining = self.remaining()
        if limit is None:
            return remaining
        if remaining is None:
            return limit
        return min(limit, remaining)

    async def run(self, awaitable: Awaitable[T], limit: Optional[float] = None) -> T:
        """Await within the budget. Raises asyncio.TimeoutError when it runs out."""
        timeout = self.cap(limit)
        if timeout is None:
            return await awaitable
        if timeout <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise asyncio.TimeoutError(f"{self!r} exhausted")
        return await asyncio.wait_for(awaitable, timeout=timeout)

    def __repr__(self) -> str:
        remaining = self.remaining()
        return f"Budget(remaining={'unbounded' if remaining is None else f'{remaining:.2f}s'})"
