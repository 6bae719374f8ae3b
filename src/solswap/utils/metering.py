"""Outbound API call accounting.

Counts calls per (service, endpoint) and optionally enforces a sliding-window
rate limit so callers queue for a free slot instead of exceeding third-party
quota.
"""

import asyncio
import logging
import time
from collections import Counter, deque
from typing import Optional

logger = logging.getLogger(__name__)


class ApiCallMeter:
    """Shared call counter and rate limiter.

    Example:
        await meter.acquire("raydium", "compute/swap-base-in")
        response = await client.get(...)
    """

    def __init__(
        self,
        calls_per_minute: Optional[int] = None,
        window_seconds: float = 60.0,
    ):
        """Initialize the meter.

        Args:
            calls_per_minute: Max calls inside the window (None = unlimited)
            window_seconds: Length of the sliding window
        """
        if calls_per_minute is not None and calls_per_minute <= 0:
            raise ValueError("calls_per_minute must be positive")
        self.calls_per_minute = calls_per_minute
        self.window_seconds = window_seconds
        self._counts: Counter = Counter()
        self._window: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self, service: str, endpoint: str) -> None:
        """Record a call, waiting for a free slot when rate limited."""
        while True:
            async with self._lock:
                wait = self._reserve()
                if wait == 0:
                    self._counts[(service, endpoint)] += 1
                    return
            logger.debug(f"Rate limit reached, {service}/{endpoint} waiting {wait:.2f}s")
            await asyncio.sleep(wait)

    def _reserve(self) -> float:
        if self.calls_per_minute is None:
            return 0
        now = time.monotonic()
        while self._window and now - self._window[0] >= self.window_seconds:
            self._window.popleft()
        if len(self._window) < self.calls_per_minute:
            self._window.append(now)
            return 0
        return max(self._window[0] + self.window_seconds - now, 0.001)

    def count(self, service: Optional[str] = None, endpoint: Optional[str] = None) -> int:
        """Total calls, optionally filtered by service and/or endpoint."""
        return sum(
            n
            for (svc, ep), n in self._counts.items()
            if (service is None or svc == service) and (endpoint is None or ep == endpoint)
        )

    def snapshot(self) -> dict[str, int]:
        """Counts keyed as ``service/endpoint``."""
        return {f"{svc}/{ep}": n for (svc, ep), n in sorted(self._counts.items())}

    def reset(self) -> None:
        self._counts.clear()
        self._window.clear()
