"""
Rate Limiting
=============

Sliding-window limiter for stage calls to external collaborators.

Version: 0.1.0
"""

import asyncio
import time
from collections import deque
from collections.abc import Callable

from shared.logging import get_logger


logger = get_logger(__name__)


class SlidingWindowRateLimiter:
    """
    Allow at most `max_requests` acquisitions per `window_seconds`.

    Example:
        limiter = SlidingWindowRateLimiter(30, 60.0)
        await limiter.acquire()
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _purge(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    @property
    def in_window(self) -> int:
        self._purge(self._clock())
        return len(self._timestamps)

    def try_acquire(self) -> float:
        """
        Take a slot if one is free.

        Returns:
            0.0 on success, otherwise seconds until the oldest slot frees
        """
        now = self._clock()
        self._purge(now)
        if len(self._timestamps) < self.max_requests:
            self._timestamps.append(now)
            return 0.0
        return self.window_seconds - (now - self._timestamps[0])

    async def acquire(self) -> None:
        """Wait until a slot is free and take it."""
        while True:
            async with self._lock:
                wait = self.try_acquire()
            if wait <= 0:
                return
            logger.debug("rate_limit_wait", limiter=self.name, wait=round(wait, 3))
            await asyncio.sleep(wait)
