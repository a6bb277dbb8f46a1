"""Sliding-window rate limiter for completion worker calls."""

import time
from collections import deque
from typing import Callable


class RateLimiter:
    """Allows at most ``max_calls`` acquisitions per ``window`` seconds.

    Not thread-safe; owned by the scheduler's coordinator.
    """

    def __init__(
        self,
        max_calls: int = 60,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")
        self.max_calls = max_calls
        self.window = window
        self._clock = clock
        self._calls: deque[float] = deque()

    def _evict(self, now: float) -> None:
        while self._calls and self._calls[0] <= now - self.window:
            self._calls.popleft()

    def try_acquire(self) -> bool:
        """Record a call and return True if the window has room."""
        now = self._clock()
        self._evict(now)
        if len(self._calls) >= self.max_calls:
            return False
        self._calls.append(now)
        return True

    def time_until_available(self) -> float:
        """Seconds until the next call would be allowed (0 if allowed now)."""
        now = self._clock()
        self._evict(now)
        if len(self._calls) < self.max_calls:
            return 0.0
        return max(0.0, self._calls[0] + self.window - now)

    @property
    def in_window(self) -> int:
        self._evict(self._clock())
        return len(self._calls)
