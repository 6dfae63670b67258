"""
Fixed-window rate limiter keyed by caller identity.

One instance is created per service container and handed to the routes that
need it, so tests can build their own with a fake clock.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from agentmarket.errors import RateLimitedError


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float


class FixedWindowRateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

    def check(self, key: str) -> RateLimitResult:
        now = self.clock()
        with self._lock:
            start, count = self._windows.get(key, (now, 0))
            if now - start >= self.window_seconds:
                start, count = now, 0
            reset_at = start + self.window_seconds
            if count >= self.max_requests:
                self._windows[key] = (start, count)
                return RateLimitResult(False, 0, reset_at)
            count += 1
            self._windows[key] = (start, count)
            if len(self._windows) > 10_000:
                self._purge(now)
            return RateLimitResult(True, self.max_requests - count, reset_at)

    def hit(self, key: str) -> RateLimitResult:
        """Like check(), but raises RateLimitedError when the window is full."""
        result = self.check(key)
        if not result.allowed:
            retry_after = max(0.0, result.reset_at - self.clock())
            raise RateLimitedError(f"too many requests; retry in {retry_after:.0f}s", retry_after=retry_after)
        return result

    def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def _purge(self, now: float) -> None:
        expired = [k for k, (start, _) in self._windows.items() if now - start >= self.window_seconds]
        for k in expired:
            del self._windows[k]
