"""In-memory per-admin rate limiter for provisioning requests."""

from __future__ import annotations

import math
import time
from collections import deque
from threading import Lock
from typing import Deque


class SlidingWindowRateLimiter:
    """Thread-safe sliding window limiter local to one process.

    Keys whose window has emptied are dropped, and idle keys are swept once
    per window, so memory is bounded by the keys active in the last window.
    """

    def __init__(self, max_requests: int, window_seconds: int) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._events: dict[str, Deque[float]] = {}
        self._lock = Lock()
        self._last_sweep = time.time()

    def _prune(self, key: str, now: float) -> Deque[float] | None:
        """Drop expired timestamps for ``key``; forget the key once none remain."""
        queue = self._events.get(key)
        if queue is None:
            return None
        while queue and now - queue[0] > self._window:
            queue.popleft()
        if not queue:
            del self._events[key]
            return None
        return queue

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self._window:
            return
        self._last_sweep = now
        for key in list(self._events):
            self._prune(key, now)

    def allow(self, key: str) -> bool:
        """Return ``True`` and count the request when ``key`` is under its limit."""
        now = time.time()
        with self._lock:
            self._sweep(now)
            queue = self._prune(key, now)
            if queue is not None and len(queue) >= self._max_requests:
                return False
            if queue is None:
                queue = self._events[key] = deque()
            queue.append(now)
            return True

    def retry_after(self, key: str) -> int:
        """Seconds until ``key`` may issue another request (at least 1)."""
        now = time.time()
        with self._lock:
            queue = self._prune(key, now)
            if queue is None or len(queue) < self._max_requests:
                return 1
            return max(1, math.ceil(self._window - (now - queue[0])))

    def __len__(self) -> int:
        """Number of keys currently tracked."""
        with self._lock:
            return len(self._events)
