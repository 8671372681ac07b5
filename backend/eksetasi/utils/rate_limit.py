"""In-memory rate limiter used to throttle login and registration."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque


class InMemoryRateLimiter:
    """Sliding-window limiter per key (client address + endpoint)."""

    def __init__(self, clock=time.monotonic):
        self._hits = defaultdict(deque)
        self._lock = threading.Lock()
        self._clock = clock

    def allow(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, int]:
        """Record a hit for `key` and return `(allowed, retry_after_seconds)`."""
        if max_requests <= 0:
            return True, 0
        now = self._clock()
        with self._lock:
            q = self._hits[key]
            cutoff = now - window_seconds
            while q and q[0] <= cutoff:
                q.popleft()
            if len(q) >= max_requests:
                return False, max(1, int(window_seconds - (now - q[0])))
            q.append(now)
        return True, 0

    def reset(self, key: str | None = None) -> None:
        """Forget hits for one key, or for every key."""
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
