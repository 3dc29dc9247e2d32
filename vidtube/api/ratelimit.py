from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable


class SlidingWindowLimiter:
    """Per-key sliding-window request limiter (in-process, single instance).

    Keys whose requests have all left the window are dropped, at most once per
    window, so memory tracks recently active viewers only.
    """

    def __init__(
        self,
        *,
        max_requests: int,
        window_s: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = int(max_requests)
        self.window_s = float(window_s)
        self._clock = clock
        self._buckets: dict[str, deque[float]] = {}
        self._next_sweep = clock() + self.window_s
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def _sweep(self, cutoff: float) -> None:
        idle = [key for key, bucket in self._buckets.items() if not bucket or bucket[-1] <= cutoff]
        for key in idle:
            del self._buckets[key]

    def allow(self, key: str) -> bool:
        now_ts = self._clock()
        cutoff = now_ts - self.window_s
        with self._lock:
            if now_ts >= self._next_sweep:
                self._sweep(cutoff)
                self._next_sweep = now_ts + self.window_s

            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = deque()
                self._buckets[key] = bucket

            while bucket and bucket[0] <= cutoff:
                bucket.popleft()

            if len(bucket) >= self.max_requests:
                return False

            bucket.append(now_ts)
            return True

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
