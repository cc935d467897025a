"""Deduplicating, rate-limited work queue for resource keys.

Semantics follow the client-go workqueue:
 - a key that is already waiting is not queued twice (dirty set)
 - a key being processed is never handed to a second worker; re-adds while
   in flight are parked and released by done()
 - add_rate_limited() requeues after a per-key backoff, forget() resets it
"""
from __future__ import annotations

import heapq
import time
from collections import deque
from threading import Condition, Lock, Thread
from typing import Callable

from .models import ResourceKey


class RateLimiter:
    def when(self, item: ResourceKey) -> float:
        """Return how long (seconds) item should wait before it is requeued."""
        raise NotImplementedError

    def forget(self, item: ResourceKey) -> None:
        raise NotImplementedError

    def num_requeues(self, item: ResourceKey) -> int:
        raise NotImplementedError


class ItemExponentialFailureRateLimiter(RateLimiter):
    """base_delay * 2^failures per item, capped at max_delay."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._lock = Lock()
        self._failures: dict[ResourceKey, int] = {}

    def when(self, item: ResourceKey) -> float:
        with self._lock:
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1
        # Avoid float overflow for very large exponents.
        if exp > 64:
            return self.max_delay
        return min(self.base_delay * (2**exp), self.max_delay)

    def num_requeues(self, item: ResourceKey) -> int:
        with self._lock:
            return self._failures.get(item, 0)

    def forget(self, item: ResourceKey) -> None:
        with self._lock:
            self._failures.pop(item, None)


class BucketRateLimiter(RateLimiter):
    """Overall token bucket shared by every key; it does not track items."""

    def __init__(self, qps: float = 10.0, burst: int = 100, clock: Callable[[], float] = time.monotonic):
        self.qps = float(qps)
        self.burst = max(1, int(burst))
        self._clock = clock
        self._lock = Lock()
        self._tokens = float(self.burst)
        self._last = clock()

    def when(self, item: ResourceKey) -> float:
        with self._lock:
            now = self._clock()
            self._tokens = min(float(self.burst), self._tokens + (now - self._last) * self.qps)
            self._last = now
            self._tokens -= 1.0
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.qps

    def num_requeues(self, item: ResourceKey) -> int:
        return 0

    def forget(self, item: ResourceKey) -> None:
        return None


class MaxOfRateLimiter(RateLimiter):
    """Uses the longest delay proposed by any of its limiters."""

    def __init__(self, *limiters: RateLimiter):
        if not limiters:
            raise ValueError("MaxOfRateLimiter needs at least one limiter")
        self.limiters = limiters

    def when(self, item: ResourceKey) -> float:
        return max(lim.when(item) for lim in self.limiters)

    def num_requeues(self, item: ResourceKey) -> int:
        return max(lim.num_requeues(item) for lim in self.limiters)

    def forget(self, item: ResourceKey) -> None:
        for lim in self.limiters:
            lim.forget(item)


def default_controller_rate_limiter() -> RateLimiter:
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(base_delay=0.005, max_delay=1000.0),
        BucketRateLimiter(qps=10, burst=100),
    )


class RateLimitingQueue:
    def __init__(self, rate_limiter: RateLimiter | None = None, clock: Callable[[], float] = time.monotonic):
        self.rate_limiter = rate_limiter or default_controller_rate_limiter()
        self._clock = clock
        self._cond = Condition(Lock())
        self._queue: deque[ResourceKey] = deque()
        self._dirty: set[ResourceKey] = set()
        self._processing: set[ResourceKey] = set()
        self._shutting_down = False

        # Delayed adds: heap of (ready_at, seq, key) plus the earliest ready_at per key.
        self._waiting_cond = Condition(Lock())
        self._waiting: list[tuple[float, int, ResourceKey]] = []
        self._waiting_ready_at: dict[ResourceKey, float] = {}
        self._seq = 0
        self._waiting_thr = Thread(target=self._waiting_loop, name="workqueue-delay", daemon=True)
        self._waiting_thr.start()

    # -- basic queue --------------------------------------------------------

    def add(self, item: ResourceKey) -> None:
        with self._cond:
            if self._shutting_down or item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._cond.notify()

    def get(self) -> tuple[ResourceKey | None, bool]:
        """Block until a key is available; (None, True) once shut down and drained."""
        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if not self._queue:
                return None, True
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item, False

    def done(self, item: ResourceKey) -> None:
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def shut_down(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        with self._waiting_cond:
            self._waiting_cond.notify_all()

    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    # -- delaying -----------------------------------------------------------

    def add_after(self, item: ResourceKey, delay: float) -> None:
        if self.shutting_down():
            return
        if delay <= 0:
            self.add(item)
            return
        ready_at = self._clock() + delay
        with self._waiting_cond:
            current = self._waiting_ready_at.get(item)
            if current is not None and current <= ready_at:
                return
            self._waiting_ready_at[item] = ready_at
            self._seq += 1
            heapq.heappush(self._waiting, (ready_at, self._seq, item))
            self._waiting_cond.notify()

    def _waiting_loop(self) -> None:
        while True:
            ready: list[ResourceKey] = []
            with self._waiting_cond:
                if self.shutting_down():
                    return
                now = self._clock()
                while self._waiting and self._waiting[0][0] <= now:
                    ready_at, _, item = heapq.heappop(self._waiting)
                    # Stale heap entries are left behind when a key is re-added earlier.
                    if self._waiting_ready_at.get(item) == ready_at:
                        del self._waiting_ready_at[item]
                        ready.append(item)
                if not ready:
                    timeout = self._waiting[0][0] - now if self._waiting else None
                    self._waiting_cond.wait(timeout)
            for item in ready:
                self.add(item)

    # -- rate limiting ------------------------------------------------------

    def add_rate_limited(self, item: ResourceKey) -> None:
        self.add_after(item, self.rate_limiter.when(item))

    def num_requeues(self, item: ResourceKey) -> int:
        return self.rate_limiter.num_requeues(item)

    def forget(self, item: ResourceKey) -> None:
        self.rate_limiter.forget(item)
