"""
Work Queue - Deduplicating, delaying and rate-limited queues of reconcile keys.

Mirrors the semantics of the Kubernetes controller work queue:

* an item is queued at most once, however many times it is added,
* an item handed out by ``get()`` is "processing" until ``done()``; adding it
  again meanwhile marks it dirty and it is redelivered once after ``done()``,
* failed items are re-added with per-item exponential backoff.

All mutating methods except ``get()`` are synchronous so that informer event
handlers can enqueue without awaiting. The queue must be used from a single
event loop.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Deque, Dict, Hashable, Optional, Set, Tuple

logger = logging.getLogger(__name__)


# ==================== Rate limiters ====================


class RateLimiter(ABC):
    """Decides how long an item must wait before being retried."""

    @abstractmethod
    def when(self, item: Hashable) -> float:
        """Return the delay in seconds before ``item`` may be retried."""
        pass

    @abstractmethod
    def forget(self, item: Hashable) -> None:
        """Stop tracking ``item``, resetting its backoff."""
        pass

    @abstractmethod
    def num_requeues(self, item: Hashable) -> int:
        pass


class ItemExponentialFailureRateLimiter(RateLimiter):
    """
    Per-item exponential backoff.

    The delay for the n-th consecutive failure of an item is
    ``base_delay * 2**n``, capped at ``max_delay``.
    """

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        if base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if max_delay < base_delay:
            raise ValueError("max_delay must not be smaller than base_delay")
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: Dict[Hashable, int] = {}

    def when(self, item: Hashable) -> float:
        exp = self._failures.get(item, 0)
        self._failures[item] = exp + 1

        # Avoid float overflow for items that fail for a very long time
        if exp > 1023:
            return self.max_delay
        return min(self.base_delay * (2**exp), self.max_delay)

    def forget(self, item: Hashable) -> None:
        self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        return self._failures.get(item, 0)


class BucketRateLimiter(RateLimiter):
    """Overall token bucket shared by every item."""

    def __init__(self, qps: float = 10.0, burst: int = 100):
        if qps <= 0:
            raise ValueError("qps must be positive")
        self.qps = qps
        self.burst = burst
        self._tokens = float(burst)
        self._last = time.monotonic()

    def when(self, item: Hashable) -> float:
        now = time.monotonic()
        self._tokens = min(self.burst, self._tokens + (now - self._last) * self.qps)
        self._last = now
        # Reserve a token; a negative balance is paid back by waiting
        self._tokens -= 1
        if self._tokens >= 0:
            return 0.0
        return -self._tokens / self.qps

    def forget(self, item: Hashable) -> None:
        pass

    def num_requeues(self, item: Hashable) -> int:
        return 0


class MaxOfRateLimiter(RateLimiter):
    """Combines limiters by taking the longest delay of any of them."""

    def __init__(self, *limiters: RateLimiter):
        if not limiters:
            raise ValueError("at least one rate limiter is required")
        self.limiters = limiters

    def when(self, item: Hashable) -> float:
        return max(limiter.when(item) for limiter in self.limiters)

    def forget(self, item: Hashable) -> None:
        for limiter in self.limiters:
            limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return max(limiter.num_requeues(item) for limiter in self.limiters)


def default_controller_rate_limiter(
    base_delay: float = 0.005,
    max_delay: float = 1000.0,
    qps: float = 10.0,
    burst: int = 100,
) -> RateLimiter:
    """Per-item exponential backoff combined with an overall token bucket."""
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(base_delay, max_delay),
        BucketRateLimiter(qps, burst),
    )


# ==================== Queues ====================


class WorkQueue:
    """
    FIFO queue of unique items with in-flight tracking.

    ``get()`` returns ``(item, shutdown)``; once the queue is shut down and
    empty it returns ``(None, True)``.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._getters: Deque[asyncio.Future] = deque()
        self._drained: Optional[asyncio.Future] = None
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def processing_count(self) -> int:
        return len(self._processing)

    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, item: Hashable) -> None:
        if self._shutting_down:
            return
        if item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            # Redelivered by done()
            return
        self._queue.append(item)
        self._wakeup_getter()

    async def get(self) -> Tuple[Any, bool]:
        while not self._queue and not self._shutting_down:
            getter = asyncio.get_running_loop().create_future()
            self._getters.append(getter)
            try:
                await getter
            except asyncio.CancelledError:
                getter.cancel()
                try:
                    self._getters.remove(getter)
                except ValueError:
                    pass
                # Pass the wakeup on if this getter was already chosen
                if self._queue and not getter.cancelled():
                    self._wakeup_getter()
                raise

        if not self._queue:
            return None, True

        item = self._queue.popleft()
        self._processing.add(item)
        self._dirty.discard(item)
        return item, False

    def done(self, item: Hashable) -> None:
        """Mark ``item`` as processed, requeueing it if it was re-added."""
        self._processing.discard(item)
        if item in self._dirty:
            self._queue.append(item)
            self._wakeup_getter()
        if not self._processing and self._drained is not None:
            if not self._drained.done():
                self._drained.set_result(None)

    def shut_down(self) -> None:
        """Stop accepting items; waiting getters return once the queue empties."""
        self._shutting_down = True
        while self._getters:
            getter = self._getters.popleft()
            if not getter.done():
                getter.set_result(None)

    async def shut_down_with_drain(self) -> None:
        """Shut down and wait until every in-flight item is marked done."""
        self.shut_down()
        if not self._processing:
            return
        self._drained = asyncio.get_running_loop().create_future()
        await self._drained

    def _wakeup_getter(self) -> None:
        while self._getters:
            getter = self._getters.popleft()
            if not getter.done():
                getter.set_result(None)
                return


class DelayingQueue(WorkQueue):
    """Work queue that can also add items after a delay."""

    def __init__(self, name: str = ""):
        super().__init__(name)
        # item -> (ready time, timer handle)
        self._waiting: Dict[Hashable, Tuple[float, asyncio.TimerHandle]] = {}

    @property
    def waiting_count(self) -> int:
        return len(self._waiting)

    def add_after(self, item: Hashable, delay: float) -> None:
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        loop = asyncio.get_running_loop()
        ready_at = loop.time() + delay
        existing = self._waiting.get(item)
        if existing is not None:
            # Keep the earliest ready time
            if existing[0] <= ready_at:
                return
            existing[1].cancel()

        handle = loop.call_at(ready_at, self._fire, item)
        self._waiting[item] = (ready_at, handle)

    def _fire(self, item: Hashable) -> None:
        self._waiting.pop(item, None)
        self.add(item)

    def shut_down(self) -> None:
        for _, handle in self._waiting.values():
            handle.cancel()
        self._waiting.clear()
        super().shut_down()


class RateLimitingQueue(DelayingQueue):
    """Delaying queue that consults a rate limiter for retries."""

    def __init__(self, rate_limiter: Optional[RateLimiter] = None, name: str = ""):
        super().__init__(name)
        self.rate_limiter = rate_limiter or default_controller_rate_limiter()

    def add_rate_limited(self, item: Hashable) -> None:
        delay = self.rate_limiter.when(item)
        logger.debug(f"Requeueing {item} in {delay:.3f}s")
        self.add_after(item, delay)

    def forget(self, item: Hashable) -> None:
        self.rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self.rate_limiter.num_requeues(item)

    def snapshot(self) -> Dict[str, Any]:
        """Current queue sizes, for status reporting."""
        return {
            "name": self.name,
            "queued": len(self),
            "processing": self.processing_count,
            "waiting": self.waiting_count,
            "shutting_down": self.shutting_down(),
        }

