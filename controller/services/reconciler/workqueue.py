"""
CronJob Controller - Work Queue

Keyed queue between the watch loop and the reconcile workers.

Guarantees:
- A key waits in the queue at most once, however many events arrive for it
- A key being processed is never handed to a second worker
- A key re-added while being processed is queued again once done() is called
"""

import asyncio
from collections import deque
from typing import Hashable, Optional

import structlog

from services.cronjob.clock import Clock, SystemClock

logger = structlog.get_logger()

DEFAULT_BACKOFF_BASE = 0.005
DEFAULT_BACKOFF_MAX = 1000.0


class ExponentialBackoffRateLimiter:
    """Per-key exponential backoff: base * 2**failures, capped at max_delay."""

    def __init__(
        self,
        base_delay: float = DEFAULT_BACKOFF_BASE,
        max_delay: float = DEFAULT_BACKOFF_MAX,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: dict[Hashable, int] = {}

    def when(self, key: Hashable) -> float:
        """Record a failure for key and return how long to wait."""
        exponent = self._failures.get(key, 0)
        self._failures[key] = exponent + 1
        # Cap the exponent so the float never overflows
        if exponent > 62:
            return self.max_delay
        return min(self.base_delay * (2 ** exponent), self.max_delay)

    def num_requeues(self, key: Hashable) -> int:
        return self._failures.get(key, 0)

    def forget(self, key: Hashable) -> None:
        self._failures.pop(key, None)


class WorkQueue:
    """
    De-duplicating work queue with delayed and rate-limited adds.

    Usage:
        key = await queue.get()
        if key is not None:
            try:
                ...  # process key
            finally:
                await queue.done(key)
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        rate_limiter: Optional[ExponentialBackoffRateLimiter] = None,
    ):
        """
        Initialize work queue.

        Args:
            clock: Clock used for delayed adds (defaults to SystemClock)
            rate_limiter: Backoff policy for add_rate_limited()
        """
        self.clock = clock or SystemClock()
        self.rate_limiter = rate_limiter or ExponentialBackoffRateLimiter()

        self._queue: deque = deque()
        self._dirty: set = set()
        self._processing: set = set()
        self._cond = asyncio.Condition()
        self._delayed: set[asyncio.Task] = set()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def processing(self) -> frozenset:
        return frozenset(self._processing)

    async def add(self, key: Hashable) -> None:
        """Mark key as needing processing."""
        async with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                # Requeued by done()
                return
            self._queue.append(key)
            self._cond.notify()

    async def get(self) -> Optional[Hashable]:
        """
        Block until a key is available.

        Returns:
            The next key, or None once the queue is shut down and drained
        """
        async with self._cond:
            while not self._queue and not self._shutting_down:
                await self._cond.wait()
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    async def done(self, key: Hashable) -> None:
        """Mark key as finished; re-queue it if it was added meanwhile."""
        async with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def add_after(self, key: Hashable, delay: float) -> None:
        """Add key once delay seconds have passed on the clock."""
        if self._shutting_down:
            return
        if delay <= 0:
            self._spawn(self.add(key))
            return
        self._spawn(self._add_after(key, delay))

    def add_rate_limited(self, key: Hashable) -> float:
        """
        Add key after its backoff delay.

        Returns:
            The delay applied
        """
        delay = self.rate_limiter.when(key)
        self.add_after(key, delay)
        return delay

    def forget(self, key: Hashable) -> None:
        """Reset the backoff for key."""
        self.rate_limiter.forget(key)

    def num_requeues(self, key: Hashable) -> int:
        return self.rate_limiter.num_requeues(key)

    async def shutdown(self) -> None:
        """Stop handing out keys and cancel pending delayed adds."""
        async with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        for task in list(self._delayed):
            task.cancel()
        if self._delayed:
            await asyncio.gather(*self._delayed, return_exceptions=True)
        self._delayed.clear()

    async def _add_after(self, key: Hashable, delay: float) -> None:
        await self.clock.sleep(delay)
        await self.add(key)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._delayed.add(task)
        task.add_done_callback(self._delayed.discard)
