"""Deduplicating, rate-limited work queue for reconciliation keys.

Semantics:
- A key is queued at most once. Adding a key that is already waiting to be
  processed is a no-op.
- A key is handed to at most one worker at a time. Adding a key while it is
  being processed marks it dirty; it is queued again once done() is called.
- Delayed adds keep the earliest ready time per key.
- Rate limiters decide the delay of add_rate_limited(); per-key failure
  counters grow with every rate-limited add and reset on forget().

The queue lives on one asyncio event loop. All methods must be called from
that loop; only get() suspends.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable, Hashable
from typing import Protocol

from .config import (
    DEFAULT_RATE_LIMIT_BASE_DELAY_SECONDS,
    DEFAULT_RATE_LIMIT_BURST,
    DEFAULT_RATE_LIMIT_MAX_DELAY_SECONDS,
    DEFAULT_RATE_LIMIT_QPS,
    Config,
)

logger = logging.getLogger(__name__)

# Beyond this many failures the exponential delay is always capped
_MAX_BACKOFF_EXPONENT = 64


class RateLimiter(Protocol):
    """Decides how long a key waits before it is queued again."""

    def when(self, key: Hashable) -> float:
        """Return the delay in seconds for the next add of key."""
        ...

    def forget(self, key: Hashable) -> None:
        """Stop tracking key; its next delay starts from scratch."""
        ...

    def num_requeues(self, key: Hashable) -> int:
        """Return how many times key has been rate-limited since last forget."""
        ...


class ItemExponentialFailureRateLimiter:
    """Per-key exponential backoff: base_delay * 2**failures, capped at max_delay."""

    def __init__(self, base_delay: float, max_delay: float) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._failures: dict[Hashable, int] = {}

    def when(self, key: Hashable) -> float:
        exponent = self._failures.get(key, 0)
        self._failures[key] = exponent + 1

        if exponent >= _MAX_BACKOFF_EXPONENT:
            return self._max_delay
        return min(self._base_delay * (2**exponent), self._max_delay)

    def forget(self, key: Hashable) -> None:
        self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        return self._failures.get(key, 0)


class BucketRateLimiter:
    """Overall token bucket shared by all keys.

    Each when() reserves one token and returns how long the caller has to
    wait for it. Keys are not tracked individually.
    """

    def __init__(
        self,
        qps: float,
        burst: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._qps = qps
        self._burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()

    def when(self, key: Hashable) -> float:
        now = self._clock()
        self._tokens = min(float(self._burst), self._tokens + (now - self._last) * self._qps)
        self._last = now

        self._tokens -= 1
        if self._tokens >= 0:
            return 0.0
        return -self._tokens / self._qps

    def forget(self, key: Hashable) -> None:
        pass

    def num_requeues(self, key: Hashable) -> int:
        return 0


class MaxOfRateLimiter:
    """Combines limiters by taking the longest delay any of them returns."""

    def __init__(self, *limiters: RateLimiter) -> None:
        if not limiters:
            raise ValueError("MaxOfRateLimiter needs at least one limiter")
        self._limiters = limiters

    def when(self, key: Hashable) -> float:
        return max(limiter.when(key) for limiter in self._limiters)

    def forget(self, key: Hashable) -> None:
        for limiter in self._limiters:
            limiter.forget(key)

    def num_requeues(self, key: Hashable) -> int:
        return max(limiter.num_requeues(key) for limiter in self._limiters)


def default_controller_rate_limiter(
    base_delay: float = DEFAULT_RATE_LIMIT_BASE_DELAY_SECONDS,
    max_delay: float = DEFAULT_RATE_LIMIT_MAX_DELAY_SECONDS,
    qps: float = DEFAULT_RATE_LIMIT_QPS,
    burst: int = DEFAULT_RATE_LIMIT_BURST,
) -> MaxOfRateLimiter:
    """Per-key exponential backoff combined with an overall token bucket."""
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(base_delay, max_delay),
        BucketRateLimiter(qps, burst),
    )


def rate_limiter_from_config(config: Config) -> MaxOfRateLimiter:
    return default_controller_rate_limiter(
        base_delay=config.rate_limit_base_delay_seconds,
        max_delay=config.rate_limit_max_delay_seconds,
        qps=config.rate_limit_qps,
        burst=config.rate_limit_burst,
    )


class RateLimitingQueue:
    """Work queue with deduplication, single-flight processing and delayed adds.

    Every key returned by get() must be passed to done() exactly once, or it
    stays marked as in flight and is never handed out again.
    """

    def __init__(self, rate_limiter: RateLimiter | None = None) -> None:
        self._rate_limiter: RateLimiter = rate_limiter or default_controller_rate_limiter()

        self._queue: deque[str] = deque()
        # Keys that need processing, queued or deferred behind an in-flight run
        self._dirty: set[str] = set()
        # Keys currently handed to a worker
        self._processing: set[str] = set()
        # Keys waiting for their delay: ready time and timer
        self._waiting: dict[str, tuple[float, asyncio.TimerHandle]] = {}

        self._getters: deque[asyncio.Future[None]] = deque()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def add(self, key: str) -> None:
        """Queue key for processing unless it is already pending."""
        if self._shutting_down:
            return
        if key in self._dirty:
            return

        self._dirty.add(key)
        if key in self._processing:
            # Queued again by done()
            return

        self._queue.append(key)
        self._wakeup_next()

    def add_after(self, key: str, delay: float) -> None:
        """Queue key once delay seconds have passed.

        A key already waiting keeps whichever ready time is earlier.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        ready_at = loop.time() + delay

        existing = self._waiting.get(key)
        if existing is not None:
            if existing[0] <= ready_at:
                return
            existing[1].cancel()

        handle = loop.call_later(delay, self._on_delay_expired, key)
        self._waiting[key] = (ready_at, handle)

    def add_rate_limited(self, key: str) -> None:
        """Queue key after the delay the rate limiter assigns to it."""
        self.add_after(key, self._rate_limiter.when(key))

    def forget(self, key: str) -> None:
        """Clear the rate limiter's failure tracking for key."""
        self._rate_limiter.forget(key)

    def num_requeues(self, key: str) -> int:
        return self._rate_limiter.num_requeues(key)

    async def get(self) -> tuple[str | None, bool]:
        """Wait for the next key.

        Returns:
            (key, False) when a key is available, or (None, True) once the
            queue is shutting down.
        """
        loop = asyncio.get_running_loop()

        while not self._queue and not self._shutting_down:
            getter: asyncio.Future[None] = loop.create_future()
            self._getters.append(getter)
            try:
                await getter
            except asyncio.CancelledError:
                getter.cancel()
                try:
                    self._getters.remove(getter)
                except ValueError:
                    pass
                # Hand a pending wakeup on to another worker
                if self._queue and not getter.cancelled():
                    self._wakeup_next()
                raise

        if self._shutting_down:
            return None, True

        key = self._queue.popleft()
        self._processing.add(key)
        self._dirty.discard(key)
        return key, False

    def done(self, key: str) -> None:
        """Mark processing of key as finished; requeue it if it became dirty."""
        self._processing.discard(key)
        if key in self._dirty:
            self._queue.append(key)
            self._wakeup_next()

    def shutdown(self) -> None:
        """Stop handing out keys and wake every waiting worker.

        Keys being processed are not interrupted.
        """
        if self._shutting_down:
            return
        self._shutting_down = True

        for _, handle in self._waiting.values():
            handle.cancel()
        self._waiting.clear()

        while self._getters:
            getter = self._getters.popleft()
            if not getter.done():
                getter.set_result(None)

        logger.info(
            "Work queue shut down",
            extra={"queued": len(self._queue), "in_flight": len(self._processing)},
        )

    def _on_delay_expired(self, key: str) -> None:
        self._waiting.pop(key, None)
        self.add(key)

    def _wakeup_next(self) -> None:
        while self._getters:
            getter = self._getters.popleft()
            if not getter.done():
                getter.set_result(None)
                break
