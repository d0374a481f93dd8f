"""
Rate Limiter for the Notion client.
Token bucket shared by every client in the process.

Notion allows an average of 3 requests per second; bursts of 6 are tolerated.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from .cancellation import check_cancelled, wait_cancellable

DEFAULT_RATE_PER_SECOND = 3.0
DEFAULT_BURST = 6


@dataclass
class TokenBucket:
    """Simple token bucket for rate limiting."""

    capacity: float  # Max tokens
    refill_rate: float  # Tokens per second
    tokens: float = field(default=0.0)
    last_refill: float = field(default_factory=time.monotonic)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def _refill(self) -> None:
        now = self.clock()
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def consume(self, tokens: float = 1) -> bool:
        """
        Try to consume tokens. Returns True if allowed, False if rate limited.
        """
        self._refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def time_until_available(self, tokens: float = 1) -> float:
        """Seconds until `tokens` can be consumed (0 when available now)."""
        self._refill()
        missing = tokens - self.tokens
        if missing <= 0:
            return 0.0
        return missing / self.refill_rate


class RateLimiter:
    """
    Async token-bucket limiter.

    Waiters are serialized by an asyncio.Lock so concurrent clients take turns;
    a waiter sleeps only as long as its own token needs to refill. Both the
    wait for the lock and the refill sleep are abandoned when the caller's stop
    event fires.

    The token budget is shared for the life of the process. The lock belongs to
    one event loop and is rebuilt when the limiter is used from a new loop
    (for example a second `asyncio.run`).
    """

    def __init__(
        self,
        rate_per_second: Optional[float] = DEFAULT_RATE_PER_SECOND,
        burst: int = DEFAULT_BURST,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rate_per_second = rate_per_second
        self.burst = burst
        self._sleep = sleep
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None
        self._bucket: Optional[TokenBucket] = None
        if rate_per_second is not None:
            if rate_per_second <= 0 or burst < 1:
                raise ValueError("rate_per_second and burst must be positive")
            self._bucket = TokenBucket(
                capacity=float(burst),
                refill_rate=float(rate_per_second),
                tokens=float(burst),
                last_refill=clock(),
                clock=clock,
            )

    @classmethod
    def unlimited(cls) -> "RateLimiter":
        """Limiter that never waits (tests, offline tooling)."""
        return cls(rate_per_second=None)

    def _loop_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def acquire(self, cancel: Optional[asyncio.Event] = None) -> None:
        """Wait for one token."""
        if self._bucket is None:
            return
        check_cancelled(cancel, "rate limit wait")

        lock = self._loop_lock()
        pending = asyncio.ensure_future(lock.acquire())
        try:
            await wait_cancellable(pending, cancel, "rate limit wait")
        except BaseException:
            # The acquire may still win after we gave up on it.
            pending.add_done_callback(lambda f: _release_if_acquired(lock, f))
            raise

        try:
            while not self._bucket.consume(1):
                delay = self._bucket.time_until_available(1)
                await wait_cancellable(self._sleep(delay), cancel, "rate limit wait")
        finally:
            lock.release()


def _release_if_acquired(lock: asyncio.Lock, fut: asyncio.Future) -> None:
    if not fut.cancelled() and fut.exception() is None:
        lock.release()


_default_limiter: Optional[RateLimiter] = None


def default_rate_limiter() -> RateLimiter:
    """Process-wide limiter shared by every NotionClient that is not given one."""
    global _default_limiter
    if _default_limiter is None:
        _default_limiter = RateLimiter()
    return _default_limiter
