"""Token-bucket rate limiting for outbound calls.

Two independent buckets are kept: one for the Helius transaction-detail
API and one for Solana RPC traffic. Callers over budget wait; they never
fail.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_DETAIL_PER_SECOND = 2.0
DEFAULT_RPC_PER_SECOND = 10.0


class LimiterId(str, Enum):
    """Names of the dispatcher's buckets."""

    DETAIL = "detail"
    RPC = "rpc"


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @classmethod
    def create(cls, max_requests_per_second: float) -> RateLimiter:
        """Create a rate limiter with specified max requests per second."""
        if max_requests_per_second <= 0:
            raise ValueError("max_requests_per_second must be > 0")
        capacity = max(1.0, max_requests_per_second)
        return cls(
            max_tokens=capacity,
            refill_rate=max_requests_per_second,
            tokens=capacity,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        """Refill tokens based on elapsed time."""
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary.

        Waiters are served one at a time so a burst drains in arrival order.
        """
        async with self._lock:
            while True:
                self._refill()
                if self.tokens >= tokens:
                    self.tokens -= tokens
                    return
                wait_time = (tokens - self.tokens) / self.refill_rate
                await asyncio.sleep(wait_time)


class Dispatcher:
    """Holds the named limiters shared by every outbound caller."""

    def __init__(
        self,
        *,
        detail_per_second: float = DEFAULT_DETAIL_PER_SECOND,
        rpc_per_second: float = DEFAULT_RPC_PER_SECOND,
    ) -> None:
        self._limiters: dict[LimiterId, RateLimiter] = {
            LimiterId.DETAIL: RateLimiter.create(detail_per_second),
            LimiterId.RPC: RateLimiter.create(rpc_per_second),
        }
        self._waits: dict[LimiterId, int] = {limiter_id: 0 for limiter_id in LimiterId}

    async def acquire(self, limiter_id: LimiterId | str) -> None:
        """Wait until a slot on the named limiter is available.

        Args:
            limiter_id: ``LimiterId.DETAIL`` or ``LimiterId.RPC`` (or their values).

        Raises:
            ValueError: If the limiter name is unknown.
        """
        key = LimiterId(limiter_id)
        limiter = self._limiters[key]
        started = time.monotonic()
        await limiter.acquire()
        waited = time.monotonic() - started
        if waited > 0.001:
            self._waits[key] += 1
            logger.debug("Waited %.3fs for %s slot", waited, key.value)

    def limiter(self, limiter_id: LimiterId | str) -> RateLimiter:
        return self._limiters[LimiterId(limiter_id)]

    @property
    def wait_counts(self) -> dict[str, int]:
        """How many acquisitions had to wait, per limiter."""
        return {k.value: v for k, v in self._waits.items()}
