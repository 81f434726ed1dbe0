"""Tests for token-bucket rate limiting."""

import asyncio
import time

import pytest

from handoff_trader.ingestor.rate_limit import Dispatcher, LimiterId, RateLimiter


class TestRateLimiter:
    """Tests for RateLimiter."""

    def test_create(self) -> None:
        limiter = RateLimiter.create(10)

        assert limiter.max_tokens == 10
        assert limiter.refill_rate == 10
        assert limiter.tokens == 10

    def test_create_fractional_rate_has_unit_capacity(self) -> None:
        limiter = RateLimiter.create(0.5)

        assert limiter.max_tokens == 1.0
        assert limiter.refill_rate == 0.5

    def test_create_invalid_rate(self) -> None:
        with pytest.raises(ValueError):
            RateLimiter.create(0)

    @pytest.mark.asyncio
    async def test_burst_within_capacity_is_immediate(self) -> None:
        limiter = RateLimiter.create(10)

        start = time.monotonic()
        for _ in range(10):
            await limiter.acquire()

        assert time.monotonic() - start < 0.05

    @pytest.mark.asyncio
    async def test_over_budget_waits(self) -> None:
        limiter = RateLimiter.create(10)
        for _ in range(10):
            await limiter.acquire()

        start = time.monotonic()
        await limiter.acquire()

        assert time.monotonic() - start >= 0.08

    @pytest.mark.asyncio
    async def test_concurrent_waiters_all_served(self) -> None:
        limiter = RateLimiter.create(20)

        start = time.monotonic()
        await asyncio.gather(*(limiter.acquire() for _ in range(25)))
        elapsed = time.monotonic() - start

        # 5 calls beyond the burst need about 0.25s at 20/s
        assert elapsed >= 0.2


class TestDispatcher:
    """Tests for Dispatcher."""

    @pytest.mark.asyncio
    async def test_limiters_are_independent(self) -> None:
        dispatcher = Dispatcher(detail_per_second=2, rpc_per_second=10)
        await dispatcher.acquire(LimiterId.DETAIL)
        await dispatcher.acquire(LimiterId.DETAIL)

        start = time.monotonic()
        await dispatcher.acquire(LimiterId.RPC)

        assert time.monotonic() - start < 0.05

    @pytest.mark.asyncio
    async def test_detail_budget_enforced(self) -> None:
        dispatcher = Dispatcher(detail_per_second=2, rpc_per_second=10)

        start = time.monotonic()
        for _ in range(3):
            await dispatcher.acquire(LimiterId.DETAIL)
        elapsed = time.monotonic() - start

        assert elapsed >= 0.45
        assert dispatcher.wait_counts["detail"] == 1
        assert dispatcher.wait_counts["rpc"] == 0

    @pytest.mark.asyncio
    async def test_accepts_string_ids(self) -> None:
        dispatcher = Dispatcher()

        await dispatcher.acquire("rpc")

        assert dispatcher.limiter("rpc") is dispatcher.limiter(LimiterId.RPC)

    @pytest.mark.asyncio
    async def test_unknown_limiter(self) -> None:
        dispatcher = Dispatcher()

        with pytest.raises(ValueError):
            await dispatcher.acquire("other")

    def test_default_rates(self) -> None:
        dispatcher = Dispatcher()

        assert dispatcher.limiter(LimiterId.DETAIL).refill_rate == 2.0
        assert dispatcher.limiter(LimiterId.RPC).refill_rate == 10.0
