"""
Unit tests for the sliding-window RateLimiter.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from compute_gateway.core.rate_limiter import RateLimiter
from compute_gateway.database.memory_store import InMemoryStore


class FakeClock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(store, clock):
    return RateLimiter(store, wallet_limit=3, ip_limit=5, window_seconds=60, clock=clock)


class TestWalletLimit:
    """Test per-wallet window"""

    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self, limiter):
        results = [await limiter.check_rate_limit("0xabc") for _ in range(3)]

        assert all(r.allowed for r in results)
        assert [r.remaining for r in results] == [2, 1, 0]

    @pytest.mark.asyncio
    async def test_rejects_over_limit(self, limiter):
        for _ in range(3):
            await limiter.check_rate_limit("0xabc")

        result = await limiter.check_rate_limit("0xabc")

        assert result.allowed is False
        assert result.retry_after == 60
        assert result.remaining == 0
        assert result.scope == "wallet"

    @pytest.mark.asyncio
    async def test_rejected_requests_are_not_recorded(self, limiter, store):
        for _ in range(5):
            await limiter.check_rate_limit("0xabc")

        assert len(store.wallet_requests["0xabc"]) == 3

    @pytest.mark.asyncio
    async def test_window_slides(self, limiter, clock):
        for _ in range(3):
            await limiter.check_rate_limit("0xabc")

        clock.now += timedelta(seconds=61)

        assert (await limiter.check_rate_limit("0xabc")).allowed is True


class TestIpLimit:
    """Test per-IP window across wallets"""

    @pytest.mark.asyncio
    async def test_ip_limit_spans_wallets(self, limiter):
        for i in range(5):
            assert (await limiter.check_rate_limit(f"0x{i}", ip="10.0.0.1")).allowed

        result = await limiter.check_rate_limit("0xfresh", ip="10.0.0.1")

        assert result.allowed is False
        assert result.scope == "ip"
        assert result.limit == 5

    @pytest.mark.asyncio
    async def test_other_ip_unaffected(self, limiter):
        for i in range(5):
            await limiter.check_rate_limit(f"0x{i}", ip="10.0.0.1")

        assert (await limiter.check_rate_limit("0xfresh", ip="10.0.0.2")).allowed


class YieldingStore(InMemoryStore):
    """Gives other tasks a turn between counting and recording"""

    async def get_request_count(self, wallet, since):
        count = await super().get_request_count(wallet, since)
        await asyncio.sleep(0)
        return count

    async def get_ip_request_count(self, ip, since):
        count = await super().get_ip_request_count(ip, since)
        await asyncio.sleep(0)
        return count


class TestConcurrentChecks:
    """Test checks running at the same time"""

    @pytest.mark.asyncio
    async def test_concurrent_checks_respect_wallet_limit(self, clock):
        limiter = RateLimiter(YieldingStore(), wallet_limit=3, ip_limit=100, clock=clock)

        results = await asyncio.gather(
            *(limiter.check_rate_limit("0xabc", ip="10.0.0.1") for _ in range(10))
        )

        assert sum(r.allowed for r in results) == 3
        assert limiter._locks == {}

    @pytest.mark.asyncio
    async def test_concurrent_checks_respect_ip_limit(self, clock):
        limiter = RateLimiter(YieldingStore(), wallet_limit=100, ip_limit=4, clock=clock)

        results = await asyncio.gather(
            *(limiter.check_rate_limit(f"0x{i}", ip="10.0.0.1") for i in range(10))
        )

        assert sum(r.allowed for r in results) == 4

    @pytest.mark.asyncio
    async def test_slow_wallet_does_not_block_others(self, clock):
        release = asyncio.Event()

        class SlowWalletStore(InMemoryStore):
            async def get_request_count(self, wallet, since):
                if wallet == "0xslow":
                    await release.wait()
                return await super().get_request_count(wallet, since)

        limiter = RateLimiter(SlowWalletStore(), clock=clock)
        slow = asyncio.ensure_future(limiter.check_rate_limit("0xslow"))
        await asyncio.sleep(0)

        fast = await asyncio.wait_for(limiter.check_rate_limit("0xfast"), timeout=1)

        assert fast.allowed is True
        assert not slow.done()
        release.set()
        assert (await slow).allowed is True
