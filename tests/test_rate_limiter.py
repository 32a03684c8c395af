"""Tests for the in-memory and Redis rate limiters."""

import asyncio

import pytest
from fakes import FailingRedisMock, FakeClock, StatefulRedisMock

from toolgate.core.config import Settings
from toolgate.gateway.rate_limiter import (
    InMemoryRateLimiter,
    RedisRateLimiter,
    create_rate_limiter,
)
from toolgate.gateway.tiers import limits_for
from toolgate.models.api_key import Tier


@pytest.mark.asyncio
class TestInMemoryRateLimiter:
    """Tests for the fixed-window in-process limiter."""

    async def test_first_request_allowed(self, clock: FakeClock) -> None:
        """Test the first request opens a window."""
        limiter = InMemoryRateLimiter(clock=clock)

        result = await limiter.check("key-1", Tier.FREE)

        assert result.allowed is True
        assert result.current == 1
        assert result.limit == 10
        assert result.remaining == 9
        assert result.reset_in_ms == 60_000
        assert result.degraded is False

    async def test_limit_enforced(self, clock: FakeClock) -> None:
        """Test exactly N requests pass and the next one is denied."""
        limiter = InMemoryRateLimiter(clock=clock)

        results = [await limiter.check("key-1", Tier.FREE) for _ in range(10)]
        denied = await limiter.check("key-1", Tier.FREE)

        assert all(r.allowed for r in results)
        assert [r.current for r in results] == list(range(1, 11))
        assert denied.allowed is False
        assert denied.current == 10
        assert denied.remaining == 0

    async def test_window_resets_after_elapsed(self, clock: FakeClock) -> None:
        """Test a check after the window elapsed starts a fresh window."""
        limiter = InMemoryRateLimiter(clock=clock)
        for _ in range(11):
            await limiter.check("key-1", Tier.FREE)

        clock.advance(60)
        result = await limiter.check("key-1", Tier.FREE)

        assert result.allowed is True
        assert result.current == 1

    async def test_reset_in_ms_counts_down(self, clock: FakeClock) -> None:
        """Test the reset time stays anchored to the window start."""
        limiter = InMemoryRateLimiter(clock=clock)
        await limiter.check("key-1", Tier.FREE)

        clock.advance(15)
        result = await limiter.check("key-1", Tier.FREE)

        assert result.reset_in_ms == 45_000

    async def test_identities_are_independent(self, clock: FakeClock) -> None:
        """Test one identity's usage does not affect another."""
        limiter = InMemoryRateLimiter(clock=clock)
        for _ in range(10):
            await limiter.check("key-1", Tier.FREE)

        result = await limiter.check("key-2", Tier.FREE)

        assert result.allowed is True
        assert result.current == 1

    async def test_tiers_use_their_own_limits(self, clock: FakeClock) -> None:
        """Test the limit comes from the tier."""
        limiter = InMemoryRateLimiter(clock=clock)

        result = await limiter.check("key-1", Tier.PRO)

        assert result.limit == 100
        assert result.remaining == 99

    async def test_concurrent_checks_do_not_lose_updates(self, clock: FakeClock) -> None:
        """Test concurrent checks admit exactly the limit."""
        limiter = InMemoryRateLimiter(clock=clock)

        results = await asyncio.gather(*(limiter.check("key-1", Tier.BASIC) for _ in range(50)))

        assert sum(1 for r in results if r.allowed) == 30
        assert all(r.remaining >= 0 for r in results)

    async def test_reset(self, clock: FakeClock) -> None:
        """Test reset clears the identity's window."""
        limiter = InMemoryRateLimiter(clock=clock)
        for _ in range(10):
            await limiter.check("key-1", Tier.FREE)

        await limiter.reset("key-1", Tier.FREE)
        result = await limiter.check("key-1", Tier.FREE)

        assert result.allowed is True
        assert result.current == 1

    async def test_expired_windows_are_swept(self, clock: FakeClock) -> None:
        """Test identities that stop calling are dropped after their window."""
        limiter = InMemoryRateLimiter(clock=clock)
        for i in range(1000):
            await limiter.check(f"key-{i}", Tier.FREE)
        assert limiter.tracked_keys == 1000

        clock.advance(120)
        result = await limiter.check("key-new", Tier.FREE)

        assert result.allowed is True
        assert limiter.tracked_keys == 1

    async def test_sweep_keeps_live_windows(self, clock: FakeClock) -> None:
        """Test a sweep leaves windows that have not expired."""
        limiter = InMemoryRateLimiter(clock=clock)
        await limiter.check("idle", Tier.FREE)
        clock.advance(30)
        for _ in range(3):
            await limiter.check("busy", Tier.FREE)

        clock.advance(40)
        result = await limiter.check("busy", Tier.FREE)

        assert limiter.tracked_keys == 1
        assert result.current == 4


@pytest.mark.asyncio
class TestRedisRateLimiter:
    """Tests for the sliding-window Redis limiter."""

    async def test_first_request_allowed(self, redis_client: StatefulRedisMock, clock: FakeClock) -> None:
        """Test the first request is counted."""
        limiter = RedisRateLimiter(redis_client, clock=clock)

        result = await limiter.check("key-1", Tier.FREE)

        assert result.allowed is True
        assert result.current == 1
        assert result.remaining == 9
        assert result.reset_in_ms == 60_000
        assert redis_client.expirations["toolgate:ratelimit:free:key-1"] == 60_000

    async def test_limit_enforced_and_denials_not_counted(
        self,
        redis_client: StatefulRedisMock,
        clock: FakeClock,
    ) -> None:
        """Test the (N+1)th request is denied and removed from the window."""
        limiter = RedisRateLimiter(redis_client, clock=clock)
        for _ in range(10):
            clock.advance(0.001)
            assert (await limiter.check("key-1", Tier.FREE)).allowed

        clock.advance(0.001)
        denied = await limiter.check("key-1", Tier.FREE)

        assert denied.allowed is False
        assert denied.current == 10
        assert denied.remaining == 0
        assert await redis_client.zcard("toolgate:ratelimit:free:key-1") == 10

    async def test_window_slides(self, redis_client: StatefulRedisMock, clock: FakeClock) -> None:
        """Test requests older than the window stop counting."""
        limiter = RedisRateLimiter(redis_client, clock=clock)
        for _ in range(5):
            await limiter.check("key-1", Tier.FREE)
        clock.advance(30)
        for _ in range(5):
            await limiter.check("key-1", Tier.FREE)

        assert not (await limiter.check("key-1", Tier.FREE)).allowed

        clock.advance(31)
        result = await limiter.check("key-1", Tier.FREE)

        assert result.allowed is True
        assert result.current == 6
        assert result.reset_in_ms == 29_000

    async def test_one_window_per_tier(self, redis_client: StatefulRedisMock) -> None:
        """Test sliding windows are built once per tier."""
        limiter = RedisRateLimiter(redis_client)

        assert limiter.window_for("free") is limiter.window_for(Tier.FREE)
        assert limiter.window_for(Tier.ENTERPRISE).limit == 500
        assert limiter.window_for(Tier.PRO).key("abc") == "toolgate:ratelimit:pro:abc"

    async def test_fails_open_on_store_error(self, clock: FakeClock) -> None:
        """Test a Redis outage admits the request by default."""
        limiter = RedisRateLimiter(FailingRedisMock(), clock=clock)

        result = await limiter.check("key-1", Tier.FREE)

        assert result.allowed is True
        assert result.degraded is True
        assert result.current == 0
        assert result.remaining == 10
        assert result.reset_in_ms == 60_000

    async def test_fails_closed_when_configured(self, clock: FakeClock) -> None:
        """Test fail-closed policy denies on a Redis outage."""
        limiter = RedisRateLimiter(FailingRedisMock(), fail_open=False, clock=clock)

        result = await limiter.check("key-1", Tier.FREE)

        assert result.allowed is False
        assert result.degraded is True
        assert result.remaining == 0

    async def test_reset(self, redis_client: StatefulRedisMock, clock: FakeClock) -> None:
        """Test reset deletes the identity's window."""
        limiter = RedisRateLimiter(redis_client, clock=clock)
        for _ in range(10):
            await limiter.check("key-1", Tier.FREE)

        await limiter.reset("key-1", Tier.FREE)

        assert (await limiter.check("key-1", Tier.FREE)).current == 1


class TestCreateRateLimiter:
    """Tests for strategy selection."""

    def test_in_memory_without_redis(self) -> None:
        """Test the in-process limiter is the fallback."""
        limiter = create_rate_limiter(Settings(_env_file=None, redis_url=None))

        assert isinstance(limiter, InMemoryRateLimiter)
        assert limiter.strategy == "memory"

    def test_redis_when_client_given(self, redis_client: StatefulRedisMock) -> None:
        """Test Redis is preferred when available."""
        settings = Settings(_env_file=None, rate_limit_fail_open=False, rate_limit_prefix="tg")

        limiter = create_rate_limiter(settings, redis_client)  # type: ignore[arg-type]

        assert isinstance(limiter, RedisRateLimiter)
        assert limiter.fail_open is False
        assert limiter.window_for(Tier.FREE).key("k") == "tg:free:k"


@pytest.mark.asyncio
class TestStrategyConsistency:
    """Tests that both strategies admit the same requests."""

    @pytest.mark.parametrize("tier", [Tier.FREE, Tier.PRO])
    async def test_strategies_agree_within_window(
        self,
        redis_client: StatefulRedisMock,
        clock: FakeClock,
        tier: Tier,
    ) -> None:
        """Test identical checks within one window get identical decisions."""
        memory = InMemoryRateLimiter(clock=clock)
        redis = RedisRateLimiter(redis_client, clock=clock)  # type: ignore[arg-type]
        limit = limits_for(tier).per_minute

        memory_allowed = []
        redis_allowed = []
        for _ in range(limit + 5):
            memory_allowed.append((await memory.check("key-1", tier)).allowed)
            redis_allowed.append((await redis.check("key-1", tier)).allowed)
            clock.advance(0.1)

        assert memory_allowed == redis_allowed
        assert memory_allowed == [True] * limit + [False] * 5
