"""Tests for RateLimiter."""

import pytest

from oldvoice.ratelimit import RateLimiter


@pytest.fixture
def limiter(redis_client):
    return RateLimiter(redis_client, max_requests=3, window_seconds=60)


class TestRateLimiter:
    async def test_allows_up_to_ceiling(self, limiter):
        results = [await limiter.check("+14025550123") for _ in range(3)]

        assert all(r.allowed for r in results)
        assert [r.remaining for r in results] == [2, 1, 0]

    async def test_blocks_after_ceiling(self, limiter):
        for _ in range(3):
            await limiter.check("+14025550123")

        result = await limiter.check("+14025550123")

        assert not result.allowed
        assert result.remaining == 0
        assert 0 < result.reset_in <= 60

    async def test_first_hit_starts_window(self, limiter, redis_client):
        await limiter.check("+14025550123")

        ttl = await redis_client.ttl("rate:+14025550123")
        assert 0 < ttl <= 60

    async def test_identities_are_independent(self, limiter):
        for _ in range(4):
            await limiter.check("+14025550123")

        assert (await limiter.check("telegram_42")).allowed

    async def test_counter_without_ttl_is_repaired(self, limiter, redis_client):
        await redis_client.set("rate:+14025550123", 1)

        result = await limiter.check("+14025550123")

        assert result.reset_in == 60
        assert await redis_client.ttl("rate:+14025550123") > 0

    async def test_clear(self, limiter, redis_client):
        for _ in range(4):
            await limiter.check("+14025550123")
        await redis_client.set("conv:+14025550123", "{}")

        await limiter.clear()

        assert (await limiter.check("+14025550123")).allowed
        assert await redis_client.get("conv:+14025550123") == "{}"
