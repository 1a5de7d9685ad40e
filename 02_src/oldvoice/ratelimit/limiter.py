"""Fixed-ceiling message window per identity, counted in Redis."""

from dataclasses import dataclass
from typing import Protocol

import redis.asyncio as redis


@dataclass
class RateLimitResult:
    """Outcome of one rate-limit check."""

    allowed: bool
    remaining: int
    reset_in: int  # seconds until the window lapses


class IRateLimiter(Protocol):
    """Per-identity message budget."""

    async def check(self, identity: str) -> RateLimitResult:
        """Count one message and report whether it is within budget."""
        ...

    async def clear(self) -> None:
        """Forget all counters."""
        ...


class RateLimiter:
    """Counter with a TTL equal to the window; the first hit starts the clock."""

    def __init__(
        self,
        redis_client: redis.Redis,
        max_requests: int = 50,
        window_seconds: int = 3600,
        key_prefix: str = "rate",
    ):
        self.redis = redis_client
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix

    def _key(self, identity: str) -> str:
        return f"{self.key_prefix}:{identity}"

    async def check(self, identity: str) -> RateLimitResult:
        key = self._key(identity)

        current = await self.redis.incr(key)
        if current == 1:
            await self.redis.expire(key, self.window_seconds)

        reset_in = await self.redis.ttl(key)
        if reset_in < 0:
            # A crash between INCR and EXPIRE would leave the counter immortal.
            await self.redis.expire(key, self.window_seconds)
            reset_in = self.window_seconds

        return RateLimitResult(
            allowed=current <= self.max_requests,
            remaining=max(0, self.max_requests - current),
            reset_in=reset_in,
        )

    async def clear(self) -> None:
        """Drop every counter under this prefix."""
        keys = [key async for key in self.redis.scan_iter(match=f"{self.key_prefix}:*")]
        if keys:
            await self.redis.delete(*keys)
