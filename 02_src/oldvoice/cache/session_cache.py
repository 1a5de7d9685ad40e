"""Redis-backed cache tier for sessions."""

import json
from typing import Protocol

import redis.asyncio as redis

from ..logging_config import get_logger
from ..models import Session

logger = get_logger(__name__)


class ISessionCache(Protocol):
    """Fast, expiring, non-authoritative copy of active sessions."""

    async def get(self, identity: str) -> Session | None:
        """Get the cached session for an identity."""
        ...

    async def set(self, session: Session, ttl_seconds: int) -> None:
        """Cache a session for ttl_seconds."""
        ...

    async def delete(self, identity: str) -> None:
        """Drop the cached session for an identity."""
        ...

    async def clear(self) -> None:
        """Drop every cached session."""
        ...


class RedisSessionCache:
    """Session cache stored as JSON strings under conv:<identity>."""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "conv"):
        self.redis = redis_client
        self.key_prefix = key_prefix

    def _key(self, identity: str) -> str:
        """Generate Redis key for an identity's session."""
        return f"{self.key_prefix}:{identity}"

    async def get(self, identity: str) -> Session | None:
        """Get the cached session for an identity."""
        raw = await self.redis.get(self._key(identity))
        if raw is None:
            return None

        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")

        try:
            return Session.from_record(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable cache entry for %s", identity)
            await self.redis.delete(self._key(identity))
            return None

    async def set(self, session: Session, ttl_seconds: int) -> None:
        """Cache a session for ttl_seconds."""
        await self.redis.set(
            self._key(session.identity),
            json.dumps(session.to_record()),
            ex=max(1, int(ttl_seconds)),
        )

    async def delete(self, identity: str) -> None:
        """Drop the cached session for an identity."""
        await self.redis.delete(self._key(identity))

    async def clear(self) -> None:
        """Drop every cached session."""
        keys = [key async for key in self.redis.scan_iter(match=f"{self.key_prefix}:*")]
        if keys:
            await self.redis.delete(*keys)
