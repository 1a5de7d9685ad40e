"""Two-tier session store: Redis cache in front of the SQLite record."""

import math
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

from ..cache import ISessionCache
from ..logging_config import get_logger
from ..models import Session, WorkItem
from ..storage import IStorage

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ISessionStore(Protocol):
    """Resumable session persistence keyed by identity."""

    async def get(self, identity: str) -> Session | None:
        """Get the active session for an identity, if any."""
        ...

    async def create(
        self, identity: str, initial_state: str, initial_data: dict[str, Any]
    ) -> Session:
        """Start a fresh session, superseding any existing one."""
        ...

    async def update(
        self, session: Session, new_state: str, new_data: dict[str, Any]
    ) -> Session:
        """Persist a new (state, data) pair and refresh the expiry."""
        ...

    async def delete(self, identity: str) -> None:
        """Tear down the identity's session (durable record cancelled)."""
        ...

    async def complete(
        self, session: Session, data: dict[str, Any], work_item: WorkItem
    ) -> WorkItem:
        """Finish a session and record its work item, once."""
        ...

    async def cleanup_expired(self) -> int:
        """Delete durable sessions past expiry."""
        ...


class SessionStore:
    """Read-through / write-through cache over the durable session table.

    The durable tier is authoritative. Every write first invalidates the
    cache entry, then writes the durable record, then repopulates the
    cache; if repopulation fails the entry stays absent and the next read
    falls back to the durable record. A stale entry can therefore only
    survive if its invalidation raised, and then nothing durable changed.
    """

    def __init__(
        self,
        storage: IStorage,
        cache: ISessionCache,
        ttl_seconds: int = 3600,
        clock: Clock = utcnow,
    ):
        self._storage = storage
        self._cache = cache
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    async def get(self, identity: str) -> Session | None:
        now = self._clock()

        try:
            cached = await self._cache.get(identity)
        except Exception as e:
            logger.warning("Cache read failed for %s, using durable tier: %s", identity, e)
            cached = None

        if cached is not None:
            if cached.is_active(now):
                return cached
            await self._drop_cached(identity)

        session = await self._storage.get_active_session(identity, now)
        if session is None:
            return None

        logger.debug("Session %s for %s restored from durable tier", session.id, identity)
        await self._cache_put(session, now)
        return session

    async def create(
        self, identity: str, initial_state: str, initial_data: dict[str, Any]
    ) -> Session:
        await self._cache.delete(identity)

        user = await self._storage.get_or_create_user(identity)
        now = self._clock()
        session = await self._storage.create_session(
            user_id=user.id,
            identity=identity,
            state=initial_state,
            data=initial_data,
            expires_at=now + self._ttl,
        )
        logger.info("Session %s created for %s in %s", session.id, identity, initial_state)

        await self._cache_put(session, now)
        return session

    async def update(
        self, session: Session, new_state: str, new_data: dict[str, Any]
    ) -> Session:
        await self._cache.delete(session.identity)

        now = self._clock()
        expires_at = now + self._ttl
        version = await self._storage.update_session(
            session.id,
            session.version,
            new_state,
            new_data,
            expires_at,
        )
        updated = replace(
            session,
            state=new_state,
            data=new_data,
            version=version,
            expires_at=expires_at,
        )

        await self._cache_put(updated, now)
        return updated

    async def delete(self, identity: str) -> None:
        await self._cache.delete(identity)
        cancelled = await self._storage.cancel_sessions(identity)
        if cancelled:
            logger.info("Cancelled %s session(s) for %s", cancelled, identity)

    async def complete(
        self, session: Session, data: dict[str, Any], work_item: WorkItem
    ) -> WorkItem:
        await self._cache.delete(session.identity)
        return await self._storage.complete_session(session, data, work_item)

    async def cleanup_expired(self) -> int:
        deleted = await self._storage.delete_expired_sessions(self._clock())
        if deleted:
            logger.info("Deleted %s expired session(s)", deleted)
        return deleted

    async def clear_cache(self) -> None:
        await self._cache.clear()

    async def _cache_put(self, session: Session, now: datetime) -> None:
        ttl = math.ceil((session.expires_at - now).total_seconds())
        if ttl <= 0:
            return
        try:
            await self._cache.set(session, ttl)
        except Exception as e:
            logger.warning("Cache write failed for %s: %s", session.identity, e)

    async def _drop_cached(self, identity: str) -> None:
        try:
            await self._cache.delete(identity)
        except Exception as e:
            logger.warning("Cache delete failed for %s: %s", identity, e)
