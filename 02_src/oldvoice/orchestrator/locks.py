"""Per-identity mutual exclusion for in-process message handling."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class IdentityLocks:
    """One asyncio.Lock per identity, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, identity: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(identity, asyncio.Lock())
        self._users[identity] = self._users.get(identity, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[identity] -= 1
            if self._users[identity] == 0:
                del self._users[identity]
                del self._locks[identity]

    def __len__(self) -> int:
        return len(self._locks)
