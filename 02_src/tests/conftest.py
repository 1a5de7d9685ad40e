"""Pytest configuration and fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import fakeredis.aioredis
import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    """Frozen clock at 2026-01-15 12:00 UTC."""
    return FrozenClock()


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from oldvoice.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest_asyncio.fixture
async def redis_client():
    """Create a fake Redis client for testing."""
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def session_cache(redis_client):
    from oldvoice.cache import RedisSessionCache

    return RedisSessionCache(redis_client)


@pytest.fixture
def session_store(storage, session_cache, clock):
    """Two-tier session store over in-memory SQLite and fake Redis."""
    from oldvoice.sessions import SessionStore

    return SessionStore(storage, session_cache, ttl_seconds=3600, clock=clock)


@pytest.fixture
def rate_limiter(redis_client):
    from oldvoice.ratelimit import RateLimiter

    return RateLimiter(redis_client, max_requests=50, window_seconds=3600)


@pytest.fixture
def mock_call_client():
    """Create mock call client that always places the call."""
    from oldvoice.models import DispatchResult

    client = Mock()
    client.place_call = AsyncMock(
        return_value=DispatchResult(
            success=True, call_id="call_123", assistant_id="asst_123"
        )
    )
    client.get_call = AsyncMock(
        return_value={
            "id": "call_123",
            "recordingUrl": "https://recordings.example/call_123.mp3",
            "transcript": "AI: Hello! ...",
            "duration": 600,
        }
    )
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_notifier():
    """Create mock notifier."""
    notifier = Mock()
    notifier.send = AsyncMock(return_value=True)
    return notifier


@pytest.fixture
def dialogue(clock):
    from oldvoice.dialogue import build_storyteller_dialogue

    return build_storyteller_dialogue(clock)


@pytest_asyncio.fixture
async def dispatcher(storage, session_store, mock_call_client, mock_notifier, clock):
    """Create CompletionDispatcher with no dispatch delay."""
    from oldvoice.dispatch import CompletionDispatcher

    d = CompletionDispatcher(
        storage,
        session_store,
        mock_call_client,
        mock_notifier,
        dispatch_delay=0,
        clock=clock,
    )
    await d.start()
    yield d
    await d.stop()


@pytest.fixture
def orchestrator(storage, session_store, rate_limiter, dispatcher, dialogue, clock):
    """Create SessionOrchestrator wired to the fixtures above."""
    from oldvoice.orchestrator import SessionOrchestrator

    return SessionOrchestrator(
        storage,
        session_store,
        rate_limiter,
        dispatcher,
        dialogue,
        clock=clock,
    )


@pytest.fixture
def storyteller_script():
    """Replies that take a fresh dialogue all the way to completion."""
    return [
        "start",
        "Grandma Rose",
        "+14025705917",
        "grandmother",
        "warm person",
        "born in 1930",
        "first topic",
        "done",
        "none",
        "1",
        "1",
        "yes",
    ]


@pytest.fixture
def fetch_all(storage):
    """Run a raw query against the storage connection."""

    async def run(sql: str, params: tuple = ()) -> list:
        async with storage._conn.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    return run
