"""Application bootstrap and lifecycle management."""

from typing import Protocol

import redis.asyncio as redis

from .cache import RedisSessionCache
from .channels import ChannelNotifier, INotifier, SmsSender, TelegramClient
from .config import Settings, resolve_db_path
from .dialogue import build_storyteller_dialogue
from .dispatch import CompletionDispatcher, ICallClient, VapiCallClient
from .logging_config import get_logger
from .maintenance import MaintenanceLoop
from .orchestrator import SessionOrchestrator
from .ratelimit import IRateLimiter, RateLimiter
from .sessions import ISessionStore, SessionStore, utcnow
from .sessions.store import Clock
from .storage import IStorage, Storage

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Reset data between test runs."""
        ...


class Application:
    """Main application bootstrap.

    Collaborators that talk to the outside world (Redis, the call service,
    the notifier) can be injected; anything not injected is built from
    ``settings`` and owned, i.e. closed on stop().
    """

    def __init__(
        self,
        db_path: str | None = None,
        settings: Settings | None = None,
        redis_client: redis.Redis | None = None,
        call_client: ICallClient | None = None,
        notifier: INotifier | None = None,
        clock: Clock | None = None,
        run_maintenance: bool = True,
    ):
        self._settings = settings or Settings.from_env()
        env_db_path = self._settings.database_url if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._clock = clock or utcnow
        self._run_maintenance = run_maintenance

        self._redis = redis_client
        self._owns_redis = redis_client is None
        self._call_client = call_client
        self._owns_call_client = call_client is None
        self._notifier = notifier
        self._telegram: TelegramClient | None = None

        # Components (will be initialized in start())
        self._storage: IStorage | None = None
        self._session_store: ISessionStore | None = None
        self._rate_limiter: IRateLimiter | None = None
        self._dispatcher: CompletionDispatcher | None = None
        self._orchestrator: SessionOrchestrator | None = None
        self._maintenance: MaintenanceLoop | None = None

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")
        settings = self._settings

        # 1. Storage (no dependencies)
        self._storage = Storage(self._db_path)
        await self._storage.init()
        logger.info("Storage initialized")

        # 2. Redis client shared by the cache tier and the rate limiter
        if self._redis is None:
            self._redis = redis.from_url(settings.redis_url, decode_responses=True)
        try:
            await self._redis.ping()
        except Exception as e:
            logger.warning("Redis unreachable at startup (%s), cache reads will fall back", e)

        # 3. SessionStore (depends on Storage + cache)
        self._session_store = SessionStore(
            self._storage,
            RedisSessionCache(self._redis),
            ttl_seconds=settings.session_ttl_seconds,
            clock=self._clock,
        )

        # 4. RateLimiter (depends on Redis)
        self._rate_limiter = RateLimiter(
            self._redis,
            max_requests=settings.rate_limit_max_messages,
            window_seconds=settings.rate_limit_window_seconds,
        )

        # 5. Call client and notifier (external services)
        if self._call_client is None:
            self._call_client = VapiCallClient(
                api_key=settings.vapi_api_key,
                phone_number_id=settings.vapi_phone_number_id,
                app_url=settings.app_url,
            )
        if self._notifier is None:
            self._telegram = TelegramClient(settings.telegram_bot_token)
            self._notifier = ChannelNotifier(
                self._telegram,
                SmsSender(
                    settings.twilio_account_sid,
                    settings.twilio_auth_token,
                    settings.twilio_phone_number,
                ),
            )

        # 6. Dispatcher (depends on Storage, SessionStore, call client, notifier)
        self._dispatcher = CompletionDispatcher(
            self._storage,
            self._session_store,
            self._call_client,
            self._notifier,
            dispatch_delay=settings.dispatch_delay_seconds,
            clock=self._clock,
        )
        await self._dispatcher.start()

        # 7. Orchestrator (depends on everything above)
        self._orchestrator = SessionOrchestrator(
            self._storage,
            self._session_store,
            self._rate_limiter,
            self._dispatcher,
            build_storyteller_dialogue(self._clock, settings.schedule_timezone),
            clock=self._clock,
        )
        logger.info("SessionOrchestrator ready")

        # 8. Maintenance sweeps
        self._maintenance = MaintenanceLoop(
            self._orchestrator,
            self._dispatcher,
            cleanup_interval=settings.cleanup_interval_seconds,
            pending_interval=settings.pending_interval_seconds,
        )
        if self._run_maintenance:
            await self._maintenance.start()
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        if self._maintenance:
            await self._maintenance.stop()
        if self._dispatcher:
            await self._dispatcher.stop()
        if self._telegram:
            await self._telegram.close()
        if self._call_client and self._owns_call_client:
            await self._call_client.close()
        if self._redis and self._owns_redis:
            await self._redis.aclose()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")

    async def reset(self) -> None:
        """Reset data between test runs."""
        # 1. Pause background work
        if self._maintenance:
            await self._maintenance.stop()
        if self._dispatcher:
            await self._dispatcher.stop()

        # 2. Clear durable tier, cache and counters
        if self._storage:
            await self._storage.clear()
            logger.info("Storage cleared")
        if self._session_store:
            await self._session_store.clear_cache()
        if self._rate_limiter:
            await self._rate_limiter.clear()

        # 3. Resume
        if self._dispatcher:
            await self._dispatcher.start()
        if self._maintenance and self._run_maintenance:
            await self._maintenance.start()
        logger.info("Reset complete")

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def session_store(self) -> ISessionStore:
        """Get session store instance."""
        if not self._session_store:
            raise RuntimeError("Application not started")
        return self._session_store

    @property
    def rate_limiter(self) -> IRateLimiter:
        if not self._rate_limiter:
            raise RuntimeError("Application not started")
        return self._rate_limiter

    @property
    def dispatcher(self) -> CompletionDispatcher:
        """Get completion dispatcher instance."""
        if not self._dispatcher:
            raise RuntimeError("Application not started")
        return self._dispatcher

    @property
    def orchestrator(self) -> SessionOrchestrator:
        """Get session orchestrator instance."""
        if not self._orchestrator:
            raise RuntimeError("Application not started")
        return self._orchestrator

    @property
    def maintenance(self) -> MaintenanceLoop:
        if not self._maintenance:
            raise RuntimeError("Application not started")
        return self._maintenance

    @property
    def notifier(self) -> INotifier:
        if not self._notifier or not self._storage:
            raise RuntimeError("Application not started")
        return self._notifier

    @property
    def telegram(self) -> TelegramClient | None:
        """Telegram client owned by the application, if it built one."""
        return self._telegram
