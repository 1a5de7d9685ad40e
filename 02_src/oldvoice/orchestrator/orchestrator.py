"""Session orchestrator: one inbound (identity, text) in, one reply out."""

import uuid
from typing import Literal, Protocol

from ..dialogue import DialogueDefinition
from ..dispatch import ICompletionDispatcher
from ..errors import StaleSessionError
from ..logging_config import bind, get_logger
from ..models import CANCELLED, COMPLETED, MessageLogEntry, Session, User
from ..ratelimit import IRateLimiter
from ..sessions import ISessionStore, utcnow
from ..sessions.store import Clock
from ..storage import IStorage
from . import replies
from .locks import IdentityLocks

logger = get_logger(__name__)


class ISessionOrchestrator(Protocol):
    """Entry point for every channel adapter."""

    async def handle_incoming(self, identity: str, text: str) -> str:
        """Advance the identity's dialogue and return the reply. Never raises."""
        ...

    async def cleanup_expired(self) -> int:
        """Delete durable sessions past expiry."""
        ...


class SessionOrchestrator:
    """Routes each message through keywords, rate limiting and the dialogue table.

    Messages for one identity are handled one at a time; different
    identities proceed concurrently. Any failure below this boundary is
    turned into a fixed reply so adapters always have text to send.
    """

    def __init__(
        self,
        storage: IStorage,
        session_store: ISessionStore,
        rate_limiter: IRateLimiter,
        dispatcher: ICompletionDispatcher,
        dialogue: DialogueDefinition,
        clock: Clock = utcnow,
    ):
        self._storage = storage
        self._sessions = session_store
        self._rate_limiter = rate_limiter
        self._dispatcher = dispatcher
        self._dialogue = dialogue
        self._clock = clock
        self._locks = IdentityLocks()

    async def handle_incoming(self, identity: str, text: str) -> str:
        log = bind(logger, identity=identity)
        log.info("Message received from %s: %s", identity, text[:100])
        await self._log(identity, "inbound", text)

        try:
            async with self._locks.hold(identity):
                response = await self._handle(identity, text)
        except StaleSessionError as e:
            log.warning("Stale session write for %s on %r: %s", identity, text, e)
            response = replies.RESEND
        except Exception as e:
            log.error(
                "Error handling message from %s: %r: %s",
                identity,
                text,
                e,
                exc_info=True,
            )
            response = replies.APOLOGY

        await self._log(identity, "outbound", response)
        return response

    async def cleanup_expired(self) -> int:
        return await self._sessions.cleanup_expired()

    async def _handle(self, identity: str, text: str) -> str:
        limit = await self._rate_limiter.check(identity)
        if not limit.allowed:
            logger.warning(
                "Rate limit exceeded for %s, resets in %ss", identity, limit.reset_in
            )
            return replies.RATE_LIMITED

        user = await self._storage.get_or_create_user(identity)
        keyword = replies.normalize_keyword(text)

        if keyword in replies.RESET_KEYWORDS:
            await self._sessions.delete(identity)
            return replies.RESET_ACK

        if keyword in replies.START_KEYWORDS:
            data = self._dialogue.new_data()
            session = await self._sessions.create(
                identity, self._dialogue.initial_state, data
            )
            return self._dialogue.prompt(session.state, session.data)

        session = await self._sessions.get(identity)
        if session is None:
            if keyword in replies.HELP_KEYWORDS:
                return replies.HELP
            if keyword in replies.STATUS_KEYWORDS:
                return replies.STATUS.format(count=user.total_recordings)
            return replies.INVITATION

        if keyword in replies.CANCEL_KEYWORDS:
            await self._sessions.delete(identity)
            return replies.CANCEL_ACK

        return await self._advance(user, session, text)

    async def _advance(self, user: User, session: Session, text: str) -> str:
        step = self._dialogue.advance(session.state, text, session.data)

        if not step.accepted:
            logger.info(
                "Input rejected for %s in %s: %r", session.identity, session.state, text
            )
            return step.error

        next_state = step.next_state
        if next_state == COMPLETED:
            try:
                return await self._dispatcher.complete(user, session, step.data)
            except StaleSessionError:
                raise
            except Exception as e:
                logger.error(
                    "Completion failed for %s in %s: %s",
                    session.identity,
                    session.state,
                    e,
                    exc_info=True,
                )
                return replies.COMPLETION_FAILED

        if next_state == CANCELLED:
            await self._sessions.delete(session.identity)
            return replies.DECLINED

        if next_state is None or next_state not in self._dialogue.state_names:
            logger.error(
                "No transition from %s for %s on %r (got %r), cancelling session",
                session.state,
                session.identity,
                text,
                next_state,
            )
            await self._sessions.delete(session.identity)
            return replies.RESTART

        updated = await self._sessions.update(session, next_state, step.data)
        logger.debug("Session %s moved %s -> %s", session.id, session.state, next_state)
        return self._dialogue.prompt(updated.state, updated.data)

    async def _log(
        self, identity: str, direction: Literal["inbound", "outbound"], text: str
    ) -> None:
        entry = MessageLogEntry(
            id=str(uuid.uuid4()),
            identity=identity,
            direction=direction,
            text=text,
            timestamp=self._clock(),
        )
        try:
            await self._storage.log_message(entry)
        except Exception as e:
            logger.warning("Could not log %s message for %s: %s", direction, identity, e)
