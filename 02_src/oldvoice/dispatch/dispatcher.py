"""Completion dispatcher: turns a finished dialogue into a placed call."""

import asyncio
import uuid
from typing import Any, Protocol

from ..channels import INotifier
from ..dialogue.schedule import IMMEDIATE, scheduled_for
from ..logging_config import bind, get_logger
from ..models import Session, User, WorkItem, WorkItemStatus
from ..sessions import ISessionStore, utcnow
from ..sessions.store import Clock
from ..storage import IStorage
from .call_client import ICallClient

logger = get_logger(__name__)

IMMEDIATE_ACK = (
    "Great! I'm calling {name} right now. You'll receive the recording when "
    "it's ready. This usually takes 10-30 minutes."
)
SCHEDULED_ACK = (
    "Perfect! I'll call {name} at the scheduled time. You'll receive the "
    "recording when it's ready."
)
CALL_FAILED = "Sorry, I couldn't reach {name}. Please try again later."
RECORDING_READY = (
    "Great news! The conversation with {name} is ready! 🎉\n\n"
    "Recording: {url}\n\n"
    "Duration: {minutes} minutes\n\n"
    "The recording will be available for 30 days. Save it to keep it forever!"
)
RECORDING_FAILED = (
    "There was an issue processing the recording with {name}. We're looking into it."
)


class ICompletionDispatcher(Protocol):
    """Hands completed dialogues to the call service exactly once."""

    async def complete(self, user: User, session: Session, data: dict[str, Any]) -> str:
        """Persist the work item and return the user-facing acknowledgment."""
        ...

    async def process_work_item(self, item: WorkItem) -> bool:
        """Claim and place the call for one item. Never raises."""
        ...

    async def list_due_work_items(self) -> list[WorkItem]:
        """Pending items whose scheduled time has come."""
        ...

    async def handle_call_event(self, event: dict[str, Any]) -> None:
        """Apply a call-service status callback."""
        ...


class CompletionDispatcher:
    """Creates work items and runs their calls in tracked background tasks."""

    def __init__(
        self,
        storage: IStorage,
        session_store: ISessionStore,
        call_client: ICallClient,
        notifier: INotifier,
        dispatch_delay: float = 1.0,
        clock: Clock = utcnow,
    ):
        self._storage = storage
        self._sessions = session_store
        self._call_client = call_client
        self._notifier = notifier
        self._dispatch_delay = dispatch_delay
        self._clock = clock
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    async def start(self) -> None:
        logger.info("Starting CompletionDispatcher")
        self._running = True

    async def stop(self) -> None:
        """Cancel outstanding dispatch tasks.

        Items not yet claimed stay pending. Items whose call was in flight are
        returned to pending, so the sweep picks both up again.
        """
        logger.info("Stopping CompletionDispatcher")
        self._running = False

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def drain(self) -> None:
        """Wait for every scheduled dispatch task to finish."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def complete(self, user: User, session: Session, data: dict[str, Any]) -> str:
        now = self._clock()
        schedule = data.get("scheduled_time")
        storyteller = data.get("storyteller", {})

        item = WorkItem(
            id=str(uuid.uuid4()),
            user_id=user.id,
            identity=session.identity,
            storyteller_name=storyteller.get("name", ""),
            storyteller_phone=storyteller.get("phone", ""),
            form_data=data,
            scheduled_for=scheduled_for(schedule, now),
            created_at=now,
        )
        item = await self._sessions.complete(session, data, item)
        logger.info(
            "Work item %s created for %s, scheduled %s",
            item.id,
            session.identity,
            schedule,
        )

        if schedule == IMMEDIATE:
            self._schedule(item)
            return IMMEDIATE_ACK.format(name=item.storyteller_name)
        return SCHEDULED_ACK.format(name=item.storyteller_name)

    def _schedule(self, item: WorkItem) -> None:
        if not self._running:
            logger.warning("Dispatcher stopped, work item %s left for the sweep", item.id)
            return
        task = asyncio.create_task(self._delayed_process(item))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _delayed_process(self, item: WorkItem) -> None:
        await asyncio.sleep(self._dispatch_delay)
        await self.process_work_item(item)

    async def list_due_work_items(self) -> list[WorkItem]:
        return await self._storage.list_due_work_items(self._clock())

    async def process_work_item(self, item: WorkItem) -> bool:
        log = bind(logger, work_item=item.id, identity=item.identity)
        in_flight = False
        try:
            if not await self._storage.claim_work_item(item.id, self._clock()):
                log.info("Work item %s already claimed, skipping", item.id)
                return False

            in_flight = True
            result = await self._call_client.place_call(item)
            in_flight = False
            if not result.success:
                await self._fail(item, result.error or "Call could not be placed")
                return False

            await self._storage.update_work_item(
                item.id,
                status=WorkItemStatus.PROCESSING,
                external_call_id=result.call_id,
                assistant_id=result.assistant_id,
            )
            log.info("Work item %s is processing as call %s", item.id, result.call_id)
            return True

        except asyncio.CancelledError:
            # A claimed item left in "calling" is invisible to the sweep.
            if in_flight:
                await asyncio.shield(self._release(item))
            raise
        except Exception as e:
            log.error("Processing work item %s failed: %s", item.id, e, exc_info=True)
            await self._fail(item, str(e))
            return False

    async def _release(self, item: WorkItem) -> None:
        log = bind(logger, work_item=item.id, identity=item.identity)
        try:
            released = await self._storage.release_work_item(item.id)
        except Exception as e:
            log.error("Could not return work item %s to pending: %s", item.id, e)
            return
        if released:
            log.warning("Call for work item %s interrupted, item is pending again", item.id)

    async def _fail(self, item: WorkItem, error: str) -> None:
        log = bind(logger, work_item=item.id, identity=item.identity)
        log.error("Work item %s failed: %s", item.id, error)
        try:
            await self._storage.update_work_item(
                item.id, status=WorkItemStatus.FAILED, error=error
            )
        except Exception as e:
            log.error("Could not mark work item %s failed: %s", item.id, e)

        await self._notify(item.identity, CALL_FAILED.format(name=item.storyteller_name))

    async def _notify(self, identity: str, text: str) -> None:
        try:
            sent = await self._notifier.send(identity, text)
        except Exception as e:
            logger.error("Notifier raised for %s: %s", identity, e)
            return
        if not sent:
            logger.warning("Notification to %s was not delivered", identity)

    async def handle_call_event(self, event: dict[str, Any]) -> None:
        # Vapi wraps server messages in {"message": {...}}; older payloads are flat.
        payload = event.get("message", event)
        event_type = payload.get("type")
        call = payload.get("call") or {}
        call_id = call.get("id")

        logger.info("Call event %s for call %s", event_type, call_id)
        if not call_id:
            logger.warning("Call event %s without a call id ignored", event_type)
            return

        item = await self._storage.get_work_item_by_call_id(call_id)
        if item is None:
            logger.warning("No work item for call %s (%s)", call_id, event_type)
            return

        if event_type == "call-started":
            return
        if event_type == "call-ended":
            await self._storage.update_work_item(
                item.id, duration_seconds=_seconds(call.get("duration"))
            )
        elif event_type == "transcript-ready":
            await self._storage.update_work_item(item.id, transcript=call.get("transcript"))
        elif event_type == "recording-ready":
            await self._recording_ready(item, call)
        else:
            logger.info("Unhandled call event type %s", event_type)

    async def _recording_ready(self, item: WorkItem, call: dict[str, Any]) -> None:
        try:
            details = call
            if not call.get("recordingUrl"):
                details = await self._call_client.get_call(item.external_call_id)

            duration = _seconds(details.get("duration")) or item.duration_seconds or 0
            await self._storage.update_work_item(
                item.id,
                status=WorkItemStatus.COMPLETED,
                recording_url=details.get("recordingUrl"),
                transcript=details.get("transcript") or call.get("transcript"),
                duration_seconds=duration,
                completed_at=self._clock(),
            )
            await self._storage.increment_user_recordings(item.user_id)
        except Exception as e:
            logger.error(
                "Recording for work item %s could not be stored: %s",
                item.id,
                e,
                exc_info=True,
            )
            try:
                await self._storage.update_work_item(
                    item.id, status=WorkItemStatus.FAILED, error=str(e)
                )
            except Exception as update_error:
                logger.error("Could not mark work item %s failed: %s", item.id, update_error)
            await self._notify(
                item.identity, RECORDING_FAILED.format(name=item.storyteller_name)
            )
            return

        await self._notify(
            item.identity,
            RECORDING_READY.format(
                name=item.storyteller_name,
                url=details.get("recordingUrl"),
                minutes=round(duration / 60),
            ),
        )


def _seconds(value: Any) -> int | None:
    if value is None:
        return None
    return int(round(float(value)))
