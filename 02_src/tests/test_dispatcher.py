"""Tests for CompletionDispatcher."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from oldvoice.dispatch import CompletionDispatcher
from oldvoice.dispatch.dispatcher import (
    CALL_FAILED,
    IMMEDIATE_ACK,
    RECORDING_FAILED,
    SCHEDULED_ACK,
)
from oldvoice.errors import StaleSessionError
from oldvoice.models import DispatchResult, WorkItemStatus

IDENTITY = "+14025550123"


def form_data(scheduled_time="now"):
    return {
        "storyteller": {
            "name": "Grandma Rose",
            "phone": "+14025705917",
            "relationship": "grandmother",
        },
        "questions": ["first topic"],
        "avoid_topics": [],
        "ai_style": "warm",
        "scheduled_time": scheduled_time,
    }


async def confirming_session(storage, session_store, identity=IDENTITY):
    user = await storage.get_or_create_user(identity)
    session = await session_store.create(identity, "confirming", form_data())
    return user, session


async def only_work_item(storage):
    async with storage._conn.execute("SELECT id FROM work_items") as cursor:
        rows = await cursor.fetchall()
    assert len(rows) == 1
    return await storage.get_work_item(rows[0][0])


async def processing_item(dispatcher, storage, session_store):
    user, session = await confirming_session(storage, session_store)
    await dispatcher.complete(user, session, form_data())
    await dispatcher.drain()
    return await only_work_item(storage)


def call_event(event_type, call_id="call_123", **call):
    return {"message": {"type": event_type, "call": {"id": call_id, **call}}}


class TestComplete:
    async def test_immediate_schedules_call(
        self, dispatcher, storage, session_store, mock_call_client
    ):
        user, session = await confirming_session(storage, session_store)

        reply = await dispatcher.complete(user, session, form_data())

        assert reply == IMMEDIATE_ACK.format(name="Grandma Rose")
        await dispatcher.drain()
        mock_call_client.place_call.assert_awaited_once()
        item = await only_work_item(storage)
        assert item.session_id == session.id
        assert item.status is WorkItemStatus.PROCESSING
        assert item.external_call_id == "call_123"
        assert item.assistant_id == "asst_123"

    async def test_scheduled_waits_for_sweep(
        self, dispatcher, storage, session_store, mock_call_client, clock
    ):
        user, session = await confirming_session(storage, session_store)
        later = (clock() + timedelta(hours=2)).isoformat()

        reply = await dispatcher.complete(user, session, form_data(later))

        assert reply == SCHEDULED_ACK.format(name="Grandma Rose")
        assert dispatcher.pending_tasks == 0
        item = await only_work_item(storage)
        assert item.status is WorkItemStatus.PENDING
        assert item.scheduled_for == clock() + timedelta(hours=2)
        assert await dispatcher.list_due_work_items() == []

        clock.advance(hours=2)
        assert [i.id for i in await dispatcher.list_due_work_items()] == [item.id]
        mock_call_client.place_call.assert_not_awaited()

    async def test_completing_twice_is_rejected(self, dispatcher, storage, session_store):
        user, session = await confirming_session(storage, session_store)
        await dispatcher.complete(user, session, form_data())

        with pytest.raises(StaleSessionError):
            await dispatcher.complete(user, session, form_data())

        await dispatcher.drain()
        await only_work_item(storage)

    async def test_stopped_dispatcher_leaves_item_pending(
        self, storage, session_store, mock_call_client, mock_notifier, clock
    ):
        dispatcher = CompletionDispatcher(
            storage, session_store, mock_call_client, mock_notifier, clock=clock
        )
        user, session = await confirming_session(storage, session_store)

        await dispatcher.complete(user, session, form_data())

        assert dispatcher.pending_tasks == 0
        assert (await only_work_item(storage)).status is WorkItemStatus.PENDING


class TestProcessWorkItem:
    async def _pending_item(self, dispatcher, storage, session_store, clock):
        user, session = await confirming_session(storage, session_store)
        later = (clock() + timedelta(minutes=30)).isoformat()
        await dispatcher.complete(user, session, form_data(later))
        return await only_work_item(storage)

    async def test_success(self, dispatcher, storage, session_store, clock, mock_notifier):
        item = await self._pending_item(dispatcher, storage, session_store, clock)

        assert await dispatcher.process_work_item(item) is True

        stored = await storage.get_work_item(item.id)
        assert stored.status is WorkItemStatus.PROCESSING
        assert stored.called_at == clock()
        mock_notifier.send.assert_not_awaited()

    async def test_claimed_exactly_once(
        self, dispatcher, storage, session_store, clock, mock_call_client
    ):
        item = await self._pending_item(dispatcher, storage, session_store, clock)

        results = await asyncio.gather(
            dispatcher.process_work_item(item),
            dispatcher.process_work_item(item),
        )

        assert sorted(results) == [False, True]
        mock_call_client.place_call.assert_awaited_once()

    async def test_failed_call_marks_item_and_notifies(
        self, dispatcher, storage, session_store, clock, mock_call_client, mock_notifier
    ):
        item = await self._pending_item(dispatcher, storage, session_store, clock)
        mock_call_client.place_call.return_value = DispatchResult(
            success=False, error="Invalid phone number"
        )

        assert await dispatcher.process_work_item(item) is False

        stored = await storage.get_work_item(item.id)
        assert stored.status is WorkItemStatus.FAILED
        assert stored.error == "Invalid phone number"
        mock_notifier.send.assert_awaited_once_with(
            IDENTITY, CALL_FAILED.format(name="Grandma Rose")
        )

    async def test_client_exception_is_contained(
        self, dispatcher, storage, session_store, clock, mock_call_client, mock_notifier
    ):
        item = await self._pending_item(dispatcher, storage, session_store, clock)
        mock_call_client.place_call.side_effect = RuntimeError("connection reset")

        assert await dispatcher.process_work_item(item) is False

        stored = await storage.get_work_item(item.id)
        assert stored.status is WorkItemStatus.FAILED
        assert stored.error == "connection reset"
        mock_notifier.send.assert_awaited_once()

    async def test_notifier_failure_is_contained(
        self, dispatcher, storage, session_store, clock, mock_call_client, mock_notifier
    ):
        item = await self._pending_item(dispatcher, storage, session_store, clock)
        mock_call_client.place_call.return_value = DispatchResult(success=False, error="x")
        mock_notifier.send.side_effect = RuntimeError("telegram down")

        assert await dispatcher.process_work_item(item) is False

    async def test_stop_cancels_delayed_dispatch(
        self, storage, session_store, mock_call_client, mock_notifier, clock
    ):
        dispatcher = CompletionDispatcher(
            storage, session_store, mock_call_client, mock_notifier, dispatch_delay=60, clock=clock
        )
        await dispatcher.start()
        user, session = await confirming_session(storage, session_store)
        await dispatcher.complete(user, session, form_data())
        assert dispatcher.pending_tasks == 1

        await dispatcher.stop()

        assert dispatcher.pending_tasks == 0
        mock_call_client.place_call.assert_not_awaited()
        assert (await only_work_item(storage)).status is WorkItemStatus.PENDING

    async def test_stop_during_call_returns_item_to_pending(
        self, dispatcher, storage, session_store, mock_call_client, mock_notifier
    ):
        calling = asyncio.Event()

        async def slow_call(item):
            calling.set()
            await asyncio.sleep(60)

        mock_call_client.place_call.side_effect = slow_call
        user, session = await confirming_session(storage, session_store)
        await dispatcher.complete(user, session, form_data())
        await asyncio.wait_for(calling.wait(), timeout=5)
        assert (await only_work_item(storage)).status is WorkItemStatus.CALLING

        await dispatcher.stop()

        item = await only_work_item(storage)
        assert item.status is WorkItemStatus.PENDING
        assert item.called_at is None
        assert [i.id for i in await dispatcher.list_due_work_items()] == [item.id]
        mock_notifier.send.assert_not_awaited()


class TestCallEvents:
    async def test_call_started_is_ignored(self, dispatcher, storage, session_store):
        item = await processing_item(dispatcher, storage, session_store)

        await dispatcher.handle_call_event(call_event("call-started"))

        assert (await storage.get_work_item(item.id)).status is WorkItemStatus.PROCESSING

    async def test_call_ended_stores_duration(self, dispatcher, storage, session_store):
        item = await processing_item(dispatcher, storage, session_store)

        await dispatcher.handle_call_event(call_event("call-ended", duration=612.4))

        stored = await storage.get_work_item(item.id)
        assert stored.duration_seconds == 612
        assert stored.status is WorkItemStatus.PROCESSING

    async def test_transcript_ready(self, dispatcher, storage, session_store):
        item = await processing_item(dispatcher, storage, session_store)

        await dispatcher.handle_call_event(
            call_event("transcript-ready", transcript="AI: Hello!")
        )

        assert (await storage.get_work_item(item.id)).transcript == "AI: Hello!"

    async def test_recording_ready_with_url(
        self, dispatcher, storage, session_store, mock_call_client, mock_notifier, clock
    ):
        item = await processing_item(dispatcher, storage, session_store)

        await dispatcher.handle_call_event(
            call_event(
                "recording-ready",
                recordingUrl="https://recordings.example/r.mp3",
                transcript="AI: Hi",
                duration=300,
            )
        )

        stored = await storage.get_work_item(item.id)
        assert stored.status is WorkItemStatus.COMPLETED
        assert stored.recording_url == "https://recordings.example/r.mp3"
        assert stored.transcript == "AI: Hi"
        assert stored.duration_seconds == 300
        assert stored.completed_at == clock()
        assert (await storage.get_user(IDENTITY)).total_recordings == 1
        mock_call_client.get_call.assert_not_awaited()

        identity, text = mock_notifier.send.await_args.args
        assert identity == IDENTITY
        assert "https://recordings.example/r.mp3" in text
        assert "Duration: 5 minutes" in text

    async def test_recording_ready_fetches_missing_url(
        self, dispatcher, storage, session_store, mock_call_client, mock_notifier
    ):
        item = await processing_item(dispatcher, storage, session_store)

        await dispatcher.handle_call_event(call_event("recording-ready"))

        mock_call_client.get_call.assert_awaited_once_with("call_123")
        stored = await storage.get_work_item(item.id)
        assert stored.recording_url == "https://recordings.example/call_123.mp3"
        assert stored.duration_seconds == 600
        assert "Duration: 10 minutes" in mock_notifier.send.await_args.args[1]

    async def test_recording_lookup_failure_marks_failed(
        self, dispatcher, storage, session_store, mock_call_client, mock_notifier
    ):
        item = await processing_item(dispatcher, storage, session_store)
        mock_call_client.get_call.side_effect = RuntimeError("404")

        await dispatcher.handle_call_event(call_event("recording-ready"))

        stored = await storage.get_work_item(item.id)
        assert stored.status is WorkItemStatus.FAILED
        assert (await storage.get_user(IDENTITY)).total_recordings == 0
        mock_notifier.send.assert_awaited_once_with(
            IDENTITY, RECORDING_FAILED.format(name="Grandma Rose")
        )

    async def test_flat_payload(self, dispatcher, storage, session_store):
        item = await processing_item(dispatcher, storage, session_store)

        await dispatcher.handle_call_event(
            {"type": "call-ended", "call": {"id": "call_123", "duration": 60}}
        )

        assert (await storage.get_work_item(item.id)).duration_seconds == 60

    async def test_unknown_call_is_ignored(self, dispatcher, mock_notifier):
        await dispatcher.handle_call_event(call_event("recording-ready", call_id="call_999"))
        await dispatcher.handle_call_event({"message": {"type": "call-ended"}})

        mock_notifier.send.assert_not_awaited()

    async def test_storage_error_propagates(self, dispatcher, storage):
        storage.get_work_item_by_call_id = AsyncMock(side_effect=RuntimeError("db"))

        with pytest.raises(RuntimeError):
            await dispatcher.handle_call_event(call_event("call-ended"))
