"""Tests for SessionOrchestrator."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from oldvoice.dialogue import DialogueDefinition, StateSpec
from oldvoice.dialogue.definition import goto, static
from oldvoice.errors import StaleSessionError
from oldvoice.models import WorkItemStatus
from oldvoice.orchestrator import SessionOrchestrator, replies
from oldvoice.ratelimit import RateLimiter

IDENTITY = "+14025550123"


async def send_all(orchestrator, texts, identity=IDENTITY):
    return [await orchestrator.handle_incoming(identity, text) for text in texts]


async def work_items(storage, fetch_all):
    rows = await fetch_all("SELECT id FROM work_items")
    return [await storage.get_work_item(row[0]) for row in rows]


class TestEndToEnd:
    """The storyteller script from start to a placed call."""

    async def test_full_setup(
        self,
        orchestrator,
        dispatcher,
        storage,
        session_store,
        storyteller_script,
        mock_call_client,
        fetch_all,
    ):
        responses = await send_all(orchestrator, storyteller_script)

        assert "What's the name of the person" in responses[0]
        assert responses[1] == "Great! What's the best phone number to reach Grandma Rose?"
        assert responses[-2].startswith("Perfect! Here's what I have:")
        assert "immediately" in responses[-2]
        assert responses[-1].startswith("Great! I'm calling Grandma Rose right now.")

        items = await work_items(storage, fetch_all)
        assert len(items) == 1
        item = items[0]
        assert item.identity == IDENTITY
        assert item.form_data["storyteller"]["name"] == "Grandma Rose"
        assert item.form_data["storyteller"]["phone"] == "+14025705917"
        assert item.form_data["questions"] == ["first topic"]
        assert item.form_data["avoid_topics"] == []
        assert item.form_data["ai_style"] == "warm"

        assert await session_store.get(IDENTITY) is None
        assert (await storage.get_user(IDENTITY)).completed_dialogues == 1

        await dispatcher.drain()
        mock_call_client.place_call.assert_awaited_once()
        placed = await storage.get_work_item(item.id)
        assert placed.status is WorkItemStatus.PROCESSING
        assert placed.external_call_id == "call_123"

    async def test_scheduled_setup_is_not_dispatched(
        self, orchestrator, dispatcher, storyteller_script, mock_call_client
    ):
        script = storyteller_script[:-2] + ["2", "yes"]

        responses = await send_all(orchestrator, script)

        assert responses[-1].startswith("Perfect! I'll call Grandma Rose at the scheduled time.")
        await dispatcher.drain()
        mock_call_client.place_call.assert_not_awaited()

    async def test_messages_are_logged_both_ways(self, orchestrator, fetch_all):
        await send_all(orchestrator, ["start", "Grandma Rose"])

        rows = await fetch_all(
            "SELECT direction, COUNT(*) FROM message_logs GROUP BY direction ORDER BY direction"
        )
        assert [tuple(row) for row in rows] == [("inbound", 2), ("outbound", 2)]


class TestValidation:
    async def test_rejected_input_leaves_session_unchanged(self, orchestrator, session_store):
        await send_all(orchestrator, ["start", "Grandma Rose"])
        before = await session_store.get(IDENTITY)

        response = await orchestrator.handle_incoming(IDENTITY, "12345")
        after = await session_store.get(IDENTITY)

        assert response == "Please provide a valid phone number."
        assert after.state == before.state == "collecting_phone"
        assert after.data == before.data
        assert after.version == before.version

    async def test_more_questions_accumulate(self, orchestrator, session_store, storyteller_script):
        await send_all(orchestrator, storyteller_script[:7] + ["second topic", "third topic"])

        session = await session_store.get(IDENTITY)
        assert session.state == "collecting_more_questions"
        assert session.data["questions"] == ["first topic", "second topic", "third topic"]


class TestKeywords:
    async def test_reset_is_idempotent(self, orchestrator, session_store):
        await send_all(orchestrator, ["start", "Grandma Rose"])

        first = await orchestrator.handle_incoming(IDENTITY, "reset")
        assert await session_store.get(IDENTITY) is None
        second = await orchestrator.handle_incoming(IDENTITY, " RESET ")

        assert first == second == replies.RESET_ACK
        assert await session_store.get(IDENTITY) is None

    async def test_start_supersedes_session_in_progress(self, orchestrator, session_store, storage):
        await send_all(orchestrator, ["start", "Grandma Rose"])
        old = await session_store.get(IDENTITY)

        response = await orchestrator.handle_incoming(IDENTITY, "Hello")
        new = await session_store.get(IDENTITY)

        assert "What's the name of the person" in response
        assert new.id != old.id
        assert new.state == "initial"
        assert (await storage.get_session(old.id)).state == "cancelled"

    async def test_cancel_tears_down_session(self, orchestrator, session_store):
        await send_all(orchestrator, ["start", "Grandma Rose"])

        response = await orchestrator.handle_incoming(IDENTITY, "stop")

        assert response == replies.CANCEL_ACK
        assert await session_store.get(IDENTITY) is None

    async def test_declining_at_confirmation(self, orchestrator, session_store, storyteller_script, fetch_all, storage):
        responses = await send_all(orchestrator, storyteller_script[:-1] + ["no"])

        assert responses[-1] == replies.DECLINED
        assert await session_store.get(IDENTITY) is None
        assert await work_items(storage, fetch_all) == []

    async def test_without_session(self, orchestrator, storage):
        assert await orchestrator.handle_incoming(IDENTITY, "help") == replies.HELP
        assert await orchestrator.handle_incoming(IDENTITY, "what is this") == replies.INVITATION
        assert await orchestrator.handle_incoming(IDENTITY, "cancel") == replies.INVITATION

        user = await storage.get_user(IDENTITY)
        await storage.increment_user_recordings(user.id)
        status = await orchestrator.handle_incoming(IDENTITY, "Status")
        assert status == replies.STATUS.format(count=1)

    async def test_help_inside_session_is_dialogue_input(self, orchestrator, session_store):
        await orchestrator.handle_incoming(IDENTITY, "start")

        response = await orchestrator.handle_incoming(IDENTITY, "help")

        assert response == "Great! What's the best phone number to reach help?"
        assert (await session_store.get(IDENTITY)).data["storyteller"]["name"] == "help"


class TestRateLimit:
    async def test_message_over_ceiling_is_refused(
        self, storage, session_store, redis_client, dispatcher, dialogue, clock
    ):
        orchestrator = SessionOrchestrator(
            storage,
            session_store,
            RateLimiter(redis_client, max_requests=3, window_seconds=60),
            dispatcher,
            dialogue,
            clock=clock,
        )
        await send_all(orchestrator, ["start", "Grandma Rose", "+14025705917"])
        before = await session_store.get(IDENTITY)

        response = await orchestrator.handle_incoming(IDENTITY, "grandmother")

        after = await session_store.get(IDENTITY)
        assert response == replies.RATE_LIMITED
        assert after.state == before.state == "collecting_relationship"
        assert after.version == before.version


class TestFailures:
    async def test_store_failure_returns_apology(self, orchestrator, session_store):
        await orchestrator.handle_incoming(IDENTITY, "start")
        session_store.get = AsyncMock(side_effect=RuntimeError("database is locked"))

        response = await orchestrator.handle_incoming(IDENTITY, "Grandma Rose")

        assert response == replies.APOLOGY

    async def test_stale_write_asks_for_resend(self, orchestrator, session_store):
        await orchestrator.handle_incoming(IDENTITY, "start")
        session_store.update = AsyncMock(side_effect=StaleSessionError("s1", 1))

        response = await orchestrator.handle_incoming(IDENTITY, "Grandma Rose")

        assert response == replies.RESEND

    async def test_log_failure_does_not_block_reply(self, orchestrator, storage):
        storage.log_message = AsyncMock(side_effect=RuntimeError("disk full"))

        response = await orchestrator.handle_incoming(IDENTITY, "start")

        assert "What's the name of the person" in response

    async def test_completion_failure_keeps_session(
        self, orchestrator, dispatcher, session_store, storyteller_script, mock_call_client
    ):
        await send_all(orchestrator, storyteller_script[:-1])
        dispatcher.complete = AsyncMock(side_effect=RuntimeError("boom"))

        response = await orchestrator.handle_incoming(IDENTITY, "yes")

        assert response == replies.COMPLETION_FAILED
        assert (await session_store.get(IDENTITY)).state == "confirming"

    async def test_unmapped_transition_cancels_session(
        self, storage, session_store, rate_limiter, dispatcher, clock
    ):
        definition = DialogueDefinition(
            [
                StateSpec(name="initial", prompt=static("Name?"), next=goto("limbo")),
            ],
            initial_state="initial",
            initial_data=dict,
        )
        orchestrator = SessionOrchestrator(
            storage, session_store, rate_limiter, dispatcher, definition, clock=clock
        )
        await orchestrator.handle_incoming(IDENTITY, "start")

        response = await orchestrator.handle_incoming(IDENTITY, "Rose")

        assert response == replies.RESTART
        assert await session_store.get(IDENTITY) is None


class TestConcurrency:
    async def test_same_identity_messages_are_serialized(self, orchestrator, session_store, storyteller_script):
        await send_all(orchestrator, storyteller_script[:7])

        responses = await asyncio.gather(
            orchestrator.handle_incoming(IDENTITY, "second topic"),
            orchestrator.handle_incoming(IDENTITY, "third topic"),
        )

        assert replies.RESEND not in responses
        session = await session_store.get(IDENTITY)
        assert sorted(session.data["questions"]) == ["first topic", "second topic", "third topic"]

    async def test_duplicate_confirmation_creates_one_work_item(
        self, orchestrator, dispatcher, storage, storyteller_script, fetch_all
    ):
        await send_all(orchestrator, storyteller_script[:-1])

        responses = await asyncio.gather(
            orchestrator.handle_incoming(IDENTITY, "yes"),
            orchestrator.handle_incoming(IDENTITY, "yes"),
        )

        assert len(await work_items(storage, fetch_all)) == 1
        assert any(r.startswith("Great! I'm calling") for r in responses)
        await dispatcher.drain()

    async def test_identities_are_independent(self, orchestrator, session_store):
        await asyncio.gather(
            send_all(orchestrator, ["start", "Grandma Rose"], identity="+14025550001"),
            send_all(orchestrator, ["start", "Grandpa Joe"], identity="telegram_42"),
        )

        first = await session_store.get("+14025550001")
        second = await session_store.get("telegram_42")
        assert first.data["storyteller"]["name"] == "Grandma Rose"
        assert second.data["storyteller"]["name"] == "Grandpa Joe"


@pytest.mark.parametrize("keyword", ["start", "hello", "hi", " START "])
async def test_start_keywords(orchestrator, keyword):
    response = await orchestrator.handle_incoming(IDENTITY, keyword)
    assert "What's the name of the person" in response
