"""Downstream voice-call client (Vapi REST API)."""

from typing import Any, Protocol

import httpx

from ..errors import DispatchError
from ..logging_config import get_logger
from ..models import DispatchResult, WorkItem

logger = get_logger(__name__)

VAPI_BASE_URL = "https://api.vapi.ai"

STYLE_PROMPTS = {
    "warm": "You are a warm, friendly interviewer having a heartfelt conversation.",
    "professional": "You are a professional oral historian conducting an interview.",
    "curious": "You are like a curious grandchild, eager to learn family stories.",
}

VOICE_ID = "21m00Tcm4TlvDq8ikWAM"
END_CALL_PHRASES = ["goodbye", "bye", "talk to you later", "have a good day"]
MAX_CALL_SECONDS = 1800


class ICallClient(Protocol):
    """Places the storytelling call for a work item."""

    async def place_call(self, item: WorkItem) -> DispatchResult:
        """Create an assistant for the item and dial the storyteller."""
        ...

    async def get_call(self, call_id: str) -> dict[str, Any]:
        """Fetch call details (recording, transcript, duration)."""
        ...

    async def close(self) -> None:
        """Release the HTTP connection pool."""
        ...


def build_assistant_prompt(form_data: dict[str, Any]) -> str:
    """System prompt for the interviewer, from the collected form data."""
    storyteller = form_data.get("storyteller", {})
    questions = form_data.get("questions", [])
    avoid_topics = form_data.get("avoid_topics", [])
    style = STYLE_PROMPTS.get(form_data.get("ai_style"), STYLE_PROMPTS["warm"])
    relationship = storyteller.get("relationship", "family member")

    topics = "\n".join(f"{i}. {q}" for i, q in enumerate(questions, start=1))
    avoid = f"\n\nTopics to avoid: {', '.join(avoid_topics)}" if avoid_topics else ""
    caller = (
        "grandchild/child"
        if relationship.lower() in ("grandmother", "mother")
        else "family member"
    )

    return (
        f"{style}\n\n"
        f"You're speaking with {storyteller.get('name')}, who is the caller's {relationship}.\n\n"
        f"Background: {storyteller.get('background', '')}\n"
        f"Personality: {storyteller.get('personality', '')}\n\n"
        "Your goal is to have a natural conversation exploring these topics:\n"
        f"{topics}\n\n"
        "Guidelines:\n"
        "- Be conversational and build rapport\n"
        "- Ask follow-up questions to get deeper stories\n"
        "- Show genuine interest and empathy\n"
        "- Keep the conversation flowing naturally\n"
        "- Aim for 10-20 minutes of conversation\n"
        f"- Thank them at the end{avoid}\n\n"
        "Start by introducing yourself warmly and explaining you're calling "
        f"on behalf of their {caller}."
    )


class VapiCallClient:
    """Vapi client: one assistant per work item, then an outbound phone call."""

    def __init__(
        self,
        api_key: str | None,
        phone_number_id: str | None,
        app_url: str,
        base_url: str = VAPI_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key
        self._phone_number_id = phone_number_id
        self._app_url = app_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {api_key or ''}"},
            timeout=30.0,
        )
        if not api_key or not phone_number_id:
            logger.warning("Vapi credentials not configured, calls will fail")

    async def _request(
        self, method: str, path: str, body: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        if not self._api_key:
            raise DispatchError("Vapi API key not configured")

        try:
            response = await self._client.request(method, path, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            try:
                detail = e.response.json().get("message") or e.response.text
            except ValueError:
                detail = e.response.text
            raise DispatchError(
                f"Vapi API error: {detail}", status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise DispatchError(f"Vapi request failed: {e}") from e

        return response.json()

    def _assistant_payload(self, item: WorkItem) -> dict[str, Any]:
        return {
            "name": f"Story Collector - {item.storyteller_name}",
            "model": {
                "provider": "openai",
                "model": "gpt-4",
                "temperature": 0.7,
                "messages": [
                    {"role": "system", "content": build_assistant_prompt(item.form_data)}
                ],
            },
            "voice": {"provider": "11labs", "voiceId": VOICE_ID},
            "firstMessage": (
                f"Hello! Is this {item.storyteller_name}? I'm calling on behalf of "
                "your family member who wanted to record some of your stories. "
                "They thought it would be wonderful to preserve your memories. "
                "Do you have a few minutes to chat?"
            ),
            "recordingEnabled": True,
            "endCallPhrases": END_CALL_PHRASES,
            "maxDurationSeconds": MAX_CALL_SECONDS,
            "transcriber": {"provider": "deepgram", "model": "nova-2"},
            "serverUrl": f"{self._app_url}/api/vapi/webhook",
        }

    async def place_call(self, item: WorkItem) -> DispatchResult:
        assistant_id = None
        try:
            assistant = await self._request(
                "POST", "/assistant", self._assistant_payload(item)
            )
            assistant_id = assistant["id"]

            call = await self._request(
                "POST",
                "/call/phone",
                {
                    "assistantId": assistant_id,
                    "phoneNumberId": self._phone_number_id,
                    "customer": {"number": item.storyteller_phone},
                },
            )
        except (DispatchError, KeyError) as e:
            logger.error("Failed to create call for work item %s: %s", item.id, e)
            return DispatchResult(success=False, assistant_id=assistant_id, error=str(e))

        logger.info("Call %s placed for work item %s", call.get("id"), item.id)
        return DispatchResult(
            success=True,
            call_id=call.get("id"),
            assistant_id=assistant_id,
            raw=call,
        )

    async def get_call(self, call_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/call/{call_id}")

    async def close(self) -> None:
        await self._client.aclose()
