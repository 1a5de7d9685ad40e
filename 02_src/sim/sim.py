"""SIM implementation: replays storyteller setup scripts against the HTTP API."""

import asyncio
import random
from typing import Protocol

import httpx

from oldvoice.logging_config import get_logger

logger = get_logger(__name__)

# One full setup, answering "now" at the schedule step.
STORYTELLER_SCRIPT = [
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

# Same setup with a detour: a rejected phone, two extra topics, a custom time.
DETOUR_SCRIPT = [
    "hi",
    "Grandpa Joe",
    "12345",
    "(402) 555-0199",
    "grandfather",
    "quiet until you ask about baseball",
    "grew up on a farm in Nebraska",
    "the farm",
    "his first car",
    "meeting grandma",
    "done",
    "the war",
    "2",
    "4",
    "3:30pm",
    "yes",
]


class ISim(Protocol):
    """Generate test traffic."""

    async def start(self) -> None:
        """Start the scripted scenario."""
        ...

    async def stop(self) -> None:
        """Stop the scenario."""
        ...


class Sim:
    """Virtual users walking through the setup dialogue concurrently."""

    def __init__(
        self,
        api_url: str = "http://localhost:8000",
        scripts: dict[str, list[str]] | None = None,
        delay_range: tuple[float, float] = (0.5, 1.5),
    ):
        self._api_url = api_url
        self._scripts = scripts or {
            "sim_user_001": STORYTELLER_SCRIPT,
            "sim_user_002": DETOUR_SCRIPT,
        }
        self._delay_range = delay_range
        self._running = False
        self._task: asyncio.Task | None = None
        self._client: httpx.AsyncClient | None = None
        self.transcripts: dict[str, list[tuple[str, str]]] = {}

    async def start(self) -> None:
        """Start the scripted scenario."""
        if self._running:
            return

        self._running = True
        self._client = httpx.AsyncClient(base_url=self._api_url, timeout=10.0)
        self.transcripts = {identity: [] for identity in self._scripts}
        self._task = asyncio.create_task(self._run_scenario())

    async def stop(self) -> None:
        """Stop the scenario."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._client:
            await self._client.aclose()
            self._client = None

    async def _run_scenario(self) -> None:
        logger.info("SIM: starting %s script(s)", len(self._scripts))
        try:
            await asyncio.gather(
                *(
                    self._run_script(identity, script)
                    for identity, script in self._scripts.items()
                )
            )
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("SIM scenario error: %s", e)
        finally:
            self._running = False
            logger.info("SIM: scenario finished")

    async def _run_script(self, identity: str, script: list[str]) -> None:
        for text in script:
            if not self._running:
                break
            await self._send_message(identity, text)
            await asyncio.sleep(random.uniform(*self._delay_range))

    async def _send_message(self, identity: str, text: str) -> str | None:
        """Send a message via HTTP API."""
        if not self._client:
            return None

        try:
            response = await self._client.post(
                "/api/messages",
                json={"identity": identity, "text": text},
            )
        except httpx.HTTPError as e:
            logger.error("SIM: Failed to send message: %s", e)
            return None

        if response.status_code != 200:
            logger.error("SIM: Error sending message: %s", response.status_code)
            return None

        reply = response.json().get("response", "")
        self.transcripts.setdefault(identity, []).append((text, reply))
        logger.info("SIM: %s -> %s", identity, text)
        logger.info("SIM: Response: %s", reply)
        return reply
