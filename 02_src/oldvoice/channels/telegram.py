"""Telegram Bot API adapter."""

from typing import Any

import httpx

from ..logging_config import get_logger

logger = get_logger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
IDENTITY_PREFIX = "telegram_"


def telegram_identity(chat_id: int | str) -> str:
    return f"{IDENTITY_PREFIX}{chat_id}"


def chat_id_for(identity: str) -> str | None:
    """Chat id encoded in a telegram identity, or None for other channels."""
    if not identity.startswith(IDENTITY_PREFIX):
        return None
    return identity[len(IDENTITY_PREFIX):]


def keyboard_for(text: str) -> list[list[str]] | None:
    """Quick-reply buttons matching the question a reply asks."""
    if "Choose one:" in text:
        return [["1", "2", "3"]]
    if "Reply 'done'" in text:
        return [["done"]]
    if "Reply 'yes'" in text or "'cancel'" in text:
        return [["yes", "cancel"]]
    if "Reply 'none'" in text:
        return [["none"]]
    return None


class TelegramClient:
    """Minimal sendMessage / setWebhook client."""

    def __init__(
        self,
        bot_token: str | None,
        base_url: str = TELEGRAM_API_URL,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._token = bot_token
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=10.0)
        if not bot_token:
            logger.warning("Telegram bot token not configured, sends will fail")

    @property
    def configured(self) -> bool:
        return bool(self._token)

    async def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.post(f"/bot{self._token}/{method}", json=payload)
        response.raise_for_status()
        return response.json()

    async def send_message(self, chat_id: int | str, text: str) -> bool:
        if not self._token:
            logger.error("Cannot send Telegram message to %s: no bot token", chat_id)
            return False

        payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
        keyboard = keyboard_for(text)
        if keyboard:
            payload["reply_markup"] = {"keyboard": keyboard, "resize_keyboard": True}

        try:
            await self._call("sendMessage", payload)
        except httpx.HTTPError as e:
            logger.error("Telegram sendMessage to %s failed: %s", chat_id, e)
            return False
        return True

    async def set_webhook(self, url: str) -> bool:
        if not self._token:
            logger.error("Cannot set Telegram webhook: no bot token")
            return False
        try:
            await self._call("setWebhook", {"url": url})
        except httpx.HTTPError as e:
            logger.error("Telegram setWebhook failed: %s", e)
            return False
        logger.info("Telegram webhook set to %s", url)
        return True

    async def close(self) -> None:
        await self._client.aclose()
