"""Outbound notifications routed by identity scheme."""

from typing import Protocol

from ..logging_config import get_logger
from .sms import SmsSender
from .telegram import TelegramClient, chat_id_for

logger = get_logger(__name__)


class INotifier(Protocol):
    """Best-effort delivery of a text to an identity."""

    async def send(self, identity: str, text: str) -> bool:
        """Deliver text; False on any failure. Never raises."""
        ...


class ChannelNotifier:
    """Telegram identities go through the bot API, everything else is SMS."""

    def __init__(self, telegram: TelegramClient, sms: SmsSender):
        self._telegram = telegram
        self._sms = sms

    async def send(self, identity: str, text: str) -> bool:
        try:
            chat_id = chat_id_for(identity)
            if chat_id is not None:
                return await self._telegram.send_message(chat_id, text)
            return await self._sms.send(identity, text)
        except Exception as e:
            logger.error("Notification to %s failed: %s", identity, e, exc_info=True)
            return False

    async def close(self) -> None:
        await self._telegram.close()
