"""Channel adapters: Telegram, SMS and the outbound notifier."""

from .notifier import ChannelNotifier, INotifier
from .sms import SmsSender, twiml_message
from .telegram import TelegramClient, chat_id_for, keyboard_for, telegram_identity

__all__ = [
    "ChannelNotifier",
    "INotifier",
    "SmsSender",
    "twiml_message",
    "TelegramClient",
    "chat_id_for",
    "keyboard_for",
    "telegram_identity",
]
