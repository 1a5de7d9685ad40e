"""User and message-log data models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal


@dataclass
class User:
    """A conversational counterpart, one per identity."""

    id: str
    identity: str  # "+14025550123" or "telegram_123456"
    created_at: datetime
    completed_dialogues: int = 0
    total_recordings: int = 0


@dataclass
class MessageLogEntry:
    """Audit record of one inbound or outbound text."""

    id: str
    identity: str
    direction: Literal["inbound", "outbound"]
    text: str
    timestamp: datetime
