"""Session data model."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

COMPLETED = "completed"
CANCELLED = "cancelled"
TERMINAL_STATES = frozenset({COMPLETED, CANCELLED})


@dataclass
class Session:
    """A dialogue in progress for one identity."""

    id: str
    user_id: str
    identity: str
    state: str
    data: dict[str, Any]
    expires_at: datetime
    version: int = 1
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def is_active(self, now: datetime) -> bool:
        return not self.is_terminal and not self.is_expired(now)

    def to_record(self) -> dict[str, Any]:
        """JSON-serializable form used by the cache tier."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "identity": self.identity,
            "state": self.state,
            "data": self.data,
            "version": self.version,
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Session":
        return cls(
            id=record["id"],
            user_id=record["user_id"],
            identity=record["identity"],
            state=record["state"],
            data=record["data"],
            version=int(record["version"]),
            expires_at=datetime.fromisoformat(record["expires_at"]),
            created_at=datetime.fromisoformat(record["created_at"]),
        )
