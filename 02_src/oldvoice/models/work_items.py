"""Work item and dispatch result models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class WorkItemStatus(str, Enum):
    """Lifecycle of a work item after its session completed."""

    PENDING = "pending"
    CALLING = "calling"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class WorkItem:
    """A completed dialogue waiting for (or undergoing) its call."""

    id: str
    user_id: str
    identity: str  # requester, notified on failure and on recording
    storyteller_name: str
    storyteller_phone: str
    form_data: dict[str, Any]
    scheduled_for: datetime
    created_at: datetime
    session_id: str | None = None
    status: WorkItemStatus = WorkItemStatus.PENDING
    called_at: datetime | None = None
    external_call_id: str | None = None
    assistant_id: str | None = None
    error: str | None = None
    duration_seconds: int | None = None
    recording_url: str | None = None
    transcript: str | None = None
    completed_at: datetime | None = None


@dataclass
class DispatchResult:
    """Outcome of asking the call service to place a call."""

    success: bool
    call_id: str | None = None
    assistant_id: str | None = None
    error: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)
