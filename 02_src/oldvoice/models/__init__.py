"""Core data models for OldVoice."""

from .sessions import CANCELLED, COMPLETED, TERMINAL_STATES, Session
from .users import MessageLogEntry, User
from .work_items import DispatchResult, WorkItem, WorkItemStatus

__all__ = [
    # Users
    "User",
    "MessageLogEntry",
    # Sessions
    "Session",
    "COMPLETED",
    "CANCELLED",
    "TERMINAL_STATES",
    # Work items
    "WorkItem",
    "WorkItemStatus",
    "DispatchResult",
]
