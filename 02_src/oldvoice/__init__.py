"""OldVoice: resumable text-message setup for recorded storytelling calls."""

from .app import Application, IApplication
from .cache import ISessionCache, RedisSessionCache
from .channels import ChannelNotifier, INotifier
from .dialogue import DialogueDefinition, StateSpec, build_storyteller_dialogue
from .dispatch import CompletionDispatcher, ICallClient, VapiCallClient
from .maintenance import MaintenanceLoop
from .models import (
    DispatchResult,
    MessageLogEntry,
    Session,
    User,
    WorkItem,
    WorkItemStatus,
)
from .orchestrator import ISessionOrchestrator, SessionOrchestrator
from .ratelimit import IRateLimiter, RateLimiter
from .sessions import ISessionStore, SessionStore
from .storage import IStorage, Storage

__all__ = [
    # Application
    "Application",
    "IApplication",
    # Models
    "User",
    "MessageLogEntry",
    "Session",
    "WorkItem",
    "WorkItemStatus",
    "DispatchResult",
    # Components
    "IStorage",
    "Storage",
    "ISessionCache",
    "RedisSessionCache",
    "ISessionStore",
    "SessionStore",
    "IRateLimiter",
    "RateLimiter",
    "DialogueDefinition",
    "StateSpec",
    "build_storyteller_dialogue",
    "ICallClient",
    "VapiCallClient",
    "INotifier",
    "ChannelNotifier",
    "CompletionDispatcher",
    "ISessionOrchestrator",
    "SessionOrchestrator",
    "MaintenanceLoop",
]
