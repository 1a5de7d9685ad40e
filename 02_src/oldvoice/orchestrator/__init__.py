"""Session orchestration module."""

from .locks import IdentityLocks
from .orchestrator import ISessionOrchestrator, SessionOrchestrator

__all__ = ["IdentityLocks", "ISessionOrchestrator", "SessionOrchestrator"]
