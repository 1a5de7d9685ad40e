"""Session store module."""

from .store import ISessionStore, SessionStore, utcnow

__all__ = ["ISessionStore", "SessionStore", "utcnow"]
