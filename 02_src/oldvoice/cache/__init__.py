"""Cache tier module."""

from .session_cache import ISessionCache, RedisSessionCache

__all__ = ["ISessionCache", "RedisSessionCache"]
