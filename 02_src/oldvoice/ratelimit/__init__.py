"""Rate limiting module."""

from .limiter import IRateLimiter, RateLimiter, RateLimitResult

__all__ = ["IRateLimiter", "RateLimiter", "RateLimitResult"]
