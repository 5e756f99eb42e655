"""Rate limit store abstractions.

The request throttle talks to a store through this interface so the
per-source counter table can be swapped (e.g. a bounded in-memory table in
production, a store with a fake clock in tests) without touching the
middleware.

Usage:
    from agenthub.core.limits.memory import FixedWindowRateLimitStore

    store = FixedWindowRateLimitStore(limit=120, window_seconds=60)
    result = await store.hit("ip:203.0.113.7")
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol

__all__ = [
    "Clock",
    "RateLimitResult",
    "RateLimitStore",
]

# Monotonic seconds source; injectable so tests can move time by hand.
Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed.
        remaining: Number of requests remaining in the window.
        retry_after_s: Seconds until the current window resets.
    """
    allowed: bool
    remaining: int
    retry_after_s: int


class RateLimitStore(Protocol):
    """Protocol for rate limit backends."""

    def allow(self, key: str) -> bool:
        """Record a request for ``key`` and report whether it is admitted."""
        ...

    async def hit(self, key: str) -> RateLimitResult:
        """Record a request and return the full admission result.

        Args:
            key: Unique identifier for the rate limit bucket (e.g., "ip:1.2.3.4")

        Returns:
            RateLimitResult with allowed/remaining/retry info.
        """
        ...
