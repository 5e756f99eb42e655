"""In-memory fixed-window rate limit store.

Per-process only: each worker keeps its own counters. The table is bounded.
A new source arriving at a full table evicts the least recently seen one,
and expired windows are swept at most once per window length, so the work
done under the lock stays constant per request however many distinct
addresses show up.
"""

from __future__ import annotations

import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass

from agenthub.core.limits import Clock, RateLimitResult, RateLimitStore


@dataclass
class RateLimitEntry:
    """Counter for one source within its current window."""

    reset_at: float
    count: int


class FixedWindowRateLimitStore(RateLimitStore):
    """Fixed-window counter keyed by client source.

    A window opens on the first request from a source and lasts
    ``window_seconds``. Within it, the first ``limit`` requests are admitted
    and the rest rejected. The first request after the window has elapsed
    opens a fresh window with a count of 1.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float = 60,
        max_entries: int = 10000,
        clock: Clock | None = None,
    ):
        """Initialize the rate limit store.

        Args:
            limit: Requests admitted per source per window. ``<= 0`` disables limiting.
            window_seconds: Window duration in seconds.
            max_entries: Maximum number of sources tracked at once.
            clock: Monotonic seconds source. Defaults to ``time.monotonic``.
        """
        self.limit = int(limit)
        self.window_seconds = float(window_seconds)
        self.max_entries = max(1, int(max_entries))
        self._clock = clock or time.monotonic
        self._entries: OrderedDict[str, RateLimitEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._next_sweep_at = self._clock() + self.window_seconds

    def __len__(self) -> int:
        return len(self._entries)

    def _check(self, key: str) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._make_room(now)
                entry = RateLimitEntry(reset_at=now + self.window_seconds, count=1)
                self._entries[key] = entry
                allowed = True
            elif now > entry.reset_at:
                entry.reset_at = now + self.window_seconds
                entry.count = 1
                self._entries.move_to_end(key)
                allowed = True
            elif entry.count >= self.limit:
                self._entries.move_to_end(key)
                allowed = False
            else:
                entry.count += 1
                self._entries.move_to_end(key)
                allowed = True

            remaining = max(0, self.limit - entry.count)
            retry_after = max(0, math.ceil(entry.reset_at - now))

        return RateLimitResult(allowed=allowed, remaining=remaining, retry_after_s=retry_after)

    def _make_room(self, now: float) -> None:
        # Caller holds the lock.
        if now >= self._next_sweep_at:
            self._sweep_locked(now)
        if len(self._entries) >= self.max_entries:
            self._entries.popitem(last=False)

    def _sweep_locked(self, now: float) -> int:
        self._next_sweep_at = now + self.window_seconds
        expired = [k for k, e in self._entries.items() if now > e.reset_at]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def sweep(self) -> int:
        """Drop every entry whose window has elapsed. Returns the number removed."""
        now = self._clock()
        with self._lock:
            return self._sweep_locked(now)

    def allow(self, key: str) -> bool:
        """Record a request for ``key`` and report whether it is admitted."""
        if self.limit <= 0:
            return True
        return self._check(key).allowed

    async def hit(self, key: str) -> RateLimitResult:
        """Record a request and return the full admission result."""
        if self.limit <= 0:
            return RateLimitResult(allowed=True, remaining=0, retry_after_s=0)
        return self._check(key)
