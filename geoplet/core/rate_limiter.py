"""
Fixed-window rate limiting.

Counters live behind ``RateLimitStore`` so the in-memory map used by a
single process can be swapped for a shared key-value store with TTL when the
service runs as several instances.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

from ..exceptions import RateLimitExceeded


@dataclass
class RateWindow:
    """Request count for one key inside one window."""

    count: int
    reset_at: float


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float


class RateLimitStore(ABC):
    """Storage for per-key rate windows."""

    @abstractmethod
    def get(self, key: str) -> Optional[RateWindow]:
        ...

    @abstractmethod
    def set(self, key: str, window: RateWindow) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    def cleanup(self, current_time: float) -> int:
        """Drop elapsed windows. Stores with native TTL expire keys themselves."""
        return 0


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store. Not shared between workers."""

    def __init__(self):
        self._windows: Dict[str, RateWindow] = {}

    def get(self, key: str) -> Optional[RateWindow]:
        return self._windows.get(key)

    def set(self, key: str, window: RateWindow) -> None:
        self._windows[key] = window

    def delete(self, key: str) -> None:
        self._windows.pop(key, None)

    def cleanup(self, current_time: float) -> int:
        """Drop windows that have already elapsed. Returns the number removed."""
        expired = [k for k, w in self._windows.items() if current_time > w.reset_at]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


class FixedWindowRateLimiter:
    """Allow ``max_requests`` per key per ``window_seconds``."""

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60,
        store: Optional[RateLimitStore] = None,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.store = store or InMemoryRateLimitStore()
        self._next_cleanup: Optional[float] = None

    def check(self, key: str, current_time: Optional[float] = None) -> RateLimitDecision:
        """
        Record a request for ``key`` and decide whether it is allowed.

        A rejected request does not count against the window.
        """
        now = time.time() if current_time is None else current_time
        if self._next_cleanup is None or now >= self._next_cleanup:
            # Elapsed windows are swept at most once per window length
            self.store.cleanup(now)
            self._next_cleanup = now + self.window_seconds

        window = self.store.get(key)

        if window is None or now > window.reset_at:
            window = RateWindow(count=1, reset_at=now + self.window_seconds)
            self.store.set(key, window)
            return RateLimitDecision(True, self.max_requests - 1, window.reset_at)

        if window.count >= self.max_requests:
            return RateLimitDecision(False, 0, window.reset_at)

        window.count += 1
        self.store.set(key, window)
        return RateLimitDecision(True, self.max_requests - window.count, window.reset_at)

    def enforce(self, key: str, current_time: Optional[float] = None) -> RateLimitDecision:
        """Like ``check`` but raises RateLimitExceeded when the request is rejected."""
        decision = self.check(key, current_time)
        if not decision.allowed:
            raise RateLimitExceeded(key, decision.reset_at)
        return decision

    def reset(self, key: str) -> None:
        self.store.delete(key)
