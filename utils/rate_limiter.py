"""Per-method request spacing for the Slack and HiBob adapters."""
import asyncio
import time
from collections import defaultdict, deque
from typing import Deque, Dict, Optional
from weakref import WeakKeyDictionary

from config import get_rate_limit_for_method
from .logger import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """Sliding-window limiter: at most N calls per method per window.

    Limits come from ``config.RATE_LIMIT_TIERS`` unless overridden with
    ``limits``. Calls for one method are serialized through a lock so that
    concurrent sync scopes share the budget instead of racing for it.
    Locks are created per event loop, so the shared limiter keeps working
    across separate ``asyncio.run`` calls; the call history spans them all.
    """

    def __init__(self, window_seconds: float = 60, limits: Optional[Dict[str, int]] = None):
        self.window_seconds = window_seconds
        self._limits = dict(limits or {})
        self._calls: Dict[str, Deque[float]] = defaultdict(deque)
        # event loop -> method -> lock
        self._locks: WeakKeyDictionary = WeakKeyDictionary()

    def _lock(self, method: str) -> asyncio.Lock:
        locks = self._locks.setdefault(asyncio.get_running_loop(), {})
        if method not in locks:
            locks[method] = asyncio.Lock()
        return locks[method]

    def limit_for(self, method: str) -> int:
        if method in self._limits:
            return self._limits[method]
        return get_rate_limit_for_method(method)

    def _expire(self, method: str, now: float):
        calls = self._calls[method]
        while calls and calls[0] <= now - self.window_seconds:
            calls.popleft()

    def wait_time(self, method: str) -> float:
        """Seconds until another call to ``method`` fits in the window."""
        now = time.monotonic()
        self._expire(method, now)
        calls = self._calls[method]
        if len(calls) < self.limit_for(method):
            return 0.0
        return max(0.0, calls[0] + self.window_seconds - now)

    async def wait_if_needed(self, method: str) -> float:
        """Sleep until the call is allowed, then record it. Returns seconds waited."""
        async with self._lock(method):
            delay = self.wait_time(method)
            if delay > 0:
                logger.debug(
                    f"Rate limit reached for {method} "
                    f"({self.limit_for(method)}/{self.window_seconds:g}s), waiting {delay:.2f}s"
                )
                await asyncio.sleep(delay)
            self._calls[method].append(time.monotonic())
            return delay

    def usage(self, method: str) -> tuple[int, int]:
        """(calls in the current window, limit)"""
        self._expire(method, time.monotonic())
        return len(self._calls[method]), self.limit_for(method)

    def reset(self, method: Optional[str] = None):
        if method:
            self._calls.pop(method, None)
        else:
            self._calls.clear()


_rate_limiter = RateLimiter()


def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter shared by all adapters."""
    return _rate_limiter
