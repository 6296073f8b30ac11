"""Per-backend sliding-window rate limiter.

Each backend id has its own window and its own lock, so jobs targeting
different backends never contend. The limiter knows nothing about jobs;
it only counts timestamped consumptions.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass

from traffic_test_agent.cancel import CancellationToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    """``max_requests`` admissions per ``window`` seconds."""

    max_requests: int
    window: float


DEFAULT_LIMITS = {
    "openai": RateLimit(60, 60.0),
    "anthropic": RateLimit(50, 60.0),
    "gemini": RateLimit(60, 60.0),
    "local": RateLimit(100, 60.0),
}

DEFAULT_LIMIT = RateLimit(30, 60.0)

IDLE_WAIT = 1.0


class _Window:
    def __init__(self, limit: RateLimit):
        self.limit = limit
        self.lock = threading.Lock()
        self.stamps: deque[float] = deque()

    def prune(self, now: float) -> None:
        cutoff = now - self.limit.window
        while self.stamps and self.stamps[0] <= cutoff:
            self.stamps.popleft()


class RateLimiter:
    """Sliding-window admission gate shared by all jobs of one invocation."""

    def __init__(
        self,
        limits: dict[str, RateLimit] | None = None,
        default: RateLimit | None = None,
        clock=time.monotonic,
        max_sleep: float = 5.0,
    ):
        self.limits = dict(DEFAULT_LIMITS if limits is None else limits)
        self.default = default or DEFAULT_LIMIT
        self.clock = clock
        self.max_sleep = max_sleep
        self._windows: dict[str, _Window] = {}
        self._registry_lock = threading.Lock()

    def limit_for(self, backend_id: str) -> RateLimit:
        return self.limits.get(backend_id, self.default)

    def _window(self, backend_id: str) -> _Window:
        with self._registry_lock:
            window = self._windows.get(backend_id)
            if window is None:
                window = self._windows[backend_id] = _Window(self.limit_for(backend_id))
            return window

    def try_acquire(self, backend_id: str) -> bool:
        """Record one consumption if the window has room. Never blocks."""
        window = self._window(backend_id)
        with window.lock:
            now = self.clock()
            window.prune(now)
            if len(window.stamps) >= window.limit.max_requests:
                return False
            window.stamps.append(now)
            return True

    def remaining(self, backend_id: str) -> int:
        window = self._window(backend_id)
        with window.lock:
            window.prune(self.clock())
            return max(0, window.limit.max_requests - len(window.stamps))

    def reset_in(self, backend_id: str) -> float:
        """Seconds until the oldest recorded consumption leaves the window."""
        window = self._window(backend_id)
        with window.lock:
            now = self.clock()
            window.prune(now)
            if not window.stamps:
                return 0.0
            return max(0.0, window.stamps[0] + window.limit.window - now)

    def reset(self, backend_id: str | None = None) -> None:
        with self._registry_lock:
            if backend_id is None:
                self._windows.clear()
            else:
                self._windows.pop(backend_id, None)

    async def wait_for_slot(self, backend_id: str, cancel_token: CancellationToken | None = None) -> None:
        """Block until :meth:`try_acquire` succeeds.

        Sleeps are capped at ``max_sleep`` and abort as soon as the
        cancellation token fires.
        """
        while not self.try_acquire(backend_id):
            wait = self.reset_in(backend_id) or IDLE_WAIT
            wait = min(wait, self.max_sleep)
            logger.debug("Rate limit reached for %s, waiting %.2fs", backend_id, wait)
            if cancel_token is not None:
                await cancel_token.sleep(wait)
            else:
                await asyncio.sleep(wait)
