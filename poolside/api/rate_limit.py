"""Per-IP rate limit for the chat endpoints, which spend LLM tokens.

In-memory sliding window.  Each uvicorn worker keeps its own counts.
"""

import time
from collections import deque

from fastapi import Request

from poolside.config import settings
from poolside.errors import RateLimitError


class RateLimiter:
    """Allow at most *max_requests* per *window_seconds* for each key."""

    _SWEEP_EVERY = 500  # calls between sweeps of idle keys

    def __init__(self, max_requests: int = 60, window_seconds: float = 60) -> None:
        self._max = max_requests
        self._window = window_seconds
        self._hits: dict[str, deque[float]] = {}
        self._calls = 0

    def _expire(self, hits: deque[float], now: float) -> None:
        while hits and hits[0] <= now - self._window:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        for key in list(self._hits):
            self._expire(self._hits[key], now)
            if not self._hits[key]:
                del self._hits[key]

    def is_allowed(self, key: str) -> bool:
        """Record a request for *key*; False if it is over the limit (not recorded)."""
        now = time.monotonic()
        self._calls += 1
        if self._calls % self._SWEEP_EVERY == 0:
            self._sweep(now)

        hits = self._hits.setdefault(key, deque())
        self._expire(hits, now)
        if len(hits) >= self._max:
            return False
        hits.append(now)
        return True

    def remaining(self, key: str) -> int:
        hits = self._hits.get(key)
        if not hits:
            return self._max
        self._expire(hits, time.monotonic())
        return max(self._max - len(hits), 0)

    def reset(self) -> None:
        self._hits.clear()
        self._calls = 0


chat_limiter = RateLimiter(
    max_requests=settings.CHAT_RATE_LIMIT,
    window_seconds=settings.CHAT_RATE_WINDOW_SECONDS,
)


async def enforce_chat_rate_limit(request: Request) -> None:
    """Router dependency: 429 once the client IP is over the chat limit."""
    client_ip = request.client.host if request.client else "unknown"
    if not chat_limiter.is_allowed(client_ip):
        raise RateLimitError("Rate limit exceeded")
