"""
API Rate Limiter — per-IP sliding windows.

  1. API:   100 req / 15 min per client IP on ``/api`` (webhooks exempt)
  2. Login: 5 attempts / 5 min per client IP

Implementation: In-memory sliding window. Resets on restart and is per
process.
"""
from __future__ import annotations

import logging
import time
from collections import defaultdict
from threading import Lock
from typing import Iterable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from calmnotes.config import settings
from calmnotes.core.errors.middleware import error_body

logger = logging.getLogger(__name__)


class _SlidingWindow:
    """Thread-safe sliding-window counter for a single key."""

    __slots__ = ("_timestamps", "_lock")

    def __init__(self):
        self._timestamps: list[float] = []
        self._lock = Lock()

    def try_acquire(self, limit: int, window_s: float, now: float) -> Optional[float]:
        """Record an event if under *limit*. Returns None on success, else seconds until a slot frees."""
        cutoff = now - window_s
        with self._lock:
            self._timestamps = [t for t in self._timestamps if t > cutoff]
            if len(self._timestamps) >= limit:
                return max(self._timestamps[0] + window_s - now, 0.0)
            self._timestamps.append(now)
            return None


class RateLimiter:
    """Keyed sliding-window limiter: at most *limit* events per *window_s*."""

    def __init__(self, limit: int, window_s: float):
        self.limit = limit
        self.window_s = window_s
        self._windows: dict[str, _SlidingWindow] = defaultdict(_SlidingWindow)

    def check(self, key: str, now: Optional[float] = None) -> Optional[float]:
        """Count one event for *key*. Returns None if allowed, else Retry-After seconds."""
        now = time.monotonic() if now is None else now
        return self._windows[key].try_acquire(self.limit, self.window_s, now)

    def reset(self) -> None:
        self._windows.clear()


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


api_rate_limiter = RateLimiter(settings.api_rate_limit, settings.api_rate_window_s)
login_rate_limiter = RateLimiter(settings.login_rate_limit, settings.login_rate_window_s)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply the API limiter to ``/api`` requests, skipping exempt paths."""

    def __init__(
        self,
        app,
        limiter: RateLimiter = api_rate_limiter,
        prefix: str = "/api",
        exempt_paths: Iterable[str] = ("/api/webhooks/stripe",),
    ):
        super().__init__(app)
        self.limiter = limiter
        self.prefix = prefix
        self.exempt_paths = frozenset(exempt_paths)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path.startswith(self.prefix) and path not in self.exempt_paths:
            ip = client_ip(request)
            retry_after = self.limiter.check(ip)
            if retry_after is not None:
                logger.warning("API rate limit exceeded: ip=%s path=%s", ip, path)
                status_code, body = error_body("RATE_LIMITED")
                return JSONResponse(
                    status_code=status_code,
                    content=body,
                    headers={"Retry-After": str(int(retry_after) + 1)},
                )
        return await call_next(request)
