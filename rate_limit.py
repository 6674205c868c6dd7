"""Fixed-window request limiting per client address."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

LIMIT_MESSAGE = "Too many requests from this IP, please try again in an hour!"


@dataclass
class RateLimitStatus:
    allowed: bool
    limit: int
    remaining: int
    reset_in: float


class RateLimiter:
    """Counts hits per key in fixed windows.

    Counters live in process memory and are lost on restart; the lock makes
    `hit` safe to call from the threadpool and the event loop alike.
    """

    def __init__(self, max_requests: int = 100, window: float = 60 * 60, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._lock = threading.Lock()
        self._counters: Dict[str, Tuple[float, int]] = {}
        self._last_sweep = clock()

    def hit(self, key: str) -> RateLimitStatus:
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window:
                self._sweep(now)
            started, count = self._counters.get(key, (now, 0))
            if now - started >= self.window:
                started, count = now, 0
            count += 1
            self._counters[key] = (started, count)
        return RateLimitStatus(
            allowed=count <= self.max_requests,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_in=max(0.0, self.window - (now - started)),
        )

    def _sweep(self, now: float) -> None:
        # drop every client whose window has ended; caller holds the lock
        self._counters = {k: v for k, v in self._counters.items() if now - v[0] < self.window}
        self._last_sweep = now

    def __len__(self) -> int:
        return len(self._counters)

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._counters.clear()
            else:
                self._counters.pop(key, None)


async def rate_limit_middleware(request: Request, call_next):
    limiter: Optional[RateLimiter] = getattr(request.app.state, "rate_limiter", None)
    if limiter is None or not request.url.path.startswith("/api"):
        return await call_next(request)

    client = request.client.host if request.client else "unknown"
    status = limiter.hit(client)
    headers = {"X-RateLimit-Limit": str(status.limit), "X-RateLimit-Remaining": str(status.remaining)}
    if not status.allowed:
        logger.warning("Rate limit exceeded for %s", client)
        headers["Retry-After"] = str(int(status.reset_in) + 1)
        return JSONResponse(status_code=429, content={"status": "fail", "message": LIMIT_MESSAGE}, headers=headers)

    response = await call_next(request)
    response.headers.update(headers)
    return response
