"""
Storefront Backend — Rate Limiting Middleware
===============================================

What:  Per-IP fixed window rate limiter to prevent abuse.
Why:   Protects the site's forms and shop endpoints from floods and scraping.
How:   `RateLimiter` keeps one entry per client identifier: a request count and
       the absolute time the current window ends. `RateLimitMiddleware` asks
       the limiter about every request and either forwards it (adding
       X-RateLimit-* headers) or answers 429 itself.
Who:   One `RateLimiter` is created by the app factory and injected into the
       middleware; the app lifespan runs its background sweep.

Algorithm: Fixed Window Counter
    1. Look up the client's entry
    2. If absent, or the window has ended, start a fresh window (count=0)
    3. Increment count
    4. If count > max_requests, reject with 429 and retryAfter seconds

    Fixed windows allow a burst of up to 2x the limit across a window
    boundary; this is accepted in exchange for O(1) state per client.

Memory:
    Entries whose window ended are evicted by `sweep()`, run on a timer by
    `run_sweeper()` independently of request traffic. A process restart
    clears every counter.

Thread Safety:
    The limiter is touched only from the event loop thread (middleware and
    sweeper task), so no lock is taken. NOT shared across worker processes.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from storefront.logger import iso_timestamp, logger
from storefront.schemas.responses import ErrorDetail, ErrorResponse

log = logger.child("rate-limit")

RATE_LIMIT_MESSAGE = "Too many requests, please try again later"


@dataclass
class RateLimitEntry:
    count: int
    reset_time: float  # epoch seconds at which the window ends


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_time: float
    retry_after: int

    @property
    def reset_iso(self) -> str:
        return iso_timestamp(self.reset_time)


class RateLimiter:
    """
    In-memory fixed window counter keyed by client identifier.

    Args:
        window_ms:     Window length in milliseconds
        max_requests:  Requests allowed per window
        clock:         Returns the current epoch time in seconds (patched in tests)
    """

    def __init__(
        self,
        window_ms: int,
        max_requests: int,
        clock: Callable[[], float] = time.time,
    ):
        self.window_ms = window_ms
        self.max_requests = max_requests
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, identifier: str) -> Optional[RateLimitEntry]:
        return self._entries.get(identifier)

    def hit(self, identifier: str) -> RateLimitDecision:
        """Count one request from `identifier` and decide whether it may pass."""
        now = self._clock()
        entry = self._entries.get(identifier)

        if entry is None or now > entry.reset_time:
            entry = RateLimitEntry(count=0, reset_time=now + self.window_seconds)
            self._entries[identifier] = entry

        entry.count += 1

        return RateLimitDecision(
            allowed=entry.count <= self.max_requests,
            limit=self.max_requests,
            remaining=max(self.max_requests - entry.count, 0),
            reset_time=entry.reset_time,
            retry_after=max(math.ceil(entry.reset_time - now), 0),
        )

    def sweep(self, now: Optional[float] = None) -> int:
        """Evict entries whose window has ended. Returns how many were removed."""
        if now is None:
            now = self._clock()
        expired = [key for key, entry in self._entries.items() if now > entry.reset_time]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def reset(self) -> None:
        self._entries.clear()

    async def run_sweeper(self, interval_seconds: float) -> None:
        """
        Sweep forever on a fixed interval.

        Started as an asyncio task by the app lifespan and cancelled on
        shutdown. Each pass is a single synchronous loop, so it never
        interleaves with request handling.
        """
        while True:
            await asyncio.sleep(interval_seconds)
            evicted = self.sweep()
            if evicted:
                log.debug("Evicted expired rate limit entries", {"evicted": evicted, "remaining": len(self)})


def client_identifier(request: Request) -> str:
    """Source address of the request, or "unknown" when none is resolvable."""
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies a `RateLimiter` to every request.

    Response on rate limit:
        HTTP 429 Too Many Requests
        Retry-After header and body:
            {"error": {"message": "...", "retryAfter": 42}}

    Response headers on accepted requests:
        X-RateLimit-Limit:     configured max requests
        X-RateLimit-Remaining: requests left in the current window
        X-RateLimit-Reset:     window end (ISO-8601)
    """

    def __init__(self, app, limiter: RateLimiter):
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Keyed strictly by source address; clients behind one NAT share a quota
        identifier = client_identifier(request)
        decision = self.limiter.hit(identifier)

        if not decision.allowed:
            log.warn(
                "Rate limit exceeded",
                {
                    "identifier": identifier,
                    "limit": decision.limit,
                    "retryAfter": decision.retry_after,
                },
            )
            body = ErrorResponse(
                error=ErrorDetail(message=RATE_LIMIT_MESSAGE, retry_after=decision.retry_after)
            )
            return JSONResponse(
                status_code=429,
                content=body.model_dump(by_alias=True, exclude_none=True),
                headers={"Retry-After": str(decision.retry_after)},
            )

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        response.headers["X-RateLimit-Reset"] = decision.reset_iso

        return response
