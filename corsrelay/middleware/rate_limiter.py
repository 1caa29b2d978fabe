"""
Rate Limiter Middleware
Implements fixed-window rate limiting for the forwarding path.
"""

import math
import time
from typing import Callable, Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from corsrelay.config.settings import DEFAULT_RATE_LIMIT_MESSAGE
from corsrelay.middleware.counter_store import CounterStore, InMemoryCounterStore

logger = structlog.get_logger(__name__)


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """
    Fixed-window rate limiter middleware.

    Limits requests per client address on a path prefix to prevent abuse.
    Counters live in an injected CounterStore.
    """

    def __init__(
        self,
        app,
        store: Optional[CounterStore] = None,
        max_requests: int = 100,
        window_seconds: int = 15 * 60,
        message: str = DEFAULT_RATE_LIMIT_MESSAGE,
        path_prefix: str = "/proxy",
        trust_forwarded_for: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(app)
        self.store = store if store is not None else InMemoryCounterStore()
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.message = message
        self.path_prefix = path_prefix.rstrip("/")
        self.trust_forwarded_for = trust_forwarded_for
        self._clock = clock

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        """
        Process the request through rate limiting.

        Args:
            request: Incoming request
            call_next: Next middleware/handler

        Returns:
            Response
        """
        if not self._applies_to(request.url.path):
            return await call_next(request)

        client_ip = self._get_client_ip(request)
        window = await self.store.increment(client_ip, self.window_seconds)
        remaining = max(0, self.max_requests - window.count)
        limit_headers = {
            "X-RateLimit-Limit": str(self.max_requests),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(math.ceil(window.reset_at)),
        }

        if window.count > self.max_requests:
            logger.warning(
                "rate_limited",
                client_ip=client_ip,
                path=request.url.path,
                count=window.count,
            )
            retry_after = max(0, math.ceil(window.reset_at - self._clock()))
            return PlainTextResponse(
                self.message,
                status_code=429,
                headers={**limit_headers, "Retry-After": str(retry_after)},
            )

        response = await call_next(request)
        response.headers.update(limit_headers)
        return response

    def _applies_to(self, path: str) -> bool:
        return path == self.path_prefix or path.startswith(self.path_prefix + "/")

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP from request."""
        if self.trust_forwarded_for:
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                return forwarded.split(",")[0].strip()

        if request.client:
            return request.client.host

        return "unknown"
