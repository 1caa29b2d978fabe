"""
Forwarding Gateway

HTTP surface of the relay: validates the caller's target URL, fetches it
through the upstream forwarder and relays the buffered response with its
content type.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

import httpx
import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import PlainTextResponse

from corsrelay import __version__
from corsrelay.config.settings import Settings, get_settings
from corsrelay.middleware.counter_store import CounterStore, create_counter_store
from corsrelay.middleware.rate_limiter import RateLimiterMiddleware
from corsrelay.proxy.errors import (
    ForbiddenTargetError,
    InvalidTargetURLError,
    MissingParameterError,
    RelayError,
)
from corsrelay.proxy.forwarder import ForwardResult, UpstreamForwarder
from corsrelay.proxy.policy import TargetPolicy, build_policy

logger = structlog.get_logger(__name__)

BANNER = "CORS Proxy server is running. Use /proxy?url=YOUR_URL to make requests."
PROXY_PATH = "/proxy"
PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"]


def parse_target(raw: str) -> httpx.URL:
    """Parse the caller's target, which must be an absolute URL with a host."""
    try:
        url = httpx.URL(raw)
    except httpx.InvalidURL as e:
        raise InvalidTargetURLError(raw) from e

    if not url.is_absolute_url or not url.host:
        raise InvalidTargetURLError(raw)
    return url


class RelayGateway:
    """
    corsrelay Forwarding Gateway.

    Handles each request as:
    1. Read and validate the `url` query parameter
    2. Check the target against the target policy
    3. Fetch the target with a fixed User-Agent and selected caller headers
    4. Relay the buffered body with the upstream content type
    """

    def __init__(
        self,
        settings: Settings,
        forwarder: Optional[UpstreamForwarder] = None,
        store: Optional[CounterStore] = None,
        policy: Optional[TargetPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings

        self.forwarder = forwarder or UpstreamForwarder(
            timeout=settings.relay.timeout,
            user_agent=settings.relay.user_agent,
            forward_headers=settings.relay.forward_headers,
            max_redirects=settings.relay.max_redirects,
        )
        if store is None:
            store = create_counter_store(
                settings.rate_limit.backend,
                redis_url=settings.rate_limit.redis_url,
            )
        self.store = store
        self.policy = policy or build_policy(settings.relay.allowed_domains)
        self.clock = clock

        # How often a pending fetch checks whether the caller went away
        self.disconnect_poll_interval = 0.5

        self.app: Optional[FastAPI] = None

        logger.info(
            "relay_gateway_created",
            policy=getattr(self.policy, "__name__", repr(self.policy)),
            rate_limit=settings.rate_limit.enabled,
        )

    def create_app(self) -> FastAPI:
        """Create the FastAPI application for the relay."""

        @asynccontextmanager
        async def lifespan(app: FastAPI) -> AsyncGenerator:
            """Application lifespan manager."""
            logger.info("relay_starting", port=self.settings.server.port)
            await self.forwarder.initialize()

            yield

            logger.info("relay_stopping")
            await self.forwarder.shutdown()
            await self.store.close()

        self.app = FastAPI(
            title="corsrelay",
            description="CORS forwarding relay",
            version=__version__,
            lifespan=lifespan,
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )

        # Middleware order: last added = first to execute
        # Execution order: GZip -> CORS -> Rate Limiter -> Handler
        if self.settings.rate_limit.enabled:
            self.app.add_middleware(
                RateLimiterMiddleware,
                store=self.store,
                max_requests=self.settings.rate_limit.max_requests,
                window_seconds=self.settings.rate_limit.window_seconds,
                message=self.settings.rate_limit.message,
                path_prefix=PROXY_PATH,
                trust_forwarded_for=self.settings.rate_limit.trust_forwarded_for,
                clock=self.clock,
            )
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.settings.http.cors_allow_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        if self.settings.http.compression_enabled:
            self.app.add_middleware(
                GZipMiddleware,
                minimum_size=self.settings.http.compression_min_size,
            )

        self.app.add_exception_handler(RelayError, self._handle_relay_error)
        self.app.add_exception_handler(Exception, self._handle_unexpected_error)

        @self.app.get("/", response_class=PlainTextResponse)
        async def health():
            """Health check endpoint."""
            return BANNER

        @self.app.api_route(PROXY_PATH, methods=PROXY_METHODS)
        async def proxy(request: Request):
            """Fetch the `url` query parameter on the caller's behalf."""
            return await self.handle(request)

        return self.app

    async def handle(self, request: Request) -> Response:
        """Validate, fetch and relay a single request."""
        target_url = request.query_params.get("url")
        if not target_url:
            raise MissingParameterError()

        url = parse_target(target_url)
        if not self.policy(url):
            raise ForbiddenTargetError(target_url)

        logger.info("proxying_request", target_url=target_url, method=request.method)

        result = await self._forward_unless_disconnected(request, url)
        if result is None:
            # Nobody is left to read the response
            return Response(status_code=499)

        logger.info(
            "request_relayed",
            target_url=target_url,
            upstream_status=result.status_code,
            bytes=len(result.body),
            response_time_ms=round(result.response_time_ms, 1),
        )

        return Response(
            content=result.body,
            status_code=200,
            headers={"Content-Type": result.content_type},
        )

    async def _forward_unless_disconnected(
        self,
        request: Request,
        url: httpx.URL,
    ) -> Optional[ForwardResult]:
        """
        Run the outbound fetch, cancelling it if the caller disconnects.

        Returns None when the fetch was abandoned.
        """
        fetch = asyncio.ensure_future(
            self.forwarder.forward(request.method, url, request.headers)
        )
        try:
            while True:
                done, _ = await asyncio.wait({fetch}, timeout=self.disconnect_poll_interval)
                if done:
                    return fetch.result()
                if await request.is_disconnected():
                    logger.info("client_disconnected", target_url=str(url))
                    return None
        finally:
            if not fetch.done():
                fetch.cancel()

    async def _handle_relay_error(self, request: Request, exc: RelayError) -> Response:
        if exc.target_url is not None:
            logger.error(
                "proxy_error",
                target_url=exc.target_url,
                kind=exc.kind,
                status=exc.status_code,
                error=exc.message,
            )
        return PlainTextResponse(exc.body, status_code=exc.status_code)

    async def _handle_unexpected_error(self, request: Request, exc: Exception) -> Response:
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            target_url=request.query_params.get("url"),
            error=str(exc),
            exc_info=exc,
        )
        return PlainTextResponse(f"Proxy error: {exc}", status_code=500)


def create_relay_app(
    settings: Optional[Settings] = None,
    forwarder: Optional[UpstreamForwarder] = None,
    store: Optional[CounterStore] = None,
    policy: Optional[TargetPolicy] = None,
) -> FastAPI:
    """
    Create a FastAPI application for the forwarding relay.

    Args:
        settings: Relay settings (or load from environment)
        forwarder: Upstream forwarder to use instead of one built from settings
        store: Rate limit counter store to use instead of the configured one
        policy: Target policy to use instead of the configured allow-list

    Returns:
        Configured FastAPI application
    """
    if settings is None:
        settings = get_settings()

    errors = settings.validate_runtime()
    if errors:
        logger.error("relay_config_invalid", errors=errors)
        raise ValueError(f"Invalid relay configuration: {errors}")

    gateway = RelayGateway(settings=settings, forwarder=forwarder, store=store, policy=policy)
    return gateway.create_app()
