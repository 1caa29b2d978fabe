"""
Upstream Forwarder

Fetches a target URL on behalf of the caller, mirroring a fixed subset of
the caller's headers, and buffers the complete upstream body.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Union

import httpx
import structlog

from corsrelay.config.settings import DEFAULT_FORWARD_HEADERS, DEFAULT_USER_AGENT
from corsrelay.proxy.errors import UpstreamHTTPError, UpstreamUnreachableError

logger = structlog.get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class ForwardResult:
    """Buffered upstream response."""

    status_code: int
    content_type: str
    body: bytes
    response_time_ms: float = 0.0


class UpstreamForwarder:
    """
    Forwards requests to arbitrary upstream URLs.

    Features:
    - Fixed User-Agent override
    - Allow-list of inbound headers copied upstream
    - Single deadline over connect and transfer
    - Redirect following
    - Connection pooling
    """

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        forward_headers: Optional[Iterable[str]] = None,
        max_redirects: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self.forward_headers = list(
            DEFAULT_FORWARD_HEADERS if forward_headers is None else forward_headers
        )
        self.max_redirects = max_redirects
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None

    async def initialize(self) -> None:
        """Initialize the HTTP client."""
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=True,
            max_redirects=self.max_redirects,
            transport=self._transport,
        )
        logger.info(
            "upstream_forwarder_initialized",
            timeout=self.timeout,
            forward_headers=self.forward_headers,
        )

    async def shutdown(self) -> None:
        """Shutdown the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info("http_client_shutdown")

    def build_headers(self, inbound: Mapping[str, str]) -> dict[str, str]:
        """
        Build the outbound header set.

        Only headers named in `forward_headers` are copied, and only when the
        caller sent a non-empty value. The User-Agent is always replaced.
        """
        lowered = {k.lower(): v for k, v in inbound.items()}
        headers = {"User-Agent": self.user_agent}
        for name in self.forward_headers:
            value = lowered.get(name.lower())
            if value:
                headers[name] = value
        return headers

    async def forward(
        self,
        method: str,
        url: Union[httpx.URL, str],
        inbound_headers: Mapping[str, str],
    ) -> ForwardResult:
        """
        Fetch the target and buffer its body.

        Args:
            method: HTTP method, copied from the inbound request
            url: Absolute target URL
            inbound_headers: Headers of the inbound request

        Returns:
            ForwardResult with the upstream status, content type and body

        Raises:
            UpstreamHTTPError: upstream answered with a non-2xx status
            UpstreamUnreachableError: no usable response within the deadline
        """
        if not self._client:
            await self.initialize()

        target = str(url)
        start_time = time.perf_counter()

        try:
            # Inbound header values arrive decoded as latin-1
            headers = httpx.Headers(self.build_headers(inbound_headers), encoding="latin-1")
            response = await asyncio.wait_for(
                self._client.request(method.upper(), url, headers=headers),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamHTTPError(target, e.response.status_code) from e
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise UpstreamUnreachableError(
                f"timeout of {int(self.timeout * 1000)}ms exceeded",
                target_url=target,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamUnreachableError(str(e) or type(e).__name__, target_url=target) from e
        except UnicodeEncodeError as e:
            raise UpstreamUnreachableError(
                f"Invalid header value: {e.reason}",
                target_url=target,
            ) from e

        response_time = (time.perf_counter() - start_time) * 1000

        return ForwardResult(
            status_code=response.status_code,
            content_type=response.headers.get("content-type") or DEFAULT_CONTENT_TYPE,
            body=response.content,
            response_time_ms=response_time,
        )
