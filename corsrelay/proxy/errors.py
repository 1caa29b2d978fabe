"""
Relay Errors

Failure kinds raised while handling a forwarding request. Each kind knows
the HTTP status and plain-text body it is surfaced with.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for failures converted to an HTTP response."""

    kind = "relay_error"
    status_code = 500

    def __init__(self, message: str, target_url: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.target_url = target_url

    @property
    def body(self) -> str:
        return f"Proxy error: {self.message}"


class MissingParameterError(RelayError):
    """The `url` query parameter was absent or empty."""

    kind = "missing_parameter"
    status_code = 400

    def __init__(self, message: str = "URL parameter is required"):
        super().__init__(message)

    @property
    def body(self) -> str:
        return self.message


class InvalidTargetURLError(RelayError):
    """The target is not a well-formed absolute URL.

    Reported as a server error, the same way an unreachable upstream is.
    """

    kind = "invalid_url"
    status_code = 500

    def __init__(self, target_url: str, message: str = "Invalid URL"):
        super().__init__(message, target_url=target_url)


class ForbiddenTargetError(RelayError):
    """The target host was rejected by the configured target policy."""

    kind = "forbidden"
    status_code = 403

    def __init__(self, target_url: str, message: str = "This URL is not allowed"):
        super().__init__(message, target_url=target_url)

    @property
    def body(self) -> str:
        return self.message


class UpstreamHTTPError(RelayError):
    """The upstream answered, but with a non-success status."""

    kind = "upstream_http_error"

    def __init__(self, target_url: str, status_code: int, message: Optional[str] = None):
        super().__init__(
            message or f"Request failed with status code {status_code}",
            target_url=target_url,
        )
        self.status_code = status_code


class UpstreamUnreachableError(RelayError):
    """No usable upstream response: DNS, refused connection, timeout."""

    kind = "upstream_unreachable"
    status_code = 500
