import httpx
import pytest
from fastapi.testclient import TestClient

from corsrelay.config.settings import (
    HttpSettings,
    RateLimitSettings,
    RelaySettings,
    ServerSettings,
    Settings,
)
from corsrelay.middleware.counter_store import InMemoryCounterStore
from corsrelay.proxy.forwarder import UpstreamForwarder
from corsrelay.proxy.gateway import RelayGateway


class FakeClock:
    """Manually advanced clock for window arithmetic."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingUpstream:
    """httpx.MockTransport handler serving canned responses by URL.

    Every request that reaches the upstream is recorded. A route may be an
    (status, content, headers) tuple, an exception to raise, or a callable
    taking the request.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes = {}

    def route(self, url, status=200, content=b"", headers=None):
        self.routes[url] = (status, content, headers or {})

    def fail(self, url, exc: Exception):
        self.routes[url] = exc

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, content=b"not found")
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(request)
        status, content, headers = route
        return httpx.Response(status, content=content, headers=headers)


def make_settings(**overrides) -> Settings:
    """Settings with explicit defaults so the caller's environment does not leak in."""
    sections = {
        "server": ServerSettings(host="127.0.0.1", port=3000, log_level="INFO"),
        "relay": RelaySettings(
            timeout=10.0,
            forward_headers=["Accept", "Accept-Language"],
            allowed_domains=[],
            max_redirects=5,
        ),
        "rate_limit": RateLimitSettings(
            enabled=True,
            window_seconds=900,
            max_requests=100,
            backend="memory",
            trust_forwarded_for=False,
        ),
        "http": HttpSettings(
            cors_allow_origins=["*"],
            compression_enabled=True,
            compression_min_size=1024,
        ),
    }
    sections.update(overrides)
    return Settings(**sections)


@pytest.fixture
def relay_settings():
    return make_settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream():
    return RecordingUpstream()


@pytest.fixture
def counter_store(clock):
    return InMemoryCounterStore(clock=clock)


def build_gateway(settings, upstream, counter_store, clock) -> RelayGateway:
    forwarder = UpstreamForwarder(
        timeout=settings.relay.timeout,
        user_agent=settings.relay.user_agent,
        forward_headers=settings.relay.forward_headers,
        max_redirects=settings.relay.max_redirects,
        transport=httpx.MockTransport(upstream),
    )
    return RelayGateway(
        settings=settings,
        forwarder=forwarder,
        store=counter_store,
        clock=clock,
    )


@pytest.fixture
def gateway(relay_settings, upstream, counter_store, clock):
    """Relay gateway wired to the recording upstream, without an app around it."""
    return build_gateway(relay_settings, upstream, counter_store, clock)


@pytest.fixture
def make_client(upstream, counter_store, clock):
    """Factory for relay test clients; keyword arguments replace settings sections."""
    opened = []

    def _make(**overrides):
        gateway = build_gateway(make_settings(**overrides), upstream, counter_store, clock)
        test_client = TestClient(gateway.create_app())
        test_client.__enter__()
        opened.append(test_client)
        return test_client

    yield _make

    for test_client in opened:
        test_client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    """Relay test client with default settings."""
    return make_client()
