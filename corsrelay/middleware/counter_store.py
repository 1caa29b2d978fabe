"""
Rate Limit Counter Stores
Fixed-window request counters keyed by client identity.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)


@dataclass
class WindowCount:
    """Hits recorded for a key in its current window."""

    count: int
    reset_at: float  # epoch seconds at which the window closes


class CounterStore(Protocol):
    """Counting store shared by all requests of the rate limiter."""

    async def increment(self, key: str, window_seconds: int) -> WindowCount:
        """Record one hit for `key` and return the count in its window."""
        ...

    async def reset(self, key: str) -> None:
        """Forget all hits recorded for `key`."""
        ...

    async def close(self) -> None:
        ...


class InMemoryCounterStore:
    """
    Process-local counter store.

    Each key gets its own window starting at its first hit. The clock is
    injectable so tests can move time forward.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._windows: dict[str, WindowCount] = {}
        self._lock = asyncio.Lock()
        self._next_prune = 0.0

    async def increment(self, key: str, window_seconds: int) -> WindowCount:
        async with self._lock:
            now = self._clock()
            if now >= self._next_prune:
                self._prune(now)
                self._next_prune = now + window_seconds

            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                window = WindowCount(count=0, reset_at=now + window_seconds)
                self._windows[key] = window

            window.count += 1
            return WindowCount(count=window.count, reset_at=window.reset_at)

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._windows.pop(key, None)

    async def close(self) -> None:
        self._windows.clear()

    def _prune(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if now >= w.reset_at]
        for key in expired:
            del self._windows[key]

    def __len__(self) -> int:
        return len(self._windows)


class RedisCounterStore:
    """
    Redis-backed counter store, shared between relay processes.

    The window is a key with a TTL: created at the first hit, incremented on
    every hit, gone once the window elapses.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        key_prefix: str = "corsrelay:ratelimit",
        clock: Callable[[], float] = time.time,
    ):
        if client is None and url is None:
            raise ValueError("RedisCounterStore needs a url or a client")
        self._client = client or redis.from_url(url, decode_responses=True)
        self.key_prefix = key_prefix
        self._clock = clock

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    async def increment(self, key: str, window_seconds: int) -> WindowCount:
        name = self._key(key)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(name, 0, ex=window_seconds, nx=True)
            pipe.incr(name)
            pipe.ttl(name)
            _, count, ttl = await pipe.execute()

        # A negative TTL means the key expired between commands
        remaining = ttl if ttl and ttl > 0 else window_seconds
        return WindowCount(count=int(count), reset_at=self._clock() + remaining)

    async def reset(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("redis_disconnected")


def create_counter_store(backend: str, redis_url: Optional[str] = None) -> CounterStore:
    """Create the counter store for a configured backend name."""
    if backend == "redis":
        logger.info("rate_limit_store", backend="redis", url=redis_url)
        return RedisCounterStore(url=redis_url)
    if backend == "memory":
        return InMemoryCounterStore()
    raise ValueError(f"Unknown rate limit backend: {backend}")
