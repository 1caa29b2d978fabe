"""
corsrelay Middleware
Admission control for the forwarding path.
"""

from corsrelay.middleware.counter_store import (
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
    WindowCount,
    create_counter_store,
)
from corsrelay.middleware.rate_limiter import RateLimiterMiddleware

__all__ = [
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "WindowCount",
    "create_counter_store",
    "RateLimiterMiddleware",
]
