from unittest.mock import AsyncMock, MagicMock

import pytest

from corsrelay.middleware.counter_store import (
    InMemoryCounterStore,
    RedisCounterStore,
    create_counter_store,
)


class TestInMemoryCounterStore:
    """Tests for the process-local counter store."""

    @pytest.mark.asyncio
    async def test_counts_within_window(self, clock):
        store = InMemoryCounterStore(clock=clock)

        first = await store.increment("1.2.3.4", 900)
        second = await store.increment("1.2.3.4", 900)

        assert first.count == 1
        assert second.count == 2
        assert second.reset_at == clock.now + 900

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, clock):
        store = InMemoryCounterStore(clock=clock)

        await store.increment("a", 900)
        await store.increment("a", 900)
        other = await store.increment("b", 900)

        assert other.count == 1

    @pytest.mark.asyncio
    async def test_window_is_fixed_from_first_hit(self, clock):
        store = InMemoryCounterStore(clock=clock)

        await store.increment("a", 900)
        clock.advance(899)
        still_open = await store.increment("a", 900)
        clock.advance(1)
        reopened = await store.increment("a", 900)

        assert still_open.count == 2
        assert reopened.count == 1
        assert reopened.reset_at == clock.now + 900

    @pytest.mark.asyncio
    async def test_expired_windows_are_pruned(self, clock):
        store = InMemoryCounterStore(clock=clock)

        for key in ("a", "b", "c"):
            await store.increment(key, 60)
        assert len(store) == 3

        clock.advance(61)
        await store.increment("d", 60)

        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_reset(self, clock):
        store = InMemoryCounterStore(clock=clock)
        await store.increment("a", 900)

        await store.reset("a")
        result = await store.increment("a", 900)

        assert result.count == 1


@pytest.fixture
def redis_pipeline():
    pipe = MagicMock()
    pipe.__aenter__ = AsyncMock(return_value=pipe)
    pipe.__aexit__ = AsyncMock(return_value=None)
    pipe.execute = AsyncMock(return_value=[True, 1, 900])
    return pipe


@pytest.fixture
def redis_client(redis_pipeline):
    client = MagicMock()
    client.pipeline.return_value = redis_pipeline
    client.delete = AsyncMock(return_value=1)
    client.aclose = AsyncMock()
    return client


class TestRedisCounterStore:
    """Tests for the Redis-backed counter store."""

    @pytest.mark.asyncio
    async def test_increment_creates_window_and_counts(self, redis_client, redis_pipeline, clock):
        store = RedisCounterStore(client=redis_client, clock=clock)
        redis_pipeline.execute.return_value = [None, 7, 120]

        result = await store.increment("1.2.3.4", 900)

        assert result.count == 7
        assert result.reset_at == clock.now + 120
        redis_client.pipeline.assert_called_once_with(transaction=True)
        redis_pipeline.set.assert_called_once_with(
            "corsrelay:ratelimit:1.2.3.4", 0, ex=900, nx=True
        )
        redis_pipeline.incr.assert_called_once_with("corsrelay:ratelimit:1.2.3.4")
        redis_pipeline.ttl.assert_called_once_with("corsrelay:ratelimit:1.2.3.4")

    @pytest.mark.asyncio
    async def test_missing_ttl_falls_back_to_full_window(self, redis_client, redis_pipeline, clock):
        store = RedisCounterStore(client=redis_client, clock=clock)
        redis_pipeline.execute.return_value = [True, 1, -1]

        result = await store.increment("a", 900)

        assert result.reset_at == clock.now + 900

    @pytest.mark.asyncio
    async def test_reset_and_close(self, redis_client):
        store = RedisCounterStore(client=redis_client, key_prefix="test")

        await store.reset("a")
        await store.close()

        redis_client.delete.assert_awaited_once_with("test:a")
        redis_client.aclose.assert_awaited_once()

    def test_requires_url_or_client(self):
        with pytest.raises(ValueError):
            RedisCounterStore()


class TestCreateCounterStore:
    """Tests for backend selection."""

    def test_memory_backend(self):
        assert isinstance(create_counter_store("memory"), InMemoryCounterStore)

    def test_redis_backend(self):
        store = create_counter_store("redis", redis_url="redis://localhost:6379/0")

        assert isinstance(store, RedisCounterStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_counter_store("memcached")
