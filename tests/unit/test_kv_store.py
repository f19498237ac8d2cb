"""Tests for the key-value store adapters."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from usermanager.services.errors import StoreUnavailableError
from usermanager.services.kv_store import (
    InMemoryKeyValueStore,
    RedisKeyValueStore,
    create_kv_store,
)


class TestInMemoryStore:
    """In-process store follows Redis expiry and counter semantics."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, kv_store):
        await kv_store.set("k", "v")

        assert await kv_store.get("k") == "v"
        assert await kv_store.exists("k") is True
        assert await kv_store.ttl("k") == -1

    @pytest.mark.asyncio
    async def test_entry_expires(self, kv_store, clock):
        await kv_store.set("k", "v", ttl_seconds=10)

        clock.advance(9.9)
        assert await kv_store.exists("k") is True

        clock.advance(0.1)
        assert await kv_store.exists("k") is False
        assert await kv_store.get("k") is None
        assert await kv_store.ttl("k") == -2

    @pytest.mark.asyncio
    async def test_incrby_creates_and_preserves_ttl(self, kv_store, clock):
        assert await kv_store.incrby("counter", 1) == 1
        await kv_store.expire("counter", 60)
        assert await kv_store.incrby("counter", 1) == 2

        assert 59 < await kv_store.ttl("counter") <= 60

        clock.advance(60)
        assert await kv_store.incrby("counter", 1) == 1
        assert await kv_store.ttl("counter") == -1

    @pytest.mark.asyncio
    async def test_incrby_negative(self, kv_store):
        await kv_store.incrby("counter", 3)

        assert await kv_store.incrby("counter", -2) == 1
        assert await kv_store.incrby("counter", -2) == -1

    @pytest.mark.asyncio
    async def test_set_nx_only_creates(self, kv_store, clock):
        assert await kv_store.set("k", "first", ttl_seconds=10, nx=True) is True
        assert await kv_store.set("k", "second", ttl_seconds=60, nx=True) is False

        assert await kv_store.get("k") == "first"
        assert await kv_store.ttl("k") == pytest.approx(10)

        clock.advance(10)
        assert await kv_store.set("k", "third", nx=True) is True

    @pytest.mark.asyncio
    async def test_increment_with_expiry_keeps_first_window(self, kv_store, clock):
        assert await kv_store.increment_with_expiry("counter", 1, 60) == 1
        clock.advance(30)
        assert await kv_store.increment_with_expiry("counter", 1, 60) == 2

        assert await kv_store.ttl("counter") == pytest.approx(30)

    @pytest.mark.asyncio
    async def test_increment_with_expiry_repairs_missing_ttl(self, kv_store):
        await kv_store.incrby("counter", 3)
        assert await kv_store.ttl("counter") == -1

        assert await kv_store.increment_with_expiry("counter", 1, 60) == 4
        assert await kv_store.ttl("counter") == pytest.approx(60)

    @pytest.mark.asyncio
    async def test_expire_missing_key(self, kv_store):
        assert await kv_store.expire("missing", 10) is False

    @pytest.mark.asyncio
    async def test_delete_counts_live_keys(self, kv_store, clock):
        await kv_store.set("a", "1")
        await kv_store.set("b", "1", ttl_seconds=1)
        clock.advance(2)

        assert await kv_store.delete("a", "b", "c") == 1
        assert await kv_store.delete() == 0

    @pytest.mark.asyncio
    async def test_hash_operations(self, kv_store, clock):
        await kv_store.hset("h", "f1", "v1")
        await kv_store.hset("h", "f2", "v2")
        await kv_store.expire("h", 5)

        assert await kv_store.hgetall("h") == {"f1": "v1", "f2": "v2"}

        clock.advance(5)
        assert await kv_store.hgetall("h") == {}

    @pytest.mark.asyncio
    async def test_count_keys_by_prefix(self, kv_store, clock):
        await kv_store.set("blacklisted_token:a", "1", ttl_seconds=10)
        await kv_store.set("blacklisted_token:b", "1", ttl_seconds=20)
        await kv_store.set("other:c", "1")

        assert await kv_store.count_keys("blacklisted_token:") == 2

        clock.advance(15)
        assert await kv_store.count_keys("blacklisted_token:") == 1

    @pytest.mark.asyncio
    async def test_ping(self):
        assert await InMemoryKeyValueStore().ping() is True


class TestRedisStore:
    """Redis adapter maps client failures to StoreUnavailableError."""

    def _store(self, client: MagicMock) -> RedisKeyValueStore:
        with patch("usermanager.services.kv_store.aioredis.from_url", return_value=client):
            return RedisKeyValueStore("redis://localhost:6379/0", socket_timeout=0.25)

    def test_client_uses_short_timeouts(self):
        with patch("usermanager.services.kv_store.aioredis.from_url") as from_url:
            RedisKeyValueStore("redis://localhost:6379/0", socket_timeout=0.25)

        from_url.assert_called_once_with(
            "redis://localhost:6379/0",
            decode_responses=True,
            socket_timeout=0.25,
            socket_connect_timeout=0.25,
        )

    @pytest.mark.asyncio
    async def test_set_uses_millisecond_ttl(self):
        client = MagicMock()
        client.set = AsyncMock(return_value=True)
        store = self._store(client)

        await store.set("k", "v", ttl_seconds=1.5)

        client.set.assert_awaited_once_with("k", "v", px=1500, nx=False)

    @pytest.mark.asyncio
    async def test_set_nx_reports_existing_key(self):
        client = MagicMock()
        client.set = AsyncMock(return_value=None)
        store = self._store(client)

        assert await store.set("k", "v", ttl_seconds=300, nx=True) is False
        client.set.assert_awaited_once_with("k", "v", px=300000, nx=True)

    @pytest.mark.asyncio
    async def test_increment_with_expiry_is_one_script_call(self):
        client = MagicMock()
        client.eval = AsyncMock(return_value=3)
        store = self._store(client)

        assert await store.increment_with_expiry("k", 1, 3600) == 3

        client.eval.assert_awaited_once()
        script, numkeys, key, amount, ttl_ms = client.eval.await_args.args
        assert "INCRBY" in script and "PEXPIRE" in script
        assert (numkeys, key, amount, ttl_ms) == (1, "k", 1, 3600000)

    @pytest.mark.asyncio
    async def test_exists_returns_bool(self):
        client = MagicMock()
        client.exists = AsyncMock(return_value=1)
        store = self._store(client)

        assert await store.exists("k") is True

    @pytest.mark.asyncio
    async def test_ttl_converts_milliseconds(self):
        client = MagicMock()
        client.pttl = AsyncMock(side_effect=[2500, -2])
        store = self._store(client)

        assert await store.ttl("k") == 2.5
        assert await store.ttl("missing") == -2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [RedisConnectionError("refused"), RedisTimeoutError("timeout"), OSError("unreachable")],
    )
    async def test_failures_become_store_unavailable(self, error):
        client = MagicMock()
        client.incrby = AsyncMock(side_effect=error)
        store = self._store(client)

        with pytest.raises(StoreUnavailableError):
            await store.incrby("k", 1)

    @pytest.mark.asyncio
    async def test_ping_false_on_failure(self):
        client = MagicMock()
        client.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
        store = self._store(client)

        assert await store.ping() is False


class TestFactory:
    def test_empty_url_selects_in_memory(self):
        assert isinstance(create_kv_store(""), InMemoryKeyValueStore)

    def test_url_selects_redis(self):
        with patch("usermanager.services.kv_store.aioredis.from_url"):
            store = create_kv_store("redis://localhost:6379/0")

        assert isinstance(store, RedisKeyValueStore)
