"""Shared key-value store used for revocation entries, attempt counters and blocks.

Two adapters implement the same async interface:

- RedisKeyValueStore: the production store, shared by every instance.
- InMemoryKeyValueStore: a single-process store with the same TTL and
  atomic-increment semantics, for local development and tests.

Every store failure surfaces as StoreUnavailableError; callers decide whether
to fail open or closed.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from usermanager.services.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


class KeyValueStore(ABC):
    """Async key-value operations the security components rely on.

    TTLs are expressed in seconds and may be fractional.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(
        self, key: str, value: str, ttl_seconds: float | None = None, *, nx: bool = False
    ) -> bool:
        """Store ``value``. With ``nx`` the write only happens if ``key`` is absent.

        Returns True when the value was written.
        """

    @abstractmethod
    async def exists(self, key: str) -> bool: ...

    @abstractmethod
    async def delete(self, *keys: str) -> int: ...

    @abstractmethod
    async def incrby(self, key: str, amount: int) -> int:
        """Atomically add ``amount`` to an integer counter, creating it at 0."""

    @abstractmethod
    async def increment_with_expiry(self, key: str, amount: int, ttl_seconds: float) -> int:
        """Atomically add ``amount`` and give the key a TTL if it has none.

        An existing TTL is left untouched, so a counter window is never
        extended, and a counter can never be left without one.
        """

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: float) -> bool: ...

    @abstractmethod
    async def ttl(self, key: str) -> float:
        """Remaining lifetime in seconds; -1 when persistent, -2 when missing."""

    @abstractmethod
    async def hset(self, name: str, field: str, value: str) -> None: ...

    @abstractmethod
    async def hgetall(self, name: str) -> dict[str, str]: ...

    @abstractmethod
    async def count_keys(self, prefix: str) -> int: ...

    @abstractmethod
    async def ping(self) -> bool: ...

    async def close(self) -> None:
        return None


def _to_millis(ttl_seconds: float) -> int:
    return max(1, int(ttl_seconds * 1000))


# Runs as one server-side step: a counter is never observable without its TTL
_INCREMENT_WITH_EXPIRY_SCRIPT = """
local value = redis.call('INCRBY', KEYS[1], ARGV[1])
if redis.call('PTTL', KEYS[1]) == -1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return value
"""


class RedisKeyValueStore(KeyValueStore):
    """Redis adapter with short socket timeouts.

    A stalled Redis must not stall the login path, so connect and read
    timeouts are both kept well under a second by default.
    """

    def __init__(self, redis_url: str, *, socket_timeout: float = 0.5):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving traffic."""
        # Short-lived synchronous client so the async pool is not bound to a startup loop
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def _call(self, operation: str, factory: Callable[[], Awaitable[T]]) -> T:
        try:
            return await factory()
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Redis {operation} failed: {e}")
            raise StoreUnavailableError(f"Key-value store unavailable during {operation}") from e

    async def get(self, key: str) -> str | None:
        return await self._call("GET", lambda: self.client.get(key))

    async def set(
        self, key: str, value: str, ttl_seconds: float | None = None, *, nx: bool = False
    ) -> bool:
        px = _to_millis(ttl_seconds) if ttl_seconds is not None else None
        # SET ... NX replies None when the key already exists
        return bool(await self._call("SET", lambda: self.client.set(key, value, px=px, nx=nx)))

    async def exists(self, key: str) -> bool:
        return bool(await self._call("EXISTS", lambda: self.client.exists(key)))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._call("DEL", lambda: self.client.delete(*keys)))

    async def incrby(self, key: str, amount: int) -> int:
        return int(await self._call("INCRBY", lambda: self.client.incrby(key, amount)))

    async def increment_with_expiry(self, key: str, amount: int, ttl_seconds: float) -> int:
        return int(
            await self._call(
                "INCRBY+PEXPIRE",
                lambda: self.client.eval(
                    _INCREMENT_WITH_EXPIRY_SCRIPT, 1, key, amount, _to_millis(ttl_seconds)
                ),
            )
        )

    async def expire(self, key: str, ttl_seconds: float) -> bool:
        return bool(
            await self._call("PEXPIRE", lambda: self.client.pexpire(key, _to_millis(ttl_seconds)))
        )

    async def ttl(self, key: str) -> float:
        remaining = int(await self._call("PTTL", lambda: self.client.pttl(key)))
        if remaining < 0:
            return float(remaining)
        return remaining / 1000

    async def hset(self, name: str, field: str, value: str) -> None:
        await self._call("HSET", lambda: self.client.hset(name, field, value))

    async def hgetall(self, name: str) -> dict[str, str]:
        return await self._call("HGETALL", lambda: self.client.hgetall(name))

    async def count_keys(self, prefix: str) -> int:
        async def _scan() -> int:
            count = 0
            async for _ in self.client.scan_iter(match=f"{prefix}*", count=500):
                count += 1
            return count

        return await self._call("SCAN", _scan)

    async def ping(self) -> bool:
        try:
            return bool(await self._call("PING", self.client.ping))
        except StoreUnavailableError:
            return False

    async def close(self) -> None:
        await self.client.aclose()


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store with Redis-compatible expiry semantics.

    Entries hold an absolute deadline computed from ``clock``; expired entries
    read as absent and are purged lazily. Not shared between processes.
    """

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._data: dict[str, Any] = {}
        self._deadlines: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def _alive(self, key: str) -> bool:
        if key not in self._data:
            return False
        deadline = self._deadlines.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._data.pop(key, None)
            self._deadlines.pop(key, None)
            return False
        return True

    def _set_deadline(self, key: str, ttl_seconds: float | None) -> None:
        if ttl_seconds is None:
            self._deadlines.pop(key, None)
        else:
            self._deadlines[key] = self._clock() + max(ttl_seconds, 0.001)

    async def get(self, key: str) -> str | None:
        async with self._lock:
            if not self._alive(key):
                return None
            value = self._data[key]
            return value if isinstance(value, str) else None

    async def set(
        self, key: str, value: str, ttl_seconds: float | None = None, *, nx: bool = False
    ) -> bool:
        async with self._lock:
            if nx and self._alive(key):
                return False
            self._data[key] = value
            self._set_deadline(key, ttl_seconds)
            return True

    async def exists(self, key: str) -> bool:
        async with self._lock:
            return self._alive(key)

    async def delete(self, *keys: str) -> int:
        removed = 0
        async with self._lock:
            for key in keys:
                if self._alive(key):
                    removed += 1
                self._data.pop(key, None)
                self._deadlines.pop(key, None)
        return removed

    async def incrby(self, key: str, amount: int) -> int:
        async with self._lock:
            current = int(self._data[key]) if self._alive(key) else 0
            current += amount
            # Like INCRBY, an existing TTL is preserved
            self._data[key] = str(current)
            return current

    async def increment_with_expiry(self, key: str, amount: int, ttl_seconds: float) -> int:
        async with self._lock:
            current = int(self._data[key]) + amount if self._alive(key) else amount
            self._data[key] = str(current)
            if key not in self._deadlines:
                self._set_deadline(key, ttl_seconds)
            return current

    async def expire(self, key: str, ttl_seconds: float) -> bool:
        async with self._lock:
            if not self._alive(key):
                return False
            self._set_deadline(key, ttl_seconds)
            return True

    async def ttl(self, key: str) -> float:
        async with self._lock:
            if not self._alive(key):
                return -2.0
            deadline = self._deadlines.get(key)
            if deadline is None:
                return -1.0
            return deadline - self._clock()

    async def hset(self, name: str, field: str, value: str) -> None:
        async with self._lock:
            if not self._alive(name) or not isinstance(self._data[name], dict):
                self._data[name] = {}
                self._deadlines.pop(name, None)
            self._data[name][field] = value

    async def hgetall(self, name: str) -> dict[str, str]:
        async with self._lock:
            if not self._alive(name) or not isinstance(self._data[name], dict):
                return {}
            return dict(self._data[name])

    async def count_keys(self, prefix: str) -> int:
        async with self._lock:
            return sum(1 for key in list(self._data) if key.startswith(prefix) and self._alive(key))

    async def ping(self) -> bool:
        return True


def create_kv_store(redis_url: str, *, socket_timeout: float = 0.5) -> KeyValueStore:
    """Build the configured store; an empty URL selects the in-process store."""
    if redis_url:
        logger.info("Using Redis key-value store")
        return RedisKeyValueStore(redis_url, socket_timeout=socket_timeout)
    logger.warning("REDIS_URL not set; using in-process key-value store (single instance only)")
    return InMemoryKeyValueStore()
