import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

import redis.asyncio as redis

from .settings import (
    REDIS_MAX_CONNECTIONS,
    REDIS_POOL_TIMEOUT,
    REDIS_URL,
    STATUS_NAMESPACE,
    TESTING,
)

logger = logging.getLogger(__name__)

# Simple key names
SCHEDULE_KEY = "schedule"
READY_QUEUE = "queue:default"
STATUS_CHANNEL = "status_updates"


def status_key(job_id: str) -> str:
    return f"{STATUS_NAMESPACE}:status:{job_id}"


class InMemoryPubSub:
    """Subscriber handle returned by AsyncInMemoryRedis.pubsub().

    Mirrors the parts of redis.asyncio.client.PubSub used by the status layer.
    """

    def __init__(self, client: "AsyncInMemoryRedis"):
        self._client = client
        self._queue: asyncio.Queue = asyncio.Queue()
        self.channels: set = set()

    async def subscribe(self, *channels: str):
        for channel in channels:
            self.channels.add(channel)
            self._queue.put_nowait(
                {"type": "subscribe", "pattern": None, "channel": channel, "data": len(self.channels)}
            )
        self._client._subscribers.add(self)

    async def unsubscribe(self, *channels: str):
        for channel in channels or tuple(self.channels):
            self.channels.discard(channel)
        if not self.channels:
            self._client._subscribers.discard(self)

    def _deliver(self, channel: str, data: str):
        self._queue.put_nowait({"type": "message", "pattern": None, "channel": channel, "data": data})

    async def get_message(self, ignore_subscribe_messages: bool = False, timeout: Optional[float] = 0.0):
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            try:
                message = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                if deadline is None:
                    message = await self._queue.get()
                else:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        return None
                    try:
                        message = await asyncio.wait_for(self._queue.get(), remaining)
                    except asyncio.TimeoutError:
                        return None
            if ignore_subscribe_messages and message["type"] != "message":
                continue
            return message

    async def listen(self) -> AsyncIterator[Dict[str, Any]]:
        while self.channels or not self._queue.empty():
            yield await self._queue.get()

    async def aclose(self):
        await self.unsubscribe()


class InMemoryPipeline:
    """Buffers commands and runs them back to back on execute().

    None of the in-memory commands suspend, so no other coroutine can observe
    the keyspace between two buffered commands, which is what MULTI/EXEC
    guarantees on a real server.
    """

    def __init__(self, client: "AsyncInMemoryRedis"):
        self._client = client
        self._commands: List[Tuple[Callable, tuple, dict]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._commands.clear()

    def __getattr__(self, name: str):
        command = getattr(self._client, name)

        def buffered(*args, **kwargs):
            self._commands.append((command, args, kwargs))
            return self

        return buffered

    async def execute(self) -> List[Any]:
        commands, self._commands = self._commands, []
        return [await command(*args, **kwargs) for command, args, kwargs in commands]


class AsyncInMemoryRedis:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._hashes: Dict[str, Dict[str, str]] = {}
        self._lists: Dict[str, List[str]] = {}
        self._zsets: Dict[str, Dict[str, float]] = {}
        self._expires: Dict[str, float] = {}
        self._subscribers: set = set()
        self._clock = clock

    def _drop(self, name: str) -> bool:
        self._expires.pop(name, None)
        found = False
        for store in (self._hashes, self._lists, self._zsets):
            if store.pop(name, None) is not None:
                found = True
        return found

    def _live(self, name: str) -> bool:
        deadline = self._expires.get(name)
        if deadline is not None and deadline <= self._clock():
            self._drop(name)
        return name in self._hashes or name in self._lists or name in self._zsets

    async def ping(self):
        return True

    async def aclose(self):
        return None

    def pipeline(self, transaction: bool = True) -> InMemoryPipeline:
        return InMemoryPipeline(self)

    def pubsub(self) -> InMemoryPubSub:
        return InMemoryPubSub(self)

    # keyspace
    async def delete(self, *names: str) -> int:
        removed = 0
        for name in names:
            if self._live(name) and self._drop(name):
                removed += 1
        return removed

    async def expire(self, name: str, seconds: int) -> bool:
        if not self._live(name):
            return False
        if seconds <= 0:
            self._drop(name)
        else:
            self._expires[name] = self._clock() + seconds
        return True

    async def ttl(self, name: str) -> int:
        if not self._live(name):
            return -2
        deadline = self._expires.get(name)
        if deadline is None:
            return -1
        return max(0, round(deadline - self._clock()))

    async def publish(self, channel: str, message: str) -> int:
        receivers = [s for s in self._subscribers if channel in s.channels]
        for subscriber in receivers:
            subscriber._deliver(channel, message)
        return len(receivers)

    # hash methods
    async def hset(self, name: str, key: Optional[str] = None, value: Optional[str] = None,
                   mapping: Optional[Dict[str, str]] = None) -> int:
        self._live(name)
        h = self._hashes.setdefault(name, {})
        items = dict(mapping or {})
        if key is not None:
            items[key] = value
        added = 0
        for field, val in items.items():
            if field not in h:
                added += 1
            h[field] = str(val)
        return added

    async def hget(self, name: str, key: str) -> Optional[str]:
        if not self._live(name):
            return None
        return self._hashes.get(name, {}).get(key)

    async def hgetall(self, name: str) -> Dict[str, str]:
        if not self._live(name):
            return {}
        return dict(self._hashes.get(name, {}))

    # list methods
    async def rpush(self, name: str, *values: str) -> int:
        self._live(name)
        lst = self._lists.setdefault(name, [])
        lst.extend(values)
        return len(lst)

    async def lpop(self, name: str) -> Optional[str]:
        if not self._live(name):
            return None
        lst = self._lists.get(name)
        if not lst:
            return None
        value = lst.pop(0)
        if not lst:
            self._drop(name)
        return value

    # zset methods
    async def zadd(self, name: str, mapping: Dict[str, float]) -> int:
        self._live(name)
        z = self._zsets.setdefault(name, {})
        added = 0
        for member, score in mapping.items():
            if member not in z:
                added += 1
            z[member] = float(score)
        return added

    async def zcard(self, name: str) -> int:
        if not self._live(name):
            return 0
        return len(self._zsets.get(name, {}))

    async def zscore(self, name: str, member: str) -> Optional[float]:
        if not self._live(name):
            return None
        return self._zsets.get(name, {}).get(member)

    async def zrangebyscore(self, name: str, min: Any, max: Any,
                            start: Optional[int] = None, num: Optional[int] = None) -> List[str]:
        if not self._live(name):
            return []
        lo, hi = float(min), float(max)
        # same order as the server: by score, then lexicographically
        members = [m for m, s in sorted(self._zsets.get(name, {}).items(), key=lambda kv: (kv[1], kv[0])) if lo <= s <= hi]
        if start is not None and num is not None:
            members = members[start:] if num < 0 else members[start:start + num]
        return members

    async def zrem(self, name: str, *members: str) -> int:
        if not self._live(name):
            return 0
        z = self._zsets.get(name, {})
        removed = 0
        for m in members:
            if m in z:
                del z[m]
                removed += 1
        if name in self._zsets and not z:
            self._drop(name)
        return removed


class ConnectionProvider:
    """Hands out a Redis client for the span of a single operation.

    Subclasses implement ``connection()`` as an async context manager; the
    client must not be kept once the block exits.
    """

    def connection(self):
        raise NotImplementedError

    async def close(self):
        return None


class SingletonConnectionProvider(ConnectionProvider):
    """Shares one client between every caller."""

    def __init__(self, client: Any):
        self.client = client

    @asynccontextmanager
    async def connection(self):
        yield self.client

    async def close(self):
        await self.client.aclose()


class PooledConnectionProvider(ConnectionProvider):
    """Borrows connections from a bounded pool.

    Each operation gets a lightweight client bound to the pool; commands check
    a connection out and return it as soon as the reply arrives. When the pool
    is exhausted callers block for up to the pool timeout.
    """

    def __init__(self, pool: redis.ConnectionPool):
        self.pool = pool

    @classmethod
    def from_url(cls, url: str = REDIS_URL, max_connections: int = REDIS_MAX_CONNECTIONS,
                 timeout: float = REDIS_POOL_TIMEOUT) -> "PooledConnectionProvider":
        pool = redis.BlockingConnectionPool.from_url(
            url, max_connections=max_connections, timeout=timeout, decode_responses=True
        )
        return cls(pool)

    @asynccontextmanager
    async def connection(self):
        client = redis.Redis(connection_pool=self.pool)
        try:
            yield client
        finally:
            # leaves the shared pool open
            await client.aclose()

    async def close(self):
        await self.pool.disconnect()


_default_provider: Optional[ConnectionProvider] = None


def get_provider() -> ConnectionProvider:
    global _default_provider
    if _default_provider is None:
        if TESTING:
            _default_provider = SingletonConnectionProvider(AsyncInMemoryRedis())
        else:
            _default_provider = PooledConnectionProvider.from_url()
        logger.debug("default redis provider: %s", type(_default_provider).__name__)
    return _default_provider


def set_provider(provider: Optional[ConnectionProvider]):
    """Replace the process-wide default provider (None resets it)."""
    global _default_provider
    _default_provider = provider


def redis_connection(provider: Optional[ConnectionProvider] = None):
    return (provider or get_provider()).connection()
