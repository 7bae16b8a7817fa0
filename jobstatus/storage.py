"""Per-job status records kept in Redis hashes.

A record lives under ``<namespace>:status:<job_id>`` and is written with
partial updates: a write sets only the fields it names and leaves every other
field untouched. Each write refreshes the record's TTL and publishes the job
id on the ``status_updates`` channel inside one MULTI/EXEC transaction, so a
reader never sees new values without the refreshed TTL and no notification
goes out for a write that did not land.

A missing record means "unknown or expired"; the two cannot be told apart.
Redis errors are not caught here.
"""
import logging
import math
import time
from datetime import timedelta
from enum import Enum
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Union

from . import metrics
from .redis_helper import STATUS_CHANNEL, ConnectionProvider, redis_connection, status_key
from .settings import DEFAULT_EXPIRY

logger = logging.getLogger(__name__)

RESERVED_FIELDS = ("status", "stop", "update_time")

Expiration = Union[int, float, timedelta, None]


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _ttl_seconds(expiration: Expiration) -> int:
    if expiration is None:
        return DEFAULT_EXPIRY
    if isinstance(expiration, timedelta):
        expiration = expiration.total_seconds()
    # EXPIRE with a non-positive value deletes the key inside the transaction
    if expiration <= 0:
        raise ValueError(f"expiration must be positive, got {expiration!r}")
    return math.ceil(expiration)


async def store_for_id(job_id: str, updates: Mapping[str, Any], expiration: Expiration = None,
                       provider: Optional[ConnectionProvider] = None) -> int:
    """Merge ``updates`` into the job's record, refresh its TTL and notify.

    Values are coerced to strings. ``update_time`` is always rewritten.
    Fractional expirations round up to whole seconds; a non-positive one
    raises ValueError before anything is sent.
    Returns the HSET reply (number of fields that did not exist before).
    """
    fields = {str(k): _to_str(v) for k, v in updates.items()}
    fields["update_time"] = str(int(time.time()))
    key = status_key(job_id)
    ttl = _ttl_seconds(expiration)
    async with redis_connection(provider) as conn:
        async with conn.pipeline(transaction=True) as pipe:
            pipe.hset(key, mapping=fields)
            pipe.expire(key, ttl)
            pipe.publish(STATUS_CHANNEL, job_id)
            results = await pipe.execute()
    metrics.status_writes_total.inc()
    logger.debug("stored %s for %s (ttl=%ss)", sorted(fields), job_id, ttl)
    return results[0]


async def store_status(job_id: str, status: Union[str, Enum], expiration: Expiration = None,
                       provider: Optional[ConnectionProvider] = None) -> int:
    return await store_for_id(job_id, {"status": status}, expiration, provider)


async def read_field_for_id(job_id: str, field: str,
                            provider: Optional[ConnectionProvider] = None) -> Optional[str]:
    async with redis_connection(provider) as conn:
        return await conn.hget(status_key(job_id), field)


async def read_hash_for_id(job_id: str, provider: Optional[ConnectionProvider] = None) -> Dict[str, str]:
    async with redis_connection(provider) as conn:
        return await conn.hgetall(status_key(job_id))


async def status_ttl(job_id: str, provider: Optional[ConnectionProvider] = None) -> int:
    """Seconds left before the record expires (-2 when missing)."""
    async with redis_connection(provider) as conn:
        return await conn.ttl(status_key(job_id))


async def delete_status(job_id: str, provider: Optional[ConnectionProvider] = None) -> int:
    async with redis_connection(provider) as conn:
        removed = await conn.delete(status_key(job_id))
    if removed:
        metrics.status_deletes_total.inc()
    return removed


async def listen_status_updates(provider: Optional[ConnectionProvider] = None) -> AsyncIterator[str]:
    """Yield job ids as their records are written.

    The subscription holds its own connection until the iterator is closed.
    """
    async with redis_connection(provider) as conn:
        pubsub = conn.pubsub()
        await pubsub.subscribe(STATUS_CHANNEL)
        try:
            async for message in pubsub.listen():
                if message["type"] == "message":
                    yield message["data"]
        finally:
            await pubsub.unsubscribe(STATUS_CHANNEL)
            await pubsub.aclose()
