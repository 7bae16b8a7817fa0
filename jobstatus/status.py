"""Read-side helpers for status records.

    >>> await status.get_all(job_id)
    {'status': 'working', 'at': '40', 'total': '100', 'pct_complete': '40', ...}
    >>> await status.pct_complete(job_id)
    40
"""
from typing import Dict, Optional

from .redis_helper import ConnectionProvider
from .schedule import delete_and_unschedule
from .schemas import JobState
from .storage import RESERVED_FIELDS, read_field_for_id, read_hash_for_id, store_for_id

PROGRESS_FIELDS = ("at", "total", "pct_complete", "message")


async def get(job_id: str, field: str, provider: Optional[ConnectionProvider] = None) -> Optional[str]:
    return await read_field_for_id(job_id, field, provider)


async def get_all(job_id: str, provider: Optional[ConnectionProvider] = None) -> Dict[str, str]:
    return await read_hash_for_id(job_id, provider)


async def status(job_id: str, provider: Optional[ConnectionProvider] = None) -> Optional[JobState]:
    """Current lifecycle state, or None for unknown/expired jobs and foreign values."""
    value = await read_field_for_id(job_id, "status", provider)
    try:
        return JobState(value)
    except ValueError:
        return None


async def _int_field(job_id: str, field: str, provider: Optional[ConnectionProvider]) -> int:
    value = await read_field_for_id(job_id, field, provider)
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


async def at(job_id: str, provider: Optional[ConnectionProvider] = None) -> int:
    return await _int_field(job_id, "at", provider)


async def total(job_id: str, provider: Optional[ConnectionProvider] = None) -> int:
    return await _int_field(job_id, "total", provider)


async def pct_complete(job_id: str, provider: Optional[ConnectionProvider] = None) -> int:
    return await _int_field(job_id, "pct_complete", provider)


async def message(job_id: str, provider: Optional[ConnectionProvider] = None) -> Optional[str]:
    return await read_field_for_id(job_id, "message", provider)


async def custom_data(job_id: str, provider: Optional[ConnectionProvider] = None) -> Dict[str, str]:
    """Caller-defined fields only."""
    skip = set(RESERVED_FIELDS) | set(PROGRESS_FIELDS)
    return {k: v for k, v in (await read_hash_for_id(job_id, provider)).items() if k not in skip}


async def request_stop(job_id: str, reason: str = "true",
                       provider: Optional[ConnectionProvider] = None) -> int:
    """Ask a running job to stop at its next progress update."""
    return await store_for_id(job_id, {"stop": reason}, provider=provider)


async def cancel(job_id: str, at_time: Optional[float] = None,
                 provider: Optional[ConnectionProvider] = None) -> bool:
    return await delete_and_unschedule(job_id, at_time, provider)
