"""Schedule sorted set: placing jobs on it, draining due ones, cancelling one.

Members of ``schedule`` are JSON job descriptors scored by their intended unix
execution time. Jobs placed here by ``schedule_job`` are ``ScheduledJob``
descriptors; cancellation only relies on the ``job_id`` field.
"""
import json
import logging
import re
from typing import Any, List, Optional

from pydantic import ValidationError

from . import metrics
from .redis_helper import READY_QUEUE, SCHEDULE_KEY, ConnectionProvider, redis_connection
from .schemas import JobState, ScheduledJob, ScheduleEntry
from .storage import Expiration, delete_status, store_status

logger = logging.getLogger(__name__)

BATCH_LIMIT = 500
ID_FIELD = "job_id"


def _id_pattern(job_id: str):
    # the quoted id includes its closing quote, so "abc" never matches "abc123"
    quoted = json.dumps(job_id, ensure_ascii=False)
    return re.compile(r'"%s"\s*:\s*%s' % (ID_FIELD, re.escape(quoted)))


def _decode(member: str, model=ScheduledJob):
    try:
        return model.model_validate_json(member)
    except ValidationError:
        logger.warning("undecodable schedule entry: %.120s", member)
        return None


def scan_scheduled_jobs_for_id(entries: List[str], job_id: str) -> Optional[str]:
    """Return the first member whose descriptor belongs to ``job_id``.

    Members are filtered by a textual match on the id field first; only the
    hits are decoded, and a hit counts only when the top-level ``job_id``
    equals the one asked for. An id that merely appears inside a payload is
    therefore skipped. Apart from ``job_id`` the descriptor is opaque, so
    entries written by other producers match as well.
    """
    pattern = _id_pattern(job_id)
    for member in entries:
        if not pattern.search(member):
            continue
        entry = _decode(member, ScheduleEntry)
        if entry is not None and entry.job_id == job_id:
            return member
    return None


async def schedule_batch(conn: Any, lo: Any, hi: Any, offset: int, limit: int = BATCH_LIMIT) -> List[str]:
    return await conn.zrangebyscore(SCHEDULE_KEY, lo, hi, start=offset, num=limit)


async def delete_and_unschedule(job_id: str, at_time: Optional[float] = None,
                                provider: Optional[ConnectionProvider] = None) -> bool:
    """Remove a job that has not started yet, together with its status record.

    With ``at_time`` only entries scored exactly at that time are read;
    otherwise the whole schedule is paged through ``BATCH_LIMIT`` entries at a
    time. Either way the cost is linear in the number of entries read before
    the match.

    Returns False when no entry matches: the job is unknown, already running
    or already done. The entry and the record are removed by two separate
    commands; if the second one fails the record outlives the entry.
    """
    lo = at_time if at_time is not None else "-inf"
    hi = at_time if at_time is not None else "+inf"
    offset = 0
    match = None
    with metrics.schedule_scan_seconds.time():
        async with redis_connection(provider) as conn:
            while True:
                entries = await schedule_batch(conn, lo, hi, offset)
                if not entries:
                    break
                metrics.schedule_scan_batches_total.inc()
                match = scan_scheduled_jobs_for_id(entries, job_id)
                if match is not None or len(entries) < BATCH_LIMIT:
                    break
                offset += BATCH_LIMIT
            if match is not None:
                await conn.zrem(SCHEDULE_KEY, match)

    if match is None:
        logger.debug("%s not on the schedule (%d entries read)", job_id, offset + len(entries))
        metrics.unschedule_requests_total.labels(result="missing").inc()
        return False

    await delete_status(job_id, provider)
    logger.info("unscheduled %s", job_id)
    metrics.unschedule_requests_total.labels(result="found").inc()
    return True


async def schedule_job(job: ScheduledJob, expiration: Expiration = None,
                       provider: Optional[ConnectionProvider] = None) -> ScheduledJob:
    async with redis_connection(provider) as conn:
        await conn.zadd(SCHEDULE_KEY, {job.model_dump_json(): job.at})
    await store_status(job.job_id, JobState.queued, expiration, provider)
    metrics.jobs_scheduled_total.inc()
    logger.debug("scheduled %s at %s", job.job_id, job.at)
    return job


async def pop_due_jobs(now: float, count: int = 100,
                       provider: Optional[ConnectionProvider] = None) -> List[ScheduledJob]:
    """Claim up to ``count`` entries scored at or before ``now``.

    An entry belongs to whichever caller's ZREM removes it, so concurrent
    pollers never hand out the same job twice.
    """
    due = []
    async with redis_connection(provider) as conn:
        for member in await schedule_batch(conn, "-inf", now, 0, count):
            if not await conn.zrem(SCHEDULE_KEY, member):
                continue
            job = _decode(member)
            if job is not None:
                due.append(job)
    return due


# ready queue
async def enqueue_job(job: ScheduledJob, provider: Optional[ConnectionProvider] = None):
    async with redis_connection(provider) as conn:
        await conn.rpush(READY_QUEUE, job.model_dump_json())


async def pop_ready(provider: Optional[ConnectionProvider] = None) -> Optional[ScheduledJob]:
    async with redis_connection(provider) as conn:
        member = await conn.lpop(READY_QUEUE)
    if member is None:
        return None
    return _decode(member)
