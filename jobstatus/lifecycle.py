import asyncio
import logging
from typing import Any, Optional

from .redis_helper import ConnectionProvider
from .schemas import JobState
from .storage import Expiration, read_field_for_id, store_for_id, store_status

logger = logging.getLogger(__name__)


class JobStopped(Exception):
    """Raised inside a job when a stop was requested for it."""


class JobTracker:
    """Records a job's lifecycle and progress while a worker runs it.

    Usage::

        async with JobTracker(job.job_id) as tracker:
            await tracker.total(len(items))
            for n, item in enumerate(items, 1):
                ...
                await tracker.at(n, f"processed {item}")

    Entering stores ``working``. Leaving stores ``complete``, ``stopped`` (for
    JobStopped or task cancellation) or ``failed`` with the error text.
    JobStopped is swallowed; every other exception propagates.
    """

    def __init__(self, job_id: str, expiration: Expiration = None,
                 provider: Optional[ConnectionProvider] = None):
        self.job_id = job_id
        self.expiration = expiration
        self.provider = provider
        self._total: Optional[int] = None

    async def __aenter__(self) -> "JobTracker":
        await store_status(self.job_id, JobState.working, self.expiration, self.provider)
        logger.info("%s working", self.job_id)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            state, extra = JobState.complete, {}
        elif issubclass(exc_type, (JobStopped, asyncio.CancelledError)):
            state, extra = JobState.stopped, {}
        else:
            state, extra = JobState.failed, {"error": f"{exc_type.__name__}: {exc}"}
        await store_for_id(self.job_id, {"status": state, **extra}, self.expiration, self.provider)
        logger.info("%s %s", self.job_id, state.value)
        return exc_type is not None and issubclass(exc_type, JobStopped)

    async def store(self, **fields: Any) -> int:
        return await store_for_id(self.job_id, fields, self.expiration, self.provider)

    async def retrieve(self, field: str) -> Optional[str]:
        return await read_field_for_id(self.job_id, field, self.provider)

    async def total(self, num: int) -> int:
        self._total = num
        return await self.store(total=num)

    async def at(self, num: int, message: Optional[str] = None) -> int:
        if await self.retrieve("stop"):
            raise JobStopped(self.job_id)
        total = self._total if self._total is not None else 100
        pct_complete = int(num * 100 / total) if total else 0
        return await self.store(at=num, total=total, pct_complete=pct_complete, message=message)
