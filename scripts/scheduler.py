#!/usr/bin/env python3
"""Simple scheduler that periodically moves due jobs from `schedule` onto the ready queue.

Usage:
  python scripts/scheduler.py

Environment variables:
- REDIS_URL (optional)
- TESTING=1 to use in-memory redis
- POLL_SECONDS (optional, default 0.5)
"""
import asyncio
import logging
import os
import time

from jobstatus.schedule import enqueue_job, pop_due_jobs

logger = logging.getLogger("scheduler")

POLL_SECONDS = float(os.getenv("POLL_SECONDS", "0.5"))


async def run_scheduler():
    logger.info("scheduler: started")
    try:
        while True:
            for job in await pop_due_jobs(time.time(), count=100):
                await enqueue_job(job)
                logger.info("scheduler: enqueued %s", job.job_id)
            await asyncio.sleep(POLL_SECONDS)
    except asyncio.CancelledError:
        pass


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    try:
        asyncio.run(run_scheduler())
    except KeyboardInterrupt:
        logger.info("scheduler: exiting")
