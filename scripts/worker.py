#!/usr/bin/env python3
"""Lightweight async worker that pops job descriptors from the ready queue and runs
them inside a JobTracker, so every lifecycle transition lands in the status store.

Usage:
  API_KEY=dev-key REDIS_URL=redis://localhost:6379/0 python scripts/worker.py

Set TESTING=1 to use the in-memory AsyncInMemoryRedis implementation used by the tests.
"""
import asyncio
import logging
import os
import random
import time

from jobstatus import metrics
from jobstatus.lifecycle import JobTracker
from jobstatus.schedule import pop_ready
from jobstatus.schemas import ScheduledJob
from jobstatus.settings import TESTING

logger = logging.getLogger("worker")

SLEEP_BETWEEN_POLLS = float(os.getenv("WORKER_POLL_SECONDS", "0.5"))
STEPS = 4


async def handle_job(job: ScheduledJob):
    start = time.time()
    async with JobTracker(job.job_id) as tracker:
        await tracker.total(STEPS)
        for step in range(1, STEPS + 1):
            # Simulate work
            await asyncio.sleep(random.uniform(0.005, 0.02) if TESTING else random.uniform(0.1, 0.5))
            await tracker.at(step, f"{job.type}: step {step}/{STEPS}")

    # Metrics
    metrics.jobs_executed_total.inc()
    metrics.execution_latency_seconds.observe(time.time() - start)


async def run_worker():
    logger.info("worker: started, testing=%s", TESTING)
    try:
        while True:
            job = await pop_ready()
            if job is None:
                await asyncio.sleep(SLEEP_BETWEEN_POLLS)
                continue
            try:
                await handle_job(job)
            except Exception:
                # already recorded as failed by the tracker
                logger.exception("worker: error handling job %s", job.job_id)
    except asyncio.CancelledError:
        pass


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("worker: exiting")
