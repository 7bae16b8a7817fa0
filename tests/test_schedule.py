import time

import pytest

from jobstatus import schedule, storage
from jobstatus.redis_helper import SCHEDULE_KEY
from jobstatus.schemas import ScheduledJob

LATER = time.time() + 3600


async def add_job(job_id, at=LATER, **payload):
    return await schedule.schedule_job(ScheduledJob(job_id=job_id, type="report", payload=payload, at=at))


async def scheduled_ids(redis_client):
    members = await redis_client.zrangebyscore(SCHEDULE_KEY, "-inf", "+inf")
    return [ScheduledJob.model_validate_json(m).job_id for m in members]


async def fill_schedule(redis_client, count, at=LATER):
    await redis_client.zadd(SCHEDULE_KEY, {
        ScheduledJob(job_id=f"filler-{n:05d}", type="report", at=at).model_dump_json(): at
        for n in range(count)
    })


@pytest.mark.asyncio
async def test_schedule_job_records_queued_status(redis_client):
    job = await add_job("job-42")
    assert await redis_client.zscore(SCHEDULE_KEY, job.model_dump_json()) == job.at
    assert await storage.read_field_for_id("job-42", "status") == "queued"


@pytest.mark.asyncio
async def test_unschedule_at_known_time(redis_client):
    await add_job("job-7", at=LATER + 10)
    await add_job("job-42", at=LATER)

    assert await schedule.delete_and_unschedule("job-42", LATER) is True
    assert await scheduled_ids(redis_client) == ["job-7"]
    assert await storage.read_hash_for_id("job-42") == {}

    # second attempt finds nothing and touches nothing
    assert await schedule.delete_and_unschedule("job-42", LATER) is False
    assert await scheduled_ids(redis_client) == ["job-7"]
    assert await storage.read_field_for_id("job-7", "status") == "queued"


@pytest.mark.asyncio
async def test_unschedule_without_time(redis_client):
    await add_job("job-42")
    assert await schedule.delete_and_unschedule("job-42") is True
    assert await redis_client.zcard(SCHEDULE_KEY) == 0


@pytest.mark.asyncio
async def test_wrong_time_does_not_match(redis_client):
    await add_job("job-42", at=LATER)
    assert await schedule.delete_and_unschedule("job-42", LATER + 1) is False
    assert await scheduled_ids(redis_client) == ["job-42"]


@pytest.mark.asyncio
async def test_id_prefix_does_not_match_longer_id(redis_client):
    await add_job("abc123", at=LATER)
    await add_job("abc", at=LATER + 1)

    assert await schedule.delete_and_unschedule("ab") is False
    assert await schedule.delete_and_unschedule("abc") is True
    assert await scheduled_ids(redis_client) == ["abc123"]
    assert await storage.read_field_for_id("abc123", "status") == "queued"
    assert await schedule.delete_and_unschedule("abc") is False


@pytest.mark.asyncio
async def test_id_inside_payload_is_not_a_match(redis_client):
    await add_job("parent", child={"job_id": "child"})

    assert await schedule.delete_and_unschedule("child") is False
    assert await scheduled_ids(redis_client) == ["parent"]

    await add_job("child", at=LATER + 5)
    assert await schedule.delete_and_unschedule("child") is True
    assert await scheduled_ids(redis_client) == ["parent"]


@pytest.mark.asyncio
async def test_ids_with_regex_characters(redis_client):
    await add_job("a.c")
    await add_job("job+1")
    assert await schedule.delete_and_unschedule("abc") is False
    assert await schedule.delete_and_unschedule("job+1") is True
    assert await scheduled_ids(redis_client) == ["a.c"]


@pytest.mark.asyncio
async def test_descriptor_from_another_producer(redis_client):
    member = '{"job_id":"job-42","class":"ReportJob","args":[1]}'
    await redis_client.zadd(SCHEDULE_KEY, {member: 1000.0})
    await storage.store_status("job-42", "queued")

    assert await schedule.delete_and_unschedule("job-42", 1000.0) is True
    assert await redis_client.zcard(SCHEDULE_KEY) == 0
    assert await storage.read_hash_for_id("job-42") == {}


@pytest.mark.asyncio
async def test_undecodable_entry_is_skipped(redis_client):
    await redis_client.zadd(SCHEDULE_KEY, {'{"job_id":"broken", oops': LATER})
    assert await schedule.delete_and_unschedule("broken") is False
    assert await redis_client.zcard(SCHEDULE_KEY) == 1


@pytest.mark.asyncio
async def test_unknown_id_reads_every_page(redis_client, monkeypatch):
    await fill_schedule(redis_client, 1200)
    offsets = []
    zrangebyscore = redis_client.zrangebyscore

    async def spy(name, lo, hi, start=None, num=None):
        offsets.append(start)
        assert num == schedule.BATCH_LIMIT
        return await zrangebyscore(name, lo, hi, start=start, num=num)

    monkeypatch.setattr(redis_client, "zrangebyscore", spy)

    assert await schedule.delete_and_unschedule("job-404") is False
    assert offsets == [0, 500, 1000]
    assert await redis_client.zcard(SCHEDULE_KEY) == 1200


@pytest.mark.asyncio
async def test_match_on_a_later_page(redis_client):
    await fill_schedule(redis_client, 1100, at=LATER)
    await add_job("job-42", at=LATER + 60)

    assert await schedule.delete_and_unschedule("job-42") is True
    assert await redis_client.zcard(SCHEDULE_KEY) == 1100


@pytest.mark.asyncio
async def test_empty_schedule(redis_client):
    assert await schedule.delete_and_unschedule("job-42") is False
    assert await schedule.delete_and_unschedule("job-42", LATER) is False


@pytest.mark.asyncio
async def test_pop_due_jobs_claims_only_due_entries(redis_client):
    now = time.time()
    await add_job("due-1", at=now - 10)
    await add_job("due-2", at=now - 5)
    await add_job("future", at=now + 600)

    due = await schedule.pop_due_jobs(now)
    assert [job.job_id for job in due] == ["due-1", "due-2"]
    assert await scheduled_ids(redis_client) == ["future"]
    assert await schedule.pop_due_jobs(now) == []


@pytest.mark.asyncio
async def test_ready_queue_is_fifo(redis_client):
    job = ScheduledJob(job_id="job-1", type="email", payload={"to": "a@b.com"}, at=time.time())
    await schedule.enqueue_job(job)
    popped = await schedule.pop_ready()
    assert popped.job_id == "job-1"
    assert popped.payload == {"to": "a@b.com"}
    assert await schedule.pop_ready() is None
