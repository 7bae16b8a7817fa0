import time

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from jobstatus import storage

AUTH = {"X-API-Key": "dev-key"}


@pytest.mark.asyncio
async def test_create_job_and_read_status(client):
    res = await client.post(
        "/jobs",
        json={"type": "email", "payload": {"to": "a@b.com"}, "schedule_at": time.time() + 60},
        headers=AUTH,
    )
    assert res.status_code == 200
    job_id = res.json()["job_id"]

    res2 = await client.get(f"/status/{job_id}")
    assert res2.status_code == 200
    body = res2.json()
    assert body["status"] == "queued"
    assert body["update_time"] >= int(time.time()) - 1

    field = await client.get(f"/status/{job_id}/status")
    assert field.json() == {"job_id": job_id, "field": "status", "value": "queued"}

    resm = await client.get("/metrics")
    assert resm.status_code == 200
    assert "status_writes_total" in resm.text
    assert "jobs_scheduled_total" in resm.text


@pytest.mark.asyncio
async def test_missing_status_is_404(client):
    assert (await client.get("/status/nope")).status_code == 404
    assert (await client.get("/status/nope/status")).status_code == 404


@pytest.mark.asyncio
async def test_patch_merges_fields(client):
    await storage.store_status("job-1", "working")
    res = await client.patch("/status/job-1", json={"fields": {"at": 5, "message": "halfway"}}, headers=AUTH)
    assert res.status_code == 200
    fields = res.json()["fields"]
    assert fields["status"] == "working"
    assert fields["at"] == "5"
    assert fields["message"] == "halfway"


@pytest.mark.asyncio
async def test_mutations_require_api_key(client):
    await storage.store_status("job-1", "working")
    assert (await client.delete("/status/job-1")).status_code == 401
    assert (await client.delete("/status/job-1", headers={"X-API-Key": "wrong"})).status_code == 403
    assert (await client.post("/jobs/job-1/unschedule")).status_code == 401
    assert await storage.read_field_for_id("job-1", "status") == "working"


@pytest.mark.asyncio
async def test_delete_status(client):
    await storage.store_status("job-1", "complete")
    assert (await client.delete("/status/job-1", headers=AUTH)).json() == {"deleted": 1}
    assert (await client.delete("/status/job-1", headers=AUTH)).json() == {"deleted": 0}


@pytest.mark.asyncio
async def test_unschedule(client):
    at = time.time() + 60
    res = await client.post("/jobs", json={"type": "task", "payload": {"x": 1}, "schedule_at": at}, headers=AUTH)
    job_id = res.json()["job_id"]

    rc = await client.post(f"/jobs/{job_id}/unschedule", json={"at": at}, headers=AUTH)
    assert rc.status_code == 200
    assert (await client.get(f"/status/{job_id}")).status_code == 404

    again = await client.post(f"/jobs/{job_id}/unschedule", headers=AUTH)
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_store_errors_map_to_503(client, redis_client, monkeypatch):
    async def down(*args, **kwargs):
        raise RedisConnectionError("connection refused")

    monkeypatch.setattr(redis_client, "hgetall", down)
    res = await client.get("/status/job-1")
    assert res.status_code == 503


@pytest.mark.asyncio
async def test_health(client):
    assert (await client.get("/healthz")).json() == {"status": "ok"}
    assert (await client.get("/readyz")).json() == {"ready": True}
