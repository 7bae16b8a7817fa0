from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from .. import schedule, storage
from ..auth import require_api_key
from ..schemas import JobCreate, JobResponse, ScheduledJob, StatusResponse, StatusUpdate, UnscheduleRequest

router = APIRouter()


def _status_response(job_id: str, record: dict) -> StatusResponse:
    update_time = record.get("update_time")
    return StatusResponse(
        job_id=job_id,
        status=record.get("status"),
        update_time=int(update_time) if update_time else None,
        fields=record,
    )


@router.get("/status/{job_id}", response_model=StatusResponse)
async def get_status(job_id: str):
    record = await storage.read_hash_for_id(job_id)
    if not record:
        raise HTTPException(status_code=404, detail="status unknown or expired")
    return _status_response(job_id, record)


@router.get("/status/{job_id}/{field}")
async def get_status_field(job_id: str, field: str):
    value = await storage.read_field_for_id(job_id, field)
    if value is None:
        raise HTTPException(status_code=404, detail="field not set")
    return {"job_id": job_id, "field": field, "value": value}


@router.patch("/status/{job_id}", response_model=StatusResponse)
async def update_status(job_id: str, update: StatusUpdate, authorized: bool = Depends(require_api_key)):
    await storage.store_for_id(job_id, update.fields, update.expiration)
    return _status_response(job_id, await storage.read_hash_for_id(job_id))


@router.delete("/status/{job_id}")
async def delete_status(job_id: str, authorized: bool = Depends(require_api_key)):
    return {"deleted": await storage.delete_status(job_id)}


@router.post("/jobs", response_model=JobResponse)
async def create_job(job: JobCreate, authorized: bool = Depends(require_api_key)):
    descriptor = ScheduledJob(type=job.type, payload=job.payload, at=job.schedule_at)
    await schedule.schedule_job(descriptor, job.expiration)
    return JobResponse(job_id=descriptor.job_id, status="queued", at=descriptor.at)


@router.post("/jobs/{job_id}/unschedule")
async def unschedule_job(job_id: str, request: Optional[UnscheduleRequest] = None,
                         authorized: bool = Depends(require_api_key)):
    found = await schedule.delete_and_unschedule(job_id, request.at if request else None)
    if not found:
        raise HTTPException(status_code=404, detail="job not scheduled")
    return {"ok": True}
