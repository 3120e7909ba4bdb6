"""Job scheduler routes.

GET    /scheduler/status                        loop state and counts
GET    /scheduler/jobs                          registered jobs
GET    /scheduler/jobs/{job_id}                 one job
POST   /scheduler/jobs/{job_id}/toggle          enable / disable
POST   /scheduler/jobs/{job_id}/run             run now
GET    /scheduler/executions                    execution history, newest first
GET    /scheduler/dead-letters                  jobs flagged after repeated failures
POST   /scheduler/dead-letters/{job_id}/retry   clear the flag and run once
DELETE /scheduler/dead-letters                  clear every flag
GET    /scheduler/dedup                         today's once-per-day records
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from courier.admin.service import AdminService
from courier.api.deps import get_admin
from courier.core.errors import UnknownJobError

router = APIRouter(prefix="/scheduler", tags=["scheduler"])


class ToggleBody(BaseModel):
    is_active: bool


def _not_found(job_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Job {job_id} not found")


@router.get("/status", summary="Scheduler status")
def get_status(admin: AdminService = Depends(get_admin)):
    return admin.get_scheduler_status()


@router.get("/jobs", summary="List scheduled jobs")
def list_jobs(admin: AdminService = Depends(get_admin)):
    return admin.get_scheduled_jobs()


@router.get("/jobs/{job_id}", summary="Get one scheduled job")
def get_job(job_id: str, admin: AdminService = Depends(get_admin)):
    job = admin.get_scheduled_job(job_id)
    if job is None:
        raise _not_found(job_id)
    return job


@router.post("/jobs/{job_id}/toggle", summary="Enable or disable a job")
def toggle_job(job_id: str, body: ToggleBody, admin: AdminService = Depends(get_admin)):
    try:
        return admin.toggle_scheduled_job(job_id, body.is_active)
    except UnknownJobError:
        raise _not_found(job_id)


@router.post("/jobs/{job_id}/run", summary="Run a job now")
async def run_job(job_id: str, admin: AdminService = Depends(get_admin)):
    try:
        return await admin.run_scheduled_job_manually(job_id)
    except UnknownJobError:
        raise _not_found(job_id)


@router.get("/executions", summary="Job execution history")
def list_executions(
    limit: int = Query(default=20, ge=1, le=500),
    job_id: str | None = None,
    admin: AdminService = Depends(get_admin),
):
    return admin.get_job_executions(limit, job_id)


@router.get("/dead-letters", summary="Jobs flagged after repeated failures")
def list_dead_letters(admin: AdminService = Depends(get_admin)):
    return admin.get_scheduler_dead_letter()


@router.post("/dead-letters/{job_id}/retry", summary="Clear a job's flag and run it once")
async def retry_dead_letter(job_id: str, admin: AdminService = Depends(get_admin)):
    try:
        result = await admin.retry_scheduler_dead_letter(job_id)
    except UnknownJobError:
        raise _not_found(job_id)
    if not result["retried"]:
        raise HTTPException(status_code=404, detail=f"Job {job_id} is not dead-lettered")
    return result


@router.delete("/dead-letters", summary="Clear every job dead-letter flag")
def clear_dead_letters(admin: AdminService = Depends(get_admin)):
    return admin.clear_scheduler_dead_letter()


@router.get("/dedup", summary="Today's once-per-day send records")
def dedup_status(admin: AdminService = Depends(get_admin)):
    return admin.get_dedup_status()
