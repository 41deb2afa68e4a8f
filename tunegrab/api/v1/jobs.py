"""Job management API — submit jobs, poll status, cancel."""

from fastapi import APIRouter, HTTPException

from tunegrab.errors import JobValidationError
from tunegrab.jobs.models import ExtractionRequest

router = APIRouter()

# These will be set by main.py during lifespan
_dispatcher = None
_status_service = None


def set_dispatcher(dispatcher):
    global _dispatcher
    _dispatcher = dispatcher


def set_status_service(service):
    global _status_service
    _status_service = service


@router.post("/jobs")
async def submit_job(request: ExtractionRequest):
    """Submit a new extraction job. Poll GET /api/v1/jobs/{id} for status."""
    if _dispatcher is None:
        raise HTTPException(status_code=503, detail="Job dispatcher not initialized")

    try:
        job_id = await _dispatcher.submit(request)
    except JobValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"jobId": job_id, "message": "Download job created successfully"}


@router.get("/jobs/{job_id}")
async def get_job_status(job_id: str):
    """Get the current state of a job, including its result or error."""
    if _status_service is None:
        raise HTTPException(status_code=503, detail="Status service not initialized")

    job = await _status_service.get_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.to_public()


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str):
    if _dispatcher is None:
        raise HTTPException(status_code=503, detail="Job dispatcher not initialized")

    if not await _dispatcher.cancel(job_id):
        raise HTTPException(status_code=404, detail="No running job with this id")
    return {"jobId": job_id, "cancelled": True}
