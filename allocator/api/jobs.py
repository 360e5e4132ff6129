"""
/api/v1/jobs endpoints.
Background recompute enqueueing, queue stats and job status.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from redis import Redis

from allocator.config import settings
from allocator.dependencies import verify_api_key
from allocator.engine.errors import ValidationError
from allocator.engine.periods import parse_month
from allocator.schemas.api import JobEnqueueResponse, JobStatus, QueueStats, RecomputeAllRequest

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"], dependencies=[Depends(verify_api_key)])


def _get_redis() -> Redis:
    """Get a Redis connection."""
    return Redis.from_url(settings.REDIS_URL)


@router.post(
    "/organizations/{organization_id}/recompute",
    response_model=JobEnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def enqueue_recompute(organization_id: str, request: Optional[RecomputeAllRequest] = None):
    """Queue a multi-month recompute for the worker."""
    request = request or RecomputeAllRequest()
    # Reject bad months now rather than inside the worker
    try:
        for month in request.months or []:
            parse_month(month)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail={"error_code": e.error_code, "message": e.message, "retryable": False},
        )

    try:
        from allocator.worker.jobs import enqueue_recompute as enqueue
        job_id = enqueue(organization_id, request.months, request.preserve_overrides)
    except Exception as e:
        logger.warning("enqueue_failed", organization_id=organization_id, error=str(e))
        raise HTTPException(status_code=503, detail=f"Queue unavailable: {str(e)}")

    return JobEnqueueResponse(job_id=job_id, organization_id=organization_id, months=request.months)


@router.get("/queue/stats", response_model=QueueStats)
async def queue_stats():
    """Get current queue statistics."""
    try:
        from rq import Queue
        from rq.worker import Worker

        conn = _get_redis()
        q = Queue(settings.QUEUE_NAME, connection=conn)

        return QueueStats(
            queue_name=settings.QUEUE_NAME,
            queued=len(q),
            started=q.started_job_registry.count,
            finished=q.finished_job_registry.count,
            failed=q.failed_job_registry.count,
            workers=len(Worker.all(connection=conn)),
        )
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Queue unavailable: {str(e)}")


@router.get("/{job_id}", response_model=JobStatus)
async def get_job_status(job_id: str):
    """Get the status of a background recompute."""
    try:
        from rq.job import Job

        job = Job.fetch(job_id, connection=_get_redis())
    except Exception as e:
        raise HTTPException(status_code=404, detail=f"Job not found: {str(e)}")

    return JobStatus(
        job_id=job_id,
        organization_id=job.args[0] if job.args else "",
        status=job.get_status().value,
        enqueued_at=job.enqueued_at,
        started_at=job.started_at,
        ended_at=job.ended_at,
        error_message=job.exc_info if job.exc_info else None,
        result=job.return_value() if job.is_finished else None,
    )
