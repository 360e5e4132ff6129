"""
RQ job functions for background recomputation.
These are the entry points that the worker calls.
"""

from typing import Optional

import structlog
from redis import Redis
from rq import Queue, get_current_job

from allocator.config import settings
from allocator.observability.logging import bind_run_context, clear_run_context

logger = structlog.get_logger(__name__)


def get_queue() -> Queue:
    """Get the allocation job queue."""
    conn = Redis.from_url(settings.REDIS_URL)
    return Queue(settings.QUEUE_NAME, connection=conn)


def enqueue_recompute(
    organization_id: str,
    months: Optional[list[str]] = None,
    preserve_overrides: Optional[bool] = None,
) -> str:
    """
    Enqueue a multi-month recompute for one organization.
    Returns the job ID.
    """
    q = get_queue()
    job = q.enqueue(
        recompute_organization_job,
        organization_id,
        months,
        preserve_overrides,
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        result_ttl=86400,  # Keep results for 24 hours
        failure_ttl=604800,  # Keep failures for 7 days
    )
    logger.info("job_enqueued", organization_id=organization_id, job_id=job.id, months=months)
    return job.id


def recompute_organization_job(
    organization_id: str,
    months: Optional[list[str]] = None,
    preserve_overrides: Optional[bool] = None,
) -> dict:
    """
    Main job function: recompute an organization's months.
    This runs inside the RQ worker process.
    """
    import asyncio

    job = get_current_job()
    bind_run_context(job_id=job.id if job else None, organization_id=organization_id)
    logger.info("job_started", months=months)

    try:
        results = asyncio.run(_recompute_async(organization_id, months, preserve_overrides))

        summary = {
            "organization_id": organization_id,
            "succeeded": sum(1 for r in results if r.success),
            "failed": sum(1 for r in results if not r.success),
            "months": [r.model_dump(mode="json", exclude={"result"}) for r in results],
        }
        logger.info("job_completed", succeeded=summary["succeeded"], failed=summary["failed"])
        return summary
    except Exception as e:
        logger.error("job_failed", error=str(e))
        raise
    finally:
        clear_run_context()


async def _recompute_async(
    organization_id: str,
    months: Optional[list[str]],
    preserve_overrides: Optional[bool],
):
    """Run the batch driver against the SQL store, one event loop per job."""
    from allocator.engine.orchestrator import AllocationEngine
    from allocator.models.database import async_session_factory, close_db
    from allocator.store.sql_store import SqlAllocationStore

    engine = AllocationEngine(SqlAllocationStore(async_session_factory))
    try:
        return await engine.calculate_all_months(
            organization_id, months=months, preserve_overrides=preserve_overrides
        )
    finally:
        # Pooled connections are bound to this job's event loop
        await close_db()
