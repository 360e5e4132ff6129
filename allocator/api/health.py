"""
Health check endpoints.
/health always returns 200; store connectivity is reported, not enforced.
"""

from fastapi import APIRouter, Depends

from allocator.config import settings
from allocator.dependencies import get_store
from allocator.engine.errors import StoreError
from allocator.store.base import AllocationStore

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(store: AllocationStore = Depends(get_store)):
    """Liveness: the API is up. Database state is informational."""
    db_error = None
    try:
        db_ok = await store.health_check()
    except StoreError as e:
        db_ok = False
        db_error = e.message[:200]

    response = {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.APP_VERSION,
        "engine_version": settings.ENGINE_VERSION,
        "database": "connected" if db_ok else "unreachable",
    }
    if db_error:
        response["database_error"] = db_error

    return response


@router.get("/health/ready")
async def readiness_check(store: AllocationStore = Depends(get_store)):
    """Readiness: ready only when the store answers."""
    try:
        return {"ready": await store.health_check()}
    except StoreError:
        return {"ready": False}
