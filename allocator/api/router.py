"""
Top-level API router.
Combines all sub-routers into a single router.
"""

from fastapi import APIRouter

from allocator.api.allocations import router as allocations_router
from allocator.api.health import router as health_router
from allocator.api.jobs import router as jobs_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(allocations_router)
api_router.include_router(jobs_router)
