"""
FastAPI dependency injection.
Provides the allocation store, the engine and API key validation.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from allocator.config import settings
from allocator.engine.orchestrator import AllocationEngine
from allocator.models.database import async_session_factory
from allocator.store.base import AllocationStore
from allocator.store.sql_store import SqlAllocationStore


# ── Singleton instances ──────────────────────────────────────
_store: Optional[AllocationStore] = None


def get_store() -> AllocationStore:
    """Get or create the SQL store singleton."""
    global _store
    if _store is None:
        _store = SqlAllocationStore(async_session_factory)
    return _store


def get_engine(store: AllocationStore = Depends(get_store)) -> AllocationEngine:
    return AllocationEngine(store)


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    Verify API key if configured.
    If API_KEY is not set, all requests are allowed (dev mode).
    """
    if settings.API_KEY is None:
        return None

    if x_api_key is None or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return x_api_key
