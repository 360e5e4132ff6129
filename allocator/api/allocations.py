"""
/api/v1/organizations/{organization_id}/allocations endpoints.
Recompute months, read allocation rows and manage manual overrides.
"""

import uuid
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from allocator.dependencies import get_engine, verify_api_key
from allocator.engine.errors import (
    AllocationError,
    AllocationNotFoundError,
    OverrideConflictError,
    StoreError,
    ValidationError,
)
from allocator.engine.orchestrator import AllocationEngine
from allocator.schemas.allocations import AllocationRunResult, MonthRunResult
from allocator.schemas.api import (
    AllocationListResponse,
    AllocationResponse,
    OverrideRequest,
    RecomputeAllRequest,
    RecomputeRequest,
    SessionAllocationListResponse,
)

router = APIRouter(prefix="/api/v1", tags=["allocations"], dependencies=[Depends(verify_api_key)])


def to_http_error(e: AllocationError) -> HTTPException:
    """Map the allocation error taxonomy onto HTTP status codes."""
    if isinstance(e, ValidationError):
        code = 422
    elif isinstance(e, AllocationNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, OverrideConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(e, StoreError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(
        status_code=code,
        detail={"error_code": e.error_code, "message": e.message, "retryable": e.retryable},
    )


@router.post(
    "/organizations/{organization_id}/allocations/{month}/recompute",
    response_model=AllocationRunResult,
)
async def recompute_month(
    organization_id: str,
    month: str,
    request: Optional[RecomputeRequest] = None,
    engine: AllocationEngine = Depends(get_engine),
):
    """Recompute one month inline and return the run result."""
    request = request or RecomputeRequest()
    try:
        return await engine.process_month(
            organization_id,
            month,
            preserve_overrides=request.preserve_overrides,
            cascade_sessions=request.cascade_sessions,
        )
    except AllocationError as e:
        raise to_http_error(e)


@router.post(
    "/organizations/{organization_id}/allocations/recompute",
    response_model=list[MonthRunResult],
)
async def recompute_all_months(
    organization_id: str,
    request: Optional[RecomputeAllRequest] = None,
    engine: AllocationEngine = Depends(get_engine),
):
    """Recompute several months inline. Per-month failures are reported, not raised."""
    request = request or RecomputeAllRequest()
    try:
        return await engine.calculate_all_months(
            organization_id,
            months=request.months,
            preserve_overrides=request.preserve_overrides,
        )
    except AllocationError as e:
        raise to_http_error(e)


@router.get(
    "/organizations/{organization_id}/allocations/{month}",
    response_model=AllocationListResponse,
)
async def list_allocations(
    organization_id: str,
    month: str,
    engine: AllocationEngine = Depends(get_engine),
):
    """A month's location rows, effective (override-aware) amounts first."""
    try:
        rows = await engine.load_allocations(organization_id, month)
    except AllocationError as e:
        raise to_http_error(e)

    allocations = [AllocationResponse.from_allocation(r) for r in rows]
    return AllocationListResponse(
        organization_id=organization_id,
        month=month,
        allocations=allocations,
        total_allocated=sum((a.allocated_amount for a in allocations), Decimal("0")),
    )


@router.get(
    "/organizations/{organization_id}/allocations/{month}/sessions",
    response_model=SessionAllocationListResponse,
)
async def list_session_allocations(
    organization_id: str,
    month: str,
    engine: AllocationEngine = Depends(get_engine),
):
    try:
        rows = await engine.load_session_allocations(organization_id, month)
    except AllocationError as e:
        raise to_http_error(e)

    return SessionAllocationListResponse(
        organization_id=organization_id,
        month=month,
        session_allocations=rows,
        total_allocated=sum((r.allocated_amount for r in rows), Decimal("0")),
    )


@router.put("/allocations/{allocation_id}/override", response_model=AllocationResponse)
async def apply_override(
    allocation_id: uuid.UUID,
    request: OverrideRequest,
    engine: AllocationEngine = Depends(get_engine),
):
    """Freeze a row at a manual amount until the override is cleared."""
    try:
        row = await engine.apply_override(allocation_id, request.override_amount, request.notes)
    except AllocationError as e:
        raise to_http_error(e)
    return AllocationResponse.from_allocation(row)


@router.delete("/allocations/{allocation_id}/override", response_model=AllocationResponse)
async def clear_override(
    allocation_id: uuid.UUID,
    engine: AllocationEngine = Depends(get_engine),
):
    """Return a row to computed state; the next recompute replaces it."""
    try:
        row = await engine.clear_override(allocation_id)
    except AllocationError as e:
        raise to_http_error(e)
    return AllocationResponse.from_allocation(row)
