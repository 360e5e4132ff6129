"""
Pydantic request/response schemas for the /api/v1 endpoints.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from allocator.models.enums import AllocationMethod, AllocationState
from allocator.schemas.allocations import MonthlyAllocation, SessionAllocation


# ── Request Schemas ──────────────────────────────────────────

class RecomputeRequest(BaseModel):
    """Options for recomputing one month. Unset fields fall back to settings."""
    preserve_overrides: Optional[bool] = None
    cascade_sessions: Optional[bool] = None


class RecomputeAllRequest(BaseModel):
    months: Optional[list[str]] = None  # every month with ledger data when omitted
    preserve_overrides: Optional[bool] = None


class OverrideRequest(BaseModel):
    override_amount: Decimal = Field(ge=0)
    notes: Optional[str] = None


# ── Response Schemas ─────────────────────────────────────────

class AllocationResponse(BaseModel):
    """One location row as callers see it: effective amounts first."""
    allocation_id: uuid.UUID
    organization_id: str
    month: date
    location_id: uuid.UUID
    location_code: Optional[str] = None
    expense_category: str
    allocation_method: AllocationMethod
    state: AllocationState
    allocated_amount: Decimal
    bingo_amount: Decimal
    computed_allocated_amount: Decimal
    computed_bingo_amount: Decimal
    bingo_percentage: Decimal
    location_split_percent: Decimal
    qb_total_amount: Decimal
    qb_transaction_count: int
    override_notes: Optional[str] = None
    overridden_at: Optional[datetime] = None
    rules_applied_at: datetime

    @classmethod
    def from_allocation(cls, row: MonthlyAllocation) -> "AllocationResponse":
        return cls(
            allocation_id=row.allocation_id,
            organization_id=row.organization_id,
            month=row.month,
            location_id=row.location_id,
            location_code=row.location_code,
            expense_category=row.expense_category,
            allocation_method=row.allocation_method,
            state=AllocationState.OVERRIDDEN if row.is_overridden else AllocationState.COMPUTED,
            allocated_amount=row.effective_allocated_amount,
            bingo_amount=row.effective_bingo_amount,
            computed_allocated_amount=row.allocated_amount,
            computed_bingo_amount=row.bingo_amount,
            bingo_percentage=row.bingo_percentage,
            location_split_percent=row.location_split_percent,
            qb_total_amount=row.qb_total_amount,
            qb_transaction_count=row.qb_transaction_count,
            override_notes=row.override_notes,
            overridden_at=row.state.overridden_at if row.is_overridden else None,
            rules_applied_at=row.rules_applied_at,
        )


class AllocationListResponse(BaseModel):
    organization_id: str
    month: str
    allocations: list[AllocationResponse]
    total_allocated: Decimal


class SessionAllocationListResponse(BaseModel):
    organization_id: str
    month: str
    session_allocations: list[SessionAllocation]
    total_allocated: Decimal


class JobEnqueueResponse(BaseModel):
    job_id: str
    organization_id: str
    months: Optional[list[str]] = None
    status: str = "queued"


class JobStatus(BaseModel):
    job_id: str
    organization_id: str
    status: str
    enqueued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result: Optional[Any] = None


class QueueStats(BaseModel):
    queue_name: str
    queued: int
    started: int
    finished: int
    failed: int
    workers: int
