"""
Engine outputs: monthly allocation rows, session allocation rows and the
structured per-run result handed back to callers.

A MonthlyAllocation row is either Computed or Overridden. An Overridden row
keeps the computed allocated_amount/bingo_amount it had when the user
overrode it, so the override delta stays auditable, and it is never
recomputed until the override is cleared.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from allocator.models.enums import (
    AllocationMethod,
    RunStatus,
    SessionAllocationMethod,
    SkipReason,
)
from allocator.schemas.ledger import SourceTransaction

# Fixed namespace so row ids are a pure function of their natural key
ALLOCATION_NAMESPACE = uuid.UUID("5b8f0c52-4a3e-4d8e-9a51-7c0f3c2d9e11")


def allocation_id_for(
    organization_id: str,
    month: date,
    location_id: uuid.UUID,
    expense_category: str,
) -> uuid.UUID:
    return uuid.uuid5(
        ALLOCATION_NAMESPACE,
        f"{organization_id}|{month.isoformat()}|{location_id}|{expense_category}",
    )


# ── Row state (tagged union) ─────────────────────────────────

class Computed(BaseModel):
    kind: Literal["COMPUTED"] = "COMPUTED"

    model_config = {"frozen": True}


class Overridden(BaseModel):
    kind: Literal["OVERRIDDEN"] = "OVERRIDDEN"
    override_allocated_amount: Decimal
    override_bingo_amount: Decimal
    override_notes: Optional[str] = None
    overridden_at: datetime

    model_config = {"frozen": True}


RowState = Annotated[Union[Computed, Overridden], Field(discriminator="kind")]


class MonthlyAllocation(BaseModel):
    """One row per organization x month x location x expense category."""
    allocation_id: uuid.UUID
    organization_id: str
    month: date  # first day of the month
    location_id: uuid.UUID
    location_code: Optional[str] = None
    expense_category: str
    qb_total_amount: Decimal
    qb_transaction_count: int
    qb_source_data: list[SourceTransaction] = []
    allocation_rule_id: Optional[uuid.UUID] = None
    allocation_method: AllocationMethod
    location_split_percent: Decimal
    allocated_amount: Decimal
    bingo_percentage: Decimal
    bingo_amount: Decimal
    state: RowState = Computed()
    rules_applied_at: datetime

    model_config = {"frozen": True}

    @property
    def key(self) -> tuple[uuid.UUID, str]:
        return (self.location_id, self.expense_category)

    @property
    def is_overridden(self) -> bool:
        return isinstance(self.state, Overridden)

    @property
    def override_allocated_amount(self) -> Optional[Decimal]:
        return self.state.override_allocated_amount if self.is_overridden else None

    @property
    def override_bingo_amount(self) -> Optional[Decimal]:
        return self.state.override_bingo_amount if self.is_overridden else None

    @property
    def override_notes(self) -> Optional[str]:
        return self.state.override_notes if self.is_overridden else None

    @property
    def effective_allocated_amount(self) -> Decimal:
        """The amount surfaced to callers: the override when present."""
        if self.is_overridden:
            return self.state.override_allocated_amount
        return self.allocated_amount

    @property
    def effective_bingo_amount(self) -> Decimal:
        if self.is_overridden:
            return self.state.override_bingo_amount
        return self.bingo_amount

    def to_row(self) -> dict:
        """Flatten to storage columns."""
        row = self.model_dump(exclude={"state", "qb_source_data"})
        row["allocation_method"] = self.allocation_method.value
        row["qb_source_data"] = [s.model_dump(mode="json") for s in self.qb_source_data]
        row["is_overridden"] = self.is_overridden
        row["override_allocated_amount"] = self.override_allocated_amount
        row["override_bingo_amount"] = self.override_bingo_amount
        row["override_notes"] = self.override_notes
        row["overridden_at"] = self.state.overridden_at if self.is_overridden else None
        return row

    @classmethod
    def from_row(cls, row) -> "MonthlyAllocation":
        """Build from a storage row (ORM object or mapping)."""
        get = row.get if isinstance(row, dict) else (lambda name: getattr(row, name))

        if get("is_overridden"):
            state = Overridden(
                override_allocated_amount=get("override_allocated_amount"),
                override_bingo_amount=get("override_bingo_amount"),
                override_notes=get("override_notes"),
                overridden_at=get("overridden_at"),
            )
        else:
            state = Computed()

        return cls(
            allocation_id=get("allocation_id"),
            organization_id=get("organization_id"),
            month=get("month"),
            location_id=get("location_id"),
            location_code=get("location_code"),
            expense_category=get("expense_category"),
            qb_total_amount=get("qb_total_amount"),
            qb_transaction_count=get("qb_transaction_count"),
            qb_source_data=get("qb_source_data") or [],
            allocation_rule_id=get("allocation_rule_id"),
            allocation_method=get("allocation_method"),
            location_split_percent=get("location_split_percent"),
            allocated_amount=get("allocated_amount"),
            bingo_percentage=get("bingo_percentage"),
            bingo_amount=get("bingo_amount"),
            state=state,
            rules_applied_at=get("rules_applied_at"),
        )


class SessionAllocation(BaseModel):
    """A location allocation cascaded down to one session."""
    session_allocation_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    organization_id: str
    month: date
    session_id: uuid.UUID
    location_id: uuid.UUID
    expense_category: str
    source_allocation_id: uuid.UUID
    allocation_method: SessionAllocationMethod
    allocated_amount: Decimal
    session_revenue: Decimal
    location_month_revenue: Decimal
    revenue_percentage: Optional[Decimal] = None
    calculation_notes: str = ""

    model_config = {"from_attributes": True, "frozen": True}


# ── Run results ──────────────────────────────────────────────

class BingoPercentageResult(BaseModel):
    bingo_percentage: Decimal  # 0-100
    tracked_locations_revenue: Decimal
    per_location_revenue: dict[str, Decimal]  # keyed by tracked location code
    organization_total_revenue: Decimal
    location_ids: dict[str, uuid.UUID] = {}  # resolved tracked codes only
    unresolved_locations: list[str] = []


class SkippedCategory(BaseModel):
    expense_category: str
    reason: SkipReason
    message: str
    error_code: Optional[str] = None
    qb_total_amount: Optional[Decimal] = None
    location_code: Optional[str] = None  # set when only one location was skipped


class LocationAmount(BaseModel):
    location_code: str
    location_id: uuid.UUID
    allocated_amount: Decimal
    bingo_amount: Decimal
    location_split_percent: Decimal


class AllocatedCategory(BaseModel):
    expense_category: str
    allocation_method: AllocationMethod
    qb_total_amount: Decimal
    qb_transaction_count: int
    allocated_total: Decimal
    locations: list[LocationAmount]


class PreservedOverride(BaseModel):
    allocation_id: uuid.UUID
    location_id: uuid.UUID
    expense_category: str
    allocated_amount: Decimal
    override_allocated_amount: Decimal
    override_bingo_amount: Decimal
    override_notes: Optional[str] = None

    @classmethod
    def from_allocation(cls, row: MonthlyAllocation) -> "PreservedOverride":
        return cls(
            allocation_id=row.allocation_id,
            location_id=row.location_id,
            expense_category=row.expense_category,
            allocated_amount=row.allocated_amount,
            override_allocated_amount=row.override_allocated_amount,
            override_bingo_amount=row.override_bingo_amount,
            override_notes=row.override_notes,
        )


class ExcludedSummary(BaseModel):
    """Ledger spend kept out of allocation (unmapped or outside tracked classes)."""
    transaction_count: int = 0
    total_amount: Decimal = Decimal("0")
    qb_category_names: list[str] = []


class AllocationRunResult(BaseModel):
    organization_id: str
    month: str
    status: RunStatus
    engine_version: str
    bingo: BingoPercentageResult
    allocated: list[AllocatedCategory] = []
    skipped: list[SkippedCategory] = []
    preserved_overrides: list[PreservedOverride] = []
    discarded_overrides: list[PreservedOverride] = []
    unmapped: ExcludedSummary = ExcludedSummary()
    unclassified: ExcludedSummary = ExcludedSummary()
    rows_deleted: int = 0
    rows_written: int = 0
    session_allocations_written: int = 0
    started_at: datetime
    duration_ms: int = 0


class MonthRunResult(BaseModel):
    """Outcome of one month inside a multi-month batch."""
    month: str
    success: bool
    status: RunStatus
    result: Optional[AllocationRunResult] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False
