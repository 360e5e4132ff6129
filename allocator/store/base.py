"""
Abstract base class for allocation stores.
Every store must honor the same read and write contracts.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from allocator.schemas.allocations import MonthlyAllocation, SessionAllocation
from allocator.schemas.ledger import ExpenseTransaction, Location, RevenueSession
from allocator.schemas.rules import AllocationRule, CategoryMapping


class WriteSummary(BaseModel):
    """What a month replacement actually did."""
    deleted: int = 0
    inserted: int = 0
    preserved: int = 0


class AllocationStore(ABC):
    """
    Abstract base class for allocation stores.

    Every store must:
    1. Scope every read and write to one organization_id
    2. Replace a month's non-overridden rows delete-then-insert, in that order
    3. Take the override snapshot before the delete, inside the same unit of work
    4. Raise StoreError on I/O failure (never return partial data)
    """

    # ── Ledger reads ─────────────────────────────────────────

    @abstractmethod
    async def load_locations(self, organization_id: str) -> list[Location]:
        ...

    @abstractmethod
    async def load_expense_transactions(
        self, organization_id: str, month_start: date, month_end: date
    ) -> list[ExpenseTransaction]:
        """Expenses dated within [month_start, month_end], inclusive."""
        ...

    @abstractmethod
    async def load_sessions(
        self, organization_id: str, month_start: date, month_end: date
    ) -> list[RevenueSession]:
        ...

    @abstractmethod
    async def list_expense_months(self, organization_id: str) -> list[str]:
        """Every YYYY-MM with at least one expense, ascending."""
        ...

    # ── Configuration reads ──────────────────────────────────

    @abstractmethod
    async def load_category_mappings(self, organization_id: str) -> list[CategoryMapping]:
        ...

    @abstractmethod
    async def load_allocation_rules(self, organization_id: str) -> dict[str, AllocationRule]:
        """
        Rules keyed by expense category.
        Must raise ValidationError(ERR_RULE_INVALID) for a rule that does not parse.
        """
        ...

    # ── Allocations ──────────────────────────────────────────

    @abstractmethod
    async def load_existing_allocations(
        self, organization_id: str, month: date
    ) -> list[MonthlyAllocation]:
        ...

    @abstractmethod
    async def write_allocations(
        self,
        organization_id: str,
        month: date,
        rows: list[MonthlyAllocation],
        preserve_overrides: bool = True,
    ) -> WriteSummary:
        """
        Replace the month's rows.

        preserve_overrides=True: only non-overridden rows are deleted, and a row
        in `rows` colliding with an overridden row raises OverrideConflictError.
        preserve_overrides=False: every row of the month is deleted.
        """
        ...

    @abstractmethod
    async def write_session_allocations(
        self,
        organization_id: str,
        month: date,
        rows: list[SessionAllocation],
    ) -> int:
        """Replace all session rows of the month. Returns rows inserted."""
        ...

    @abstractmethod
    async def load_session_allocations(
        self, organization_id: str, month: date
    ) -> list[SessionAllocation]:
        ...

    @abstractmethod
    async def get_allocation(self, allocation_id: uuid.UUID) -> Optional[MonthlyAllocation]:
        ...

    @abstractmethod
    async def apply_override(
        self,
        allocation_id: uuid.UUID,
        override_amount: Decimal,
        notes: Optional[str] = None,
        overridden_at: Optional[datetime] = None,
    ) -> MonthlyAllocation:
        """
        Mark a row overridden. The override bingo amount is derived from the
        row's stored bingo_percentage. Raises AllocationNotFoundError.
        """
        ...

    @abstractmethod
    async def clear_override(self, allocation_id: uuid.UUID) -> MonthlyAllocation:
        """Return a row to computed state. Raises AllocationNotFoundError."""
        ...

    async def health_check(self) -> bool:
        """Verify the store is reachable."""
        return True
