"""
Dictionary-backed allocation store.

Same contract as the SQL store; used for dry runs and tests. Inputs are
seeded with the add_* helpers.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from allocator.engine.errors import AllocationNotFoundError, OverrideConflictError
from allocator.engine.overrides import OverrideSnapshot, build_override, clear_override
from allocator.engine.periods import month_key
from allocator.schemas.allocations import MonthlyAllocation, SessionAllocation
from allocator.schemas.ledger import ExpenseTransaction, Location, RevenueSession
from allocator.schemas.rules import AllocationRule, CategoryMapping
from allocator.store.base import AllocationStore, WriteSummary


class MemoryAllocationStore(AllocationStore):

    def __init__(self):
        self.locations: list[Location] = []
        self.expenses: list[ExpenseTransaction] = []
        self.sessions: list[RevenueSession] = []
        self.mappings: list[CategoryMapping] = []
        self.rules: list[AllocationRule] = []
        self.allocations: dict[uuid.UUID, MonthlyAllocation] = {}
        self.session_allocations: dict[uuid.UUID, SessionAllocation] = {}

    # ── Seeding ──────────────────────────────────────────────

    def add_locations(self, *locations: Location) -> None:
        self.locations.extend(locations)

    def add_expenses(self, *expenses: ExpenseTransaction) -> None:
        self.expenses.extend(expenses)

    def add_sessions(self, *sessions: RevenueSession) -> None:
        self.sessions.extend(sessions)

    def add_mappings(self, *mappings: CategoryMapping) -> None:
        self.mappings.extend(mappings)

    def add_rules(self, *rules: AllocationRule) -> None:
        self.rules.extend(rules)

    # ── Reads ────────────────────────────────────────────────

    async def load_locations(self, organization_id: str) -> list[Location]:
        return [loc for loc in self.locations if loc.organization_id == organization_id]

    async def load_expense_transactions(
        self, organization_id: str, month_start: date, month_end: date
    ) -> list[ExpenseTransaction]:
        return [
            tx for tx in self.expenses
            if tx.organization_id == organization_id and month_start <= tx.expense_date <= month_end
        ]

    async def load_sessions(
        self, organization_id: str, month_start: date, month_end: date
    ) -> list[RevenueSession]:
        return [
            s for s in self.sessions
            if s.organization_id == organization_id and month_start <= s.session_date <= month_end
        ]

    async def list_expense_months(self, organization_id: str) -> list[str]:
        return sorted({
            month_key(tx.expense_date) for tx in self.expenses
            if tx.organization_id == organization_id
        })

    async def load_category_mappings(self, organization_id: str) -> list[CategoryMapping]:
        return [m for m in self.mappings if m.organization_id == organization_id]

    async def load_allocation_rules(self, organization_id: str) -> dict[str, AllocationRule]:
        return {r.expense_category: r for r in self.rules if r.organization_id == organization_id}

    async def load_existing_allocations(
        self, organization_id: str, month: date
    ) -> list[MonthlyAllocation]:
        return [
            row for row in self.allocations.values()
            if row.organization_id == organization_id and row.month == month
        ]

    async def load_session_allocations(
        self, organization_id: str, month: date
    ) -> list[SessionAllocation]:
        return [
            row for row in self.session_allocations.values()
            if row.organization_id == organization_id and row.month == month
        ]

    async def get_allocation(self, allocation_id: uuid.UUID) -> Optional[MonthlyAllocation]:
        return self.allocations.get(allocation_id)

    # ── Writes ───────────────────────────────────────────────

    async def write_allocations(
        self,
        organization_id: str,
        month: date,
        rows: list[MonthlyAllocation],
        preserve_overrides: bool = True,
    ) -> WriteSummary:
        existing = await self.load_existing_allocations(organization_id, month)
        snapshot = OverrideSnapshot(existing)

        if preserve_overrides:
            conflicts = [row.key for row in rows if row.key in snapshot]
            if conflicts:
                raise OverrideConflictError(
                    f"{len(conflicts)} row(s) would replace overridden allocations: {conflicts}"
                )

        doomed = [
            row.allocation_id for row in existing
            if not (preserve_overrides and row.is_overridden)
        ]
        for allocation_id in doomed:
            del self.allocations[allocation_id]

        for row in rows:
            self.allocations[row.allocation_id] = row

        return WriteSummary(
            deleted=len(doomed),
            inserted=len(rows),
            preserved=len(snapshot) if preserve_overrides else 0,
        )

    async def write_session_allocations(
        self,
        organization_id: str,
        month: date,
        rows: list[SessionAllocation],
    ) -> int:
        for existing in await self.load_session_allocations(organization_id, month):
            del self.session_allocations[existing.session_allocation_id]
        for row in rows:
            self.session_allocations[row.session_allocation_id] = row
        return len(rows)

    async def apply_override(
        self,
        allocation_id: uuid.UUID,
        override_amount: Decimal,
        notes: Optional[str] = None,
        overridden_at: Optional[datetime] = None,
    ) -> MonthlyAllocation:
        row = self.allocations.get(allocation_id)
        if row is None:
            raise AllocationNotFoundError(str(allocation_id))
        updated = build_override(row, override_amount, notes, overridden_at)
        self.allocations[allocation_id] = updated
        return updated

    async def clear_override(self, allocation_id: uuid.UUID) -> MonthlyAllocation:
        row = self.allocations.get(allocation_id)
        if row is None:
            raise AllocationNotFoundError(str(allocation_id))
        updated = clear_override(row)
        self.allocations[allocation_id] = updated
        return updated
