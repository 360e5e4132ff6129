"""
SQLAlchemy-backed allocation store.

Every driver, pool and timeout failure leaves as StoreError so callers can
retry the whole recompute. The month replacement runs in one transaction:
snapshot overridden rows, delete, insert.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncIterator, Optional

import structlog
from pydantic import ValidationError as SchemaError
from sqlalchemy import delete, insert, select, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from allocator.engine.errors import (
    AllocationError,
    AllocationNotFoundError,
    OverrideConflictError,
    StoreError,
    ValidationError,
)
from allocator.engine.overrides import OverrideSnapshot, build_override, clear_override
from allocator.engine.periods import unique_months
from allocator.models import tables
from allocator.schemas.allocations import MonthlyAllocation, SessionAllocation
from allocator.schemas.ledger import ExpenseTransaction, Location, RevenueSession
from allocator.schemas.rules import AllocationRule, CategoryMapping
from allocator.store.base import AllocationStore, WriteSummary

logger = structlog.get_logger(__name__)


class SqlAllocationStore(AllocationStore):

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str, error_code: str = "ERR_STORE_READ") -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except AllocationError:
            raise
        except (asyncio.TimeoutError, TimeoutError, sa_exc.TimeoutError) as e:
            logger.error("store_timeout", operation=operation)
            raise StoreError(f"{operation} timed out", "ERR_STORE_TIMEOUT") from e
        except (sa_exc.SQLAlchemyError, OSError) as e:
            logger.error("store_operation_failed", operation=operation, error=str(e)[:200])
            raise StoreError(f"{operation} failed: {e}", error_code) from e

    # ── Ledger reads ─────────────────────────────────────────

    async def load_locations(self, organization_id: str) -> list[Location]:
        async with self._session("load_locations") as session:
            result = await session.execute(
                select(tables.Location).where(tables.Location.organization_id == organization_id)
            )
            return _validated(Location, result.scalars().all(), "location_id", "ERR_INVALID_RECORD")

    async def load_expense_transactions(
        self, organization_id: str, month_start: date, month_end: date
    ) -> list[ExpenseTransaction]:
        async with self._session("load_expense_transactions") as session:
            result = await session.execute(
                select(tables.QbExpense).where(
                    tables.QbExpense.organization_id == organization_id,
                    tables.QbExpense.expense_date >= month_start,
                    tables.QbExpense.expense_date <= month_end,
                )
            )
            return _validated(ExpenseTransaction, result.scalars().all(), "expense_id")

    async def load_sessions(
        self, organization_id: str, month_start: date, month_end: date
    ) -> list[RevenueSession]:
        async with self._session("load_sessions") as session:
            result = await session.execute(
                select(tables.BingoSession).where(
                    tables.BingoSession.organization_id == organization_id,
                    tables.BingoSession.session_date >= month_start,
                    tables.BingoSession.session_date <= month_end,
                )
            )
            return _validated(RevenueSession, result.scalars().all(), "session_id")

    async def list_expense_months(self, organization_id: str) -> list[str]:
        async with self._session("list_expense_months") as session:
            result = await session.execute(
                select(tables.QbExpense.expense_date)
                .where(tables.QbExpense.organization_id == organization_id)
                .distinct()
            )
            return unique_months(result.scalars().all())

    # ── Configuration reads ──────────────────────────────────

    async def load_category_mappings(self, organization_id: str) -> list[CategoryMapping]:
        async with self._session("load_category_mappings") as session:
            result = await session.execute(
                select(tables.QbCategoryMapping).where(
                    tables.QbCategoryMapping.organization_id == organization_id
                )
            )
            return _validated(
                CategoryMapping, result.scalars().all(), "qb_category_name", "ERR_INVALID_RECORD"
            )

    async def load_allocation_rules(self, organization_id: str) -> dict[str, AllocationRule]:
        async with self._session("load_allocation_rules") as session:
            result = await session.execute(
                select(tables.AllocationRule).where(
                    tables.AllocationRule.organization_id == organization_id,
                    tables.AllocationRule.is_active.is_(True),
                )
            )
            rules = {}
            for record in result.scalars().all():
                try:
                    rule = AllocationRule.model_validate(record)
                except SchemaError as e:
                    raise ValidationError(
                        f"Rule for {record.expense_category!r} is invalid: {e.errors()[0]['msg']}",
                        "ERR_RULE_INVALID",
                    ) from e
                rules[rule.expense_category] = rule
            return rules

    # ── Allocations ──────────────────────────────────────────

    async def load_existing_allocations(
        self, organization_id: str, month: date
    ) -> list[MonthlyAllocation]:
        async with self._session("load_existing_allocations") as session:
            result = await session.execute(
                select(tables.MonthlyAllocatedExpense).where(
                    tables.MonthlyAllocatedExpense.organization_id == organization_id,
                    tables.MonthlyAllocatedExpense.month == month,
                )
            )
            return [MonthlyAllocation.from_row(r) for r in result.scalars().all()]

    async def load_session_allocations(
        self, organization_id: str, month: date
    ) -> list[SessionAllocation]:
        async with self._session("load_session_allocations") as session:
            result = await session.execute(
                select(tables.SessionAllocatedExpense).where(
                    tables.SessionAllocatedExpense.organization_id == organization_id,
                    tables.SessionAllocatedExpense.month == month,
                )
            )
            return [SessionAllocation.model_validate(r) for r in result.scalars().all()]

    async def get_allocation(self, allocation_id: uuid.UUID) -> Optional[MonthlyAllocation]:
        async with self._session("get_allocation") as session:
            record = await session.get(tables.MonthlyAllocatedExpense, allocation_id)
            return MonthlyAllocation.from_row(record) if record is not None else None

    async def write_allocations(
        self,
        organization_id: str,
        month: date,
        rows: list[MonthlyAllocation],
        preserve_overrides: bool = True,
    ) -> WriteSummary:
        M = tables.MonthlyAllocatedExpense
        month_filter = (M.organization_id == organization_id, M.month == month)

        async with self._session("write_allocations", "ERR_STORE_WRITE") as session:
            async with session.begin():
                # Snapshot inside the transaction, before the delete
                result = await session.execute(
                    select(M).where(*month_filter, M.is_overridden.is_(True)).with_for_update()
                )
                snapshot = OverrideSnapshot([MonthlyAllocation.from_row(r) for r in result.scalars().all()])

                if preserve_overrides:
                    conflicts = [row.key for row in rows if row.key in snapshot]
                    if conflicts:
                        raise OverrideConflictError(
                            f"{len(conflicts)} row(s) would replace overridden allocations: {conflicts}"
                        )

                stmt = delete(M).where(*month_filter)
                if preserve_overrides:
                    stmt = stmt.where(M.is_overridden.is_(False))
                deleted = await session.execute(stmt.execution_options(synchronize_session=False))

                if rows:
                    await session.execute(insert(M), [row.to_row() for row in rows])

        summary = WriteSummary(
            deleted=deleted.rowcount or 0,
            inserted=len(rows),
            preserved=len(snapshot) if preserve_overrides else 0,
        )
        logger.debug(
            "allocations_written",
            organization_id=organization_id,
            month=month.isoformat(),
            deleted=summary.deleted,
            inserted=summary.inserted,
            preserved=summary.preserved,
        )
        return summary

    async def write_session_allocations(
        self,
        organization_id: str,
        month: date,
        rows: list[SessionAllocation],
    ) -> int:
        S = tables.SessionAllocatedExpense
        async with self._session("write_session_allocations", "ERR_STORE_WRITE") as session:
            async with session.begin():
                await session.execute(
                    delete(S)
                    .where(S.organization_id == organization_id, S.month == month)
                    .execution_options(synchronize_session=False)
                )
                if rows:
                    await session.execute(insert(S), [_session_row(r) for r in rows])
        return len(rows)

    async def apply_override(
        self,
        allocation_id: uuid.UUID,
        override_amount: Decimal,
        notes: Optional[str] = None,
        overridden_at: Optional[datetime] = None,
    ) -> MonthlyAllocation:
        async with self._session("apply_override", "ERR_STORE_WRITE") as session:
            async with session.begin():
                record = await session.get(
                    tables.MonthlyAllocatedExpense, allocation_id, with_for_update=True
                )
                if record is None:
                    raise AllocationNotFoundError(str(allocation_id))

                updated = build_override(
                    MonthlyAllocation.from_row(record), override_amount, notes, overridden_at
                )
                record.is_overridden = True
                record.override_allocated_amount = updated.override_allocated_amount
                record.override_bingo_amount = updated.override_bingo_amount
                record.override_notes = updated.override_notes
                record.overridden_at = updated.state.overridden_at
        return updated

    async def clear_override(self, allocation_id: uuid.UUID) -> MonthlyAllocation:
        async with self._session("clear_override", "ERR_STORE_WRITE") as session:
            async with session.begin():
                record = await session.get(
                    tables.MonthlyAllocatedExpense, allocation_id, with_for_update=True
                )
                if record is None:
                    raise AllocationNotFoundError(str(allocation_id))

                updated = clear_override(MonthlyAllocation.from_row(record))
                record.is_overridden = False
                record.override_allocated_amount = None
                record.override_bingo_amount = None
                record.override_notes = None
                record.overridden_at = None
        return updated

    async def health_check(self) -> bool:
        async with self._session("health_check") as session:
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1


def _session_row(row: SessionAllocation) -> dict:
    data = row.model_dump()
    data["allocation_method"] = row.allocation_method.value
    return data


def _validated(schema, records, key: str, error_code: str = "ERR_INVALID_AMOUNT") -> list:
    """Convert ORM records; a bad stored row fails the read as a ValidationError naming the row."""
    models = []
    for record in records:
        try:
            models.append(schema.model_validate(record))
        except SchemaError as e:
            raise ValidationError(
                f"{schema.__name__} {getattr(record, key)} is invalid: {e.errors()[0]['msg']}",
                error_code,
            ) from e
    return models
