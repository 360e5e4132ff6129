"""
Session cascade: a location's monthly allocation -> its sessions.

BY_REVENUE        -> proportional to session sales, zero when the location had none
BY_SESSION_COUNT  -> equal split
FIXED_PER_SESSION -> the rule's fixed amount for every session

Cascading reads the effective amount of each row, so an overridden row
cascades its override.
"""

import uuid
from decimal import Decimal

import structlog

from allocator.engine.numeric import ZERO, money, ratio_percent, split_conserving
from allocator.models.enums import SessionAllocationMethod
from allocator.schemas.allocations import (
    ALLOCATION_NAMESPACE,
    MonthlyAllocation,
    SessionAllocation,
)
from allocator.schemas.ledger import RevenueSession
from allocator.schemas.rules import AllocationRule

logger = structlog.get_logger(__name__)


def allocate_to_sessions(
    row: MonthlyAllocation,
    sessions: list[RevenueSession],
    method: SessionAllocationMethod = SessionAllocationMethod.BY_REVENUE,
    fixed_amount_per_session: Decimal = ZERO,
) -> list[SessionAllocation]:
    """Cascade one location row to the sessions held at that location."""
    location_sessions = sorted(
        (s for s in sessions if s.location_id == row.location_id),
        key=lambda s: (s.session_date, str(s.session_id)),
    )
    if not location_sessions:
        return []

    amount = row.effective_allocated_amount
    revenues = [s.total_sales for s in location_sessions]
    month_revenue = sum(revenues, ZERO)
    count = len(location_sessions)

    if method == SessionAllocationMethod.BY_REVENUE:
        parts = split_conserving(amount, revenues)
        notes = [
            f"Revenue split: ${rev:,.2f} / ${month_revenue:,.2f} = {ratio_percent(rev, month_revenue):.2f}%"
            if month_revenue > 0 else "No revenue to allocate by"
            for rev in revenues
        ]
    elif method == SessionAllocationMethod.BY_SESSION_COUNT:
        parts = split_conserving(amount, [Decimal("1")] * count)
        notes = [f"Equal split: ${amount:,.2f} / {count} sessions"] * count
    else:
        fixed = money(fixed_amount_per_session)
        parts = [fixed] * count
        notes = [f"Fixed: ${fixed:,.2f} per session"] * count

    return [
        SessionAllocation(
            session_allocation_id=uuid.uuid5(
                ALLOCATION_NAMESPACE, f"{row.allocation_id}|{session.session_id}"
            ),
            organization_id=row.organization_id,
            month=row.month,
            session_id=session.session_id,
            location_id=row.location_id,
            expense_category=row.expense_category,
            source_allocation_id=row.allocation_id,
            allocation_method=method,
            allocated_amount=part,
            session_revenue=session.total_sales,
            location_month_revenue=month_revenue,
            revenue_percentage=(
                ratio_percent(session.total_sales, month_revenue)
                if method == SessionAllocationMethod.BY_REVENUE else None
            ),
            calculation_notes=note,
        )
        for session, part, note in zip(location_sessions, parts, notes)
    ]


def cascade_month(
    rows: list[MonthlyAllocation],
    sessions: list[RevenueSession],
    rules: dict[str, AllocationRule],
) -> list[SessionAllocation]:
    """Cascade every location row of a month. Rows without a rule use BY_REVENUE."""
    result = []
    for row in sorted(rows, key=lambda r: (r.expense_category, str(r.location_id))):
        rule = rules.get(row.expense_category)
        method = rule.session_allocation_method if rule else SessionAllocationMethod.BY_REVENUE
        fixed = (rule.fixed_amount_per_session if rule else None) or ZERO
        result.extend(allocate_to_sessions(row, sessions, method, fixed))

    logger.debug("sessions_cascaded", rows=len(rows), session_allocations=len(result))
    return result
