"""
Override preservation.

Overrides are all-or-nothing per row: an overridden (location, category) row
is frozen in its entirety, never partially recomputed, until a user clears
it. The preserver works from a snapshot of the month's override state taken
before the store deletes anything.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import structlog
from pydantic import BaseModel

from allocator.engine.errors import ValidationError
from allocator.engine.numeric import apply_percent, money, to_decimal
from allocator.schemas.allocations import (
    Computed,
    MonthlyAllocation,
    Overridden,
    PreservedOverride,
)

logger = structlog.get_logger(__name__)


class OverrideSnapshot:
    """Overridden rows of one organization month, keyed by (location_id, category)."""

    def __init__(self, existing: list[MonthlyAllocation]):
        self._rows = {row.key: row for row in existing if row.is_overridden}

    def __contains__(self, key: tuple[uuid.UUID, str]) -> bool:
        return key in self._rows

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def rows(self) -> list[MonthlyAllocation]:
        return sorted(self._rows.values(), key=lambda r: (r.expense_category, str(r.location_id)))


class PreservationResult(BaseModel):
    to_write: list[MonthlyAllocation]
    preserved: list[MonthlyAllocation] = []
    discarded: list[MonthlyAllocation] = []

    @property
    def final_rows(self) -> list[MonthlyAllocation]:
        """Every row that will exist for the month after the write."""
        return self.to_write + self.preserved

    def preserved_summary(self) -> list[PreservedOverride]:
        return [PreservedOverride.from_allocation(r) for r in self.preserved]

    def discarded_summary(self) -> list[PreservedOverride]:
        return [PreservedOverride.from_allocation(r) for r in self.discarded]


def preserve_overridden_rows(
    computed: list[MonthlyAllocation],
    snapshot: OverrideSnapshot,
    preserve: bool = True,
) -> PreservationResult:
    """
    Decide which freshly computed rows get written.

    preserve=True: computed rows colliding with an overridden row are dropped
    and the overridden row is kept exactly as stored.
    preserve=False: every computed row is written; overrides are reported as
    discarded.
    """
    if not preserve:
        if len(snapshot):
            logger.warning("overrides_discarded", count=len(snapshot))
        return PreservationResult(to_write=list(computed), discarded=snapshot.rows)

    to_write = [row for row in computed if row.key not in snapshot]
    if len(snapshot):
        logger.info(
            "overrides_preserved",
            count=len(snapshot),
            recomputed_skipped=len(computed) - len(to_write),
        )
    return PreservationResult(to_write=to_write, preserved=snapshot.rows)


def build_override(
    row: MonthlyAllocation,
    override_amount,
    notes: Optional[str] = None,
    overridden_at: Optional[datetime] = None,
) -> MonthlyAllocation:
    """
    Overridden copy of a row. The override bingo amount uses the row's stored
    bingo_percentage, not a freshly computed one. The computed amounts stay on
    the row for audit.
    """
    amount = to_decimal(override_amount, "override_amount")
    if amount < 0:
        raise ValidationError(f"Override amount must not be negative: {amount}", "ERR_INVALID_AMOUNT")
    amount = money(amount)

    state = Overridden(
        override_allocated_amount=amount,
        override_bingo_amount=money(apply_percent(amount, row.bingo_percentage)),
        override_notes=notes,
        overridden_at=overridden_at or datetime.now(timezone.utc),
    )
    return row.model_copy(update={"state": state})


def clear_override(row: MonthlyAllocation) -> MonthlyAllocation:
    return row.model_copy(update={"state": Computed()})


def override_delta(row: MonthlyAllocation) -> Decimal:
    """Override minus computed amount; zero for computed rows."""
    return row.effective_allocated_amount - row.allocated_amount
