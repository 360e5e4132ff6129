"""
Category grouper: ledger transactions -> per expense category totals.

Only transactions tagged with a tracked location class are grouped. A
transaction whose ledger category has no active mapping is never allocated;
it is counted in the unmapped summary instead.
"""

from decimal import Decimal

import structlog
from pydantic import BaseModel

from allocator.engine.numeric import ZERO
from allocator.schemas.allocations import ExcludedSummary
from allocator.schemas.ledger import ExpenseTransaction, SourceTransaction
from allocator.schemas.rules import CategoryMapping, TrackedLocations

logger = structlog.get_logger(__name__)


class CategoryGroup(BaseModel):
    expense_category: str
    total: Decimal = ZERO
    per_location_subtotal: dict[str, Decimal] = {}  # tracked location code -> amount
    transactions: list[ExpenseTransaction] = []
    qb_category_names: list[str] = []

    @property
    def transaction_count(self) -> int:
        return len(self.transactions)

    def source_data(self) -> list[SourceTransaction]:
        return [SourceTransaction.from_transaction(t) for t in self.transactions]


class GroupingResult(BaseModel):
    groups: dict[str, CategoryGroup]
    unmapped: ExcludedSummary
    unclassified: ExcludedSummary


def _summarize(transactions: list[ExpenseTransaction]) -> ExcludedSummary:
    return ExcludedSummary(
        transaction_count=len(transactions),
        total_amount=sum((t.amount for t in transactions), ZERO),
        qb_category_names=sorted({t.qb_category_name for t in transactions}),
    )


def group_by_category(
    transactions: list[ExpenseTransaction],
    mappings: list[CategoryMapping],
    tracked: TrackedLocations,
) -> GroupingResult:
    """
    Group tracked-class transactions by mapped expense category.

    per_location_subtotal preserves each transaction's class tag; it is what
    QB_CLASS_SPLIT allocates from.
    """
    lookup = {m.qb_category_name: m.expense_category for m in mappings if m.is_active}

    groups: dict[str, CategoryGroup] = {}
    unmapped = []
    unclassified = []

    for tx in sorted(transactions, key=lambda t: (t.expense_date, str(t.expense_id))):
        location_code = tracked.code_for_class(tx.qb_class_name)
        if location_code is None:
            unclassified.append(tx)
            continue

        category = lookup.get(tx.qb_category_name)
        if category is None:
            unmapped.append(tx)
            continue

        group = groups.get(category)
        if group is None:
            group = CategoryGroup(
                expense_category=category,
                per_location_subtotal={code: ZERO for code in tracked.codes},
            )
            groups[category] = group

        group.total += tx.amount
        group.per_location_subtotal[location_code] += tx.amount
        group.transactions.append(tx)
        if tx.qb_category_name not in group.qb_category_names:
            group.qb_category_names.append(tx.qb_category_name)

    if unmapped:
        logger.info(
            "unmapped_transactions_excluded",
            count=len(unmapped),
            qb_categories=sorted({t.qb_category_name for t in unmapped}),
        )

    return GroupingResult(
        groups=groups,
        unmapped=_summarize(unmapped),
        unclassified=_summarize(unclassified),
    )
