"""
Rule application: one expense category's total -> per-location amounts.

Four mutually exclusive methods:

1. QB_CLASS_SPLIT     -> the ledger's own class tags decide the split
2. FIXED_PERCENTAGES  -> fixed A/B percentages of the raw total
3. SC_ONLY            -> everything to one designated location
4. REVENUE_SPLIT      -> bingo share of the total, split by session revenue

qb_percentage is a pre-filter on the raw total (or raw class subtotals)
for every method except FIXED_PERCENTAGES. The bingo percentage applies to
SC_ONLY and REVENUE_SPLIT only.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from allocator.engine.errors import ValidationError
from allocator.engine.grouper import CategoryGroup
from allocator.engine.numeric import (
    HUNDRED,
    ZERO,
    apply_percent,
    money,
    percent,
    ratio_percent,
    split_conserving,
    to_decimal,
)
from allocator.models.enums import AllocationMethod
from allocator.schemas.allocations import BingoPercentageResult
from allocator.schemas.rules import AllocationRule, TrackedLocations


class LocationShare(BaseModel):
    location_code: str
    allocated_amount: Decimal
    bingo_amount: Decimal
    location_split_percent: Decimal


class CategoryAllocation(BaseModel):
    expense_category: str
    allocation_method: AllocationMethod
    qb_total_amount: Decimal
    bingo_percentage: Decimal
    shares: list[LocationShare]

    @property
    def allocated_total(self) -> Decimal:
        return sum((s.allocated_amount for s in self.shares), ZERO)


# ── Validation ───────────────────────────────────────────────

def _check_percent(value: Optional[Decimal], field: str) -> None:
    if value is None:
        return
    value = to_decimal(value, field)
    if value < 0 or value > HUNDRED:
        raise ValidationError(
            f"{field} must be between 0 and 100, got {value}", "ERR_INVALID_PERCENTAGE"
        )


def validate_rule(rule: AllocationRule, tracked: TrackedLocations) -> AllocationMethod:
    """
    Check the fields the resolved method reads. Returns the method.
    Raises ValidationError for the offending category only.
    """
    method = rule.resolved_method

    _check_percent(rule.qb_percentage, "qb_percentage")
    _check_percent(rule.bingo_percentage_override, "bingo_percentage_override")

    if method == AllocationMethod.QB_CLASS_SPLIT:
        _check_percent(rule.class_split_adjustment_percent, "class_split_adjustment_percent")

    elif method == AllocationMethod.FIXED_PERCENTAGES:
        a, b = rule.fixed_location_a_percent, rule.fixed_location_b_percent
        if a is None or b is None:
            raise ValidationError(
                f"{rule.expense_category}: FIXED_PERCENTAGES needs both fixed percentages",
                "ERR_INVALID_PERCENTAGE",
            )
        _check_percent(a, "fixed_location_a_percent")
        _check_percent(b, "fixed_location_b_percent")
        if a + b > HUNDRED:
            raise ValidationError(
                f"{rule.expense_category}: fixed percentages sum to {a + b}, more than 100",
                "ERR_INVALID_PERCENTAGE",
            )

    elif method == AllocationMethod.SC_ONLY:
        code = rule.designated_location_code
        if code is not None and code not in tracked.codes:
            raise ValidationError(
                f"{rule.expense_category}: designated location {code!r} is not tracked",
                "ERR_RULE_INVALID",
            )

    return method


def validate_category_total(group: CategoryGroup) -> None:
    if group.total < 0:
        raise ValidationError(
            f"{group.expense_category}: negative category total {group.total}",
            "ERR_INVALID_AMOUNT",
        )


def effective_bingo_percentage(rule: AllocationRule, bingo: BingoPercentageResult) -> Decimal:
    if rule.bingo_percentage_override is not None:
        return percent(to_decimal(rule.bingo_percentage_override, "bingo_percentage_override"))
    return bingo.bingo_percentage


# ── Methods ──────────────────────────────────────────────────

def allocate_qb_class_split(
    group: CategoryGroup,
    rule: AllocationRule,
    tracked: TrackedLocations,
    bingo_percentage: Decimal,
) -> CategoryAllocation:
    """
    Trust the ledger's class tagging. Only tracked classes were grouped, so the
    class amount already is the bingo-relevant amount.
    """
    adjustment = rule.class_split_adjustment_percent
    shares = []
    for code in tracked.codes:
        amount = apply_percent(group.per_location_subtotal.get(code, ZERO), rule.qb_percentage)
        if adjustment is not None:
            amount = apply_percent(amount, adjustment)
        amount = money(amount)
        shares.append(LocationShare(
            location_code=code,
            allocated_amount=amount,
            bingo_amount=amount,
            location_split_percent=ratio_percent(amount, group.total),
        ))

    return CategoryAllocation(
        expense_category=group.expense_category,
        allocation_method=AllocationMethod.QB_CLASS_SPLIT,
        qb_total_amount=money(group.total),
        bingo_percentage=bingo_percentage,
        shares=shares,
    )


def allocate_fixed_percentages(
    group: CategoryGroup,
    rule: AllocationRule,
    tracked: TrackedLocations,
    bingo_percentage: Decimal,
) -> CategoryAllocation:
    """Fixed split of the raw total. No qb_percentage and no bingo percentage."""
    fixed = {
        tracked.codes[0]: to_decimal(rule.fixed_location_a_percent, "fixed_location_a_percent"),
        tracked.codes[1]: to_decimal(rule.fixed_location_b_percent, "fixed_location_b_percent"),
    }
    shares = []
    for code in tracked.codes:
        amount = money(apply_percent(group.total, fixed[code]))
        shares.append(LocationShare(
            location_code=code,
            allocated_amount=amount,
            bingo_amount=amount,
            location_split_percent=percent(fixed[code]),
        ))

    return CategoryAllocation(
        expense_category=group.expense_category,
        allocation_method=AllocationMethod.FIXED_PERCENTAGES,
        qb_total_amount=money(group.total),
        bingo_percentage=bingo_percentage,
        shares=shares,
    )


def allocate_designated_location(
    group: CategoryGroup,
    rule: AllocationRule,
    tracked: TrackedLocations,
    bingo_percentage: Decimal,
) -> CategoryAllocation:
    """SC_ONLY: one share for the designated location, none for the other."""
    code = rule.designated_location_code or tracked.primary.code
    adjusted = apply_percent(group.total, rule.qb_percentage)
    amount = money(apply_percent(adjusted, bingo_percentage))

    return CategoryAllocation(
        expense_category=group.expense_category,
        allocation_method=AllocationMethod.SC_ONLY,
        qb_total_amount=money(group.total),
        bingo_percentage=bingo_percentage,
        shares=[LocationShare(
            location_code=code,
            allocated_amount=amount,
            bingo_amount=amount,
            location_split_percent=percent(HUNDRED),
        )],
    )


def allocate_revenue_split(
    group: CategoryGroup,
    rule: AllocationRule,
    tracked: TrackedLocations,
    bingo_percentage: Decimal,
    location_revenue: dict[str, Decimal],
) -> CategoryAllocation:
    """Bingo share of the adjusted total, split by each location's session revenue."""
    adjusted = apply_percent(group.total, rule.qb_percentage)
    bingo_total = money(apply_percent(adjusted, bingo_percentage))

    revenues = [location_revenue.get(code, ZERO) for code in tracked.codes]
    tracked_revenue = sum(revenues, ZERO)
    amounts = split_conserving(bingo_total, revenues)

    shares = [
        LocationShare(
            location_code=code,
            allocated_amount=amount,
            bingo_amount=amount,
            location_split_percent=ratio_percent(revenue, tracked_revenue),
        )
        for code, amount, revenue in zip(tracked.codes, amounts, revenues)
    ]

    return CategoryAllocation(
        expense_category=group.expense_category,
        allocation_method=AllocationMethod.REVENUE_SPLIT,
        qb_total_amount=money(group.total),
        bingo_percentage=bingo_percentage,
        shares=shares,
    )


def allocate_category(
    group: CategoryGroup,
    rule: AllocationRule,
    bingo: BingoPercentageResult,
    tracked: TrackedLocations,
) -> CategoryAllocation:
    """
    Master dispatcher. Validates, then routes to exactly one method.
    Raises ValidationError for a bad rule or a negative category total.
    """
    method = validate_rule(rule, tracked)
    validate_category_total(group)
    bingo_percentage = effective_bingo_percentage(rule, bingo)

    if method == AllocationMethod.QB_CLASS_SPLIT:
        return allocate_qb_class_split(group, rule, tracked, bingo_percentage)
    elif method == AllocationMethod.FIXED_PERCENTAGES:
        return allocate_fixed_percentages(group, rule, tracked, bingo_percentage)
    elif method == AllocationMethod.SC_ONLY:
        return allocate_designated_location(group, rule, tracked, bingo_percentage)
    else:
        return allocate_revenue_split(
            group, rule, tracked, bingo_percentage, bingo.per_location_revenue
        )
