"""
Decimal helpers for money and percentages.

Money is quantized to cents, percentages to four places on a 0-100 scale.
Percentages are never stored as 0-1 fractions.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, Optional, Union

from allocator.engine.errors import ValidationError

CENT = Decimal("0.01")
PERCENT_PLACES = Decimal("0.0001")
HUNDRED = Decimal("100")
ZERO = Decimal("0")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Optional[Number], field: str = "amount") -> Decimal:
    """Coerce to Decimal, rejecting NaN and infinities."""
    if value is None:
        return ZERO
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field} is not a number: {value!r}", "ERR_INVALID_AMOUNT") from e
    if not result.is_finite():
        raise ValidationError(f"{field} is not finite: {value!r}", "ERR_INVALID_AMOUNT")
    return result


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def percent(value: Decimal) -> Decimal:
    return value.quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)


def ratio_percent(part: Decimal, whole: Decimal) -> Decimal:
    """part / whole * 100, or 0 when whole is 0."""
    if whole == 0:
        return ZERO
    return percent(part / whole * HUNDRED)


def apply_percent(amount: Decimal, pct: Decimal) -> Decimal:
    return amount * pct / HUNDRED


def split_conserving(total: Decimal, weights: Iterable[Decimal]) -> list[Decimal]:
    """
    Split a cent-rounded total proportionally to non-negative weights.

    Largest-remainder apportionment in whole cents: the parts always sum to
    money(total) and no part moves away from its exact share by a cent or
    more. All parts are zero when the weights sum to zero.
    """
    weights = list(weights)
    weight_sum = sum(weights, ZERO)
    if weight_sum == 0:
        return [ZERO for _ in weights]

    total = money(total)
    sign = -1 if total < 0 else 1
    total_cents = int(abs(total) / CENT)

    exact = [Decimal(total_cents) * w / weight_sum for w in weights]
    cents = [int(e) for e in exact]
    leftover = total_cents - sum(cents)
    by_remainder = sorted(range(len(weights)), key=lambda i: (-(exact[i] - cents[i]), i))
    for i in by_remainder[:leftover]:
        cents[i] += 1

    return [Decimal(sign * c) * CENT for c in cents]
