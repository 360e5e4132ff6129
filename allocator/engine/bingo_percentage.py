"""
Bingo percentage: share of the organization's monthly revenue earned at the
two tracked locations.

    bingo_percentage = tracked_revenue / organization_revenue * 100

Defined as 0 when the organization had no revenue. A tracked location code
that does not resolve to a Location is reported, not raised: the calculation
proceeds with whatever resolved, but every revenue-driven split for the
unresolved location silently becomes zero, so it is logged at WARNING.
"""

import uuid

import structlog

from allocator.engine.numeric import ZERO, ratio_percent
from allocator.schemas.allocations import BingoPercentageResult
from allocator.schemas.ledger import Location, RevenueSession
from allocator.schemas.rules import TrackedLocations

logger = structlog.get_logger(__name__)


def resolve_tracked_locations(
    locations: list[Location],
    tracked: TrackedLocations,
) -> tuple[dict[str, uuid.UUID], list[str]]:
    """Map tracked codes to location ids. Returns (resolved, unresolved_codes)."""
    by_code = {loc.short_name: loc.location_id for loc in locations}
    resolved = {}
    unresolved = []
    for code in tracked.codes:
        if code in by_code:
            resolved[code] = by_code[code]
        else:
            unresolved.append(code)
            logger.warning("tracked_location_unresolved", location_code=code)
    return resolved, unresolved


def calculate_bingo_percentage(
    sessions: list[RevenueSession],
    locations: list[Location],
    tracked: TrackedLocations,
) -> BingoPercentageResult:
    """Sum session sales per tracked location and for the whole organization."""
    resolved, unresolved = resolve_tracked_locations(locations, tracked)
    code_by_id = {loc_id: code for code, loc_id in resolved.items()}

    per_location = {code: ZERO for code in tracked.codes}
    organization_total = ZERO

    for session in sessions:
        organization_total += session.total_sales
        code = code_by_id.get(session.location_id)
        if code is not None:
            per_location[code] += session.total_sales

    tracked_total = sum(per_location.values(), ZERO)

    return BingoPercentageResult(
        bingo_percentage=ratio_percent(tracked_total, organization_total),
        tracked_locations_revenue=tracked_total,
        per_location_revenue=per_location,
        organization_total_revenue=organization_total,
        location_ids=resolved,
        unresolved_locations=unresolved,
    )
