"""
Allocation rule configuration: category mappings, per-category rules and
the pair of tracked locations the engine allocates across.
"""

import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from allocator.engine.errors import ConfigurationError
from allocator.models.enums import AllocationMethod, SessionAllocationMethod


class CategoryMapping(BaseModel):
    """Raw ledger category name -> normalized expense category (many-to-one)."""
    organization_id: str
    qb_category_name: str
    expense_category: str
    is_active: bool = True

    model_config = {"from_attributes": True, "frozen": True}


class AllocationRule(BaseModel):
    """
    One rule per expense category per organization.

    allocation_method is authoritative when set. When it is not, the method is
    inferred from the indicator fields with priority
    QB_CLASS_SPLIT > FIXED_PERCENTAGES > SC_ONLY > REVENUE_SPLIT.

    All percentages are on a 0-100 scale.
    """
    rule_id: Optional[uuid.UUID] = None
    organization_id: str
    expense_category: str
    allocation_method: Optional[AllocationMethod] = None

    qb_percentage: Decimal = Decimal("100")
    fixed_location_a_percent: Optional[Decimal] = None
    fixed_location_b_percent: Optional[Decimal] = None
    bingo_percentage_override: Optional[Decimal] = None
    class_split_adjustment_percent: Optional[Decimal] = None
    designated_location_code: Optional[str] = None
    uses_qb_class_split: bool = False

    session_allocation_method: SessionAllocationMethod = SessionAllocationMethod.BY_REVENUE
    fixed_amount_per_session: Optional[Decimal] = Field(default=None, ge=0)

    model_config = {"from_attributes": True, "frozen": True}

    @property
    def resolved_method(self) -> AllocationMethod:
        if self.allocation_method is not None:
            return self.allocation_method
        if self.uses_qb_class_split:
            return AllocationMethod.QB_CLASS_SPLIT
        if self.fixed_location_a_percent is not None and self.fixed_location_b_percent is not None:
            return AllocationMethod.FIXED_PERCENTAGES
        if self.designated_location_code is not None:
            return AllocationMethod.SC_ONLY
        return AllocationMethod.REVENUE_SPLIT


class TrackedLocation(BaseModel):
    code: str  # matches Location.short_name
    class_name: str  # ledger class tag

    model_config = {"frozen": True}


class TrackedLocations(BaseModel):
    """The two locations participating in allocation, in display order."""
    locations: tuple[TrackedLocation, TrackedLocation]

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _distinct(self) -> "TrackedLocations":
        a, b = self.locations
        if a.code == b.code or a.class_name == b.class_name:
            raise ValueError("tracked locations must have distinct codes and class names")
        return self

    @classmethod
    def parse(cls, raw: str) -> "TrackedLocations":
        """Parse 'SC:Bingo - SC,RWC:Bingo - RWC'."""
        pairs = []
        for chunk in raw.split(","):
            if not chunk.strip():
                continue
            code, sep, class_name = chunk.partition(":")
            if not sep or not code.strip() or not class_name.strip():
                raise ValueError(f"Bad tracked location entry: {chunk!r}")
            pairs.append(TrackedLocation(code=code.strip(), class_name=class_name.strip()))
        if len(pairs) != 2:
            raise ValueError(f"Exactly two tracked locations required, got {len(pairs)}")
        return cls(locations=(pairs[0], pairs[1]))

    @classmethod
    def from_settings(cls) -> "TrackedLocations":
        from allocator.config import settings
        try:
            return cls.parse(settings.TRACKED_LOCATIONS)
        except ValueError as e:
            raise ConfigurationError(
                f"TRACKED_LOCATIONS is invalid: {e}", "ERR_TRACKED_LOCATIONS"
            ) from e

    @property
    def codes(self) -> list[str]:
        return [loc.code for loc in self.locations]

    @property
    def primary(self) -> TrackedLocation:
        return self.locations[0]

    def code_for_class(self, class_name: Optional[str]) -> Optional[str]:
        for loc in self.locations:
            if loc.class_name == class_name:
                return loc.code
        return None
