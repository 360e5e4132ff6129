"""
Python enums for the allocation schema.
Values are stored verbatim in the database and returned by the API.
"""

from enum import Enum


class AllocationMethod(str, Enum):
    QB_CLASS_SPLIT = "QB_CLASS_SPLIT"
    FIXED_PERCENTAGES = "FIXED_PERCENTAGES"
    SC_ONLY = "SC_ONLY"
    REVENUE_SPLIT = "REVENUE_SPLIT"


class SessionAllocationMethod(str, Enum):
    BY_REVENUE = "BY_REVENUE"
    BY_SESSION_COUNT = "BY_SESSION_COUNT"
    FIXED_PER_SESSION = "FIXED_PER_SESSION"


class AllocationState(str, Enum):
    COMPUTED = "COMPUTED"
    OVERRIDDEN = "OVERRIDDEN"


class SkipReason(str, Enum):
    """Why a category produced no allocation rows in a run."""
    NO_RULE = "NO_RULE"
    DERIVED_CATEGORY = "DERIVED_CATEGORY"
    VALIDATION = "VALIDATION"
    LOCATION_UNRESOLVED = "LOCATION_UNRESOLVED"


class RunStatus(str, Enum):
    COMPLETED = "COMPLETED"
    COMPLETED_WITH_WARNINGS = "COMPLETED_WITH_WARNINGS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
