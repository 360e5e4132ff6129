"""
Allocation error taxonomy.

Configuration and category-level validation problems are isolated and
reported in the run result. Store failures and rule-set validation
failures propagate to the caller.
"""


class AllocationError(Exception):
    """Base class for all allocation errors."""

    retryable = False

    def __init__(self, message: str, error_code: str = "ERR_ALLOCATION"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class ConfigurationError(AllocationError):
    """Missing rule or unresolved tracked location. Never fatal to a run."""

    def __init__(self, message: str, error_code: str = "ERR_CONFIGURATION"):
        super().__init__(message, error_code)


class ValidationError(AllocationError):
    """Bad month string, amount or percentage."""

    def __init__(self, message: str, error_code: str = "ERR_VALIDATION"):
        super().__init__(message, error_code)


class StoreError(AllocationError):
    """Data store read/write failure. Safe to retry the whole recompute."""

    retryable = True

    def __init__(self, message: str, error_code: str = "ERR_STORE"):
        super().__init__(message, error_code)


class OverrideConflictError(AllocationError):
    """A write would have replaced an overridden row while preserving overrides."""

    def __init__(self, message: str, error_code: str = "ERR_OVERRIDE_CONFLICT"):
        super().__init__(message, error_code)


class AllocationNotFoundError(AllocationError):
    def __init__(self, allocation_id: str):
        super().__init__(
            f"Allocation {allocation_id} not found", "ERR_ALLOCATION_NOT_FOUND"
        )
        self.allocation_id = allocation_id
