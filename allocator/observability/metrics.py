"""
Prometheus metrics for the allocation engine.
"""

from prometheus_client import Counter, Histogram


# ── Runs ─────────────────────────────────────────────────────
allocation_runs_total = Counter(
    "allocation_runs_total",
    "Total month recomputations by outcome",
    ["status"],
)

allocation_run_duration_seconds = Histogram(
    "allocation_run_duration_seconds",
    "Time to recompute one organization month end-to-end",
    buckets=[0.05, 0.1, 0.5, 1, 2, 5, 10, 30],
)

# ── Categories ───────────────────────────────────────────────
categories_allocated_total = Counter(
    "allocation_categories_allocated_total",
    "Expense categories allocated",
    ["allocation_method"],
)

categories_skipped_total = Counter(
    "allocation_categories_skipped_total",
    "Expense categories skipped during allocation",
    ["reason"],
)

# ── Overrides ────────────────────────────────────────────────
overrides_preserved_total = Counter(
    "allocation_overrides_preserved_total",
    "Manually overridden rows kept across recomputation",
)

overrides_applied_total = Counter(
    "allocation_overrides_applied_total",
    "Manual overrides applied or cleared",
    ["action"],
)
