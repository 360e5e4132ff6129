"""
Allocation orchestrator: recomputes one organization month end to end.

Stages: LOAD → BINGO % → GROUP → SNAPSHOT → ALLOCATE → PRESERVE → WRITE → CASCADE

Category-level problems (no rule, bad rule values, negative totals,
unresolved locations) are isolated and reported in the run result. Store
failures and rule-set validation failures propagate.
"""

import time
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Protocol

import structlog

from allocator.config import settings
from allocator.engine.bingo_percentage import calculate_bingo_percentage
from allocator.engine.errors import AllocationError, ValidationError
from allocator.engine.grouper import CategoryGroup, group_by_category
from allocator.engine.overrides import OverrideSnapshot, preserve_overridden_rows
from allocator.engine.periods import month_key, parse_month
from allocator.engine.rules import CategoryAllocation, allocate_category
from allocator.engine.sessions import cascade_month
from allocator.models.enums import RunStatus, SkipReason
from allocator.observability.metrics import (
    allocation_run_duration_seconds,
    allocation_runs_total,
    categories_allocated_total,
    categories_skipped_total,
    overrides_applied_total,
    overrides_preserved_total,
)
from allocator.schemas.allocations import (
    AllocatedCategory,
    AllocationRunResult,
    BingoPercentageResult,
    LocationAmount,
    MonthlyAllocation,
    MonthRunResult,
    SessionAllocation,
    SkippedCategory,
    allocation_id_for,
)
from allocator.schemas.rules import TrackedLocations
from allocator.store.base import AllocationStore

logger = structlog.get_logger(__name__)


class CancelEvent(Protocol):
    """threading.Event, asyncio.Event or anything else with is_set()."""

    def is_set(self) -> bool: ...


class AllocationEngine:
    """
    Allocation engine for one store.
    Every operation takes organization_id explicitly; the engine holds no
    per-organization state.
    """

    def __init__(
        self,
        store: AllocationStore,
        tracked: Optional[TrackedLocations] = None,
        skip_categories: Optional[list[str]] = None,
        cascade_sessions: Optional[bool] = None,
    ):
        self.store = store
        self.tracked = tracked or TrackedLocations.from_settings()
        self.skip_categories = set(
            settings.skipped_categories if skip_categories is None else skip_categories
        )
        self.cascade_sessions = (
            settings.CASCADE_TO_SESSIONS if cascade_sessions is None else cascade_sessions
        )

    async def process_month(
        self,
        organization_id: str,
        month: str,
        preserve_overrides: Optional[bool] = None,
        cascade_sessions: Optional[bool] = None,
    ) -> AllocationRunResult:
        """
        Recompute and persist one month's allocations.
        Returns a structured run result an operator can audit without logs.
        """
        month_first, month_last = parse_month(month)
        if preserve_overrides is None:
            preserve_overrides = settings.PRESERVE_OVERRIDES_DEFAULT
        if cascade_sessions is None:
            cascade_sessions = self.cascade_sessions

        started = time.time()
        started_at = datetime.now(timezone.utc)
        log = logger.bind(organization_id=organization_id, month=month)
        log.info("allocation_month_started", preserve_overrides=preserve_overrides)

        try:
            # ── Stage 1: LOAD ──
            locations = await self.store.load_locations(organization_id)
            transactions = await self.store.load_expense_transactions(
                organization_id, month_first, month_last
            )
            mappings = await self.store.load_category_mappings(organization_id)
            rules = await self.store.load_allocation_rules(organization_id)
            sessions = await self.store.load_sessions(organization_id, month_first, month_last)

            # ── Stage 2: BINGO % ──
            bingo = calculate_bingo_percentage(sessions, locations, self.tracked)
            log.info(
                "bingo_percentage_calculated",
                bingo_percentage=str(bingo.bingo_percentage),
                tracked_revenue=str(bingo.tracked_locations_revenue),
                organization_revenue=str(bingo.organization_total_revenue),
            )

            # ── Stage 3: GROUP ──
            grouping = group_by_category(transactions, mappings, self.tracked)

            # ── Stage 4: SNAPSHOT ──
            existing = await self.store.load_existing_allocations(organization_id, month_first)
            snapshot = OverrideSnapshot(existing)

            # ── Stage 5: ALLOCATE ──
            rules_applied_at = datetime.now(timezone.utc)
            computed: list[MonthlyAllocation] = []
            allocated: list[AllocatedCategory] = []
            skipped: list[SkippedCategory] = []

            for category in sorted(grouping.groups):
                group = grouping.groups[category]
                allocation = self._allocate_one(group, rules, bingo, skipped, log)
                if allocation is None:
                    continue

                rows = self._build_rows(
                    organization_id, month_first, group, allocation,
                    rules[category].rule_id, bingo, rules_applied_at, skipped, log,
                )
                computed.extend(rows)
                allocated.append(self._summarize(group, allocation, rows))
                categories_allocated_total.labels(
                    allocation_method=allocation.allocation_method.value
                ).inc()

            # ── Stage 6: PRESERVE ──
            preservation = preserve_overridden_rows(computed, snapshot, preserve_overrides)

            # ── Stage 7: WRITE ──
            summary = await self.store.write_allocations(
                organization_id, month_first, preservation.to_write, preserve_overrides
            )
            overrides_preserved_total.inc(len(preservation.preserved))

            # ── Stage 8: CASCADE ──
            session_rows_written = 0
            if cascade_sessions:
                session_rows = cascade_month(preservation.final_rows, sessions, rules)
                session_rows_written = await self.store.write_session_allocations(
                    organization_id, month_first, session_rows
                )

            duration = time.time() - started
            status = self._status(skipped, bingo, grouping.unmapped.transaction_count)
            allocation_runs_total.labels(status=status.value).inc()
            allocation_run_duration_seconds.observe(duration)

            log.info(
                "allocation_month_completed",
                status=status.value,
                categories_allocated=len(allocated),
                categories_skipped=len(skipped),
                overrides_preserved=len(preservation.preserved),
                rows_deleted=summary.deleted,
                rows_written=summary.inserted,
                session_rows_written=session_rows_written,
                duration_s=round(duration, 3),
            )

            return AllocationRunResult(
                organization_id=organization_id,
                month=month,
                status=status,
                engine_version=settings.ENGINE_VERSION,
                bingo=bingo,
                allocated=allocated,
                skipped=skipped,
                preserved_overrides=preservation.preserved_summary(),
                discarded_overrides=preservation.discarded_summary(),
                unmapped=grouping.unmapped,
                unclassified=grouping.unclassified,
                rows_deleted=summary.deleted,
                rows_written=summary.inserted,
                session_allocations_written=session_rows_written,
                started_at=started_at,
                duration_ms=int(duration * 1000),
            )

        except AllocationError as e:
            allocation_runs_total.labels(status=RunStatus.FAILED.value).inc()
            log.error("allocation_month_failed", error_code=e.error_code, error=e.message)
            raise
        except Exception as e:
            allocation_runs_total.labels(status=RunStatus.FAILED.value).inc()
            log.error("allocation_month_failed", error_code="ERR_INTERNAL", error=str(e), exc_info=True)
            raise AllocationError(f"Allocation failed: {e}", "ERR_INTERNAL") from e

    async def calculate_all_months(
        self,
        organization_id: str,
        months: Optional[list[str]] = None,
        cancel_event: Optional[CancelEvent] = None,
        preserve_overrides: Optional[bool] = None,
    ) -> list[MonthRunResult]:
        """
        Recompute several months sequentially.

        One failing month never stops the batch. cancel_event (anything with
        is_set()) is checked between months only; months not started are
        reported as CANCELLED.
        """
        if months is None:
            months = await self.store.list_expense_months(organization_id)

        log = logger.bind(organization_id=organization_id)
        log.info("allocation_batch_started", months=len(months))

        results: list[MonthRunResult] = []
        for index, month in enumerate(months):
            if cancel_event is not None and cancel_event.is_set():
                remaining = months[index:]
                log.warning("allocation_batch_cancelled", remaining=len(remaining))
                results.extend(
                    MonthRunResult(
                        month=m,
                        success=False,
                        status=RunStatus.CANCELLED,
                        error_code="ERR_CANCELLED",
                        error="Cancelled before this month started",
                    )
                    for m in remaining
                )
                break

            try:
                result = await self.process_month(
                    organization_id, month, preserve_overrides=preserve_overrides
                )
                results.append(MonthRunResult(
                    month=month, success=True, status=result.status, result=result,
                ))
            except AllocationError as e:
                results.append(MonthRunResult(
                    month=month,
                    success=False,
                    status=RunStatus.FAILED,
                    error_code=e.error_code,
                    error=e.message,
                    retryable=e.retryable,
                ))

        log.info(
            "allocation_batch_completed",
            succeeded=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if r.status == RunStatus.FAILED),
            cancelled=sum(1 for r in results if r.status == RunStatus.CANCELLED),
        )
        return results

    # ── Reads & overrides ────────────────────────────────────

    async def load_allocations(self, organization_id: str, month: str) -> list[MonthlyAllocation]:
        rows = await self.store.load_existing_allocations(organization_id, parse_month(month)[0])
        return sorted(rows, key=lambda r: (r.expense_category, r.location_code or ""))

    async def load_session_allocations(
        self, organization_id: str, month: str
    ) -> list[SessionAllocation]:
        rows = await self.store.load_session_allocations(organization_id, parse_month(month)[0])
        return sorted(rows, key=lambda r: (r.expense_category, str(r.location_id), str(r.session_id)))

    async def apply_override(
        self,
        allocation_id: uuid.UUID,
        override_amount: Decimal,
        notes: Optional[str] = None,
    ) -> MonthlyAllocation:
        row = await self.store.apply_override(allocation_id, override_amount, notes)
        overrides_applied_total.labels(action="apply").inc()
        logger.info(
            "override_applied",
            allocation_id=str(allocation_id),
            organization_id=row.organization_id,
            expense_category=row.expense_category,
            computed_amount=str(row.allocated_amount),
            override_amount=str(row.override_allocated_amount),
        )
        await self._recascade(row)
        return row

    async def clear_override(self, allocation_id: uuid.UUID) -> MonthlyAllocation:
        row = await self.store.clear_override(allocation_id)
        overrides_applied_total.labels(action="clear").inc()
        logger.info(
            "override_cleared",
            allocation_id=str(allocation_id),
            organization_id=row.organization_id,
            expense_category=row.expense_category,
        )
        await self._recascade(row)
        return row

    # ── Internals ────────────────────────────────────────────

    def _allocate_one(
        self,
        group: CategoryGroup,
        rules: dict,
        bingo: BingoPercentageResult,
        skipped: list[SkippedCategory],
        log,
    ) -> Optional[CategoryAllocation]:
        """Allocate one category, or record why it was skipped."""
        category = group.expense_category

        if category in self.skip_categories:
            self._skip(skipped, log, SkippedCategory(
                expense_category=category,
                reason=SkipReason.DERIVED_CATEGORY,
                message="Derived category, allocated from payout data",
                qb_total_amount=group.total,
            ), level="info")
            return None

        rule = rules.get(category)
        if rule is None:
            self._skip(skipped, log, SkippedCategory(
                expense_category=category,
                reason=SkipReason.NO_RULE,
                message=f"No allocation rule for {category}",
                error_code="ERR_NO_RULE",
                qb_total_amount=group.total,
            ))
            return None

        try:
            return allocate_category(group, rule, bingo, self.tracked)
        except ValidationError as e:
            self._skip(skipped, log, SkippedCategory(
                expense_category=category,
                reason=SkipReason.VALIDATION,
                message=e.message,
                error_code=e.error_code,
                qb_total_amount=group.total,
            ))
            return None

    def _build_rows(
        self,
        organization_id: str,
        month: date,
        group: CategoryGroup,
        allocation: CategoryAllocation,
        rule_id: Optional[uuid.UUID],
        bingo: BingoPercentageResult,
        rules_applied_at: datetime,
        skipped: list[SkippedCategory],
        log,
    ) -> list[MonthlyAllocation]:
        source_data = group.source_data()
        rows = []
        for share in allocation.shares:
            location_id = bingo.location_ids.get(share.location_code)
            if location_id is None:
                self._skip(skipped, log, SkippedCategory(
                    expense_category=group.expense_category,
                    reason=SkipReason.LOCATION_UNRESOLVED,
                    message=f"Tracked location {share.location_code} has no Location record",
                    error_code="ERR_LOCATION_UNRESOLVED",
                    qb_total_amount=group.total,
                    location_code=share.location_code,
                ))
                continue

            rows.append(MonthlyAllocation(
                allocation_id=allocation_id_for(
                    organization_id, month, location_id, group.expense_category
                ),
                organization_id=organization_id,
                month=month,
                location_id=location_id,
                location_code=share.location_code,
                expense_category=group.expense_category,
                qb_total_amount=allocation.qb_total_amount,
                qb_transaction_count=group.transaction_count,
                qb_source_data=source_data,
                allocation_rule_id=rule_id,
                allocation_method=allocation.allocation_method,
                location_split_percent=share.location_split_percent,
                allocated_amount=share.allocated_amount,
                bingo_percentage=allocation.bingo_percentage,
                bingo_amount=share.bingo_amount,
                rules_applied_at=rules_applied_at,
            ))
        return rows

    @staticmethod
    def _summarize(
        group: CategoryGroup,
        allocation: CategoryAllocation,
        rows: list[MonthlyAllocation],
    ) -> AllocatedCategory:
        return AllocatedCategory(
            expense_category=group.expense_category,
            allocation_method=allocation.allocation_method,
            qb_total_amount=allocation.qb_total_amount,
            qb_transaction_count=group.transaction_count,
            allocated_total=sum((r.allocated_amount for r in rows), Decimal("0")),
            locations=[
                LocationAmount(
                    location_code=r.location_code,
                    location_id=r.location_id,
                    allocated_amount=r.allocated_amount,
                    bingo_amount=r.bingo_amount,
                    location_split_percent=r.location_split_percent,
                )
                for r in rows
            ],
        )

    @staticmethod
    def _skip(skipped: list[SkippedCategory], log, entry: SkippedCategory, level: str = "warning") -> None:
        skipped.append(entry)
        categories_skipped_total.labels(reason=entry.reason.value).inc()
        getattr(log, level)(
            "category_skipped",
            expense_category=entry.expense_category,
            reason=entry.reason.value,
            error_code=entry.error_code,
            location_code=entry.location_code,
            detail=entry.message,
        )

    @staticmethod
    def _status(
        skipped: list[SkippedCategory],
        bingo: BingoPercentageResult,
        unmapped_count: int,
    ) -> RunStatus:
        warnings = [s for s in skipped if s.reason != SkipReason.DERIVED_CATEGORY]
        if warnings or bingo.unresolved_locations or unmapped_count:
            return RunStatus.COMPLETED_WITH_WARNINGS
        return RunStatus.COMPLETED

    async def _recascade(self, row: MonthlyAllocation) -> None:
        """Rebuild a month's session rows after an override changed an effective amount."""
        if not self.cascade_sessions:
            return
        month_last = parse_month(month_key(row.month))[1]
        rows = await self.store.load_existing_allocations(row.organization_id, row.month)
        sessions = await self.store.load_sessions(row.organization_id, row.month, month_last)
        rules = await self.store.load_allocation_rules(row.organization_id)
        await self.store.write_session_allocations(
            row.organization_id, row.month, cascade_month(rows, sessions, rules)
        )
