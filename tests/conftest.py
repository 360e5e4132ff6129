"""
Shared test fixtures.

The January 2025 ledger below is the worked example used across the suite:
SC earns $10,000, RWC $5,000 and an untracked location $15,000, so the
bingo percentage is 50%.
"""

import uuid
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from allocator.models.enums import AllocationMethod
from allocator.schemas.ledger import ExpenseTransaction, Location, RevenueSession
from allocator.schemas.rules import AllocationRule, CategoryMapping, TrackedLocations
from allocator.store.memory_store import MemoryAllocationStore

ORG = "org-1"
MONTH = "2025-01"


@pytest.fixture
def tracked():
    return TrackedLocations.parse("SC:Bingo - SC,RWC:Bingo - RWC")


@pytest.fixture
def locations():
    return SimpleNamespace(
        sc=Location(location_id=uuid.uuid4(), organization_id=ORG, short_name="SC", name="South County"),
        rwc=Location(location_id=uuid.uuid4(), organization_id=ORG, short_name="RWC", name="Redwood City"),
        other=Location(location_id=uuid.uuid4(), organization_id=ORG, short_name="CAFE", name="Cafe"),
    )


@pytest.fixture
def make_expense():
    def _make(amount, qb_category="Electric", qb_class="Bingo - SC", day=date(2025, 1, 15), **kw):
        return ExpenseTransaction(
            expense_id=kw.pop("expense_id", uuid.uuid4()),
            organization_id=kw.pop("organization_id", ORG),
            expense_date=day,
            qb_category_name=qb_category,
            qb_class_name=qb_class,
            amount=Decimal(str(amount)),
            **kw,
        )
    return _make


@pytest.fixture
def make_session():
    def _make(location, sales, day=date(2025, 1, 10), **kw):
        return RevenueSession(
            session_id=kw.pop("session_id", uuid.uuid4()),
            organization_id=kw.pop("organization_id", ORG),
            session_date=day,
            location_id=location.location_id,
            total_sales=Decimal(str(sales)),
            **kw,
        )
    return _make


@pytest.fixture
def january_sessions(locations, make_session):
    return [
        make_session(locations.sc, "6000.00", day=date(2025, 1, 4)),
        make_session(locations.sc, "4000.00", day=date(2025, 1, 11)),
        make_session(locations.rwc, "5000.00", day=date(2025, 1, 5)),
        make_session(locations.other, "15000.00", day=date(2025, 1, 6)),
    ]


@pytest.fixture
def january_expenses(make_expense):
    return [
        make_expense("600.00", "Electric", "Bingo - SC"),
        make_expense("400.00", "Electric", "Bingo - RWC"),
        make_expense("2000.00", "Liability Insurance", "Bingo - SC"),
        make_expense("1500.00", "Cleaning", "Bingo - SC"),
        make_expense("1500.00", "Cleaning", "Bingo - RWC"),
        # unmapped ledger category
        make_expense("999.00", "Mystery Charge", "Bingo - SC"),
        # no tracked class tag
        make_expense("500.00", "Electric", None),
    ]


@pytest.fixture
def mappings():
    return [
        CategoryMapping(organization_id=ORG, qb_category_name="Electric", expense_category="Utilities"),
        CategoryMapping(organization_id=ORG, qb_category_name="Liability Insurance", expense_category="Insurance"),
        CategoryMapping(organization_id=ORG, qb_category_name="Cleaning", expense_category="Janitorial"),
    ]


@pytest.fixture
def rules():
    return [
        AllocationRule(
            rule_id=uuid.uuid4(),
            organization_id=ORG,
            expense_category="Utilities",
            allocation_method=AllocationMethod.REVENUE_SPLIT,
            qb_percentage=Decimal("85"),
        ),
        AllocationRule(
            rule_id=uuid.uuid4(),
            organization_id=ORG,
            expense_category="Insurance",
            allocation_method=AllocationMethod.FIXED_PERCENTAGES,
            fixed_location_a_percent=Decimal("60"),
            fixed_location_b_percent=Decimal("40"),
        ),
        AllocationRule(
            rule_id=uuid.uuid4(),
            organization_id=ORG,
            expense_category="Janitorial",
            allocation_method=AllocationMethod.SC_ONLY,
            designated_location_code="SC",
        ),
    ]


@pytest.fixture
def memory_store(locations, january_expenses, january_sessions, mappings, rules):
    store = MemoryAllocationStore()
    store.add_locations(locations.sc, locations.rwc, locations.other)
    store.add_expenses(*january_expenses)
    store.add_sessions(*january_sessions)
    store.add_mappings(*mappings)
    store.add_rules(*rules)
    return store
