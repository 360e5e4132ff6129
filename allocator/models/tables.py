"""
SQLAlchemy ORM models.
Types are portable so the same metadata runs on PostgreSQL and SQLite.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from allocator.models.database import Base

Money = Numeric(15, 2)
Percent = Numeric(9, 4)
JsonDocument = JSON().with_variant(JSONB(), "postgresql")


# ────────────────────────────────────────────────────────────
# LEDGER (written by the import jobs, read here)
# ────────────────────────────────────────────────────────────
class Location(Base):
    __tablename__ = "locations"

    location_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    short_name: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "short_name", name="uq_locations_org_short_name"),
    )


class QbExpense(Base):
    __tablename__ = "qb_expenses"

    expense_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    qb_category_name: Mapped[str] = mapped_column(Text, nullable=False)
    qb_class_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    vendor: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_qb_expenses_org_date", "organization_id", "expense_date"),
    )


class BingoSession(Base):
    __tablename__ = "sessions"

    session_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    session_date: Mapped[date] = mapped_column(Date, nullable=False)
    location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("locations.location_id"), nullable=False
    )
    total_sales: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    session_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_sessions_org_date", "organization_id", "session_date"),
    )


# ────────────────────────────────────────────────────────────
# CONFIGURATION
# ────────────────────────────────────────────────────────────
class QbCategoryMapping(Base):
    __tablename__ = "qb_category_mapping"

    mapping_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    qb_category_name: Mapped[str] = mapped_column(Text, nullable=False)
    expense_category: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "qb_category_name", name="uq_mapping_org_qb_category"),
    )


class AllocationRule(Base):
    __tablename__ = "allocation_rules"

    rule_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    expense_category: Mapped[str] = mapped_column(Text, nullable=False)
    allocation_method: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    qb_percentage: Mapped[Decimal] = mapped_column(Percent, nullable=False, default=Decimal("100"))
    fixed_location_a_percent: Mapped[Optional[Decimal]] = mapped_column(Percent, nullable=True)
    fixed_location_b_percent: Mapped[Optional[Decimal]] = mapped_column(Percent, nullable=True)
    bingo_percentage_override: Mapped[Optional[Decimal]] = mapped_column(Percent, nullable=True)
    class_split_adjustment_percent: Mapped[Optional[Decimal]] = mapped_column(Percent, nullable=True)
    designated_location_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    uses_qb_class_split: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    session_allocation_method: Mapped[str] = mapped_column(
        Text, nullable=False, default="BY_REVENUE"
    )
    fixed_amount_per_session: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "expense_category", name="uq_rules_org_category"),
    )


# ────────────────────────────────────────────────────────────
# ALLOCATIONS (owned by the engine)
# ────────────────────────────────────────────────────────────
class MonthlyAllocatedExpense(Base):
    __tablename__ = "monthly_allocated_expenses"

    allocation_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    month: Mapped[date] = mapped_column(Date, nullable=False)
    location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("locations.location_id"), nullable=False
    )
    location_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expense_category: Mapped[str] = mapped_column(Text, nullable=False)
    qb_total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    qb_transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    qb_source_data: Mapped[Optional[list]] = mapped_column(JsonDocument, nullable=True)
    allocation_rule_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    allocation_method: Mapped[str] = mapped_column(Text, nullable=False)
    location_split_percent: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    allocated_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    bingo_percentage: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    bingo_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    is_overridden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    override_allocated_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    override_bingo_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    override_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    overridden_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rules_applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "month", "location_id", "expense_category",
            name="uq_monthly_alloc_org_month_loc_cat",
        ),
        Index("idx_monthly_alloc_org_month", "organization_id", "month"),
    )


class SessionAllocatedExpense(Base):
    __tablename__ = "session_allocated_expenses"

    session_allocation_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    month: Mapped[date] = mapped_column(Date, nullable=False)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sessions.session_id"), nullable=False
    )
    location_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    expense_category: Mapped[str] = mapped_column(Text, nullable=False)
    # no FK: monthly rows are replaced before their session rows
    source_allocation_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    allocation_method: Mapped[str] = mapped_column(Text, nullable=False)
    allocated_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    session_revenue: Mapped[Decimal] = mapped_column(Money, nullable=False)
    location_month_revenue: Mapped[Decimal] = mapped_column(Money, nullable=False)
    revenue_percentage: Mapped[Optional[Decimal]] = mapped_column(Percent, nullable=True)
    calculation_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_session_alloc_org_month", "organization_id", "month"),
    )
