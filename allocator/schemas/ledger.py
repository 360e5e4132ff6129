"""
Read-only ledger inputs to the allocation engine.
Created by the import collaborators; the engine never mutates them.
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class Location(BaseModel):
    location_id: uuid.UUID
    organization_id: str
    short_name: str  # 'SC', 'RWC', ...
    name: Optional[str] = None

    model_config = {"from_attributes": True, "frozen": True}


class ExpenseTransaction(BaseModel):
    """One categorized P&L expense line from the accounting ledger."""
    expense_id: uuid.UUID
    organization_id: str
    expense_date: date
    qb_category_name: str
    qb_class_name: Optional[str] = None  # location tag; None means unclassified
    amount: Decimal  # signed, credits are negative
    vendor: Optional[str] = None
    description: Optional[str] = None

    model_config = {"from_attributes": True, "frozen": True}

    @field_validator("amount")
    @classmethod
    def _finite_amount(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("amount must be a finite number")
        return v


class RevenueSession(BaseModel):
    """A revenue-generating event (bingo session) at one location."""
    session_id: uuid.UUID
    organization_id: str
    session_date: date
    location_id: uuid.UUID
    total_sales: Decimal = Field(default=Decimal("0"), ge=0)
    session_type: Optional[str] = None

    model_config = {"from_attributes": True, "frozen": True}

    @field_validator("total_sales")
    @classmethod
    def _finite_sales(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("total_sales must be a finite number")
        return v


class SourceTransaction(BaseModel):
    """Audit snapshot of a transaction that contributed to an allocation row."""
    expense_date: date
    qb_category: str
    qb_class: Optional[str] = None
    amount: Decimal
    vendor: Optional[str] = None
    description: Optional[str] = None
    qb_expense_id: uuid.UUID

    model_config = {"frozen": True}

    @classmethod
    def from_transaction(cls, tx: ExpenseTransaction) -> "SourceTransaction":
        return cls(
            expense_date=tx.expense_date,
            qb_category=tx.qb_category_name,
            qb_class=tx.qb_class_name,
            amount=tx.amount,
            vendor=tx.vendor,
            description=tx.description,
            qb_expense_id=tx.expense_id,
        )
