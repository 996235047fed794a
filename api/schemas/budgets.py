"""Budget, ledger, allocation and alert schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from database.models.budgets import (
    AlertSeverity,
    AllocationTarget,
    BudgetLevel,
    BudgetStatus,
    TransactionSource,
    TransactionType,
)


class BudgetCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    total_amount: Decimal = Field(ge=0)
    period_start: date
    period_end: date
    parent_id: Optional[int] = Field(None, description="Parent budget in the tree")
    level: Optional[BudgetLevel] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    company_id: Optional[int] = None
    agreement_id: Optional[int] = None
    status: BudgetStatus = Field(
        default=BudgetStatus.ACTIVE, description="Initial status, ACTIVE or DRAFT"
    )

    @model_validator(mode="after")
    def check_period(self):
        if self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self

    @field_validator("status")
    @classmethod
    def initial_status(cls, v: BudgetStatus) -> BudgetStatus:
        if v not in (BudgetStatus.ACTIVE, BudgetStatus.DRAFT):
            raise ValueError("A budget starts ACTIVE or DRAFT")
        return v


class TransactionCreate(BaseModel):
    """
    A ledger posting. ADJUSTMENT amounts are signed; every other type is
    strictly positive. Transfers and allocations have their own endpoints.
    """

    transaction_type: TransactionType
    amount: Decimal
    source_type: TransactionSource = TransactionSource.MANUAL
    source_reference: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    allocation_id: Optional[int] = Field(None, description="Allocation drawn down or refunded")
    at: Optional[datetime] = Field(None, description="Posting time; defaults to now")


class TransferCreate(BaseModel):
    from_budget_id: int = Field(gt=0)
    to_budget_id: int = Field(gt=0)
    amount: Decimal = Field(gt=0)
    description: Optional[str] = Field(None, max_length=1000)


class AllocationCreate(BaseModel):
    target_type: AllocationTarget
    target_id: int = Field(gt=0)
    amount: Decimal = Field(gt=0)


class BudgetAlertCreate(BaseModel):
    threshold_percentage: Optional[Decimal] = Field(None, gt=0, le=100)
    threshold_amount: Optional[Decimal] = Field(None, gt=0)
    severity: AlertSeverity = AlertSeverity.WARNING

    @model_validator(mode="after")
    def require_threshold(self):
        if self.threshold_percentage is None and self.threshold_amount is None:
            raise ValueError("Set threshold_percentage and/or threshold_amount")
        return self


class BudgetLock(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ForecastRequest(BaseModel):
    horizon_days: Optional[int] = Field(None, ge=1, le=365)
    window_days: Optional[int] = Field(None, ge=1, le=365)
