"""
Budget Models

Hierarchical budgets, their allocations, the append-only transaction log,
threshold alerts and spend forecasts.

The amount columns on ``Budget`` are a projection of the transaction log,
updated in the same database transaction as every append. ``version`` is
bumped by each posting and copied into the posting's ``sequence``, so the
log has no gaps and ``reconcile_budget`` can rebuild the projection.
"""

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    String,
    Boolean,
    ForeignKey,
    Integer,
    Float,
    Text,
    Date,
    Enum as SQLEnum,
    Index,
    UniqueConstraint,
    CheckConstraint,
)
from database.engine import Base
from database.security import append_only
from database.types import BigIntPK, Money, Rate, UTCDateTime
from core.utils.datetime import now
from datetime import date, datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from database.models.rate_cards import PlacementFee


# ==================== Budget Enums ===================== #
class BudgetStatus(str, PyEnum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    DEPLETED = "DEPLETED"
    CLOSED = "CLOSED"


class BudgetLevel(str, PyEnum):
    """Position of a budget in the tree."""

    COMPANY = "COMPANY"
    DEPARTMENT = "DEPARTMENT"
    PROJECT = "PROJECT"
    AGREEMENT = "AGREEMENT"


class TransactionType(str, PyEnum):
    ALLOCATION = "ALLOCATION"
    DEDUCTION = "DEDUCTION"
    ADJUSTMENT = "ADJUSTMENT"
    REFUND = "REFUND"
    TRANSFER = "TRANSFER"


class TransactionSource(str, PyEnum):
    MANUAL = "MANUAL"
    PLACEMENT_FEE = "PLACEMENT_FEE"
    TRANSFER = "TRANSFER"
    ALLOCATION = "ALLOCATION"


class AllocationTarget(str, PyEnum):
    AGREEMENT = "AGREEMENT"
    CONTRACT = "CONTRACT"
    DEPARTMENT = "DEPARTMENT"
    PROJECT = "PROJECT"


class AlertSeverity(str, PyEnum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


# ==================== Budget Model ===================== #
class Budget(Base):
    """
    A node of the budget tree.

    ``path`` is the materialized chain of ancestor ids including this node,
    e.g. ``/1/4/9/``; ancestor checks read it without walking parents.
    """

    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("budgets.id", ondelete="RESTRICT"), index=True
    )
    level: Mapped[BudgetLevel] = mapped_column(
        SQLEnum(BudgetLevel, name="budget_level"), default=BudgetLevel.COMPANY, nullable=False
    )
    depth: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    path: Mapped[str] = mapped_column(String(512), default="/", nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company_id: Mapped[int | None] = mapped_column(Integer)
    agreement_id: Mapped[int | None] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default="EUR", nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    allocated_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    spent_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[BudgetStatus] = mapped_column(
        SQLEnum(BudgetStatus, name="budget_status"), default=BudgetStatus.DRAFT, nullable=False
    )
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    locked_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    lock_reason: Mapped[str | None] = mapped_column(Text)

    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=now, onupdate=now, nullable=False
    )

    allocations: Mapped[list["BudgetAllocation"]] = relationship(back_populates="budget")
    alerts: Mapped[list["BudgetAlert"]] = relationship(back_populates="budget")

    __table_args__ = (
        CheckConstraint("remaining_amount >= 0", name="ck_budget_remaining_non_negative"),
        CheckConstraint("spent_amount >= 0", name="ck_budget_spent_non_negative"),
        Index("idx_budget_tenant_status", "tenant_id", "status"),
    )

    def ancestor_ids(self) -> list[int]:
        """Ids on the path from the root down to and including this budget."""
        return [int(part) for part in self.path.strip("/").split("/") if part]


# ==================== Allocation Model ===================== #
class BudgetAllocation(Base):
    """Part of a budget earmarked for an agreement, contract, department or project."""

    __tablename__ = "budget_allocations"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    budget_id: Mapped[int] = mapped_column(
        ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_type: Mapped[AllocationTarget] = mapped_column(
        SQLEnum(AllocationTarget, name="allocation_target"), nullable=False
    )
    target_id: Mapped[int] = mapped_column(Integer, nullable=False)
    allocated_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    spent_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)

    budget: Mapped["Budget"] = relationship(back_populates="allocations")

    __table_args__ = (
        UniqueConstraint("budget_id", "target_type", "target_id", name="uq_allocation_target"),
        CheckConstraint("remaining_amount >= 0", name="ck_allocation_remaining_non_negative"),
    )


# ==================== Transaction Model ===================== #
@append_only
class BudgetTransaction(Base):
    """
    One entry of a budget's ledger.

    ``balance_after`` is the budget's remaining amount right after this
    posting. A transfer writes two entries sharing ``transfer_group``.
    """

    __tablename__ = "budget_transactions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    budget_id: Mapped[int] = mapped_column(
        ForeignKey("budgets.id", ondelete="RESTRICT"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[TransactionType] = mapped_column(
        SQLEnum(TransactionType, name="transaction_type"), nullable=False
    )
    # Negative only for downward adjustments and the outgoing side of a transfer
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Money, nullable=False)
    spent_after: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_after: Mapped[Decimal] = mapped_column(Money, nullable=False)

    source_type: Mapped[TransactionSource] = mapped_column(
        SQLEnum(TransactionSource, name="transaction_source"),
        default=TransactionSource.MANUAL,
        nullable=False,
    )
    source_reference: Mapped[str | None] = mapped_column(String(255))
    allocation_id: Mapped[int | None] = mapped_column(
        ForeignKey("budget_allocations.id", ondelete="RESTRICT")
    )
    transfer_group: Mapped[str | None] = mapped_column(String(36), index=True)
    counterparty_budget_id: Mapped[int | None] = mapped_column(Integer)
    description: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)

    placement_fee: Mapped["PlacementFee | None"] = relationship(
        back_populates="budget_transaction"
    )

    __table_args__ = (
        UniqueConstraint("budget_id", "sequence", name="uq_budget_transaction_sequence"),
        Index("idx_budget_transaction_type_date", "budget_id", "transaction_type", "created_at"),
    )


# ==================== Alert Model ===================== #
class BudgetAlert(Base):
    """
    Utilization threshold on a budget.

    Triggers on an upward crossing and stays triggered until resolved.
    """

    __tablename__ = "budget_alerts"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    budget_id: Mapped[int] = mapped_column(
        ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    threshold_percentage: Mapped[Decimal | None] = mapped_column(Rate)
    threshold_amount: Mapped[Decimal | None] = mapped_column(Money)
    severity: Mapped[AlertSeverity] = mapped_column(
        SQLEnum(AlertSeverity, name="alert_severity"),
        default=AlertSeverity.WARNING,
        nullable=False,
    )
    is_triggered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    triggered_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    last_notified_status: Mapped[str | None] = mapped_column(String(50))
    message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)

    budget: Mapped["Budget"] = relationship(back_populates="alerts")

    __table_args__ = (
        CheckConstraint(
            "threshold_percentage IS NOT NULL OR threshold_amount IS NOT NULL",
            name="ck_budget_alert_threshold",
        ),
    )


# ==================== Forecast Model ===================== #
@append_only
class BudgetForecast(Base):
    """Point-in-time spend projection; the newest row per budget is current."""

    __tablename__ = "budget_forecasts"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    budget_id: Mapped[int] = mapped_column(
        ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False
    )
    method: Mapped[str] = mapped_column(String(50), nullable=False)
    window_days: Mapped[int] = mapped_column(Integer, nullable=False)
    horizon_days: Mapped[int] = mapped_column(Integer, nullable=False)
    sample_days: Mapped[int] = mapped_column(Integer, nullable=False)

    daily_average: Mapped[Decimal] = mapped_column(Money, nullable=False)
    daily_stddev: Mapped[float] = mapped_column(Float, nullable=False)
    predicted_spend: Mapped[Decimal] = mapped_column(Money, nullable=False)
    confidence_lower: Mapped[Decimal] = mapped_column(Money, nullable=False)
    confidence_upper: Mapped[Decimal] = mapped_column(Money, nullable=False)
    remaining_at_forecast: Mapped[Decimal] = mapped_column(Money, nullable=False)
    estimated_depletion_date: Mapped[date | None] = mapped_column(Date)

    forecast_date: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)

    __table_args__ = (
        Index("idx_budget_forecast_latest", "budget_id", "forecast_date"),
    )
