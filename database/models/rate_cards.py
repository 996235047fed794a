"""
Rate Card Models

Versioned fee tables per agency (optionally narrowed to a company and/or a
master agreement), their lines, and the immutable placement fees computed
from them.
"""

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    String,
    Boolean,
    ForeignKey,
    Integer,
    JSON,
    Enum as SQLEnum,
    Index,
    UniqueConstraint,
)
from database.engine import Base
from database.security import append_only
from database.models.agencies import JobCategory, SeniorityLevel
from database.models.jobs import EmploymentType
from database.types import BigIntPK, Money, Rate, UTCDateTime
from core.utils.datetime import now
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from database.models.budgets import BudgetTransaction


# ==================== Rate Card Enums ===================== #
class FeeType(str, PyEnum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"
    HOURLY_MARKUP = "HOURLY_MARKUP"
    TIERED = "TIERED"


# ==================== Rate Card Model ===================== #
class RateCard(Base):
    """
    A fee table valid for a time window.

    Scope is the agency, optionally narrowed by ``company_id`` and/or
    ``agreement_id``. A card with ``valid_until`` NULL is open-ended.
    """

    __tablename__ = "rate_cards"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    agency_id: Mapped[int] = mapped_column(
        ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    company_id: Mapped[int | None] = mapped_column(Integer)
    agreement_id: Mapped[int | None] = mapped_column(Integer)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="EUR", nullable=False)
    valid_from: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    valid_until: Mapped[datetime | None] = mapped_column(UTCDateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)

    lines: Mapped[list["RateCardLine"]] = relationship(
        back_populates="rate_card", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_rate_card_scope", "tenant_id", "agency_id", "company_id", "agreement_id"),
    )

    def is_valid_at(self, at: datetime) -> bool:
        if at < self.valid_from:
            return False
        return self.valid_until is None or at < self.valid_until


# ==================== Rate Card Line Model ===================== #
class RateCardLine(Base):
    """
    One fee rule of a card.

    ``fee_terms`` holds the parameters of ``fee_type`` only and is validated
    by ``core.calculations.fees.FeeTerms``. The compensation range is
    half-open: ``min_compensation <= x < max_compensation``.
    """

    __tablename__ = "rate_card_lines"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    rate_card_id: Mapped[int] = mapped_column(
        ForeignKey("rate_cards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    job_category: Mapped[JobCategory] = mapped_column(
        SQLEnum(JobCategory, name="job_category"), nullable=False
    )
    seniority_level: Mapped[SeniorityLevel] = mapped_column(
        SQLEnum(SeniorityLevel, name="seniority_level"), nullable=False
    )
    contract_type: Mapped[EmploymentType | None] = mapped_column(
        SQLEnum(EmploymentType, name="employment_type")
    )
    fee_type: Mapped[FeeType] = mapped_column(
        SQLEnum(FeeType, name="fee_type"), nullable=False
    )
    fee_terms: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    min_compensation: Mapped[Decimal | None] = mapped_column(Money)
    max_compensation: Mapped[Decimal | None] = mapped_column(Money)

    volume_discount_threshold: Mapped[int | None] = mapped_column(Integer)
    volume_discount_percentage: Mapped[Decimal | None] = mapped_column(Rate)

    rate_card: Mapped["RateCard"] = relationship(back_populates="lines")


# ==================== Placement Fee Model ===================== #
@append_only
class PlacementFee(Base):
    """
    Immutable fee calculation for one placement.

    The budget posting it produced is linked through
    ``budget_transaction_id``; the posting is written first so the fee row
    is complete on insert.
    """

    __tablename__ = "placement_fees"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    agency_id: Mapped[int] = mapped_column(
        ForeignKey("agencies.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    job_id: Mapped[int] = mapped_column(
        ForeignKey("jobs.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    submission_id: Mapped[int | None] = mapped_column(
        ForeignKey("distribution_submissions.id", ondelete="RESTRICT")
    )
    rate_card_id: Mapped[int] = mapped_column(
        ForeignKey("rate_cards.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    rate_card_line_id: Mapped[int] = mapped_column(
        ForeignKey("rate_card_lines.id", ondelete="RESTRICT"), nullable=False
    )
    budget_transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("budget_transactions.id", ondelete="RESTRICT"), unique=True
    )

    fee_type: Mapped[FeeType] = mapped_column(
        SQLEnum(FeeType, name="fee_type"), nullable=False
    )
    inputs: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)

    budget_transaction: Mapped["BudgetTransaction | None"] = relationship(
        back_populates="placement_fee"
    )

    __table_args__ = (
        UniqueConstraint("submission_id", name="uq_placement_fee_submission"),
        Index("idx_placement_fee_card_agency", "rate_card_id", "agency_id", "calculated_at"),
    )
