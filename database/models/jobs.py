"""
Jobs Module

Read model of the job records the engine distributes. Jobs are owned by the
surrounding marketplace; the engine only needs the fields that drive
matching, fee calculation and distribution lifecycle.
"""

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    String,
    Float,
    Integer,
    Enum as SQLEnum,
    Index,
)
from database.engine import Base
from database.models.agencies import JobCategory, SeniorityLevel
from database.types import BigIntPK, Money, UTCDateTime
from core.utils.datetime import now
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from database.models.distributions import Distribution


# ==================== Job Enums ===================== #
class JobStatus(str, PyEnum):
    """Job posting status."""

    OPEN = "OPEN"
    PAUSED = "PAUSED"
    CLOSED = "CLOSED"


class EmploymentType(str, PyEnum):
    """Contract type of the placement; rate card lines may filter on it."""

    PERMANENT = "PERMANENT"
    INTERIM = "INTERIM"
    TEMPORARY = "TEMPORARY"


class LocationType(str, PyEnum):
    """Job location type."""

    ONSITE = "ONSITE"
    HYBRID = "HYBRID"
    REMOTE = "REMOTE"


# ==================== Job Model ===================== #
class Job(Base):
    """A job that can be distributed to agencies."""

    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)

    category: Mapped[JobCategory] = mapped_column(
        SQLEnum(JobCategory, name="job_category"), nullable=False
    )
    seniority: Mapped[SeniorityLevel] = mapped_column(
        SQLEnum(SeniorityLevel, name="seniority_level"), nullable=False
    )
    employment_type: Mapped[EmploymentType] = mapped_column(
        SQLEnum(EmploymentType, name="employment_type"),
        default=EmploymentType.PERMANENT,
        nullable=False,
    )

    # Location
    location_type: Mapped[LocationType] = mapped_column(
        SQLEnum(LocationType, name="location_type"),
        default=LocationType.ONSITE,
        nullable=False,
    )
    country: Mapped[str | None] = mapped_column(String(100))
    region: Mapped[str | None] = mapped_column(String(100))
    city: Mapped[str | None] = mapped_column(String(100))
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)

    # Compensation
    salary_annual: Mapped[Decimal | None] = mapped_column(Money)
    hourly_rate: Mapped[Decimal | None] = mapped_column(Money)
    currency: Mapped[str] = mapped_column(String(3), default="EUR", nullable=False)

    # Scoping for rate cards and budgets
    company_id: Mapped[int | None] = mapped_column(Integer)
    agreement_id: Mapped[int | None] = mapped_column(Integer)
    budget_id: Mapped[int | None] = mapped_column(Integer)

    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, name="job_status"), default=JobStatus.OPEN, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    distributions: Mapped[list["Distribution"]] = relationship(back_populates="job")

    __table_args__ = (Index("idx_job_tenant_status", "tenant_id", "status"),)
