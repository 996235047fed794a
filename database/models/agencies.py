"""
Agency Models

Recruitment agencies ("bureaus"), their capability catalogue (specializations
and geographic coverage) and the periodic performance snapshots the matching
engine and SLA monitor read.
"""

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    String,
    Boolean,
    ForeignKey,
    Integer,
    Float,
    JSON,
    Text,
    Enum as SQLEnum,
    Index,
)
from database.engine import Base
from database.security import append_only
from database.types import BigIntPK, UTCDateTime
from core.utils.datetime import now
from datetime import datetime
from enum import Enum as PyEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from database.models.distributions import Distribution


# ==================== Agency Enums ===================== #
class JobCategory(str, PyEnum):
    """Expertise areas shared by jobs, specializations and rate cards."""

    IT = "IT"
    FINANCE = "FINANCE"
    SALES = "SALES"
    MARKETING = "MARKETING"
    HR = "HR"
    OPERATIONS = "OPERATIONS"
    ENGINEERING = "ENGINEERING"
    HEALTHCARE = "HEALTHCARE"
    LEGAL = "LEGAL"
    LOGISTICS = "LOGISTICS"
    CONSTRUCTION = "CONSTRUCTION"
    HOSPITALITY = "HOSPITALITY"
    EDUCATION = "EDUCATION"
    CREATIVE = "CREATIVE"
    GENERAL = "GENERAL"


class SeniorityLevel(str, PyEnum):
    """Seniority levels used for candidate classification and matching."""

    JUNIOR = "JUNIOR"
    MEDIOR = "MEDIOR"
    SENIOR = "SENIOR"
    LEAD = "LEAD"
    PRINCIPAL = "PRINCIPAL"
    EXECUTIVE = "EXECUTIVE"


class PerformanceTier(str, PyEnum):
    """Agency performance classification."""

    PLATINUM = "PLATINUM"  # Top 5%
    GOLD = "GOLD"  # Top 20%
    SILVER = "SILVER"  # Top 50%
    BRONZE = "BRONZE"  # Below 50%
    NEW = "NEW"  # No history yet


# ==================== Agency Model ===================== #
class Agency(Base):
    """A third-party recruitment agency operating inside a tenant."""

    __tablename__ = "agencies"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_email: Mapped[str | None] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)

    specializations: Mapped[list["AgencySpecialization"]] = relationship(
        back_populates="agency", cascade="all, delete-orphan"
    )
    coverage: Mapped[list["AgencyGeographicCoverage"]] = relationship(
        back_populates="agency", cascade="all, delete-orphan"
    )
    distributions: Mapped[list["Distribution"]] = relationship(back_populates="agency")

    __table_args__ = (Index("idx_agency_tenant_active", "tenant_id", "is_active"),)


# ==================== Specialization Model ===================== #
class AgencySpecialization(Base):
    """
    One expertise area of an agency.

    Owned by the agency profile; the matching engine only reads it.
    """

    __tablename__ = "agency_specializations"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    agency_id: Mapped[int] = mapped_column(
        ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category: Mapped[JobCategory] = mapped_column(
        SQLEnum(JobCategory, name="job_category"), nullable=False
    )
    subcategory: Mapped[str | None] = mapped_column(String(255))
    # Empty list means every seniority level is covered
    seniority_levels: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    years_experience: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    match_priority: Mapped[int] = mapped_column(Integer, default=5, nullable=False)  # 1-10
    successful_placements: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)

    agency: Mapped["Agency"] = relationship(back_populates="specializations")

    __table_args__ = (
        Index("idx_specialization_category", "tenant_id", "category"),
    )

    def covers(self, category: JobCategory, seniority: SeniorityLevel) -> bool:
        """True when this entry overlaps the job's category and seniority."""
        if self.category != category:
            return False
        return not self.seniority_levels or seniority.value in self.seniority_levels


# ==================== Geographic Coverage Model ===================== #
class AgencyGeographicCoverage(Base):
    """A region an agency recruits in."""

    __tablename__ = "agency_geographic_coverage"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    agency_id: Mapped[int] = mapped_column(
        ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    country: Mapped[str] = mapped_column(String(100), nullable=False)
    region: Mapped[str | None] = mapped_column(String(100))
    city: Mapped[str | None] = mapped_column(String(100))
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)
    radius_km: Mapped[float | None] = mapped_column(Float)
    priority: Mapped[int] = mapped_column(Integer, default=5, nullable=False)  # 1-10
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)

    agency: Mapped["Agency"] = relationship(back_populates="coverage")


# ==================== Performance Snapshot Model ===================== #
@append_only
class AgencyPerformanceSnapshot(Base):
    """
    Point-in-time performance metrics of an agency.

    Produced by the snapshot batch job; a newer row supersedes an older one.
    Rates are percentages (0-100), response time is in hours.
    """

    __tablename__ = "agency_performance_snapshots"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    agency_id: Mapped[int] = mapped_column(
        ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False
    )
    period_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # Volume
    jobs_received: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    candidates_submitted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    placements_made: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Quality
    fill_rate: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    placement_rate: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    acceptance_rate: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    submission_rate: Mapped[float] = mapped_column(Float, default=0, nullable=False)

    # Speed
    response_time_avg_hours: Mapped[float | None] = mapped_column(Float)

    # Overall
    performance_score: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    performance_tier: Mapped[PerformanceTier] = mapped_column(
        SQLEnum(PerformanceTier, name="performance_tier"),
        default=PerformanceTier.NEW,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text)
    computed_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)

    __table_args__ = (
        Index("idx_snapshot_agency_computed", "agency_id", "computed_at"),
    )
