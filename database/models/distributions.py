"""
Distribution Models

A distribution offers one job to one agency under a tier, an optional
exclusivity window and an optional submission cap. Submissions record every
candidate an agency put forward under a distribution.
"""

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    String,
    Boolean,
    ForeignKey,
    Integer,
    Text,
    Enum as SQLEnum,
    Index,
    UniqueConstraint,
    CheckConstraint,
)
from database.engine import Base
from database.types import BigIntPK, UTCDateTime
from core.utils.datetime import now
from datetime import datetime
from enum import Enum as PyEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from database.models.agencies import Agency
    from database.models.jobs import Job
    from database.models.candidates import Candidate


# ==================== Distribution Enums ===================== #
class DistributionTier(str, PyEnum):
    """Distribution tier, most privileged first."""

    EXCLUSIVE = "EXCLUSIVE"
    PRIORITY = "PRIORITY"
    STANDARD = "STANDARD"
    OPEN = "OPEN"


class DistributionStatus(str, PyEnum):
    """Distribution lifecycle."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


OPEN_DISTRIBUTION_STATUSES = (
    DistributionStatus.PENDING,
    DistributionStatus.ACTIVE,
    DistributionStatus.PAUSED,
)


class ClosureReason(str, PyEnum):
    CAP_REACHED = "CAP_REACHED"
    JOB_CLOSED = "JOB_CLOSED"
    DECLINED = "DECLINED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class OwnershipStatus(str, PyEnum):
    """Outcome of the ownership check for one submission."""

    CLAIMED = "CLAIMED"  # new ownership record for the submitting agency
    ALREADY_OWNED = "ALREADY_OWNED"  # the submitting agency already owns the candidate


class SubmissionStatus(str, PyEnum):
    SUBMITTED = "SUBMITTED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


# ==================== Distribution Model ===================== #
class Distribution(Base):
    """
    A job offered to an agency.

    ``exclusive_job_id`` mirrors ``job_id`` while this distribution holds the
    job's exclusivity; the unique constraint on it allows a single holder.
    """

    __tablename__ = "distributions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    job_id: Mapped[int] = mapped_column(
        ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    agency_id: Mapped[int] = mapped_column(
        ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False, index=True
    )

    tier: Mapped[DistributionTier] = mapped_column(
        SQLEnum(DistributionTier, name="distribution_tier"), nullable=False
    )
    status: Mapped[DistributionStatus] = mapped_column(
        SQLEnum(DistributionStatus, name="distribution_status"),
        default=DistributionStatus.PENDING,
        nullable=False,
    )
    require_acceptance: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Exclusivity
    exclusive_until: Mapped[datetime | None] = mapped_column(UTCDateTime)
    exclusive_job_id: Mapped[int | None] = mapped_column(Integer, unique=True)

    # Caps and counters
    max_candidates: Mapped[int | None] = mapped_column(Integer)
    submitted_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    accepted_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rejected_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Match audit
    match_score: Mapped[float | None] = mapped_column()

    # Lifecycle timestamps
    distributed_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)
    accepted_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    first_submission_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    closure_reason: Mapped[ClosureReason | None] = mapped_column(
        SQLEnum(ClosureReason, name="closure_reason")
    )
    notes: Mapped[str | None] = mapped_column(Text)

    job: Mapped["Job"] = relationship(back_populates="distributions")
    agency: Mapped["Agency"] = relationship(back_populates="distributions")
    submissions: Mapped[list["DistributionSubmission"]] = relationship(
        back_populates="distribution"
    )

    __table_args__ = (
        UniqueConstraint("job_id", "agency_id", name="uq_distribution_job_agency"),
        CheckConstraint(
            "max_candidates IS NULL OR submitted_count <= max_candidates",
            name="ck_distribution_submission_cap",
        ),
        Index("idx_distribution_tenant_status", "tenant_id", "status"),
    )

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_DISTRIBUTION_STATUSES


# ==================== Submission Model ===================== #
class DistributionSubmission(Base):
    """One candidate submitted by an agency under a distribution."""

    __tablename__ = "distribution_submissions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    distribution_id: Mapped[int] = mapped_column(
        ForeignKey("distributions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    candidate_id: Mapped[int] = mapped_column(
        ForeignKey("candidates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ownership_id: Mapped[int | None] = mapped_column(
        ForeignKey("candidate_ownerships.id", ondelete="SET NULL")
    )
    ownership_status: Mapped[OwnershipStatus] = mapped_column(
        SQLEnum(OwnershipStatus, name="ownership_status"), nullable=False
    )
    status: Mapped[SubmissionStatus] = mapped_column(
        SQLEnum(SubmissionStatus, name="submission_status"),
        default=SubmissionStatus.SUBMITTED,
        nullable=False,
    )
    possible_duplicate_of: Mapped[int | None] = mapped_column(Integer)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    distribution: Mapped["Distribution"] = relationship(back_populates="submissions")
    candidate: Mapped["Candidate"] = relationship()

    __table_args__ = (
        UniqueConstraint(
            "distribution_id", "candidate_id", name="uq_submission_distribution_candidate"
        ),
    )
