"""
Candidate Models

Candidates submitted by agencies and the ownership records that protect the
first submitter's fee rights.

Identity columns hold normalized values (see core.utils.validators) and are
unique per tenant when present, so the same person submitted twice resolves
to the same row.
"""

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    String,
    ForeignKey,
    Integer,
    Float,
    JSON,
    Text,
    Index,
    UniqueConstraint,
)
from database.engine import Base
from database.types import BigIntPK, UTCDateTime
from core.utils.datetime import now
from datetime import datetime
from typing import Any


# ==================== Candidate Model ===================== #
class Candidate(Base):
    """A person submitted by at least one agency."""

    __tablename__ = "candidates"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Normalized identity; immutable once the candidate is owned
    email: Mapped[str | None] = mapped_column(String(320))
    phone: Mapped[str | None] = mapped_column(String(20))
    linkedin_url: Mapped[str | None] = mapped_column(String(255))
    full_name: Mapped[str | None] = mapped_column(String(255))

    # Profile (enriched by later submissions)
    skills: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    years_experience: Mapped[float | None] = mapped_column(Float)
    availability: Mapped[str | None] = mapped_column(String(100))
    profile: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=now, onupdate=now, nullable=False
    )

    ownerships: Mapped[list["CandidateOwnership"]] = relationship(
        back_populates="candidate"
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_candidate_tenant_email"),
        UniqueConstraint("tenant_id", "phone", name="uq_candidate_tenant_phone"),
        UniqueConstraint("tenant_id", "linkedin_url", name="uq_candidate_tenant_linkedin"),
        Index("idx_candidate_full_name", "tenant_id", "full_name"),
    )


# ==================== Ownership Model ===================== #
class CandidateOwnership(Base):
    """
    First-submitter protection of a candidate.

    One row per claim. ``active_candidate_id`` mirrors ``candidate_id`` while
    the claim is active and is NULL afterwards; its unique constraint is what
    guarantees a single active owner per candidate.
    """

    __tablename__ = "candidate_ownerships"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    candidate_id: Mapped[int] = mapped_column(
        ForeignKey("candidates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    agency_id: Mapped[int] = mapped_column(
        ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    originating_job_id: Mapped[int | None] = mapped_column(
        ForeignKey("jobs.id", ondelete="SET NULL")
    )
    first_submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    active_candidate_id: Mapped[int | None] = mapped_column(Integer, unique=True)
    released_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    release_reason: Mapped[str | None] = mapped_column(Text)

    candidate: Mapped["Candidate"] = relationship(back_populates="ownerships")

    __table_args__ = (
        Index("idx_ownership_active_expiry", "tenant_id", "active_candidate_id", "expires_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.active_candidate_id is not None
