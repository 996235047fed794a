"""
Candidate ownership service functions.

The first agency to submit a candidate owns the fee rights for
``OWNERSHIP_PROTECTION_DAYS``. Active ownership is a unique slot column on
the ownership table, so two concurrent claims cannot both succeed; an
expired record is released by a conditional update before a new claim.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from api.services.candidates import resolve_candidate
from core.config import settings
from core.exceptions import OwnershipConflict, OwnershipNotActive
from core.utils.datetime import now, add_days
from core.utils.validators import CandidateIdentity, name_similarity
from database.engine import AsyncSessionLocal, commit_or_fail, get_scoped
from database.models.candidates import Candidate, CandidateOwnership
from database.models.distributions import OwnershipStatus
from database.security import describe_identity

logger = logging.getLogger(__name__)


@dataclass
class OwnershipMatch:
    """An active ownership record found for an identity."""

    ownership_id: int
    candidate_id: int
    agency_id: int
    expires_at: datetime
    match_reason: str  # email, phone, linkedin or name

    @property
    def is_fuzzy(self) -> bool:
        return self.match_reason == "name"

    def to_dict(self) -> dict[str, Any]:
        return {
            "ownership_id": self.ownership_id,
            "candidate_id": self.candidate_id,
            "owner_agency_id": self.agency_id,
            "expires_at": self.expires_at.isoformat(),
            "match_reason": self.match_reason,
        }


def serialize_ownership(ownership: CandidateOwnership) -> dict[str, Any]:
    return {
        "id": ownership.id,
        "candidate_id": ownership.candidate_id,
        "agency_id": ownership.agency_id,
        "originating_job_id": ownership.originating_job_id,
        "first_submitted_at": ownership.first_submitted_at.isoformat(),
        "expires_at": ownership.expires_at.isoformat(),
        "is_active": ownership.is_active,
        "released_at": ownership.released_at.isoformat() if ownership.released_at else None,
        "release_reason": ownership.release_reason,
    }


def _active_at(at: datetime):
    """Filter for ownerships still protected at ``at``; expiry is exclusive of ``expires_at``."""
    return (
        CandidateOwnership.active_candidate_id.is_not(None),
        CandidateOwnership.expires_at >= at,
    )


# ==================== Duplicate Check ===================== #


async def find_owner(
    session: AsyncSession,
    tenant_id: str,
    identity: CandidateIdentity,
    at: Optional[datetime] = None,
) -> Optional[OwnershipMatch]:
    """
    First active ownership matching the identity.

    Keys are tried in priority order: email, phone, LinkedIn URL, then a
    fuzzy full-name match. Expired records count as absent even while
    still flagged active.
    """
    at = at or now()
    base = (
        select(CandidateOwnership, Candidate)
        .join(Candidate, Candidate.id == CandidateOwnership.candidate_id)
        .where(CandidateOwnership.tenant_id == tenant_id, *_active_at(at))
    )

    for reason, column, value in (
        ("email", Candidate.email, identity.email),
        ("phone", Candidate.phone, identity.phone),
        ("linkedin", Candidate.linkedin_url, identity.linkedin_url),
    ):
        if not value:
            continue
        result = await session.execute(base.where(column == value).limit(1))
        row = result.first()
        if row:
            ownership, candidate = row
            return OwnershipMatch(
                ownership.id, candidate.id, ownership.agency_id, ownership.expires_at, reason
            )

    if identity.full_name:
        result = await session.execute(base.where(Candidate.full_name.is_not(None)))
        best: Optional[tuple[float, CandidateOwnership, Candidate]] = None
        for ownership, candidate in result.all():
            similarity = name_similarity(identity.full_name, candidate.full_name)
            if similarity >= settings.ownership_name_match_threshold and (
                best is None or similarity > best[0]
            ):
                best = (similarity, ownership, candidate)
        if best:
            _, ownership, candidate = best
            return OwnershipMatch(
                ownership.id, candidate.id, ownership.agency_id, ownership.expires_at, "name"
            )
    return None


async def check_duplicate(
    tenant_id: str, identity: CandidateIdentity, at: Optional[datetime] = None
) -> Optional[dict[str, Any]]:
    """Owning agency and expiry for an identity, or None when unowned."""
    async with AsyncSessionLocal() as session:
        match = await find_owner(session, tenant_id, identity, at)
        return match.to_dict() if match else None


# ==================== Claim ===================== #


async def _release_expired(session: AsyncSession, candidate_id: int, at: datetime) -> int:
    result = await session.execute(
        update(CandidateOwnership)
        .where(
            CandidateOwnership.active_candidate_id == candidate_id,
            CandidateOwnership.expires_at < at,
        )
        .values(active_candidate_id=None, released_at=at, release_reason="expired")
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def _active_ownership(
    session: AsyncSession, candidate_id: int
) -> Optional[CandidateOwnership]:
    result = await session.execute(
        select(CandidateOwnership).where(
            CandidateOwnership.active_candidate_id == candidate_id
        )
    )
    return result.scalar_one_or_none()


async def claim_candidate(
    session: AsyncSession,
    tenant_id: str,
    candidate_id: int,
    agency_id: int,
    job_id: Optional[int] = None,
    at: Optional[datetime] = None,
) -> tuple[CandidateOwnership, OwnershipStatus]:
    """
    Claim ownership of a candidate inside the caller's transaction.

    Returns the active ownership and whether it was newly CLAIMED or the
    agency ALREADY_OWNED it.

    Raises:
        OwnershipConflict: Another agency holds an active, unexpired claim
    """
    at = at or now()
    await _release_expired(session, candidate_id, at)

    current = await _active_ownership(session, candidate_id)
    if current is not None:
        if current.agency_id == agency_id:
            return current, OwnershipStatus.ALREADY_OWNED
        raise OwnershipConflict(candidate_id, current.agency_id, current.expires_at, "candidate")

    ownership = CandidateOwnership(
        tenant_id=tenant_id,
        candidate_id=candidate_id,
        agency_id=agency_id,
        originating_job_id=job_id,
        first_submitted_at=at,
        expires_at=add_days(at, settings.ownership_protection_days),
        active_candidate_id=candidate_id,
    )
    try:
        async with session.begin_nested():
            session.add(ownership)
            await session.flush()
    except IntegrityError:
        # A concurrent claim won the slot between our read and insert
        current = await _active_ownership(session, candidate_id)
        if current is not None and current.agency_id == agency_id:
            return current, OwnershipStatus.ALREADY_OWNED
        raise OwnershipConflict(
            candidate_id,
            current.agency_id if current else None,
            current.expires_at if current else None,
            "concurrent_claim",
        )

    logger.info(
        f"Agency {agency_id} claimed candidate {candidate_id} until "
        f"{ownership.expires_at.date().isoformat()}"
    )
    return ownership, OwnershipStatus.CLAIMED


async def claim(
    tenant_id: str,
    identity: CandidateIdentity,
    agency_id: int,
    job_id: Optional[int] = None,
    at: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Resolve the candidate for an identity and claim it for an agency.

    Raises:
        OwnershipConflict: The identity is owned by another agency
    """
    at = at or now()
    async with AsyncSessionLocal() as session:
        await guard_identity(session, tenant_id, identity, agency_id, at)
        candidate, _ = await resolve_candidate(session, tenant_id, identity)
        ownership, status = await claim_candidate(
            session, tenant_id, candidate.id, agency_id, job_id, at
        )
        await commit_or_fail(session, "ownership claim")
        return {
            "candidate_id": candidate.id,
            "ownership_status": status.value,
            "ownership": serialize_ownership(ownership),
        }


async def guard_identity(
    session: AsyncSession,
    tenant_id: str,
    identity: CandidateIdentity,
    agency_id: int,
    at: datetime,
) -> Optional[OwnershipMatch]:
    """
    Reject an identity strongly owned by another agency.

    A fuzzy name match is not rejected; it is returned so the caller can
    flag a possible duplicate.
    """
    match = await find_owner(session, tenant_id, identity, at)
    if match is None or match.agency_id == agency_id:
        return None
    if match.is_fuzzy:
        logger.warning(
            f"Possible duplicate of candidate {match.candidate_id} "
            f"({describe_identity(identity)})"
        )
        return match
    raise OwnershipConflict(
        match.candidate_id, match.agency_id, match.expires_at, match.match_reason
    )


# ==================== Release & Expiry ===================== #


async def release(tenant_id: str, ownership_id: int, reason: str) -> dict[str, Any]:
    """
    Deactivate an ownership after a dispute was resolved.

    Raises:
        NotFound: No such ownership in the tenant
        OwnershipNotActive: The ownership was already released
    """
    async with AsyncSessionLocal() as session:
        ownership = await get_scoped(session, CandidateOwnership, ownership_id, tenant_id)
        result = await session.execute(
            update(CandidateOwnership)
            .where(
                CandidateOwnership.id == ownership_id,
                CandidateOwnership.active_candidate_id.is_not(None),
            )
            .values(active_candidate_id=None, released_at=now(), release_reason=reason)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise OwnershipNotActive(ownership_id, ownership.release_reason)
        await commit_or_fail(session, "ownership release")
        await session.refresh(ownership)
        logger.info(f"Released ownership {ownership_id}: {reason}")
        return serialize_ownership(ownership)


async def expire_ownerships(at: Optional[datetime] = None) -> int:
    """Batch cleanup: clear the active slot of every expired ownership."""
    at = at or now()
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            update(CandidateOwnership)
            .where(
                CandidateOwnership.active_candidate_id.is_not(None),
                CandidateOwnership.expires_at < at,
            )
            .values(active_candidate_id=None, released_at=at, release_reason="expired")
            .execution_options(synchronize_session=False)
        )
        await commit_or_fail(session, "ownership expiry")
        if result.rowcount:
            logger.info(f"Expired {result.rowcount} candidate ownerships")
        return result.rowcount


async def get_candidate_ownerships(tenant_id: str, candidate_id: int) -> list[dict[str, Any]]:
    """Ownership history of a candidate, newest first."""
    async with AsyncSessionLocal() as session:
        await get_scoped(session, Candidate, candidate_id, tenant_id)
        result = await session.execute(
            select(CandidateOwnership)
            .where(
                CandidateOwnership.tenant_id == tenant_id,
                CandidateOwnership.candidate_id == candidate_id,
            )
            .order_by(CandidateOwnership.first_submitted_at.desc())
        )
        return [serialize_ownership(o) for o in result.scalars().all()]
