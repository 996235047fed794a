"""Candidate service functions: identity resolution and profile enrichment."""

from typing import Any, Optional
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.utils.validators import CandidateIdentity
from database.engine import AsyncSessionLocal, get_scoped
from database.models.candidates import Candidate
from database.security import describe_identity

logger = logging.getLogger(__name__)

IDENTITY_FIELDS = ("email", "phone", "linkedin_url")


def serialize_candidate(candidate: Candidate) -> dict[str, Any]:
    return {
        "id": candidate.id,
        "email": candidate.email,
        "phone": candidate.phone,
        "linkedin_url": candidate.linkedin_url,
        "full_name": candidate.full_name,
        "skills": candidate.skills or [],
        "years_experience": candidate.years_experience,
        "availability": candidate.availability,
        "created_at": candidate.created_at.isoformat() if candidate.created_at else None,
    }


async def _find_by_identity(
    session: AsyncSession, tenant_id: str, identity: CandidateIdentity
) -> dict[str, Candidate]:
    """Existing candidates per identity key (email, phone, linkedin_url)."""
    found: dict[str, Candidate] = {}
    for field in IDENTITY_FIELDS:
        value = getattr(identity, field)
        if not value:
            continue
        result = await session.execute(
            select(Candidate).where(
                Candidate.tenant_id == tenant_id, getattr(Candidate, field) == value
            )
        )
        candidate = result.scalar_one_or_none()
        if candidate is not None:
            found[field] = candidate
    return found


def enrich_profile(candidate: Candidate, profile: Optional[dict[str, Any]]) -> None:
    """Merge a later submission's profile data into the candidate."""
    if not profile:
        return
    skills = profile.get("skills")
    if skills:
        merged = list(candidate.skills or [])
        merged.extend(s for s in skills if s not in merged)
        candidate.skills = merged
    if profile.get("years_experience") is not None:
        candidate.years_experience = max(
            candidate.years_experience or 0, float(profile["years_experience"])
        )
    if profile.get("availability"):
        candidate.availability = profile["availability"]
    extra = {
        k: v
        for k, v in profile.items()
        if k not in {"skills", "years_experience", "availability"}
    }
    if extra:
        candidate.profile = {**(candidate.profile or {}), **extra}


async def resolve_candidate(
    session: AsyncSession,
    tenant_id: str,
    identity: CandidateIdentity,
    profile: Optional[dict[str, Any]] = None,
) -> tuple[Candidate, bool]:
    """
    Find the candidate for an identity or create one, inside the caller's
    transaction.

    The match with the highest-priority key wins (email, phone, LinkedIn).
    Missing identity fields are only filled in when no other candidate
    already holds the value. Returns ``(candidate, created)``.
    """
    found = await _find_by_identity(session, tenant_id, identity)
    if found:
        candidate = next(found[f] for f in IDENTITY_FIELDS if f in found)
        for field in IDENTITY_FIELDS:
            value = getattr(identity, field)
            if value and getattr(candidate, field) is None and field not in found:
                setattr(candidate, field, value)
        if identity.full_name and not candidate.full_name:
            candidate.full_name = identity.full_name
        enrich_profile(candidate, profile)
        await session.flush()
        return candidate, False

    candidate = Candidate(
        tenant_id=tenant_id,
        email=identity.email,
        phone=identity.phone,
        linkedin_url=identity.linkedin_url,
        full_name=identity.full_name,
        skills=[],
        profile={},
    )
    enrich_profile(candidate, profile)
    try:
        async with session.begin_nested():
            session.add(candidate)
            await session.flush()
    except IntegrityError:
        # Created concurrently by another submission; use that row
        found = await _find_by_identity(session, tenant_id, identity)
        if not found:
            raise
        candidate = next(found[f] for f in IDENTITY_FIELDS if f in found)
        enrich_profile(candidate, profile)
        return candidate, False

    logger.info(f"Created candidate {candidate.id} ({describe_identity(identity)})")
    return candidate, True


async def get_candidate(tenant_id: str, candidate_id: int) -> dict[str, Any]:
    async with AsyncSessionLocal() as session:
        candidate = await get_scoped(session, Candidate, candidate_id, tenant_id)
        return serialize_candidate(candidate)
