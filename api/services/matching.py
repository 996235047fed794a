"""
Matching service functions.

Loads the agencies whose specializations overlap a job, their coverage and
their latest performance snapshot, and ranks them with
``core.calculations.matching``. Snapshot loading is allowed to fail: the
match then runs on the neutral performance prior and says so in its
warnings.
"""

from datetime import timedelta
from typing import Any, Optional
import logging

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.calculations.matching import MatchWeights, rank_matches, score_agency
from core.config import settings
from core.utils.datetime import as_utc, now
from database.engine import AsyncSessionLocal, get_scoped
from database.models.agencies import (
    Agency,
    AgencySpecialization,
    AgencyPerformanceSnapshot,
)
from database.models.jobs import Job

logger = logging.getLogger(__name__)


def configured_weights() -> MatchWeights:
    return MatchWeights(
        specialization=settings.match_weight_specialization,
        geographic=settings.match_weight_geographic,
        performance=settings.match_weight_performance,
    )


async def load_candidate_agencies(
    session: AsyncSession, tenant_id: str, job: Job
) -> list[Agency]:
    """Active agencies with at least one specialization in the job's category."""
    result = await session.execute(
        select(Agency)
        .options(selectinload(Agency.specializations), selectinload(Agency.coverage))
        .where(
            Agency.tenant_id == tenant_id,
            Agency.is_active.is_(True),
            Agency.id.in_(
                select(AgencySpecialization.agency_id).where(
                    AgencySpecialization.tenant_id == tenant_id,
                    AgencySpecialization.category == job.category,
                )
            ),
        )
        .order_by(Agency.id)
    )
    return list(result.scalars().all())


async def load_latest_snapshots(
    session: AsyncSession, tenant_id: str, agency_ids: list[int]
) -> dict[int, AgencyPerformanceSnapshot]:
    """Newest snapshot per agency."""
    if not agency_ids:
        return {}
    ranked = (
        select(
            AgencyPerformanceSnapshot.id,
            func.row_number()
            .over(
                partition_by=AgencyPerformanceSnapshot.agency_id,
                order_by=(
                    AgencyPerformanceSnapshot.computed_at.desc(),
                    AgencyPerformanceSnapshot.id.desc(),
                ),
            )
            .label("position"),
        )
        .where(
            AgencyPerformanceSnapshot.tenant_id == tenant_id,
            AgencyPerformanceSnapshot.agency_id.in_(agency_ids),
        )
        .subquery()
    )
    result = await session.execute(
        select(AgencyPerformanceSnapshot).join(
            ranked,
            (ranked.c.id == AgencyPerformanceSnapshot.id) & (ranked.c.position == 1),
        )
    )
    return {s.agency_id: s for s in result.scalars().all()}


async def _snapshots_or_neutral(
    session: AsyncSession, tenant_id: str, agency_ids: list[int], warnings: list[dict]
) -> dict[int, AgencyPerformanceSnapshot]:
    try:
        async with session.begin_nested():
            return await load_latest_snapshots(session, tenant_id, agency_ids)
    except SQLAlchemyError as e:
        logger.warning(f"Performance snapshots unavailable, using neutral prior: {e}")
        warnings.append(
            {
                "code": "performance_snapshots_unavailable",
                "message": "Performance history could not be loaded; "
                "every agency was scored with the neutral performance prior",
            }
        )
        return {}


async def rank_agencies_for_job(
    session: AsyncSession,
    tenant_id: str,
    job: Job,
    limit: Optional[int] = None,
) -> tuple[list, list[dict[str, Any]]]:
    """Ranked AgencyMatch list and warnings, inside the caller's session."""
    warnings: list[dict[str, Any]] = []
    agencies = await load_candidate_agencies(session, tenant_id, job)
    snapshots = await _snapshots_or_neutral(
        session, tenant_id, [a.id for a in agencies], warnings
    )

    weights = configured_weights()
    matches = []
    for agency in agencies:
        match = score_agency(
            agency, job, agency.specializations, agency.coverage, snapshots.get(agency.id), weights
        )
        if match is not None:
            matches.append(match)

    ranked = rank_matches(matches, settings.match_default_limit if limit is None else limit)

    # Only agencies that made the cut are worth a warning
    stale_before = now() - timedelta(days=settings.performance_snapshot_max_age_days)
    for match in ranked:
        snapshot = snapshots.get(match.agency_id)
        if snapshot is not None and as_utc(snapshot.computed_at) < stale_before:
            warnings.append(
                {
                    "code": "stale_performance_snapshot",
                    "agency_id": match.agency_id,
                    "message": f"Latest performance snapshot is from "
                    f"{as_utc(snapshot.computed_at).date().isoformat()}",
                }
            )
    return ranked, warnings


async def match_agencies_to_job(
    tenant_id: str,
    job_id: int,
    limit: Optional[int] = None,
) -> dict[str, Any]:
    """
    Rank the agencies that can work a job.

    An empty ``matches`` list is a valid result when no agency has an
    overlapping specialization.
    """
    async with AsyncSessionLocal() as session:
        job = await get_scoped(session, Job, job_id, tenant_id)
        ranked, warnings = await rank_agencies_for_job(session, tenant_id, job, limit)

    logger.info(f"Matched {len(ranked)} agencies to job {job_id}")
    return {
        "job_id": job_id,
        "matches": [m.to_dict() for m in ranked],
        "warnings": warnings,
    }
