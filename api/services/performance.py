"""
Agency performance snapshot service functions.

Snapshots are derived from distribution history and appended, never
updated; matching and SLA evaluation read the newest one per agency.
"""

from datetime import datetime
from typing import Any, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.services.agencies import serialize_snapshot
from api.services.matching import load_latest_snapshots
from core.calculations.performance import PerformanceMetrics, assign_tiers, compute_metrics
from core.exceptions import InvalidTransaction
from core.utils.datetime import now, add_days, hours_between
from database.engine import AsyncSessionLocal, commit_or_fail, get_scoped
from database.models.agencies import Agency, AgencyPerformanceSnapshot
from database.models.distributions import Distribution, DistributionStatus

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_DAYS = 90


async def agency_metrics(
    session: AsyncSession,
    tenant_id: str,
    agency_id: int,
    period_start: datetime,
    period_end: datetime,
) -> PerformanceMetrics:
    """Metrics over the distributions an agency received in the period."""
    result = await session.execute(
        select(Distribution).where(
            Distribution.tenant_id == tenant_id,
            Distribution.agency_id == agency_id,
            Distribution.distributed_at >= period_start,
            Distribution.distributed_at < period_end,
        )
    )
    distributions = result.scalars().all()
    closed = [
        d
        for d in distributions
        if d.status in (DistributionStatus.COMPLETED, DistributionStatus.CANCELLED)
    ]
    return compute_metrics(
        jobs_received=len(distributions),
        jobs_accepted=sum(1 for d in distributions if d.accepted_at is not None),
        jobs_with_submission=sum(1 for d in distributions if d.first_submission_at is not None),
        closed_distributions=len(closed),
        filled_distributions=sum(1 for d in closed if d.accepted_count > 0),
        candidates_submitted=sum(d.submitted_count for d in distributions),
        candidates_accepted=sum(d.accepted_count for d in distributions),
        response_hours=[
            hours_between(d.distributed_at, d.first_submission_at)
            for d in distributions
            if d.first_submission_at is not None
        ],
    )


def _snapshot(
    tenant_id: str,
    agency_id: int,
    metrics: PerformanceMetrics,
    tier,
    period_start: datetime,
    period_end: datetime,
    at: datetime,
) -> AgencyPerformanceSnapshot:
    return AgencyPerformanceSnapshot(
        tenant_id=tenant_id,
        agency_id=agency_id,
        period_start=period_start,
        period_end=period_end,
        jobs_received=metrics.jobs_received,
        candidates_submitted=metrics.candidates_submitted,
        placements_made=metrics.placements_made,
        fill_rate=metrics.fill_rate,
        placement_rate=metrics.placement_rate,
        acceptance_rate=metrics.acceptance_rate,
        submission_rate=metrics.submission_rate,
        response_time_avg_hours=metrics.response_time_avg_hours,
        performance_score=metrics.performance_score,
        performance_tier=tier,
        notes=None if metrics.has_history else "No distributions in period",
        computed_at=at,
    )


def _period(
    period_start: Optional[datetime], period_end: Optional[datetime], at: datetime
) -> tuple[datetime, datetime]:
    period_end = period_end or at
    period_start = period_start or add_days(period_end, -DEFAULT_PERIOD_DAYS)
    if period_start >= period_end:
        raise InvalidTransaction("period_start must be before period_end")
    return period_start, period_end


async def recompute_snapshot(
    tenant_id: str,
    agency_id: int,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Append a fresh snapshot for one agency.

    The tier is ranked against the latest scores of the tenant's other
    agencies.
    """
    at = now()
    period_start, period_end = _period(period_start, period_end, at)
    async with AsyncSessionLocal() as session:
        await get_scoped(session, Agency, agency_id, tenant_id)
        metrics = await agency_metrics(session, tenant_id, agency_id, period_start, period_end)

        result = await session.execute(
            select(Agency.id).where(
                Agency.tenant_id == tenant_id,
                Agency.is_active.is_(True),
                Agency.id != agency_id,
            )
        )
        peers = await load_latest_snapshots(session, tenant_id, list(result.scalars().all()))
        scores: dict[int, Optional[float]] = {
            peer_id: s.performance_score if s.jobs_received else None
            for peer_id, s in peers.items()
        }
        scores[agency_id] = metrics.performance_score if metrics.has_history else None
        tier = assign_tiers(scores)[agency_id]

        snapshot = _snapshot(tenant_id, agency_id, metrics, tier, period_start, period_end, at)
        session.add(snapshot)
        await commit_or_fail(session, "performance snapshot")
        logger.info(
            f"Snapshot for agency {agency_id}: score {metrics.performance_score} ({tier.value})"
        )
        return serialize_snapshot(snapshot)


async def recompute_tenant_snapshots(
    tenant_id: str,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
) -> list[dict[str, Any]]:
    """Append snapshots for every active agency of a tenant, tiered together."""
    at = now()
    period_start, period_end = _period(period_start, period_end, at)
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(Agency.id)
            .where(Agency.tenant_id == tenant_id, Agency.is_active.is_(True))
            .order_by(Agency.id)
        )
        agency_ids = list(result.scalars().all())
        metrics = {
            agency_id: await agency_metrics(session, tenant_id, agency_id, period_start, period_end)
            for agency_id in agency_ids
        }
        tiers = assign_tiers(
            {
                agency_id: m.performance_score if m.has_history else None
                for agency_id, m in metrics.items()
            }
        )
        snapshots = [
            _snapshot(tenant_id, agency_id, metrics[agency_id], tiers[agency_id], period_start, period_end, at)
            for agency_id in agency_ids
        ]
        session.add_all(snapshots)
        await commit_or_fail(session, "tenant performance snapshots")

    logger.info(f"Recomputed {len(snapshots)} performance snapshots for tenant {tenant_id}")
    return [serialize_snapshot(s) for s in snapshots]


async def recompute_all_snapshots() -> int:
    """Batch task: recompute snapshots for every tenant with active agencies."""
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(Agency.tenant_id).where(Agency.is_active.is_(True)).distinct()
        )
        tenants = list(result.scalars().all())

    total = 0
    for tenant_id in tenants:
        total += len(await recompute_tenant_snapshots(tenant_id))
    return total
