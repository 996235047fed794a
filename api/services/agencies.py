"""Agency profile service functions: agencies, specializations and coverage."""

from typing import Any, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.exceptions import NotFound
from database.engine import AsyncSessionLocal, get_scoped
from database.models.agencies import (
    Agency,
    AgencySpecialization,
    AgencyGeographicCoverage,
    AgencyPerformanceSnapshot,
    JobCategory,
    SeniorityLevel,
)

logger = logging.getLogger(__name__)


def serialize_agency(agency: Agency, include_profile: bool = False) -> dict[str, Any]:
    data = {
        "id": agency.id,
        "name": agency.name,
        "contact_email": agency.contact_email,
        "is_active": agency.is_active,
        "created_at": agency.created_at.isoformat() if agency.created_at else None,
    }
    if include_profile:
        data["specializations"] = [serialize_specialization(s) for s in agency.specializations]
        data["coverage"] = [serialize_coverage(c) for c in agency.coverage]
    return data


def serialize_specialization(entry: AgencySpecialization) -> dict[str, Any]:
    return {
        "id": entry.id,
        "agency_id": entry.agency_id,
        "category": entry.category.value,
        "subcategory": entry.subcategory,
        "seniority_levels": entry.seniority_levels or [],
        "years_experience": entry.years_experience,
        "match_priority": entry.match_priority,
        "successful_placements": entry.successful_placements,
    }


def serialize_coverage(entry: AgencyGeographicCoverage) -> dict[str, Any]:
    return {
        "id": entry.id,
        "agency_id": entry.agency_id,
        "country": entry.country,
        "region": entry.region,
        "city": entry.city,
        "latitude": entry.latitude,
        "longitude": entry.longitude,
        "radius_km": entry.radius_km,
        "priority": entry.priority,
    }


def serialize_snapshot(snapshot: AgencyPerformanceSnapshot) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "agency_id": snapshot.agency_id,
        "period_start": snapshot.period_start.isoformat(),
        "period_end": snapshot.period_end.isoformat(),
        "jobs_received": snapshot.jobs_received,
        "candidates_submitted": snapshot.candidates_submitted,
        "placements_made": snapshot.placements_made,
        "fill_rate": snapshot.fill_rate,
        "placement_rate": snapshot.placement_rate,
        "acceptance_rate": snapshot.acceptance_rate,
        "submission_rate": snapshot.submission_rate,
        "response_time_avg_hours": snapshot.response_time_avg_hours,
        "performance_score": snapshot.performance_score,
        "performance_tier": snapshot.performance_tier.value,
        "notes": snapshot.notes,
        "computed_at": snapshot.computed_at.isoformat(),
    }


async def create_agency(
    tenant_id: str,
    name: str,
    contact_email: Optional[str] = None,
) -> dict[str, Any]:
    """Register an agency in a tenant."""
    async with AsyncSessionLocal() as session:
        agency = Agency(tenant_id=tenant_id, name=name, contact_email=contact_email)
        session.add(agency)
        await session.commit()
        logger.info(f"Registered agency {agency.id} in tenant {tenant_id}")
        return serialize_agency(agency)


async def get_agency(tenant_id: str, agency_id: int) -> dict[str, Any]:
    """Agency with its specializations and coverage."""
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(Agency)
            .options(selectinload(Agency.specializations), selectinload(Agency.coverage))
            .where(Agency.id == agency_id, Agency.tenant_id == tenant_id)
        )
        agency = result.scalar_one_or_none()
        if agency is None:
            raise NotFound("Agency", agency_id)
        return serialize_agency(agency, include_profile=True)


async def list_agencies(
    tenant_id: str,
    active_only: bool = True,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    async with AsyncSessionLocal() as session:
        query = select(Agency).where(Agency.tenant_id == tenant_id)
        if active_only:
            query = query.where(Agency.is_active.is_(True))
        result = await session.execute(query.order_by(Agency.id).limit(limit).offset(offset))
        return [serialize_agency(a) for a in result.scalars().all()]


async def set_agency_active(tenant_id: str, agency_id: int, is_active: bool) -> dict[str, Any]:
    async with AsyncSessionLocal() as session:
        agency = await get_scoped(session, Agency, agency_id, tenant_id)
        agency.is_active = is_active
        await session.commit()
        return serialize_agency(agency)


async def add_specialization(
    tenant_id: str,
    agency_id: int,
    category: JobCategory,
    seniority_levels: Optional[list[SeniorityLevel]] = None,
    years_experience: float = 0,
    match_priority: int = 5,
    subcategory: Optional[str] = None,
    successful_placements: int = 0,
) -> dict[str, Any]:
    """Add an expertise area to an agency profile."""
    async with AsyncSessionLocal() as session:
        await get_scoped(session, Agency, agency_id, tenant_id)
        entry = AgencySpecialization(
            tenant_id=tenant_id,
            agency_id=agency_id,
            category=category,
            subcategory=subcategory,
            seniority_levels=[level.value for level in seniority_levels or []],
            years_experience=years_experience,
            match_priority=match_priority,
            successful_placements=successful_placements,
        )
        session.add(entry)
        await session.commit()
        return serialize_specialization(entry)


async def update_specialization(
    tenant_id: str,
    specialization_id: int,
    **changes: Any,
) -> dict[str, Any]:
    """Update fields of a specialization entry; unknown fields are ignored."""
    allowed = {"subcategory", "years_experience", "match_priority", "successful_placements"}
    async with AsyncSessionLocal() as session:
        entry = await get_scoped(session, AgencySpecialization, specialization_id, tenant_id)
        for key, value in changes.items():
            if key in allowed and value is not None:
                setattr(entry, key, value)
        if changes.get("seniority_levels") is not None:
            entry.seniority_levels = [
                SeniorityLevel(level).value for level in changes["seniority_levels"]
            ]
        await session.commit()
        return serialize_specialization(entry)


async def remove_specialization(tenant_id: str, specialization_id: int) -> None:
    async with AsyncSessionLocal() as session:
        entry = await get_scoped(session, AgencySpecialization, specialization_id, tenant_id)
        await session.delete(entry)
        await session.commit()


async def add_coverage(
    tenant_id: str,
    agency_id: int,
    country: str,
    region: Optional[str] = None,
    city: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius_km: Optional[float] = None,
    priority: int = 5,
) -> dict[str, Any]:
    """Add a geographic coverage entry to an agency profile."""
    async with AsyncSessionLocal() as session:
        await get_scoped(session, Agency, agency_id, tenant_id)
        entry = AgencyGeographicCoverage(
            tenant_id=tenant_id,
            agency_id=agency_id,
            country=country,
            region=region,
            city=city,
            latitude=latitude,
            longitude=longitude,
            radius_km=radius_km,
            priority=priority,
        )
        session.add(entry)
        await session.commit()
        return serialize_coverage(entry)


async def remove_coverage(tenant_id: str, coverage_id: int) -> None:
    async with AsyncSessionLocal() as session:
        entry = await get_scoped(session, AgencyGeographicCoverage, coverage_id, tenant_id)
        await session.delete(entry)
        await session.commit()


async def latest_snapshot(
    session: AsyncSession, tenant_id: str, agency_id: int
) -> Optional[AgencyPerformanceSnapshot]:
    result = await session.execute(
        select(AgencyPerformanceSnapshot)
        .where(
            AgencyPerformanceSnapshot.tenant_id == tenant_id,
            AgencyPerformanceSnapshot.agency_id == agency_id,
        )
        .order_by(
            AgencyPerformanceSnapshot.computed_at.desc(),
            AgencyPerformanceSnapshot.id.desc(),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_performance_snapshots(
    tenant_id: str, agency_id: int, limit: int = 12
) -> list[dict[str, Any]]:
    """Most recent snapshots of an agency, newest first."""
    async with AsyncSessionLocal() as session:
        await get_scoped(session, Agency, agency_id, tenant_id)
        result = await session.execute(
            select(AgencyPerformanceSnapshot)
            .where(
                AgencyPerformanceSnapshot.tenant_id == tenant_id,
                AgencyPerformanceSnapshot.agency_id == agency_id,
            )
            .order_by(
                AgencyPerformanceSnapshot.computed_at.desc(),
                AgencyPerformanceSnapshot.id.desc(),
            )
            .limit(limit)
        )
        return [serialize_snapshot(s) for s in result.scalars().all()]
