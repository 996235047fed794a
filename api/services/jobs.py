"""Job service functions."""

from decimal import Decimal
from typing import Any, Optional
import logging

from sqlalchemy import select

from database.engine import AsyncSessionLocal, get_scoped
from database.models.agencies import JobCategory, SeniorityLevel
from database.models.jobs import Job, JobStatus, EmploymentType, LocationType
from core.config import settings

logger = logging.getLogger(__name__)


def serialize_job(job: Job) -> dict[str, Any]:
    return {
        "id": job.id,
        "title": job.title,
        "category": job.category.value,
        "seniority": job.seniority.value,
        "employment_type": job.employment_type.value,
        "location_type": job.location_type.value,
        "country": job.country,
        "region": job.region,
        "city": job.city,
        "latitude": job.latitude,
        "longitude": job.longitude,
        "salary_annual": str(job.salary_annual) if job.salary_annual is not None else None,
        "hourly_rate": str(job.hourly_rate) if job.hourly_rate is not None else None,
        "currency": job.currency,
        "company_id": job.company_id,
        "agreement_id": job.agreement_id,
        "budget_id": job.budget_id,
        "status": job.status.value,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "closed_at": job.closed_at.isoformat() if job.closed_at else None,
    }


async def create_job(
    tenant_id: str,
    title: str,
    category: JobCategory,
    seniority: SeniorityLevel,
    employment_type: EmploymentType = EmploymentType.PERMANENT,
    location_type: LocationType = LocationType.ONSITE,
    country: Optional[str] = None,
    region: Optional[str] = None,
    city: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    salary_annual: Optional[Decimal] = None,
    hourly_rate: Optional[Decimal] = None,
    currency: Optional[str] = None,
    company_id: Optional[int] = None,
    agreement_id: Optional[int] = None,
    budget_id: Optional[int] = None,
) -> dict[str, Any]:
    """Register the engine's read model of a job."""
    async with AsyncSessionLocal() as session:
        job = Job(
            tenant_id=tenant_id,
            title=title,
            category=category,
            seniority=seniority,
            employment_type=employment_type,
            location_type=location_type,
            country=country,
            region=region,
            city=city,
            latitude=latitude,
            longitude=longitude,
            salary_annual=salary_annual,
            hourly_rate=hourly_rate,
            currency=(currency or settings.default_currency).upper(),
            company_id=company_id,
            agreement_id=agreement_id,
            budget_id=budget_id,
            status=JobStatus.OPEN,
        )
        session.add(job)
        await session.commit()
        logger.info(f"Registered job {job.id} ({category.value}/{seniority.value})")
        return serialize_job(job)


async def get_job(tenant_id: str, job_id: int) -> dict[str, Any]:
    async with AsyncSessionLocal() as session:
        job = await get_scoped(session, Job, job_id, tenant_id)
        return serialize_job(job)


async def list_jobs(
    tenant_id: str,
    status: Optional[JobStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    async with AsyncSessionLocal() as session:
        query = select(Job).where(Job.tenant_id == tenant_id)
        if status:
            query = query.where(Job.status == status)
        result = await session.execute(query.order_by(Job.id).limit(limit).offset(offset))
        return [serialize_job(job) for job in result.scalars().all()]
