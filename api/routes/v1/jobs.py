"""
Job endpoints.

Jobs, agency matching for a job and distribution of a job to agencies.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from api.dependencies import get_tenant_id
from api.schemas.common import ERROR_RESPONSES
from api.schemas.jobs import AutoDistribute, DistributionCreate, JobCreate
from api.services import budgets as budget_service
from api.services import distributions as distribution_service
from api.services import jobs as job_service
from api.services import matching as matching_service
from database.models.jobs import JobStatus

router = APIRouter(prefix="/jobs", tags=["jobs"], responses=ERROR_RESPONSES)


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create Job")
async def create_job(body: JobCreate, tenant_id: str = Depends(get_tenant_id)):
    return await job_service.create_job(tenant_id, **body.model_dump())


@router.get("", summary="List Jobs")
async def list_jobs(
    job_status: Optional[JobStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
):
    return await job_service.list_jobs(tenant_id, job_status, limit, offset)


@router.get("/{job_id}", summary="Get Job")
async def get_job(
    job_id: int = Path(..., description="Job ID"),
    tenant_id: str = Depends(get_tenant_id),
):
    return await job_service.get_job(tenant_id, job_id)


@router.get("/{job_id}/matches", summary="Match Agencies To Job")
async def match_agencies(
    job_id: int = Path(...),
    limit: Optional[int] = Query(None, ge=1, le=100),
    tenant_id: str = Depends(get_tenant_id),
):
    """
    Rank the tenant's active agencies for the job.

    Scores combine specialization, geographic and performance fit; the
    response carries warnings for agencies ranked on neutral performance.
    """
    return await matching_service.match_agencies_to_job(tenant_id, job_id, limit)


@router.post(
    "/{job_id}/distributions",
    status_code=status.HTTP_201_CREATED,
    summary="Distribute Job To Agency",
)
async def create_distribution(
    body: DistributionCreate,
    job_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await distribution_service.create_distribution(tenant_id, job_id, **body.model_dump())


@router.post("/{job_id}/distribute", summary="Distribute Job To Best Matches")
async def distribute_job(
    job_id: int = Path(...),
    body: Optional[AutoDistribute] = None,
    tenant_id: str = Depends(get_tenant_id),
):
    return await distribution_service.distribute_job(tenant_id, job_id, body.limit if body else None)


@router.get("/{job_id}/distributions/stats", summary="Distribution Statistics")
async def get_distribution_stats(
    job_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await distribution_service.get_distribution_stats(tenant_id, job_id)


@router.get("/{job_id}/budget", summary="Job Budget Check")
async def get_job_budget(
    job_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    """Whether the job's budget still admits submissions; only the remaining amount is shown."""
    return await budget_service.get_budget_for_job(tenant_id, job_id)


@router.post("/{job_id}/close", summary="Close Job")
async def close_job(
    job_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    """Close the job and every open distribution of it."""
    return await distribution_service.close_job(tenant_id, job_id)
