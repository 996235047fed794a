"""
Candidate ownership endpoints.

Duplicate checks before submission, manual claims and releases.
"""

from fastapi import APIRouter, Depends, Path, status

from api.dependencies import get_tenant_id
from api.schemas.common import ERROR_RESPONSES
from api.schemas.candidates import CandidateIdentityIn, OwnershipClaim, OwnershipRelease
from api.services import candidates as candidate_service
from api.services import ownership as ownership_service

router = APIRouter(prefix="/candidates", tags=["candidates"], responses=ERROR_RESPONSES)


@router.post("/duplicates", summary="Check Duplicate Candidate")
async def check_duplicate(body: CandidateIdentityIn, tenant_id: str = Depends(get_tenant_id)):
    """
    Look up the current owner of a candidate identity.

    Returns ``{"owner": null}`` when nobody holds active protection.
    """
    owner = await ownership_service.check_duplicate(tenant_id, body.to_identity())
    return {"owner": owner}


@router.post("/ownerships", status_code=status.HTTP_201_CREATED, summary="Claim Candidate")
async def claim(body: OwnershipClaim, tenant_id: str = Depends(get_tenant_id)):
    return await ownership_service.claim(
        tenant_id, body.to_identity(), body.agency_id, body.job_id
    )


@router.post("/ownerships/{ownership_id}/release", summary="Release Ownership")
async def release(
    body: OwnershipRelease,
    ownership_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await ownership_service.release(tenant_id, ownership_id, body.reason)


@router.get("/{candidate_id}", summary="Get Candidate")
async def get_candidate(
    candidate_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await candidate_service.get_candidate(tenant_id, candidate_id)


@router.get("/{candidate_id}/ownerships", summary="Candidate Ownership History")
async def get_candidate_ownerships(
    candidate_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await ownership_service.get_candidate_ownerships(tenant_id, candidate_id)
