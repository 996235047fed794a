"""
Distribution endpoints.

Lifecycle of a job offered to an agency, candidate submissions against
it and placements of accepted submissions.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from api.dependencies import get_actor, get_tenant_id
from api.schemas.common import ERROR_RESPONSES
from api.schemas.candidates import CandidateSubmissionCreate
from api.schemas.jobs import PlacementCreate
from api.services import distributions as distribution_service
from database.models.distributions import DistributionStatus

router = APIRouter(prefix="/distributions", tags=["distributions"], responses=ERROR_RESPONSES)


@router.get("", summary="List Distributions")
async def list_distributions(
    job_id: Optional[int] = Query(None),
    agency_id: Optional[int] = Query(None),
    distribution_status: Optional[DistributionStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
):
    return await distribution_service.list_distributions(
        tenant_id, job_id, agency_id, distribution_status, limit, offset
    )


@router.get("/{distribution_id}", summary="Get Distribution")
async def get_distribution(
    distribution_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await distribution_service.get_distribution(tenant_id, distribution_id)


# ==================== Submissions ===================== #


@router.post(
    "/{distribution_id}/submissions",
    status_code=status.HTTP_201_CREATED,
    summary="Submit Candidate",
)
async def submit_candidate(
    body: CandidateSubmissionCreate,
    distribution_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    """
    Submit a candidate through a distribution.

    The candidate is claimed for the agency unless another agency already
    owns it; a protected candidate answers 409 with the owner in ``details``.
    """
    return await distribution_service.submit_candidate(
        tenant_id, distribution_id, body.to_identity(), body.profile
    )


@router.get("/{distribution_id}/submissions", summary="List Submissions")
async def list_submissions(
    distribution_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await distribution_service.list_submissions(tenant_id, distribution_id)


@router.post("/submissions/{submission_id}/accept", summary="Accept Submission")
async def accept_submission(
    submission_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await distribution_service.accept_submission(tenant_id, submission_id)


@router.post("/submissions/{submission_id}/reject", summary="Reject Submission")
async def reject_submission(
    submission_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await distribution_service.reject_submission(tenant_id, submission_id)


@router.post(
    "/submissions/{submission_id}/placement",
    status_code=status.HTTP_201_CREATED,
    summary="Record Placement",
)
async def record_placement(
    body: PlacementCreate,
    submission_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor),
):
    """Price the placement and charge the fee to the budget in one transaction."""
    return await distribution_service.record_placement(
        tenant_id,
        submission_id,
        body.to_inputs(),
        contract_type=body.contract_type,
        budget_id=body.budget_id,
        billed_hours=body.billed_hours,
        created_by=actor,
        at=body.at,
    )


# ==================== Lifecycle ===================== #


_TRANSITIONS = {
    "accept": distribution_service.accept_distribution,
    "decline": distribution_service.decline_distribution,
    "pause": distribution_service.pause_distribution,
    "resume": distribution_service.resume_distribution,
    "complete": distribution_service.complete_distribution,
    "cancel": distribution_service.cancel_distribution,
}


@router.post("/{distribution_id}/{action}", summary="Change Distribution Status")
async def transition_distribution(
    distribution_id: int = Path(...),
    action: str = Path(..., pattern="^(accept|decline|pause|resume|complete|cancel)$"),
    tenant_id: str = Depends(get_tenant_id),
):
    """Apply a lifecycle action; invalid transitions answer 409."""
    return await _TRANSITIONS[action](tenant_id, distribution_id)
