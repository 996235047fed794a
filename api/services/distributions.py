"""
Distribution service functions.

Every state change is a conditional UPDATE on the expected current status,
so two concurrent transitions cannot both apply. Exclusivity is a unique
slot column (``exclusive_job_id``) held while an EXCLUSIVE distribution is
open and its window has not lapsed.
"""

from collections import Counter
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional
import logging

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from api.services import budgets as budget_service
from api.services import fees as fee_service
from api.services.candidates import resolve_candidate
from api.services.matching import rank_agencies_for_job
from api.services.notifications import enqueue_budget_alerts
from api.services.ownership import claim_candidate, guard_identity
from core.calculations.fees import CompensationInputs
from core.config import settings
from core.exceptions import (
    DistributionCapReached,
    DistributionNotActive,
    DuplicateDistribution,
    DuplicateSubmission,
    ExclusivityConflict,
    InvalidDistributionTransition,
    InvalidTransaction,
    JobNotOpen,
    OwnershipConflict,
)
from core.utils.datetime import now, add_days
from core.utils.formatting import round_money
from core.utils.validators import CandidateIdentity
from database.engine import AsyncSessionLocal, commit_or_fail, get_scoped
from database.models.agencies import Agency
from database.models.budgets import TransactionSource, TransactionType
from database.models.candidates import CandidateOwnership
from database.models.distributions import (
    Distribution,
    DistributionSubmission,
    DistributionTier,
    DistributionStatus,
    ClosureReason,
    SubmissionStatus,
    OPEN_DISTRIBUTION_STATUSES,
)
from database.models.jobs import Job, JobStatus, EmploymentType
from database.models.rate_cards import PlacementFee

logger = logging.getLogger(__name__)


def serialize_distribution(distribution: Distribution) -> dict[str, Any]:
    return {
        "id": distribution.id,
        "job_id": distribution.job_id,
        "agency_id": distribution.agency_id,
        "tier": distribution.tier.value,
        "status": distribution.status.value,
        "require_acceptance": distribution.require_acceptance,
        "exclusive_until": (
            distribution.exclusive_until.isoformat() if distribution.exclusive_until else None
        ),
        "holds_exclusivity": distribution.exclusive_job_id is not None,
        "max_candidates": distribution.max_candidates,
        "submitted_count": distribution.submitted_count,
        "accepted_count": distribution.accepted_count,
        "rejected_count": distribution.rejected_count,
        "match_score": distribution.match_score,
        "distributed_at": distribution.distributed_at.isoformat(),
        "accepted_at": distribution.accepted_at.isoformat() if distribution.accepted_at else None,
        "first_submission_at": (
            distribution.first_submission_at.isoformat()
            if distribution.first_submission_at
            else None
        ),
        "closed_at": distribution.closed_at.isoformat() if distribution.closed_at else None,
        "closure_reason": distribution.closure_reason.value if distribution.closure_reason else None,
    }


def serialize_submission(submission: DistributionSubmission) -> dict[str, Any]:
    return {
        "id": submission.id,
        "distribution_id": submission.distribution_id,
        "candidate_id": submission.candidate_id,
        "ownership_id": submission.ownership_id,
        "ownership_status": submission.ownership_status.value,
        "status": submission.status.value,
        "possible_duplicate_of": submission.possible_duplicate_of,
        "submitted_at": submission.submitted_at.isoformat(),
        "decided_at": submission.decided_at.isoformat() if submission.decided_at else None,
    }


# ==================== Exclusivity ===================== #


async def _release_lapsed_exclusivity(
    session: AsyncSession, at: datetime, job_id: Optional[int] = None
) -> int:
    """Downgrade exclusive holders whose window has passed to PRIORITY."""
    query = update(Distribution).where(
        Distribution.exclusive_job_id.is_not(None),
        Distribution.exclusive_until <= at,
    )
    if job_id is not None:
        query = query.where(Distribution.exclusive_job_id == job_id)
    result = await session.execute(
        query.values(exclusive_job_id=None, tier=DistributionTier.PRIORITY)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def _exclusive_holder(session: AsyncSession, job_id: int) -> Optional[Distribution]:
    result = await session.execute(
        select(Distribution).where(Distribution.exclusive_job_id == job_id)
    )
    return result.scalar_one_or_none()


async def release_lapsed_exclusivity(at: Optional[datetime] = None) -> int:
    """Batch task: release every lapsed exclusivity window."""
    async with AsyncSessionLocal() as session:
        count = await _release_lapsed_exclusivity(session, at or now())
        await commit_or_fail(session, "exclusivity expiry")
        if count:
            logger.info(f"Released {count} lapsed exclusive distributions")
        return count


# ==================== Creation ===================== #


async def create_distribution(
    tenant_id: str,
    job_id: int,
    agency_id: int,
    tier: DistributionTier,
    max_candidates: Optional[int] = None,
    exclusive_days: Optional[int] = None,
    require_acceptance: bool = True,
    match_score: Optional[float] = None,
    at: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Offer a job to an agency.

    Raises:
        JobNotOpen: The job is not OPEN
        DuplicateDistribution: The job is already distributed to the agency
        ExclusivityConflict: Another EXCLUSIVE distribution holds the job
    """
    at = at or now()
    if max_candidates is not None and max_candidates < 1:
        raise InvalidTransaction("max_candidates must be at least 1", max_candidates=max_candidates)

    async with AsyncSessionLocal() as session:
        job = await get_scoped(session, Job, job_id, tenant_id)
        await get_scoped(session, Agency, agency_id, tenant_id)
        if job.status != JobStatus.OPEN:
            raise JobNotOpen(job_id, job.status)

        existing = await session.execute(
            select(Distribution.id).where(
                Distribution.job_id == job_id, Distribution.agency_id == agency_id
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise DuplicateDistribution(job_id, agency_id)

        exclusive = tier == DistributionTier.EXCLUSIVE
        if exclusive:
            await _release_lapsed_exclusivity(session, at, job_id)
            holder = await _exclusive_holder(session, job_id)
            if holder is not None:
                raise ExclusivityConflict(job_id, holder.id)

        distribution = Distribution(
            tenant_id=tenant_id,
            job_id=job_id,
            agency_id=agency_id,
            tier=tier,
            status=DistributionStatus.PENDING if require_acceptance else DistributionStatus.ACTIVE,
            require_acceptance=require_acceptance,
            max_candidates=max_candidates,
            match_score=match_score,
            distributed_at=at,
            accepted_at=None if require_acceptance else at,
            exclusive_until=(
                add_days(at, exclusive_days or settings.exclusive_window_days)
                if exclusive
                else None
            ),
            exclusive_job_id=job_id if exclusive else None,
        )
        try:
            async with session.begin_nested():
                session.add(distribution)
                await session.flush()
        except IntegrityError:
            holder = await _exclusive_holder(session, job_id) if exclusive else None
            if holder is not None:
                raise ExclusivityConflict(job_id, holder.id)
            raise DuplicateDistribution(job_id, agency_id)

        await commit_or_fail(session, "distribution creation")
        logger.info(
            f"Distributed job {job_id} to agency {agency_id} as {tier.value} "
            f"(distribution {distribution.id})"
        )
        return serialize_distribution(distribution)


async def distribute_job(
    tenant_id: str, job_id: int, limit: Optional[int] = None
) -> dict[str, Any]:
    """
    Match a job and open a distribution for every ranked agency at its
    recommended tier. Agencies that already have one are skipped; an
    exclusive recommendation that loses the exclusivity race becomes PRIORITY.
    """
    async with AsyncSessionLocal() as session:
        job = await get_scoped(session, Job, job_id, tenant_id)
        if job.status != JobStatus.OPEN:
            raise JobNotOpen(job_id, job.status)
        ranked, warnings = await rank_agencies_for_job(session, tenant_id, job, limit)

    created, skipped = [], []
    for match in ranked:
        tier = match.recommended_tier
        try:
            try:
                created.append(
                    await create_distribution(
                        tenant_id, job_id, match.agency_id, tier, match_score=match.score
                    )
                )
            except ExclusivityConflict:
                created.append(
                    await create_distribution(
                        tenant_id,
                        job_id,
                        match.agency_id,
                        DistributionTier.PRIORITY,
                        match_score=match.score,
                    )
                )
        except DuplicateDistribution:
            skipped.append(match.agency_id)

    return {
        "job_id": job_id,
        "created": created,
        "skipped_agency_ids": skipped,
        "warnings": warnings,
    }


# ==================== Transitions ===================== #


TERMINAL = (DistributionStatus.COMPLETED, DistributionStatus.CANCELLED)


async def _transition(
    tenant_id: str,
    distribution_id: int,
    action: str,
    from_statuses: Iterable[DistributionStatus],
    to_status: DistributionStatus,
    closure_reason: Optional[ClosureReason] = None,
) -> dict[str, Any]:
    at = now()
    values: dict[str, Any] = {"status": to_status}
    if to_status in TERMINAL:
        values.update(closed_at=at, closure_reason=closure_reason, exclusive_job_id=None)
    if action == "accept":
        values["accepted_at"] = at

    async with AsyncSessionLocal() as session:
        result = await session.execute(
            update(Distribution)
            .where(
                Distribution.id == distribution_id,
                Distribution.tenant_id == tenant_id,
                Distribution.status.in_(list(from_statuses)),
            )
            .values(**values)
            .returning(Distribution.id)
            .execution_options(synchronize_session=False)
        )
        if result.scalar_one_or_none() is None:
            distribution = await get_scoped(session, Distribution, distribution_id, tenant_id)
            raise InvalidDistributionTransition(distribution_id, distribution.status, action)

        await commit_or_fail(session, f"distribution {action}")
        distribution = await get_scoped(session, Distribution, distribution_id, tenant_id)
        logger.info(f"Distribution {distribution_id}: {action} -> {to_status.value}")
        return serialize_distribution(distribution)


async def accept_distribution(tenant_id: str, distribution_id: int) -> dict[str, Any]:
    return await _transition(
        tenant_id,
        distribution_id,
        "accept",
        [DistributionStatus.PENDING],
        DistributionStatus.ACTIVE,
    )


async def decline_distribution(tenant_id: str, distribution_id: int) -> dict[str, Any]:
    """Agency declines; candidates already submitted stay submitted."""
    return await _transition(
        tenant_id,
        distribution_id,
        "decline",
        [DistributionStatus.PENDING, DistributionStatus.ACTIVE],
        DistributionStatus.CANCELLED,
        ClosureReason.DECLINED,
    )


async def pause_distribution(tenant_id: str, distribution_id: int) -> dict[str, Any]:
    return await _transition(
        tenant_id,
        distribution_id,
        "pause",
        [DistributionStatus.ACTIVE],
        DistributionStatus.PAUSED,
    )


async def resume_distribution(tenant_id: str, distribution_id: int) -> dict[str, Any]:
    return await _transition(
        tenant_id,
        distribution_id,
        "resume",
        [DistributionStatus.PAUSED],
        DistributionStatus.ACTIVE,
    )


async def complete_distribution(tenant_id: str, distribution_id: int) -> dict[str, Any]:
    return await _transition(
        tenant_id,
        distribution_id,
        "complete",
        [DistributionStatus.ACTIVE, DistributionStatus.PAUSED],
        DistributionStatus.COMPLETED,
        ClosureReason.COMPLETED,
    )


async def cancel_distribution(tenant_id: str, distribution_id: int) -> dict[str, Any]:
    """Stop new submissions; candidates already submitted stay submitted."""
    return await _transition(
        tenant_id,
        distribution_id,
        "cancel",
        OPEN_DISTRIBUTION_STATUSES,
        DistributionStatus.CANCELLED,
        ClosureReason.CANCELLED,
    )


async def close_job(tenant_id: str, job_id: int) -> dict[str, Any]:
    """Close a job and complete all of its open distributions."""
    at = now()
    async with AsyncSessionLocal() as session:
        job = await get_scoped(session, Job, job_id, tenant_id)
        result = await session.execute(
            update(Job)
            .where(Job.id == job_id, Job.status != JobStatus.CLOSED)
            .values(status=JobStatus.CLOSED, closed_at=at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise JobNotOpen(job_id, job.status)

        closed = await session.execute(
            update(Distribution)
            .where(
                Distribution.job_id == job_id,
                Distribution.status.in_(list(OPEN_DISTRIBUTION_STATUSES)),
            )
            .values(
                status=DistributionStatus.COMPLETED,
                closure_reason=ClosureReason.JOB_CLOSED,
                closed_at=at,
                exclusive_job_id=None,
            )
            .execution_options(synchronize_session=False)
        )
        await commit_or_fail(session, "job closure")
        logger.info(f"Closed job {job_id}; completed {closed.rowcount} distributions")
        return {"job_id": job_id, "status": JobStatus.CLOSED.value, "closed_distributions": closed.rowcount}


# ==================== Submissions ===================== #


async def submit_candidate(
    tenant_id: str,
    distribution_id: int,
    identity: CandidateIdentity,
    profile: Optional[dict[str, Any]] = None,
    at: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Submit a candidate under a distribution.

    One database transaction covers candidate resolution, the ownership
    claim, the submission-cap increment and the submission row; any failure
    leaves nothing behind.

    Raises:
        DistributionNotActive: The distribution is not ACTIVE
        OwnershipConflict: Another agency owns the candidate
        DistributionCapReached: ``max_candidates`` submissions already made
        DuplicateSubmission: The candidate was already submitted here
    """
    at = at or now()
    warnings: list[dict[str, Any]] = []

    async with AsyncSessionLocal() as session:
        distribution = await get_scoped(session, Distribution, distribution_id, tenant_id)
        if distribution.status != DistributionStatus.ACTIVE:
            raise DistributionNotActive(distribution_id, distribution.status)
        agency_id, job_id = distribution.agency_id, distribution.job_id

        fuzzy = await guard_identity(session, tenant_id, identity, agency_id, at)
        candidate, created = await resolve_candidate(session, tenant_id, identity, profile)
        ownership, ownership_status = await claim_candidate(
            session, tenant_id, candidate.id, agency_id, job_id, at
        )
        if fuzzy is not None and fuzzy.candidate_id != candidate.id:
            warnings.append(
                {
                    "code": "possible_duplicate",
                    "candidate_id": fuzzy.candidate_id,
                    "owner_agency_id": fuzzy.agency_id,
                    "message": "Name closely matches a candidate owned by another agency",
                }
            )

        counted = await session.execute(
            update(Distribution)
            .where(
                Distribution.id == distribution_id,
                Distribution.status == DistributionStatus.ACTIVE,
                or_(
                    Distribution.max_candidates.is_(None),
                    Distribution.submitted_count < Distribution.max_candidates,
                ),
            )
            .values(
                submitted_count=Distribution.submitted_count + 1,
                first_submission_at=func.coalesce(Distribution.first_submission_at, at),
            )
            .returning(Distribution.submitted_count, Distribution.max_candidates)
            .execution_options(synchronize_session=False)
        )
        row = counted.first()
        if row is None:
            await session.refresh(distribution)
            if distribution.status != DistributionStatus.ACTIVE:
                raise DistributionNotActive(distribution_id, distribution.status)
            raise DistributionCapReached(distribution_id, distribution.max_candidates)
        submitted_count, max_candidates = row

        submission = DistributionSubmission(
            tenant_id=tenant_id,
            distribution_id=distribution_id,
            candidate_id=candidate.id,
            ownership_id=ownership.id,
            ownership_status=ownership_status,
            possible_duplicate_of=fuzzy.candidate_id if fuzzy is not None else None,
            submitted_at=at,
        )
        try:
            async with session.begin_nested():
                session.add(submission)
                await session.flush()
        except IntegrityError:
            raise DuplicateSubmission(distribution_id, candidate.id)

        auto_closed = False
        if max_candidates is not None and submitted_count >= max_candidates:
            closed = await session.execute(
                update(Distribution)
                .where(
                    Distribution.id == distribution_id,
                    Distribution.status == DistributionStatus.ACTIVE,
                )
                .values(
                    status=DistributionStatus.COMPLETED,
                    closure_reason=ClosureReason.CAP_REACHED,
                    closed_at=at,
                    exclusive_job_id=None,
                )
                .execution_options(synchronize_session=False)
            )
            auto_closed = closed.rowcount == 1

        await commit_or_fail(session, "candidate submission")

    logger.info(
        f"Agency {agency_id} submitted candidate {candidate.id} to distribution "
        f"{distribution_id} ({ownership_status.value})"
    )
    return {
        "submission_id": submission.id,
        "candidate_id": candidate.id,
        "candidate_created": created,
        "ownership_status": ownership_status.value,
        "ownership_expires_at": ownership.expires_at.isoformat(),
        "submitted_count": submitted_count,
        "distribution_status": (
            DistributionStatus.COMPLETED.value if auto_closed else DistributionStatus.ACTIVE.value
        ),
        "warnings": warnings,
    }


async def _decide_submission(
    tenant_id: str, submission_id: int, decision: SubmissionStatus
) -> dict[str, Any]:
    counter = (
        Distribution.accepted_count
        if decision == SubmissionStatus.ACCEPTED
        else Distribution.rejected_count
    )
    async with AsyncSessionLocal() as session:
        submission = await get_scoped(session, DistributionSubmission, submission_id, tenant_id)
        result = await session.execute(
            update(DistributionSubmission)
            .where(
                DistributionSubmission.id == submission_id,
                DistributionSubmission.status == SubmissionStatus.SUBMITTED,
            )
            .values(status=decision, decided_at=now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTransaction(
                f"Submission {submission_id} was already {submission.status.value}",
                submission_id=submission_id,
                status=submission.status,
            )
        await session.execute(
            update(Distribution)
            .where(Distribution.id == submission.distribution_id)
            .values({counter: counter + 1})
            .execution_options(synchronize_session=False)
        )
        await commit_or_fail(session, "submission decision")
        await session.refresh(submission)
        return serialize_submission(submission)


async def accept_submission(tenant_id: str, submission_id: int) -> dict[str, Any]:
    return await _decide_submission(tenant_id, submission_id, SubmissionStatus.ACCEPTED)


async def reject_submission(tenant_id: str, submission_id: int) -> dict[str, Any]:
    return await _decide_submission(tenant_id, submission_id, SubmissionStatus.REJECTED)


async def list_submissions(tenant_id: str, distribution_id: int) -> list[dict[str, Any]]:
    async with AsyncSessionLocal() as session:
        await get_scoped(session, Distribution, distribution_id, tenant_id)
        result = await session.execute(
            select(DistributionSubmission)
            .where(DistributionSubmission.distribution_id == distribution_id)
            .order_by(DistributionSubmission.submitted_at, DistributionSubmission.id)
        )
        return [serialize_submission(s) for s in result.scalars().all()]


# ==================== Placement ===================== #


async def record_placement(
    tenant_id: str,
    submission_id: int,
    inputs: CompensationInputs,
    contract_type: Optional[EmploymentType] = None,
    budget_id: Optional[int] = None,
    billed_hours: Optional[Decimal] = None,
    created_by: Optional[str] = None,
    at: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Price an accepted submission and charge the fee to the budget.

    The fee row, the budget deduction and the budget's balance change are
    committed together. An hourly fee is charged for ``billed_hours``; without
    hours it is recorded per hour and nothing is charged yet.

    Raises:
        OwnershipConflict: Another agency holds the fee rights
        NoApplicableRateLine / AmbiguousRateLine: Pricing failed
        BudgetExceeded / BudgetLocked: The deduction was refused
    """
    at = at or now()
    async with AsyncSessionLocal() as session:
        submission = await get_scoped(session, DistributionSubmission, submission_id, tenant_id)
        if submission.status != SubmissionStatus.ACCEPTED:
            raise InvalidTransaction(
                "Only accepted submissions can be placed",
                submission_id=submission_id,
                status=submission.status,
            )
        distribution = await get_scoped(
            session, Distribution, submission.distribution_id, tenant_id
        )
        job = await get_scoped(session, Job, distribution.job_id, tenant_id)

        owner = await session.execute(
            select(CandidateOwnership).where(
                CandidateOwnership.active_candidate_id == submission.candidate_id,
                CandidateOwnership.expires_at >= at,
            )
        )
        ownership = owner.scalar_one_or_none()
        if ownership is not None and ownership.agency_id != distribution.agency_id:
            raise OwnershipConflict(
                submission.candidate_id, ownership.agency_id, ownership.expires_at, "placement"
            )

        card, line, fee = await fee_service.price_placement(
            session,
            tenant_id,
            distribution.agency_id,
            job,
            inputs,
            contract_type or job.employment_type,
            at,
        )

        charge = fee.amount
        if fee.per_hour:
            charge = (
                round_money(fee.amount * billed_hours, fee.currency)
                if billed_hours is not None
                else None
            )

        transaction, triggered = None, []
        target_budget = budget_id or job.budget_id
        if target_budget is not None and charge is not None and charge > 0:
            transaction, triggered = await budget_service.post_in_session(
                session,
                tenant_id,
                target_budget,
                TransactionType.DEDUCTION,
                charge,
                source_type=TransactionSource.PLACEMENT_FEE,
                source_reference=f"submission:{submission_id}",
                description=f"Placement fee for job {job.id}",
                created_by=created_by,
            )

        placement_fee = PlacementFee(
            tenant_id=tenant_id,
            agency_id=distribution.agency_id,
            job_id=job.id,
            submission_id=submission_id,
            rate_card_id=card.id,
            rate_card_line_id=line.id,
            budget_transaction_id=transaction.id if transaction else None,
            fee_type=fee.fee_type,
            inputs={
                **inputs.to_dict(),
                "contract_type": (contract_type or job.employment_type).value,
                "billed_hours": str(billed_hours) if billed_hours is not None else None,
                **fee.details,
            },
            gross_amount=fee.gross_amount,
            discount_amount=fee.discount_amount,
            amount=fee.amount,
            currency=fee.currency,
            calculated_at=at,
        )
        try:
            async with session.begin_nested():
                session.add(placement_fee)
                await session.flush()
        except IntegrityError:
            raise InvalidTransaction(
                "A placement fee was already recorded for this submission",
                submission_id=submission_id,
            )

        await commit_or_fail(session, "placement")
        result = fee_service.serialize_placement_fee(placement_fee)
        result["charged_amount"] = str(charge) if transaction else None

    enqueue_budget_alerts(tenant_id, triggered)
    logger.info(
        f"Recorded placement for submission {submission_id}: {fee.amount} {fee.currency}"
    )
    return result


# ==================== Queries ===================== #


async def get_distribution(tenant_id: str, distribution_id: int) -> dict[str, Any]:
    async with AsyncSessionLocal() as session:
        distribution = await get_scoped(session, Distribution, distribution_id, tenant_id)
        return serialize_distribution(distribution)


async def list_distributions(
    tenant_id: str,
    job_id: Optional[int] = None,
    agency_id: Optional[int] = None,
    status: Optional[DistributionStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    async with AsyncSessionLocal() as session:
        query = select(Distribution).where(Distribution.tenant_id == tenant_id)
        if job_id is not None:
            query = query.where(Distribution.job_id == job_id)
        if agency_id is not None:
            query = query.where(Distribution.agency_id == agency_id)
        if status is not None:
            query = query.where(Distribution.status == status)
        result = await session.execute(
            query.order_by(Distribution.distributed_at.desc(), Distribution.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return [serialize_distribution(d) for d in result.scalars().all()]


async def get_distribution_stats(tenant_id: str, job_id: int) -> dict[str, Any]:
    """Distribution counts of a job by status and tier, plus submission totals."""
    async with AsyncSessionLocal() as session:
        await get_scoped(session, Job, job_id, tenant_id)
        result = await session.execute(
            select(Distribution).where(
                Distribution.tenant_id == tenant_id, Distribution.job_id == job_id
            )
        )
        distributions = result.scalars().all()

    by_status = Counter(d.status.value for d in distributions)
    by_tier = Counter(d.tier.value for d in distributions)
    return {
        "job_id": job_id,
        "total": len(distributions),
        "by_status": {s.value: by_status.get(s.value, 0) for s in DistributionStatus},
        "by_tier": {t.value: by_tier.get(t.value, 0) for t in DistributionTier},
        "submitted": sum(d.submitted_count for d in distributions),
        "accepted": sum(d.accepted_count for d in distributions),
        "rejected": sum(d.rejected_count for d in distributions),
    }
