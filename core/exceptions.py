"""
Business-rule errors raised by the engine.

Every error carries a stable machine code and the HTTP status the API layer
answers with. None of them are retried automatically: they describe a rule
violation, not a transient failure.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional


class VMSError(Exception):
    """Base exception for engine errors."""

    code: str = "VMS_ERROR"
    status_code: int = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = {
                key: _jsonable(value) for key, value in self.details.items()
            }
        return payload


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "value"):
        return value.value
    return value


class NotFound(VMSError):
    """Raised when a record does not exist inside the caller's tenant."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            f"{resource} {resource_id} not found",
            resource=resource,
            resource_id=resource_id,
        )


# ==================== Ownership ===================== #
class OwnershipConflict(VMSError):
    """Candidate is already owned by another agency under active protection."""

    code = "OWNERSHIP_CONFLICT"
    status_code = 409

    def __init__(
        self,
        candidate_id: int,
        owner_agency_id: int,
        expires_at: Optional[datetime],
        match_reason: Optional[str] = None,
    ):
        super().__init__(
            "Candidate is already owned by another agency",
            candidate_id=candidate_id,
            owner_agency_id=owner_agency_id,
            expires_at=expires_at,
            match_reason=match_reason,
        )
        self.candidate_id = candidate_id
        self.owner_agency_id = owner_agency_id
        self.expires_at = expires_at


class OwnershipNotActive(VMSError):
    """Ownership was already released or expired."""

    code = "OWNERSHIP_NOT_ACTIVE"
    status_code = 409

    def __init__(self, ownership_id: int, release_reason: Optional[str] = None):
        super().__init__(
            "Ownership is no longer active",
            ownership_id=ownership_id,
            release_reason=release_reason,
        )


# ==================== Distribution ===================== #
class ExclusivityConflict(VMSError):
    """Job already has an exclusive distribution holding it."""

    code = "EXCLUSIVITY_CONFLICT"
    status_code = 409

    def __init__(self, job_id: int, holder_distribution_id: Optional[int] = None):
        super().__init__(
            "Job already has an active exclusive distribution",
            job_id=job_id,
            holder_distribution_id=holder_distribution_id,
        )


class DuplicateDistribution(VMSError):
    code = "DUPLICATE_DISTRIBUTION"
    status_code = 409

    def __init__(self, job_id: int, agency_id: int):
        super().__init__(
            "Job is already distributed to this agency",
            job_id=job_id,
            agency_id=agency_id,
        )


class DistributionCapReached(VMSError):
    code = "DISTRIBUTION_CAP_REACHED"
    status_code = 409

    def __init__(self, distribution_id: int, max_candidates: Optional[int]):
        super().__init__(
            "Distribution has reached its submission cap",
            distribution_id=distribution_id,
            max_candidates=max_candidates,
        )


class DistributionNotActive(VMSError):
    code = "DISTRIBUTION_NOT_ACTIVE"
    status_code = 409

    def __init__(self, distribution_id: int, status: Any):
        super().__init__(
            "Distribution is not accepting submissions",
            distribution_id=distribution_id,
            status=status,
        )


class InvalidDistributionTransition(VMSError):
    code = "INVALID_DISTRIBUTION_TRANSITION"
    status_code = 409

    def __init__(self, distribution_id: int, current: Any, action: str):
        super().__init__(
            f"Cannot {action} a distribution in status {_jsonable(current)}",
            distribution_id=distribution_id,
            status=current,
            action=action,
        )


class DuplicateSubmission(VMSError):
    code = "DUPLICATE_SUBMISSION"
    status_code = 409

    def __init__(self, distribution_id: int, candidate_id: int):
        super().__init__(
            "Candidate was already submitted under this distribution",
            distribution_id=distribution_id,
            candidate_id=candidate_id,
        )


class JobNotOpen(VMSError):
    code = "JOB_NOT_OPEN"
    status_code = 409

    def __init__(self, job_id: int, status: Any):
        super().__init__("Job is not open", job_id=job_id, status=status)


# ==================== Fees ===================== #
class NoApplicableRateLine(VMSError):
    code = "NO_APPLICABLE_RATE_LINE"
    status_code = 422


class AmbiguousRateLine(VMSError):
    code = "AMBIGUOUS_RATE_LINE"
    status_code = 422


class NoApplicableRateCard(NoApplicableRateLine):
    code = "NO_APPLICABLE_RATE_CARD"


class AmbiguousRateCard(AmbiguousRateLine):
    """Two equally specific cards are valid at once: a configuration error."""

    code = "AMBIGUOUS_RATE_CARD"


# ==================== Budgets ===================== #
class BudgetExceeded(VMSError):
    code = "BUDGET_EXCEEDED"
    status_code = 409

    def __init__(
        self,
        budget_id: int,
        requested: Decimal,
        remaining: Optional[Decimal],
        message: str = "Amount exceeds the remaining budget",
    ):
        super().__init__(
            message,
            budget_id=budget_id,
            requested=requested,
            remaining=remaining,
        )


class AllocationExceeded(BudgetExceeded):
    code = "ALLOCATION_EXCEEDED"


class BudgetLocked(VMSError):
    code = "BUDGET_LOCKED"
    status_code = 423

    def __init__(self, budget_id: int, blocking_budget_id: Optional[int] = None):
        super().__init__(
            "Budget or one of its ancestors is locked or closed",
            budget_id=budget_id,
            blocking_budget_id=blocking_budget_id,
        )


class InvalidTransaction(VMSError):
    code = "INVALID_TRANSACTION"
    status_code = 422


class TransactionNotConfirmed(VMSError):
    """The commit could not be confirmed; the operation must be treated as failed."""

    code = "TRANSACTION_NOT_CONFIRMED"
    status_code = 503


# ==================== SLA ===================== #
class SlaConfigMissing(VMSError):
    code = "SLA_CONFIG_MISSING"
    status_code = 404

    def __init__(self, agency_id: int, metric_type: Any):
        super().__init__(
            "No SLA configuration for this agency and metric",
            agency_id=agency_id,
            metric_type=metric_type,
        )
