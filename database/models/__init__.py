from database.models.agencies import (
    Agency,
    AgencySpecialization,
    AgencyGeographicCoverage,
    AgencyPerformanceSnapshot,
    JobCategory,
    SeniorityLevel,
    PerformanceTier,
)
from database.models.jobs import Job, JobStatus, EmploymentType, LocationType
from database.models.candidates import Candidate, CandidateOwnership
from database.models.distributions import (
    Distribution,
    DistributionSubmission,
    DistributionTier,
    DistributionStatus,
    ClosureReason,
    OwnershipStatus,
    SubmissionStatus,
)
from database.models.rate_cards import RateCard, RateCardLine, PlacementFee, FeeType
from database.models.budgets import (
    Budget,
    BudgetAllocation,
    BudgetTransaction,
    BudgetAlert,
    BudgetForecast,
    BudgetStatus,
    BudgetLevel,
    TransactionType,
    TransactionSource,
    AllocationTarget,
    AlertSeverity,
)
from database.models.sla import (
    SlaConfiguration,
    SlaBreach,
    SlaAlert,
    SlaMetricType,
    SlaSeverity,
    SlaBreachStatus,
    AlertDeliveryMethod,
    AlertDeliveryStatus,
)

__all__ = [
    "Agency",
    "AgencySpecialization",
    "AgencyGeographicCoverage",
    "AgencyPerformanceSnapshot",
    "JobCategory",
    "SeniorityLevel",
    "PerformanceTier",
    "Job",
    "JobStatus",
    "EmploymentType",
    "LocationType",
    "Candidate",
    "CandidateOwnership",
    "Distribution",
    "DistributionSubmission",
    "DistributionTier",
    "DistributionStatus",
    "ClosureReason",
    "OwnershipStatus",
    "SubmissionStatus",
    "RateCard",
    "RateCardLine",
    "PlacementFee",
    "FeeType",
    "Budget",
    "BudgetAllocation",
    "BudgetTransaction",
    "BudgetAlert",
    "BudgetForecast",
    "BudgetStatus",
    "BudgetLevel",
    "TransactionType",
    "TransactionSource",
    "AllocationTarget",
    "AlertSeverity",
    "SlaConfiguration",
    "SlaBreach",
    "SlaAlert",
    "SlaMetricType",
    "SlaSeverity",
    "SlaBreachStatus",
    "AlertDeliveryMethod",
    "AlertDeliveryStatus",
]
