"""
Agency performance metrics.

Rates are percentages (0-100). Responsiveness maps the average response
time to 0-100: answering within a day scores 100, a week or slower scores 0.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from database.models.agencies import PerformanceTier


FAST_RESPONSE_HOURS = 24.0
SLOW_RESPONSE_HOURS = 168.0

# (share of agencies from the top, tier)
TIER_PERCENTILES = (
    (0.05, PerformanceTier.PLATINUM),
    (0.20, PerformanceTier.GOLD),
    (0.50, PerformanceTier.SILVER),
)


@dataclass
class PerformanceMetrics:
    jobs_received: int
    candidates_submitted: int
    placements_made: int
    fill_rate: float
    placement_rate: float
    acceptance_rate: float
    submission_rate: float
    response_time_avg_hours: Optional[float]
    performance_score: float

    @property
    def has_history(self) -> bool:
        return self.jobs_received > 0


def rate(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return round(100.0 * numerator / denominator, 2)


def responsiveness(response_time_avg_hours: Optional[float]) -> float:
    if response_time_avg_hours is None:
        return 0.0
    if response_time_avg_hours <= FAST_RESPONSE_HOURS:
        return 100.0
    if response_time_avg_hours >= SLOW_RESPONSE_HOURS:
        return 0.0
    span = SLOW_RESPONSE_HOURS - FAST_RESPONSE_HOURS
    return 100.0 * (SLOW_RESPONSE_HOURS - response_time_avg_hours) / span


def compute_metrics(
    jobs_received: int,
    jobs_accepted: int,
    jobs_with_submission: int,
    closed_distributions: int,
    filled_distributions: int,
    candidates_submitted: int,
    candidates_accepted: int,
    response_hours: Sequence[float],
) -> PerformanceMetrics:
    """
    Metrics for one agency over one period.

    fill rate       filled / closed distributions
    placement rate  accepted / submitted candidates
    acceptance rate accepted / received distributions
    submission rate distributions with a submission / received distributions
    """
    fill = rate(filled_distributions, closed_distributions)
    placement = rate(candidates_accepted, candidates_submitted)
    response_avg = (
        round(sum(response_hours) / len(response_hours), 2) if response_hours else None
    )
    score = 0.4 * fill + 0.3 * placement + 0.3 * responsiveness(response_avg)

    return PerformanceMetrics(
        jobs_received=jobs_received,
        candidates_submitted=candidates_submitted,
        placements_made=candidates_accepted,
        fill_rate=fill,
        placement_rate=placement,
        acceptance_rate=rate(jobs_accepted, jobs_received),
        submission_rate=rate(jobs_with_submission, jobs_received),
        response_time_avg_hours=response_avg,
        performance_score=round(score, 2),
    )


def assign_tiers(scores: dict[int, Optional[float]]) -> dict[int, PerformanceTier]:
    """
    Tier per agency by percentile of score across the tenant.

    Agencies without history (score None) are NEW and are not ranked.
    Ties are ordered by agency id so the assignment is deterministic.
    """
    tiers = {agency_id: PerformanceTier.NEW for agency_id, s in scores.items() if s is None}
    ranked = sorted(
        ((agency_id, s) for agency_id, s in scores.items() if s is not None),
        key=lambda item: (-item[1], item[0]),
    )
    total = len(ranked)
    for position, (agency_id, _) in enumerate(ranked):
        # share of agencies ranked strictly above this one
        above = position / total
        tier = PerformanceTier.BRONZE
        for share, candidate_tier in TIER_PERCENTILES:
            if above < share:
                tier = candidate_tier
                break
        tiers[agency_id] = tier
    return tiers
