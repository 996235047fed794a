"""
Agency match scoring.

Pure functions over agency profile rows (specializations, coverage, latest
performance snapshot) and a job. The service layer loads the rows; this
module only scores and ranks them, so results are reproducible for audits.

Component scores are in ``[0, 1]``; the combined score is reported on a
0-100 scale.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from database.models.agencies import PerformanceTier
from database.models.distributions import DistributionTier
from database.models.jobs import LocationType


NEUTRAL_PERFORMANCE = 0.5

TIER_FACTORS = {
    PerformanceTier.PLATINUM: 1.0,
    PerformanceTier.GOLD: 0.9,
    PerformanceTier.SILVER: 0.8,
    PerformanceTier.BRONZE: 0.7,
}

# Lower bound (inclusive) of the combined score for each recommended tier
TIER_BANDS = (
    (85.0, DistributionTier.EXCLUSIVE),
    (70.0, DistributionTier.PRIORITY),
    (45.0, DistributionTier.STANDARD),
)

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class MatchWeights:
    specialization: float = 0.5
    geographic: float = 0.2
    performance: float = 0.3

    @property
    def total(self) -> float:
        return self.specialization + self.geographic + self.performance


@dataclass
class AgencyMatch:
    """One ranked agency with the breakdown behind its score."""

    agency_id: int
    agency_name: str
    score: float
    specialization_score: float
    geographic_score: float
    performance_score: float
    fill_rate: Optional[float] = None
    response_time_avg_hours: Optional[float] = None
    performance_tier: Optional[PerformanceTier] = None
    recommended_tier: DistributionTier = DistributionTier.OPEN
    rank: int = 0
    matched_specializations: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agency_id": self.agency_id,
            "agency_name": self.agency_name,
            "rank": self.rank,
            "score": self.score,
            "recommended_tier": self.recommended_tier.value,
            "breakdown": {
                "specialization": self.specialization_score,
                "geographic": self.geographic_score,
                "performance": self.performance_score,
            },
            "fill_rate": self.fill_rate,
            "response_time_avg_hours": self.response_time_avg_hours,
            "performance_tier": self.performance_tier.value if self.performance_tier else None,
            "matched_specializations": self.matched_specializations,
        }


# ==================== Component Scores ===================== #


def specialization_entry_score(years_experience: float, match_priority: int) -> float:
    """
    Score of one overlapping specialization entry.

    Category match contributes half; years of experience (saturating at ten)
    and the declared match priority (1-10) contribute a quarter each.
    """
    years = max(float(years_experience or 0), 0.0)
    priority = min(max(int(match_priority or 0), 0), 10)
    return 0.5 + 0.25 * min(years / 10.0, 1.0) + 0.25 * priority / 10.0


def specialization_score(entries: Iterable[Any]) -> float:
    """Best score over the overlapping specialization entries (0 when none)."""
    scores = [
        specialization_entry_score(entry.years_experience, entry.match_priority)
        for entry in entries
    ]
    return max(scores, default=0.0)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def _same(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.strip().lower() == b.strip().lower()


def coverage_entry_score(job: Any, entry: Any) -> float:
    """Geographic fit of one coverage entry, before priority scaling."""
    if (
        entry.radius_km is not None
        and entry.latitude is not None
        and entry.longitude is not None
        and job.latitude is not None
        and job.longitude is not None
    ):
        distance = haversine_km(job.latitude, job.longitude, entry.latitude, entry.longitude)
        if distance <= entry.radius_km:
            return 1.0

    if not _same(job.country, entry.country):
        return 0.0
    if entry.city:
        return 1.0 if _same(job.city, entry.city) else 0.0
    if entry.region:
        return 0.75 if _same(job.region, entry.region) else 0.0
    return 0.5


def geographic_score(job: Any, coverage: Iterable[Any]) -> float:
    """
    Best geographic fit over an agency's coverage entries.

    Remote jobs match everywhere. Each entry is scaled by its priority so a
    high-priority region outranks an incidental one.
    """
    if job.location_type == LocationType.REMOTE:
        return 1.0
    best = 0.0
    for entry in coverage:
        base = coverage_entry_score(job, entry)
        if base <= 0:
            continue
        priority = min(max(int(entry.priority or 0), 0), 10)
        best = max(best, base * (0.5 + 0.5 * priority / 10.0))
    return best


def performance_component(snapshot: Any | None) -> float:
    """Latest snapshot score scaled by tier; NEW or missing is the neutral prior."""
    if snapshot is None or snapshot.performance_tier == PerformanceTier.NEW:
        return NEUTRAL_PERFORMANCE
    factor = TIER_FACTORS.get(snapshot.performance_tier, NEUTRAL_PERFORMANCE)
    score = min(max(float(snapshot.performance_score or 0) / 100.0, 0.0), 1.0)
    return score * factor


def combined_score(
    specialization: float,
    geographic: float,
    performance: float,
    weights: MatchWeights,
) -> float:
    """Weighted score on a 0-100 scale, rounded to four decimals."""
    if weights.total <= 0:
        return 0.0
    raw = (
        weights.specialization * specialization
        + weights.geographic * geographic
        + weights.performance * performance
    ) / weights.total
    return round(raw * 100.0, 4)


def recommend_tier(score: float, rank: int) -> DistributionTier:
    """
    Recommended distribution tier for a score band.

    Only the top-ranked agency can be recommended EXCLUSIVE; a lower-ranked
    agency in the exclusive band is recommended PRIORITY.
    """
    for lower_bound, tier in TIER_BANDS:
        if score >= lower_bound:
            if tier == DistributionTier.EXCLUSIVE and rank != 1:
                return DistributionTier.PRIORITY
            return tier
    return DistributionTier.OPEN


# ==================== Ranking ===================== #


def _sort_key(match: AgencyMatch) -> tuple:
    fill_rate = match.fill_rate if match.fill_rate is not None else -1.0
    response = (
        match.response_time_avg_hours
        if match.response_time_avg_hours is not None
        else math.inf
    )
    return (-match.score, -fill_rate, response, match.agency_id)


def rank_matches(matches: Sequence[AgencyMatch], limit: Optional[int] = None) -> list[AgencyMatch]:
    """
    Order matches and assign rank and recommended tier.

    Ties are broken by higher fill rate, then lower average response time,
    then agency id.
    """
    ranked = sorted(matches, key=_sort_key)
    if limit is not None:
        ranked = ranked[:limit]
    for position, match in enumerate(ranked, start=1):
        match.rank = position
        match.recommended_tier = recommend_tier(match.score, position)
    return ranked


def score_agency(
    agency: Any,
    job: Any,
    specializations: Sequence[Any],
    coverage: Sequence[Any],
    snapshot: Any | None,
    weights: MatchWeights,
) -> Optional[AgencyMatch]:
    """
    Score one agency for a job.

    Returns None when no specialization overlaps the job's category and
    seniority; such agencies are not candidates for the job at all.
    """
    overlapping = [s for s in specializations if s.covers(job.category, job.seniority)]
    if not overlapping:
        return None

    specialization = specialization_score(overlapping)
    geo = geographic_score(job, coverage)
    perf = performance_component(snapshot)

    return AgencyMatch(
        agency_id=agency.id,
        agency_name=agency.name,
        score=combined_score(specialization, geo, perf, weights),
        specialization_score=round(specialization, 4),
        geographic_score=round(geo, 4),
        performance_score=round(perf, 4),
        fill_rate=snapshot.fill_rate if snapshot is not None else None,
        response_time_avg_hours=(
            snapshot.response_time_avg_hours if snapshot is not None else None
        ),
        performance_tier=snapshot.performance_tier if snapshot is not None else None,
        matched_specializations=[s.id for s in overlapping],
    )
