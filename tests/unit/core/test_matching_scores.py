"""Tests for agency match scoring and ranking."""

from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Optional

import pytest

from core.calculations.matching import (
    NEUTRAL_PERFORMANCE,
    AgencyMatch,
    MatchWeights,
    combined_score,
    geographic_score,
    haversine_km,
    performance_component,
    rank_matches,
    recommend_tier,
    score_agency,
    specialization_entry_score,
)
from database.models.agencies import JobCategory, PerformanceTier, SeniorityLevel
from database.models.distributions import DistributionTier
from database.models.jobs import LocationType


@dataclass
class Specialization:
    id: int
    category: JobCategory
    seniority_levels: list = field(default_factory=list)
    years_experience: float = 0
    match_priority: int = 5

    def covers(self, category, seniority) -> bool:
        return self.category == category and (
            not self.seniority_levels or seniority in self.seniority_levels
        )


@dataclass
class Coverage:
    country: str
    region: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius_km: Optional[float] = None
    priority: int = 10


def make_job(**overrides):
    values = dict(
        category=JobCategory.IT,
        seniority=SeniorityLevel.SENIOR,
        location_type=LocationType.ONSITE,
        country="NL",
        region="Noord-Holland",
        city="Amsterdam",
        latitude=52.3676,
        longitude=4.9041,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def snapshot(score, tier, fill_rate=50.0, response=24.0):
    return SimpleNamespace(
        performance_score=score,
        performance_tier=tier,
        fill_rate=fill_rate,
        response_time_avg_hours=response,
    )


class TestComponentScores:
    def test_specialization_entry_bounds(self):
        assert specialization_entry_score(0, 0) == pytest.approx(0.5)
        assert specialization_entry_score(25, 10) == pytest.approx(1.0)

    def test_haversine_amsterdam_rotterdam(self):
        assert haversine_km(52.3676, 4.9041, 51.9244, 4.4777) == pytest.approx(57.0, abs=2.0)

    def test_remote_job_matches_everywhere(self):
        job = make_job(location_type=LocationType.REMOTE, country="DE")
        assert geographic_score(job, []) == 1.0

    def test_city_match_beats_country_match(self):
        job = make_job()
        city = geographic_score(job, [Coverage("NL", city="Amsterdam")])
        country = geographic_score(job, [Coverage("NL")])
        assert city == pytest.approx(1.0)
        assert country == pytest.approx(0.5)

    def test_radius_match(self):
        job = make_job(city="Haarlem")
        coverage = [Coverage("NL", city="Amsterdam", latitude=52.37, longitude=4.90, radius_km=30)]
        assert geographic_score(job, coverage) == pytest.approx(1.0)

    def test_other_country_scores_zero(self):
        assert geographic_score(make_job(), [Coverage("BE")]) == 0.0

    def test_priority_scales_coverage(self):
        job = make_job()
        low = geographic_score(job, [Coverage("NL", city="Amsterdam", priority=0)])
        assert low == pytest.approx(0.5)

    def test_missing_snapshot_is_neutral(self):
        assert performance_component(None) == NEUTRAL_PERFORMANCE
        assert performance_component(snapshot(90, PerformanceTier.NEW)) == NEUTRAL_PERFORMANCE

    def test_tier_factor_applies(self):
        assert performance_component(snapshot(80, PerformanceTier.GOLD)) == pytest.approx(0.72)

    def test_combined_score_scale(self):
        assert combined_score(1.0, 1.0, 1.0, MatchWeights()) == pytest.approx(100.0)
        assert combined_score(0, 0, 0, MatchWeights(0, 0, 0)) == 0.0


class TestTierRecommendation:
    @pytest.mark.parametrize(
        "score,rank,expected",
        [
            (90.0, 1, DistributionTier.EXCLUSIVE),
            (90.0, 2, DistributionTier.PRIORITY),
            (70.0, 3, DistributionTier.PRIORITY),
            (45.0, 1, DistributionTier.STANDARD),
            (44.99, 1, DistributionTier.OPEN),
        ],
    )
    def test_bands(self, score, rank, expected):
        assert recommend_tier(score, rank) == expected


class TestRanking:
    def _match(self, agency_id, score, fill_rate=None, response=None):
        return AgencyMatch(
            agency_id=agency_id,
            agency_name=f"Agency {agency_id}",
            score=score,
            specialization_score=0,
            geographic_score=0,
            performance_score=0,
            fill_rate=fill_rate,
            response_time_avg_hours=response,
        )

    def test_ties_broken_by_fill_rate_then_response_then_id(self):
        matches = [
            self._match(4, 60.0, fill_rate=40.0, response=10.0),
            self._match(3, 60.0, fill_rate=50.0, response=30.0),
            self._match(2, 60.0, fill_rate=50.0, response=20.0),
            self._match(1, 75.0),
            self._match(5, 60.0, fill_rate=40.0, response=10.0),
        ]
        ranked = rank_matches(matches)
        assert [m.agency_id for m in ranked] == [1, 2, 3, 4, 5]
        assert [m.rank for m in ranked] == [1, 2, 3, 4, 5]

    def test_limit(self):
        ranked = rank_matches([self._match(i, float(i)) for i in range(1, 6)], limit=2)
        assert [m.agency_id for m in ranked] == [5, 4]


class TestScoreAgency:
    def test_agency_without_overlap_is_excluded(self):
        agency = SimpleNamespace(id=1, name="Finance Only")
        specializations = [Specialization(1, JobCategory.FINANCE)]
        assert score_agency(agency, make_job(), specializations, [], None, MatchWeights()) is None

    def test_seniority_must_be_covered(self):
        agency = SimpleNamespace(id=1, name="Juniors")
        specializations = [Specialization(1, JobCategory.IT, seniority_levels=[SeniorityLevel.JUNIOR])]
        assert score_agency(agency, make_job(), specializations, [], None, MatchWeights()) is None

    def test_full_breakdown(self):
        agency = SimpleNamespace(id=7, name="Tech Talent")
        specializations = [Specialization(11, JobCategory.IT, years_experience=10, match_priority=10)]
        coverage = [Coverage("NL", city="Amsterdam")]
        match = score_agency(
            agency,
            make_job(),
            specializations,
            coverage,
            snapshot(100, PerformanceTier.PLATINUM, fill_rate=80.0),
            MatchWeights(),
        )
        assert match.score == pytest.approx(100.0)
        assert match.matched_specializations == [11]
        assert match.fill_rate == 80.0


YEARS = [0, 1, 5, 9.5, 10, 12, 30]


class TestExperienceMonotonicity:
    """More years never lower a score when everything else is equal."""

    @pytest.mark.parametrize("priority", [0, 5, 10])
    def test_entry_score_is_non_decreasing(self, priority):
        scores = [specialization_entry_score(years, priority) for years in YEARS]
        assert scores == sorted(scores)

    @pytest.mark.parametrize("years", [10, 12, 30])
    def test_entry_score_saturates_at_ten_years(self, years):
        assert specialization_entry_score(years, 5) == pytest.approx(
            specialization_entry_score(10, 5)
        )

    @pytest.mark.parametrize(
        "years,expected",
        [(0, 66.25), (1, 67.5), (5, 72.5), (9.5, 78.125), (10, 78.75), (12, 78.75), (30, 78.75)],
    )
    def test_agency_score_by_years(self, years, expected):
        agency = SimpleNamespace(id=3, name="Tech Talent")
        specializations = [Specialization(1, JobCategory.IT, years_experience=years)]
        match = score_agency(
            agency, make_job(), specializations, [Coverage("NL", city="Amsterdam")], None, MatchWeights()
        )
        assert match.score == pytest.approx(expected)

    def test_agency_score_is_non_decreasing(self):
        agency = SimpleNamespace(id=3, name="Tech Talent")
        scores = [
            score_agency(
                agency,
                make_job(),
                [Specialization(1, JobCategory.IT, years_experience=years)],
                [Coverage("NL", city="Amsterdam")],
                snapshot(70, PerformanceTier.SILVER),
                MatchWeights(),
            ).score
            for years in YEARS
        ]
        assert scores == sorted(scores)
        assert scores[0] < scores[-1]
