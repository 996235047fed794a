"""Tests for performance snapshots and the agency matching they feed."""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from api.services import agencies, distributions, matching, performance
from conftest import TENANT, days_ago, make_agency, make_job
from core.exceptions import InvalidTransaction, NotFound
from core.utils.validators import CandidateIdentity
from database.engine import AsyncSessionLocal
from database.models.agencies import (
    AgencyPerformanceSnapshot,
    JobCategory,
    PerformanceTier,
    SeniorityLevel,
)
from database.models.distributions import DistributionTier


async def _filled_history(agency_id: int) -> None:
    """One distribution answered at once, accepted and completed."""
    job = await make_job(title="Platform Engineer")
    distribution = await distributions.create_distribution(
        TENANT, job["id"], agency_id, DistributionTier.STANDARD, require_acceptance=False
    )
    submitted = await distributions.submit_candidate(
        TENANT, distribution["id"], CandidateIdentity.from_raw(email=f"c{agency_id}@acme.io")
    )
    await distributions.accept_submission(TENANT, submitted["submission_id"])
    await distributions.complete_distribution(TENANT, distribution["id"])


async def _silent_history(agency_id: int) -> None:
    """One distribution the agency never submitted to."""
    job = await make_job(title="Data Engineer")
    await distributions.create_distribution(
        TENANT, job["id"], agency_id, DistributionTier.STANDARD, require_acceptance=False
    )


async def _old_snapshot(agency_id: int, score: float, tier: PerformanceTier, age_days: int = 60) -> None:
    """Snapshot computed ``age_days`` ago."""
    async with AsyncSessionLocal() as session:
        session.add(
            AgencyPerformanceSnapshot(
                tenant_id=TENANT,
                agency_id=agency_id,
                period_start=days_ago(age_days + 90),
                period_end=days_ago(age_days),
                performance_score=score,
                performance_tier=tier,
                computed_at=days_ago(age_days),
            )
        )
        await session.commit()

class TestSnapshots:
    @pytest.mark.asyncio
    async def test_agency_without_history_is_new(self):
        agency = await make_agency()

        snapshot = await performance.recompute_snapshot(TENANT, agency["id"])

        assert snapshot["performance_tier"] == "NEW"
        assert snapshot["jobs_received"] == 0
        assert snapshot["performance_score"] == 0
        assert snapshot["response_time_avg_hours"] is None
        assert snapshot["notes"] == "No distributions in period"

    @pytest.mark.asyncio
    async def test_filled_distribution_metrics(self):
        agency = await make_agency()
        await _filled_history(agency["id"])

        snapshot = await performance.recompute_snapshot(TENANT, agency["id"])

        assert snapshot["jobs_received"] == 1
        assert snapshot["candidates_submitted"] == 1
        assert snapshot["placements_made"] == 1
        assert snapshot["fill_rate"] == 100.0
        assert snapshot["placement_rate"] == 100.0
        assert snapshot["acceptance_rate"] == 100.0
        assert snapshot["submission_rate"] == 100.0
        assert snapshot["performance_score"] == 100.0
        assert snapshot["performance_tier"] == "PLATINUM"
        assert snapshot["notes"] is None

    @pytest.mark.asyncio
    async def test_snapshots_are_appended(self):
        agency = await make_agency()
        first = await performance.recompute_snapshot(TENANT, agency["id"])
        await _filled_history(agency["id"])
        second = await performance.recompute_snapshot(TENANT, agency["id"])

        history = await agencies.get_performance_snapshots(TENANT, agency["id"])
        assert [s["id"] for s in history] == [second["id"], first["id"]]

    @pytest.mark.asyncio
    async def test_period_must_be_forward(self):
        agency = await make_agency()
        with pytest.raises(InvalidTransaction):
            await performance.recompute_snapshot(
                TENANT, agency["id"], period_start=days_ago(1), period_end=days_ago(2)
            )

    @pytest.mark.asyncio
    async def test_tenant_agencies_are_tiered_together(self):
        best = await make_agency()
        worst = await make_agency("Contoso Talent")
        newcomer = await make_agency("Fabrikam Staffing")
        await _filled_history(best["id"])
        await _silent_history(worst["id"])

        snapshots = await performance.recompute_tenant_snapshots(TENANT)

        tiers = {s["agency_id"]: s["performance_tier"] for s in snapshots}
        assert tiers == {
            best["id"]: "PLATINUM",
            worst["id"]: "BRONZE",
            newcomer["id"]: "NEW",
        }
        assert await performance.recompute_all_snapshots() == 3


class TestMatching:
    @pytest.mark.asyncio
    async def test_ranking_uses_specialization_and_performance(self):
        best = await make_agency()
        worst = await make_agency("Contoso Talent")
        newcomer = await make_agency("Fabrikam Staffing")
        await _filled_history(best["id"])
        await _silent_history(worst["id"])
        await performance.recompute_tenant_snapshots(TENANT)
        job = await make_job()

        result = await matching.match_agencies_to_job(TENANT, job["id"])

        assert result["warnings"] == []
        ranked = [(m["agency_id"], m["score"], m["recommended_tier"]) for m in result["matches"]]
        assert ranked == [
            (best["id"], 87.5, "EXCLUSIVE"),
            (newcomer["id"], 72.5, "PRIORITY"),
            (worst["id"], 57.5, "STANDARD"),
        ]
        top = result["matches"][0]
        assert top["rank"] == 1
        assert top["breakdown"] == {"specialization": 0.75, "geographic": 1.0, "performance": 1.0}
        assert top["performance_tier"] == "PLATINUM"

    @pytest.mark.asyncio
    async def test_only_overlapping_active_agencies_match(self):
        await make_agency("Junior Specialists", seniority_levels=[SeniorityLevel.JUNIOR])
        await make_agency("Finance Only", category=JobCategory.FINANCE)
        retired = await make_agency("Retired Agency")
        await agencies.set_agency_active(TENANT, retired["id"], False)
        job = await make_job()

        result = await matching.match_agencies_to_job(TENANT, job["id"])

        assert result["matches"] == []

    @pytest.mark.asyncio
    async def test_limit_and_tie_break(self):
        first = await make_agency()
        second = await make_agency("Contoso Talent")
        await make_agency("Fabrikam Staffing")
        job = await make_job()

        result = await matching.match_agencies_to_job(TENANT, job["id"], limit=2)

        assert [m["agency_id"] for m in result["matches"]] == [first["id"], second["id"]]
        assert [m["rank"] for m in result["matches"]] == [1, 2]

    @pytest.mark.asyncio
    async def test_unknown_job(self):
        with pytest.raises(NotFound):
            await matching.match_agencies_to_job(TENANT, 999)

    @pytest.mark.asyncio
    async def test_zero_limit_returns_nothing(self):
        await make_agency()
        job = await make_job()

        result = await matching.match_agencies_to_job(TENANT, job["id"], limit=0)

        assert result["matches"] == []


class TestDegradedMatching:
    @pytest.mark.asyncio
    async def test_snapshot_failure_uses_neutral_prior(self):
        best = await make_agency()
        await _filled_history(best["id"])
        await performance.recompute_tenant_snapshots(TENANT)
        job = await make_job()
        failure = OperationalError("SELECT agency_performance_snapshots", {}, Exception("connection lost"))

        with patch(
            "api.services.matching.load_latest_snapshots", AsyncMock(side_effect=failure)
        ):
            result = await matching.match_agencies_to_job(TENANT, job["id"])

        [warning] = result["warnings"]
        assert warning["code"] == "performance_snapshots_unavailable"
        [match] = result["matches"]
        assert match["agency_id"] == best["id"]
        assert match["breakdown"]["performance"] == 0.5
        assert match["score"] == 72.5

    @pytest.mark.asyncio
    async def test_stale_snapshot_is_flagged(self):
        agency = await make_agency()
        await _old_snapshot(agency["id"], 80.0, PerformanceTier.GOLD)
        job = await make_job()

        result = await matching.match_agencies_to_job(TENANT, job["id"])

        [warning] = result["warnings"]
        assert warning["code"] == "stale_performance_snapshot"
        assert warning["agency_id"] == agency["id"]
        assert warning["message"].endswith(days_ago(60).date().isoformat())
        # A stale snapshot still counts: 0.8 x GOLD factor 0.9
        assert result["matches"][0]["breakdown"]["performance"] == 0.72

    @pytest.mark.asyncio
    async def test_fresh_snapshot_is_not_flagged(self):
        agency = await make_agency()
        await _old_snapshot(agency["id"], 80.0, PerformanceTier.GOLD, age_days=5)
        job = await make_job()

        result = await matching.match_agencies_to_job(TENANT, job["id"])

        assert result["warnings"] == []

    @pytest.mark.asyncio
    async def test_stale_warning_only_for_returned_agencies(self):
        leader = await make_agency()
        trailing = await make_agency("Contoso Talent")
        await _old_snapshot(trailing["id"], 10.0, PerformanceTier.BRONZE)
        job = await make_job()

        result = await matching.match_agencies_to_job(TENANT, job["id"], limit=1)

        assert [m["agency_id"] for m in result["matches"]] == [leader["id"]]
        assert result["warnings"] == []
