"""Tests for SLA configuration, breach detection and alert delivery status."""

import pytest

from api.services import distributions, performance, sla
from api.services.notifications import SLA_ALERT_TASK
from conftest import TENANT, make_agency, make_job
from core.exceptions import InvalidTransaction, NotFound, SlaConfigMissing
from core.utils.validators import CandidateIdentity
from database.models.distributions import DistributionTier
from database.models.sla import SlaBreachStatus, SlaMetricType


async def _agency_with_fill_rate_sla(**kwargs) -> dict:
    agency = await make_agency(**kwargs)
    await sla.configure_sla(TENANT, agency["id"], SlaMetricType.FILL_RATE, 60, 40, 20)
    return agency


class TestConfiguration:
    @pytest.mark.asyncio
    async def test_thresholds_must_follow_metric_direction(self):
        agency = await make_agency()
        with pytest.raises(InvalidTransaction):
            await sla.configure_sla(TENANT, agency["id"], SlaMetricType.FILL_RATE, 60, 20, 40)
        with pytest.raises(InvalidTransaction):
            await sla.configure_sla(
                TENANT, agency["id"], SlaMetricType.RESPONSE_TIME, 24, 72, 48
            )

    @pytest.mark.asyncio
    async def test_configure_replaces_existing(self):
        agency = await make_agency()
        first = await sla.configure_sla(TENANT, agency["id"], SlaMetricType.FILL_RATE, 60, 40, 20)
        second = await sla.configure_sla(TENANT, agency["id"], SlaMetricType.FILL_RATE, 70, 50, 30)

        assert second["id"] == first["id"]
        [stored] = await sla.list_sla_configurations(TENANT, agency["id"])
        assert stored["warning_threshold"] == 50

    @pytest.mark.asyncio
    async def test_defaults_fill_in_missing_metrics(self):
        agency = await make_agency()
        await sla.configure_sla(TENANT, agency["id"], SlaMetricType.FILL_RATE, 70, 50, 30)

        configs = await sla.create_default_sla_config(TENANT, agency["id"])

        assert len(configs) == 5
        by_metric = {c["metric_type"]: c for c in configs}
        assert by_metric["FILL_RATE"]["warning_threshold"] == 50
        assert by_metric["RESPONSE_TIME"]["critical_threshold"] == 72

    @pytest.mark.asyncio
    async def test_unknown_agency(self):
        with pytest.raises(NotFound):
            await sla.create_default_sla_config(TENANT, 404)


class TestBreachDetection:
    @pytest.mark.asyncio
    async def test_breach_lifecycle(self, sent_tasks):
        agency = await _agency_with_fill_rate_sla()

        opened = await sla.check_breach(TENANT, agency["id"], SlaMetricType.FILL_RATE, 35)
        assert opened["transition"] == "OPENED"
        assert opened["severity"] == "WARNING"
        assert opened["breach"]["threshold_value"] == 40

        escalated = await sla.check_breach(TENANT, agency["id"], SlaMetricType.FILL_RATE, 10)
        assert escalated["transition"] == "ESCALATED"
        assert escalated["breach"]["severity"] == "CRITICAL"
        assert escalated["breach"]["id"] != opened["breach"]["id"]

        # Improving to warning level keeps the critical breach open
        unchanged = await sla.check_breach(TENANT, agency["id"], SlaMetricType.FILL_RATE, 30)
        assert unchanged["transition"] == "UNCHANGED"
        assert unchanged["breach"]["severity"] == "CRITICAL"
        assert unchanged["breach"]["last_value"] == 30

        resolved = await sla.check_breach(TENANT, agency["id"], SlaMetricType.FILL_RATE, 55)
        assert resolved["transition"] == "RESOLVED"
        assert resolved["breach"]["status"] == "RESOLVED"
        assert resolved["breach"]["resolved_at"] is not None

        history = await sla.list_breaches(TENANT, agency["id"])
        assert {b["status"] for b in history} == {"ESCALATED", "RESOLVED"}

        alert_ids = [opened["alert_id"], escalated["alert_id"]]
        assert sent_tasks.call_count == 2
        for call, alert_id in zip(sent_tasks.call_args_list, alert_ids):
            assert call.args[0] == SLA_ALERT_TASK
            assert call.kwargs["kwargs"] == {"tenant_id": TENANT, "alert_id": alert_id}

    @pytest.mark.asyncio
    async def test_healthy_value_opens_nothing(self, sent_tasks):
        agency = await _agency_with_fill_rate_sla()

        outcome = await sla.check_breach(TENANT, agency["id"], SlaMetricType.FILL_RATE, 80)

        assert outcome["transition"] == "UNCHANGED"
        assert not outcome["breached"]
        assert outcome["breach"] is None
        assert not sent_tasks.called

    @pytest.mark.asyncio
    async def test_response_time_breaches_upwards(self):
        agency = await make_agency()
        await sla.configure_sla(TENANT, agency["id"], SlaMetricType.RESPONSE_TIME, 24, 48, 72)

        outcome = await sla.check_breach(TENANT, agency["id"], SlaMetricType.RESPONSE_TIME, 80)
        assert outcome["severity"] == "CRITICAL"

    @pytest.mark.asyncio
    async def test_missing_configuration(self):
        agency = await make_agency()
        with pytest.raises(SlaConfigMissing):
            await sla.check_breach(TENANT, agency["id"], SlaMetricType.FILL_RATE, 10)

    @pytest.mark.asyncio
    async def test_manual_resolution(self):
        agency = await _agency_with_fill_rate_sla()
        opened = await sla.check_breach(TENANT, agency["id"], SlaMetricType.FILL_RATE, 10)

        resolved = await sla.resolve_breach(TENANT, opened["breach"]["id"], "Agreed with agency")
        assert resolved["status"] == "RESOLVED"
        assert resolved["resolution_notes"] == "Agreed with agency"

        with pytest.raises(InvalidTransaction):
            await sla.resolve_breach(TENANT, opened["breach"]["id"])

        # A new bad value opens a fresh breach
        again = await sla.check_breach(TENANT, agency["id"], SlaMetricType.FILL_RATE, 10)
        assert again["transition"] == "OPENED"
        open_breaches = await sla.list_breaches(TENANT, agency["id"], status=SlaBreachStatus.OPEN)
        assert [b["id"] for b in open_breaches] == [again["breach"]["id"]]


class TestAlerts:
    @pytest.mark.asyncio
    async def test_delivery_method_follows_contact(self):
        with_email = await _agency_with_fill_rate_sla(contact_email="ops@northwind.example")
        without = await _agency_with_fill_rate_sla(name="Contoso Talent")

        emailed = await sla.check_breach(TENANT, with_email["id"], SlaMetricType.FILL_RATE, 10)
        in_app = await sla.check_breach(TENANT, without["id"], SlaMetricType.FILL_RATE, 10)

        alert = await sla.get_sla_alert(TENANT, emailed["alert_id"])
        assert alert["delivery_method"] == "EMAIL"
        assert alert["recipient"] == "ops@northwind.example"
        assert alert["delivery_status"] == "PENDING"
        assert "FILL_RATE is 10" in alert["message"]
        assert (await sla.get_sla_alert(TENANT, in_app["alert_id"]))["delivery_method"] == "IN_APP"

    @pytest.mark.asyncio
    async def test_delivery_status_progression(self):
        agency = await _agency_with_fill_rate_sla()
        outcome = await sla.check_breach(TENANT, agency["id"], SlaMetricType.FILL_RATE, 10)
        alert_id = outcome["alert_id"]

        with pytest.raises(InvalidTransaction):
            await sla.mark_delivered(TENANT, alert_id)

        failed = await sla.mark_failed(TENANT, alert_id, "smtp timeout")
        assert failed["delivery_status"] == "FAILED"
        assert failed["failure_reason"] == "smtp timeout"

        sent = await sla.mark_sent(TENANT, alert_id)
        assert sent["attempts"] == 2
        assert sent["failure_reason"] is None

        delivered = await sla.mark_delivered(TENANT, alert_id)
        assert delivered["delivered_at"] is not None
        opened = await sla.mark_opened(TENANT, alert_id)
        assert opened["delivery_status"] == "OPENED"

        with pytest.raises(InvalidTransaction):
            await sla.mark_sent(TENANT, alert_id)

        [listed] = await sla.list_sla_alerts(TENANT, agency["id"])
        assert listed["id"] == alert_id


class TestStatus:
    @pytest.mark.asyncio
    async def test_overall_status_is_worst_open_severity(self):
        agency = await make_agency()
        await sla.create_default_sla_config(TENANT, agency["id"])

        status = await sla.get_sla_status(TENANT, agency["id"])
        assert status["status"] == "HEALTHY"
        assert status["snapshot_computed_at"] is None
        assert all(m["current_value"] is None for m in status["metrics"])

        await sla.check_breach(TENANT, agency["id"], SlaMetricType.SUBMISSION_RATE, 55)
        assert (await sla.get_sla_status(TENANT, agency["id"]))["status"] == "WARNING"

        await sla.check_breach(TENANT, agency["id"], SlaMetricType.FILL_RATE, 5)
        status = await sla.get_sla_status(TENANT, agency["id"])
        assert status["status"] == "CRITICAL"
        fill = next(m for m in status["metrics"] if m["metric_type"] == "FILL_RATE")
        assert fill["open_severity"] == "CRITICAL"
        assert fill["active_breaches"] == 1
        assert fill["total_breaches"] == 1

    @pytest.mark.asyncio
    async def test_status_without_configuration(self):
        agency = await make_agency()
        with pytest.raises(SlaConfigMissing):
            await sla.get_sla_status(TENANT, agency["id"])


class TestEvaluation:
    @pytest.mark.asyncio
    async def test_agency_without_history_is_skipped(self, sent_tasks):
        agency = await make_agency()
        await sla.create_default_sla_config(TENANT, agency["id"])

        outcome = await sla.evaluate_agency_sla(TENANT, agency["id"])
        assert not outcome["evaluated"]

        await performance.recompute_snapshot(TENANT, agency["id"])
        outcome = await sla.evaluate_agency_sla(TENANT, agency["id"])
        assert not outcome["evaluated"]
        assert not sent_tasks.called

    @pytest.mark.asyncio
    async def test_snapshot_values_are_checked(self, sent_tasks):
        agency = await make_agency(contact_email="ops@northwind.example")
        await sla.create_default_sla_config(TENANT, agency["id"])
        job = await make_job()
        distribution = await distributions.create_distribution(
            TENANT, job["id"], agency["id"], DistributionTier.STANDARD, require_acceptance=False
        )
        await distributions.submit_candidate(
            TENANT, distribution["id"], CandidateIdentity.from_raw(email="jan.jansen@acme.io")
        )
        await performance.recompute_snapshot(TENANT, agency["id"])

        outcome = await sla.evaluate_agency_sla(TENANT, agency["id"])

        assert outcome["evaluated"]
        transitions = {c["metric_type"]: c["transition"] for c in outcome["checks"]}
        # Nothing filled or accepted yet; submitted right away
        assert transitions == {
            "RESPONSE_TIME": "UNCHANGED",
            "SUBMISSION_RATE": "UNCHANGED",
            "QUALITY_RATE": "OPENED",
            "FILL_RATE": "OPENED",
            "ACCEPTANCE_RATE": "UNCHANGED",
        }
        assert sent_tasks.call_count == 2

        assert await sla.evaluate_all_agencies() == 1
        assert sent_tasks.call_count == 2
