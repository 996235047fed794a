"""Tests for the alert delivery tasks and the notification client."""

from unittest.mock import patch

import httpx
import pytest

from api.services import budgets, sla
from conftest import TENANT, make_agency, money, period
from core.integrations.notifications import NotificationClient, NotificationDeliveryError
from database.models.budgets import AlertSeverity, TransactionType
from database.models.sla import SlaMetricType
from workers.celery_app import run_async
from workers.tasks.alerts import MAX_DELIVERY_RETRIES, deliver_budget_alert, deliver_sla_alert


async def _sla_alert() -> tuple[int, int]:
    agency = await make_agency(contact_email="ops@northwind.example")
    await sla.configure_sla(TENANT, agency["id"], SlaMetricType.FILL_RATE, 60, 40, 20)
    outcome = await sla.check_breach(TENANT, agency["id"], SlaMetricType.FILL_RATE, 10)
    return agency["id"], outcome["alert_id"]


async def _triggered_budget_alert() -> int:
    start, end = period()
    budget = await budgets.create_budget(TENANT, "Recruitment 2026", money("1000.00"), start, end)
    await budgets.create_budget_alert(
        TENANT, budget["id"], threshold_percentage=money("50"), severity=AlertSeverity.WARNING
    )
    await budgets.post_budget_transaction(
        TENANT, budget["id"], TransactionType.DEDUCTION, money("600.00")
    )
    return budget["id"]


@pytest.fixture
def notifier():
    with patch("workers.tasks.alerts.NotificationClient") as client_class:
        yield client_class.return_value


class TestSlaAlertDelivery:
    def test_delivered_alert_is_marked_sent(self, notifier):
        _, alert_id = run_async(_sla_alert)

        result = deliver_sla_alert.apply(kwargs={"tenant_id": TENANT, "alert_id": alert_id}).get()

        assert result == {"status": "sent", "alert_id": alert_id}
        event_type, payload = notifier.send.call_args.args
        assert event_type == "sla.breach"
        assert payload["id"] == alert_id
        alert = run_async(sla.get_sla_alert, TENANT, alert_id)
        assert alert["delivery_status"] == "SENT"
        assert alert["attempts"] == 1

    def test_failure_after_last_retry_is_recorded(self, notifier):
        _, alert_id = run_async(_sla_alert)
        notifier.send.side_effect = NotificationDeliveryError("connection refused")

        result = deliver_sla_alert.apply(
            kwargs={"tenant_id": TENANT, "alert_id": alert_id}, retries=MAX_DELIVERY_RETRIES
        ).get()

        assert result["status"] == "failed"
        alert = run_async(sla.get_sla_alert, TENANT, alert_id)
        assert alert["delivery_status"] == "FAILED"
        assert alert["failure_reason"] == "connection refused"

    def test_already_sent_alert_is_skipped(self, notifier):
        _, alert_id = run_async(_sla_alert)
        run_async(sla.mark_sent, TENANT, alert_id)

        result = deliver_sla_alert.apply(kwargs={"tenant_id": TENANT, "alert_id": alert_id}).get()

        assert result["status"] == "sent"
        assert not notifier.send.called


class TestBudgetAlertDelivery:
    def test_payload_is_forwarded(self, notifier, sent_tasks):
        budget_id = run_async(_triggered_budget_alert)
        payload = sent_tasks.call_args.kwargs["kwargs"]["payload"]

        result = deliver_budget_alert.apply(kwargs={"tenant_id": TENANT, "payload": payload}).get()

        assert result["status"] == "sent"
        notifier.send.assert_called_once_with(
            "budget.alert_triggered", payload, tenant_id=TENANT
        )
        [alert] = run_async(budgets.list_budget_alerts, TENANT, budget_id)
        assert alert["last_notified_status"] == "SENT"

    def test_failure_is_recorded(self, notifier, sent_tasks):
        budget_id = run_async(_triggered_budget_alert)
        payload = sent_tasks.call_args.kwargs["kwargs"]["payload"]
        notifier.send.side_effect = NotificationDeliveryError("503")

        result = deliver_budget_alert.apply(
            kwargs={"tenant_id": TENANT, "payload": payload}, retries=MAX_DELIVERY_RETRIES
        ).get()

        assert result["status"] == "failed"
        [alert] = run_async(budgets.list_budget_alerts, TENANT, budget_id)
        assert alert["last_notified_status"] == "FAILED"


class TestNotificationClient:
    def _client_with(self, handler):
        transport = httpx.MockTransport(handler)
        real_client = httpx.Client
        return patch(
            "core.integrations.notifications.httpx.Client",
            lambda timeout: real_client(transport=transport, timeout=timeout),
        )

    def test_unconfigured_client_refuses(self):
        with pytest.raises(NotificationDeliveryError):
            NotificationClient(webhook_url=None).send("sla.breach", {"id": 1})

    def test_posts_event_envelope(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202)

        with self._client_with(handler):
            result = NotificationClient(webhook_url="https://notify.example/hooks").send(
                "sla.breach", {"id": 7}, tenant_id=TENANT
            )

        assert result == {"status_code": 202}
        [request] = seen
        assert request.headers["X-Notification-Event"] == "sla.breach"
        assert request.headers["X-Tenant-ID"] == TENANT
        assert b'"event_type":"sla.breach"' in request.content.replace(b" ", b"")

    def test_rejection_raises(self):
        with self._client_with(lambda request: httpx.Response(500)):
            with pytest.raises(NotificationDeliveryError, match="500"):
                NotificationClient(webhook_url="https://notify.example/hooks").send(
                    "budget.alert_triggered", {"alert_id": 1}
                )
