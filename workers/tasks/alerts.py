"""Alert delivery tasks."""

from typing import Any, Dict
import logging

from celery import Task

from api.services import budgets as budget_service
from api.services import sla as sla_service
from core.integrations.notifications import NotificationClient, NotificationDeliveryError
from workers.celery_app import celery_app, run_async

logger = logging.getLogger(__name__)

MAX_DELIVERY_RETRIES = 5


def _backoff(task: Task) -> int:
    return 2 ** task.request.retries * 60


@celery_app.task(name="workers.tasks.alerts.deliver_budget_alert", bind=True)
def deliver_budget_alert(self: Task, tenant_id: str, payload: Dict[str, Any]) -> dict:
    """Deliver a triggered budget alert to the notification service.

    Args:
        tenant_id: Tenant of the budget
        payload: Alert snapshot taken when the threshold was crossed

    Returns:
        Dictionary with delivery status
    """
    alert_id = payload.get("alert_id")
    try:
        NotificationClient().send("budget.alert_triggered", payload, tenant_id=tenant_id)
    except NotificationDeliveryError as e:
        run_async(budget_service.mark_alert_notified, alert_id, "FAILED")
        if self.request.retries >= MAX_DELIVERY_RETRIES:
            logger.error(f"Giving up on budget alert {alert_id}: {e}")
            return {"status": "failed", "alert_id": alert_id, "reason": str(e)}
        raise self.retry(exc=e, countdown=_backoff(self), max_retries=MAX_DELIVERY_RETRIES)

    run_async(budget_service.mark_alert_notified, alert_id, "SENT")
    return {"status": "sent", "alert_id": alert_id}


@celery_app.task(name="workers.tasks.alerts.deliver_sla_alert", bind=True)
def deliver_sla_alert(self: Task, tenant_id: str, alert_id: int) -> dict:
    """Deliver an SLA breach alert and track its delivery status.

    A failed attempt is recorded as FAILED and retried with backoff; a
    later success moves the alert to SENT.
    """
    alert = run_async(sla_service.get_sla_alert, tenant_id, alert_id)
    if alert["delivery_status"] not in ("PENDING", "FAILED"):
        logger.info(f"SLA alert {alert_id} already {alert['delivery_status']}")
        return {"status": alert["delivery_status"].lower(), "alert_id": alert_id}

    try:
        NotificationClient().send("sla.breach", alert, tenant_id=tenant_id)
    except NotificationDeliveryError as e:
        run_async(sla_service.mark_failed, tenant_id, alert_id, str(e))
        if self.request.retries >= MAX_DELIVERY_RETRIES:
            logger.error(f"Giving up on SLA alert {alert_id}: {e}")
            return {"status": "failed", "alert_id": alert_id, "reason": str(e)}
        raise self.retry(exc=e, countdown=_backoff(self), max_retries=MAX_DELIVERY_RETRIES)

    run_async(sla_service.mark_sent, tenant_id, alert_id)
    return {"status": "sent", "alert_id": alert_id}
