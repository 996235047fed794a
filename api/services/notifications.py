"""
Hand-off of alerts to the background notification tasks.

Enqueueing happens after the triggering transaction committed and never
fails the operation that triggered it: the alert is already recorded, and
an alert whose task could not be queued keeps its PENDING status.
"""

from typing import Any, Iterable
import logging

from workers.celery_app import celery_app

logger = logging.getLogger(__name__)

BUDGET_ALERT_TASK = "workers.tasks.alerts.deliver_budget_alert"
SLA_ALERT_TASK = "workers.tasks.alerts.deliver_sla_alert"


def enqueue_budget_alerts(tenant_id: str, alerts: Iterable[dict[str, Any]]) -> int:
    """Queue delivery of triggered budget alerts; returns how many were queued."""
    queued = 0
    for alert in alerts:
        try:
            celery_app.send_task(
                BUDGET_ALERT_TASK,
                kwargs={"tenant_id": tenant_id, "payload": alert},
                queue="notifications",
            )
            queued += 1
        except Exception as e:
            logger.error(f"Could not queue budget alert {alert.get('alert_id')}: {e}")
    return queued


def enqueue_sla_alert(tenant_id: str, alert_id: int) -> bool:
    """Queue delivery of one SLA alert."""
    try:
        celery_app.send_task(
            SLA_ALERT_TASK,
            kwargs={"tenant_id": tenant_id, "alert_id": alert_id},
            queue="notifications",
        )
        return True
    except Exception as e:
        logger.error(f"Could not queue SLA alert {alert_id}: {e}")
        return False
