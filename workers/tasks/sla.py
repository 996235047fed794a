"""SLA monitoring tasks."""

import logging

from api.services import sla as sla_service
from workers.celery_app import celery_app, run_async

logger = logging.getLogger(__name__)


@celery_app.task(name="workers.tasks.sla.evaluate_all_agencies")
def evaluate_all_agencies() -> dict:
    """Check every configured agency against its latest performance snapshot."""
    evaluated = run_async(sla_service.evaluate_all_agencies)
    logger.info(f"SLA evaluation covered {evaluated} agencies")
    return {"status": "success", "agencies": evaluated}


@celery_app.task(name="workers.tasks.sla.evaluate_agency")
def evaluate_agency(tenant_id: str, agency_id: int) -> dict:
    return run_async(sla_service.evaluate_agency_sla, tenant_id, agency_id)
