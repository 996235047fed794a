"""Periodic housekeeping: ownership expiry and lapsed exclusivity."""

import logging

from api.services import distributions as distribution_service
from api.services import ownership as ownership_service
from workers.celery_app import celery_app, run_async

logger = logging.getLogger(__name__)


@celery_app.task(name="workers.tasks.maintenance.expire_ownerships")
def expire_ownerships() -> dict:
    """Release candidate ownerships whose protection window has ended."""
    released = run_async(ownership_service.expire_ownerships)
    logger.info(f"Expired {released} candidate ownerships")
    return {"status": "success", "released": released}


@celery_app.task(name="workers.tasks.maintenance.release_lapsed_exclusivity")
def release_lapsed_exclusivity() -> dict:
    """Downgrade exclusive distributions whose window has passed to PRIORITY."""
    released = run_async(distribution_service.release_lapsed_exclusivity)
    logger.info(f"Released exclusivity on {released} distributions")
    return {"status": "success", "released": released}
