"""Agency performance snapshot tasks."""

import logging

from api.services import performance as performance_service
from workers.celery_app import celery_app, run_async

logger = logging.getLogger(__name__)


@celery_app.task(name="workers.tasks.performance.recompute_all_snapshots")
def recompute_all_snapshots() -> dict:
    """Append fresh snapshots for every tenant's active agencies."""
    count = run_async(performance_service.recompute_all_snapshots)
    logger.info(f"Recomputed {count} performance snapshots")
    return {"status": "success", "snapshots": count}


@celery_app.task(name="workers.tasks.performance.recompute_tenant_snapshots")
def recompute_tenant_snapshots(tenant_id: str) -> dict:
    snapshots = run_async(performance_service.recompute_tenant_snapshots, tenant_id)
    return {"status": "success", "snapshots": len(snapshots)}
