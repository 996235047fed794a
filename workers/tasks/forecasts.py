"""Budget forecasting tasks."""

import logging

from celery import Task

from api.services import forecasting as forecast_service
from workers.celery_app import celery_app, run_async

logger = logging.getLogger(__name__)


@celery_app.task(name="workers.tasks.forecasts.forecast_all_budgets")
def forecast_all_budgets() -> dict:
    """Store a fresh forecast for every active budget."""
    count = run_async(forecast_service.forecast_all_budgets)
    logger.info(f"Scheduled forecasting covered {count} budgets")
    return {"status": "success", "budgets": count}


@celery_app.task(name="workers.tasks.forecasts.forecast_budget", bind=True)
def forecast_budget(self: Task, tenant_id: str, budget_id: int, horizon_days: int = None) -> dict:
    """Forecast a single budget on demand."""
    forecast = run_async(forecast_service.forecast_budget, tenant_id, budget_id, horizon_days)
    return {"status": "success", "forecast": forecast}
