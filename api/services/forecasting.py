"""Budget forecasting service functions."""

from datetime import datetime
from typing import Any, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.calculations.forecast import (
    MAX_HORIZON_DAYS,
    MIN_HORIZON_DAYS,
    daily_totals,
    effective_window,
    project,
)
from core.config import settings
from core.exceptions import InvalidTransaction
from core.utils.datetime import now, as_utc, add_days, start_of_day
from database.engine import AsyncSessionLocal, commit_or_fail, get_scoped
from database.models.budgets import (
    Budget,
    BudgetForecast,
    BudgetStatus,
    BudgetTransaction,
    TransactionType,
)

logger = logging.getLogger(__name__)


def serialize_forecast(forecast: BudgetForecast) -> dict[str, Any]:
    return {
        "id": forecast.id,
        "budget_id": forecast.budget_id,
        "method": forecast.method,
        "window_days": forecast.window_days,
        "horizon_days": forecast.horizon_days,
        "sample_days": forecast.sample_days,
        "daily_average": str(forecast.daily_average),
        "daily_stddev": forecast.daily_stddev,
        "predicted_spend": str(forecast.predicted_spend),
        "confidence_lower": str(forecast.confidence_lower),
        "confidence_upper": str(forecast.confidence_upper),
        "remaining_at_forecast": str(forecast.remaining_at_forecast),
        "estimated_depletion_date": (
            forecast.estimated_depletion_date.isoformat()
            if forecast.estimated_depletion_date
            else None
        ),
        "forecast_date": forecast.forecast_date.isoformat(),
    }


async def _forecast_in_session(
    session: AsyncSession,
    budget: Budget,
    horizon_days: int,
    window_days: int,
    at: datetime,
) -> BudgetForecast:
    as_of = as_utc(at).date()
    history_start = min(budget.period_start, as_utc(budget.created_at).date())
    days = effective_window(window_days, history_start, as_of)
    since = add_days(start_of_day(as_of), -(days - 1))

    result = await session.execute(
        select(BudgetTransaction.created_at, BudgetTransaction.amount).where(
            BudgetTransaction.budget_id == budget.id,
            BudgetTransaction.transaction_type == TransactionType.DEDUCTION,
            BudgetTransaction.created_at >= since,
            BudgetTransaction.created_at <= at,
        )
    )
    postings = [(as_utc(created_at).date(), amount) for created_at, amount in result.all()]
    totals = daily_totals(postings, as_of, days)
    projection = project(
        totals,
        budget.remaining_amount,
        horizon_days,
        as_of,
        window_days,
        budget.currency,
        settings.forecast_confidence_z,
    )

    forecast = BudgetForecast(
        tenant_id=budget.tenant_id,
        budget_id=budget.id,
        method=projection.method,
        window_days=projection.window_days,
        horizon_days=projection.horizon_days,
        sample_days=projection.sample_days,
        daily_average=projection.daily_average,
        daily_stddev=projection.daily_stddev,
        predicted_spend=projection.predicted_spend,
        confidence_lower=projection.confidence_lower,
        confidence_upper=projection.confidence_upper,
        remaining_at_forecast=projection.remaining,
        estimated_depletion_date=projection.estimated_depletion_date,
        forecast_date=at,
    )
    session.add(forecast)
    await session.flush()
    return forecast


async def forecast_budget(
    tenant_id: str,
    budget_id: int,
    horizon_days: Optional[int] = None,
    window_days: Optional[int] = None,
    at: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Project a budget's spend over the horizon and store the projection.

    The budget itself is never changed; every run appends a new forecast
    row that supersedes the previous one.
    """
    horizon_days = horizon_days or settings.forecast_default_horizon_days
    window_days = window_days or settings.forecast_window_days
    if not MIN_HORIZON_DAYS <= horizon_days <= MAX_HORIZON_DAYS:
        raise InvalidTransaction(
            f"horizon_days must be between {MIN_HORIZON_DAYS} and {MAX_HORIZON_DAYS}",
            horizon_days=horizon_days,
        )
    if window_days < 1:
        raise InvalidTransaction("window_days must be at least 1", window_days=window_days)

    at = at or now()
    async with AsyncSessionLocal() as session:
        budget = await get_scoped(session, Budget, budget_id, tenant_id)
        forecast = await _forecast_in_session(session, budget, horizon_days, window_days, at)
        await commit_or_fail(session, "budget forecast")
        logger.info(
            f"Forecast budget {budget_id}: {forecast.predicted_spend} over {horizon_days}d, "
            f"depletion {forecast.estimated_depletion_date}"
        )
        return serialize_forecast(forecast)


async def get_latest_forecast(tenant_id: str, budget_id: int) -> Optional[dict[str, Any]]:
    async with AsyncSessionLocal() as session:
        await get_scoped(session, Budget, budget_id, tenant_id)
        result = await session.execute(
            select(BudgetForecast)
            .where(BudgetForecast.budget_id == budget_id)
            .order_by(BudgetForecast.forecast_date.desc(), BudgetForecast.id.desc())
            .limit(1)
        )
        forecast = result.scalar_one_or_none()
        return serialize_forecast(forecast) if forecast else None


async def forecast_all_budgets(at: Optional[datetime] = None) -> int:
    """Batch task: forecast every ACTIVE budget across tenants."""
    at = at or now()
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(Budget).where(Budget.status == BudgetStatus.ACTIVE).order_by(Budget.id)
        )
        budgets = list(result.scalars().all())
        for budget in budgets:
            await _forecast_in_session(
                session,
                budget,
                settings.forecast_default_horizon_days,
                settings.forecast_window_days,
                at,
            )
        await commit_or_fail(session, "scheduled budget forecasts")

    logger.info(f"Forecast {len(budgets)} active budgets")
    return len(budgets)
