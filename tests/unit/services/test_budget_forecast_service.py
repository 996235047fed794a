"""Tests for stored budget forecasts."""

from datetime import timedelta

import pytest

from api.services import budgets, forecasting
from conftest import OTHER_TENANT, TENANT, days_ago, money, period
from core.exceptions import InvalidTransaction, NotFound
from core.utils.datetime import now
from database.models.budgets import BudgetStatus, TransactionType


async def _budget_with_daily_spend(total: str, days: int = 60, amount: str = "100.00") -> dict:
    start, end = period(days_back=90)
    budget = await budgets.create_budget(TENANT, "Recruitment 2026", money(total), start, end)
    for i in range(days):
        await budgets.post_budget_transaction(
            TENANT, budget["id"], TransactionType.DEDUCTION, money(amount), at=days_ago(i)
        )
    return budget


@pytest.mark.asyncio
async def test_steady_spend_projects_linearly():
    budget = await _budget_with_daily_spend("10000.00")

    forecast = await forecasting.forecast_budget(
        TENANT, budget["id"], horizon_days=30, window_days=60, at=now()
    )

    assert forecast["method"] == "MOVING_AVERAGE_60D"
    assert forecast["sample_days"] == 60
    assert forecast["daily_average"] == "100.00"
    assert forecast["predicted_spend"] == "3000.00"
    assert forecast["confidence_lower"] == "3000.00"
    assert forecast["confidence_upper"] == "3000.00"
    assert forecast["remaining_at_forecast"] == "4000.00"
    assert forecast["estimated_depletion_date"] is None


@pytest.mark.asyncio
async def test_depletion_date_when_spend_outruns_budget():
    budget = await _budget_with_daily_spend("7000.00")
    at = now()

    forecast = await forecasting.forecast_budget(
        TENANT, budget["id"], horizon_days=30, window_days=60, at=at
    )

    assert forecast["remaining_at_forecast"] == "1000.00"
    expected = at.date() + timedelta(days=10)
    assert forecast["estimated_depletion_date"] == expected.isoformat()


@pytest.mark.asyncio
async def test_refunds_do_not_lower_the_projection():
    budget = await _budget_with_daily_spend("10000.00", days=30)
    await budgets.post_budget_transaction(
        TENANT, budget["id"], TransactionType.REFUND, money("500.00")
    )

    forecast = await forecasting.forecast_budget(
        TENANT, budget["id"], horizon_days=10, window_days=30, at=now()
    )
    assert forecast["predicted_spend"] == "1000.00"


@pytest.mark.asyncio
async def test_young_budget_uses_shorter_window():
    start, end = period(days_back=0)
    budget = await budgets.create_budget(TENANT, "New project", money("5000.00"), start, end)
    await budgets.post_budget_transaction(
        TENANT, budget["id"], TransactionType.DEDUCTION, money("100.00")
    )

    forecast = await forecasting.forecast_budget(
        TENANT, budget["id"], horizon_days=30, window_days=60
    )

    assert forecast["sample_days"] == 1
    assert forecast["predicted_spend"] == "3000.00"


@pytest.mark.asyncio
async def test_no_spend_predicts_zero():
    start, end = period()
    budget = await budgets.create_budget(TENANT, "Idle", money("5000.00"), start, end)

    forecast = await forecasting.forecast_budget(TENANT, budget["id"], horizon_days=30)

    assert forecast["predicted_spend"] == "0.00"
    assert forecast["estimated_depletion_date"] is None


@pytest.mark.asyncio
async def test_horizon_out_of_range_rejected():
    start, end = period()
    budget = await budgets.create_budget(TENANT, "Idle", money("5000.00"), start, end)
    with pytest.raises(InvalidTransaction):
        await forecasting.forecast_budget(TENANT, budget["id"], horizon_days=366)


@pytest.mark.asyncio
async def test_forecast_never_changes_budget():
    budget = await _budget_with_daily_spend("10000.00", days=5)
    before = await budgets.get_budget(TENANT, budget["id"])

    await forecasting.forecast_budget(TENANT, budget["id"], horizon_days=30)

    assert await budgets.get_budget(TENANT, budget["id"]) == before


@pytest.mark.asyncio
async def test_latest_forecast_supersedes_earlier_ones():
    budget = await _budget_with_daily_spend("10000.00", days=10)
    assert await forecasting.get_latest_forecast(TENANT, budget["id"]) is None

    await forecasting.forecast_budget(TENANT, budget["id"], horizon_days=10, at=days_ago(1, hour=12))
    latest = await forecasting.forecast_budget(TENANT, budget["id"], horizon_days=20)

    stored = await forecasting.get_latest_forecast(TENANT, budget["id"])
    assert stored["id"] == latest["id"]
    assert stored["horizon_days"] == 20

    with pytest.raises(NotFound):
        await forecasting.get_latest_forecast(OTHER_TENANT, budget["id"])


@pytest.mark.asyncio
async def test_batch_forecasts_active_budgets_only():
    start, end = period()
    await budgets.create_budget(TENANT, "Active", money("1000.00"), start, end)
    await budgets.create_budget(
        OTHER_TENANT, "Other tenant", money("1000.00"), start, end
    )
    await budgets.create_budget(
        TENANT, "Draft", money("1000.00"), start, end, status=BudgetStatus.DRAFT
    )

    assert await forecasting.forecast_all_budgets() == 2
