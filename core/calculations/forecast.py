"""
Budget spend forecasting.

Moving average of daily DEDUCTION totals over a trailing window, projected
linearly over a horizon, with a normal-approximation confidence band.
"""

import math
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from core.utils.formatting import ZERO, round_money


MIN_HORIZON_DAYS = 1
MAX_HORIZON_DAYS = 365


@dataclass(frozen=True)
class ForecastResult:
    method: str
    window_days: int
    horizon_days: int
    sample_days: int
    daily_average: Decimal
    daily_stddev: float
    predicted_spend: Decimal
    confidence_lower: Decimal
    confidence_upper: Decimal
    remaining: Decimal
    estimated_depletion_date: Optional[date]


def method_label(window_days: int) -> str:
    return f"MOVING_AVERAGE_{window_days}D"


def effective_window(window_days: int, history_start: date, as_of: date) -> int:
    """Days of history to average over: the window, cut short for young budgets."""
    age = (as_of - history_start).days + 1
    return max(1, min(window_days, age))


def daily_totals(
    postings: Iterable[tuple[date, Decimal]], as_of: date, days: int
) -> list[Decimal]:
    """
    Spend per calendar day for the ``days`` days ending on ``as_of``.

    Days without postings count as zero spend.
    """
    first_day = as_of - timedelta(days=days - 1)
    totals = [ZERO] * days
    for day, amount in postings:
        if first_day <= day <= as_of:
            totals[(day - first_day).days] += amount
    return totals


def project(
    totals: list[Decimal],
    remaining: Decimal,
    horizon_days: int,
    as_of: date,
    window_days: int,
    currency: str = "EUR",
    z: Decimal = Decimal("1.96"),
) -> ForecastResult:
    """
    Linear projection of the daily mean over the horizon.

    The band is ``z * sigma * sqrt(horizon)`` around the prediction, with the
    lower bound clamped at zero. A depletion date is only given when the
    predicted spend exceeds the remaining amount.
    """
    if not MIN_HORIZON_DAYS <= horizon_days <= MAX_HORIZON_DAYS:
        raise ValueError(
            f"Horizon must be between {MIN_HORIZON_DAYS} and {MAX_HORIZON_DAYS} days"
        )

    n = len(totals)
    mean = sum(totals, ZERO) / n if n else ZERO
    variance = sum(((x - mean) ** 2 for x in totals), ZERO) / n if n else ZERO
    sigma = math.sqrt(float(variance))

    predicted = mean * horizon_days
    band = Decimal(str(float(z) * sigma * math.sqrt(horizon_days)))

    depletion = None
    if predicted > remaining and mean > ZERO:
        days_left = math.ceil(remaining / mean)
        depletion = as_of + timedelta(days=days_left)

    return ForecastResult(
        method=method_label(window_days),
        window_days=window_days,
        horizon_days=horizon_days,
        sample_days=n,
        daily_average=round_money(mean, currency),
        daily_stddev=round(sigma, 4),
        predicted_spend=round_money(predicted, currency),
        confidence_lower=round_money(max(predicted - band, ZERO), currency),
        confidence_upper=round_money(predicted + band, currency),
        remaining=remaining,
        estimated_depletion_date=depletion,
    )
