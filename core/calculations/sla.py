"""
SLA threshold evaluation.

RESPONSE_TIME is measured in hours and lower is better; every other metric
is a percentage where higher is better.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from database.models.sla import SlaMetricType, SlaSeverity


LOWER_IS_BETTER = frozenset({SlaMetricType.RESPONSE_TIME})

# metric -> (target, warning, critical)
DEFAULT_THRESHOLDS: dict[SlaMetricType, tuple[float, float, float]] = {
    SlaMetricType.RESPONSE_TIME: (24.0, 48.0, 72.0),
    SlaMetricType.SUBMISSION_RATE: (80.0, 60.0, 40.0),
    SlaMetricType.QUALITY_RATE: (70.0, 50.0, 30.0),
    SlaMetricType.FILL_RATE: (60.0, 40.0, 20.0),
    SlaMetricType.ACCEPTANCE_RATE: (80.0, 60.0, 40.0),
}


class BreachTransition(str, Enum):
    """What a check did to the breach state of an (agency, metric) pair."""

    OPENED = "OPENED"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"
    UNCHANGED = "UNCHANGED"


@dataclass(frozen=True)
class ThresholdCheck:
    breached: bool
    severity: Optional[SlaSeverity]
    threshold: Optional[float]


def crosses(metric_type: SlaMetricType, actual: float, threshold: float) -> bool:
    """True when ``actual`` is on the bad side of ``threshold`` (inclusive)."""
    if metric_type in LOWER_IS_BETTER:
        return actual >= threshold
    return actual <= threshold


def validate_thresholds(
    metric_type: SlaMetricType, warning: float, critical: float
) -> None:
    """Critical must be at least as bad as warning for the metric's direction."""
    if metric_type in LOWER_IS_BETTER:
        if critical < warning:
            raise ValueError("Critical threshold must be >= warning threshold for RESPONSE_TIME")
    elif critical > warning:
        raise ValueError(
            f"Critical threshold must be <= warning threshold for {metric_type.value}"
        )


def evaluate(
    metric_type: SlaMetricType, actual: float, warning: float, critical: float
) -> ThresholdCheck:
    """Compare a metric value against warning and critical thresholds."""
    if crosses(metric_type, actual, critical):
        return ThresholdCheck(True, SlaSeverity.CRITICAL, critical)
    if crosses(metric_type, actual, warning):
        return ThresholdCheck(True, SlaSeverity.WARNING, warning)
    return ThresholdCheck(False, None, None)


def transition(
    open_severity: Optional[SlaSeverity], check: ThresholdCheck
) -> BreachTransition:
    """
    State change implied by a new check given the currently open breach.

    A CRITICAL breach that improves to WARNING stays open as CRITICAL: only
    resolution closes it.
    """
    if open_severity is None:
        return BreachTransition.OPENED if check.breached else BreachTransition.UNCHANGED
    if not check.breached:
        return BreachTransition.RESOLVED
    if open_severity == SlaSeverity.WARNING and check.severity == SlaSeverity.CRITICAL:
        return BreachTransition.ESCALATED
    return BreachTransition.UNCHANGED
