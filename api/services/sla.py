"""
SLA monitoring service functions.

At most one breach per (agency, metric) is open at a time; the unique
``open_key`` column enforces it. A check only writes when the breach state
changes (opened, escalated, resolved). Alerts are created alongside the
breach and delivered by a background task, so delivery problems never
affect what was recorded.
"""

from datetime import datetime
from typing import Any, Optional
import logging

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from api.services.agencies import latest_snapshot
from api.services.notifications import enqueue_sla_alert
from core.calculations.sla import (
    DEFAULT_THRESHOLDS,
    BreachTransition,
    evaluate,
    transition,
    validate_thresholds,
)
from core.exceptions import InvalidTransaction, SlaConfigMissing
from core.utils.datetime import now
from database.engine import AsyncSessionLocal, commit_or_fail, get_scoped
from database.models.agencies import Agency, AgencyPerformanceSnapshot
from database.models.sla import (
    SlaConfiguration,
    SlaBreach,
    SlaAlert,
    SlaMetricType,
    SlaSeverity,
    SlaBreachStatus,
    AlertDeliveryMethod,
    AlertDeliveryStatus,
)

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = {
    SlaMetricType.RESPONSE_TIME: "response_time_avg_hours",
    SlaMetricType.SUBMISSION_RATE: "submission_rate",
    SlaMetricType.QUALITY_RATE: "placement_rate",
    SlaMetricType.FILL_RATE: "fill_rate",
    SlaMetricType.ACCEPTANCE_RATE: "acceptance_rate",
}


def _open_key(agency_id: int, metric_type: SlaMetricType) -> str:
    return f"{agency_id}:{metric_type.value}"


def serialize_configuration(config: SlaConfiguration) -> dict[str, Any]:
    return {
        "id": config.id,
        "agency_id": config.agency_id,
        "metric_type": config.metric_type.value,
        "target_value": config.target_value,
        "warning_threshold": config.warning_threshold,
        "critical_threshold": config.critical_threshold,
        "measurement_period_days": config.measurement_period_days,
        "is_active": config.is_active,
    }


def serialize_breach(breach: SlaBreach) -> dict[str, Any]:
    return {
        "id": breach.id,
        "agency_id": breach.agency_id,
        "configuration_id": breach.configuration_id,
        "metric_type": breach.metric_type.value,
        "severity": breach.severity.value,
        "status": breach.status.value,
        "actual_value": breach.actual_value,
        "threshold_value": breach.threshold_value,
        "last_value": breach.last_value,
        "detected_at": breach.detected_at.isoformat(),
        "resolved_at": breach.resolved_at.isoformat() if breach.resolved_at else None,
        "resolution_notes": breach.resolution_notes,
    }


def serialize_sla_alert(alert: SlaAlert) -> dict[str, Any]:
    def stamp(value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None

    return {
        "id": alert.id,
        "breach_id": alert.breach_id,
        "agency_id": alert.agency_id,
        "severity": alert.severity.value,
        "delivery_method": alert.delivery_method.value,
        "delivery_status": alert.delivery_status.value,
        "recipient": alert.recipient,
        "message": alert.message,
        "attempts": alert.attempts,
        "failure_reason": alert.failure_reason,
        "sent_at": stamp(alert.sent_at),
        "delivered_at": stamp(alert.delivered_at),
        "opened_at": stamp(alert.opened_at),
        "failed_at": stamp(alert.failed_at),
    }


# ==================== Configuration ===================== #


async def configure_sla(
    tenant_id: str,
    agency_id: int,
    metric_type: SlaMetricType,
    target_value: float,
    warning_threshold: float,
    critical_threshold: float,
    measurement_period_days: int = 30,
    is_active: bool = True,
) -> dict[str, Any]:
    """Create or replace an agency's thresholds for one metric."""
    try:
        validate_thresholds(metric_type, warning_threshold, critical_threshold)
    except ValueError as e:
        raise InvalidTransaction(str(e), metric_type=metric_type) from e

    async with AsyncSessionLocal() as session:
        await get_scoped(session, Agency, agency_id, tenant_id)
        result = await session.execute(
            select(SlaConfiguration).where(
                SlaConfiguration.tenant_id == tenant_id,
                SlaConfiguration.agency_id == agency_id,
                SlaConfiguration.metric_type == metric_type,
            )
        )
        config = result.scalar_one_or_none()
        if config is None:
            config = SlaConfiguration(
                tenant_id=tenant_id, agency_id=agency_id, metric_type=metric_type
            )
            session.add(config)
        config.target_value = target_value
        config.warning_threshold = warning_threshold
        config.critical_threshold = critical_threshold
        config.measurement_period_days = measurement_period_days
        config.is_active = is_active
        await commit_or_fail(session, "SLA configuration")
        return serialize_configuration(config)


async def create_default_sla_config(tenant_id: str, agency_id: int) -> list[dict[str, Any]]:
    """Give an agency the default thresholds for every metric it has none for."""
    async with AsyncSessionLocal() as session:
        await get_scoped(session, Agency, agency_id, tenant_id)
        result = await session.execute(
            select(SlaConfiguration).where(
                SlaConfiguration.tenant_id == tenant_id,
                SlaConfiguration.agency_id == agency_id,
            )
        )
        configs = {c.metric_type: c for c in result.scalars().all()}
        for metric_type, (target, warning, critical) in DEFAULT_THRESHOLDS.items():
            if metric_type in configs:
                continue
            configs[metric_type] = SlaConfiguration(
                tenant_id=tenant_id,
                agency_id=agency_id,
                metric_type=metric_type,
                target_value=target,
                warning_threshold=warning,
                critical_threshold=critical,
            )
            session.add(configs[metric_type])
        await commit_or_fail(session, "default SLA configuration")
        return [serialize_configuration(configs[m]) for m in SlaMetricType if m in configs]


async def list_sla_configurations(tenant_id: str, agency_id: int) -> list[dict[str, Any]]:
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(SlaConfiguration)
            .where(
                SlaConfiguration.tenant_id == tenant_id,
                SlaConfiguration.agency_id == agency_id,
            )
            .order_by(SlaConfiguration.id)
        )
        return [serialize_configuration(c) for c in result.scalars().all()]


# ==================== Breach Detection ===================== #


async def _create_alert(
    session: AsyncSession, agency: Agency, breach: SlaBreach
) -> SlaAlert:
    direction = "above" if breach.metric_type == SlaMetricType.RESPONSE_TIME else "below"
    alert = SlaAlert(
        tenant_id=breach.tenant_id,
        breach_id=breach.id,
        agency_id=agency.id,
        severity=breach.severity,
        delivery_method=(
            AlertDeliveryMethod.EMAIL if agency.contact_email else AlertDeliveryMethod.IN_APP
        ),
        recipient=agency.contact_email,
        message=(
            f"{agency.name}: {breach.metric_type.value} is {breach.actual_value:g}, "
            f"{direction} the {breach.severity.value.lower()} threshold of "
            f"{breach.threshold_value:g}"
        ),
    )
    session.add(alert)
    await session.flush()
    return alert


async def _open_breach(
    session: AsyncSession,
    config: SlaConfiguration,
    severity: SlaSeverity,
    actual: float,
    threshold: float,
    at: datetime,
) -> SlaBreach:
    breach = SlaBreach(
        tenant_id=config.tenant_id,
        agency_id=config.agency_id,
        configuration_id=config.id,
        metric_type=config.metric_type,
        severity=severity,
        status=SlaBreachStatus.OPEN,
        open_key=_open_key(config.agency_id, config.metric_type),
        actual_value=actual,
        threshold_value=threshold,
        last_value=actual,
        detected_at=at,
    )
    async with session.begin_nested():
        session.add(breach)
        await session.flush()
    return breach


async def _check_in_session(
    session: AsyncSession,
    tenant_id: str,
    agency: Agency,
    config: SlaConfiguration,
    actual: float,
    at: datetime,
) -> tuple[dict[str, Any], Optional[int]]:
    key = _open_key(agency.id, config.metric_type)
    result = await session.execute(select(SlaBreach).where(SlaBreach.open_key == key))
    open_breach = result.scalar_one_or_none()

    check = evaluate(
        config.metric_type, actual, config.warning_threshold, config.critical_threshold
    )
    change = transition(open_breach.severity if open_breach else None, check)
    breach, alert = open_breach, None

    if change == BreachTransition.OPENED:
        try:
            breach = await _open_breach(session, config, check.severity, actual, check.threshold, at)
        except IntegrityError:
            # A concurrent check opened it first
            result = await session.execute(select(SlaBreach).where(SlaBreach.open_key == key))
            breach = result.scalar_one()
            change = BreachTransition.UNCHANGED
        else:
            alert = await _create_alert(session, agency, breach)

    elif change == BreachTransition.ESCALATED:
        superseded = await session.execute(
            update(SlaBreach)
            .where(SlaBreach.id == open_breach.id, SlaBreach.open_key == key)
            .values(status=SlaBreachStatus.ESCALATED, open_key=None, last_value=actual)
            .execution_options(synchronize_session=False)
        )
        if superseded.rowcount == 1:
            breach = await _open_breach(
                session, config, check.severity, actual, check.threshold, at
            )
            alert = await _create_alert(session, agency, breach)
        else:
            change = BreachTransition.UNCHANGED

    elif change == BreachTransition.RESOLVED:
        resolved = await session.execute(
            update(SlaBreach)
            .where(SlaBreach.id == open_breach.id, SlaBreach.open_key == key)
            .values(
                status=SlaBreachStatus.RESOLVED,
                open_key=None,
                last_value=actual,
                resolved_at=at,
                resolution_notes="Metric back within threshold",
            )
            .execution_options(synchronize_session=False)
        )
        if resolved.rowcount == 0:
            change = BreachTransition.UNCHANGED
        await session.refresh(open_breach)

    elif open_breach is not None:
        await session.execute(
            update(SlaBreach)
            .where(SlaBreach.id == open_breach.id)
            .values(last_value=actual)
            .execution_options(synchronize_session=False)
        )
        await session.refresh(open_breach)

    if change != BreachTransition.UNCHANGED:
        logger.warning(
            f"SLA {change.value.lower()} for agency {agency.id} "
            f"{config.metric_type.value}={actual:g}"
        )
    return (
        {
            "agency_id": agency.id,
            "metric_type": config.metric_type.value,
            "actual_value": actual,
            "breached": check.breached,
            "severity": check.severity.value if check.severity else None,
            "transition": change.value,
            "breach": serialize_breach(breach) if breach is not None else None,
            "alert_id": alert.id if alert else None,
        },
        alert.id if alert else None,
    )


async def _active_config(
    session: AsyncSession, tenant_id: str, agency_id: int, metric_type: SlaMetricType
) -> SlaConfiguration:
    result = await session.execute(
        select(SlaConfiguration).where(
            SlaConfiguration.tenant_id == tenant_id,
            SlaConfiguration.agency_id == agency_id,
            SlaConfiguration.metric_type == metric_type,
            SlaConfiguration.is_active.is_(True),
        )
    )
    config = result.scalar_one_or_none()
    if config is None:
        raise SlaConfigMissing(agency_id, metric_type)
    return config


async def check_breach(
    tenant_id: str,
    agency_id: int,
    metric_type: SlaMetricType,
    actual_value: float,
    at: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Compare one metric value with the agency's thresholds.

    Raises:
        SlaConfigMissing: The agency has no active configuration for the metric
    """
    at = at or now()
    async with AsyncSessionLocal() as session:
        agency = await get_scoped(session, Agency, agency_id, tenant_id)
        config = await _active_config(session, tenant_id, agency_id, metric_type)
        outcome, alert_id = await _check_in_session(
            session, tenant_id, agency, config, actual_value, at
        )
        await commit_or_fail(session, "SLA check")

    if alert_id is not None:
        enqueue_sla_alert(tenant_id, alert_id)
    return outcome


def snapshot_values(snapshot: AgencyPerformanceSnapshot) -> dict[SlaMetricType, float]:
    """Metric values a snapshot provides; response time is absent without responses."""
    values = {}
    for metric_type, field in SNAPSHOT_FIELDS.items():
        value = getattr(snapshot, field)
        if value is not None:
            values[metric_type] = value
    return values


async def evaluate_agency_sla(
    tenant_id: str, agency_id: int, at: Optional[datetime] = None
) -> dict[str, Any]:
    """
    Check every active configuration of an agency against its latest
    performance snapshot. Agencies without distribution history are skipped.
    """
    at = at or now()
    alert_ids = []
    async with AsyncSessionLocal() as session:
        agency = await get_scoped(session, Agency, agency_id, tenant_id)
        snapshot = await latest_snapshot(session, tenant_id, agency_id)
        if snapshot is None or snapshot.jobs_received == 0:
            return {"agency_id": agency_id, "evaluated": False, "checks": []}

        result = await session.execute(
            select(SlaConfiguration)
            .where(
                SlaConfiguration.tenant_id == tenant_id,
                SlaConfiguration.agency_id == agency_id,
                SlaConfiguration.is_active.is_(True),
            )
            .order_by(SlaConfiguration.id)
        )
        values = snapshot_values(snapshot)
        checks = []
        for config in result.scalars().all():
            if config.metric_type not in values:
                continue
            outcome, alert_id = await _check_in_session(
                session, tenant_id, agency, config, values[config.metric_type], at
            )
            checks.append(outcome)
            if alert_id is not None:
                alert_ids.append(alert_id)
        await commit_or_fail(session, "SLA evaluation")

    for alert_id in alert_ids:
        enqueue_sla_alert(tenant_id, alert_id)
    return {"agency_id": agency_id, "evaluated": True, "checks": checks}


async def evaluate_all_agencies(at: Optional[datetime] = None) -> int:
    """Batch task: evaluate every active agency that has SLA configurations."""
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(Agency.tenant_id, Agency.id)
            .where(
                Agency.is_active.is_(True),
                Agency.id.in_(
                    select(SlaConfiguration.agency_id).where(SlaConfiguration.is_active.is_(True))
                ),
            )
            .order_by(Agency.id)
        )
        agencies = result.all()

    evaluated = 0
    for tenant_id, agency_id in agencies:
        outcome = await evaluate_agency_sla(tenant_id, agency_id, at)
        evaluated += outcome["evaluated"]
    logger.info(f"Evaluated SLAs of {evaluated}/{len(agencies)} agencies")
    return evaluated


async def resolve_breach(
    tenant_id: str, breach_id: int, notes: Optional[str] = None
) -> dict[str, Any]:
    """Close an open breach by hand, e.g. after a dispute."""
    async with AsyncSessionLocal() as session:
        breach = await get_scoped(session, SlaBreach, breach_id, tenant_id)
        result = await session.execute(
            update(SlaBreach)
            .where(SlaBreach.id == breach_id, SlaBreach.open_key.is_not(None))
            .values(
                status=SlaBreachStatus.RESOLVED,
                open_key=None,
                resolved_at=now(),
                resolution_notes=notes or "Resolved manually",
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTransaction(
                f"Breach {breach_id} is {breach.status.value}", breach_id=breach_id
            )
        await commit_or_fail(session, "SLA breach resolution")
        await session.refresh(breach)
        return serialize_breach(breach)


# ==================== Status ===================== #


async def get_sla_status(tenant_id: str, agency_id: int) -> dict[str, Any]:
    """
    Per-metric SLA picture of an agency: current value from the latest
    snapshot, thresholds, open severity and breach counts.
    """
    async with AsyncSessionLocal() as session:
        await get_scoped(session, Agency, agency_id, tenant_id)
        result = await session.execute(
            select(SlaConfiguration)
            .where(
                SlaConfiguration.tenant_id == tenant_id,
                SlaConfiguration.agency_id == agency_id,
            )
            .order_by(SlaConfiguration.id)
        )
        configs = list(result.scalars().all())
        if not configs:
            raise SlaConfigMissing(agency_id, None)

        snapshot = await latest_snapshot(session, tenant_id, agency_id)
        counts = await session.execute(
            select(SlaBreach.metric_type, SlaBreach.status, func.count())
            .where(SlaBreach.tenant_id == tenant_id, SlaBreach.agency_id == agency_id)
            .group_by(SlaBreach.metric_type, SlaBreach.status)
        )
        breach_counts: dict[SlaMetricType, dict[SlaBreachStatus, int]] = {}
        for metric_type, status, count in counts.all():
            breach_counts.setdefault(metric_type, {})[status] = count

        open_result = await session.execute(
            select(SlaBreach).where(
                SlaBreach.tenant_id == tenant_id,
                SlaBreach.agency_id == agency_id,
                SlaBreach.open_key.is_not(None),
            )
        )
        open_breaches = {b.metric_type: b for b in open_result.scalars().all()}

    values = snapshot_values(snapshot) if snapshot else {}
    metrics = []
    for config in configs:
        per_status = breach_counts.get(config.metric_type, {})
        open_breach = open_breaches.get(config.metric_type)
        metrics.append(
            {
                "metric_type": config.metric_type.value,
                "current_value": values.get(config.metric_type),
                "target_value": config.target_value,
                "warning_threshold": config.warning_threshold,
                "critical_threshold": config.critical_threshold,
                "is_active": config.is_active,
                "open_severity": open_breach.severity.value if open_breach else None,
                "active_breaches": 1 if open_breach else 0,
                "total_breaches": sum(per_status.values()),
            }
        )

    severities = {m["open_severity"] for m in metrics}
    if SlaSeverity.CRITICAL.value in severities:
        overall = "CRITICAL"
    elif SlaSeverity.WARNING.value in severities:
        overall = "WARNING"
    else:
        overall = "HEALTHY"
    return {
        "agency_id": agency_id,
        "status": overall,
        "snapshot_computed_at": snapshot.computed_at.isoformat() if snapshot else None,
        "metrics": metrics,
    }


async def list_breaches(
    tenant_id: str,
    agency_id: int,
    status: Optional[SlaBreachStatus] = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    async with AsyncSessionLocal() as session:
        query = select(SlaBreach).where(
            SlaBreach.tenant_id == tenant_id, SlaBreach.agency_id == agency_id
        )
        if status is not None:
            query = query.where(SlaBreach.status == status)
        result = await session.execute(
            query.order_by(SlaBreach.detected_at.desc(), SlaBreach.id.desc()).limit(limit)
        )
        return [serialize_breach(b) for b in result.scalars().all()]


# ==================== Alert Delivery ===================== #

_DELIVERY_TRANSITIONS = {
    AlertDeliveryStatus.SENT: ((AlertDeliveryStatus.PENDING, AlertDeliveryStatus.FAILED), "sent_at"),
    AlertDeliveryStatus.DELIVERED: ((AlertDeliveryStatus.SENT,), "delivered_at"),
    AlertDeliveryStatus.OPENED: (
        (AlertDeliveryStatus.SENT, AlertDeliveryStatus.DELIVERED),
        "opened_at",
    ),
    AlertDeliveryStatus.FAILED: (
        (AlertDeliveryStatus.PENDING, AlertDeliveryStatus.SENT),
        "failed_at",
    ),
}


async def _mark(
    tenant_id: str,
    alert_id: int,
    to_status: AlertDeliveryStatus,
    failure_reason: Optional[str] = None,
) -> dict[str, Any]:
    from_statuses, stamp_field = _DELIVERY_TRANSITIONS[to_status]
    values: dict[str, Any] = {"delivery_status": to_status, stamp_field: now()}
    if to_status in (AlertDeliveryStatus.SENT, AlertDeliveryStatus.FAILED):
        values["attempts"] = SlaAlert.attempts + 1
    if to_status == AlertDeliveryStatus.FAILED:
        values["failure_reason"] = failure_reason
    elif to_status == AlertDeliveryStatus.SENT:
        values["failure_reason"] = None

    async with AsyncSessionLocal() as session:
        alert = await get_scoped(session, SlaAlert, alert_id, tenant_id)
        result = await session.execute(
            update(SlaAlert)
            .where(SlaAlert.id == alert_id, SlaAlert.delivery_status.in_(from_statuses))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTransaction(
                f"Alert {alert_id} cannot move from {alert.delivery_status.value} "
                f"to {to_status.value}",
                alert_id=alert_id,
            )
        await commit_or_fail(session, "SLA alert delivery status")
        await session.refresh(alert)
        return serialize_sla_alert(alert)


async def mark_sent(tenant_id: str, alert_id: int) -> dict[str, Any]:
    return await _mark(tenant_id, alert_id, AlertDeliveryStatus.SENT)


async def mark_delivered(tenant_id: str, alert_id: int) -> dict[str, Any]:
    return await _mark(tenant_id, alert_id, AlertDeliveryStatus.DELIVERED)


async def mark_opened(tenant_id: str, alert_id: int) -> dict[str, Any]:
    return await _mark(tenant_id, alert_id, AlertDeliveryStatus.OPENED)


async def mark_failed(tenant_id: str, alert_id: int, reason: str) -> dict[str, Any]:
    return await _mark(tenant_id, alert_id, AlertDeliveryStatus.FAILED, reason)


async def get_sla_alert(tenant_id: str, alert_id: int) -> dict[str, Any]:
    async with AsyncSessionLocal() as session:
        alert = await get_scoped(session, SlaAlert, alert_id, tenant_id)
        return serialize_sla_alert(alert)


async def list_sla_alerts(
    tenant_id: str,
    agency_id: int,
    delivery_status: Optional[AlertDeliveryStatus] = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    async with AsyncSessionLocal() as session:
        query = select(SlaAlert).where(
            SlaAlert.tenant_id == tenant_id, SlaAlert.agency_id == agency_id
        )
        if delivery_status is not None:
            query = query.where(SlaAlert.delivery_status == delivery_status)
        result = await session.execute(
            query.order_by(SlaAlert.created_at.desc(), SlaAlert.id.desc()).limit(limit)
        )
        return [serialize_sla_alert(a) for a in result.scalars().all()]
