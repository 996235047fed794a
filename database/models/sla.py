"""
SLA Models

Per-agency, per-metric thresholds; the breaches recorded when a metric
crosses them; and alerts, which are delivery attempts about a breach.
"""

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    String,
    Boolean,
    ForeignKey,
    Float,
    Integer,
    Text,
    Enum as SQLEnum,
    Index,
    UniqueConstraint,
)
from database.engine import Base
from database.types import BigIntPK, UTCDateTime
from core.utils.datetime import now
from datetime import datetime
from enum import Enum as PyEnum


# ==================== SLA Enums ===================== #
class SlaMetricType(str, PyEnum):
    RESPONSE_TIME = "RESPONSE_TIME"  # hours, lower is better
    SUBMISSION_RATE = "SUBMISSION_RATE"
    QUALITY_RATE = "QUALITY_RATE"
    FILL_RATE = "FILL_RATE"
    ACCEPTANCE_RATE = "ACCEPTANCE_RATE"


class SlaSeverity(str, PyEnum):
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class SlaBreachStatus(str, PyEnum):
    OPEN = "OPEN"
    ESCALATED = "ESCALATED"  # superseded by a CRITICAL breach
    RESOLVED = "RESOLVED"


class AlertDeliveryMethod(str, PyEnum):
    EMAIL = "EMAIL"
    IN_APP = "IN_APP"
    WEBHOOK = "WEBHOOK"


class AlertDeliveryStatus(str, PyEnum):
    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    OPENED = "OPENED"
    FAILED = "FAILED"


# ==================== Configuration Model ===================== #
class SlaConfiguration(Base):
    """Warning and critical thresholds for one metric of one agency."""

    __tablename__ = "sla_configurations"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    agency_id: Mapped[int] = mapped_column(
        ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    metric_type: Mapped[SlaMetricType] = mapped_column(
        SQLEnum(SlaMetricType, name="sla_metric_type"), nullable=False
    )
    target_value: Mapped[float] = mapped_column(Float, nullable=False)
    warning_threshold: Mapped[float] = mapped_column(Float, nullable=False)
    critical_threshold: Mapped[float] = mapped_column(Float, nullable=False)
    measurement_period_days: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)

    __table_args__ = (
        UniqueConstraint("agency_id", "metric_type", name="uq_sla_config_agency_metric"),
    )


# ==================== Breach Model ===================== #
class SlaBreach(Base):
    """
    A recorded threshold crossing.

    ``open_key`` is ``"<agency_id>:<metric>"`` while the breach is open and
    NULL once escalated or resolved; its unique constraint keeps one open
    breach per agency and metric.
    """

    __tablename__ = "sla_breaches"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    agency_id: Mapped[int] = mapped_column(
        ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    configuration_id: Mapped[int] = mapped_column(
        ForeignKey("sla_configurations.id", ondelete="CASCADE"), nullable=False
    )
    metric_type: Mapped[SlaMetricType] = mapped_column(
        SQLEnum(SlaMetricType, name="sla_metric_type"), nullable=False
    )
    severity: Mapped[SlaSeverity] = mapped_column(
        SQLEnum(SlaSeverity, name="sla_severity"), nullable=False
    )
    status: Mapped[SlaBreachStatus] = mapped_column(
        SQLEnum(SlaBreachStatus, name="sla_breach_status"),
        default=SlaBreachStatus.OPEN,
        nullable=False,
    )
    open_key: Mapped[str | None] = mapped_column(String(100), unique=True)

    actual_value: Mapped[float] = mapped_column(Float, nullable=False)
    threshold_value: Mapped[float] = mapped_column(Float, nullable=False)
    last_value: Mapped[float] = mapped_column(Float, nullable=False)

    detected_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    resolution_notes: Mapped[str | None] = mapped_column(Text)

    alerts: Mapped[list["SlaAlert"]] = relationship(back_populates="breach")

    __table_args__ = (
        Index("idx_sla_breach_agency_metric", "agency_id", "metric_type", "detected_at"),
    )


# ==================== Alert Model ===================== #
class SlaAlert(Base):
    """
    One delivery attempt about a breach.

    Delivery status moves independently of the breach it refers to.
    """

    __tablename__ = "sla_alerts"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    breach_id: Mapped[int] = mapped_column(
        ForeignKey("sla_breaches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    agency_id: Mapped[int] = mapped_column(
        ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False
    )
    severity: Mapped[SlaSeverity] = mapped_column(
        SQLEnum(SlaSeverity, name="sla_severity"), nullable=False
    )
    delivery_method: Mapped[AlertDeliveryMethod] = mapped_column(
        SQLEnum(AlertDeliveryMethod, name="alert_delivery_method"),
        default=AlertDeliveryMethod.WEBHOOK,
        nullable=False,
    )
    delivery_status: Mapped[AlertDeliveryStatus] = mapped_column(
        SQLEnum(AlertDeliveryStatus, name="alert_delivery_status"),
        default=AlertDeliveryStatus.PENDING,
        nullable=False,
    )
    recipient: Mapped[str | None] = mapped_column(String(255))
    message: Mapped[str] = mapped_column(Text, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=now, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    opened_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    breach: Mapped["SlaBreach"] = relationship(back_populates="alerts")
