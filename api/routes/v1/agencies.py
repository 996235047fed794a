"""
Agency management endpoints.

Agencies, their specializations and geographic coverage, performance
snapshots and SLA configuration, breaches and alerts.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from api.dependencies import get_tenant_id
from api.schemas.common import ERROR_RESPONSES
from api.schemas.agencies import (
    AgencyActivation,
    AgencyCreate,
    AlertFailure,
    BreachResolution,
    CoverageCreate,
    SlaCheck,
    SlaConfigurationIn,
    SpecializationCreate,
    SpecializationUpdate,
)
from api.services import agencies as agency_service
from api.services import performance as performance_service
from api.services import sla as sla_service
from database.models.sla import AlertDeliveryStatus, SlaBreachStatus

router = APIRouter(prefix="/agencies", tags=["agencies"], responses=ERROR_RESPONSES)


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create Agency")
async def create_agency(body: AgencyCreate, tenant_id: str = Depends(get_tenant_id)):
    return await agency_service.create_agency(
        tenant_id, body.name, contact_email=body.contact_email
    )


@router.get("", summary="List Agencies")
async def list_agencies(
    active_only: bool = Query(True),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
):
    return await agency_service.list_agencies(tenant_id, active_only, limit, offset)


@router.get("/{agency_id}", summary="Get Agency")
async def get_agency(
    agency_id: int = Path(..., description="Agency ID"),
    tenant_id: str = Depends(get_tenant_id),
):
    """Agency with its specializations and coverage."""
    return await agency_service.get_agency(tenant_id, agency_id)


@router.put("/{agency_id}/active", summary="Activate or Deactivate Agency")
async def set_agency_active(
    body: AgencyActivation,
    agency_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await agency_service.set_agency_active(tenant_id, agency_id, body.is_active)


# ==================== Specializations & Coverage ===================== #


@router.post(
    "/{agency_id}/specializations",
    status_code=status.HTTP_201_CREATED,
    summary="Add Specialization",
)
async def add_specialization(
    body: SpecializationCreate,
    agency_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await agency_service.add_specialization(tenant_id, agency_id, **body.model_dump())


@router.patch("/specializations/{specialization_id}", summary="Update Specialization")
async def update_specialization(
    body: SpecializationUpdate,
    specialization_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await agency_service.update_specialization(
        tenant_id, specialization_id, **body.model_dump(exclude_unset=True)
    )


@router.delete(
    "/specializations/{specialization_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove Specialization",
)
async def remove_specialization(
    specialization_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    await agency_service.remove_specialization(tenant_id, specialization_id)


@router.post(
    "/{agency_id}/coverage",
    status_code=status.HTTP_201_CREATED,
    summary="Add Geographic Coverage",
)
async def add_coverage(
    body: CoverageCreate,
    agency_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await agency_service.add_coverage(tenant_id, agency_id, **body.model_dump())


@router.delete(
    "/coverage/{coverage_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove Geographic Coverage",
)
async def remove_coverage(
    coverage_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    await agency_service.remove_coverage(tenant_id, coverage_id)


# ==================== Performance ===================== #


@router.get("/{agency_id}/performance", summary="Performance Snapshots")
async def get_performance_snapshots(
    agency_id: int = Path(...),
    limit: int = Query(12, ge=1, le=100),
    tenant_id: str = Depends(get_tenant_id),
):
    """Newest snapshots first."""
    return await agency_service.get_performance_snapshots(tenant_id, agency_id, limit)


@router.post("/{agency_id}/performance/recompute", summary="Recompute Performance Snapshot")
async def recompute_snapshot(
    agency_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await performance_service.recompute_snapshot(tenant_id, agency_id)


# ==================== SLA ===================== #


@router.get("/{agency_id}/sla", summary="SLA Status")
async def get_sla_status(
    agency_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    """Per-metric values against thresholds, open breaches and overall status."""
    return await sla_service.get_sla_status(tenant_id, agency_id)


@router.get("/{agency_id}/sla/configurations", summary="List SLA Configurations")
async def list_sla_configurations(
    agency_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await sla_service.list_sla_configurations(tenant_id, agency_id)


@router.put("/{agency_id}/sla/configurations", summary="Configure SLA Metric")
async def configure_sla(
    body: SlaConfigurationIn,
    agency_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await sla_service.configure_sla(tenant_id, agency_id, **body.model_dump())


@router.post(
    "/{agency_id}/sla/configurations/defaults",
    status_code=status.HTTP_201_CREATED,
    summary="Create Default SLA Configuration",
)
async def create_default_sla_config(
    agency_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await sla_service.create_default_sla_config(tenant_id, agency_id)


@router.post("/{agency_id}/sla/check", summary="Check SLA Metric")
async def check_breach(
    body: SlaCheck,
    agency_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    """Compare one measured value against the agency's thresholds."""
    return await sla_service.check_breach(
        tenant_id, agency_id, body.metric_type, body.actual_value
    )


@router.post("/{agency_id}/sla/evaluate", summary="Evaluate SLA From Latest Snapshot")
async def evaluate_agency_sla(
    agency_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await sla_service.evaluate_agency_sla(tenant_id, agency_id)


@router.get("/{agency_id}/sla/breaches", summary="List SLA Breaches")
async def list_breaches(
    agency_id: int = Path(...),
    breach_status: Optional[SlaBreachStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    tenant_id: str = Depends(get_tenant_id),
):
    return await sla_service.list_breaches(tenant_id, agency_id, breach_status, limit)


@router.post("/sla/breaches/{breach_id}/resolve", summary="Resolve SLA Breach")
async def resolve_breach(
    body: BreachResolution,
    breach_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await sla_service.resolve_breach(tenant_id, breach_id, body.notes)


@router.get("/{agency_id}/sla/alerts", summary="List SLA Alerts")
async def list_sla_alerts(
    agency_id: int = Path(...),
    delivery_status: Optional[AlertDeliveryStatus] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    tenant_id: str = Depends(get_tenant_id),
):
    return await sla_service.list_sla_alerts(tenant_id, agency_id, delivery_status, limit)


@router.post("/sla/alerts/{alert_id}/delivered", summary="Mark SLA Alert Delivered")
async def mark_delivered(
    alert_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await sla_service.mark_delivered(tenant_id, alert_id)


@router.post("/sla/alerts/{alert_id}/opened", summary="Mark SLA Alert Opened")
async def mark_opened(
    alert_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await sla_service.mark_opened(tenant_id, alert_id)


@router.post("/sla/alerts/{alert_id}/failed", summary="Mark SLA Alert Failed")
async def mark_failed(
    body: AlertFailure,
    alert_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await sla_service.mark_failed(tenant_id, alert_id, body.reason)
