"""
Budget endpoints.

Budget tree, ledger postings and transfers, allocations, threshold alerts,
state changes, utilization, reconciliation and forecasts.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from api.dependencies import get_actor, get_tenant_id
from api.schemas.common import ERROR_RESPONSES
from api.schemas.budgets import (
    AllocationCreate,
    BudgetAlertCreate,
    BudgetCreate,
    BudgetLock,
    ForecastRequest,
    TransactionCreate,
    TransferCreate,
)
from api.services import budgets as budget_service
from api.services import forecasting as forecast_service
from database.models.budgets import BudgetStatus, TransactionType

router = APIRouter(prefix="/budgets", tags=["budgets"], responses=ERROR_RESPONSES)


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create Budget")
async def create_budget(
    body: BudgetCreate,
    tenant_id: str = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor),
):
    """The opening balance is written to the ledger as the first posting."""
    return await budget_service.create_budget(tenant_id, created_by=actor, **body.model_dump())


@router.get("", summary="List Budgets")
async def list_budgets(
    company_id: Optional[int] = Query(None),
    budget_status: Optional[BudgetStatus] = Query(None, alias="status"),
    tenant_id: str = Depends(get_tenant_id),
):
    return await budget_service.list_budgets(tenant_id, company_id, budget_status)


# Literal paths are registered before "/{budget_id}" so they are not shadowed
@router.post("/transfers", status_code=status.HTTP_201_CREATED, summary="Transfer Between Budgets")
async def transfer(
    body: TransferCreate,
    tenant_id: str = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor),
):
    """Debit and credit are posted atomically under one transfer group id."""
    return await budget_service.transfer(
        tenant_id,
        body.from_budget_id,
        body.to_budget_id,
        body.amount,
        description=body.description,
        created_by=actor,
    )


@router.get("/consolidated", summary="Consolidated Budget Totals")
async def get_consolidated_budgets(
    company_id: Optional[int] = Query(None),
    tenant_id: str = Depends(get_tenant_id),
):
    """Tenant totals grouped by currency, level and status."""
    return await budget_service.get_consolidated_budgets(tenant_id, company_id)


@router.post("/alerts/{alert_id}/resolve", summary="Resolve Budget Alert")
async def resolve_budget_alert(
    alert_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await budget_service.resolve_budget_alert(tenant_id, alert_id)


@router.get("/{budget_id}", summary="Get Budget")
async def get_budget(
    budget_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await budget_service.get_budget(tenant_id, budget_id)


@router.get("/{budget_id}/tree", summary="Get Budget Subtree")
async def get_budget_tree(
    budget_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await budget_service.get_budget_tree(tenant_id, budget_id)


@router.get("/{budget_id}/summary", summary="Budget Summary")
async def get_budget_summary(
    budget_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    """Utilization, recent postings, active alerts and descendant spend."""
    return await budget_service.get_budget_summary(tenant_id, budget_id)


# ==================== Ledger ===================== #


@router.post(
    "/{budget_id}/transactions",
    status_code=status.HTTP_201_CREATED,
    summary="Post Budget Transaction",
)
async def post_budget_transaction(
    body: TransactionCreate,
    budget_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor),
):
    """
    Post a DEDUCTION, REFUND or ADJUSTMENT.

    Refusals answer 409 (exceeded or locked) or 400 (invalid posting).
    """
    return await budget_service.post_budget_transaction(
        tenant_id,
        budget_id,
        body.transaction_type,
        body.amount,
        source_type=body.source_type,
        source_reference=body.source_reference,
        description=body.description,
        created_by=actor,
        allocation_id=body.allocation_id,
        at=body.at,
    )


@router.get("/{budget_id}/transactions", summary="List Budget Transactions")
async def list_transactions(
    budget_id: int = Path(...),
    transaction_type: Optional[TransactionType] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
):
    return await budget_service.list_transactions(
        tenant_id, budget_id, transaction_type, limit, offset
    )


@router.get("/{budget_id}/reconcile", summary="Reconcile Budget")
async def reconcile_budget(
    budget_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    """Replay the ledger and compare it with the stored balances."""
    return await budget_service.reconcile_budget(tenant_id, budget_id)


@router.get("/{budget_id}/utilization", summary="Budget Utilization")
async def get_budget_utilization(
    budget_id: int = Path(...),
    as_of: Optional[date] = Query(None),
    tenant_id: str = Depends(get_tenant_id),
):
    return await budget_service.get_budget_utilization(tenant_id, budget_id, as_of)


# ==================== Allocations ===================== #


@router.post(
    "/{budget_id}/allocations",
    status_code=status.HTTP_201_CREATED,
    summary="Create Allocation",
)
async def create_allocation(
    body: AllocationCreate,
    budget_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor),
):
    return await budget_service.create_allocation(
        tenant_id, budget_id, body.target_type, body.target_id, body.amount, created_by=actor
    )


@router.get("/{budget_id}/allocations", summary="List Allocations")
async def list_allocations(
    budget_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await budget_service.list_allocations(tenant_id, budget_id)


# ==================== Alerts ===================== #


@router.post(
    "/{budget_id}/alerts",
    status_code=status.HTTP_201_CREATED,
    summary="Create Budget Alert",
)
async def create_budget_alert(
    body: BudgetAlertCreate,
    budget_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await budget_service.create_budget_alert(tenant_id, budget_id, **body.model_dump())


@router.get("/{budget_id}/alerts", summary="List Budget Alerts")
async def list_budget_alerts(
    budget_id: int = Path(...),
    triggered_only: bool = Query(False),
    tenant_id: str = Depends(get_tenant_id),
):
    return await budget_service.list_budget_alerts(tenant_id, budget_id, triggered_only)


# ==================== State ===================== #


@router.post("/{budget_id}/lock", summary="Lock Budget")
async def lock_budget(
    budget_id: int = Path(...),
    body: Optional[BudgetLock] = None,
    tenant_id: str = Depends(get_tenant_id),
):
    """A locked budget refuses postings, as do all of its descendants."""
    return await budget_service.lock_budget(tenant_id, budget_id, body.reason if body else None)


@router.post("/{budget_id}/unlock", summary="Unlock Budget")
async def unlock_budget(
    budget_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await budget_service.unlock_budget(tenant_id, budget_id)


@router.post("/{budget_id}/activate", summary="Activate Budget")
async def activate_budget(
    budget_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await budget_service.activate_budget(tenant_id, budget_id)


@router.post("/{budget_id}/pause", summary="Pause Budget")
async def pause_budget(
    budget_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await budget_service.pause_budget(tenant_id, budget_id)


@router.post("/{budget_id}/close", summary="Close Budget")
async def close_budget(
    budget_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await budget_service.close_budget(tenant_id, budget_id)


# ==================== Forecasts ===================== #


@router.post(
    "/{budget_id}/forecast", status_code=status.HTTP_201_CREATED, summary="Forecast Budget"
)
async def forecast_budget(
    budget_id: int = Path(...),
    body: Optional[ForecastRequest] = None,
    tenant_id: str = Depends(get_tenant_id),
):
    """Project spend over the horizon from the recent daily spend."""
    body = body or ForecastRequest()
    return await forecast_service.forecast_budget(
        tenant_id, budget_id, body.horizon_days, body.window_days
    )


@router.get("/{budget_id}/forecast", summary="Latest Budget Forecast")
async def get_latest_forecast(
    budget_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await forecast_service.get_latest_forecast(tenant_id, budget_id)
