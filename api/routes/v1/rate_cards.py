"""
Rate card and fee endpoints.

Rate cards price placements per agency; fees can be quoted without
side effects or calculated and stored.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from api.dependencies import get_tenant_id
from api.schemas.common import ERROR_RESPONSES
from api.schemas.fees import FeeRequest, RateCardCreate, RateCardLineIn
from api.services import fees as fee_service

router = APIRouter(tags=["fees"], responses=ERROR_RESPONSES)


@router.post("/rate-cards", status_code=status.HTTP_201_CREATED, summary="Create Rate Card")
async def create_rate_card(body: RateCardCreate, tenant_id: str = Depends(get_tenant_id)):
    data = body.model_dump(exclude={"lines"})
    lines = [line.model_dump() for line in body.lines]
    return await fee_service.create_rate_card(tenant_id, lines=lines, **data)


@router.get("/rate-cards", summary="List Rate Cards")
async def list_rate_cards(
    agency_id: int = Query(..., gt=0),
    tenant_id: str = Depends(get_tenant_id),
):
    return await fee_service.list_rate_cards(tenant_id, agency_id)


@router.get("/rate-cards/resolve", summary="Resolve Applicable Rate Card")
async def resolve_card(
    agency_id: int = Query(..., gt=0),
    company_id: Optional[int] = Query(None),
    agreement_id: Optional[int] = Query(None),
    at: Optional[datetime] = Query(None),
    tenant_id: str = Depends(get_tenant_id),
):
    """Most specific active card for the agency at the given time."""
    return await fee_service.resolve_card(tenant_id, agency_id, company_id, agreement_id, at)


@router.get("/rate-cards/{rate_card_id}", summary="Get Rate Card")
async def get_rate_card(
    rate_card_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await fee_service.get_rate_card(tenant_id, rate_card_id)


@router.post(
    "/rate-cards/{rate_card_id}/lines",
    status_code=status.HTTP_201_CREATED,
    summary="Add Rate Card Line",
)
async def add_rate_card_line(
    body: RateCardLineIn,
    rate_card_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await fee_service.add_rate_card_line(
        tenant_id, rate_card_id, body.model_dump()
    )


@router.post("/rate-cards/{rate_card_id}/deactivate", summary="Deactivate Rate Card")
async def deactivate_rate_card(
    rate_card_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await fee_service.deactivate_rate_card(tenant_id, rate_card_id)


@router.post("/fees/quote", summary="Quote Fee")
async def quote_fee(body: FeeRequest, tenant_id: str = Depends(get_tenant_id)):
    """Price a placement without storing anything."""
    return await fee_service.quote_fee(
        tenant_id,
        body.agency_id,
        body.job_id,
        body.to_inputs(),
        body.contract_type,
        body.at,
    )


@router.post("/fees", status_code=status.HTTP_201_CREATED, summary="Calculate Fee")
async def calculate_fee(body: FeeRequest, tenant_id: str = Depends(get_tenant_id)):
    return await fee_service.calculate_fee(
        tenant_id,
        body.agency_id,
        body.job_id,
        body.to_inputs(),
        body.contract_type,
        body.submission_id,
        body.at,
    )


@router.get("/fees/{fee_id}", summary="Get Placement Fee")
async def get_placement_fee(
    fee_id: int = Path(...),
    tenant_id: str = Depends(get_tenant_id),
):
    return await fee_service.get_placement_fee(tenant_id, fee_id)
