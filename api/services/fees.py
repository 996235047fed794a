"""
Rate card and fee service functions.

Card resolution prefers an agreement-scoped card over a general one and a
company-scoped card over the agency default; two equally specific valid
cards are a configuration error. Fee arithmetic lives in
``core.calculations.fees``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
import logging

from pydantic import ValidationError
from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.calculations.fees import (
    CompensationInputs,
    FeeResult,
    calculate_line_fee,
    parse_fee_terms,
    select_line,
)
from core.config import settings
from core.exceptions import (
    AmbiguousRateCard,
    InvalidTransaction,
    NoApplicableRateCard,
)
from core.utils.datetime import now
from core.utils.formatting import to_decimal
from database.engine import AsyncSessionLocal, commit_or_fail, get_scoped
from database.models.agencies import Agency, JobCategory, SeniorityLevel
from database.models.jobs import Job, EmploymentType
from database.models.rate_cards import RateCard, RateCardLine, PlacementFee, FeeType

logger = logging.getLogger(__name__)


def serialize_line(line: RateCardLine) -> dict[str, Any]:
    return {
        "id": line.id,
        "rate_card_id": line.rate_card_id,
        "job_category": line.job_category.value,
        "seniority_level": line.seniority_level.value,
        "contract_type": line.contract_type.value if line.contract_type else None,
        "fee_type": line.fee_type.value,
        "fee_terms": line.fee_terms,
        "min_compensation": str(line.min_compensation) if line.min_compensation is not None else None,
        "max_compensation": str(line.max_compensation) if line.max_compensation is not None else None,
        "volume_discount_threshold": line.volume_discount_threshold,
        "volume_discount_percentage": (
            str(line.volume_discount_percentage)
            if line.volume_discount_percentage is not None
            else None
        ),
    }


def serialize_rate_card(card: RateCard, include_lines: bool = True) -> dict[str, Any]:
    data = {
        "id": card.id,
        "agency_id": card.agency_id,
        "company_id": card.company_id,
        "agreement_id": card.agreement_id,
        "name": card.name,
        "version": card.version,
        "currency": card.currency,
        "valid_from": card.valid_from.isoformat(),
        "valid_until": card.valid_until.isoformat() if card.valid_until else None,
        "is_active": card.is_active,
    }
    if include_lines:
        data["lines"] = [serialize_line(line) for line in card.lines]
    return data


def serialize_placement_fee(fee: PlacementFee) -> dict[str, Any]:
    return {
        "id": fee.id,
        "agency_id": fee.agency_id,
        "job_id": fee.job_id,
        "submission_id": fee.submission_id,
        "rate_card_id": fee.rate_card_id,
        "rate_card_line_id": fee.rate_card_line_id,
        "budget_transaction_id": fee.budget_transaction_id,
        "fee_type": fee.fee_type.value,
        "inputs": fee.inputs,
        "gross_amount": str(fee.gross_amount),
        "discount_amount": str(fee.discount_amount),
        "amount": str(fee.amount),
        "currency": fee.currency,
        "calculated_at": fee.calculated_at.isoformat(),
    }


def serialize_fee_result(fee: FeeResult, card: RateCard, line: RateCardLine) -> dict[str, Any]:
    return {
        "rate_card_id": card.id,
        "rate_card_line_id": line.id,
        "fee_type": fee.fee_type.value,
        "basis": str(fee.basis),
        "gross_amount": str(fee.gross_amount),
        "discount_amount": str(fee.discount_amount),
        "amount": str(fee.amount),
        "currency": fee.currency,
        "per_hour": fee.per_hour,
    }


# ==================== Rate Cards ===================== #


def _build_line(tenant_id: str, line_data: dict[str, Any]) -> RateCardLine:
    fee_type = FeeType(line_data["fee_type"])
    try:
        terms = parse_fee_terms(fee_type, line_data.get("fee_terms") or {})
    except ValidationError as e:
        raise InvalidTransaction(
            f"Invalid {fee_type.value} fee terms", errors=e.errors(include_url=False)
        ) from e
    stored_terms = terms.model_dump(mode="json")
    stored_terms.pop("fee_type", None)

    min_comp = to_decimal(line_data.get("min_compensation"))
    max_comp = to_decimal(line_data.get("max_compensation"))
    if min_comp is not None and max_comp is not None and max_comp <= min_comp:
        raise InvalidTransaction("max_compensation must be greater than min_compensation")

    contract_type = line_data.get("contract_type")
    return RateCardLine(
        tenant_id=tenant_id,
        job_category=JobCategory(line_data["job_category"]),
        seniority_level=SeniorityLevel(line_data["seniority_level"]),
        contract_type=EmploymentType(contract_type) if contract_type else None,
        fee_type=fee_type,
        fee_terms=stored_terms,
        min_compensation=min_comp,
        max_compensation=max_comp,
        volume_discount_threshold=line_data.get("volume_discount_threshold"),
        volume_discount_percentage=to_decimal(line_data.get("volume_discount_percentage")),
    )


async def create_rate_card(
    tenant_id: str,
    agency_id: int,
    name: str,
    valid_from: datetime,
    valid_until: Optional[datetime] = None,
    company_id: Optional[int] = None,
    agreement_id: Optional[int] = None,
    currency: Optional[str] = None,
    version: int = 1,
    lines: Optional[list[dict[str, Any]]] = None,
) -> dict[str, Any]:
    """Create a rate card with its lines; fee terms are validated per fee type."""
    if valid_until is not None and valid_until <= valid_from:
        raise InvalidTransaction("valid_until must be after valid_from")

    async with AsyncSessionLocal() as session:
        await get_scoped(session, Agency, agency_id, tenant_id)
        card = RateCard(
            tenant_id=tenant_id,
            agency_id=agency_id,
            company_id=company_id,
            agreement_id=agreement_id,
            name=name,
            version=version,
            currency=(currency or settings.default_currency).upper(),
            valid_from=valid_from,
            valid_until=valid_until,
            lines=[_build_line(tenant_id, line_data) for line_data in lines or []],
        )
        session.add(card)
        await commit_or_fail(session, "rate card creation")
        logger.info(f"Created rate card {card.id} for agency {agency_id} ({len(card.lines)} lines)")
        return serialize_rate_card(card)


async def add_rate_card_line(
    tenant_id: str, rate_card_id: int, line_data: dict[str, Any]
) -> dict[str, Any]:
    async with AsyncSessionLocal() as session:
        await get_scoped(session, RateCard, rate_card_id, tenant_id)
        line = _build_line(tenant_id, line_data)
        line.rate_card_id = rate_card_id
        session.add(line)
        await commit_or_fail(session, "rate card line creation")
        return serialize_line(line)


async def deactivate_rate_card(tenant_id: str, rate_card_id: int) -> dict[str, Any]:
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(RateCard)
            .options(selectinload(RateCard.lines))
            .where(RateCard.id == rate_card_id, RateCard.tenant_id == tenant_id)
        )
        card = result.scalar_one_or_none()
        if card is None:
            await get_scoped(session, RateCard, rate_card_id, tenant_id)
        card.is_active = False
        await commit_or_fail(session, "rate card deactivation")
        return serialize_rate_card(card)


async def get_rate_card(tenant_id: str, rate_card_id: int) -> dict[str, Any]:
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(RateCard)
            .options(selectinload(RateCard.lines))
            .where(RateCard.id == rate_card_id, RateCard.tenant_id == tenant_id)
        )
        card = result.scalar_one_or_none()
        if card is None:
            await get_scoped(session, RateCard, rate_card_id, tenant_id)
        return serialize_rate_card(card)


async def list_rate_cards(tenant_id: str, agency_id: int) -> list[dict[str, Any]]:
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(RateCard)
            .where(RateCard.tenant_id == tenant_id, RateCard.agency_id == agency_id)
            .order_by(RateCard.valid_from.desc(), RateCard.id.desc())
        )
        return [serialize_rate_card(c, include_lines=False) for c in result.scalars().all()]


# ==================== Resolution ===================== #


async def resolve_card_in_session(
    session: AsyncSession,
    tenant_id: str,
    agency_id: int,
    company_id: Optional[int] = None,
    agreement_id: Optional[int] = None,
    at: Optional[datetime] = None,
) -> RateCard:
    """
    The single most specific card valid at ``at``.

    Raises:
        NoApplicableRateCard: No card is valid for the scope
        AmbiguousRateCard: Several equally specific cards are valid
    """
    at = at or now()
    query = (
        select(RateCard)
        .options(selectinload(RateCard.lines))
        .where(
            RateCard.tenant_id == tenant_id,
            RateCard.agency_id == agency_id,
            RateCard.is_active.is_(True),
            RateCard.valid_from <= at,
            or_(RateCard.valid_until.is_(None), RateCard.valid_until > at),
        )
    )
    query = query.where(
        RateCard.agreement_id.is_(None)
        if agreement_id is None
        else or_(RateCard.agreement_id.is_(None), RateCard.agreement_id == agreement_id)
    )
    query = query.where(
        RateCard.company_id.is_(None)
        if company_id is None
        else or_(RateCard.company_id.is_(None), RateCard.company_id == company_id)
    )
    cards = (await session.execute(query)).scalars().all()
    if not cards:
        raise NoApplicableRateCard(
            "No rate card is valid for this agency and scope",
            agency_id=agency_id,
            company_id=company_id,
            agreement_id=agreement_id,
            at=at,
        )

    def specificity(card: RateCard) -> tuple[int, int]:
        return (card.agreement_id is not None, card.company_id is not None)

    best = max(specificity(c) for c in cards)
    winners = [c for c in cards if specificity(c) == best]
    if len(winners) > 1:
        raise AmbiguousRateCard(
            "Several equally specific rate cards are valid at the same time",
            rate_card_ids=sorted(c.id for c in winners),
        )
    return winners[0]


async def resolve_card(
    tenant_id: str,
    agency_id: int,
    company_id: Optional[int] = None,
    agreement_id: Optional[int] = None,
    at: Optional[datetime] = None,
) -> dict[str, Any]:
    async with AsyncSessionLocal() as session:
        card = await resolve_card_in_session(
            session, tenant_id, agency_id, company_id, agreement_id, at
        )
        return serialize_rate_card(card)


async def count_prior_placements(
    session: AsyncSession, card: RateCard, agency_id: int, at: datetime
) -> int:
    """Placements the agency made under this card within its validity window."""
    query = select(func.count()).select_from(PlacementFee).where(
        PlacementFee.rate_card_id == card.id,
        PlacementFee.agency_id == agency_id,
        PlacementFee.calculated_at >= card.valid_from,
        PlacementFee.calculated_at < at,
    )
    return (await session.execute(query)).scalar() or 0


async def price_placement(
    session: AsyncSession,
    tenant_id: str,
    agency_id: int,
    job: Job,
    inputs: CompensationInputs,
    contract_type: Optional[EmploymentType] = None,
    at: Optional[datetime] = None,
) -> tuple[RateCard, RateCardLine, FeeResult]:
    """Resolve card and line for a job and compute the fee, without persisting."""
    at = at or now()
    card = await resolve_card_in_session(
        session, tenant_id, agency_id, job.company_id, job.agreement_id, at
    )
    line = select_line(card.lines, job.category, job.seniority, inputs, contract_type)
    prior = await count_prior_placements(session, card, agency_id, at)
    fee = calculate_line_fee(line, inputs, card.currency, prior)
    return card, line, fee


def inputs_from_job(
    job: Job,
    annual_salary: Optional[Decimal] = None,
    monthly_salary: Optional[Decimal] = None,
    hourly_rate: Optional[Decimal] = None,
) -> CompensationInputs:
    """Explicit compensation inputs, falling back to the job's own figures."""
    if annual_salary is None and monthly_salary is None:
        annual_salary = job.salary_annual
    return CompensationInputs(
        annual_salary=annual_salary,
        monthly_salary=monthly_salary,
        hourly_rate=hourly_rate if hourly_rate is not None else job.hourly_rate,
    )


async def quote_fee(
    tenant_id: str,
    agency_id: int,
    job_id: int,
    inputs: Optional[CompensationInputs] = None,
    contract_type: Optional[EmploymentType] = None,
    at: Optional[datetime] = None,
) -> dict[str, Any]:
    """Compute the fee a placement would cost, without recording it."""
    async with AsyncSessionLocal() as session:
        job = await get_scoped(session, Job, job_id, tenant_id)
        inputs = inputs or inputs_from_job(job)
        card, line, fee = await price_placement(
            session, tenant_id, agency_id, job, inputs, contract_type or job.employment_type, at
        )
        return serialize_fee_result(fee, card, line)


async def calculate_fee(
    tenant_id: str,
    agency_id: int,
    job_id: int,
    inputs: Optional[CompensationInputs] = None,
    contract_type: Optional[EmploymentType] = None,
    submission_id: Optional[int] = None,
    at: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Compute and store an immutable placement fee.

    Raises:
        NoApplicableRateLine / AmbiguousRateLine: The line could not be
            resolved (card-level variants included)
    """
    at = at or now()
    async with AsyncSessionLocal() as session:
        job = await get_scoped(session, Job, job_id, tenant_id)
        inputs = inputs or inputs_from_job(job)
        contract_type = contract_type or job.employment_type
        card, line, fee = await price_placement(
            session, tenant_id, agency_id, job, inputs, contract_type, at
        )
        placement_fee = PlacementFee(
            tenant_id=tenant_id,
            agency_id=agency_id,
            job_id=job_id,
            submission_id=submission_id,
            rate_card_id=card.id,
            rate_card_line_id=line.id,
            fee_type=fee.fee_type,
            inputs={**inputs.to_dict(), "contract_type": contract_type.value, **fee.details},
            gross_amount=fee.gross_amount,
            discount_amount=fee.discount_amount,
            amount=fee.amount,
            currency=fee.currency,
            calculated_at=at,
        )
        try:
            async with session.begin_nested():
                session.add(placement_fee)
                await session.flush()
        except IntegrityError:
            raise InvalidTransaction(
                "A placement fee was already recorded for this submission",
                submission_id=submission_id,
            )
        await commit_or_fail(session, "fee calculation")
        logger.info(
            f"Fee {placement_fee.id} for agency {agency_id} on job {job_id}: "
            f"{fee.amount} {fee.currency} ({fee.fee_type.value})"
        )
        return serialize_placement_fee(placement_fee)


async def get_placement_fee(tenant_id: str, fee_id: int) -> dict[str, Any]:
    async with AsyncSessionLocal() as session:
        fee = await get_scoped(session, PlacementFee, fee_id, tenant_id)
        return serialize_placement_fee(fee)
