"""
Placement fee calculation.

Fee parameters are a tagged variant: each fee type carries only its own
fields, validated by a pydantic discriminated union. Every function here is
pure, so the same line, compensation and contract type always give the
same fee.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Annotated, Any, Iterable, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

from core.exceptions import AmbiguousRateLine, NoApplicableRateLine
from core.utils.formatting import ZERO, percentage_of, round_money
from database.models.rate_cards import FeeType


# ==================== Fee Terms ===================== #


class PercentageTerms(BaseModel):
    fee_type: Literal["PERCENTAGE"] = "PERCENTAGE"
    percentage: Decimal = Field(..., ge=0, le=100)


class FixedTerms(BaseModel):
    fee_type: Literal["FIXED"] = "FIXED"
    fixed_amount: Decimal = Field(..., ge=0)


class HourlyMarkupTerms(BaseModel):
    """Markup per billed hour: a percentage of the hourly rate or a fixed amount."""

    fee_type: Literal["HOURLY_MARKUP"] = "HOURLY_MARKUP"
    markup_percentage: Optional[Decimal] = Field(None, ge=0)
    markup_amount: Optional[Decimal] = Field(None, ge=0)

    @model_validator(mode="after")
    def exactly_one_markup(self):
        if (self.markup_percentage is None) == (self.markup_amount is None):
            raise ValueError("Set exactly one of markup_percentage or markup_amount")
        return self


class FeeTier(BaseModel):
    """Bracket ``[min_amount, max_amount)``; an open top bracket has no max."""

    min_amount: Decimal = Field(..., ge=0)
    max_amount: Optional[Decimal] = None
    percentage: Decimal = Field(..., ge=0, le=100)

    @model_validator(mode="after")
    def check_range(self):
        if self.max_amount is not None and self.max_amount <= self.min_amount:
            raise ValueError("max_amount must be greater than min_amount")
        return self


class TieredTerms(BaseModel):
    """
    Bracketed percentages.

    By default the whole compensation is charged at the percentage of the
    bracket it falls in. With ``cumulative`` each bracket charges only the
    part of the compensation inside it.
    """

    fee_type: Literal["TIERED"] = "TIERED"
    tiers: list[FeeTier] = Field(..., min_length=1)
    cumulative: bool = False

    @model_validator(mode="after")
    def check_tiers(self):
        for lower, upper in zip(self.tiers, self.tiers[1:]):
            if lower.max_amount is None or lower.max_amount > upper.min_amount:
                raise ValueError("Tiers must be ascending and must not overlap")
        return self


FeeTerms = Annotated[
    Union[PercentageTerms, FixedTerms, HourlyMarkupTerms, TieredTerms],
    Field(discriminator="fee_type"),
]

fee_terms_adapter = TypeAdapter(FeeTerms)


def parse_fee_terms(fee_type: FeeType | str, terms: dict[str, Any]):
    """Validate stored line terms against the variant of ``fee_type``."""
    tag = fee_type.value if isinstance(fee_type, FeeType) else str(fee_type)
    return fee_terms_adapter.validate_python({**terms, "fee_type": tag})


# ==================== Inputs & Results ===================== #


@dataclass(frozen=True)
class CompensationInputs:
    annual_salary: Optional[Decimal] = None
    monthly_salary: Optional[Decimal] = None
    hourly_rate: Optional[Decimal] = None

    def basis_for(self, fee_type: FeeType) -> Optional[Decimal]:
        """
        Compensation figure a fee type is computed from.

        HOURLY_MARKUP uses the hourly rate; every other type uses the annual
        salary, derived from the monthly salary when only that is given.
        """
        if fee_type == FeeType.HOURLY_MARKUP:
            return self.hourly_rate
        if self.annual_salary is not None:
            return self.annual_salary
        if self.monthly_salary is not None:
            return self.monthly_salary * 12
        return None

    def to_dict(self) -> dict[str, Optional[str]]:
        return {
            "annual_salary": _str(self.annual_salary),
            "monthly_salary": _str(self.monthly_salary),
            "hourly_rate": _str(self.hourly_rate),
        }


def _str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass
class FeeResult:
    fee_type: FeeType
    basis: Decimal
    gross_amount: Decimal
    discount_amount: Decimal
    amount: Decimal
    currency: str
    per_hour: bool = False
    details: dict[str, Any] = field(default_factory=dict)


# ==================== Line Selection ===================== #


def _in_range(line: Any, figure: Decimal) -> bool:
    if line.min_compensation is not None and figure < line.min_compensation:
        return False
    if line.max_compensation is not None and figure >= line.max_compensation:
        return False
    return True


def select_line(
    lines: Iterable[Any],
    category: Any,
    seniority: Any,
    inputs: CompensationInputs,
    contract_type: Any = None,
):
    """
    Pick the single line of a card that applies.

    Lines are filtered by category and seniority, then by contract type
    (a line without one applies to every contract type), then by whether
    the line's compensation figure falls in its range.

    Raises:
        NoApplicableRateLine: No line applies
        AmbiguousRateLine: More than one line applies
    """
    matches = []
    for line in lines:
        if line.job_category != category or line.seniority_level != seniority:
            continue
        if line.contract_type is not None and line.contract_type != contract_type:
            continue
        figure = inputs.basis_for(line.fee_type)
        if figure is None:
            continue
        if _in_range(line, figure):
            matches.append(line)

    if not matches:
        raise NoApplicableRateLine(
            "No rate card line applies to this placement",
            category=category,
            seniority=seniority,
            contract_type=contract_type,
        )
    if len(matches) > 1:
        raise AmbiguousRateLine(
            "More than one rate card line applies to this placement",
            line_ids=sorted(line.id for line in matches),
        )
    return matches[0]


# ==================== Fee Formulas ===================== #


def _tiered_fee(terms: TieredTerms, basis: Decimal) -> Decimal:
    if basis < terms.tiers[0].min_amount:
        raise NoApplicableRateLine(
            "Compensation is below the lowest fee tier", compensation=basis
        )
    if terms.cumulative:
        total = ZERO
        for tier in terms.tiers:
            if basis <= tier.min_amount:
                break
            top = basis if tier.max_amount is None else min(basis, tier.max_amount)
            total += percentage_of(top - tier.min_amount, tier.percentage)
        return total

    for tier in terms.tiers:
        if basis >= tier.min_amount and (tier.max_amount is None or basis < tier.max_amount):
            return percentage_of(basis, tier.percentage)
    raise NoApplicableRateLine(
        "Compensation falls between fee tiers", compensation=basis
    )


def compute_fee(terms, basis: Decimal, currency: str) -> Decimal:
    """
    Gross fee for validated terms, rounded half-up to the currency's minor unit.

    HOURLY_MARKUP yields a per-hour amount; multiplying by billed hours is
    up to the caller.
    """
    if isinstance(terms, PercentageTerms):
        amount = percentage_of(basis, terms.percentage)
    elif isinstance(terms, FixedTerms):
        amount = terms.fixed_amount
    elif isinstance(terms, HourlyMarkupTerms):
        if terms.markup_percentage is not None:
            amount = percentage_of(basis, terms.markup_percentage)
        else:
            amount = terms.markup_amount
    elif isinstance(terms, TieredTerms):
        amount = _tiered_fee(terms, basis)
    else:
        raise TypeError(f"Unsupported fee terms: {type(terms).__name__}")
    return round_money(amount, currency)


def volume_discount(
    gross: Decimal,
    threshold: Optional[int],
    discount_percentage: Optional[Decimal],
    prior_placements: int,
    currency: str,
) -> Decimal:
    """Discount owed when the agency's placement count reached the threshold."""
    if threshold is None or not discount_percentage or prior_placements < threshold:
        return round_money(ZERO, currency)
    return round_money(percentage_of(gross, discount_percentage), currency)


def calculate_line_fee(
    line: Any,
    inputs: CompensationInputs,
    currency: str,
    prior_placements: int = 0,
) -> FeeResult:
    """
    Full fee for one rate card line: formula, then volume discount.
    """
    terms = parse_fee_terms(line.fee_type, line.fee_terms)
    fee_type = FeeType(terms.fee_type)
    basis = inputs.basis_for(fee_type)
    if basis is None:
        raise NoApplicableRateLine(
            "Compensation input required by the fee type is missing",
            fee_type=fee_type,
        )

    gross = compute_fee(terms, basis, currency)
    discount = volume_discount(
        gross,
        line.volume_discount_threshold,
        line.volume_discount_percentage,
        prior_placements,
        currency,
    )
    return FeeResult(
        fee_type=fee_type,
        basis=basis,
        gross_amount=gross,
        discount_amount=discount,
        amount=gross - discount,
        currency=currency,
        per_hour=fee_type == FeeType.HOURLY_MARKUP,
        details={
            "terms": terms.model_dump(mode="json"),
            "prior_placements": prior_placements,
        },
    )
