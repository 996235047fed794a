"""
Tests for placement fee calculation.

Covers fee term validation per fee type, line selection, every fee formula,
volume discounts and currency rounding.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import pytest
from pydantic import ValidationError

from core.calculations.fees import (
    CompensationInputs,
    calculate_line_fee,
    compute_fee,
    parse_fee_terms,
    select_line,
    volume_discount,
)
from core.exceptions import AmbiguousRateLine, NoApplicableRateLine
from database.models.agencies import JobCategory, SeniorityLevel
from database.models.jobs import EmploymentType
from database.models.rate_cards import FeeType


@dataclass
class Line:
    id: int
    fee_type: FeeType
    fee_terms: dict[str, Any]
    job_category: JobCategory = JobCategory.IT
    seniority_level: SeniorityLevel = SeniorityLevel.SENIOR
    contract_type: Optional[EmploymentType] = None
    min_compensation: Optional[Decimal] = None
    max_compensation: Optional[Decimal] = None
    volume_discount_threshold: Optional[int] = None
    volume_discount_percentage: Optional[Decimal] = None


TIERS = {
    "tiers": [
        {"min_amount": "0", "max_amount": "50000", "percentage": "15"},
        {"min_amount": "50000", "max_amount": "100000", "percentage": "20"},
        {"min_amount": "100000", "percentage": "25"},
    ]
}


class TestFeeTerms:
    """Each fee type only accepts its own parameters."""

    def test_percentage_terms(self):
        terms = parse_fee_terms(FeeType.PERCENTAGE, {"percentage": "20"})
        assert terms.percentage == Decimal("20")

    def test_percentage_above_hundred_rejected(self):
        with pytest.raises(ValidationError):
            parse_fee_terms(FeeType.PERCENTAGE, {"percentage": "120"})

    def test_fixed_requires_amount(self):
        with pytest.raises(ValidationError):
            parse_fee_terms(FeeType.FIXED, {})

    def test_hourly_markup_needs_exactly_one_markup(self):
        with pytest.raises(ValidationError):
            parse_fee_terms(FeeType.HOURLY_MARKUP, {})
        with pytest.raises(ValidationError):
            parse_fee_terms(
                FeeType.HOURLY_MARKUP, {"markup_percentage": "10", "markup_amount": "5"}
            )

    def test_tiers_must_not_overlap(self):
        with pytest.raises(ValidationError):
            parse_fee_terms(
                FeeType.TIERED,
                {
                    "tiers": [
                        {"min_amount": "0", "max_amount": "60000", "percentage": "15"},
                        {"min_amount": "50000", "percentage": "20"},
                    ]
                },
            )

    def test_open_bracket_only_at_the_top(self):
        with pytest.raises(ValidationError):
            parse_fee_terms(
                FeeType.TIERED,
                {
                    "tiers": [
                        {"min_amount": "0", "percentage": "15"},
                        {"min_amount": "50000", "percentage": "20"},
                    ]
                },
            )


class TestComputeFee:
    def test_percentage_of_annual_salary(self):
        terms = parse_fee_terms(FeeType.PERCENTAGE, {"percentage": "20"})
        assert compute_fee(terms, Decimal("60000"), "EUR") == Decimal("12000.00")

    def test_fixed_ignores_compensation(self):
        terms = parse_fee_terms(FeeType.FIXED, {"fixed_amount": "4500"})
        assert compute_fee(terms, Decimal("90000"), "EUR") == Decimal("4500.00")

    def test_hourly_markup_percentage(self):
        terms = parse_fee_terms(FeeType.HOURLY_MARKUP, {"markup_percentage": "15"})
        assert compute_fee(terms, Decimal("80"), "EUR") == Decimal("12.00")

    def test_hourly_markup_amount(self):
        terms = parse_fee_terms(FeeType.HOURLY_MARKUP, {"markup_amount": "7.5"})
        assert compute_fee(terms, Decimal("80"), "EUR") == Decimal("7.50")

    @pytest.mark.parametrize(
        "salary,expected",
        [
            ("40000", "6000.00"),
            ("50000", "10000.00"),  # lower bound belongs to the upper bracket
            ("99999.99", "20000.00"),
            ("150000", "37500.00"),
        ],
    )
    def test_tiered_flat_rate(self, salary, expected):
        terms = parse_fee_terms(FeeType.TIERED, TIERS)
        assert compute_fee(terms, Decimal(salary), "EUR") == Decimal(expected)

    def test_tiered_cumulative(self):
        terms = parse_fee_terms(FeeType.TIERED, {**TIERS, "cumulative": True})
        # 50000 * 15% + 50000 * 20% + 20000 * 25%
        assert compute_fee(terms, Decimal("120000"), "EUR") == Decimal("22500.00")

    def test_tiered_below_lowest_bracket(self):
        terms = parse_fee_terms(
            FeeType.TIERED, {"tiers": [{"min_amount": "30000", "percentage": "10"}]}
        )
        with pytest.raises(NoApplicableRateLine):
            compute_fee(terms, Decimal("20000"), "EUR")

    def test_rounding_half_up(self):
        terms = parse_fee_terms(FeeType.PERCENTAGE, {"percentage": "12.5"})
        # 12.5% of 100.20 = 12.525
        assert compute_fee(terms, Decimal("100.20"), "EUR") == Decimal("12.53")

    def test_zero_decimal_currency(self):
        terms = parse_fee_terms(FeeType.PERCENTAGE, {"percentage": "12.5"})
        assert compute_fee(terms, Decimal("1000005"), "JPY") == Decimal("125001")


class TestVolumeDiscount:
    def test_no_discount_below_threshold(self):
        assert volume_discount(Decimal("1000"), 5, Decimal("10"), 4, "EUR") == Decimal("0")

    def test_discount_at_threshold(self):
        assert volume_discount(Decimal("1000"), 5, Decimal("10"), 5, "EUR") == Decimal("100.00")

    def test_no_discount_without_configuration(self):
        assert volume_discount(Decimal("1000"), None, Decimal("10"), 50, "EUR") == Decimal("0")
        assert volume_discount(Decimal("1000"), 5, None, 50, "EUR") == Decimal("0")


class TestSelectLine:
    def _lines(self):
        return [
            Line(1, FeeType.PERCENTAGE, {"percentage": "18"}, max_compensation=Decimal("60000")),
            Line(2, FeeType.PERCENTAGE, {"percentage": "22"}, min_compensation=Decimal("60000")),
            Line(3, FeeType.FIXED, {"fixed_amount": "3000"}, seniority_level=SeniorityLevel.JUNIOR),
            Line(
                4,
                FeeType.HOURLY_MARKUP,
                {"markup_percentage": "15"},
                contract_type=EmploymentType.INTERIM,
            ),
        ]

    def test_ranges_are_half_open(self):
        inputs = CompensationInputs(annual_salary=Decimal("60000"))
        line = select_line(self._lines(), JobCategory.IT, SeniorityLevel.SENIOR, inputs)
        assert line.id == 2

    def test_monthly_salary_is_annualized(self):
        inputs = CompensationInputs(monthly_salary=Decimal("4000"))
        line = select_line(self._lines(), JobCategory.IT, SeniorityLevel.SENIOR, inputs)
        assert line.id == 1

    def test_contract_specific_line(self):
        inputs = CompensationInputs(hourly_rate=Decimal("90"))
        line = select_line(
            self._lines(),
            JobCategory.IT,
            SeniorityLevel.SENIOR,
            inputs,
            EmploymentType.INTERIM,
        )
        assert line.id == 4

    def test_no_line_for_category(self):
        inputs = CompensationInputs(annual_salary=Decimal("50000"))
        with pytest.raises(NoApplicableRateLine):
            select_line(self._lines(), JobCategory.LEGAL, SeniorityLevel.SENIOR, inputs)

    def test_overlapping_lines_are_ambiguous(self):
        lines = [
            Line(1, FeeType.PERCENTAGE, {"percentage": "18"}),
            Line(2, FeeType.FIXED, {"fixed_amount": "5000"}),
        ]
        inputs = CompensationInputs(annual_salary=Decimal("50000"))
        with pytest.raises(AmbiguousRateLine) as exc_info:
            select_line(lines, JobCategory.IT, SeniorityLevel.SENIOR, inputs)
        assert exc_info.value.details["line_ids"] == [1, 2]


class TestCalculateLineFee:
    def test_discounted_fee(self):
        line = Line(
            1,
            FeeType.PERCENTAGE,
            {"percentage": "20"},
            volume_discount_threshold=3,
            volume_discount_percentage=Decimal("10"),
        )
        result = calculate_line_fee(
            line, CompensationInputs(annual_salary=Decimal("70000")), "EUR", prior_placements=3
        )
        assert result.gross_amount == Decimal("14000.00")
        assert result.discount_amount == Decimal("1400.00")
        assert result.amount == Decimal("12600.00")
        assert result.per_hour is False

    def test_hourly_fee_is_per_hour(self):
        line = Line(1, FeeType.HOURLY_MARKUP, {"markup_percentage": "20"})
        result = calculate_line_fee(
            line, CompensationInputs(hourly_rate=Decimal("75")), "EUR"
        )
        assert result.amount == Decimal("15.00")
        assert result.per_hour is True

    def test_missing_basis(self):
        line = Line(1, FeeType.HOURLY_MARKUP, {"markup_percentage": "20"})
        with pytest.raises(NoApplicableRateLine):
            calculate_line_fee(line, CompensationInputs(annual_salary=Decimal("75000")), "EUR")

    def test_same_inputs_same_fee(self):
        line = Line(1, FeeType.TIERED, {**TIERS, "cumulative": True})
        inputs = CompensationInputs(annual_salary=Decimal("83250.50"))
        first = calculate_line_fee(line, inputs, "EUR")
        second = calculate_line_fee(line, inputs, "EUR")
        assert first.amount == second.amount
