"""Tests for rate card resolution and stored placement fees."""

from decimal import Decimal

import pytest

from api.services import fees
from conftest import TENANT, days_ago, make_agency, make_job
from core.calculations.fees import CompensationInputs
from core.exceptions import (
    AmbiguousRateCard,
    InvalidTransaction,
    NoApplicableRateCard,
    NoApplicableRateLine,
)
from database.models.jobs import EmploymentType

PERCENTAGE_LINE = {
    "fee_type": "PERCENTAGE",
    "fee_terms": {"percentage": "20"},
    "job_category": "IT",
    "seniority_level": "SENIOR",
}


async def _card(agency_id: int, name: str = "Standard 2026", **kwargs) -> dict:
    kwargs.setdefault("valid_from", days_ago(30))
    kwargs.setdefault("lines", [PERCENTAGE_LINE])
    return await fees.create_rate_card(TENANT, agency_id, name, **kwargs)


class TestRateCards:
    @pytest.mark.asyncio
    async def test_terms_are_validated_per_fee_type(self):
        agency = await make_agency()
        with pytest.raises(InvalidTransaction):
            await _card(
                agency["id"],
                lines=[{**PERCENTAGE_LINE, "fee_type": "FIXED", "fee_terms": {"percentage": "20"}}],
            )

    @pytest.mark.asyncio
    async def test_stored_terms_keep_only_their_fields(self):
        agency = await make_agency()
        card = await _card(agency["id"])
        [line] = card["lines"]
        assert line["fee_terms"] == {"percentage": "20"}
        assert line["contract_type"] is None

    @pytest.mark.asyncio
    async def test_validity_must_be_a_forward_window(self):
        agency = await make_agency()
        with pytest.raises(InvalidTransaction):
            await _card(agency["id"], valid_from=days_ago(1), valid_until=days_ago(2))

    @pytest.mark.asyncio
    async def test_agreement_card_beats_general_card(self):
        agency = await make_agency()
        general = await _card(agency["id"])
        agreement = await _card(agency["id"], "Framework agreement", agreement_id=12)

        assert (await fees.resolve_card(TENANT, agency["id"]))["id"] == general["id"]
        resolved = await fees.resolve_card(TENANT, agency["id"], agreement_id=12)
        assert resolved["id"] == agreement["id"]
        resolved = await fees.resolve_card(TENANT, agency["id"], agreement_id=99)
        assert resolved["id"] == general["id"]

    @pytest.mark.asyncio
    async def test_equally_specific_cards_are_ambiguous(self):
        agency = await make_agency()
        await _card(agency["id"], company_id=3)
        await _card(agency["id"], "Second company card", company_id=3)

        with pytest.raises(AmbiguousRateCard):
            await fees.resolve_card(TENANT, agency["id"], company_id=3)

    @pytest.mark.asyncio
    async def test_expired_and_inactive_cards_do_not_apply(self):
        agency = await make_agency()
        await _card(agency["id"], valid_from=days_ago(60), valid_until=days_ago(30))
        current = await _card(agency["id"], "Current")
        await fees.deactivate_rate_card(TENANT, current["id"])

        with pytest.raises(NoApplicableRateCard):
            await fees.resolve_card(TENANT, agency["id"])


class TestFees:
    @pytest.mark.asyncio
    async def test_quote_uses_job_salary(self):
        agency = await make_agency()
        await _card(agency["id"])
        job = await make_job()

        quote = await fees.quote_fee(TENANT, agency["id"], job["id"])

        assert quote["amount"] == "16000.00"
        assert quote["basis"] == "80000.00"
        assert not quote["per_hour"]

    @pytest.mark.asyncio
    async def test_contract_specific_line(self):
        agency = await make_agency()
        await _card(
            agency["id"],
            lines=[
                {**PERCENTAGE_LINE, "contract_type": "PERMANENT"},
                {
                    "fee_type": "HOURLY_MARKUP",
                    "fee_terms": {"markup_percentage": "25"},
                    "job_category": "IT",
                    "seniority_level": "SENIOR",
                    "contract_type": "INTERIM",
                },
            ],
        )
        job = await make_job(employment_type=EmploymentType.INTERIM, hourly_rate=Decimal("90"))

        quote = await fees.quote_fee(TENANT, agency["id"], job["id"])
        assert quote["fee_type"] == "HOURLY_MARKUP"
        assert quote["amount"] == "22.50"
        assert quote["per_hour"]

        permanent = await fees.quote_fee(
            TENANT, agency["id"], job["id"], contract_type=EmploymentType.PERMANENT
        )
        assert permanent["amount"] == "16000.00"

    @pytest.mark.asyncio
    async def test_salary_bands_select_tiered_line(self):
        agency = await make_agency()
        await _card(
            agency["id"],
            lines=[
                {**PERCENTAGE_LINE, "max_compensation": "60000"},
                {
                    "fee_type": "TIERED",
                    "fee_terms": {
                        "tiers": [
                            {"min_amount": "60000", "max_amount": "100000", "percentage": "22"},
                            {"min_amount": "100000", "percentage": "25"},
                        ]
                    },
                    "job_category": "IT",
                    "seniority_level": "SENIOR",
                    "min_compensation": "60000",
                },
            ],
        )
        job = await make_job()

        quote = await fees.quote_fee(TENANT, agency["id"], job["id"])
        assert quote["fee_type"] == "TIERED"
        assert quote["amount"] == "17600.00"

        low = await fees.quote_fee(
            TENANT, agency["id"], job["id"], CompensationInputs(annual_salary=Decimal("50000"))
        )
        assert low["fee_type"] == "PERCENTAGE"
        assert low["amount"] == "10000.00"

    @pytest.mark.asyncio
    async def test_no_line_for_category(self):
        agency = await make_agency()
        await _card(agency["id"], lines=[{**PERCENTAGE_LINE, "job_category": "FINANCE"}])
        job = await make_job()

        with pytest.raises(NoApplicableRateLine):
            await fees.quote_fee(TENANT, agency["id"], job["id"])

    @pytest.mark.asyncio
    async def test_volume_discount_after_threshold(self):
        agency = await make_agency()
        await _card(
            agency["id"],
            lines=[
                {
                    **PERCENTAGE_LINE,
                    "volume_discount_threshold": 2,
                    "volume_discount_percentage": "10",
                }
            ],
        )
        job = await make_job()

        first = await fees.calculate_fee(TENANT, agency["id"], job["id"], at=days_ago(3))
        second = await fees.calculate_fee(TENANT, agency["id"], job["id"], at=days_ago(2))
        third = await fees.calculate_fee(TENANT, agency["id"], job["id"], at=days_ago(1))

        assert first["discount_amount"] == "0.00"
        assert second["discount_amount"] == "0.00"
        assert third["gross_amount"] == "16000.00"
        assert third["discount_amount"] == "1600.00"
        assert third["amount"] == "14400.00"
        assert third["inputs"]["prior_placements"] == 2

    @pytest.mark.asyncio
    async def test_stored_fee_can_be_read_back(self):
        agency = await make_agency()
        await _card(agency["id"])
        job = await make_job()

        stored = await fees.calculate_fee(TENANT, agency["id"], job["id"])
        fetched = await fees.get_placement_fee(TENANT, stored["id"])

        assert fetched["amount"] == "16000.00"
        assert fetched["inputs"]["annual_salary"] == "80000.00"
        assert fetched["inputs"]["terms"]["percentage"] == "20"
