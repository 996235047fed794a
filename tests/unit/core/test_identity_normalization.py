"""Tests for candidate identity normalization and money helpers."""

from decimal import Decimal

import pytest

from core.utils.formatting import (
    round_money,
    to_decimal,
    utilization_percentage,
)
from core.utils.validators import (
    CandidateIdentity,
    name_similarity,
    normalize_email,
    normalize_linkedin_url,
    normalize_name,
    normalize_phone,
)


class TestEmail:
    def test_lowercases_whole_address(self):
        assert normalize_email("  Jan.Jansen@Acme.IO ") == "jan.jansen@acme.io"

    def test_blank_is_none(self):
        assert normalize_email("   ") is None
        assert normalize_email(None) is None

    def test_invalid_raises(self):
        with pytest.raises(ValueError):
            normalize_email("not-an-email")


class TestPhone:
    @pytest.mark.parametrize(
        "raw",
        ["+31 6 1234 5678", "0031612345678", "06-12345678", "(06) 1234 5678"],
    )
    def test_dutch_formats_converge(self, raw):
        assert normalize_phone(raw) == "+31612345678"

    def test_other_default_country(self):
        assert normalize_phone("030 1234567", default_country_code="49") == "+49301234567"

    def test_too_short(self):
        with pytest.raises(ValueError):
            normalize_phone("123")


class TestLinkedIn:
    @pytest.mark.parametrize(
        "raw",
        [
            "https://www.linkedin.com/in/Jan-Jansen/",
            "linkedin.com/in/jan-jansen?trk=profile",
            "http://nl.linkedin.com/in/jan-jansen#about",
        ],
    )
    def test_variants_converge(self, raw):
        assert normalize_linkedin_url(raw) == "linkedin.com/in/jan-jansen"

    def test_other_host_rejected(self):
        with pytest.raises(ValueError):
            normalize_linkedin_url("https://example.com/in/jan")

    def test_company_page_rejected(self):
        with pytest.raises(ValueError):
            normalize_linkedin_url("https://linkedin.com/company/acme")


class TestNames:
    def test_accents_and_spacing(self):
        assert normalize_name("  José ", "van  der Berg") == "jose van der berg"

    def test_similarity(self):
        assert name_similarity("jan jansen", "jan jansen") == 1.0
        assert name_similarity("jan jansen", "jan janssen") > 0.9
        assert name_similarity(None, "jan") == 0.0


class TestCandidateIdentity:
    def test_requires_strong_key(self):
        with pytest.raises(ValueError):
            CandidateIdentity.from_raw(first_name="Jan", last_name="Jansen")

    def test_normalizes_all_keys(self):
        identity = CandidateIdentity.from_raw(
            email="Jan@Acme.io",
            phone="06 12345678",
            linkedin_url="www.linkedin.com/in/JanJ",
            first_name="Jan",
            last_name="Jansen",
        )
        assert identity == CandidateIdentity(
            email="jan@acme.io",
            phone="+31612345678",
            linkedin_url="linkedin.com/in/janj",
            full_name="jan jansen",
        )


class TestMoney:
    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal(None) is None

    def test_round_half_up(self):
        assert round_money(Decimal("2.345")) == Decimal("2.35")
        assert round_money(Decimal("2.5"), "JPY") == Decimal("3")

    def test_utilization(self):
        assert utilization_percentage(Decimal("250"), Decimal("1000")) == Decimal("25.00")
        assert utilization_percentage(Decimal("5"), Decimal("0")) == Decimal("0")
