"""Rate card and fee schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel, Field

from api.schemas.jobs import Compensation
from database.models.agencies import JobCategory, SeniorityLevel
from database.models.jobs import EmploymentType
from database.models.rate_cards import FeeType


class RateCardLineIn(BaseModel):
    """
    One pricing rule of a rate card.

    ``fee_terms`` depends on ``fee_type``:

    - PERCENTAGE: ``{"percentage": "20"}``
    - FIXED: ``{"fixed_amount": "5000"}``
    - HOURLY_MARKUP: ``{"markup_percentage": "15"}`` or ``{"markup_amount": "7.50"}``
    - TIERED: ``{"tiers": [{"min_amount", "max_amount", "percentage"}], "cumulative": false}``
    """

    job_category: JobCategory
    seniority_level: SeniorityLevel
    contract_type: Optional[EmploymentType] = Field(None, description="None applies to any contract")
    fee_type: FeeType
    fee_terms: dict[str, Any] = Field(default_factory=dict)
    min_compensation: Optional[Decimal] = Field(None, ge=0)
    max_compensation: Optional[Decimal] = Field(None, gt=0)
    volume_discount_threshold: Optional[int] = Field(None, ge=1)
    volume_discount_percentage: Optional[Decimal] = Field(None, gt=0, le=100)


class RateCardCreate(BaseModel):
    agency_id: int = Field(gt=0)
    name: str = Field(min_length=1, max_length=255)
    valid_from: datetime
    valid_until: Optional[datetime] = None
    company_id: Optional[int] = None
    agreement_id: Optional[int] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    version: int = Field(default=1, ge=1)
    lines: list[RateCardLineIn] = Field(default_factory=list)


class FeeRequest(Compensation):
    """Fee quote or calculation for an agency placing on a job."""

    agency_id: int = Field(gt=0)
    job_id: int = Field(gt=0)
    contract_type: Optional[EmploymentType] = None
    submission_id: Optional[int] = Field(None, description="Only used when the fee is persisted")
    at: Optional[datetime] = Field(None, description="Pricing time; defaults to now")
