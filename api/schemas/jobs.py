"""Job, distribution and placement schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, model_validator

from core.calculations.fees import CompensationInputs
from database.models.agencies import JobCategory, SeniorityLevel
from database.models.distributions import DistributionTier
from database.models.jobs import EmploymentType, LocationType


class JobCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    category: JobCategory
    seniority: SeniorityLevel
    employment_type: EmploymentType = EmploymentType.PERMANENT
    location_type: LocationType = LocationType.ONSITE
    country: Optional[str] = Field(None, min_length=2, max_length=2)
    region: Optional[str] = Field(None, max_length=100)
    city: Optional[str] = Field(None, max_length=100)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    salary_annual: Optional[Decimal] = Field(None, ge=0)
    hourly_rate: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    company_id: Optional[int] = None
    agreement_id: Optional[int] = None
    budget_id: Optional[int] = None


class DistributionCreate(BaseModel):
    agency_id: int = Field(gt=0)
    tier: DistributionTier = DistributionTier.STANDARD
    max_candidates: Optional[int] = Field(None, ge=1, description="Submission cap; none is unlimited")
    exclusive_days: Optional[int] = Field(None, ge=1, description="Exclusivity window for EXCLUSIVE")
    require_acceptance: bool = Field(
        default=True, description="Start PENDING until the agency accepts"
    )


class AutoDistribute(BaseModel):
    limit: Optional[int] = Field(None, ge=1, le=100)


class Compensation(BaseModel):
    """Compensation the fee is computed from; falls back to the job's figures."""

    annual_salary: Optional[Decimal] = Field(None, ge=0)
    monthly_salary: Optional[Decimal] = Field(None, ge=0)
    hourly_rate: Optional[Decimal] = Field(None, ge=0)

    def to_inputs(self) -> Optional[CompensationInputs]:
        if self.annual_salary is None and self.monthly_salary is None and self.hourly_rate is None:
            return None
        return CompensationInputs(
            annual_salary=self.annual_salary,
            monthly_salary=self.monthly_salary,
            hourly_rate=self.hourly_rate,
        )


class PlacementCreate(Compensation):
    contract_type: Optional[EmploymentType] = None
    budget_id: Optional[int] = Field(None, description="Budget charged; defaults to the job's budget")
    billed_hours: Optional[Decimal] = Field(
        None, gt=0, description="Hours billed, for hourly markup fees"
    )
    at: Optional[datetime] = Field(None, description="Placement time; defaults to now")

    @model_validator(mode="after")
    def require_compensation(self):
        if self.annual_salary is None and self.monthly_salary is None and self.hourly_rate is None:
            raise ValueError("Provide annual_salary, monthly_salary or hourly_rate")
        return self
