"""Agency, specialization, coverage and SLA configuration schemas."""

from typing import Optional
from pydantic import BaseModel, EmailStr, Field, field_validator

from database.models.agencies import JobCategory, SeniorityLevel
from database.models.sla import SlaMetricType


class AgencyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255, description="Agency display name")
    contact_email: Optional[EmailStr] = Field(None, description="Address SLA alerts go to")

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class AgencyActivation(BaseModel):
    is_active: bool


class SpecializationCreate(BaseModel):
    category: JobCategory
    seniority_levels: Optional[list[SeniorityLevel]] = Field(
        None, description="Seniority levels served; empty means all"
    )
    years_experience: float = Field(default=0, ge=0)
    match_priority: int = Field(default=5, ge=1, le=10)
    subcategory: Optional[str] = Field(None, max_length=100)
    successful_placements: int = Field(default=0, ge=0)


class SpecializationUpdate(BaseModel):
    seniority_levels: Optional[list[SeniorityLevel]] = None
    years_experience: Optional[float] = Field(None, ge=0)
    match_priority: Optional[int] = Field(None, ge=1, le=10)
    subcategory: Optional[str] = Field(None, max_length=100)
    successful_placements: Optional[int] = Field(None, ge=0)


class CoverageCreate(BaseModel):
    country: str = Field(min_length=2, max_length=2, description="ISO 3166-1 alpha-2")
    region: Optional[str] = Field(None, max_length=100)
    city: Optional[str] = Field(None, max_length=100)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    radius_km: Optional[float] = Field(None, gt=0)
    priority: int = Field(default=5, ge=1, le=10)

    @field_validator("country", mode="before")
    @classmethod
    def upper_country(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class SlaConfigurationIn(BaseModel):
    """Thresholds for one metric; ordering is validated per metric direction."""

    metric_type: SlaMetricType
    target_value: float
    warning_threshold: float
    critical_threshold: float
    measurement_period_days: int = Field(default=30, ge=1, le=365)
    is_active: bool = True


class SlaCheck(BaseModel):
    metric_type: SlaMetricType
    actual_value: float


class BreachResolution(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


class AlertFailure(BaseModel):
    reason: str = Field(min_length=1, max_length=500)
