"""Candidate identity and submission schemas."""

from typing import Any, Optional
from pydantic import BaseModel, EmailStr, Field, field_validator

from core.exceptions import InvalidTransaction
from core.utils.validators import CandidateIdentity


class CandidateIdentityIn(BaseModel):
    """
    Identifying fields of a candidate.

    At least one strong key (email, phone or LinkedIn URL) is required;
    the name is only used for fuzzy duplicate warnings.
    """

    email: Optional[EmailStr] = Field(None, description="Candidate email")
    phone: Optional[str] = Field(None, max_length=32, description="Phone number, any format")
    linkedin_url: Optional[str] = Field(None, max_length=512, description="LinkedIn profile URL")
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)

    @field_validator("first_name", "last_name", "phone", "linkedin_url", mode="before")
    @classmethod
    def strip_strings(cls, v):
        if isinstance(v, str):
            return v.strip() or None
        return v

    def to_identity(self) -> CandidateIdentity:
        try:
            return CandidateIdentity.from_raw(
                email=self.email,
                phone=self.phone,
                linkedin_url=self.linkedin_url,
                first_name=self.first_name,
                last_name=self.last_name,
            )
        except ValueError as e:
            raise InvalidTransaction(str(e)) from e


class CandidateSubmissionCreate(CandidateIdentityIn):
    """A candidate submitted by an agency against a distribution."""

    profile: Optional[dict[str, Any]] = Field(
        None, description="Optional profile data merged into the candidate record"
    )


class OwnershipClaim(CandidateIdentityIn):
    agency_id: int = Field(gt=0)
    job_id: Optional[int] = Field(None, gt=0)


class OwnershipRelease(BaseModel):
    reason: str = Field(min_length=1, max_length=255)
