"""Common Pydantic schemas shared across the API."""

from typing import Any, Optional
from pydantic import BaseModel, Field


class ErrorBody(BaseModel):
    code: str = Field(description="Stable machine-readable error code")
    message: str = Field(description="Human-readable error message")
    path: str
    method: str
    details: Optional[Any] = Field(None, description="Structured context of the error")
    request_id: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error envelope returned by every failing endpoint."""

    error: ErrorBody


# Documented on every v1 router
ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Invalid request or refused operation"},
    404: {"model": ErrorResponse, "description": "Not found in the caller's tenant"},
    409: {"model": ErrorResponse, "description": "Conflicts with the current state"},
    422: {"model": ErrorResponse, "description": "Validation failed"},
}
