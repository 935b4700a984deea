"""
Pydantic models for API request/response validation.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from preventive_care.models.models import (
    AgeRange,
    AppointmentResult,
    CompletionEvent,
    Guideline,
    GuidelineResource,
    ScreeningRecord,
    Selection,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SelectionRequest(BaseModel):
    """Select or deselect a guideline."""
    guideline_id: str | None = Field(default=None, description="Guideline to (de)select")


class SelectionResponse(BaseModel):
    selection: Selection | None = None
    message: str


class SelectionsResponse(BaseModel):
    selections: list[Selection] = Field(default_factory=list)


class PersonalizeRequest(BaseModel):
    """Field overrides for the personalized copy."""
    customizations: dict[str, Any] = Field(default_factory=dict)


class PersonalizeResponse(BaseModel):
    guideline: Guideline
    message: str = "Guideline personalized successfully"
    warnings: list[str] = Field(default_factory=list)


class CompleteRequest(BaseModel):
    """Completion details; the date defaults to today."""
    completion_date: date | None = Field(default=None, description="Completion date")
    notes: str | None = Field(default=None, max_length=2000, description="Optional notes")


class CompleteResponse(BaseModel):
    screening: ScreeningRecord
    event: CompletionEvent | None = None
    message: str = "Guideline marked as completed"
    warnings: list[str] = Field(default_factory=list)


class CreateScreeningRequest(BaseModel):
    guideline_id: str = Field(..., min_length=1, description="Guideline to track")


class CreateAppointmentRequest(BaseModel):
    """A new appointment; ``screening_id`` may be a screening or guideline ID."""
    date: datetime = Field(..., description="Appointment date and time")
    screening_id: str | None = Field(default=None)
    title: str | None = Field(default=None, max_length=200)
    provider: str | None = Field(default=None, max_length=200)
    location: str | None = Field(default=None, max_length=200)
    notes: str | None = Field(default=None, max_length=2000)
    completed: bool = Field(default=False)
    result: AppointmentResult | None = Field(default=None)

    @field_validator("screening_id")
    @classmethod
    def blank_screening_id_is_none(cls, v: str | None) -> str | None:
        """Treat empty strings as no screening."""
        if v is not None and not v.strip():
            return None
        return v


class UpdateAppointmentRequest(BaseModel):
    """Fields to change on an appointment; omitted fields are kept."""
    date: datetime | None = Field(default=None, description="Appointment date and time")
    screening_id: str | None = Field(default=None)
    title: str | None = Field(default=None, max_length=200)
    provider: str | None = Field(default=None, max_length=200)
    location: str | None = Field(default=None, max_length=200)
    notes: str | None = Field(default=None, max_length=2000)
    completed: bool | None = Field(default=None)
    result: AppointmentResult | None = Field(default=None)


class GuidelineResponse(BaseModel):
    guideline: Guideline
    message: str


class UpdateGuidelineRequest(BaseModel):
    """
    A guideline edit.

    ``age_ranges`` and ``resources`` replace the stored lists when given.
    """
    guideline: dict[str, Any] = Field(default_factory=dict, description="Field changes")
    age_ranges: list[AgeRange] | None = Field(default=None)
    resources: list[GuidelineResource] | None = Field(default=None)


class UpdateProfileRequest(BaseModel):
    age: int | None = Field(default=None, ge=0, le=150)
    gender: str | None = Field(default=None)
    risk_factors: dict[str, Any] | None = Field(default=None)


class MessageResponse(BaseModel):
    message: str


class HealthStatus(str, Enum):
    """System health status levels."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Health check response for monitoring."""
    status: HealthStatus = Field(..., description="Overall health status")
    version: str = Field(..., description="Application version")
    environment: str = Field(..., description="Deployment environment")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")
    checks: dict[str, bool] = Field(default_factory=dict, description="Component health checks")


class ErrorResponse(BaseModel):
    """
    Standardized error response.

    Attributes:
        error: Error type/code.
        message: Human-readable error message.
        details: Additional error details.
        request_id: Request ID for tracing.
    """
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: dict | None = Field(default=None, description="Additional details")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=_utcnow, description="Error timestamp")
