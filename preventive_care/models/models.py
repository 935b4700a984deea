"""
Pydantic records for guidelines, screenings, appointments and selections.

Field names follow the row store columns; the few columns that differ
(e.g. ``appointment_date``) are translated in ``database.mapping``.
"""

from datetime import date as date_type
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class Visibility(str, Enum):
    """Who can see a guideline."""
    PUBLIC = "public"
    PRIVATE = "private"


class RecommendationStatus(str, Enum):
    """Relevance of a guideline to a profile."""
    CURRENT = "current"
    UPCOMING = "upcoming"


# ============================================================================
# Guideline catalog
# ============================================================================

class AgeRange(BaseModel):
    """Inclusive-lower, optionally unbounded-upper age interval."""
    id: str | None = Field(default=None, description="Row identity")
    guideline_id: str | None = Field(default=None, description="Owning guideline")
    min_age: int = Field(..., ge=0, description="Minimum age (inclusive)")
    max_age: int | None = Field(default=None, ge=0, description="Maximum age (inclusive), None = no upper bound")

    def contains(self, age: int) -> bool:
        """Whether ``age`` falls inside this range."""
        return age >= self.min_age and (self.max_age is None or age <= self.max_age)


class GuidelineResource(BaseModel):
    """Reference material attached to a guideline."""
    id: str | None = Field(default=None, description="Row identity")
    guideline_id: str | None = Field(default=None, description="Owning guideline")
    name: str = Field(..., description="Display name")
    url: str | None = Field(default=None, description="Link to the resource")
    description: str | None = Field(default=None, description="Short description")


class Guideline(BaseModel):
    """
    A preventive-care recommendation with its applicability rules.

    Attributes:
        genders: Genders the guideline applies to; "all" matches everyone.
        age_ranges: Applicable age ranges in stored order.
        frequency_months: Recommended interval between completions.
        original_guideline_id: Set on personalized copies.
    """
    id: str | None = Field(default=None, description="Guideline ID")
    name: str = Field(..., min_length=1, description="Guideline name")
    description: str | None = Field(default=None, description="Guideline description")
    category: str | None = Field(default=None, description="Category, e.g. 'cancer'")
    genders: list[str] = Field(default_factory=lambda: ["all"], description="Applicable genders")
    age_ranges: list[AgeRange] = Field(default_factory=list, description="Applicable age ranges")
    resources: list[GuidelineResource] = Field(default_factory=list, description="Attached resources")
    frequency_months: int | None = Field(default=12, ge=0, description="Interval in months")
    frequency_months_max: int | None = Field(default=None, ge=0, description="Upper interval in months")
    visibility: Visibility = Field(default=Visibility.PUBLIC, description="Visibility")
    created_by: str | None = Field(default=None, description="Owner user ID for private guidelines")
    tags: list[str] = Field(default_factory=list, description="Free-form tags")
    original_guideline_id: str | None = Field(default=None, description="Source guideline for copies")


class RecommendedGuideline(Guideline):
    """A guideline classified against a profile."""
    status: RecommendationStatus = Field(..., description="current or upcoming")
    is_selected: bool = Field(default=False, description="Whether the user tracks this guideline")


class Recommendations(BaseModel):
    """Classification output."""
    current: list[RecommendedGuideline] = Field(default_factory=list)
    upcoming: list[RecommendedGuideline] = Field(default_factory=list)


# ============================================================================
# Users
# ============================================================================

class UserProfile(BaseModel):
    """Read-only profile input to the recommendation engine."""
    user_id: str = Field(..., description="User ID")
    age: int = Field(..., ge=0, le=150, description="Age in years")
    gender: str | None = Field(default=None, description="Gender")
    risk_factors: dict[str, Any] = Field(default_factory=dict, description="Risk factors (unused)")


class Selection(BaseModel):
    """A user's choice to track a guideline. Unique per (user_id, guideline_id)."""
    id: str | None = Field(default=None, description="Row identity")
    user_id: str = Field(..., description="User ID")
    guideline_id: str = Field(..., description="Selected guideline")
    selected_at: datetime = Field(..., description="Last selection time")
    guideline: Guideline | None = Field(default=None, description="Embedded guideline")


# ============================================================================
# Screenings and appointments
# ============================================================================

class ScreeningRecord(BaseModel):
    """
    A user's tracked instance of a guideline.

    States: active (archived=False) and archived (archived=True).
    Completion keeps a record active; archiving is one-way.
    """
    id: str | None = Field(default=None, description="Screening ID")
    guideline_id: str = Field(..., description="Tracked guideline")
    user_id: str = Field(..., description="Owner")
    last_completed_date: date_type | None = Field(default=None, description="Last completion")
    next_due_date: date_type | None = Field(default=None, description="Next due date")
    archived: bool = Field(default=False, description="Soft-delete flag")
    created_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)


class AppointmentResult(BaseModel):
    """Outcome recorded against an appointment."""
    status: str | None = Field(default=None, description="Result status")
    notes: str | None = Field(default=None, description="Result notes")
    date: date_type | None = Field(default=None, description="Result date")


class Appointment(BaseModel):
    """
    A scheduled or completed visit.

    ``screening_id`` may hold either a screening ID or that screening's
    guideline ID.
    """
    id: str | None = Field(default=None, description="Appointment ID")
    user_id: str = Field(..., description="Owner")
    screening_id: str | None = Field(default=None, description="Screening ID or guideline ID")
    date: datetime = Field(..., description="Appointment date and time")
    title: str | None = Field(default=None)
    provider: str | None = Field(default=None)
    location: str | None = Field(default=None)
    notes: str | None = Field(default=None)
    completed: bool = Field(default=False)
    result: AppointmentResult | None = Field(default=None)

    @field_validator("date")
    @classmethod
    def normalize_to_utc(cls, v: datetime) -> datetime:
        """Naive times are taken as UTC; aware times are converted to UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class ScreeningWithAppointments(ScreeningRecord):
    """A screening record with its reconciled appointments."""
    appointments: list[Appointment] = Field(default_factory=list)


class ReconciliationResult(BaseModel):
    """
    Appointments distributed over screenings.

    Attributes:
        screenings: Screenings in input order, each with merged appointments.
        unmatched: Appointments whose screening_id resolved to nothing,
            keyed by the raw screening_id.
        unlinked: Appointments with no screening_id at all.
    """
    screenings: list[ScreeningWithAppointments] = Field(default_factory=list)
    unmatched: dict[str, list[Appointment]] = Field(default_factory=dict)
    unlinked: list[Appointment] = Field(default_factory=list)


class CompletionEvent(BaseModel):
    """Append-only record of a guideline being fulfilled."""
    id: str | None = Field(default=None)
    user_id: str = Field(..., description="User ID")
    guideline_id: str = Field(..., description="Completed guideline")
    completion_date: date_type = Field(..., description="Completion date")
    notes: str | None = Field(default=None)


# ============================================================================
# Service results
# ============================================================================

class PersonalizationResult(BaseModel):
    """Outcome of cloning a guideline; warnings list non-fatal failures."""
    guideline: Guideline
    warnings: list[str] = Field(default_factory=list)


class CompletionResult(BaseModel):
    """Outcome of marking a guideline completed."""
    screening: ScreeningRecord
    event: CompletionEvent | None = None
    warnings: list[str] = Field(default_factory=list)


class RecommendationReport(BaseModel):
    """Recommendations plus the profile they were computed for."""
    recommendations: Recommendations
    profile: UserProfile


