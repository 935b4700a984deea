"""
Mapping between row store rows and pydantic records.

This is the only module that knows row shapes: column names that differ
from record fields, child tables, and JSON-safe encodings of dates.
"""

from typing import Any, Iterable

from preventive_care.models.models import (
    AgeRange,
    Appointment,
    CompletionEvent,
    Guideline,
    GuidelineResource,
    ScreeningRecord,
    Selection,
    UserProfile,
)

_GUIDELINE_CHILDREN = {"age_ranges", "resources"}


def _ordered(rows: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    # Child rows carry their stored position; rows written elsewhere may not
    rows = list(rows)
    return sorted(rows, key=lambda r: r.get("position", 0))


# ----------------------------------------------------------------------------
# Guidelines
# ----------------------------------------------------------------------------

def guideline_from_row(
    row: dict[str, Any],
    age_range_rows: Iterable[dict[str, Any]] = (),
    resource_rows: Iterable[dict[str, Any]] = (),
) -> Guideline:
    data = {k: v for k, v in row.items() if k not in _GUIDELINE_CHILDREN}
    data["genders"] = row.get("genders") or ["all"]
    data["tags"] = row.get("tags") or []
    data["age_ranges"] = [age_range_from_row(r) for r in _ordered(age_range_rows)]
    data["resources"] = [resource_from_row(r) for r in _ordered(resource_rows)]
    return Guideline.model_validate(data)


def guideline_to_row(guideline: Guideline) -> dict[str, Any]:
    row = guideline.model_dump(mode="json", exclude=_GUIDELINE_CHILDREN)
    if row.get("id") is None:
        row.pop("id", None)
    return row


def age_range_from_row(row: dict[str, Any]) -> AgeRange:
    return AgeRange.model_validate({k: v for k, v in row.items() if k != "position"})


def age_range_to_row(age_range: AgeRange, guideline_id: str, position: int) -> dict[str, Any]:
    """Row for ``age_range`` under ``guideline_id`` with a fresh identity."""
    return {
        "guideline_id": guideline_id,
        "min_age": age_range.min_age,
        "max_age": age_range.max_age,
        "position": position,
    }


def resource_from_row(row: dict[str, Any]) -> GuidelineResource:
    return GuidelineResource.model_validate({k: v for k, v in row.items() if k != "position"})


def resource_to_row(resource: GuidelineResource, guideline_id: str, position: int) -> dict[str, Any]:
    """Row for ``resource`` under ``guideline_id`` with a fresh identity."""
    row = resource.model_dump(mode="json", exclude={"id", "guideline_id"})
    row["guideline_id"] = guideline_id
    row["position"] = position
    return row


# ----------------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------------

def profile_from_row(row: dict[str, Any]) -> UserProfile:
    return UserProfile(
        user_id=row["user_id"],
        age=row["age"],
        gender=row.get("gender"),
        risk_factors=row.get("risk_factors") or {},
    )


def profile_to_row(profile: UserProfile) -> dict[str, Any]:
    return profile.model_dump(mode="json")


def selection_from_row(row: dict[str, Any], guideline: Guideline | None = None) -> Selection:
    return Selection(
        id=row.get("id"),
        user_id=row["user_id"],
        guideline_id=row["guideline_id"],
        selected_at=row["selected_at"],
        guideline=guideline,
    )


def selection_to_row(selection: Selection) -> dict[str, Any]:
    return selection.model_dump(mode="json", exclude={"id", "guideline"})


# ----------------------------------------------------------------------------
# Screenings, appointments, completions
# ----------------------------------------------------------------------------

def screening_from_row(row: dict[str, Any]) -> ScreeningRecord:
    return ScreeningRecord.model_validate(
        {**row, "archived": bool(row.get("archived", False))}
    )


def screening_to_row(screening: ScreeningRecord) -> dict[str, Any]:
    row = screening.model_dump(mode="json")
    if row.get("id") is None:
        row.pop("id", None)
    return row


def appointment_from_row(row: dict[str, Any]) -> Appointment:
    return Appointment.model_validate({
        "id": row.get("id"),
        "user_id": row["user_id"],
        "screening_id": row.get("screening_id") or None,
        "date": row["appointment_date"],
        "title": row.get("title"),
        "provider": row.get("provider_name"),
        "location": row.get("location"),
        "notes": row.get("notes") or None,
        "completed": bool(row.get("completed", False)),
        "result": row.get("result") or None,
    })


def appointment_to_row(appointment: Appointment) -> dict[str, Any]:
    data = appointment.model_dump(mode="json")
    row = {
        "user_id": data["user_id"],
        "screening_id": data["screening_id"],
        "appointment_date": data["date"],
        "title": data["title"],
        "provider_name": data["provider"],
        "location": data["location"],
        "notes": data["notes"],
        "completed": data["completed"],
        "result": data["result"],
    }
    if data.get("id"):
        row["id"] = data["id"]
    return row


def completion_from_row(row: dict[str, Any]) -> CompletionEvent:
    return CompletionEvent.model_validate(row)


def completion_to_row(event: CompletionEvent) -> dict[str, Any]:
    return event.model_dump(mode="json", exclude={"id"})
