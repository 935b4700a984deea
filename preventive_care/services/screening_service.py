"""
Screening lifecycle, completions and appointments.

Screening records move from active to archived and never back; deletion
removes a record outright. Completing a guideline updates the user's
active record for it and appends to the completion history.

Listings read screenings and appointments separately. The two reads are
not consistent with each other, so an appointment written in between may
only show up on the next call.
"""

from datetime import date, datetime
from typing import Any

from pydantic import ValidationError as ModelValidationError

from preventive_care.config.logging_config import get_logger
from preventive_care.database import row_store as tables
from preventive_care.database.mapping import (
    appointment_from_row,
    appointment_to_row,
    completion_from_row,
    completion_to_row,
    guideline_from_row,
    screening_from_row,
    screening_to_row,
)
from preventive_care.database.row_store import RowStore
from preventive_care.errors import GuidelineEngineError, NotFound, PartialFailure, ValidationError
from preventive_care.models.models import (
    Appointment,
    CompletionEvent,
    CompletionResult,
    ReconciliationResult,
    ScreeningRecord,
    ScreeningWithAppointments,
)
from preventive_care.services.due_date import DEFAULT_FREQUENCY_MONTHS, next_due_date
from preventive_care.services.guideline_catalog import GuidelineCatalog
from preventive_care.services.reconciler import attach, attach_one, sort_by_date
from preventive_care.services.selection_tracker import utcnow

logger = get_logger(__name__)

APPOINTMENT_EDITABLE_FIELDS = {
    "date",
    "screening_id",
    "title",
    "provider",
    "location",
    "notes",
    "completed",
    "result",
}


class ScreeningService:
    """Store-backed screening records for one user at a time."""

    def __init__(self, store: RowStore, default_frequency_months: int = DEFAULT_FREQUENCY_MONTHS):
        self.store = store
        self.default_frequency_months = default_frequency_months

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _screenings(self, user_id: str, include_archived: bool = False) -> list[ScreeningRecord]:
        filters: dict = {"user_id": user_id}
        if not include_archived:
            filters["archived"] = False
        rows = self.store.query(tables.SCREENINGS, filters, order_by="created_at")
        return [screening_from_row(r) for r in rows]

    def list_appointments(self, user_id: str, screening_id: str | None = None) -> list[Appointment]:
        """A user's appointments, newest first."""
        filters = {"user_id": user_id}
        if screening_id:
            filters["screening_id"] = screening_id
        rows = self.store.query(
            tables.APPOINTMENTS, filters, order_by="appointment_date", descending=True
        )
        # Stored strings may mix offsets; order on the parsed UTC value
        return sort_by_date(appointment_from_row(r) for r in rows)

    def list_screenings(self, user_id: str, include_archived: bool = False) -> ReconciliationResult:
        """Screenings with their reconciled appointments."""
        screenings = self._screenings(user_id, include_archived)
        appointments = self.list_appointments(user_id)
        return attach(screenings, appointments)

    def get_screening(
        self,
        user_id: str,
        key: str,
        include_archived: bool = False,
    ) -> ScreeningWithAppointments:
        """
        One screening, looked up by screening ID or guideline ID.

        Raises:
            NotFound: If the user has no such screening.
        """
        screenings = self._screenings(user_id, include_archived)
        appointments = self.list_appointments(user_id)
        return attach_one(key, screenings, appointments)

    def _owned(self, user_id: str, screening_id: str) -> ScreeningRecord:
        row = self.store.get(tables.SCREENINGS, screening_id)
        if row is None or row.get("user_id") != user_id:
            raise NotFound("Screening", screening_id)
        return screening_from_row(row)

    def completion_history(
        self,
        user_id: str,
        guideline_id: str | None = None,
    ) -> list[CompletionEvent]:
        """Completion events, most recent first."""
        filters = {"user_id": user_id}
        if guideline_id:
            filters["guideline_id"] = guideline_id
        rows = self.store.query(
            tables.COMPLETIONS, filters, order_by="completion_date", descending=True
        )
        return [completion_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_screening(self, user_id: str, guideline_id: str) -> ScreeningRecord:
        """Start tracking a guideline. New records are active."""
        guideline_row = self.store.get(tables.GUIDELINES, guideline_id)
        if guideline_row is None or not GuidelineCatalog.is_visible(guideline_row, user_id):
            raise NotFound("Guideline", guideline_id)
        now = utcnow()
        record = ScreeningRecord(
            guideline_id=guideline_id,
            user_id=user_id,
            archived=False,
            created_at=now,
            updated_at=now,
        )
        row = self.store.insert(tables.SCREENINGS, screening_to_row(record))
        logger.info("Screening created", screening_id=row["id"], guideline_id=guideline_id, user_id=user_id)
        return screening_from_row(row)

    def complete(
        self,
        user_id: str,
        guideline_id: str,
        completion_date: date | None = None,
        notes: str | None = None,
    ) -> CompletionResult:
        """
        Mark a guideline completed for a user.

        Computes the next due date, updates the user's active screening for
        the guideline (creating one if there is none) and records a
        completion event. A failure writing the event is only a warning.

        Raises:
            NotFound: If the guideline does not exist.
        """
        guideline_row = self.store.get(tables.GUIDELINES, guideline_id)
        if guideline_row is None or not GuidelineCatalog.is_visible(guideline_row, user_id):
            raise NotFound("Guideline", guideline_id)
        guideline = guideline_from_row(guideline_row)

        if isinstance(completion_date, datetime):
            completion_date = completion_date.date()
        completion_date = completion_date or utcnow().date()
        due = next_due_date(guideline, completion_date, self.default_frequency_months)

        updates = {
            "last_completed_date": completion_date.isoformat(),
            "next_due_date": due.isoformat(),
            "updated_at": utcnow().isoformat(),
        }
        active = self.store.query(
            tables.SCREENINGS,
            {"user_id": user_id, "guideline_id": guideline_id, "archived": False},
        )
        if active:
            row = self.store.update(tables.SCREENINGS, active[0]["id"], updates)
        else:
            record = self.create_screening(user_id, guideline_id)
            row = self.store.update(tables.SCREENINGS, record.id, updates)
        screening = screening_from_row(row)

        warnings: list[str] = []
        event = CompletionEvent(
            user_id=user_id,
            guideline_id=guideline_id,
            completion_date=completion_date,
            notes=notes,
        )
        try:
            event = completion_from_row(
                self.store.insert(tables.COMPLETIONS, completion_to_row(event))
            )
        except Exception as e:
            message = e.message if isinstance(e, GuidelineEngineError) else str(e)
            warnings.append(PartialFailure("record_completion", message).message)
            logger.warning(
                "Error recording completion history",
                guideline_id=guideline_id,
                user_id=user_id,
                error=message,
            )
            event = None

        logger.info(
            "Guideline marked as completed",
            guideline_id=guideline_id,
            user_id=user_id,
            next_due_date=due.isoformat(),
        )
        return CompletionResult(screening=screening, event=event, warnings=warnings)

    def archive(self, user_id: str, screening_id: str) -> ScreeningRecord:
        """Archive a screening. Archiving an archived record is a no-op."""
        record = self._owned(user_id, screening_id)
        if record.archived:
            return record
        row = self.store.update(
            tables.SCREENINGS,
            screening_id,
            {"archived": True, "updated_at": utcnow().isoformat()},
        )
        logger.info("Screening archived", screening_id=screening_id, user_id=user_id)
        return screening_from_row(row)

    def delete(self, user_id: str, screening_id: str) -> None:
        """Remove a screening permanently."""
        self._owned(user_id, screening_id)
        self.store.delete(tables.SCREENINGS, {"id": screening_id, "user_id": user_id})
        logger.info("Screening deleted", screening_id=screening_id, user_id=user_id)

    def create_appointment(self, user_id: str, appointment: Appointment) -> Appointment:
        """Store an appointment for ``user_id``; blank screening IDs become None."""
        screening_id = (appointment.screening_id or "").strip() or None
        data = appointment.model_copy(update={"user_id": user_id, "screening_id": screening_id})
        row = self.store.insert(tables.APPOINTMENTS, appointment_to_row(data))
        logger.info("Appointment created", appointment_id=row["id"], screening_id=screening_id)
        return appointment_from_row(row)

    def _owned_appointment(self, user_id: str, appointment_id: str) -> dict:
        row = self.store.get(tables.APPOINTMENTS, appointment_id)
        if row is None or row.get("user_id") != user_id:
            raise NotFound("Appointment", appointment_id)
        return row

    def get_appointment(self, user_id: str, appointment_id: str) -> Appointment:
        return appointment_from_row(self._owned_appointment(user_id, appointment_id))

    def update_appointment(
        self,
        user_id: str,
        appointment_id: str,
        updates: dict[str, Any],
    ) -> Appointment:
        """
        Edit an appointment, e.g. to mark it completed or record a result.

        Raises:
            NotFound: If the user has no such appointment.
            ValidationError: On unknown fields or invalid values.
        """
        current = self.get_appointment(user_id, appointment_id)
        unknown = sorted(set(updates) - APPOINTMENT_EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown appointment fields: {', '.join(unknown)}")

        updates = dict(updates)
        if "screening_id" in updates:
            updates["screening_id"] = (updates["screening_id"] or "").strip() or None
        try:
            merged = Appointment.model_validate(
                {**current.model_dump(), **updates, "id": appointment_id, "user_id": user_id}
            )
        except ModelValidationError as e:
            raise ValidationError(f"Invalid appointment: {e.errors()[0]['msg']}") from e

        row = appointment_to_row(merged)
        row["updated_at"] = utcnow().isoformat()
        updated = self.store.update(tables.APPOINTMENTS, appointment_id, row)
        logger.info("Appointment updated", appointment_id=appointment_id, fields=sorted(updates))
        return appointment_from_row(updated)

    def delete_appointment(self, user_id: str, appointment_id: str) -> None:
        self._owned_appointment(user_id, appointment_id)
        self.store.delete(tables.APPOINTMENTS, {"id": appointment_id, "user_id": user_id})
        logger.info("Appointment deleted", appointment_id=appointment_id, user_id=user_id)
