"""
Per-user guideline selections.

``select`` and ``deselect`` are idempotent, so concurrent calls for the
same (user, guideline) pair converge without locking.
"""

from datetime import datetime, timezone

from preventive_care.config.logging_config import get_logger
from preventive_care.database import row_store as tables
from preventive_care.database.mapping import guideline_from_row, selection_from_row
from preventive_care.database.row_store import RowStore
from preventive_care.errors import NotFound, ValidationError
from preventive_care.models.models import Selection
from preventive_care.services.guideline_catalog import GuidelineCatalog

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SelectionTracker:
    """Create, touch, delete and list a user's selected guidelines."""

    def __init__(self, store: RowStore):
        self.store = store

    @staticmethod
    def _require_guideline_id(guideline_id: str | None) -> str:
        if not guideline_id or not str(guideline_id).strip():
            raise ValidationError("Guideline ID is required")
        return guideline_id

    def select(self, user_id: str, guideline_id: str | None) -> Selection:
        """
        Select a guideline for a user.

        If the pair is already selected its ``selected_at`` is refreshed;
        otherwise a new selection row is inserted.

        Raises:
            ValidationError: If ``guideline_id`` is empty.
            NotFound: If the guideline does not exist or is another
                user's private copy.
        """
        guideline_id = self._require_guideline_id(guideline_id)
        guideline_row = self.store.get(tables.GUIDELINES, guideline_id)
        if guideline_row is None or not GuidelineCatalog.is_visible(guideline_row, user_id):
            raise NotFound("Guideline", guideline_id)

        now = utcnow().isoformat()
        existing = self.store.query(
            tables.SELECTIONS, {"user_id": user_id, "guideline_id": guideline_id}
        )
        if existing:
            row = self.store.update(tables.SELECTIONS, existing[0]["id"], {"selected_at": now})
            logger.info("Guideline selection updated", user_id=user_id, guideline_id=guideline_id)
        else:
            row = self.store.insert(
                tables.SELECTIONS,
                {"user_id": user_id, "guideline_id": guideline_id, "selected_at": now},
            )
            logger.info("Guideline selected", user_id=user_id, guideline_id=guideline_id)
        return selection_from_row(row)

    def deselect(self, user_id: str, guideline_id: str | None) -> int:
        """
        Remove a selection. Succeeds silently when there is none.

        Returns:
            Number of rows removed.
        """
        guideline_id = self._require_guideline_id(guideline_id)
        removed = self.store.delete(
            tables.SELECTIONS, {"user_id": user_id, "guideline_id": guideline_id}
        )
        logger.info(
            "Guideline selection removed",
            user_id=user_id,
            guideline_id=guideline_id,
            removed=removed,
        )
        return removed

    def list_selections(self, user_id: str) -> list[Selection]:
        """
        Selections with embedded guidelines, most recently selected first.

        Guidelines the user can no longer see are left out of the embedding.
        """
        rows = self.store.query(
            tables.SELECTIONS, {"user_id": user_id}, order_by="selected_at", descending=True
        )
        selections = []
        for row in rows:
            guideline = None
            guideline_row = self.store.get(tables.GUIDELINES, row["guideline_id"])
            if guideline_row is not None and GuidelineCatalog.is_visible(guideline_row, user_id):
                guideline = guideline_from_row(
                    guideline_row,
                    self.store.query(tables.AGE_RANGES, {"guideline_id": guideline_row["id"]}),
                    self.store.query(tables.RESOURCES, {"guideline_id": guideline_row["id"]}),
                )
            selections.append(selection_from_row(row, guideline))
        return selections

    def selected_ids(self, user_id: str) -> set[str]:
        return {
            row["guideline_id"]
            for row in self.store.query(tables.SELECTIONS, {"user_id": user_id})
        }
