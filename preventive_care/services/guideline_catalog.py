"""
Guideline catalog queries and edits.

Public guidelines are visible to everyone; private (personalized)
guidelines only to the user who created them. Admins and a guideline's
creator may edit or delete it, and only admins may publish.
"""

from typing import Any, Iterable

from pydantic import ValidationError as ModelValidationError

from preventive_care.config.logging_config import get_logger
from preventive_care.database import row_store as tables
from preventive_care.database.mapping import (
    age_range_to_row,
    guideline_from_row,
    guideline_to_row,
    resource_to_row,
)
from preventive_care.database.row_store import RowStore
from preventive_care.errors import NotFound, PermissionDenied, ValidationError
from preventive_care.models.models import AgeRange, Guideline, GuidelineResource, Visibility

logger = get_logger(__name__)

ADMIN_ROLE = "admin"

# Set by the catalog itself, never by an edit
IMMUTABLE_FIELDS = {"id", "created_by", "original_guideline_id", "age_ranges", "resources"}


class GuidelineCatalog:
    """Guideline definitions with their child rows."""

    def __init__(self, store: RowStore):
        self.store = store

    def _load(self, row: dict, with_resources: bool = True) -> Guideline:
        ranges = self.store.query(tables.AGE_RANGES, {"guideline_id": row["id"]})
        resources = (
            self.store.query(tables.RESOURCES, {"guideline_id": row["id"]})
            if with_resources
            else ()
        )
        return guideline_from_row(row, ranges, resources)

    @staticmethod
    def is_visible(row: dict, user_id: str | None) -> bool:
        if row.get("visibility", Visibility.PUBLIC.value) == Visibility.PUBLIC.value:
            return True
        return user_id is not None and row.get("created_by") == user_id

    def list_guidelines(
        self,
        user_id: str | None = None,
        category: str | None = None,
        visibility: Visibility | None = None,
        query: str | None = None,
    ) -> list[Guideline]:
        """
        List guidelines visible to ``user_id``.

        Args:
            user_id: Caller; without one only public guidelines are listed.
            category: Optional exact category filter.
            visibility: Restrict to public or private (the caller's own).
            query: Case-insensitive text search over name and description.
        """
        filters = {}
        if category:
            filters["category"] = category
        if visibility is not None:
            filters["visibility"] = visibility.value

        needle = query.lower().strip() if query else None
        guidelines = []
        for row in self.store.query(tables.GUIDELINES, filters, order_by="name"):
            if not self.is_visible(row, user_id):
                continue
            if needle:
                haystack = f"{row.get('name', '')} {row.get('description') or ''}".lower()
                if needle not in haystack:
                    continue
            guidelines.append(self._load(row, with_resources=False))

        logger.debug("Guidelines listed", user_id=user_id, count=len(guidelines))
        return guidelines

    def public_guidelines(self, category: str | None = None) -> list[Guideline]:
        """Public guidelines with their age ranges, ordered by name."""
        filters = {"visibility": Visibility.PUBLIC.value}
        if category:
            filters["category"] = category
        rows = self.store.query(tables.GUIDELINES, filters, order_by="name")
        return [self._load(row, with_resources=False) for row in rows]

    def get_guideline(self, guideline_id: str, user_id: str | None = None) -> Guideline:
        """
        One guideline with age ranges and resources.

        Raises:
            NotFound: If it doesn't exist or is another user's private copy.
        """
        row = self.store.get(tables.GUIDELINES, guideline_id)
        if row is None or not self.is_visible(row, user_id):
            raise NotFound("Guideline", guideline_id)
        return self._load(row)

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def is_admin(self, user_id: str) -> bool:
        rows = self.store.query(tables.ROLES, {"user_id": user_id})
        return any(row.get("role") == ADMIN_ROLE for row in rows)

    def _editable(self, guideline_id: str, user_id: str) -> tuple[dict, bool]:
        row = self.store.get(tables.GUIDELINES, guideline_id)
        if row is None or not self.is_visible(row, user_id):
            raise NotFound("Guideline", guideline_id)
        admin = self.is_admin(user_id)
        if not admin and row.get("created_by") != user_id:
            raise PermissionDenied(f"Not allowed to modify guideline: {guideline_id}")
        return row, admin

    def _replace_children(
        self,
        guideline_id: str,
        age_ranges: Iterable[AgeRange] | None,
        resources: Iterable[GuidelineResource] | None,
    ) -> None:
        if age_ranges is not None:
            self.store.delete(tables.AGE_RANGES, {"guideline_id": guideline_id})
            rows = [age_range_to_row(r, guideline_id, i) for i, r in enumerate(age_ranges)]
            if rows:
                self.store.insert_many(tables.AGE_RANGES, rows)
        if resources is not None:
            self.store.delete(tables.RESOURCES, {"guideline_id": guideline_id})
            rows = [resource_to_row(r, guideline_id, i) for i, r in enumerate(resources)]
            if rows:
                self.store.insert_many(tables.RESOURCES, rows)

    def create_guideline(self, user_id: str, guideline: Guideline) -> Guideline:
        """
        Add a guideline with its age ranges and resources.

        The caller becomes its creator. Non-admins can only create private
        guidelines; a requested public visibility is downgraded.
        """
        visibility = guideline.visibility
        if visibility == Visibility.PUBLIC and not self.is_admin(user_id):
            logger.warning("Non-admin guideline created as private", user_id=user_id)
            visibility = Visibility.PRIVATE

        draft = guideline.model_copy(update={
            "id": None,
            "created_by": user_id,
            "original_guideline_id": None,
            "visibility": visibility,
        })
        row = self.store.insert(tables.GUIDELINES, guideline_to_row(draft))
        self._replace_children(row["id"], guideline.age_ranges, guideline.resources)

        logger.info("Guideline created", guideline_id=row["id"], user_id=user_id, visibility=visibility.value)
        return self.get_guideline(row["id"], user_id)

    def update_guideline(
        self,
        user_id: str,
        guideline_id: str,
        updates: dict[str, Any] | None = None,
        age_ranges: list[AgeRange] | None = None,
        resources: list[GuidelineResource] | None = None,
    ) -> Guideline:
        """
        Edit a guideline's fields and optionally replace its child rows.

        Raises:
            NotFound: If the guideline is missing or not visible.
            PermissionDenied: If the caller is neither admin nor creator.
            ValidationError: On unknown fields or invalid values.
        """
        row, admin = self._editable(guideline_id, user_id)

        changes = {}
        for field, value in (updates or {}).items():
            if field in IMMUTABLE_FIELDS:
                logger.warning("Ignoring protected guideline field", field=field, guideline_id=guideline_id)
                continue
            if field not in Guideline.model_fields:
                raise ValidationError(f"Unknown guideline field: {field}")
            changes[field] = value
        if not admin and changes.get("visibility") == Visibility.PUBLIC.value:
            changes["visibility"] = Visibility.PRIVATE.value

        try:
            merged = guideline_from_row({**row, **changes})
        except ModelValidationError as e:
            raise ValidationError(f"Invalid guideline: {e.errors()[0]['msg']}") from e

        self.store.update(tables.GUIDELINES, guideline_id, guideline_to_row(merged))
        self._replace_children(guideline_id, age_ranges, resources)

        logger.info("Guideline updated", guideline_id=guideline_id, user_id=user_id, fields=sorted(changes))
        return self.get_guideline(guideline_id, user_id)

    def delete_guideline(self, user_id: str, guideline_id: str) -> None:
        """Remove a guideline with its child rows and selections."""
        self._editable(guideline_id, user_id)
        for table in (tables.AGE_RANGES, tables.RESOURCES, tables.SELECTIONS):
            self.store.delete(table, {"guideline_id": guideline_id})
        self.store.delete(tables.GUIDELINES, {"id": guideline_id})
        logger.info("Guideline deleted", guideline_id=guideline_id, user_id=user_id)
