"""
Guideline personalization.

Clones a public guideline, with its age ranges and resources, into a
private copy owned by one user. The three tables are written without a
transaction:

1. guideline row        - failure aborts
2. age range rows       - failure deletes the new guideline, then aborts
3. resource rows        - failure is recorded as a warning
4. creator's selection  - failure is recorded as a warning

If the compensating delete in step 2 fails the store holds an orphan and
ConsistencyRollbackFailure is raised instead of the original error.
"""

from typing import Any, Iterable

from preventive_care.config.logging_config import get_logger
from preventive_care.database import row_store as tables
from preventive_care.database.mapping import (
    age_range_to_row,
    guideline_from_row,
    guideline_to_row,
    resource_to_row,
)
from preventive_care.database.row_store import RowStore
from preventive_care.errors import (
    ConsistencyRollbackFailure,
    GuidelineEngineError,
    NotFound,
    PartialFailure,
    ValidationError,
)
from preventive_care.models.models import (
    AgeRange,
    Guideline,
    GuidelineResource,
    PersonalizationResult,
    Visibility,
)
from preventive_care.services.selection_tracker import SelectionTracker

logger = get_logger(__name__)

PERSONALIZED_SUFFIX = " (Personalized)"

# Fields a customization may not override
PROTECTED_FIELDS = {"id", "visibility", "created_by", "original_guideline_id", "age_ranges", "resources"}


class GuidelinePersonalization:
    """Creates private, user-owned copies of guidelines."""

    def __init__(self, store: RowStore, selections: SelectionTracker | None = None):
        self.store = store
        self.selections = selections or SelectionTracker(store)

    def build_copy(
        self,
        original: Guideline,
        user_id: str,
        customizations: dict[str, Any] | None = None,
    ) -> Guideline:
        """The unsaved private guideline for ``user_id``."""
        data = original.model_dump(exclude={"id", "age_ranges", "resources"})
        data["name"] = f"{original.name}{PERSONALIZED_SUFFIX}"
        for field, value in (customizations or {}).items():
            if field in PROTECTED_FIELDS:
                logger.warning("Ignoring protected customization", field=field)
                continue
            if field not in Guideline.model_fields:
                raise ValidationError(f"Unknown guideline field: {field}")
            data[field] = value
        data["visibility"] = Visibility.PRIVATE
        data["created_by"] = user_id
        data["original_guideline_id"] = original.id
        return Guideline.model_validate(data)

    def clone(
        self,
        original: Guideline,
        age_ranges: Iterable[AgeRange],
        resources: Iterable[GuidelineResource],
        user_id: str,
        customizations: dict[str, Any] | None = None,
    ) -> PersonalizationResult:
        """
        Clone ``original`` into a private guideline owned by ``user_id``.

        Args:
            original: The guideline being personalized.
            age_ranges: Its age range rows, in stored order.
            resources: Its resource rows.
            user_id: The new owner.
            customizations: Field overrides applied on top of the copy.

        Returns:
            PersonalizationResult; ``warnings`` lists non-fatal failures.

        Raises:
            StoreError: If the guideline or its age ranges cannot be written.
            ConsistencyRollbackFailure: If cleaning up after an age range
                failure also fails.
        """
        draft = self.build_copy(original, user_id, customizations)
        new_row = self.store.insert(tables.GUIDELINES, guideline_to_row(draft))
        new_id = new_row["id"]
        logger.info(
            "Personalized guideline created",
            guideline_id=new_id,
            original_guideline_id=original.id,
            user_id=user_id,
        )

        age_ranges = list(age_ranges)
        range_rows = []
        if age_ranges:
            try:
                range_rows = self.store.insert_many(
                    tables.AGE_RANGES,
                    [age_range_to_row(r, new_id, i) for i, r in enumerate(age_ranges)],
                )
            except Exception as e:
                self._rollback(new_id, e)
                raise

        warnings: list[str] = []

        resources = list(resources)
        resource_rows = []
        if resources:
            try:
                resource_rows = self.store.insert_many(
                    tables.RESOURCES,
                    [resource_to_row(r, new_id, i) for i, r in enumerate(resources)],
                )
            except Exception as e:
                warnings.append(self._partial("copy_resources", e, new_id).message)

        try:
            self.selections.select(user_id, new_id)
        except Exception as e:
            warnings.append(self._partial("select_guideline", e, new_id).message)

        guideline = guideline_from_row(new_row, range_rows, resource_rows)
        return PersonalizationResult(guideline=guideline, warnings=warnings)

    def personalize(
        self,
        guideline_id: str,
        user_id: str,
        customizations: dict[str, Any] | None = None,
    ) -> PersonalizationResult:
        """Load a guideline with its child rows and clone it."""
        row = self.store.get(tables.GUIDELINES, guideline_id)
        if row is None or (
            row.get("visibility") == Visibility.PRIVATE.value and row.get("created_by") != user_id
        ):
            raise NotFound("Guideline", guideline_id)
        range_rows = self.store.query(tables.AGE_RANGES, {"guideline_id": guideline_id})
        resource_rows = self.store.query(tables.RESOURCES, {"guideline_id": guideline_id})
        original = guideline_from_row(row, range_rows, resource_rows)
        return self.clone(
            original,
            original.age_ranges,
            original.resources,
            user_id,
            customizations,
        )

    def _rollback(self, guideline_id: str, error: Exception) -> None:
        logger.error(
            "Copying age ranges failed, removing personalized guideline",
            guideline_id=guideline_id,
            error=str(error),
        )
        try:
            self.store.delete(tables.GUIDELINES, {"id": guideline_id})
        except Exception as rollback_error:
            logger.critical(
                "Rollback of personalized guideline failed",
                guideline_id=guideline_id,
                error=str(error),
                rollback_error=str(rollback_error),
            )
            raise ConsistencyRollbackFailure(
                f"Failed to remove guideline {guideline_id} after age range copy failed: "
                f"{rollback_error}",
                orphan_id=guideline_id,
                original_error=error,
                rollback_error=rollback_error,
            ) from rollback_error

    @staticmethod
    def _partial(step: str, error: Exception, guideline_id: str) -> PartialFailure:
        message = error.message if isinstance(error, GuidelineEngineError) else str(error)
        failure = PartialFailure(step, message)
        logger.warning(
            "Personalization step failed",
            step=step,
            guideline_id=guideline_id,
            error=message,
        )
        return failure
