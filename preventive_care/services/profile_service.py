"""
User profiles: the age, gender and risk factors recommendations are
computed from.
"""

from typing import Any

from pydantic import ValidationError as ModelValidationError

from preventive_care.config.logging_config import get_logger
from preventive_care.database import row_store as tables
from preventive_care.database.mapping import profile_from_row, profile_to_row
from preventive_care.database.row_store import RowStore
from preventive_care.errors import NotFound, ValidationError
from preventive_care.models.models import UserProfile

logger = get_logger(__name__)

EDITABLE_FIELDS = {"age", "gender", "risk_factors"}


class ProfileService:
    """Read and update one profile row per user."""

    def __init__(self, store: RowStore):
        self.store = store

    def _row(self, user_id: str) -> dict | None:
        rows = self.store.query(tables.PROFILES, {"user_id": user_id})
        return rows[0] if rows else None

    def get_profile(self, user_id: str) -> UserProfile:
        row = self._row(user_id)
        if row is None:
            raise NotFound("User profile", user_id)
        return profile_from_row(row)

    def update_profile(self, user_id: str, updates: dict[str, Any]) -> UserProfile:
        """
        Apply ``updates`` to the user's profile, creating it if missing.

        Raises:
            ValidationError: On unknown fields, out-of-range values, or a
                new profile without an age.
        """
        unknown = sorted(set(updates) - EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown profile fields: {', '.join(unknown)}")

        row = self._row(user_id)
        if row is None and updates.get("age") is None:
            raise ValidationError("Age is required to create a profile")

        current = profile_from_row(row).model_dump() if row is not None else {}
        try:
            profile = UserProfile.model_validate({**current, **updates, "user_id": user_id})
        except ModelValidationError as e:
            raise ValidationError(f"Invalid profile: {e.errors()[0]['msg']}") from e

        if row is None:
            self.store.insert(tables.PROFILES, profile_to_row(profile))
            logger.info("User profile created", user_id=user_id)
        else:
            self.store.update(tables.PROFILES, row["id"], profile_to_row(profile))
            logger.info("User profile updated", user_id=user_id, fields=sorted(updates))
        return profile
