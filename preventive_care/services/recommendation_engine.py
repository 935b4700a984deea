"""
Recommendation engine.

Classifies guidelines against a user profile into those that apply now
(current) and those that will apply within a look-ahead window (upcoming).
The classification itself is deterministic and does no I/O; the service
wrapper fetches its inputs from the row store.
"""

from typing import Iterable

from preventive_care.config.logging_config import get_logger
from preventive_care.database.row_store import RowStore
from preventive_care.models.models import (
    Guideline,
    RecommendationReport,
    Recommendations,
    RecommendationStatus,
    RecommendedGuideline,
    UserProfile,
)
from preventive_care.services.guideline_catalog import GuidelineCatalog
from preventive_care.services.profile_service import ProfileService
from preventive_care.services.selection_tracker import SelectionTracker

logger = get_logger(__name__)

ALL_GENDERS = "all"
DEFAULT_UPCOMING_YEARS = 5


def applies_to_gender(guideline: Guideline, gender: str | None) -> bool:
    """A guideline applies if it lists "all" or the profile's gender."""
    return ALL_GENDERS in guideline.genders or (gender is not None and gender in guideline.genders)


def classify_one(
    guideline: Guideline,
    profile: UserProfile,
    include_upcoming: bool = False,
    upcoming_years: int = DEFAULT_UPCOMING_YEARS,
) -> RecommendationStatus | None:
    """
    Classify a single guideline.

    Age ranges are scanned in stored order. The first range containing the
    profile's age makes the guideline current and ends the scan. A range
    starting within ``upcoming_years`` marks it upcoming, but the scan
    continues so a later current range still wins.

    Returns:
        CURRENT, UPCOMING, or None when the guideline does not apply.
    """
    if not applies_to_gender(guideline, profile.gender):
        return None

    age = profile.age
    upcoming = False
    for age_range in guideline.age_ranges:
        if age_range.contains(age):
            return RecommendationStatus.CURRENT
        if include_upcoming and age < age_range.min_age <= age + upcoming_years:
            upcoming = True

    return RecommendationStatus.UPCOMING if upcoming else None


def classify(
    guidelines: Iterable[Guideline],
    profile: UserProfile,
    include_upcoming: bool = False,
    upcoming_years: int = DEFAULT_UPCOMING_YEARS,
    selected_ids: Iterable[str] = (),
) -> Recommendations:
    """
    Split guidelines into current and upcoming for ``profile``.

    Args:
        guidelines: Candidate guidelines with their age ranges.
        profile: The user's age and gender.
        include_upcoming: Whether to look ahead at all.
        upcoming_years: Look-ahead window in years.
        selected_ids: Guideline IDs the user already tracks.

    Returns:
        Recommendations preserving input order within each bucket.
    """
    selected = set(selected_ids)
    result = Recommendations()

    for guideline in guidelines:
        status = classify_one(guideline, profile, include_upcoming, upcoming_years)
        if status is None:
            continue
        entry = RecommendedGuideline(
            **guideline.model_dump(),
            status=status,
            is_selected=guideline.id in selected,
        )
        if status is RecommendationStatus.CURRENT:
            result.current.append(entry)
        else:
            result.upcoming.append(entry)

    return result


class RecommendationService:
    """Loads guidelines, profile and selections, then classifies."""

    def __init__(
        self,
        store: RowStore,
        selections: SelectionTracker | None = None,
        profiles: ProfileService | None = None,
    ):
        self.store = store
        self.catalog = GuidelineCatalog(store)
        self.selections = selections or SelectionTracker(store)
        self.profiles = profiles or ProfileService(store)

    def get_profile(self, user_id: str) -> UserProfile:
        return self.profiles.get_profile(user_id)

    def recommend(
        self,
        user_id: str,
        category: str | None = None,
        include_upcoming: bool = False,
        upcoming_years: int = DEFAULT_UPCOMING_YEARS,
    ) -> RecommendationReport:
        """Recommendations for ``user_id`` from public guidelines."""
        profile = self.get_profile(user_id)
        guidelines = self.catalog.public_guidelines(category)
        selected_ids = self.selections.selected_ids(user_id)

        recommendations = classify(
            guidelines,
            profile,
            include_upcoming=include_upcoming,
            upcoming_years=upcoming_years,
            selected_ids=selected_ids,
        )
        logger.info(
            "Recommendations computed",
            user_id=user_id,
            candidates=len(guidelines),
            current=len(recommendations.current),
            upcoming=len(recommendations.upcoming),
        )
        return RecommendationReport(recommendations=recommendations, profile=profile)
