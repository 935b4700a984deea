"""
Screening / appointment reconciliation.

Appointments reference screenings through ``screening_id``, which may hold
either a screening's own ID or its guideline ID. Lookups go through a
dual-key index built from two maps:

- by_id:           screening.id           -> screening
- by_guideline_id: screening.guideline_id -> screening

Each entry remembers when its screening was registered. When a key is
present in both maps, or repeated within one, the screening registered
later in iteration order wins.
"""

from collections import defaultdict
from typing import Iterable

from preventive_care.config.logging_config import get_logger
from preventive_care.errors import NotFound
from preventive_care.models.models import (
    Appointment,
    ReconciliationResult,
    ScreeningRecord,
    ScreeningWithAppointments,
)

logger = get_logger(__name__)


class ScreeningIndex:
    """Resolves a screening by its ID or its guideline ID."""

    def __init__(self, screenings: Iterable[ScreeningRecord]):
        self.screenings = list(screenings)
        # key -> (registration order, screening)
        self.by_id: dict[str, tuple[int, ScreeningRecord]] = {}
        self.by_guideline_id: dict[str, tuple[int, ScreeningRecord]] = {}
        for position, screening in enumerate(self.screenings):
            if screening.id is not None:
                self.by_id[screening.id] = (position, screening)
            if screening.guideline_id:
                self.by_guideline_id[screening.guideline_id] = (position, screening)

    def resolve(self, key: str | None) -> ScreeningRecord | None:
        if key is None:
            return None
        hits = [m[key] for m in (self.by_id, self.by_guideline_id) if key in m]
        if not hits:
            return None
        return max(hits, key=lambda hit: hit[0])[1]


def canonical_id(screening: ScreeningRecord) -> str:
    """Bucket key for a screening: its ID, or its guideline ID if unsaved."""
    return screening.id if screening.id is not None else screening.guideline_id


def _dedupe(appointments: Iterable[Appointment]) -> list[Appointment]:
    """Drop repeated appointment IDs, keeping the first occurrence."""
    seen: set[str] = set()
    unique = []
    for appointment in appointments:
        if appointment.id is not None:
            if appointment.id in seen:
                continue
            seen.add(appointment.id)
        unique.append(appointment)
    return unique


def sort_by_date(appointments: Iterable[Appointment]) -> list[Appointment]:
    """Newest first."""
    return sorted(appointments, key=lambda a: a.date, reverse=True)


def bucket_appointments(
    index: ScreeningIndex,
    appointments: Iterable[Appointment],
) -> tuple[dict[str, list[Appointment]], list[Appointment]]:
    """
    Group appointments by the canonical screening ID they resolve to.

    Unresolved appointments are bucketed under their raw ``screening_id``;
    appointments without one are returned separately. Nothing is dropped.
    """
    buckets: dict[str, list[Appointment]] = defaultdict(list)
    unlinked: list[Appointment] = []
    for appointment in appointments:
        if appointment.screening_id is None:
            unlinked.append(appointment)
            continue
        screening = index.resolve(appointment.screening_id)
        key = canonical_id(screening) if screening is not None else appointment.screening_id
        buckets[key].append(appointment)
    return buckets, unlinked


def attach(
    screenings: Iterable[ScreeningRecord],
    appointments: Iterable[Appointment],
) -> ReconciliationResult:
    """
    Embed appointments into the screenings they belong to.

    Each screening receives its own ID bucket followed by its guideline ID
    bucket, de-duplicated by appointment ID. A bucket is handed to at most
    one screening, so no appointment is attached twice across screenings;
    buckets nobody claims are reported as unmatched.

    Args:
        screenings: Screening records, in the order used for collision
            precedence.
        appointments: Appointments from an independent read.

    Returns:
        ReconciliationResult with screenings in input order.
    """
    index = ScreeningIndex(screenings)
    buckets, unlinked = bucket_appointments(index, appointments)

    canonical_ids = {canonical_id(s) for s in index.screenings}
    claimed: set[str] = set()
    result = ReconciliationResult(unlinked=unlinked)

    for screening in index.screenings:
        own_key = canonical_id(screening)
        merged: list[Appointment] = []
        if own_key not in claimed:
            merged.extend(buckets.get(own_key, ()))
            claimed.add(own_key)

        guideline_key = screening.guideline_id
        if guideline_key and guideline_key not in canonical_ids and guideline_key not in claimed:
            merged.extend(buckets.get(guideline_key, ()))
            claimed.add(guideline_key)

        result.screenings.append(
            ScreeningWithAppointments(
                **screening.model_dump(),
                appointments=_dedupe(merged),
            )
        )

    for key, bucket in buckets.items():
        if key not in claimed:
            result.unmatched[key] = bucket

    if result.unmatched:
        logger.debug(
            "Appointments with unresolved screening references",
            keys=sorted(result.unmatched),
            count=sum(len(b) for b in result.unmatched.values()),
        )
    return result


def attach_one(
    key: str,
    screenings: Iterable[ScreeningRecord],
    appointments: Iterable[Appointment],
) -> ScreeningWithAppointments:
    """
    Resolve one screening by ID or guideline ID and attach its appointments.

    Appointments are sorted by date, newest first.

    Raises:
        NotFound: If ``key`` matches no screening.
    """
    screenings = list(screenings)
    target = ScreeningIndex(screenings).resolve(key)
    if target is None:
        raise NotFound("Screening", key)

    reconciled = attach(screenings, appointments)
    target_key = canonical_id(target)
    for screening in reconciled.screenings:
        if canonical_id(screening) == target_key:
            screening.appointments = sort_by_date(screening.appointments)
            return screening
    raise NotFound("Screening", key)
