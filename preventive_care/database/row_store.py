"""
Row store collaborator.

The engine talks to persistence only through ``RowStore``: filtered
query/get/insert/update/delete over plain dict rows keyed by ``id``.
Implementations raise ``StoreError`` on any backend failure.
"""

import copy
import threading
import uuid
from typing import Any, Protocol, runtime_checkable

from preventive_care.config.logging_config import get_logger
from preventive_care.errors import StoreError

logger = get_logger(__name__)

# Table names
GUIDELINES = "guidelines"
AGE_RANGES = "guideline_age_ranges"
RESOURCES = "guideline_resources"
SCREENINGS = "user_screenings"
APPOINTMENTS = "appointments"
SELECTIONS = "user_guideline_selections"
COMPLETIONS = "user_guideline_completions"
PROFILES = "user_profiles"
ROLES = "user_roles"

TABLES = (
    GUIDELINES,
    AGE_RANGES,
    RESOURCES,
    SCREENINGS,
    APPOINTMENTS,
    SELECTIONS,
    COMPLETIONS,
    PROFILES,
    ROLES,
)


def generate_id() -> str:
    """Generate a fresh row identity."""
    return str(uuid.uuid4())


@runtime_checkable
class RowStore(Protocol):
    """Filtered CRUD over named tables of dict rows."""

    def query(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        """Return rows whose fields equal every value in ``filters``."""
        ...

    def get(self, table: str, row_id: str) -> dict[str, Any] | None:
        """Return one row by id, or None."""
        ...

    def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row, assigning an id if missing. Returns the stored row."""
        ...

    def insert_many(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert several rows as one batch."""
        ...

    def update(self, table: str, row_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        """Patch a row. Raises StoreError if it does not exist."""
        ...

    def delete(self, table: str, filters: dict[str, Any]) -> int:
        """
        Delete matching rows and return how many were removed.

        Raises:
            StoreError: If ``filters`` is empty.
        """
        ...


def _matches(row: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(row.get(field) == value for field, value in filters.items())


def _sort_key(value: Any) -> tuple[int, Any]:
    # None sorts last ascending
    return (1, "") if value is None else (0, value)


class InMemoryRowStore:
    """
    Dict-backed row store for development and tests.

    Rows are deep-copied in and out so callers never share state with the
    store.
    """

    def __init__(self, tables: tuple[str, ...] = TABLES):
        self._tables: dict[str, dict[str, dict[str, Any]]] = {name: {} for name in tables}
        self._lock = threading.Lock()

    def _table(self, table: str) -> dict[str, dict[str, Any]]:
        try:
            return self._tables[table]
        except KeyError:
            raise StoreError(f"Unknown table: {table}") from None

    def query(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._table(table).values() if _matches(r, filters)]
        if order_by:
            rows.sort(key=lambda r: _sort_key(r.get(order_by)), reverse=descending)
        return rows

    def get(self, table: str, row_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._table(table).get(row_id)
            return copy.deepcopy(row) if row is not None else None

    def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(row)
        stored["id"] = stored.get("id") or generate_id()
        with self._lock:
            rows = self._table(table)
            if stored["id"] in rows:
                raise StoreError(f"Duplicate key in {table}: {stored['id']}")
            rows[stored["id"]] = stored
        logger.debug("Row inserted", table=table, id=stored["id"])
        return copy.deepcopy(stored)

    def insert_many(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        batch = []
        for row in rows:
            stored = copy.deepcopy(row)
            stored["id"] = stored.get("id") or generate_id()
            batch.append(stored)
        with self._lock:
            existing = self._table(table)
            for stored in batch:
                if stored["id"] in existing:
                    raise StoreError(f"Duplicate key in {table}: {stored['id']}")
            for stored in batch:
                existing[stored["id"]] = stored
        return [copy.deepcopy(r) for r in batch]

    def update(self, table: str, row_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            rows = self._table(table)
            if row_id not in rows:
                raise StoreError(f"Row not found in {table}: {row_id}")
            rows[row_id].update(copy.deepcopy(updates))
            rows[row_id]["id"] = row_id
            return copy.deepcopy(rows[row_id])

    def delete(self, table: str, filters: dict[str, Any]) -> int:
        if not filters:
            raise StoreError(f"Refusing to delete from {table} without filters")
        with self._lock:
            rows = self._table(table)
            doomed = [key for key, row in rows.items() if _matches(row, filters)]
            for key in doomed:
                del rows[key]
        logger.debug("Rows deleted", table=table, count=len(doomed))
        return len(doomed)
