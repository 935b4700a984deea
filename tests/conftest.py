"""Shared fixtures: an in-memory row store, seed helpers and a fault injector."""

import pytest

from preventive_care.database import row_store as tables
from preventive_care.database.row_store import InMemoryRowStore
from preventive_care.errors import StoreError


class FailingStore:
    """
    Wraps a row store and fails chosen operations on chosen tables.

    ``fail`` maps an operation name ("insert", "insert_many", "update",
    "delete") to the set of tables on which it raises StoreError.
    """

    def __init__(self, inner, fail: dict[str, set[str]] | None = None):
        self.inner = inner
        self.fail = fail or {}
        self.calls: list[tuple[str, str]] = []

    def _check(self, op: str, table: str) -> None:
        self.calls.append((op, table))
        if table in self.fail.get(op, set()):
            raise StoreError(f"simulated {op} failure on {table}")

    def query(self, table, filters=None, order_by=None, descending=False):
        return self.inner.query(table, filters, order_by, descending)

    def get(self, table, row_id):
        return self.inner.get(table, row_id)

    def insert(self, table, row):
        self._check("insert", table)
        return self.inner.insert(table, row)

    def insert_many(self, table, rows):
        self._check("insert_many", table)
        return self.inner.insert_many(table, rows)

    def update(self, table, row_id, updates):
        self._check("update", table)
        return self.inner.update(table, row_id, updates)

    def delete(self, table, filters):
        self._check("delete", table)
        return self.inner.delete(table, filters)


@pytest.fixture
def store():
    """Empty in-memory row store."""
    return InMemoryRowStore()


@pytest.fixture
def seed_guideline(store):
    """Insert a guideline with age ranges and resources; returns its ID."""

    def _seed(
        name="Colorectal Cancer Screening",
        ranges=((45, 75),),
        genders=("all",),
        frequency_months=12,
        visibility="public",
        created_by=None,
        category="cancer",
        description=None,
        resources=(),
        guideline_id=None,
    ):
        row = {
            "name": name,
            "description": description,
            "category": category,
            "genders": list(genders),
            "frequency_months": frequency_months,
            "frequency_months_max": None,
            "visibility": visibility,
            "created_by": created_by,
            "tags": [],
            "original_guideline_id": None,
        }
        if guideline_id:
            row["id"] = guideline_id
        new_id = store.insert(tables.GUIDELINES, row)["id"]
        for position, (min_age, max_age) in enumerate(ranges):
            store.insert(
                tables.AGE_RANGES,
                {"guideline_id": new_id, "min_age": min_age, "max_age": max_age, "position": position},
            )
        for position, resource_name in enumerate(resources):
            store.insert(
                tables.RESOURCES,
                {
                    "guideline_id": new_id,
                    "name": resource_name,
                    "url": f"https://example.org/{position}",
                    "description": None,
                    "position": position,
                },
            )
        return new_id

    return _seed


@pytest.fixture
def seed_profile(store):
    """Insert a user profile row."""

    def _seed(user_id="user-1", age=50, gender="female", risk_factors=None):
        store.insert(
            tables.PROFILES,
            {"user_id": user_id, "age": age, "gender": gender, "risk_factors": risk_factors or {}},
        )
        return user_id

    return _seed


@pytest.fixture
def seed_admin(store):
    """Grant a user the admin role."""

    def _seed(user_id="admin-1"):
        store.insert(tables.ROLES, {"user_id": user_id, "role": "admin"})
        return user_id

    return _seed


@pytest.fixture
def failing_store(store):
    """Factory for a FailingStore over the shared in-memory store."""

    def _make(**fail):
        return FailingStore(store, {op: set(names) for op, names in fail.items()})

    return _make
