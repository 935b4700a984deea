"""
ArangoDB row store.

Provides connection setup, collection management, and an AQL-backed
implementation of ``RowStore``. Handles are constructed explicitly and
injected into services; nothing here is a process-wide singleton.
"""

from typing import Any

from arango import ArangoClient
from arango.database import StandardDatabase
from arango.exceptions import (
    ArangoError,
    CollectionCreateError,
    DatabaseCreateError,
)

from preventive_care.config.config import Settings
from preventive_care.config.logging_config import get_logger
from preventive_care.database.row_store import TABLES, generate_id
from preventive_care.errors import StoreError

logger = get_logger(__name__)

_SYSTEM_FIELDS = ("_key", "_id", "_rev")


def connect(settings: Settings) -> tuple[ArangoClient, StandardDatabase]:
    """
    Open a client and database connection.

    Creates the database if it doesn't exist and initializes collections.

    Returns:
        (client, database) - close the client on shutdown.
    """
    client = ArangoClient(hosts=settings.arango_host)
    logger.info("ArangoDB client initialized", host=settings.arango_host)

    sys_db = client.db(
        "_system",
        username=settings.arango_username,
        password=settings.arango_password,
    )

    if not sys_db.has_database(settings.arango_database):
        try:
            sys_db.create_database(settings.arango_database)
            logger.info("Created database", database=settings.arango_database)
        except DatabaseCreateError as e:
            logger.error("Failed to create database", error=str(e))
            raise StoreError(str(e), cause=e) from e

    db = client.db(
        settings.arango_database,
        username=settings.arango_username,
        password=settings.arango_password,
    )
    logger.info("Connected to database", database=settings.arango_database)

    init_collections(db)
    return client, db


def init_collections(db: StandardDatabase) -> None:
    """
    Initialize required collections if they don't exist.

    Args:
        db: The database instance.
    """
    for name in TABLES:
        if not db.has_collection(name):
            try:
                db.create_collection(name)
                logger.info("Created collection", collection=name)
            except CollectionCreateError as e:
                logger.warning("Collection creation failed", collection=name, error=str(e))


def _strip(document: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in document.items() if k not in _SYSTEM_FIELDS}


def _to_document(row: dict[str, Any]) -> dict[str, Any]:
    document = dict(row)
    document["id"] = document.get("id") or generate_id()
    document["_key"] = document["id"]
    return document


class ArangoRowStore:
    """``RowStore`` over an ArangoDB database; row ``id`` doubles as ``_key``."""

    def __init__(self, db: StandardDatabase):
        self._db = db

    def _execute(self, aql: str, bind_vars: dict[str, Any]) -> list[Any]:
        try:
            cursor = self._db.aql.execute(aql, bind_vars=bind_vars)
            return list(cursor)
        except ArangoError as e:
            logger.error("AQL query failed", error=str(e))
            raise StoreError(str(e), cause=e) from e

    @staticmethod
    def _filter_clause(filters: dict[str, Any] | None, bind_vars: dict[str, Any]) -> str:
        clauses = []
        for i, (field, value) in enumerate((filters or {}).items()):
            bind_vars[f"f{i}"] = field
            bind_vars[f"v{i}"] = value
            clauses.append(f"FILTER doc.@f{i} == @v{i}")
        return " ".join(clauses)

    def query(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        bind_vars: dict[str, Any] = {"@collection": table}
        aql = f"FOR doc IN @@collection {self._filter_clause(filters, bind_vars)}"
        if order_by:
            bind_vars["sort"] = order_by
            aql += f" SORT doc.@sort {'DESC' if descending else 'ASC'}"
        aql += ' RETURN UNSET(doc, "_key", "_id", "_rev")'
        return self._execute(aql, bind_vars)

    def get(self, table: str, row_id: str) -> dict[str, Any] | None:
        try:
            document = self._db.collection(table).get(row_id)
        except ArangoError as e:
            raise StoreError(str(e), cause=e) from e
        return _strip(document) if document else None

    def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        try:
            result = self._db.collection(table).insert(_to_document(row), return_new=True)
        except ArangoError as e:
            logger.error("Insert failed", collection=table, error=str(e))
            raise StoreError(str(e), cause=e) from e
        logger.debug("Document inserted", collection=table, key=result["_key"])
        return _strip(result["new"])

    def insert_many(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        # A single AQL statement so the batch is applied all-or-nothing
        return self._execute(
            'FOR row IN @rows INSERT row INTO @@collection RETURN UNSET(NEW, "_key", "_id", "_rev")',
            {"@collection": table, "rows": [_to_document(r) for r in rows]},
        )

    def update(self, table: str, row_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        try:
            result = self._db.collection(table).update(
                {"_key": row_id, **updates}, return_new=True
            )
        except ArangoError as e:
            logger.warning("Update failed", collection=table, key=row_id, error=str(e))
            raise StoreError(str(e), cause=e) from e
        return _strip(result["new"])

    def delete(self, table: str, filters: dict[str, Any]) -> int:
        if not filters:
            raise StoreError(f"Refusing to delete from {table} without filters")
        bind_vars: dict[str, Any] = {"@collection": table}
        aql = (
            f"FOR doc IN @@collection {self._filter_clause(filters, bind_vars)} "
            "REMOVE doc IN @@collection RETURN 1"
        )
        return len(self._execute(aql, bind_vars))
