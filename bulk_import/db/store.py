from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any, Protocol

import psycopg2
from psycopg2 import sql

"""Persistent record store adapters.

The pipeline consumes a store through two operations only:

- ``find_existing(collection, field, values)``: batched "value is one of N"
  existence query, returns the matching stored values (trimmed strings)
- ``create(collection, record)``: single-record insert

``PostgresRecordStore`` is the live implementation (psycopg2, one table per
collection, autocommit so every created row is its own transaction).
``InMemoryRecordStore`` backs dry runs and the CLI mock mode when no database
is reachable.

Record values equal to ``SERVER_TIMESTAMP`` are resolved by the store itself
(``now()`` on PostgreSQL).
"""

__all__ = [
    "StoreError",
    "StoreUnavailableError",
    "RecordStore",
    "PostgresRecordStore",
    "InMemoryRecordStore",
    "SERVER_TIMESTAMP",
]


class StoreError(Exception):
    pass


class StoreUnavailableError(StoreError):
    """Raised when the store cannot be reached (offline / connection lost)."""


class _ServerTimestamp:
    def __repr__(self) -> str:  # pragma: no cover (trivial)
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


class RecordStore(Protocol):
    def find_existing(self, collection: str, field: str, values: Sequence[str]) -> set[str]:
        ...

    def create(self, collection: str, record: dict[str, Any]) -> None:
        ...


def _table_identifier(collection: str) -> sql.Identifier:
    # schema.table 形式も許容
    return sql.Identifier(*collection.split("."))


class PostgresRecordStore:
    """RecordStore over a psycopg2 connection."""

    def __init__(self, connection: Any) -> None:
        self.connection = connection
        # 1 行 = 1 トランザクション (行単位の失敗を後続行へ波及させない)
        self.connection.autocommit = True

    def find_existing(self, collection: str, field: str, values: Sequence[str]) -> set[str]:
        if not values:
            return set()
        column = sql.Identifier(field)
        query = sql.SQL("SELECT DISTINCT {col}::text FROM {table} WHERE {col}::text = ANY(%s)").format(
            col=column,
            table=_table_identifier(collection),
        )
        try:
            with self.connection.cursor() as cur:
                cur.execute(query, (list(values),))
                rows = cur.fetchall()
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            raise StoreUnavailableError(str(e)) from e
        except psycopg2.Error as e:
            raise StoreError(str(e)) from e
        return {str(r[0]).strip() for r in rows if r and r[0] is not None and str(r[0]).strip()}

    def create(self, collection: str, record: dict[str, Any]) -> None:
        columns = list(record.keys())
        placeholders: list[sql.Composable] = []
        params: list[Any] = []
        for col in columns:
            value = record[col]
            if value is SERVER_TIMESTAMP:
                placeholders.append(sql.SQL("now()"))
            else:
                placeholders.append(sql.Placeholder())
                params.append(value)
        query = sql.SQL("INSERT INTO {table} ({cols}) VALUES ({vals})").format(
            table=_table_identifier(collection),
            cols=sql.SQL(",").join(sql.Identifier(c) for c in columns),
            vals=sql.SQL(",").join(placeholders),
        )
        try:
            with self.connection.cursor() as cur:
                cur.execute(query, params)
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            raise StoreUnavailableError(str(e)) from e
        except psycopg2.Error as e:
            raise StoreError(getattr(e, "pgerror", None) or str(e)) from e


class InMemoryRecordStore:
    """Dictionary-backed RecordStore.

    Keeps every existence query in ``queries`` as (collection, field, values)
    so batch behaviour can be inspected after a run.
    """

    def __init__(self, records: dict[str, Iterable[dict[str, Any]]] | None = None) -> None:
        self._lock = threading.Lock()
        self.collections: dict[str, list[dict[str, Any]]] = {
            name: [dict(r) for r in rows] for name, rows in (records or {}).items()
        }
        self.queries: list[tuple[str, str, tuple[str, ...]]] = []

    def find_existing(self, collection: str, field: str, values: Sequence[str]) -> set[str]:
        wanted = set(values)
        with self._lock:
            self.queries.append((collection, field, tuple(values)))
            rows = list(self.collections.get(collection, []))
        found: set[str] = set()
        for row in rows:
            value = str(row.get(field) or "").strip()
            if value and value in wanted:
                found.add(value)
        return found

    def create(self, collection: str, record: dict[str, Any]) -> None:
        stored = {
            k: (datetime.now(UTC) if v is SERVER_TIMESTAMP else v) for k, v in record.items()
        }
        with self._lock:
            self.collections.setdefault(collection, []).append(stored)

    def count(self, collection: str) -> int:
        return len(self.collections.get(collection, []))
