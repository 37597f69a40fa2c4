"""
Record store for analysis records, keyed by kind and id.

Rows use the flat layout ``StoredRecord.to_row`` produces, so the in-memory
and SQLite backends hold exactly the same data. Storage errors propagate.
"""

import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

from ..observability.logging import get_logger
from .models import RECORD_TYPES, StoredRecord

log = get_logger(__name__)

R = TypeVar("R", bound=StoredRecord)


class RecordStore(ABC):
    """Abstract interface for analysis record storage."""

    @abstractmethod
    def save(self, record: StoredRecord) -> None:
        """Insert or replace a record."""
        pass

    @abstractmethod
    def get(self, record_type: type[R], record_id: str) -> R | None:
        """Load one record of the given kind."""
        pass

    @abstractmethod
    def list_records(self, record_type: type[R]) -> list[R]:
        """Every record of the given kind."""
        pass

    @abstractmethod
    def delete(self, record_type: type[R], record_id: str) -> bool:
        """Remove a record; False when it did not exist."""
        pass


class InMemoryRecordStore(RecordStore):
    def __init__(self):
        self._rows: dict[str, dict[str, dict[str, Any]]] = {}

    def save(self, record: StoredRecord) -> None:
        self._rows.setdefault(record.kind, {})[record.id] = record.to_row()

    def get(self, record_type: type[R], record_id: str) -> R | None:
        row = self._rows.get(record_type.kind, {}).get(record_id)
        return record_type.from_row(row) if row else None

    def list_records(self, record_type: type[R]) -> list[R]:
        return [record_type.from_row(r) for r in self._rows.get(record_type.kind, {}).values()]

    def delete(self, record_type: type[R], record_id: str) -> bool:
        return self._rows.get(record_type.kind, {}).pop(record_id, None) is not None


class SQLiteRecordStore(RecordStore):
    """SQLite-backed store with one table per record kind."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.get_connection() as conn:
            for record_type in RECORD_TYPES.values():
                columns = ", ".join(c for c in record_type.columns() if c != "id")
                conn.execute(
                    f"CREATE TABLE IF NOT EXISTS {record_type.kind} "
                    f"(id TEXT PRIMARY KEY, {columns})"
                )
        log.info("Record store ready", path=str(self.db_path))

    @contextmanager
    def get_connection(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _table(record_type: type[StoredRecord]) -> str:
        if RECORD_TYPES.get(record_type.kind) is not record_type:
            raise ValueError(f"Unknown record type: {record_type.__name__}")
        return record_type.kind

    def save(self, record: StoredRecord) -> None:
        table = self._table(type(record))
        row = record.to_row()
        columns = list(row)
        with self.get_connection() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO {table} ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                tuple(row[c] for c in columns),
            )

    def get(self, record_type: type[R], record_id: str) -> R | None:
        table = self._table(record_type)
        with self.get_connection() as conn:
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return record_type.from_row(dict(row)) if row else None

    def list_records(self, record_type: type[R]) -> list[R]:
        table = self._table(record_type)
        with self.get_connection() as conn:
            rows = conn.execute(f"SELECT * FROM {table}").fetchall()
        return [record_type.from_row(dict(r)) for r in rows]

    def delete(self, record_type: type[R], record_id: str) -> bool:
        table = self._table(record_type)
        with self.get_connection() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            return cursor.rowcount > 0
