"""SQLite record store for healthfold.

HealthDB wraps a SQLite database with:
- Schema initialization from schema.sql
- One table per record category plus the ``imports`` ledger
- Date-range queries returning list[dict]
- Async write/read methods used by the Importer
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Protocol

from healthfold.core.utils import utc_now_iso
from healthfold.models import CATEGORIES

IMPORTS_TABLE = "imports"

# Columns holding lists/dicts, stored as JSON text
_JSON_COLUMNS = frozenset({"reference_range", "results", "telecom", "address", "participants", "performers"})


class RecordStore(Protocol):
    """What the Importer needs from a store."""

    async def add_records(self, category: str, rows: list[dict]) -> int:
        ...

    async def record_import(self, source_format: str, file_name: str, record_count: int) -> None:
        ...

    async def count(self, category: str) -> int:
        ...

    async def records_between(
        self, category: str, start: str, end: str, type: str | None = None
    ) -> list[dict]:
        ...

    async def import_history(self) -> list[dict]:
        ...


def _get_schema_sql() -> str:
    """Read the schema.sql file bundled with the package."""
    schema_path = Path(__file__).parent / "schema.sql"
    return schema_path.read_text()


def _encode(column: str, value: Any) -> Any:
    if column in _JSON_COLUMNS and value is not None:
        return json.dumps(value)
    return value


def _decode_row(row: dict) -> dict:
    for column in _JSON_COLUMNS.intersection(row):
        if isinstance(row[column], str) and row[column]:
            row[column] = json.loads(row[column])
    return row


def _check_category(category: str) -> None:
    if category not in CATEGORIES:
        raise ValueError(f"Unknown record category: {category!r}. Expected one of {', '.join(CATEGORIES)}")


class HealthDB:
    """SQLite-backed health record store.

    The async RecordStore methods run their SQL in a worker thread, one
    statement batch at a time, so the event loop never waits on disk.
    """

    def __init__(self, db_path: str = "healthfold.db"):
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._columns: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    def init_schema(self) -> None:
        """Create all tables from schema.sql (IF NOT EXISTS)."""
        self.conn.executescript(_get_schema_sql())
        self._columns.clear()

    def _table_columns(self, table: str) -> list[str]:
        if table not in self._columns:
            info = self.conn.execute(f"PRAGMA table_info({table})").fetchall()
            self._columns[table] = [r["name"] for r in info if r["name"] != "id"]
        return self._columns[table]

    async def _in_thread(self, func, *args):
        def locked():
            with self._lock:
                return func(*args)

        return await asyncio.to_thread(locked)

    def insert_rows(self, category: str, rows: list[dict]) -> int:
        """Insert rows into a category table.

        Keys that are not columns of the table are ignored, and so are
        None values, which leaves the column default (or NULL) in place.
        Returns the number of rows written.
        """
        _check_category(category)
        if not rows:
            return 0
        columns = self._table_columns(category)
        with self.conn:
            for row in rows:
                present = [c for c in columns if row.get(c) is not None]
                placeholders = ", ".join("?" for _ in present)
                if present:
                    sql = f"INSERT INTO {category} ({', '.join(present)}) VALUES ({placeholders})"
                else:
                    sql = f"INSERT INTO {category} DEFAULT VALUES"
                self.conn.execute(sql, tuple(_encode(c, row[c]) for c in present))
        return len(rows)

    def _insert_import(self, source_format: str, file_name: str, record_count: int) -> None:
        with self.conn:
            self.conn.execute(
                f"INSERT INTO {IMPORTS_TABLE} (timestamp, source_format, file_name, records_imported) "
                "VALUES (?, ?, ?, ?)",
                (utc_now_iso(), source_format, file_name, record_count),
            )

    def _count(self, category: str) -> int:
        if category != IMPORTS_TABLE:
            _check_category(category)
        row = self.conn.execute(f"SELECT COUNT(*) FROM {category}").fetchone()
        return row[0]

    def _records_between(self, category: str, start: str, end: str, type: str | None) -> list[dict]:
        _check_category(category)
        sql = f"SELECT * FROM {category} WHERE date BETWEEN ? AND ?"
        params: tuple = (start, end)
        if type is not None:
            if "type" not in self._table_columns(category):
                raise ValueError(f"Category {category!r} has no type column")
            sql += " AND type = ?"
            params += (type,)
        sql += " ORDER BY date, id"
        return [_decode_row(r) for r in self.query(sql, params)]

    async def add_records(self, category: str, rows: list[dict]) -> int:
        return await self._in_thread(self.insert_rows, category, rows)

    async def record_import(self, source_format: str, file_name: str, record_count: int) -> None:
        """Append one entry to the import ledger."""
        await self._in_thread(self._insert_import, source_format, file_name, record_count)

    async def count(self, category: str) -> int:
        return await self._in_thread(self._count, category)

    async def records_between(
        self, category: str, start: str, end: str, type: str | None = None
    ) -> list[dict]:
        """Records whose date lies in [start, end], oldest first.

        ``type`` filters on the record's type column; it is only valid for
        categories that have one (vitals, activity, lab_results, encounters).
        """
        return await self._in_thread(self._records_between, category, start, end, type)

    async def import_history(self) -> list[dict]:
        """Import ledger, most recent first."""
        return await self._in_thread(self.query, f"SELECT * FROM {IMPORTS_TABLE} ORDER BY id DESC")

    def query(self, sql: str, params: tuple = ()) -> list[dict]:
        """Execute a read-only SQL query and return results as list of dicts."""
        cursor = self.conn.execute(sql, params)
        columns = [desc[0] for desc in cursor.description] if cursor.description else []
        return [dict(zip(columns, row, strict=False)) for row in cursor.fetchall()]

    def summary(self) -> dict[str, int]:
        """Return row counts for every record category."""
        result = {}
        for table in CATEGORIES:
            row = self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
            result[table] = row[0]
        return result

    def close(self) -> None:
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
