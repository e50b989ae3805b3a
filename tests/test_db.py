"""Tests for healthfold.db SQLite record store."""

import asyncio
import sqlite3
import threading

import pytest

from healthfold.db import HealthDB
from healthfold.models import CATEGORIES


def _vital(date, type="weight", value=80.0, **extra):
    row = {"date": date, "source_tag": "vendor-export", "type": type, "value": value, "unit": "kg"}
    row.update(extra)
    return row


class TestSchemaCreation:
    def test_creates_all_tables(self, tmp_db):
        tables = tmp_db.query("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
        table_names = {t["name"] for t in tables}
        assert set(CATEGORIES) | {"imports"} <= table_names

    def test_wal_mode(self, tmp_db):
        result = tmp_db.query("PRAGMA journal_mode")
        assert result[0]["journal_mode"] == "wal"

    def test_idempotent_schema(self, tmp_db):
        """Running init_schema twice should not error."""
        tmp_db.init_schema()
        tables = tmp_db.query("SELECT name FROM sqlite_master WHERE type='table'")
        assert len(tables) >= len(CATEGORIES) + 1

    def test_every_table_has_common_columns(self, tmp_db):
        for table in CATEGORIES:
            cols = {r["name"] for r in tmp_db.query(f"PRAGMA table_info({table})")}
            assert {"date", "source_tag", "data_type", "import_date"} <= cols, table


class TestAddRecords:
    @pytest.mark.asyncio
    async def test_add_and_count(self, tmp_db):
        written = await tmp_db.add_records("vitals", [_vital("2024-01-01"), _vital("2024-01-02")])
        assert written == 2
        assert await tmp_db.count("vitals") == 2
        assert await tmp_db.count("sleep") == 0

    @pytest.mark.asyncio
    async def test_empty(self, tmp_db):
        assert await tmp_db.add_records("vitals", []) == 0

    @pytest.mark.asyncio
    async def test_unknown_keys_ignored(self, tmp_db):
        await tmp_db.add_records("vitals", [_vital("2024-01-01", not_a_column="x")])
        assert await tmp_db.count("vitals") == 1

    @pytest.mark.asyncio
    async def test_unknown_category(self, tmp_db):
        with pytest.raises(ValueError):
            await tmp_db.add_records("patients", [_vital("2024-01-01")])

    @pytest.mark.asyncio
    async def test_confidence_checked(self, tmp_db):
        row = {"date": "2024-01-01", "source_tag": "document-extract", "type": "glucose", "confidence": 1.5}
        with pytest.raises(sqlite3.IntegrityError):
            await tmp_db.add_records("lab_results", [row])


class TestRecordsBetween:
    @pytest.mark.asyncio
    async def test_inclusive_range_oldest_first(self, tmp_db):
        await tmp_db.add_records("vitals", [
            _vital("2024-01-03", value=82.0),
            _vital("2024-01-01", value=80.0),
            _vital("2024-01-02", value=81.0),
            _vital("2024-01-04", value=83.0),
        ])
        rows = await tmp_db.records_between("vitals", "2024-01-01", "2024-01-03")
        assert [r["date"] for r in rows] == ["2024-01-01", "2024-01-02", "2024-01-03"]
        assert [r["value"] for r in rows] == [80.0, 81.0, 82.0]

    @pytest.mark.asyncio
    async def test_type_filter(self, tmp_db):
        await tmp_db.add_records("vitals", [
            _vital("2024-01-01"),
            _vital("2024-01-01", type="heart-rate", value=64, unit="bpm"),
        ])
        rows = await tmp_db.records_between("vitals", "2024-01-01", "2024-01-01", type="heart-rate")
        assert len(rows) == 1
        assert rows[0]["value"] == 64

    @pytest.mark.asyncio
    async def test_type_filter_needs_type_column(self, tmp_db):
        with pytest.raises(ValueError):
            await tmp_db.records_between("sleep", "2024-01-01", "2024-12-31", type="nap")

    @pytest.mark.asyncio
    async def test_json_columns_decoded(self, tmp_db):
        await tmp_db.add_records("encounters", [{
            "date": "2024-02-10",
            "source_tag": "clinical-bundle",
            "type": "Office visit",
            "participants": ["Practitioner/prac-1"],
        }])
        [row] = await tmp_db.records_between("encounters", "2024-02-10", "2024-02-10")
        assert row["participants"] == ["Practitioner/prac-1"]

    @pytest.mark.asyncio
    async def test_text_values_kept(self, tmp_db):
        row = {"date": "2024-01-01", "source_tag": "clinical-bundle", "type": "observation", "value": "Positive"}
        await tmp_db.add_records("lab_results", [row])
        [stored] = await tmp_db.records_between("lab_results", "2024-01-01", "2024-01-01")
        assert stored["value"] == "Positive"
        assert stored["confidence"] == 1.0

    @pytest.mark.asyncio
    async def test_missing_and_none_values_take_column_defaults(self, tmp_db):
        rows = [
            {"date": "2024-01-01", "source_tag": "document-extract", "value": 5.0, "confidence": None},
            {"date": "2024-01-02", "source_tag": "document-extract", "type": None, "value": 6.0},
        ]
        assert await tmp_db.add_records("lab_results", rows) == 2
        stored = await tmp_db.records_between("lab_results", "2024-01-01", "2024-01-02")
        assert [r["confidence"] for r in stored] == [1.0, 1.0]
        assert [r["type"] for r in stored] == ["", ""]
        assert stored[0]["unit"] == ""


class TestAsyncMethods:
    @pytest.mark.asyncio
    async def test_writes_run_off_the_event_loop_thread(self, tmp_db, monkeypatch):
        seen = []
        original = tmp_db.insert_rows

        def recording_insert(category, rows):
            seen.append(threading.get_ident())
            return original(category, rows)

        monkeypatch.setattr(tmp_db, "insert_rows", recording_insert)
        await tmp_db.add_records("vitals", [_vital("2024-01-01")])
        assert seen and seen[0] != threading.get_ident()
        assert await tmp_db.count("vitals") == 1

    @pytest.mark.asyncio
    async def test_concurrent_writes(self, tmp_db):
        await asyncio.gather(*(
            tmp_db.add_records("vitals", [_vital(f"2024-01-{day:02d}")]) for day in range(1, 11)
        ))
        assert await tmp_db.count("vitals") == 10


class TestImportLedger:
    @pytest.mark.asyncio
    async def test_history_most_recent_first(self, tmp_db):
        await tmp_db.record_import("csv", "a.csv", 3)
        await tmp_db.record_import("pdf", "b.pdf", 0)
        history = await tmp_db.import_history()
        assert [h["file_name"] for h in history] == ["b.pdf", "a.csv"]
        assert history[1]["records_imported"] == 3
        assert history[0]["timestamp"].endswith("Z")
        assert await tmp_db.count("imports") == 2


class TestSummary:
    @pytest.mark.asyncio
    async def test_counts_every_category(self, tmp_db):
        await tmp_db.add_records("vitals", [_vital("2024-01-01")])
        counts = tmp_db.summary()
        assert set(counts) == set(CATEGORIES)
        assert counts["vitals"] == 1
        assert counts["sleep"] == 0


class TestContextManager:
    def test_closes(self, tmp_path):
        with HealthDB(str(tmp_path / "x.db")) as db:
            db.init_schema()
            assert db.summary()["vitals"] == 0
        with pytest.raises(sqlite3.ProgrammingError):
            db.query("SELECT 1")
