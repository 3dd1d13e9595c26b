"""
Unit tests for storage layer.

Tests schema creation, appends, ordering, range queries and migration of
older database files.
"""

import os
import sqlite3
import tempfile
from datetime import datetime
from unittest.mock import patch

import pytest

from tokentrim.storage.db import DB_PATH_ENV, get_connection, resolve_db_path
from tokentrim.storage.models import InvocationRecord
from tokentrim.storage.repository import (
    InMemoryUsageStore,
    SqliteUsageStore,
    StoreWriteFailure,
    initialize_schema,
    open_store,
)


def _record(ts, tool_id="git status", raw=400, compacted=40, success=True, **extra):
    return InvocationRecord(
        timestamp=ts,
        tool_id=tool_id,
        raw_unit_count=raw,
        compacted_unit_count=compacted,
        success=success,
        **extra,
    )


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as temp_dir:
        yield os.path.join(temp_dir, "history.db")


class TestInvocationRecord:
    """Test record validation."""

    def test_negative_counts_rejected(self):
        with pytest.raises(ValueError):
            _record(datetime(2026, 1, 1), raw=-1)
        with pytest.raises(ValueError):
            _record(datetime(2026, 1, 1), compacted=-1)

    def test_saved_units_never_negative(self):
        assert _record(datetime(2026, 1, 1), raw=10, compacted=30).saved_units == 0


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self, db_path):
        initialize_schema(db_path)

        conn = get_connection(db_path)
        try:
            cursor = conn.execute("PRAGMA table_info(invocation_record)")
            column_names = [col[1] for col in cursor.fetchall()]
            assert column_names == [
                "id", "timestamp", "tool_id", "raw_unit_count",
                "compacted_unit_count", "success", "command", "exec_time_ms",
            ]
            journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
            assert journal_mode.lower() == "wal"
        finally:
            conn.close()

    def test_old_schema_gains_optional_columns(self, db_path):
        conn = sqlite3.connect(db_path)
        conn.execute("""
            CREATE TABLE invocation_record (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                tool_id TEXT NOT NULL,
                raw_unit_count INTEGER NOT NULL,
                compacted_unit_count INTEGER NOT NULL,
                success INTEGER NOT NULL
            )
        """)
        conn.execute(
            "INSERT INTO invocation_record (timestamp, tool_id, raw_unit_count, compacted_unit_count, success) "
            "VALUES ('2025-11-02T10:00:00.000000', 'git log', 900, 90, 1)"
        )
        conn.commit()
        conn.close()

        with open_store(db_path) as store:
            old, = store.iter_records()
            assert old.tool_id == "git log"
            assert old.command is None
            assert old.exec_time_ms is None

            store.append(_record(datetime(2026, 1, 1), command="git status", exec_time_ms=12))
            new = list(store.iter_records())[-1]
            assert new.command == "git status"
            assert new.exec_time_ms == 12


class TestSqliteUsageStore:
    """Test append and retrieval."""

    def test_append_assigns_sequence(self, db_path):
        with open_store(db_path) as store:
            first = store.append(_record(datetime(2026, 1, 1, 9)))
            second = store.append(_record(datetime(2026, 1, 1, 9)))
            assert first.sequence is not None
            assert second.sequence > first.sequence

    def test_records_are_chronological(self, db_path):
        with open_store(db_path) as store:
            store.append(_record(datetime(2026, 1, 3), tool_id="c"))
            store.append(_record(datetime(2026, 1, 1), tool_id="a"))
            store.append(_record(datetime(2026, 1, 2), tool_id="b"))
            assert [r.tool_id for r in store.iter_records()] == ["a", "b", "c"]

    def test_same_timestamp_keeps_insert_order(self, db_path):
        ts = datetime(2026, 1, 1, 12)
        with open_store(db_path) as store:
            store.append(_record(ts, tool_id="first"))
            store.append(_record(ts, tool_id="second"))
            assert [r.tool_id for r in store.iter_records()] == ["first", "second"]

    def test_records_between_is_inclusive(self, db_path):
        with open_store(db_path) as store:
            for day in (1, 2, 3, 4):
                store.append(_record(datetime(2026, 1, day, 12), tool_id=f"day{day}"))
            found = store.records_between(datetime(2026, 1, 2, 12), datetime(2026, 1, 3, 12))
            assert [r.tool_id for r in found] == ["day2", "day3"]

    def test_round_trip_fields(self, db_path):
        ts = datetime(2026, 1, 28, 14, 30, 15, 123456)
        with open_store(db_path) as store:
            store.append(_record(ts, raw=1234, compacted=56, success=False))
        with open_store(db_path) as store:
            record, = store.iter_records()
        assert record.timestamp == ts
        assert record.raw_unit_count == 1234
        assert record.compacted_unit_count == 56
        assert record.success is False

    def test_records_survive_reopen(self, db_path):
        with open_store(db_path) as store:
            store.append(_record(datetime(2026, 1, 1)))
        with open_store(db_path) as store:
            store.append(_record(datetime(2026, 1, 2)))
            assert len(list(store.iter_records())) == 2

    def test_write_after_close_fails(self, db_path):
        store = SqliteUsageStore(db_path)
        store.close()
        with pytest.raises(StoreWriteFailure):
            store.append(_record(datetime(2026, 1, 1)))

    def test_database_error_wrapped(self, db_path):
        with open_store(db_path) as store:
            store.conn.execute("DROP TABLE invocation_record")
            with pytest.raises(StoreWriteFailure, match="git status"):
                store.append(_record(datetime(2026, 1, 1)))


class TestInMemoryUsageStore:
    """Test the in-memory substitute."""

    def test_same_contract(self):
        store = InMemoryUsageStore()
        store.append(_record(datetime(2026, 1, 2), tool_id="b"))
        stored = store.append(_record(datetime(2026, 1, 1), tool_id="a"))

        assert stored.sequence == 2
        assert [r.tool_id for r in store.iter_records()] == ["a", "b"]
        assert [r.tool_id for r in store.records_between(datetime(2026, 1, 2), datetime(2026, 1, 2))] == ["b"]


class TestDbPath:
    """Test database location resolution."""

    def test_explicit_path_wins(self, db_path):
        with patch.dict(os.environ, {DB_PATH_ENV: "/tmp/elsewhere.db"}):
            assert str(resolve_db_path(db_path)) == db_path

    def test_env_override(self):
        with patch.dict(os.environ, {DB_PATH_ENV: "/tmp/from-env.db"}):
            assert str(resolve_db_path()) == "/tmp/from-env.db"
