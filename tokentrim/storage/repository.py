"""
Repository pattern for the invocation ledger.

Handles persistence of InvocationRecords. The ledger is append-only: records
are inserted once, each in its own transaction, and never updated.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Iterator, List, Optional

from .db import get_connection, resolve_db_path
from .models import InvocationRecord

logger = logging.getLogger(__name__)

TABLE_NAME = "invocation_record"

# Columns added after the first schema version; old rows read back as NULL
OPTIONAL_COLUMNS = {
    "command": "TEXT",
    "exec_time_ms": "INTEGER",
}

_SELECT_COLUMNS = (
    "id, timestamp, tool_id, raw_unit_count, compacted_unit_count, "
    "success, command, exec_time_ms"
)


class StoreWriteFailure(Exception):
    """Raised when an invocation record could not be persisted."""


def _normalize_timestamp(ts: datetime) -> str:
    """Serialize timestamps so that lexical order equals chronological order."""
    if ts.tzinfo is not None:
        ts = ts.astimezone().replace(tzinfo=None)
    return ts.isoformat(timespec="microseconds")


def _row_to_record(row) -> InvocationRecord:
    return InvocationRecord(
        timestamp=datetime.fromisoformat(row[1]),
        tool_id=row[2],
        raw_unit_count=row[3],
        compacted_unit_count=row[4],
        success=bool(row[5]),
        command=row[6],
        exec_time_ms=row[7],
        sequence=row[0],
    )


class UsageStore:
    """Interface shared by all ledger backends.

    A store is an explicitly passed handle: open it once per process, close
    it on exit. Both backends can be used as context managers.
    """

    def append(self, record: InvocationRecord) -> InvocationRecord:
        """Persist one record and return it with its sequence assigned."""
        raise NotImplementedError

    def iter_records(self) -> Iterator[InvocationRecord]:
        """Yield every record in chronological order."""
        raise NotImplementedError

    def records_between(self, start: datetime, end: datetime) -> List[InvocationRecord]:
        """Return records with start <= timestamp <= end, chronologically."""
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class SqliteUsageStore(UsageStore):
    """SQLite-backed ledger.

    One connection is held for the lifetime of the handle. WAL journaling and
    a busy timeout let concurrent invocations append without corrupting each
    other's records.
    """

    def __init__(self, db_path=None):
        """Open (and create if needed) the ledger database.

        Args:
            db_path: Path to SQLite database file, or None for the default
        """
        self.db_path = resolve_db_path(db_path)
        self._conn: Optional[sqlite3.Connection] = get_connection(self.db_path)
        _ensure_schema(self._conn)

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("usage store is closed")
        return self._conn

    def append(self, record: InvocationRecord) -> InvocationRecord:
        """Insert a single record into the append-only ledger.

        The insert runs in its own transaction so a crash can never leave a
        partially written record visible to readers.

        Raises:
            StoreWriteFailure: If the database rejects the write
        """
        try:
            with self.conn:
                cursor = self.conn.execute(f"""
                    INSERT INTO {TABLE_NAME}
                    (timestamp, tool_id, raw_unit_count, compacted_unit_count,
                     success, command, exec_time_ms)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    _normalize_timestamp(record.timestamp),
                    record.tool_id,
                    record.raw_unit_count,
                    record.compacted_unit_count,
                    int(record.success),
                    record.command,
                    record.exec_time_ms,
                ))
        except (sqlite3.Error, RuntimeError) as e:
            raise StoreWriteFailure(f"Failed to record invocation of {record.tool_id}: {e}") from e
        logger.debug("Recorded invocation %s as #%s", record.tool_id, cursor.lastrowid)
        return _with_sequence(record, cursor.lastrowid)

    def iter_records(self) -> Iterator[InvocationRecord]:
        cursor = self.conn.execute(
            f"SELECT {_SELECT_COLUMNS} FROM {TABLE_NAME} ORDER BY timestamp ASC, id ASC"
        )
        for row in cursor:
            yield _row_to_record(row)

    def records_between(self, start: datetime, end: datetime) -> List[InvocationRecord]:
        cursor = self.conn.execute(f"""
            SELECT {_SELECT_COLUMNS} FROM {TABLE_NAME}
            WHERE timestamp >= ? AND timestamp <= ?
            ORDER BY timestamp ASC, id ASC
        """, (_normalize_timestamp(start), _normalize_timestamp(end)))
        return [_row_to_record(row) for row in cursor.fetchall()]

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


class InMemoryUsageStore(UsageStore):
    """Process-local ledger with the same contract, used by tests."""

    def __init__(self, records: Optional[List[InvocationRecord]] = None):
        self._records: List[InvocationRecord] = []
        for record in records or []:
            self.append(record)

    def append(self, record: InvocationRecord) -> InvocationRecord:
        stored = _with_sequence(record, len(self._records) + 1)
        self._records.append(stored)
        return stored

    def iter_records(self) -> Iterator[InvocationRecord]:
        return iter(sorted(self._records, key=lambda r: (r.timestamp, r.sequence)))

    def records_between(self, start: datetime, end: datetime) -> List[InvocationRecord]:
        return [r for r in self.iter_records() if start <= r.timestamp <= end]


def _with_sequence(record: InvocationRecord, sequence: int) -> InvocationRecord:
    return InvocationRecord(
        timestamp=record.timestamp,
        tool_id=record.tool_id,
        raw_unit_count=record.raw_unit_count,
        compacted_unit_count=record.compacted_unit_count,
        success=record.success,
        command=record.command,
        exec_time_ms=record.exec_time_ms,
        sequence=sequence,
    )


def _ensure_schema(conn: sqlite3.Connection) -> None:
    """Create the ledger table and append any columns older files lack.

    No UPDATE or DELETE is ever performed on this table. New columns are only
    ever appended with a NULL default, so existing rows stay readable.
    """
    with conn:
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                tool_id TEXT NOT NULL,
                raw_unit_count INTEGER NOT NULL,
                compacted_unit_count INTEGER NOT NULL,
                success INTEGER NOT NULL
            )
        """)
        existing = {row[1] for row in conn.execute(f"PRAGMA table_info({TABLE_NAME})")}
        for column, column_type in OPTIONAL_COLUMNS.items():
            if column not in existing:
                conn.execute(f"ALTER TABLE {TABLE_NAME} ADD COLUMN {column} {column_type}")
                logger.info("Added column %s to %s", column, TABLE_NAME)
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_timestamp ON {TABLE_NAME}(timestamp)"
        )


def initialize_schema(db_path=None) -> None:
    """Create the invocation ledger if it doesn't exist.

    Args:
        db_path: Path to SQLite database file, or None for the default
    """
    conn = get_connection(resolve_db_path(db_path))
    try:
        _ensure_schema(conn)
    finally:
        conn.close()


def open_store(db_path=None) -> SqliteUsageStore:
    """Open the ledger handle for one process invocation.

    Args:
        db_path: Path to SQLite database file, or None for the default

    Returns:
        An open SqliteUsageStore; the caller closes it
    """
    return SqliteUsageStore(db_path)
