"""
Database connection management.

Provides SQLite connection for the invocation ledger.
"""

import os
import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "tokentrim" / "history.db"
DB_PATH_ENV = "TOKENTRIM_DB_PATH"

# Seconds to wait on a lock held by a concurrent invocation
BUSY_TIMEOUT = 5.0


def resolve_db_path(db_path=None) -> Path:
    """Pick the database location.

    Precedence: explicit argument, then $TOKENTRIM_DB_PATH, then the default
    under ~/.local/share/tokentrim.
    """
    if db_path:
        return Path(db_path).expanduser()
    env_path = os.environ.get(DB_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_DB_PATH


def get_connection(db_path) -> sqlite3.Connection:
    """Create and return a SQLite connection suitable for concurrent appends.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection in WAL mode with a busy timeout
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT)
    conn.execute("PRAGMA journal_mode = WAL")
    return conn
