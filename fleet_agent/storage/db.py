"""
Database connection management.

Provides the SQLite connection shared by threads, messages and usage records.
"""

import sqlite3
from pathlib import Path

# Concurrent request handlers and the heartbeat write through separate
# connections; wait for the writer lock instead of failing immediately.
BUSY_TIMEOUT_SECONDS = 30.0


def get_connection(db_path: str) -> sqlite3.Connection:
    """Create and return a SQLite connection with foreign keys and WAL enabled.

    The parent directory is created if it does not exist yet.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT_SECONDS)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn
