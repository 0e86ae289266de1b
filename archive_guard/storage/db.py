"""
Database connection management.

Provides the SQLite connection used by the SQLite-backed state store.
"""

import sqlite3
from pathlib import Path


def get_connection(db_path: str = "archive_guard.db") -> sqlite3.Connection:
    """Create and return a SQLite connection.

    The parent directory is created if it does not exist yet.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA journal_mode = WAL")
    return conn
