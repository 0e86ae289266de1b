"""
Persistence backends for JSON-shaped state documents.

The ledger, catalog cache and archive state only ever load a whole document
and atomically replace a whole document, so any medium that can do those two
things is a valid backend.
"""

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from .db import get_connection


class StateStore(Protocol):
    """Whole-document load / atomic replace."""

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored document, or None if nothing has been stored.

        Raises:
            ValueError: If the stored document is malformed
            OSError: If the medium cannot be read
        """

    def save_atomic(self, data: Dict[str, Any]) -> None:
        """Replace the stored document. Readers never see a partial write."""

    def modified_at(self) -> Optional[datetime]:
        """Time of the last successful save, or None if absent."""


class JsonFileStateStore:
    """State document stored as a JSON file.

    Writes go to a temporary file in the same directory which is then
    renamed over the target, so a crash mid-write leaves the previous
    document intact.
    """

    def __init__(self, path: str, indent: Optional[int] = 2):
        self.path = Path(path)
        self.indent = indent

    def load(self) -> Optional[Dict[str, Any]]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return None

        if not raw.strip():
            raise ValueError(f"State file is empty: {self.path}")

        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError(f"State file does not contain a JSON object: {self.path}")
        return data

    def save_atomic(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=self.indent)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def modified_at(self) -> Optional[datetime]:
        try:
            return datetime.fromtimestamp(self.path.stat().st_mtime)
        except FileNotFoundError:
            return None

    def __repr__(self) -> str:
        return f"JsonFileStateStore({str(self.path)!r})"


class SqliteStateStore:
    """State document stored as one row of a SQLite key/value table."""

    def __init__(self, db_path: str, key: str):
        if not key or not key.strip():
            raise ValueError("key is required and cannot be empty")
        self.db_path = db_path
        self.key = key
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS state_document (
                    key TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def load(self) -> Optional[Dict[str, Any]]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT payload FROM state_document WHERE key = ?", (self.key,)
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        data = json.loads(row[0])
        if not isinstance(data, dict):
            raise ValueError(f"State row {self.key!r} does not contain a JSON object")
        return data

    def save_atomic(self, data: Dict[str, Any]) -> None:
        payload = json.dumps(data)
        conn = get_connection(self.db_path)
        try:
            with conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO state_document (key, payload, updated_at)
                    VALUES (?, ?, ?)
                    """,
                    (self.key, payload, datetime.now().isoformat()),
                )
        finally:
            conn.close()

    def modified_at(self) -> Optional[datetime]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT updated_at FROM state_document WHERE key = ?", (self.key,)
            ).fetchone()
        finally:
            conn.close()
        return datetime.fromisoformat(row[0]) if row else None

    def __repr__(self) -> str:
        return f"SqliteStateStore({self.db_path!r}, key={self.key!r})"
