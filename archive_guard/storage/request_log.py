"""
Append-only per-day request log.

One JSON object per line, one file per calendar day. Writing is best-effort:
a failure to log must never fail the request being logged.
"""

import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Callable, List, Optional

from .models import RequestLogEntry

logger = logging.getLogger(__name__)


class RequestLog:
    """Daily JSONL request log under ``log_directory``."""

    def __init__(self, log_directory: str, clock: Callable[[], datetime] = datetime.now):
        self.log_directory = Path(log_directory)
        self._clock = clock

    def path_for(self, day: Optional[date] = None) -> Path:
        """Log file for ``day`` (defaults to today)."""
        day = day or self._clock().date()
        return self.log_directory / f"api_requests_{day.strftime('%Y-%m-%d')}.log"

    def append(self, entry: RequestLogEntry) -> bool:
        """Append one entry to today's file.

        Returns:
            True if the line was written, False if writing failed
        """
        line = json.dumps(entry.to_dict()) + "\n"
        try:
            self.log_directory.mkdir(parents=True, exist_ok=True)
            with open(self.path_for(), "a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            logger.warning(f"Failed to write API log: {e}")
            return False
        return True

    def read(self, day: Optional[date] = None) -> List[RequestLogEntry]:
        """All parseable entries for ``day``, oldest first.

        Lines that are not valid entries are skipped.
        """
        path = self.path_for(day)
        if not path.exists():
            return []

        entries = []
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(RequestLogEntry.from_dict(json.loads(line)))
                except (ValueError, KeyError, TypeError):
                    logger.debug(f"Skipping malformed log line in {path}")
        return entries

    def read_recent(self, limit: int = 50, day: Optional[date] = None) -> List[RequestLogEntry]:
        """The last ``limit`` entries for ``day``."""
        entries = self.read(day)
        return entries[-limit:] if limit > 0 else []

    def read_errors(self, limit: int = 20, day: Optional[date] = None) -> List[RequestLogEntry]:
        """The last ``limit`` failed entries (error text or status >= 400)."""
        errors = [entry for entry in self.read(day) if entry.is_error]
        return errors[-limit:] if limit > 0 else []
