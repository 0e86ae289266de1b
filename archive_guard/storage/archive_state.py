"""
Per-artist archive state persistence.

The reconciler writes ``available`` and ``missing``; a downstream downloader
appends to ``downloaded`` after a successful retrieval through
``mark_archived``.
"""

import logging
import sqlite3
from typing import Iterable

from .models import ArchiveState, ArchiveStateDocument
from .state_store import StateStore

logger = logging.getLogger(__name__)


class ArchiveStateStore:
    """Loads and saves the archive state document."""

    def __init__(self, store: StateStore):
        self.store = store

    def load(self) -> ArchiveStateDocument:
        """Current document. Missing or unreadable state yields an empty one."""
        try:
            data = self.store.load()
        except (OSError, ValueError, sqlite3.Error) as e:
            logger.warning(f"Archive state unreadable, starting empty: {e}")
            return ArchiveStateDocument()

        if data is None:
            return ArchiveStateDocument()

        try:
            return ArchiveStateDocument.from_dict(data)
        except (ValueError, TypeError) as e:
            logger.warning(f"Archive state malformed, starting empty: {e}")
            return ArchiveStateDocument()

    def save(self, document: ArchiveStateDocument) -> None:
        """Atomically replace the stored document.

        Raises:
            OSError: If the document cannot be written
        """
        self.store.save_atomic(document.to_dict())

    @staticmethod
    def update_artist(
        document: ArchiveStateDocument,
        artist: str,
        artist_id: int,
        downloaded: Iterable[int],
        available: Iterable[int],
        missing: Iterable[int],
    ) -> ArchiveState:
        """Replace one artist's state with a fresh reconciliation result."""
        state = ArchiveState(
            artist_id=artist_id,
            downloaded=list(downloaded),
            available=list(available),
            missing=list(missing),
        )
        document.artists[artist] = state
        return state

    @staticmethod
    def is_archived(document: ArchiveStateDocument, artist: str, container_id: int) -> bool:
        state = document.artists.get(artist)
        return state is not None and container_id in state.downloaded

    @staticmethod
    def mark_archived(document: ArchiveStateDocument, artist: str, container_id: int) -> bool:
        """Record a successful retrieval.

        Returns:
            False if the show was already recorded as archived
        """
        state = document.artists.setdefault(artist, ArchiveState())
        if container_id in state.missing:
            state.missing.remove(container_id)
        if container_id in state.downloaded:
            return False
        state.downloaded.append(container_id)
        return True
