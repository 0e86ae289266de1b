"""
Archive gap detection.

Works out which cataloged shows for an artist are not yet in the archive by
matching archive folder names to catalog records through the performance
date. Two folder naming conventions are accepted, both anchored at the start
of the name:

- ``MM_DD_YY ...`` (bare date prefix)
- ``<Artist Name> - MM_DD_YY ...`` (artist-prefixed)

Folders that match neither, or whose date has no catalog show, are skipped
and counted rather than treated as errors.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .catalog import CatalogStore
from .listing import ArchiveLister

logger = logging.getLogger(__name__)

ARTIFACT_SUFFIXES = (".nfo", ".jpg", ".png", ".md")

BARE_DATE_PATTERN = re.compile(r"^(\d{2})_(\d{2})_(\d{2})")


def artist_date_pattern(artist_name: str) -> "re.Pattern[str]":
    """``<artist> - MM_DD_YY`` prefix pattern with the name matched literally."""
    return re.compile("^" + re.escape(artist_name) + r" - (\d{2})_(\d{2})_(\d{2})")


class FolderKind(Enum):
    """How a folder name was classified."""
    ARTIFACT = "artifact"
    UNMATCHED = "unmatched"
    SHOW = "show"


@dataclass(frozen=True)
class FolderMatch:
    kind: FolderKind
    date_short: Optional[str] = None


def is_artifact(name: str) -> bool:
    """Hidden files and image/metadata files are never show folders."""
    if not name or name.startswith("."):
        return True
    return name.lower().endswith(ARTIFACT_SUFFIXES)


def classify_folder(name: str, artist_pattern: "re.Pattern[str]") -> FolderMatch:
    """Classify one folder name.

    Args:
        name: Entry name from the archive listing
        artist_pattern: Result of ``artist_date_pattern`` for the artist

    Returns:
        FolderMatch; for shows ``date_short`` is ``MM/DD/YY``, the catalog's
        short display date
    """
    name = name.strip()
    if is_artifact(name):
        return FolderMatch(FolderKind.ARTIFACT)

    match = BARE_DATE_PATTERN.match(name) or artist_pattern.match(name)
    if match is None:
        return FolderMatch(FolderKind.UNMATCHED)

    month, day, year = match.groups()
    return FolderMatch(FolderKind.SHOW, f"{month}/{day}/{year}")


@dataclass(frozen=True)
class SkipDiagnostics:
    """Counts of listing entries that did not resolve to a show."""
    artifacts: int = 0
    unmatched_pattern: int = 0
    unmatched_date: int = 0
    matched: int = 0

    @property
    def skipped(self) -> int:
        return self.artifacts + self.unmatched_pattern + self.unmatched_date


@dataclass(frozen=True)
class GapResult:
    """Outcome of reconciling one artist.

    ``missing_ids`` is ``available - archived`` at computation time, sorted
    ascending. It goes stale as soon as either side changes.
    """
    artist: str
    available_ids: Tuple[int, ...]
    archived_ids: Tuple[int, ...]
    missing_ids: Tuple[int, ...]
    diagnostics: SkipDiagnostics


def find_missing(available: Iterable[int], archived: Iterable[int]) -> Tuple[int, ...]:
    """Set difference, sorted ascending. Duplicates collapse."""
    return tuple(sorted(set(available) - set(archived)))


def _unique(values: Iterable[int]) -> Tuple[int, ...]:
    return tuple(dict.fromkeys(values))


class ArchiveReconciler:
    """Computes per-artist gaps between the catalog and the archive."""

    def __init__(self, catalog: CatalogStore, lister: ArchiveLister):
        self.catalog = catalog
        self.lister = lister

    def compute_gaps(self, artist_name: str, archive_folder: str) -> GapResult:
        """Reconcile one artist's catalog against their archive folder.

        Args:
            artist_name: Artist name as it appears in the catalog
            archive_folder: Folder holding the artist's archived shows

        Returns:
            GapResult with available, archived and missing identifiers

        Raises:
            CatalogUnavailable: If no catalog snapshot can be loaded
        """
        shows = self.catalog.get_shows_for_artist(artist_name)
        available = _unique(show.container_id for show in shows)

        # Later entries win, so on shared dates the oldest identifier is used
        date_to_id: Dict[str, int] = {}
        for show in shows:
            date_to_id[show.performance_date_short] = show.container_id

        folders = self.lister.list_folder(archive_folder)
        archived, diagnostics = self._match_folders(artist_name, folders, date_to_id)

        missing = find_missing(available, archived)

        logger.info(
            f"{artist_name}: {len(available)} available, {len(archived)} archived, "
            f"{len(missing)} missing"
        )
        if diagnostics.skipped:
            logger.info(
                f"{artist_name}: skipped {diagnostics.artifacts} artifacts, "
                f"{diagnostics.unmatched_pattern} unrecognised folders, "
                f"{diagnostics.unmatched_date} folders with no catalog date"
            )

        return GapResult(
            artist=artist_name,
            available_ids=available,
            archived_ids=archived,
            missing_ids=missing,
            diagnostics=diagnostics,
        )

    def _match_folders(
        self,
        artist_name: str,
        folders: Iterable[str],
        date_to_id: Dict[str, int],
    ) -> Tuple[Tuple[int, ...], SkipDiagnostics]:
        artist_pattern = artist_date_pattern(artist_name)
        archived: List[int] = []
        artifacts = unmatched_pattern = unmatched_date = matched = 0

        for folder in folders:
            result = classify_folder(folder, artist_pattern)
            if result.kind is FolderKind.ARTIFACT:
                artifacts += 1
                continue
            if result.kind is FolderKind.UNMATCHED:
                unmatched_pattern += 1
                logger.debug(f"Folder does not match a show pattern: {folder!r}")
                continue

            container_id = date_to_id.get(result.date_short)
            if container_id is None:
                unmatched_date += 1
                logger.debug(f"No catalog show on {result.date_short} for folder {folder!r}")
                continue

            matched += 1
            archived.append(container_id)

        diagnostics = SkipDiagnostics(
            artifacts=artifacts,
            unmatched_pattern=unmatched_pattern,
            unmatched_date=unmatched_date,
            matched=matched,
        )
        return tuple(sorted(set(archived))), diagnostics
