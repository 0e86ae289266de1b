"""
Missing show detection across all monitored artists.

Runs the reconciler per artist, records the results in the archive state
document and saves it once at the end. One artist failing does not stop
the rest of the batch.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from ..config.loader import MonitorConfig
from ..storage.archive_state import ArchiveStateStore
from ..storage.models import ArchiveStateDocument
from .catalog import CatalogStore
from .errors import ArchiveGuardError
from .reconciler import ArchiveReconciler, GapResult

logger = logging.getLogger(__name__)


@dataclass
class ArtistDetection:
    """Reconciliation outcome for one monitored artist."""
    artist: str
    artist_id: int
    result: Optional[GapResult] = None
    error: Optional[str] = None


@dataclass
class DetectionRun:
    """Results of a detection batch and the document that was saved."""
    artists: List[ArtistDetection] = field(default_factory=list)
    document: ArchiveStateDocument = field(default_factory=ArchiveStateDocument)

    @property
    def failed(self) -> List[ArtistDetection]:
        return [a for a in self.artists if a.error is not None]

    @property
    def total_missing(self) -> int:
        return sum(len(a.result.missing_ids) for a in self.artists if a.result is not None)


def detect_missing_shows(
    monitor_config: MonitorConfig,
    catalog: CatalogStore,
    reconciler: ArchiveReconciler,
    state_store: ArchiveStateStore,
    clock: Callable[[], datetime] = datetime.now,
) -> DetectionRun:
    """Reconcile every monitored artist and persist the archive state.

    Args:
        monitor_config: Artists to process; unmonitored ones are skipped
        catalog: Catalog cache used for metadata
        reconciler: Gap calculator
        state_store: Archive state persistence

    Returns:
        DetectionRun with per-artist results
    """
    document = state_store.load()
    run = DetectionRun(document=document)

    for artist in monitor_config.monitored:
        logger.info(f"Processing {artist.artist} (ID: {artist.id})...")
        try:
            gaps = reconciler.compute_gaps(artist.artist, artist.artist_folder)
        except (ArchiveGuardError, OSError) as e:
            logger.error(f"Error reconciling {artist.artist}: {e}")
            run.artists.append(ArtistDetection(artist.artist, artist.id, error=str(e)))
            continue

        ArchiveStateStore.update_artist(
            document,
            artist.artist,
            artist.id,
            downloaded=gaps.archived_ids,
            available=gaps.available_ids,
            missing=gaps.missing_ids,
        )
        run.artists.append(ArtistDetection(artist.artist, artist.id, result=gaps))

        if gaps.missing_ids:
            preview = list(gaps.missing_ids[:10])
            more = len(gaps.missing_ids) - len(preview)
            logger.info(f"Missing show IDs: {preview}" + (f" ... and {more} more" if more else ""))

    try:
        snapshot = catalog.get_catalog()
    except ArchiveGuardError as e:
        logger.warning(f"Catalog metadata unavailable: {e}")
    else:
        document.last_catalog_update = snapshot.last_update
        document.catalog_total_shows = snapshot.total_shows
        document.catalog_total_artists = snapshot.total_artists

    document.last_analysis_time = clock().isoformat(timespec="seconds")
    state_store.save(document)
    logger.info("Missing shows detection complete")
    return run
