"""
Local cache of the full upstream catalog.

The cache is a single snapshot document replaced wholesale on refresh.
Staleness is judged by the document's modification time. A failed refresh
falls back to the last good snapshot on disk; only when there is none at all
does a catalog read fail.
"""

import logging
import sqlite3
import threading
import time
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..config.loader import GuardConfig
from ..storage.models import CatalogEntry, CatalogSnapshot
from ..storage.state_store import JsonFileStateStore, StateStore
from .errors import ArchiveGuardError, CatalogUnavailable, ProtocolError

logger = logging.getLogger(__name__)

PERFORMANCE_DATE_FORMAT = "%m/%d/%Y"


def parse_performance_date(value: str) -> Optional[datetime]:
    """Parse the upstream ``M/D/YYYY`` performance date, or None."""
    try:
        return datetime.strptime(value.strip(), PERFORMANCE_DATE_FORMAT)
    except (ValueError, AttributeError):
        return None


def _show_sort_key(show: CatalogEntry) -> Tuple[bool, datetime, int]:
    parsed = parse_performance_date(show.performance_date)
    return (parsed is not None, parsed or datetime.min, show.container_id)


def sort_shows(shows: Iterable[CatalogEntry]) -> Tuple[CatalogEntry, ...]:
    """Newest performance first, ties by identifier descending.

    Shows whose date does not parse are kept, after every dated show,
    ordered by identifier descending.
    """
    return tuple(sorted(shows, key=_show_sort_key, reverse=True))


def build_snapshot(entries: Iterable[CatalogEntry], last_update: str) -> CatalogSnapshot:
    """Group entries by trimmed artist name and build the lookup indices."""
    all_shows = tuple(entries)
    grouped: Dict[str, List[CatalogEntry]] = defaultdict(list)
    by_id: Dict[int, CatalogEntry] = {}

    for show in all_shows:
        grouped[show.artist_name.strip()].append(show)
        by_id.setdefault(show.container_id, show)

    shows_by_artist = {artist: sort_shows(shows) for artist, shows in grouped.items()}

    return CatalogSnapshot(
        last_update=last_update,
        total_shows=len(all_shows),
        total_artists=len(shows_by_artist),
        all_shows=all_shows,
        shows_by_artist=shows_by_artist,
        shows_by_id=by_id,
    )


def parse_catalog_response(payload: Mapping[str, Any]) -> List[CatalogEntry]:
    """Extract show records from a ``catalog.containersAll`` envelope.

    Individual records without a usable identifier are skipped.

    Raises:
        ProtocolError: If the envelope has no container list
    """
    response = payload.get("Response") if isinstance(payload, Mapping) else None
    containers = response.get("containers") if isinstance(response, Mapping) else None
    if not isinstance(containers, list):
        raise ProtocolError("catalog response missing Response.containers")

    entries = []
    for record in containers:
        try:
            entries.append(CatalogEntry.from_wire(record))
        except ValueError as e:
            logger.warning(f"Skipping catalog record: {e}")
    return entries


def snapshot_from_dict(data: Mapping[str, Any]) -> CatalogSnapshot:
    """Rebuild a snapshot from its persisted form.

    Raises:
        ValueError: If the document is not a catalog snapshot
    """
    raw_shows = data.get("all_shows")
    if not isinstance(raw_shows, list):
        raise ValueError("catalog cache has no all_shows list")
    last_update = data.get("last_update")
    if not isinstance(last_update, str):
        raise ValueError("catalog cache has no last_update")
    return build_snapshot((CatalogEntry.from_wire(record) for record in raw_shows), last_update)


class _RefreshFlight:
    """One upstream refresh and its outcome, shared with every waiter."""

    def __init__(self):
        self.done = threading.Event()
        self.snapshot: Optional[CatalogSnapshot] = None
        self.error: Optional[BaseException] = None
        self.finished_at = float("inf")

    def outcome(self) -> CatalogSnapshot:
        if self.error is not None:
            raise self.error
        return self.snapshot


class CatalogStore:
    """Catalog snapshot cache with staleness policy and single-flight refresh."""

    def __init__(
        self,
        client: Any,
        store: StateStore,
        max_age: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the catalog store.

        Args:
            client: Anything with ``get_full_catalog() -> dict``, normally a
                GovernedClient
            store: Where the snapshot document is persisted
            max_age: Age after which the cached snapshot is refreshed
            clock: Source of the current local time
        """
        self.client = client
        self.store = store
        self.max_age = max_age
        self._clock = clock

        self._flight_lock = threading.Lock()
        self._flight: Optional[_RefreshFlight] = None
        self._last_flight: Optional[_RefreshFlight] = None

        self._cache_lock = threading.Lock()
        self._snapshot: Optional[CatalogSnapshot] = None
        self._snapshot_mtime: Optional[datetime] = None

    @classmethod
    def from_config(cls, config: GuardConfig, client: Any) -> "CatalogStore":
        return cls(
            client=client,
            store=JsonFileStateStore(config.paths.catalog_cache_file),
            max_age=timedelta(hours=config.catalog.max_age_hours),
        )

    def needs_refresh(self) -> bool:
        """True if the cache is absent or older than ``max_age``."""
        try:
            modified = self.store.modified_at()
        except (OSError, ValueError, sqlite3.Error):
            return True
        if modified is None:
            return True
        return self._clock() - modified > self.max_age

    def get_catalog(self) -> CatalogSnapshot:
        """Current snapshot, refreshing first if stale, absent or corrupt.

        Raises:
            CatalogUnavailable: If refreshing failed and no snapshot exists
        """
        entered = time.monotonic()

        if not self.needs_refresh():
            snapshot = self._load_cached()
            if snapshot is not None:
                return snapshot

        logger.info("Catalog needs refresh, fetching from API...")
        try:
            return self._refresh(entered)
        except (ArchiveGuardError, OSError, sqlite3.Error) as e:
            logger.warning(f"Failed to refresh catalog: {e}")
            refresh_error = e

        snapshot = self._load_cached()
        if snapshot is None:
            raise CatalogUnavailable(f"no catalog available: {refresh_error}")
        logger.warning(f"Using last good catalog from {snapshot.last_update}")
        return snapshot

    def force_refresh(self) -> CatalogSnapshot:
        """Refresh regardless of age.

        Joins a refresh that is already in flight instead of starting another.

        Raises:
            ArchiveGuardError: If the upstream fetch or parse fails
        """
        logger.info("Forcing catalog refresh...")
        return self._refresh(None)

    def _refresh(self, entered: Optional[float]) -> CatalogSnapshot:
        """Fetch, rebuild and persist a snapshot, at most one fetch at a time.

        A caller that finds a refresh in flight waits for it and shares its
        outcome, success or failure. So does a caller that entered before the
        most recent refresh finished.

        Args:
            entered: ``time.monotonic()`` when the caller decided to refresh,
                or None to only join a refresh still in flight
        """
        with self._flight_lock:
            flight = self._flight
            if flight is None and entered is not None:
                last = self._last_flight
                if last is not None and last.finished_at > entered:
                    flight = last
            leader = flight is None
            if leader:
                flight = self._flight = _RefreshFlight()

        if not leader:
            logger.debug("Catalog refresh already in progress, waiting for it")
            flight.done.wait()
            return flight.outcome()

        try:
            flight.snapshot = self._fetch_snapshot()
        except BaseException as e:
            flight.error = e
            raise
        finally:
            with self._flight_lock:
                flight.finished_at = time.monotonic()
                self._flight = None
                self._last_flight = flight
            flight.done.set()
        return flight.snapshot

    def _fetch_snapshot(self) -> CatalogSnapshot:
        logger.info("Fetching full catalog from upstream...")
        payload = self.client.get_full_catalog()
        entries = parse_catalog_response(payload)
        logger.info(f"Fetched {len(entries)} shows from API")

        snapshot = build_snapshot(entries, self._clock().isoformat(timespec="seconds"))
        self.store.save_atomic(snapshot.to_dict())

        with self._cache_lock:
            self._snapshot = snapshot
            self._snapshot_mtime = self.store.modified_at()

        logger.info(
            f"Catalog updated: {snapshot.total_shows} shows from {snapshot.total_artists} artists"
        )
        return snapshot

    def _load_cached(self) -> Optional[CatalogSnapshot]:
        """Snapshot from memory if still current, else from the store. None if unusable."""
        try:
            modified = self.store.modified_at()
        except (OSError, ValueError, sqlite3.Error) as e:
            logger.warning(f"Failed to stat catalog cache: {e}")
            modified = None

        with self._cache_lock:
            if self._snapshot is not None and modified is not None and modified == self._snapshot_mtime:
                return self._snapshot

        try:
            data = self.store.load()
            if data is None:
                return None
            snapshot = snapshot_from_dict(data)
        except (OSError, ValueError, TypeError, sqlite3.Error) as e:
            logger.warning(f"Failed to read catalog cache: {e}")
            return None

        with self._cache_lock:
            self._snapshot = snapshot
            self._snapshot_mtime = modified
        return snapshot

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_shows_for_artist(self, artist_name: str) -> Tuple[CatalogEntry, ...]:
        """Shows for an exact (trimmed, case-sensitive) artist name.

        An artist with no cataloged shows yields an empty tuple.
        """
        return self.get_catalog().shows_by_artist.get(artist_name.strip(), ())

    def get_show_by_id(self, container_id: int) -> Optional[CatalogEntry]:
        return self.get_catalog().shows_by_id.get(container_id)

    def get_all_artists(self) -> List[str]:
        return sorted(self.get_catalog().shows_by_artist)

    def top_artists(self, limit: int = 10) -> List[Tuple[str, int]]:
        """Artists with the most cataloged shows."""
        counts = [(artist, len(shows)) for artist, shows in self.get_catalog().shows_by_artist.items()]
        counts.sort(key=lambda item: (-item[1], item[0]))
        return counts[:limit]
