"""
Collection gap reports.

Turns the saved archive state into per-artist completion reports enriched
with show details from the catalog.

Reports are read-only: building them never touches the upstream service
beyond the catalog cache and never modifies the archive state.
"""

import csv
import io
import json
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from ..config.loader import MonitorConfig
from ..storage.models import ArchiveStateDocument, CatalogSnapshot

logger = logging.getLogger(__name__)


class ReportSort(Enum):
    """Report orderings."""
    ARTIST = "artist"          # Name ascending
    COMPLETION = "completion"  # Least complete first
    MISSING = "missing"        # Most missing first
    TOTAL = "total"            # Most available first


@dataclass(frozen=True)
class MissingShow:
    container_id: int
    date: str
    venue: str
    city: str
    state: str


@dataclass
class GapReport:
    """Completion status of one monitored artist."""
    artist: str
    artist_id: int
    total_available: int
    total_downloaded: int
    completion_pct: float
    missing_shows: List[MissingShow] = field(default_factory=list)

    @property
    def missing_count(self) -> int:
        return len(self.missing_shows)


@dataclass
class ReportSummary:
    total_artists: int = 0
    total_shows_have: int = 0
    total_shows_available: int = 0
    overall_completion: float = 0.0
    total_missing: int = 0


def completion_percent(downloaded: int, available: int) -> float:
    """``downloaded / available * 100``; zero when nothing is available."""
    if available <= 0:
        return 0.0
    return downloaded / available * 100


def build_gap_reports(
    document: ArchiveStateDocument,
    monitor_config: MonitorConfig,
    snapshot: CatalogSnapshot,
    artist_filter: Optional[str] = None,
    min_missing: int = 0,
) -> Tuple[List[GapReport], ReportSummary]:
    """Build reports for monitored artists with saved archive state.

    Args:
        document: Saved archive state
        monitor_config: Monitored artists
        snapshot: Catalog used to resolve show details
        artist_filter: Case-insensitive substring an artist name must contain
        min_missing: Only report artists with at least this many missing shows

    Returns:
        Reports in monitor config order and a summary over every processed
        artist, including those dropped by ``min_missing``
    """
    reports: List[GapReport] = []
    summary = ReportSummary()
    needle = artist_filter.lower() if artist_filter else None

    for artist in monitor_config.monitored:
        if needle and needle not in artist.artist.lower():
            continue

        state = document.artists.get(artist.artist)
        if state is None:
            logger.warning(f"No show data found for monitored artist: {artist.artist}")
            continue

        missing_shows = []
        for container_id in state.missing:
            show = snapshot.shows_by_id.get(container_id)
            if show is None:
                logger.warning(f"Could not find show {container_id} in catalog")
                continue
            missing_shows.append(MissingShow(
                container_id=container_id,
                date=show.performance_date_short,
                venue=show.venue_name,
                city=show.venue_city,
                state=show.venue_state,
            ))

        report = GapReport(
            artist=artist.artist,
            artist_id=artist.id,
            total_available=len(state.available),
            total_downloaded=len(state.downloaded),
            completion_pct=completion_percent(len(state.downloaded), len(state.available)),
            missing_shows=missing_shows,
        )
        if report.missing_count >= min_missing:
            reports.append(report)

        summary.total_shows_have += len(state.downloaded)
        summary.total_shows_available += len(state.available)
        summary.total_missing += len(state.missing)

    summary.total_artists = len(reports)
    summary.overall_completion = completion_percent(
        summary.total_shows_have, summary.total_shows_available
    )
    return reports, summary


def sort_reports(reports: List[GapReport], sort_by: ReportSort) -> List[GapReport]:
    """Return ``reports`` in the requested order. Ties fall back to artist name."""
    if sort_by is ReportSort.COMPLETION:
        key = lambda r: (r.completion_pct, r.artist)
    elif sort_by is ReportSort.MISSING:
        key = lambda r: (-r.missing_count, r.artist)
    elif sort_by is ReportSort.TOTAL:
        key = lambda r: (-r.total_available, r.artist)
    else:
        key = lambda r: r.artist
    return sorted(reports, key=key)


def render_json(reports: List[GapReport], summary: ReportSummary) -> str:
    data = {
        "summary": asdict(summary),
        "reports": [
            {**asdict(report), "missing_count": report.missing_count}
            for report in reports
        ],
    }
    return json.dumps(data, indent=2)


def render_csv(reports: List[GapReport]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow([
        "Artist", "Total Available", "Total Downloaded",
        "Completion %", "Missing Count", "Missing Show IDs",
    ])
    for report in reports:
        writer.writerow([
            report.artist,
            report.total_available,
            report.total_downloaded,
            f"{report.completion_pct:.1f}",
            report.missing_count,
            ",".join(str(show.container_id) for show in report.missing_shows),
        ])
    return output.getvalue()
