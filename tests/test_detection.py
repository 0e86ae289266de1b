"""
Unit tests for batch detection and gap reports.
"""

import csv
import io
import json
import os
import shutil
import tempfile
from datetime import datetime
from unittest.mock import Mock, patch

from archive_guard.config.loader import MonitorConfig, MonitoredArtist
from archive_guard.core.catalog import build_snapshot
from archive_guard.core.detection import detect_missing_shows
from archive_guard.core.errors import CatalogUnavailable
from archive_guard.core.listing import LocalArchiveLister
from archive_guard.core.reconciler import ArchiveReconciler
from archive_guard.core.report import (
    ReportSort,
    build_gap_reports,
    completion_percent,
    render_csv,
    render_json,
    sort_reports,
)
from archive_guard.storage.archive_state import ArchiveStateStore
from archive_guard.storage.models import ArchiveStateDocument, CatalogEntry
from archive_guard.storage.state_store import JsonFileStateStore


def entry(container_id, artist, short, venue="Venue"):
    return CatalogEntry(
        container_id=container_id,
        artist_name=artist,
        performance_date=short,
        performance_date_short=short,
        venue_name=venue,
        venue_city="City",
        venue_state="ST",
    )


SNAPSHOT = build_snapshot([
    entry(1, "Goose", "06/01/25"),
    entry(2, "Goose", "06/02/25"),
    entry(3, "Goose", "06/03/25"),
    entry(4, "Goose", "06/04/25"),
    entry(5, "Phish", "07/04/25"),
    entry(6, "Phish", "07/05/25"),
], "2025-06-10T08:00:00")


MONITOR = MonitorConfig(artists=(
    MonitoredArtist(id=1045, artist="Goose", monitor=True, artist_folder="/archive/Goose"),
    MonitoredArtist(id=9, artist="Phish", monitor=True, artist_folder="/archive/Phish"),
    MonitoredArtist(id=7, artist="Muted", monitor=False, artist_folder="/archive/Muted"),
))


class TestDetectMissingShows:
    """Test the detection batch."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.state_path = os.path.join(self.temp_dir, "shows.json")
        self.state_store = ArchiveStateStore(JsonFileStateStore(self.state_path))
        self.catalog = Mock()
        self.catalog.get_catalog.return_value = SNAPSHOT
        self.catalog.get_shows_for_artist.side_effect = (
            lambda name: SNAPSHOT.shows_by_artist.get(name, ())
        )
        self.lister = Mock()
        self.lister.list_folder.side_effect = lambda path: {
            "/archive/Goose": ["06_02_25 Show", "Goose - 06_04_25 Show", "README.md"],
            "/archive/Phish": [],
        }[path]
        self.clock = lambda: datetime(2025, 6, 10, 9, 0, 0)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _run(self):
        reconciler = ArchiveReconciler(self.catalog, self.lister)
        return detect_missing_shows(MONITOR, self.catalog, reconciler, self.state_store, clock=self.clock)

    def test_records_gaps_for_monitored_artists(self):
        run = self._run()

        assert [a.artist for a in run.artists] == ["Goose", "Phish"]
        assert run.failed == []
        assert run.total_missing == 4

        document = self.state_store.load()
        assert document.artists["Goose"].missing == [1, 3]
        assert sorted(document.artists["Goose"].downloaded) == [2, 4]
        assert document.artists["Goose"].artist_id == 1045
        assert document.artists["Phish"].missing == [5, 6]
        assert "Muted" not in document.artists
        assert document.last_catalog_update == "2025-06-10T08:00:00"
        assert document.catalog_total_shows == 6
        assert document.catalog_total_artists == 2
        assert document.last_analysis_time == "2025-06-10T09:00:00"

    def test_rerun_is_idempotent(self):
        self._run()
        with open(self.state_path, encoding="utf-8") as f:
            first = json.load(f)

        self._run()
        with open(self.state_path, encoding="utf-8") as f:
            second = json.load(f)

        assert first == second

    def test_unreadable_archive_folder_does_not_stop_batch(self):
        real_listdir = os.listdir
        readable = os.path.join(self.temp_dir, "Phish")
        os.mkdir(readable)
        os.mkdir(os.path.join(readable, "07_04_25 Show"))

        def listdir(path):
            if path == "/locked":
                raise PermissionError(13, "Permission denied", path)
            return real_listdir(path)

        monitor = MonitorConfig(artists=(
            MonitoredArtist(id=1045, artist="Goose", monitor=True, artist_folder="/locked"),
            MonitoredArtist(id=9, artist="Phish", monitor=True, artist_folder=readable),
        ))
        reconciler = ArchiveReconciler(self.catalog, LocalArchiveLister())

        with patch("archive_guard.core.listing.os.listdir", side_effect=listdir):
            run = detect_missing_shows(monitor, self.catalog, reconciler, self.state_store, clock=self.clock)

        assert [a.artist for a in run.artists] == ["Goose", "Phish"]
        document = self.state_store.load()
        assert document.artists["Goose"].missing == [1, 2, 3, 4]
        assert document.artists["Phish"].downloaded == [5]
        assert document.artists["Phish"].missing == [6]

    def test_lister_os_error_recorded_per_artist(self):
        def list_folder(path):
            if path == "/archive/Goose":
                raise OSError("stale file handle")
            return []

        self.lister.list_folder.side_effect = list_folder

        run = self._run()

        assert [a.artist for a in run.failed] == ["Goose"]
        assert self.state_store.load().artists["Phish"].missing == [5, 6]

    def test_one_artist_failing_does_not_stop_batch(self):
        def shows_for(name):
            if name == "Goose":
                raise CatalogUnavailable("no catalog")
            return SNAPSHOT.shows_by_artist.get(name, ())

        self.catalog.get_shows_for_artist.side_effect = shows_for

        run = self._run()

        assert [a.artist for a in run.failed] == ["Goose"]
        assert run.failed[0].error == "no catalog"
        document = self.state_store.load()
        assert "Goose" not in document.artists
        assert document.artists["Phish"].missing == [5, 6]

    def test_keeps_other_artists_state(self):
        document = ArchiveStateDocument()
        ArchiveStateStore.update_artist(document, "Retired Band", 3, [1], [1], [])
        self.state_store.save(document)

        self._run()

        assert "Retired Band" in self.state_store.load().artists

    def test_catalog_metadata_failure_still_saves(self):
        self.catalog.get_catalog.side_effect = CatalogUnavailable("offline")

        self._run()

        document = self.state_store.load()
        assert document.last_catalog_update == "unknown"
        assert document.artists["Goose"].missing == [1, 3]


class TestGapReports:
    """Test report building, sorting and rendering."""

    def setup_method(self):
        self.document = ArchiveStateDocument()
        ArchiveStateStore.update_artist(self.document, "Goose", 1045, [2, 4], [1, 2, 3, 4], [1, 3])
        ArchiveStateStore.update_artist(self.document, "Phish", 9, [], [5, 6], [5, 6])

    def test_completion_percent(self):
        assert completion_percent(1, 4) == 25.0
        assert completion_percent(0, 0) == 0.0

    def test_builds_reports_and_summary(self):
        reports, summary = build_gap_reports(self.document, MONITOR, SNAPSHOT)

        assert [r.artist for r in reports] == ["Goose", "Phish"]
        goose = reports[0]
        assert goose.total_available == 4
        assert goose.total_downloaded == 2
        assert goose.completion_pct == 50.0
        assert [s.container_id for s in goose.missing_shows] == [1, 3]
        assert goose.missing_shows[0].date == "06/01/25"
        assert goose.missing_shows[0].city == "City"
        assert summary.total_artists == 2
        assert summary.total_shows_have == 2
        assert summary.total_shows_available == 6
        assert round(summary.overall_completion, 2) == 33.33
        assert summary.total_missing == 4

    def test_missing_show_not_in_catalog_is_dropped(self):
        self.document.artists["Goose"].missing.append(999)

        reports, _ = build_gap_reports(self.document, MONITOR, SNAPSHOT)

        assert [s.container_id for s in reports[0].missing_shows] == [1, 3]

    def test_artist_without_state_skipped(self):
        del self.document.artists["Phish"]

        reports, summary = build_gap_reports(self.document, MONITOR, SNAPSHOT)

        assert [r.artist for r in reports] == ["Goose"]
        assert summary.total_shows_available == 4

    def test_filters(self):
        reports, _ = build_gap_reports(self.document, MONITOR, SNAPSHOT, artist_filter="PHI")
        assert [r.artist for r in reports] == ["Phish"]

        reports, summary = build_gap_reports(self.document, MONITOR, SNAPSHOT, min_missing=3)
        assert reports == []
        assert summary.total_artists == 0
        assert summary.total_missing == 4

    def test_sorting(self):
        reports, _ = build_gap_reports(self.document, MONITOR, SNAPSHOT)

        assert [r.artist for r in sort_reports(reports, ReportSort.COMPLETION)] == ["Phish", "Goose"]
        assert [r.artist for r in sort_reports(reports, ReportSort.TOTAL)] == ["Goose", "Phish"]
        assert [r.artist for r in sort_reports(reports, ReportSort.MISSING)] == ["Goose", "Phish"]
        assert [r.artist for r in sort_reports(reports[::-1], ReportSort.ARTIST)] == ["Goose", "Phish"]

    def test_render_json(self):
        reports, summary = build_gap_reports(self.document, MONITOR, SNAPSHOT)

        data = json.loads(render_json(reports, summary))

        assert data["summary"]["total_missing"] == 4
        assert data["reports"][0]["artist"] == "Goose"
        assert data["reports"][0]["missing_count"] == 2
        assert data["reports"][0]["missing_shows"][1]["container_id"] == 3

    def test_render_csv(self):
        reports, _ = build_gap_reports(self.document, MONITOR, SNAPSHOT)

        rows = list(csv.reader(io.StringIO(render_csv(reports))))

        assert rows[0][0] == "Artist"
        assert rows[1] == ["Goose", "4", "2", "50.0", "2", "1,3"]
        assert rows[2] == ["Phish", "2", "0", "0.0", "2", "5,6"]
