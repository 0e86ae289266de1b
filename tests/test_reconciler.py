"""
Unit tests for archive gap detection and folder listing.
"""

import os
import shutil
import subprocess
import tempfile
from unittest.mock import Mock, patch

from archive_guard.core.listing import LocalArchiveLister, SshArchiveLister
from archive_guard.core.reconciler import (
    ArchiveReconciler,
    FolderKind,
    artist_date_pattern,
    classify_folder,
    find_missing,
    is_artifact,
)
from archive_guard.storage.models import CatalogEntry


def entry(container_id, short, artist="Billy Strings"):
    return CatalogEntry(container_id=container_id, artist_name=artist, performance_date_short=short)


class TestFolderClassification:
    """Test folder name patterns."""

    def setup_method(self):
        self.pattern = artist_date_pattern("Billy Strings")

    def test_bare_date_prefix(self):
        match = classify_folder("06_01_25 Red Rocks", self.pattern)

        assert match.kind is FolderKind.SHOW
        assert match.date_short == "06/01/25"

    def test_artist_prefix(self):
        match = classify_folder("Billy Strings - 12_31_24 NYE", self.pattern)

        assert match.kind is FolderKind.SHOW
        assert match.date_short == "12/31/24"

    def test_other_artist_prefix_unmatched(self):
        assert classify_folder("Goose - 12_31_24", self.pattern).kind is FolderKind.UNMATCHED

    def test_date_must_be_at_start(self):
        assert classify_folder("Live 06_01_25", self.pattern).kind is FolderKind.UNMATCHED
        assert classify_folder("6_1_25 Show", self.pattern).kind is FolderKind.UNMATCHED

    def test_artist_name_matched_literally(self):
        pattern = artist_date_pattern("Dr. Dog (Live)")

        assert classify_folder("Dr. Dog (Live) - 01_02_23", pattern).kind is FolderKind.SHOW
        assert classify_folder("DrX Dog (Live) - 01_02_23", pattern).kind is FolderKind.UNMATCHED

    def test_artifacts(self):
        assert is_artifact("")
        assert is_artifact(".DS_Store")
        assert is_artifact("README.md")
        assert is_artifact("cover.JPG")
        assert is_artifact("info.nfo")
        assert is_artifact("art.png")
        assert not is_artifact("06_01_25 Show")
        assert classify_folder("06_01_25 poster.jpg", self.pattern).kind is FolderKind.ARTIFACT

    def test_find_missing(self):
        assert find_missing([1, 2, 3, 4], [2, 4]) == (1, 3)
        assert find_missing([1, 1, 2], [3]) == (1, 2)
        assert find_missing([], [1]) == ()


class TestArchiveReconciler:
    """Test per-artist gap computation."""

    def setup_method(self):
        self.catalog = Mock()
        self.catalog.get_shows_for_artist.return_value = (
            entry(4, "06/04/25"),
            entry(3, "06/03/25"),
            entry(2, "06/02/25"),
            entry(1, "06/01/25"),
        )
        self.lister = Mock()
        self.reconciler = ArchiveReconciler(self.catalog, self.lister)

    def test_missing_is_available_minus_archived(self):
        self.lister.list_folder.return_value = [
            "06_02_25 Somewhere",
            "Billy Strings - 06_04_25 Elsewhere",
        ]

        result = self.reconciler.compute_gaps("Billy Strings", "/archive/Billy Strings")

        assert result.available_ids == (4, 3, 2, 1)
        assert result.archived_ids == (2, 4)
        assert result.missing_ids == (1, 3)
        self.lister.list_folder.assert_called_once_with("/archive/Billy Strings")

    def test_skips_are_counted(self):
        self.lister.list_folder.return_value = [
            "README.md",
            ".hidden",
            "cover.jpg",
            "Random Folder",
            "07_04_99 Not In Catalog",
            "06_01_25 Matched",
        ]

        result = self.reconciler.compute_gaps("Billy Strings", "/archive")

        diagnostics = result.diagnostics
        assert diagnostics.artifacts == 3
        assert diagnostics.unmatched_pattern == 1
        assert diagnostics.unmatched_date == 1
        assert diagnostics.matched == 1
        assert diagnostics.skipped == 5
        assert result.archived_ids == (1,)

    def test_duplicate_folders_collapse(self):
        self.lister.list_folder.return_value = ["06_01_25 set 1", "06_01_25 set 2"]

        result = self.reconciler.compute_gaps("Billy Strings", "/archive")

        assert result.archived_ids == (1,)
        assert result.diagnostics.matched == 2

    def test_shared_date_uses_last_listed_show(self):
        self.catalog.get_shows_for_artist.return_value = (
            entry(20, "06/01/25"),
            entry(10, "06/01/25"),
        )
        self.lister.list_folder.return_value = ["06_01_25 Early Show"]

        result = self.reconciler.compute_gaps("Billy Strings", "/archive")

        assert result.archived_ids == (10,)
        assert result.missing_ids == (20,)

    def test_empty_listing_means_everything_missing(self):
        self.lister.list_folder.return_value = []

        result = self.reconciler.compute_gaps("Billy Strings", "/archive")

        assert result.missing_ids == (1, 2, 3, 4)

    def test_unknown_artist_has_no_gaps(self):
        self.catalog.get_shows_for_artist.return_value = ()
        self.lister.list_folder.return_value = ["06_01_25 Show"]

        result = self.reconciler.compute_gaps("Nobody", "/archive")

        assert result.available_ids == ()
        assert result.missing_ids == ()
        assert result.diagnostics.unmatched_date == 1

    def test_idempotent(self):
        self.lister.list_folder.return_value = ["06_02_25", "06_03_25"]

        first = self.reconciler.compute_gaps("Billy Strings", "/archive")
        second = self.reconciler.compute_gaps("Billy Strings", "/archive")

        assert first == second


class TestListers:
    """Test archive folder listers."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_local_lists_sorted_names(self):
        os.mkdir(os.path.join(self.temp_dir, "06_02_25 B"))
        os.mkdir(os.path.join(self.temp_dir, "06_01_25 A"))
        open(os.path.join(self.temp_dir, "notes.md"), "w").close()

        names = LocalArchiveLister().list_folder(self.temp_dir)

        assert names == ["06_01_25 A", "06_02_25 B", "notes.md"]

    def test_local_missing_folder_is_empty(self):
        assert LocalArchiveLister().list_folder(os.path.join(self.temp_dir, "nope")) == []

    @patch("archive_guard.core.listing.os.listdir")
    def test_local_unreadable_folder_is_empty(self, mock_listdir):
        mock_listdir.side_effect = PermissionError(13, "Permission denied", "/locked")

        assert LocalArchiveLister().list_folder("/locked") == []

    @patch("archive_guard.core.listing.subprocess.run")
    def test_ssh_lists_remote_folder(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(
            args=[], returncode=0, stdout="06_01_25 A\n\n06_02_25 B\n", stderr=""
        )

        names = SshArchiveLister("tootie").list_folder("/mnt/Billy Strings")

        assert names == ["06_01_25 A", "06_02_25 B"]
        command = mock_run.call_args.args[0]
        assert command == ["ssh", "tootie", "ls", "-1", "'/mnt/Billy Strings'"]

    @patch("archive_guard.core.listing.subprocess.run")
    def test_ssh_failure_is_empty(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(
            args=[], returncode=2, stdout="", stderr="No such file or directory"
        )

        assert SshArchiveLister("tootie").list_folder("/missing") == []

    @patch("archive_guard.core.listing.subprocess.run")
    def test_ssh_timeout_is_empty(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="ssh", timeout=60)

        assert SshArchiveLister("tootie").list_folder("/slow") == []
