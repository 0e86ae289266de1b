"""
Unit tests for configuration loading and validation.

Tests strict validation of the guard settings and the monitored artist list.
"""

import os
import shutil
import tempfile

import pytest
import yaml

from archive_guard.config.loader import (
    GuardConfig,
    LimitsConfig,
    RetryConfig,
    load_config,
    load_monitor_config,
)


class TestConfigLoading:
    """Test guard configuration loading and validation."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_no_path_gives_defaults(self):
        config = load_config(None)

        assert config == GuardConfig()
        assert config.limits.max_requests_per_minute == 30
        assert config.limits.max_requests_per_hour == 500
        assert config.limits.max_requests_per_day == 5000
        assert config.limits.max_consecutive_errors == 5
        assert config.retry.max_attempts == 3
        assert config.retry.delay_seconds == 2.0
        assert config.paths.emergency_stop_file == "configs/STOP_API"
        assert config.catalog.max_age_hours == 24.0
        assert config.emergency_stop is True

    def test_valid_config_loads_correctly(self):
        config_path = self._write_config({
            "limits": {"max_requests_per_minute": 10, "breaker_cooldown_seconds": 60},
            "retry": {"delay_seconds": 0.5, "max_attempts": 5},
            "paths": {"state_file": "/tmp/stats.json"},
            "catalog": {"max_age_hours": 12},
            "archive": {"ssh_host": "tootie"},
            "emergency_stop": False,
        })

        config = load_config(config_path)

        assert config.limits.max_requests_per_minute == 10
        assert config.limits.max_requests_per_hour == 500
        assert config.limits.breaker_cooldown_seconds == 60.0
        assert isinstance(config.limits.breaker_cooldown_seconds, float)
        assert config.retry.delay_seconds == 0.5
        assert config.retry.max_attempts == 5
        assert config.paths.state_file == "/tmp/stats.json"
        assert config.paths.log_directory == "logs/api_logs"
        assert config.catalog.max_age_hours == 12.0
        assert config.archive.ssh_host == "tootie"
        assert config.emergency_stop is False

    def test_empty_file_gives_defaults(self):
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        open(config_path, "w").close()

        assert load_config(config_path) == GuardConfig()

    def test_missing_file_raises(self):
        with pytest.raises(FileNotFoundError):
            load_config(os.path.join(self.temp_dir, "nope.yaml"))

    def test_unknown_top_level_key_rejected(self):
        config_path = self._write_config({"limitz": {}})

        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_config(config_path)

    def test_unknown_section_key_rejected(self):
        config_path = self._write_config({"limits": {"max_requests_per_week": 10}})

        with pytest.raises(ValueError, match="Unknown keys in limits"):
            load_config(config_path)

    def test_wrong_type_rejected(self):
        config_path = self._write_config({"limits": {"max_requests_per_minute": "thirty"}})

        with pytest.raises(ValueError, match="max_requests_per_minute"):
            load_config(config_path)

    def test_bool_is_not_an_int(self):
        config_path = self._write_config({"retry": {"max_attempts": True}})

        with pytest.raises(ValueError, match="max_attempts"):
            load_config(config_path)

    def test_non_positive_limit_rejected(self):
        config_path = self._write_config({"limits": {"max_requests_per_day": 0}})

        with pytest.raises(ValueError, match="max_requests_per_day must be > 0"):
            load_config(config_path)

    def test_emergency_stop_must_be_bool(self):
        config_path = self._write_config({"emergency_stop": "yes"})

        with pytest.raises(ValueError, match="emergency_stop"):
            load_config(config_path)

    def test_section_must_be_mapping(self):
        config_path = self._write_config({"retry": [1, 2, 3]})

        with pytest.raises(ValueError, match="'retry' must be a dictionary"):
            load_config(config_path)

    def test_dataclass_validation(self):
        with pytest.raises(ValueError):
            LimitsConfig(max_consecutive_errors=-1)
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)
        with pytest.raises(ValueError):
            RetryConfig(timeout_seconds=0)


class TestMonitorConfigLoading:
    """Test monitored artist list loading."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data) -> str:
        config_path = os.path.join(self.temp_dir, "monitor.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_loads_artists_in_order(self):
        config_path = self._write_config({"artists": [
            {"id": 62, "artist": "Billy Strings", "monitor": True, "artist_folder": "/a/Billy Strings"},
            {"id": 1045, "artist": "Goose", "monitor": False, "artist_folder": "/a/Goose"},
            {"id": 9, "artist": "Phish", "artist_folder": "/a/Phish"},
        ]})

        config = load_monitor_config(config_path)

        assert [a.artist for a in config.artists] == ["Billy Strings", "Goose", "Phish"]
        assert [a.artist for a in config.monitored] == ["Billy Strings", "Phish"]
        assert config.artists[0].id == 62
        assert config.artists[0].artist_folder == "/a/Billy Strings"

    def test_empty_file_has_no_artists(self):
        config_path = os.path.join(self.temp_dir, "monitor.yaml")
        open(config_path, "w").close()

        assert load_monitor_config(config_path).artists == ()

    def test_missing_artist_name_rejected(self):
        config_path = self._write_config({"artists": [{"id": 1, "monitor": True}]})

        with pytest.raises(ValueError, match="Missing required 'artist'"):
            load_monitor_config(config_path)

    def test_blank_artist_name_rejected(self):
        config_path = self._write_config({"artists": [{"id": 1, "artist": "   "}]})

        with pytest.raises(ValueError, match="cannot be empty"):
            load_monitor_config(config_path)

    def test_unknown_artist_key_rejected(self):
        config_path = self._write_config({"artists": [{"artist": "Goose", "genre": "jam"}]})

        with pytest.raises(ValueError, match="Unknown keys in artists\\[0\\]"):
            load_monitor_config(config_path)

    def test_monitor_must_be_bool(self):
        config_path = self._write_config({"artists": [{"artist": "Goose", "monitor": "yes"}]})

        with pytest.raises(ValueError, match="'monitor'"):
            load_monitor_config(config_path)

    def test_artists_must_be_list(self):
        config_path = self._write_config({"artists": {"artist": "Goose"}})

        with pytest.raises(ValueError, match="'artists' must be a list"):
            load_monitor_config(config_path)
