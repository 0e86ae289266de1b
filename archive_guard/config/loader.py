"""
Configuration management and loading.

Handles API safety limits, file locations and the monitored artist list.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml


@dataclass(frozen=True)
class LimitsConfig:
    """Admission ceilings and circuit breaker thresholds."""
    max_requests_per_minute: int = 30
    max_requests_per_hour: int = 500
    max_requests_per_day: int = 5000
    max_consecutive_errors: int = 5
    breaker_cooldown_seconds: float = 300.0

    def __post_init__(self):
        """Validate limits are positive."""
        for name in ("max_requests_per_minute", "max_requests_per_hour",
                     "max_requests_per_day", "max_consecutive_errors"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.breaker_cooldown_seconds < 0:
            raise ValueError("breaker_cooldown_seconds must be >= 0")


@dataclass(frozen=True)
class RetryConfig:
    """Retry schedule for transport failures.

    The delay before retry ``n`` is ``delay_seconds * n``.
    """
    delay_seconds: float = 2.0
    max_attempts: int = 3
    timeout_seconds: float = 30.0

    def __post_init__(self):
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")


@dataclass(frozen=True)
class PathsConfig:
    """Locations of persisted state and the emergency stop marker."""
    state_file: str = "data/api_stats.json"
    log_directory: str = "logs/api_logs"
    emergency_stop_file: str = "configs/STOP_API"
    catalog_cache_file: str = "data/catalog_cache.json"
    archive_state_file: str = "data/shows.json"


@dataclass(frozen=True)
class CatalogConfig:
    """Catalog cache staleness policy."""
    max_age_hours: float = 24.0

    def __post_init__(self):
        if self.max_age_hours <= 0:
            raise ValueError("max_age_hours must be > 0")


@dataclass(frozen=True)
class ArchiveConfig:
    """Where archived show folders live.

    With ``ssh_host`` unset the archive folders are listed locally.
    """
    ssh_host: Optional[str] = None


@dataclass(frozen=True)
class GuardConfig:
    """Complete application configuration."""
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    emergency_stop: bool = True


@dataclass(frozen=True)
class MonitoredArtist:
    """An artist whose catalog is reconciled against the archive."""
    id: int
    artist: str
    monitor: bool
    artist_folder: str

    def __post_init__(self):
        if not self.artist or not self.artist.strip():
            raise ValueError("artist name is required and cannot be empty")


@dataclass(frozen=True)
class MonitorConfig:
    """The monitored artist list."""
    artists: Tuple[MonitoredArtist, ...] = ()

    @property
    def monitored(self) -> List[MonitoredArtist]:
        """Artists with monitoring switched on, in file order."""
        return [artist for artist in self.artists if artist.monitor]


# Section name -> (dataclass, {key: accepted python types})
_SECTIONS = {
    "limits": (LimitsConfig, {
        "max_requests_per_minute": (int,),
        "max_requests_per_hour": (int,),
        "max_requests_per_day": (int,),
        "max_consecutive_errors": (int,),
        "breaker_cooldown_seconds": (int, float),
    }),
    "retry": (RetryConfig, {
        "delay_seconds": (int, float),
        "max_attempts": (int,),
        "timeout_seconds": (int, float),
    }),
    "paths": (PathsConfig, {
        "state_file": (str,),
        "log_directory": (str,),
        "emergency_stop_file": (str,),
        "catalog_cache_file": (str,),
        "archive_state_file": (str,),
    }),
    "catalog": (CatalogConfig, {
        "max_age_hours": (int, float),
    }),
    "archive": (ArchiveConfig, {
        "ssh_host": (str, type(None)),
    }),
}


def load_config(path: Optional[str] = None) -> GuardConfig:
    """Load and validate application configuration from a YAML file.

    Every section is optional; anything not given falls back to its default.
    Unknown keys are rejected so a typo cannot silently loosen a limit.

    Args:
        path: Path to YAML configuration file, or None for pure defaults

    Returns:
        Validated GuardConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return GuardConfig()

    raw_config = _read_yaml(path)
    if raw_config is None:
        return GuardConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = set(_SECTIONS) | {"emergency_stop"}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections: Dict[str, Any] = {}
    for section_name, (section_cls, schema) in _SECTIONS.items():
        if section_name in raw_config:
            sections[section_name] = _parse_section(
                raw_config[section_name], section_name, section_cls, schema
            )

    emergency_stop = raw_config.get("emergency_stop", True)
    if not isinstance(emergency_stop, bool):
        raise ValueError("'emergency_stop' must be a boolean")

    return GuardConfig(emergency_stop=emergency_stop, **sections)


def load_monitor_config(path: str) -> MonitorConfig:
    """Load the monitored artist list.

    Expected shape::

        artists:
          - id: 62
            artist: Billy Strings
            monitor: true
            artist_folder: /mnt/archive/Billy Strings

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    raw_config = _read_yaml(path)
    if not raw_config:
        return MonitorConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Monitor configuration must be a mapping")

    unknown_keys = set(raw_config.keys()) - {"artists"}
    if unknown_keys:
        raise ValueError(f"Unknown monitor configuration keys: {unknown_keys}")

    artists_data = raw_config.get("artists") or []
    if not isinstance(artists_data, list):
        raise ValueError("'artists' must be a list")

    artists = []
    allowed_keys = {"id", "artist", "monitor", "artist_folder"}
    for index, entry in enumerate(artists_data):
        where = f"artists[{index}]"
        if not isinstance(entry, dict):
            raise ValueError(f"{where} must be a dictionary")
        unknown = set(entry.keys()) - allowed_keys
        if unknown:
            raise ValueError(f"Unknown keys in {where}: {unknown}")
        if "artist" not in entry:
            raise ValueError(f"Missing required 'artist' in {where}")

        artist_id = entry.get("id", 0)
        if isinstance(artist_id, bool) or not isinstance(artist_id, int):
            raise ValueError(f"'id' in {where} must be an integer")
        monitor = entry.get("monitor", True)
        if not isinstance(monitor, bool):
            raise ValueError(f"'monitor' in {where} must be a boolean")
        folder = entry.get("artist_folder", "")
        if not isinstance(folder, str):
            raise ValueError(f"'artist_folder' in {where} must be a string")

        artists.append(MonitoredArtist(
            id=artist_id,
            artist=str(entry["artist"]),
            monitor=monitor,
            artist_folder=folder,
        ))

    return MonitorConfig(artists=tuple(artists))


def _read_yaml(path: str) -> Any:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")


def _parse_section(data: Any, path: str, section_cls: type, schema: Dict[str, tuple]):
    """Parse and validate one configuration section.

    Args:
        data: Raw section data
        path: Section name for error messages
        section_cls: Dataclass to build
        schema: Accepted keys and their types

    Returns:
        Validated section dataclass

    Raises:
        ValueError: If the section is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    unknown_keys = set(data.keys()) - set(schema)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    values = {}
    for key, value in data.items():
        accepted = schema[key]
        if isinstance(value, bool) or not isinstance(value, accepted):
            names = " or ".join("null" if t is type(None) else t.__name__ for t in accepted)
            raise ValueError(f"'{key}' in {path} must be {names}")
        values[key] = float(value) if float in accepted and value is not None else value

    return section_cls(**values)
