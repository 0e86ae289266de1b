"""
Data models for storage layer.

Defines the persisted ledger state, request log entries, catalog records
and per-artist archive state.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple


@dataclass
class EndpointStats:
    """Per-endpoint request tally. Informational only."""
    count: int = 0
    errors: int = 0


@dataclass
class LedgerState:
    """Mutable usage accounting persisted between runs.

    Counters are fixed buckets keyed by the stored date/hour/minute markers,
    not sliding windows.
    """
    requests_today: int = 0
    requests_this_hour: int = 0
    requests_this_minute: int = 0
    current_date: str = ""
    current_hour: int = 0
    current_minute: int = 0
    last_request_time: Optional[str] = None
    consecutive_errors: int = 0
    circuit_breaker_open: bool = False
    endpoints: Dict[str, EndpointStats] = field(default_factory=dict)

    @classmethod
    def cold_start(cls, now: datetime) -> "LedgerState":
        """Zeroed state with window markers set to ``now``."""
        return cls(
            current_date=now.strftime("%Y-%m-%d"),
            current_hour=now.hour,
            current_minute=now.minute,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LedgerState":
        """Build state from a persisted document.

        Raises:
            ValueError: If a field has the wrong type
        """
        if not isinstance(data, Mapping):
            raise ValueError("ledger state must be a mapping")

        endpoints_data = data.get("endpoints") or {}
        if not isinstance(endpoints_data, Mapping):
            raise ValueError("'endpoints' must be a mapping")

        endpoints = {}
        for name, stats in endpoints_data.items():
            if not isinstance(stats, Mapping):
                raise ValueError(f"endpoint stats for {name!r} must be a mapping")
            endpoints[str(name)] = EndpointStats(
                count=_as_int(stats.get("count", 0), f"endpoints.{name}.count"),
                errors=_as_int(stats.get("errors", 0), f"endpoints.{name}.errors"),
            )

        last_request_time = data.get("last_request_time")
        if last_request_time is not None and not isinstance(last_request_time, str):
            raise ValueError("'last_request_time' must be a string")

        breaker = data.get("circuit_breaker_open", False)
        if not isinstance(breaker, bool):
            raise ValueError("'circuit_breaker_open' must be a boolean")

        return cls(
            requests_today=_as_int(data.get("requests_today", 0), "requests_today"),
            requests_this_hour=_as_int(data.get("requests_this_hour", 0), "requests_this_hour"),
            requests_this_minute=_as_int(data.get("requests_this_minute", 0), "requests_this_minute"),
            current_date=str(data.get("current_date", "")),
            current_hour=_as_int(data.get("current_hour", 0), "current_hour"),
            current_minute=_as_int(data.get("current_minute", 0), "current_minute"),
            last_request_time=last_request_time,
            consecutive_errors=_as_int(data.get("consecutive_errors", 0), "consecutive_errors"),
            circuit_breaker_open=breaker,
            endpoints=endpoints,
        )


def _as_int(value: Any, name: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{name}' must be an integer")
    return value


@dataclass(frozen=True)
class RequestLogEntry:
    """One line of the append-only daily request log."""
    timestamp: str
    endpoint: str
    method: str
    response_code: int
    response_time_ms: int
    attempt: int = 1
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data["error"] is None:
            del data["error"]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RequestLogEntry":
        return cls(
            timestamp=str(data["timestamp"]),
            endpoint=str(data["endpoint"]),
            method=str(data.get("method", "GET")),
            response_code=int(data.get("response_code", 0)),
            response_time_ms=int(data.get("response_time_ms", 0)),
            attempt=int(data.get("attempt", 1)),
            error=data.get("error"),
        )

    @property
    def is_error(self) -> bool:
        return bool(self.error) or self.response_code >= 400


# Upstream camelCase key -> dataclass field
_CATALOG_WIRE_KEYS = {
    "containerID": "container_id",
    "artistName": "artist_name",
    "venueName": "venue_name",
    "venueCity": "venue_city",
    "venueState": "venue_state",
    "performanceDate": "performance_date",
    "performanceDateShort": "performance_date_short",
    "performanceDateFormatted": "performance_date_formatted",
    "containerInfo": "container_info",
    "availabilityType": "availability_type",
    "availabilityTypeStr": "availability_type_str",
    "activeState": "active_state",
}


@dataclass(frozen=True)
class CatalogEntry:
    """A single upstream show. Replaced wholesale on refresh, never patched."""
    container_id: int
    artist_name: str
    venue_name: str = ""
    venue_city: str = ""
    venue_state: str = ""
    performance_date: str = ""
    performance_date_short: str = ""
    performance_date_formatted: str = ""
    container_info: str = ""
    availability_type: int = 0
    availability_type_str: str = ""
    active_state: str = ""

    @classmethod
    def from_wire(cls, record: Mapping[str, Any]) -> "CatalogEntry":
        """Build an entry from an upstream container record.

        Raises:
            ValueError: If the record has no usable container identifier
        """
        if not isinstance(record, Mapping):
            raise ValueError("catalog record must be an object")
        raw_id = record.get("containerID")
        if isinstance(raw_id, bool) or not isinstance(raw_id, (int, str)):
            raise ValueError(f"catalog record has invalid containerID: {raw_id!r}")
        try:
            container_id = int(raw_id)
        except ValueError:
            raise ValueError(f"catalog record has invalid containerID: {raw_id!r}")

        kwargs: Dict[str, Any] = {"container_id": container_id}
        for wire_key, attr in _CATALOG_WIRE_KEYS.items():
            if attr == "container_id":
                continue
            value = record.get(wire_key)
            if value is None:
                continue
            if attr == "availability_type":
                try:
                    kwargs[attr] = int(value)
                except (TypeError, ValueError):
                    continue
            else:
                kwargs[attr] = str(value)
        kwargs.setdefault("artist_name", "")
        return cls(**kwargs)

    def to_wire(self) -> Dict[str, Any]:
        return {wire_key: getattr(self, attr) for wire_key, attr in _CATALOG_WIRE_KEYS.items()}


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable result of one catalog refresh plus its derived indices."""
    last_update: str
    total_shows: int
    total_artists: int
    all_shows: Tuple[CatalogEntry, ...]
    shows_by_artist: Mapping[str, Tuple[CatalogEntry, ...]]
    shows_by_id: Mapping[int, CatalogEntry] = field(default_factory=dict, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_update": self.last_update,
            "total_shows": self.total_shows,
            "total_artists": self.total_artists,
            "shows_by_artist": {
                artist: [show.to_wire() for show in shows]
                for artist, shows in self.shows_by_artist.items()
            },
            "all_shows": [show.to_wire() for show in self.all_shows],
        }


@dataclass
class ArchiveState:
    """Per-artist archive bookkeeping.

    ``missing`` is a snapshot of ``available - downloaded`` at the time it
    was computed and goes stale as soon as either side changes.
    """
    artist_id: int = 0
    downloaded: List[int] = field(default_factory=list)
    available: List[int] = field(default_factory=list)
    missing: List[int] = field(default_factory=list)


@dataclass
class ArchiveStateDocument:
    """All per-artist archive state plus catalog metadata."""
    last_catalog_update: str = "unknown"
    catalog_total_shows: int = 0
    catalog_total_artists: int = 0
    last_analysis_time: str = "unknown"
    artists: Dict[str, ArchiveState] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ArchiveStateDocument":
        if not isinstance(data, Mapping):
            raise ValueError("archive state must be a mapping")
        artists_data = data.get("artists") or {}
        if not isinstance(artists_data, Mapping):
            raise ValueError("'artists' must be a mapping")

        artists = {}
        for name, state in artists_data.items():
            if not isinstance(state, Mapping):
                raise ValueError(f"archive state for {name!r} must be a mapping")
            artists[str(name)] = ArchiveState(
                artist_id=int(state.get("artist_id") or 0),
                downloaded=[int(i) for i in state.get("downloaded") or []],
                available=[int(i) for i in state.get("available") or []],
                missing=[int(i) for i in state.get("missing") or []],
            )

        return cls(
            last_catalog_update=str(data.get("last_catalog_update") or "unknown"),
            catalog_total_shows=int(data.get("catalog_total_shows") or 0),
            catalog_total_artists=int(data.get("catalog_total_artists") or 0),
            last_analysis_time=str(data.get("last_analysis_time") or "unknown"),
            artists=artists,
        )
