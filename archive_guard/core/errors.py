"""
Exception hierarchy shared by the client, ledger and catalog layers.

Admission denials and protocol failures are never retried; transport
failures are retried by the client before surfacing as RetriesExhausted.
"""

from enum import Enum
from typing import Optional


class ArchiveGuardError(Exception):
    """Base class for all expected failures."""


class DenialReason(Enum):
    """Why the ledger refused to admit a request."""
    STOPPED = "stopped"
    BREAKER_OPEN = "breaker_open"
    RATE_LIMITED_MINUTE = "rate_limited_minute"
    RATE_LIMITED_HOUR = "rate_limited_hour"
    RATE_LIMITED_DAY = "rate_limited_day"

    @property
    def is_rate_limit(self) -> bool:
        return self in (
            DenialReason.RATE_LIMITED_MINUTE,
            DenialReason.RATE_LIMITED_HOUR,
            DenialReason.RATE_LIMITED_DAY,
        )


class AdmissionDenied(ArchiveGuardError):
    """Raised when the ledger refuses a request before any network I/O."""
    def __init__(self, message: str, reason: DenialReason, endpoint: Optional[str] = None):
        super().__init__(message)
        self.reason = reason
        self.endpoint = endpoint


class TransportError(ArchiveGuardError):
    """Network error or non-2xx response."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RetriesExhausted(TransportError):
    """Every allowed attempt failed with a transport error."""
    def __init__(self, endpoint: str, attempts: int, last_error: str,
                 status_code: Optional[int] = None):
        super().__init__(
            f"request to {endpoint} failed after {attempts} attempts: {last_error}",
            status_code=status_code,
        )
        self.endpoint = endpoint
        self.attempts = attempts
        self.last_error = last_error


class ProtocolError(ArchiveGuardError):
    """Response arrived but could not be understood (bad JSON, missing fields)."""


class AuthenticationError(ProtocolError):
    """Login handshake completed without yielding a token, or no token is held."""


class CatalogUnavailable(ArchiveGuardError):
    """No catalog snapshot could be produced or loaded."""
