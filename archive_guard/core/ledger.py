"""
Durable usage accounting and admission control.

Admission checks run in a fixed order:
1. Emergency stop - an operator-created marker file blocks everything
2. Circuit breaker - opened by consecutive failures, closed lazily once the
   cooldown since the last recorded request has elapsed
3. Rate limits - fixed minute, hour and day buckets

Every mutation rewrites the whole state through a StateStore. If that write
fails the ledger keeps working from memory for the rest of the run.
"""

import copy
import logging
import sqlite3
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional, Tuple

from ..config.loader import GuardConfig, LimitsConfig
from ..storage.models import EndpointStats, LedgerState
from ..storage.state_store import JsonFileStateStore, StateStore
from .errors import AdmissionDenied, DenialReason

logger = logging.getLogger(__name__)


class UsageLedger:
    """Request counters and circuit breaker state shared by governed clients.

    Construct once at startup, hand the same instance to every client that
    talks to the same upstream, and ``close()`` it at shutdown. ``lock`` is
    re-entrant so a client can hold it across admission, the request and
    outcome recording while the ledger's own methods re-acquire it.
    """

    def __init__(
        self,
        limits: LimitsConfig,
        store: StateStore,
        emergency_stop_file: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the ledger, loading any persisted state.

        Args:
            limits: Admission ceilings and breaker thresholds
            store: Where the state document is persisted
            emergency_stop_file: Marker file path; None disables the check
            clock: Source of the current local time
        """
        self.limits = limits
        self.store = store
        self.emergency_stop_file = Path(emergency_stop_file) if emergency_stop_file else None
        self.lock = threading.RLock()
        self._clock = clock
        self._state = self._load_state()

    @classmethod
    def from_config(cls, config: GuardConfig) -> "UsageLedger":
        """Ledger persisted to the configured JSON state file."""
        return cls(
            limits=config.limits,
            store=JsonFileStateStore(config.paths.state_file),
            emergency_stop_file=config.paths.emergency_stop_file if config.emergency_stop else None,
        )

    def _load_state(self) -> LedgerState:
        """Load persisted state, treating anything unreadable as a cold start."""
        try:
            data = self.store.load()
        except (OSError, ValueError, sqlite3.Error) as e:
            logger.warning(f"Ledger state unreadable, starting cold: {e}")
            return LedgerState.cold_start(self._clock())

        if data is None:
            return LedgerState.cold_start(self._clock())

        try:
            return LedgerState.from_dict(data)
        except ValueError as e:
            logger.warning(f"Ledger state malformed, starting cold: {e}")
            return LedgerState.cold_start(self._clock())

    def _save(self) -> None:
        try:
            self.store.save_atomic(self._state.to_dict())
        except (OSError, sqlite3.Error) as e:
            logger.error(f"Failed to persist ledger state, continuing in memory: {e}")

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def emergency_stop_active(self) -> bool:
        return self.emergency_stop_file is not None and self.emergency_stop_file.exists()

    def check(self, endpoint: str) -> Optional[DenialReason]:
        """Run the admission checks without raising.

        Window rollover and breaker recovery still take effect.

        Returns:
            None if a request may proceed, otherwise the denial reason
        """
        with self.lock:
            reason, _ = self._evaluate(endpoint)
            return reason

    def admit(self, endpoint: str) -> None:
        """Admit a request to ``endpoint`` or raise.

        Raises:
            AdmissionDenied: With a reason distinguishing emergency stop,
                open breaker and which rate window is exhausted
        """
        with self.lock:
            reason, message = self._evaluate(endpoint)
            if reason is not None:
                logger.warning(f"Request to {endpoint} denied: {message}")
                raise AdmissionDenied(message, reason, endpoint)

    def _evaluate(self, endpoint: str) -> Tuple[Optional[DenialReason], str]:
        now = self._clock()
        state = self._state
        changed = False

        if self.emergency_stop_active():
            return DenialReason.STOPPED, "API calls stopped by emergency stop file"

        if state.circuit_breaker_open:
            if self._cooldown_elapsed(now):
                state.circuit_breaker_open = False
                state.consecutive_errors = 0
                changed = True
                logger.info("Circuit breaker reset - attempting recovery")
            else:
                return DenialReason.BREAKER_OPEN, "circuit breaker open - too many consecutive errors"

        changed = self._roll_windows(now) or changed
        if changed:
            self._save()

        limits = self.limits
        if state.requests_this_minute >= limits.max_requests_per_minute:
            return DenialReason.RATE_LIMITED_MINUTE, (
                f"rate limit exceeded: {state.requests_this_minute} requests this minute "
                f"(max: {limits.max_requests_per_minute})"
            )
        if state.requests_this_hour >= limits.max_requests_per_hour:
            return DenialReason.RATE_LIMITED_HOUR, (
                f"rate limit exceeded: {state.requests_this_hour} requests this hour "
                f"(max: {limits.max_requests_per_hour})"
            )
        if state.requests_today >= limits.max_requests_per_day:
            return DenialReason.RATE_LIMITED_DAY, (
                f"rate limit exceeded: {state.requests_today} requests today "
                f"(max: {limits.max_requests_per_day})"
            )
        return None, ""

    def _cooldown_elapsed(self, now: datetime) -> bool:
        last = self._state.last_request_time
        if not last:
            return True
        try:
            last_request = datetime.fromisoformat(last)
        except ValueError:
            logger.warning(f"Unparseable last_request_time {last!r}, allowing recovery")
            return True
        return now - last_request >= timedelta(seconds=self.limits.breaker_cooldown_seconds)

    def _roll_windows(self, now: datetime) -> bool:
        """Reset buckets whose window has passed. A coarser rollover resets the finer ones."""
        state = self._state
        current_date = now.strftime("%Y-%m-%d")

        if state.current_date != current_date:
            state.requests_today = 0
            state.requests_this_hour = 0
            state.requests_this_minute = 0
        elif state.current_hour != now.hour:
            state.requests_this_hour = 0
            state.requests_this_minute = 0
        elif state.current_minute != now.minute:
            state.requests_this_minute = 0
        else:
            return False

        state.current_date = current_date
        state.current_hour = now.hour
        state.current_minute = now.minute
        return True

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_attempt(self, endpoint: str) -> None:
        """Count an admitted request. Call before the network I/O starts."""
        with self.lock:
            now = self._clock()
            self._roll_windows(now)
            state = self._state
            state.requests_today += 1
            state.requests_this_hour += 1
            state.requests_this_minute += 1
            state.last_request_time = now.isoformat(timespec="seconds")
            self._save()

    def record_outcome(self, endpoint: str, success: bool, http_status: Optional[int] = None) -> None:
        """Record how a request finished and update the circuit breaker."""
        with self.lock:
            state = self._state
            stats = state.endpoints.setdefault(endpoint, EndpointStats())

            if success:
                state.consecutive_errors = 0
                state.circuit_breaker_open = False
                stats.count += 1
            else:
                state.consecutive_errors += 1
                stats.errors += 1
                logger.debug(
                    f"Failure on {endpoint} (status {http_status}), "
                    f"{state.consecutive_errors} consecutive"
                )
                if (not state.circuit_breaker_open and
                        state.consecutive_errors >= self.limits.max_consecutive_errors):
                    state.circuit_breaker_open = True
                    logger.error(
                        f"Circuit breaker opened after {state.consecutive_errors} consecutive errors"
                    )
            self._save()

    # ------------------------------------------------------------------
    # Reporting and operator controls
    # ------------------------------------------------------------------

    def snapshot(self) -> LedgerState:
        """Independent copy of the current state for reporting."""
        with self.lock:
            return copy.deepcopy(self._state)

    def reset(self) -> None:
        """Zero all counters, close the breaker and forget endpoint stats."""
        with self.lock:
            self._state = LedgerState.cold_start(self._clock())
            self._save()
            logger.info("API statistics reset")

    def engage_emergency_stop(self) -> Path:
        """Create the emergency stop marker file.

        Raises:
            ValueError: If no marker path is configured
        """
        if self.emergency_stop_file is None:
            raise ValueError("emergency stop is disabled in configuration")
        self.emergency_stop_file.parent.mkdir(parents=True, exist_ok=True)
        self.emergency_stop_file.write_text(
            f"Emergency stop enabled at: {self._clock().isoformat(timespec='seconds')}\n",
            encoding="utf-8",
        )
        logger.warning(f"Emergency stop engaged: {self.emergency_stop_file}")
        return self.emergency_stop_file

    def release_emergency_stop(self) -> bool:
        """Remove the emergency stop marker.

        Returns:
            False if no stop was in effect
        """
        if not self.emergency_stop_active():
            return False
        self.emergency_stop_file.unlink()
        logger.info("Emergency stop released")
        return True

    def close(self) -> None:
        """Flush state one last time."""
        with self.lock:
            self._save()

    def __enter__(self) -> "UsageLedger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
