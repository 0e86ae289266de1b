"""
Governed upstream client.

Every outbound call goes through the shared UsageLedger for admission and
accounting, is retried on transport failure with a linear backoff
(``delay * attempt``) and leaves one line per attempt in the request log.
"""

import json
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote, quote_plus

import requests

from ..config.loader import GuardConfig, RetryConfig
from ..core.errors import AuthenticationError, ProtocolError, RetriesExhausted
from ..core.ledger import UsageLedger
from ..storage.models import RequestLogEntry
from ..storage.request_log import RequestLog

logger = logging.getLogger(__name__)

API_URL = "https://streamapi.nugs.net/api.aspx"
SECURE_API_URL = "https://streamapi.nugs.net/secureapi.aspx"

# Logical endpoint names used for accounting and the request log
ENDPOINT_LOGIN = "user.site.login"
ENDPOINT_LOGIN_SECURE = "user.site.login.secure"
ENDPOINT_ARTISTS = "catalog.artists"
ENDPOINT_ARTIST_SHOWS = "catalog.containersAll"
ENDPOINT_FULL_CATALOG = "catalog.containersAll.full"


class GovernedClient:
    """HTTP client wrapper enforcing admission, retry and request logging.

    Several clients may share one ledger; they then also share its lock, so
    two callers can never both pass a check that only one ceiling unit
    permits.
    """

    def __init__(
        self,
        ledger: UsageLedger,
        request_log: Optional[RequestLog] = None,
        retry: Optional[RetryConfig] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize governed client.

        Args:
            ledger: Shared usage ledger
            request_log: Where per-attempt entries go; None disables it
            retry: Retry schedule and per-attempt timeout
            session: HTTP session (a new one is created if omitted)
            sleep: Backoff sleep function
            clock: Source of log timestamps
        """
        self.ledger = ledger
        self.request_log = request_log
        self.retry = retry or RetryConfig()
        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': 'ArchiveGuard/0.1'})
        self.token: Optional[str] = None
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, config: GuardConfig, ledger: UsageLedger) -> "GovernedClient":
        return cls(
            ledger=ledger,
            request_log=RequestLog(config.paths.log_directory),
            retry=config.retry,
        )

    def fetch(self, url: str, endpoint: str) -> bytes:
        """GET ``url`` under admission control.

        Args:
            url: Full request URL
            endpoint: Logical endpoint name for accounting

        Returns:
            Response body of the first successful attempt

        Raises:
            AdmissionDenied: If the ledger refuses; no network I/O happens
            RetriesExhausted: If every attempt failed
        """
        with self.ledger.lock:
            self.ledger.admit(endpoint)
            self.ledger.record_attempt(endpoint)

            max_attempts = self.retry.max_attempts
            last_error = ""
            last_status: Optional[int] = None

            for attempt in range(1, max_attempts + 1):
                started = time.monotonic()
                try:
                    response = self.session.get(url, timeout=self.retry.timeout_seconds)
                except requests.RequestException as e:
                    last_error = str(e) or e.__class__.__name__
                    last_status = None
                    self._log_attempt(endpoint, 0, started, attempt, last_error)
                else:
                    status = response.status_code
                    if 200 <= status < 300:
                        self._log_attempt(endpoint, status, started, attempt)
                        self.ledger.record_outcome(endpoint, True, status)
                        return response.content
                    last_error = f"HTTP {status}"
                    last_status = status
                    self._log_attempt(endpoint, status, started, attempt, last_error)

                if attempt < max_attempts:
                    backoff = self.retry.delay_seconds * attempt
                    logger.warning(
                        f"Request to {endpoint} failed (attempt {attempt}/{max_attempts}), "
                        f"retrying in {backoff:g}s: {last_error}"
                    )
                    self._sleep(backoff)

            self.ledger.record_outcome(endpoint, False, last_status)
            raise RetriesExhausted(endpoint, max_attempts, last_error, last_status)

    def _log_attempt(self, endpoint: str, status: int, started: float, attempt: int,
                     error: Optional[str] = None) -> None:
        if self.request_log is None:
            return
        self.request_log.append(RequestLogEntry(
            timestamp=self._clock().isoformat(timespec="seconds"),
            endpoint=endpoint,
            method="GET",
            response_code=status,
            response_time_ms=int((time.monotonic() - started) * 1000),
            attempt=attempt,
            error=error,
        ))

    def get_json(self, url: str, endpoint: str) -> Dict[str, Any]:
        """Fetch and decode a JSON object.

        Raises:
            ProtocolError: If the body is not a JSON object
        """
        body = self.fetch(url, endpoint)
        try:
            payload = json.loads(body)
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON from {endpoint}: {e}")
        if not isinstance(payload, dict):
            raise ProtocolError(f"Expected a JSON object from {endpoint}")
        return payload

    def authenticate(self, email: str, password: str) -> str:
        """Two-step login; stores and returns the bearer token.

        The first call establishes a session on the public endpoint, the
        second repeats the credentials against the secure endpoint and
        returns the token inside the ``Response`` envelope.

        Raises:
            AuthenticationError: If the token field is missing
        """
        if not email or not password:
            raise ValueError("email and password are required")

        query = (
            f"method=user.site.login&pw={quote(password, safe='')}"
            f"&username={quote_plus(email)}"
        )
        self.fetch(f"{API_URL}?{query}", ENDPOINT_LOGIN)
        payload = self.get_json(f"{SECURE_API_URL}?{query}", ENDPOINT_LOGIN_SECURE)

        response = payload.get("Response")
        token = response.get("secureAuthenticationString") if isinstance(response, dict) else None
        if not isinstance(token, str) or not token:
            raise AuthenticationError("authentication failed - could not extract token")

        self.token = token
        logger.info("Authenticated with upstream")
        return token

    def get_artist_catalog(self) -> Dict[str, Any]:
        """List of artists known upstream. No authentication needed."""
        return self.get_json(f"{API_URL}?method=catalog.artists", ENDPOINT_ARTISTS)

    def get_artist_shows(self, artist_id: int) -> Dict[str, Any]:
        """All available shows for one artist.

        Raises:
            AuthenticationError: If ``authenticate`` has not succeeded
        """
        if not self.token:
            raise AuthenticationError("not authenticated - call authenticate() first")
        url = (
            f"{API_URL}?method=catalog.containersAll&artistList={int(artist_id)}"
            f"&availableOnly=1&token={quote_plus(self.token)}"
        )
        return self.get_json(url, ENDPOINT_ARTIST_SHOWS)

    def get_full_catalog(self) -> Dict[str, Any]:
        """The complete available catalog. No authentication needed."""
        return self.get_json(
            f"{API_URL}?method=catalog.containersAll&availableOnly=1",
            ENDPOINT_FULL_CATALOG,
        )

    def close(self) -> None:
        self.session.close()
