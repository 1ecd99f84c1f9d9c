"""
Page fetcher.

Retrieves third-party listing pages with a bounded total timeout and retry.
Only HTML is accepted; anything else is a hard error.
"""

import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

USER_AGENT = "DarListingBot/1.0 (+https://dar.mt/bot)"
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_DELAY_SECONDS = 1.0
HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
CHUNK_SIZE = 16 * 1024


# =============================================================================
# Result & Errors
# =============================================================================

@dataclass(frozen=True)
class FetchResult:
    html: str
    final_url: str
    status_code: int
    content_type: str


class FetchError(Exception):
    """Terminal fetch failure after retries were exhausted."""

    def __init__(self, message: str, url: str, attempts: int = 1,
                 last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.url = url
        self.attempts = attempts
        self.last_error = last_error


class UnexpectedContentTypeError(FetchError):
    """The server answered successfully with something other than HTML."""


class _DeadlineExceeded(Exception):
    pass


# =============================================================================
# Fetcher
# =============================================================================

class PageFetcher:
    """
    HTTP fetcher for listing pages.

    Features:
    - Custom User-Agent for identification
    - Retries with delay scaled by attempt number
    - Total deadline per attempt, enforced by a watchdog that aborts the read
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._session = session or requests.Session()
        self._session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        })

    def fetch(
        self,
        url: str,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ) -> FetchResult:
        """
        Fetch a page, retrying on failure.

        Args:
            url: Page URL.
            timeout: Total seconds allowed per attempt.
            max_retries: Retries after the first attempt.
            retry_delay: Base delay; attempt n waits retry_delay * (n + 1).

        Returns:
            FetchResult for the first successful attempt.

        Raises:
            UnexpectedContentTypeError: On a non-HTML response (not retried).
            FetchError: When every attempt failed.
        """
        timeout = self.timeout if timeout is None else timeout
        max_retries = self.max_retries if max_retries is None else max_retries
        retry_delay = self.retry_delay if retry_delay is None else retry_delay

        last_error: Optional[BaseException] = None
        for attempt in range(max_retries + 1):
            try:
                return self._fetch_once(url, timeout)
            except UnexpectedContentTypeError:
                raise
            except (requests.RequestException, _DeadlineExceeded) as e:
                last_error = e
                logger.warning("Fetch attempt %d failed for %s: %s", attempt, url, e)

            if attempt < max_retries:
                self._sleep(retry_delay * (attempt + 1))

        raise FetchError(
            f"Failed to fetch {url} after {max_retries + 1} attempts: {last_error}",
            url=url,
            attempts=max_retries + 1,
            last_error=last_error,
        )

    def _fetch_once(self, url: str, timeout: float) -> FetchResult:
        deadline = time.monotonic() + timeout
        response = self._session.get(
            url,
            timeout=(timeout, timeout),
            allow_redirects=True,
            stream=True,
        )
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            response.close()
            raise _DeadlineExceeded("Timed out waiting for response headers")

        # Blocking socket reads never see the deadline, so a timer aborts them
        expired = threading.Event()
        watchdog = threading.Timer(remaining, self._abort, args=(response, expired))
        watchdog.daemon = True
        watchdog.start()
        try:
            response.raise_for_status()

            content_type = response.headers.get("Content-Type", "")
            if not any(t in content_type.lower() for t in HTML_CONTENT_TYPES):
                raise UnexpectedContentTypeError(
                    f"Unexpected content type: {content_type or 'none'}",
                    url=url,
                )

            try:
                body = self._read_body(response, deadline)
            except Exception as e:
                if expired.is_set():
                    raise _DeadlineExceeded("Timed out reading response body") from e
                raise
            if expired.is_set():
                raise _DeadlineExceeded("Timed out reading response body")
            # requests assumes ISO-8859-1 for text/* without a charset
            encoding = response.encoding if "charset" in content_type.lower() else "utf-8"
            return FetchResult(
                html=body.decode(encoding, errors="replace"),
                final_url=response.url or url,
                status_code=response.status_code,
                content_type=content_type,
            )
        finally:
            watchdog.cancel()
            response.close()

    @staticmethod
    def _abort(response: requests.Response, expired: threading.Event) -> None:
        expired.set()
        logger.debug("Deadline reached, aborting %s", response.url)
        # shutdown wakes a reader blocked in recv; close() alone would wait for it
        connection = getattr(getattr(response, "raw", None), "connection", None)
        sock = getattr(connection, "sock", None)
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError as e:
                logger.debug("Socket already closed: %s", e)
        response.close()

    @staticmethod
    def _read_body(response: requests.Response, deadline: float) -> bytes:
        chunks = []
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            if time.monotonic() > deadline:
                raise _DeadlineExceeded("Timed out reading response body")
            if chunk:
                chunks.append(chunk)
        return b"".join(chunks)

    def close(self) -> None:
        """Close the session."""
        self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
