"""Page fetchers: navigate to a site and report what was observed.

One fetcher instance is created per site check and closed afterwards, so
implementations need not be thread-safe.
"""

import logging
import re
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Protocol

import requests

from .config import MonitorConfig
from .models import FetchResult

logger = logging.getLogger(__name__)

USER_AGENT = "sitewatch/0.1"

# Maximum response body to keep in memory for content checks.
MAX_BODY_SIZE = 1024 * 1024  # 1MB
READ_CHUNK_SIZE = 64 * 1024

_TITLE_RE = re.compile(r"(?is)<title[^>]*>(.*?)</title>")
_SCRIPT_AND_STYLE_RE = re.compile(r"(?is)<(script|style)[^>]*>.*?</\1>")
_HTML_TAG_RE = re.compile(r"(?is)<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")

# Substrings of urllib3/socket error text that identify the failure cause.
_NAME_RESOLUTION_MARKERS = (
    "NameResolutionError",
    "Failed to resolve",
    "Name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "Temporary failure in name resolution",
)
_CONNECTION_REFUSED_MARKERS = ("Connection refused", "ConnectionRefusedError", "actively refused")


class PageFetcher(Protocol):
    """Navigation capability consumed by the monitor."""

    def fetch(self, url: str, timeout_ms: int) -> FetchResult:
        """Navigate to url. Never raises for navigation failures."""
        ...

    def capture_screenshot(self, destination: str) -> bool:
        """Save a screenshot of the last fetched page. Returns success."""
        ...

    def close(self) -> None: ...


def html_to_visible_text(html: str) -> str:
    """Strip scripts, styles and tags, collapsing whitespace."""
    without_scripts = _SCRIPT_AND_STYLE_RE.sub(" ", html)
    without_tags = _HTML_TAG_RE.sub(" ", without_scripts)
    return _WHITESPACE_RE.sub(" ", without_tags).strip()


def extract_title(html: str) -> str:
    match = _TITLE_RE.search(html)
    if not match:
        return ""
    return _WHITESPACE_RE.sub(" ", match.group(1)).strip()


def _connection_error_text(error: Exception, url: str) -> str:
    """Map a requests connection error to a browser-style net:: error."""
    text = str(error)
    if any(marker in text for marker in _NAME_RESOLUTION_MARKERS):
        return f"net::ERR_NAME_NOT_RESOLVED at {url}"
    if any(marker in text for marker in _CONNECTION_REFUSED_MARKERS):
        return f"net::ERR_CONNECTION_REFUSED at {url}"
    return f"net::ERR_CONNECTION_FAILED at {url}"


def _timeout_text(timeout_ms: int) -> str:
    return f"Navigation timeout of {timeout_ms}ms exceeded"


def _request_error(error: requests.exceptions.RequestException, url: str, timeout_ms: int) -> FetchResult:
    """Translate a requests failure into a navigation error."""
    if isinstance(error, requests.exceptions.Timeout):
        return FetchResult(navigation_error=_timeout_text(timeout_ms))
    if isinstance(error, requests.exceptions.SSLError):
        return FetchResult(navigation_error=f"net::ERR_SSL_PROTOCOL_ERROR at {url}: {error}")
    if isinstance(error, requests.exceptions.ConnectionError):
        return FetchResult(navigation_error=_connection_error_text(error, url))
    if isinstance(error, requests.exceptions.TooManyRedirects):
        return FetchResult(navigation_error=f"net::ERR_TOO_MANY_REDIRECTS at {url}")
    return FetchResult(navigation_error=f"net::ERR_FAILED at {url}: {error}")


def _decode(body: bytes, encoding: str | None) -> str:
    try:
        return body.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


class HttpPageFetcher:
    """Fetch pages with a plain HTTP GET, following redirects.

    Does not execute JavaScript. Title and body text are extracted from the
    raw HTML. Screenshots are not supported.
    """

    def __init__(self, session: requests.Session | None = None, user_agent: str = USER_AGENT) -> None:
        self._session = session or requests.Session()
        self._owns_session = session is None
        self._user_agent = user_agent

    def fetch(self, url: str, timeout_ms: int) -> FetchResult:
        """GET url, giving up once timeout_ms has elapsed in total.

        The request runs on a daemon thread so a slow body or a stalled name
        lookup cannot hold the check past its deadline.
        """
        future: Future[FetchResult] = Future()
        cancelled = threading.Event()

        def run() -> None:
            try:
                future.set_result(self._get(url, timeout_ms, cancelled))
            except Exception as e:
                future.set_exception(e)

        threading.Thread(target=run, name=f"fetch-{url}", daemon=True).start()
        try:
            return future.result(timeout=timeout_ms / 1000)
        except FuturesTimeoutError:
            cancelled.set()
            logger.debug("GET %s abandoned after %dms", url, timeout_ms)
            return FetchResult(navigation_error=_timeout_text(timeout_ms))

    def _get(self, url: str, timeout_ms: int, cancelled: threading.Event) -> FetchResult:
        start = time.monotonic()
        try:
            response = self._session.get(
                url,
                timeout=timeout_ms / 1000,
                allow_redirects=True,
                stream=True,
                headers={"User-Agent": self._user_agent},
            )
        except requests.exceptions.RequestException as e:
            return _request_error(e, url, timeout_ms)

        body = bytearray()
        try:
            for chunk in response.iter_content(chunk_size=READ_CHUNK_SIZE):
                if cancelled.is_set():
                    return FetchResult(navigation_error=_timeout_text(timeout_ms))
                body.extend(chunk)
                if len(body) >= MAX_BODY_SIZE:
                    break
        except requests.exceptions.RequestException as e:
            return _request_error(e, url, timeout_ms)
        finally:
            response.close()

        load_time_ms = int((time.monotonic() - start) * 1000)
        html = _decode(bytes(body[:MAX_BODY_SIZE]), response.encoding)
        logger.debug("GET %s -> %d in %dms", url, response.status_code, load_time_ms)

        return FetchResult(
            status_code=response.status_code,
            status_text=response.reason or "",
            final_url=response.url or url,
            title=extract_title(html),
            body_text=html_to_visible_text(html),
            load_time_ms=load_time_ms,
        )

    def capture_screenshot(self, destination: str) -> bool:
        return False

    def close(self) -> None:
        if self._owns_session:
            self._session.close()


def create_fetcher(config: MonitorConfig) -> PageFetcher:
    """Create the page fetcher selected by configuration.

    The browser engine imports Playwright lazily so the HTTP engine works
    without the optional dependency installed.
    """
    if config.fetcher == "browser":
        from .browser import BrowserPageFetcher

        return BrowserPageFetcher()
    return HttpPageFetcher()
