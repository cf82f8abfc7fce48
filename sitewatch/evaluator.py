"""Up/down evaluation of a fetched page plus probe results."""

from datetime import datetime
from urllib.parse import urlparse

from .classifier import CONNECTION_ERROR, CONTENT_ERROR, TIMEOUT, categorize
from .config import SiteConfig
from .models import DnsResult, FetchResult, StatusReport, TlsResult

# Hard limit for a single page navigation.
NAVIGATION_TIMEOUT_MS = 30000

# Body text that indicates an error page served with a 2xx/3xx status,
# e.g. a missing S3 bucket behind a CDN.
CONTENT_ERROR_MARKERS = ("404 Not Found", "NoSuchBucket", "Code: NoSuchBucket")

EMPTY_BODY_MESSAGE = "Page loaded but appears to be empty (no body content)"
NO_RESPONSE_MESSAGE = "No response received"

SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_CRITICAL = "critical"

SCORE_EXCELLENT = "excellent"
SCORE_GOOD = "good"
SCORE_ACCEPTABLE = "acceptable"
SCORE_POOR = "poor"


def describe_navigation_error(error: str, timeout_ms: int = NAVIGATION_TIMEOUT_MS) -> str:
    """Turn a raw navigation error into the message stored on the report.

    The prefixes are chosen so that categorize() maps them to the matching
    transport category (timeout, ssl_error, dns_error, connection_error).
    """
    if "timeout" in error.lower():
        return f"Navigation timeout after {timeout_ms}ms"
    if "net::ERR_SSL" in error or "SSL" in error:
        return f"SSL/TLS error: {error}"
    if "net::ERR_NAME_NOT_RESOLVED" in error:
        return f"DNS resolution failed: {error}"
    if "net::ERR_CONNECTION_REFUSED" in error:
        return f"Connection refused: {error}"
    return f"Navigation error: {error}"


def calculate_performance_score(load_time_ms: int | None, threshold_ms: float) -> str | None:
    """Bucket a load time relative to the site's performance threshold.

    Returns:
        "excellent" (<= 50%), "good" (<= 75%), "acceptable" (<= 100%),
        "poor" (> 100%), or None when there is no load time.
    """
    if load_time_ms is None:
        return None
    if load_time_ms <= threshold_ms * 0.5:
        return SCORE_EXCELLENT
    if load_time_ms <= threshold_ms * 0.75:
        return SCORE_GOOD
    if load_time_ms <= threshold_ms:
        return SCORE_ACCEPTABLE
    return SCORE_POOR


def get_severity(is_up: bool, error_category: str | None, status_code: int | None) -> str:
    """Qualitative urgency of a check result."""
    if is_up:
        return SEVERITY_INFO
    if error_category in (TIMEOUT, CONNECTION_ERROR):
        return SEVERITY_CRITICAL
    if (status_code or 0) >= 500:
        return SEVERITY_CRITICAL
    return SEVERITY_WARNING


def _find_content_error(body_text: str) -> str | None:
    for marker in CONTENT_ERROR_MARKERS:
        if marker in body_text:
            return marker
    return None


def _same_host(url: str, other: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return bool(host) and host == (urlparse(other).hostname or "").lower()


def evaluate(
    site: SiteConfig,
    fetch: FetchResult,
    dns: DnsResult,
    tls: TlsResult,
    checked_at: datetime,
    check_duration_ms: int,
    navigation_timeout_ms: int = NAVIGATION_TIMEOUT_MS,
) -> StatusReport:
    """Decide whether a site is up and build its status report.

    Rules, in order:
      1. Navigation raised without a response: down, message from the error.
      2. 2xx/3xx with a known error marker in the body: down (content error).
      3. 2xx/3xx and the expected redirect target reached: up.
      4. 2xx/3xx on the original host: up if the body has text, else down.
      5. Any other 2xx/3xx: up.
      6. >= 400: down, "HTTP <code> <text>" unless a message is already set.
      7. No status at all: down.

    DNS and TLS results are attached for diagnostics only; they never change
    the verdict.
    """
    status_code = fetch.status_code or 0
    final_url = fetch.final_url or site.url
    body_text = fetch.body_text or ""

    error_message: str | None = None
    if fetch.navigation_error is not None:
        error_message = describe_navigation_error(fetch.navigation_error, navigation_timeout_ms)

    redirected_to_expected = bool(site.expected_redirect and site.expected_redirect in final_url)
    forced_category: str | None = None

    if 200 <= status_code < 400:
        marker = _find_content_error(body_text)
        if marker is not None:
            is_up = False
            error_message = f'Page contains error: "{marker}"'
            forced_category = CONTENT_ERROR
        elif redirected_to_expected:
            is_up = True
        elif _same_host(site.url, final_url):
            if body_text.strip():
                is_up = True
            else:
                is_up = False
                error_message = EMPTY_BODY_MESSAGE
        else:
            # Off-host landing without an expected redirect.
            is_up = True
    elif status_code >= 400:
        is_up = False
        error_message = error_message or f"HTTP {status_code} {fetch.status_text}".rstrip()
    else:
        is_up = False
        if error_message is None:
            error_message = NO_RESPONSE_MESSAGE if status_code == 0 else f"Unexpected HTTP status {status_code}"

    error_category = forced_category
    if error_category is None and error_message:
        error_category = categorize(error_message, status_code)

    return StatusReport(
        site_name=site.name,
        checked_at=checked_at,
        url=site.url,
        final_url=final_url,
        is_up=is_up,
        http_status_code=status_code,
        status_text=fetch.status_text or "",
        load_time_ms=fetch.load_time_ms,
        page_title=fetch.title or "",
        redirected_to_expected=redirected_to_expected,
        error_message=error_message,
        error_category=error_category,
        severity=get_severity(is_up, error_category, status_code),
        check_duration_ms=check_duration_ms,
        performance_threshold_ms=site.performance_threshold_ms,
        performance_score=calculate_performance_score(fetch.load_time_ms, site.performance_threshold_ms),
        dns=dns,
        tls=tls,
    )


def build_failure_report(
    site: SiteConfig,
    message: str,
    category: str,
    checked_at: datetime,
    check_duration_ms: int,
    dns: DnsResult | None = None,
    tls: TlsResult | None = None,
) -> StatusReport:
    """Build a down report for a check that could not run to completion."""
    return StatusReport(
        site_name=site.name,
        checked_at=checked_at,
        url=site.url,
        final_url=site.url,
        is_up=False,
        http_status_code=0,
        status_text="",
        load_time_ms=None,
        page_title="",
        redirected_to_expected=False,
        error_message=message,
        error_category=category,
        severity=get_severity(False, category, 0),
        check_duration_ms=check_duration_ms,
        performance_threshold_ms=site.performance_threshold_ms,
        performance_score=None,
        dns=dns or DnsResult(success=False, resolution_time_ms=0, error="Not checked"),
        tls=tls or TlsResult(valid=False, error="Not checked"),
    )
