"""Error categorization for failed site checks."""

from dataclasses import dataclass

TIMEOUT = "timeout"
SSL_ERROR = "ssl_error"
DNS_ERROR = "dns_error"
CONNECTION_ERROR = "connection_error"
HTTP_ERROR = "http_error"
CONTENT_ERROR = "content_error"
TEST_FAILURE = "test_failure"
UNKNOWN_ERROR = "unknown_error"

ERROR_CATEGORIES = (
    TIMEOUT,
    SSL_ERROR,
    DNS_ERROR,
    CONNECTION_ERROR,
    HTTP_ERROR,
    CONTENT_ERROR,
    TEST_FAILURE,
    UNKNOWN_ERROR,
)


@dataclass(frozen=True)
class CategoryMetadata:
    """Triage attributes of an error category.

    Attributes:
        severity: "low", "medium" or "high".
        retryable: Whether the failure is usually transient.
        priority: Triage rank, 1 being most urgent.
    """

    severity: str
    retryable: bool
    priority: int


CATEGORY_METADATA: dict[str, CategoryMetadata] = {
    TIMEOUT: CategoryMetadata(severity="high", retryable=True, priority=1),
    CONNECTION_ERROR: CategoryMetadata(severity="high", retryable=True, priority=1),
    SSL_ERROR: CategoryMetadata(severity="high", retryable=False, priority=1),
    DNS_ERROR: CategoryMetadata(severity="medium", retryable=True, priority=2),
    HTTP_ERROR: CategoryMetadata(severity="medium", retryable=False, priority=2),
    CONTENT_ERROR: CategoryMetadata(severity="low", retryable=False, priority=3),
    TEST_FAILURE: CategoryMetadata(severity="high", retryable=True, priority=1),
    UNKNOWN_ERROR: CategoryMetadata(severity="medium", retryable=False, priority=2),
}

# Keyword groups checked in order: transport causes win over HTTP status,
# which wins over body content.
_SSL_KEYWORDS = ("ssl", "tls", "certificate")
_DNS_KEYWORDS = ("dns", "name_not_resolved")
_CONNECTION_KEYWORDS = ("connection_refused", "connection_error")
_CONTENT_KEYWORDS = ("404", "nosuchbucket", "error")


def categorize(error_message: str | None, status_code: int | None) -> str:
    """Map an error message and HTTP status to an error category.

    Args:
        error_message: Failure description (matched case-insensitively).
        status_code: HTTP status code, or None/0 if no response was received.

    Returns:
        One of ERROR_CATEGORIES. Always UNKNOWN_ERROR when there is no message.
    """
    if not error_message:
        return UNKNOWN_ERROR

    message = error_message.lower()
    if "timeout" in message:
        return TIMEOUT
    if any(keyword in message for keyword in _SSL_KEYWORDS):
        return SSL_ERROR
    if any(keyword in message for keyword in _DNS_KEYWORDS):
        return DNS_ERROR
    if any(keyword in message for keyword in _CONNECTION_KEYWORDS):
        return CONNECTION_ERROR
    if (status_code or 0) >= 400:
        return HTTP_ERROR
    if any(keyword in message for keyword in _CONTENT_KEYWORDS):
        return CONTENT_ERROR
    return UNKNOWN_ERROR


def get_category_metadata(category: str | None) -> CategoryMetadata:
    """Return triage metadata for a category, falling back to UNKNOWN_ERROR."""
    return CATEGORY_METADATA.get(category or UNKNOWN_ERROR, CATEGORY_METADATA[UNKNOWN_ERROR])
