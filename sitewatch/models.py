"""Data models for website check results and persisted history."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# Certificates expiring within this many days are flagged in reports and alerts.
SSL_EXPIRY_WARNING_DAYS = 30


def _parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 string written by to_dict(), tolerating a trailing 'Z'."""
    if not value:
        return None
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class DnsResult:
    """Outcome of resolving a site's hostname.

    Attributes:
        success: True if at least one IPv4 address was resolved.
        resolution_time_ms: Time from probe start to the last lookup completing.
        ipv4_addresses: Resolved A records, in resolver order.
        ipv6_addresses: Resolved AAAA records (empty when the host has none).
        error: IPv4 resolution error, or None.
    """

    success: bool
    resolution_time_ms: int
    ipv4_addresses: tuple[str, ...] = ()
    ipv6_addresses: tuple[str, ...] = ()
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "resolutionTimeMs": self.resolution_time_ms,
            "ipv4Addresses": list(self.ipv4_addresses),
            "ipv6Addresses": list(self.ipv6_addresses),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DnsResult":
        return cls(
            success=bool(data.get("success", False)),
            resolution_time_ms=int(data.get("resolutionTimeMs") or 0),
            ipv4_addresses=tuple(data.get("ipv4Addresses") or ()),
            ipv6_addresses=tuple(data.get("ipv6Addresses") or ()),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class TlsResult:
    """Outcome of inspecting a site's TLS certificate.

    Attributes:
        valid: True if a certificate was obtained from the handshake.
        expiration_timestamp: Certificate notAfter (UTC), or None.
        days_until_expiry: Whole days until expiry (negative if expired), or None.
        issuer_common_name: Issuer CN (organization name if the CN is absent).
        subject_common_name: Subject CN.
        error: Description of the failure, or None.
        warning_days: Days before expiry at which the certificate counts as expiring soon.
    """

    valid: bool
    expiration_timestamp: datetime | None = None
    days_until_expiry: int | None = None
    issuer_common_name: str | None = None
    subject_common_name: str | None = None
    error: str | None = None
    warning_days: int = SSL_EXPIRY_WARNING_DAYS

    @property
    def expiring_soon(self) -> bool:
        return self.days_until_expiry is not None and self.days_until_expiry < self.warning_days

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "expirationTimestamp": _format_datetime(self.expiration_timestamp),
            "daysUntilExpiry": self.days_until_expiry,
            "issuerCommonName": self.issuer_common_name,
            "subjectCommonName": self.subject_common_name,
            "error": self.error,
            "expiringSoon": self.expiring_soon,
            "warningDays": self.warning_days,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TlsResult":
        days = data.get("daysUntilExpiry")
        return cls(
            valid=bool(data.get("valid", False)),
            expiration_timestamp=_parse_datetime(data.get("expirationTimestamp")),
            days_until_expiry=int(days) if days is not None else None,
            issuer_common_name=data.get("issuerCommonName"),
            subject_common_name=data.get("subjectCommonName"),
            error=data.get("error"),
            warning_days=int(data.get("warningDays", SSL_EXPIRY_WARNING_DAYS)),
        )


@dataclass(frozen=True)
class FetchResult:
    """What a page fetcher observed while navigating to a URL.

    Attributes:
        status_code: HTTP status of the main document, or 0 if none was received.
        status_text: HTTP reason phrase.
        final_url: URL after redirects (empty if navigation never committed).
        title: Document title.
        body_text: Visible text of the document body.
        load_time_ms: Navigation time, or None if no response was produced.
        navigation_error: Raw error text if navigation raised, None on success.
    """

    status_code: int = 0
    status_text: str = ""
    final_url: str = ""
    title: str = ""
    body_text: str = ""
    load_time_ms: int | None = None
    navigation_error: str | None = None


@dataclass(frozen=True)
class StatusReport:
    """Canonical record of one site check.

    Written once per check as the site's "latest" status file and read back on
    the next run to detect transitions. Enrichment produces a new instance via
    dataclasses.replace().
    """

    site_name: str
    checked_at: datetime
    url: str
    final_url: str
    is_up: bool
    http_status_code: int
    status_text: str
    load_time_ms: int | None
    page_title: str
    redirected_to_expected: bool
    error_message: str | None
    error_category: str | None
    severity: str
    check_duration_ms: int
    performance_threshold_ms: int
    performance_score: str | None
    dns: DnsResult
    tls: TlsResult
    screenshot_path: str | None = None

    @property
    def status(self) -> str:
        return "UP" if self.is_up else "DOWN"

    @property
    def is_slow(self) -> bool:
        return self.load_time_ms is not None and self.load_time_ms > self.performance_threshold_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "siteName": self.site_name,
            "checkTimestamp": self.checked_at.isoformat(),
            "url": self.url,
            "finalUrl": self.final_url,
            "isUp": self.is_up,
            "status": self.status,
            "httpStatusCode": self.http_status_code,
            "statusText": self.status_text,
            "loadTimeMs": self.load_time_ms,
            "pageTitle": self.page_title,
            "redirectedToExpected": self.redirected_to_expected,
            "errorMessage": self.error_message,
            "errorCategory": self.error_category,
            "severity": self.severity,
            "checkDurationMs": self.check_duration_ms,
            "performanceThresholdMs": self.performance_threshold_ms,
            "performanceScore": self.performance_score,
            "isSlow": self.is_slow,
            "dns": self.dns.to_dict(),
            "tls": self.tls.to_dict(),
            "screenshotPath": self.screenshot_path,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatusReport":
        """Rebuild a report from its JSON form.

        Raises:
            KeyError, TypeError, ValueError: If required fields are missing or malformed.
        """
        checked_at = _parse_datetime(data["checkTimestamp"])
        if checked_at is None:
            raise ValueError("checkTimestamp is empty")
        load_time = data.get("loadTimeMs")
        return cls(
            site_name=str(data["siteName"]),
            checked_at=checked_at,
            url=str(data["url"]),
            final_url=str(data.get("finalUrl") or data["url"]),
            is_up=bool(data["isUp"]),
            http_status_code=int(data.get("httpStatusCode") or 0),
            status_text=str(data.get("statusText") or ""),
            load_time_ms=int(load_time) if load_time is not None else None,
            page_title=str(data.get("pageTitle") or ""),
            redirected_to_expected=bool(data.get("redirectedToExpected", False)),
            error_message=data.get("errorMessage"),
            error_category=data.get("errorCategory"),
            severity=str(data.get("severity") or "info"),
            check_duration_ms=int(data.get("checkDurationMs") or 0),
            performance_threshold_ms=int(data.get("performanceThresholdMs") or 0),
            performance_score=data.get("performanceScore"),
            dns=DnsResult.from_dict(data.get("dns") or {}),
            tls=TlsResult.from_dict(data.get("tls") or {}),
            screenshot_path=data.get("screenshotPath"),
        )


@dataclass(frozen=True)
class ChangeInfo:
    """Transition between the previous and current report for one site.

    Attributes:
        changed: True if up/down state differs (or there is no previous report).
        is_recovery: Previous check was down and the current one is up.
        is_downtime: Current check is down and previous was up (or unseen).
        previous_status: "UP"/"DOWN" of the previous report, or None.
        downtime_duration_ms: Time since the previous (down) check, on recovery only.
    """

    changed: bool
    is_recovery: bool
    is_downtime: bool
    previous_status: str | None = None
    downtime_duration_ms: int | None = None


@dataclass(frozen=True)
class MetricsEntry:
    """One point in a site's bounded metrics history."""

    load_time_ms: int
    dns_time_ms: int
    is_up: bool
    status_code: int
    error_category: str | None
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "loadTimeMs": self.load_time_ms,
            "dnsTimeMs": self.dns_time_ms,
            "isUp": self.is_up,
            "statusCode": self.status_code,
            "errorCategory": self.error_category,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetricsEntry":
        timestamp = _parse_datetime(data["timestamp"])
        if timestamp is None:
            raise ValueError("timestamp is empty")
        return cls(
            load_time_ms=int(data.get("loadTimeMs") or 0),
            dns_time_ms=int(data.get("dnsTimeMs") or 0),
            is_up=bool(data.get("isUp", False)),
            status_code=int(data.get("statusCode") or 0),
            error_category=data.get("errorCategory"),
            timestamp=timestamp,
        )

    @classmethod
    def from_report(cls, report: StatusReport) -> "MetricsEntry":
        return cls(
            load_time_ms=report.load_time_ms or 0,
            dns_time_ms=report.dns.resolution_time_ms,
            is_up=report.is_up,
            status_code=report.http_status_code,
            error_category=report.error_category,
            timestamp=report.checked_at,
        )


@dataclass(frozen=True)
class MetricsTrends:
    """Aggregates over a site's recent metrics history.

    Attributes:
        direction: "improving", "stable", "degrading" or "insufficient_data".
        avg_load_time_ms: Mean load time of the newer half of the window.
        min_load_time_ms: Fastest non-zero load time in the window.
        max_load_time_ms: Slowest load time in the window.
        uptime_percentage: Share of up checks in the window (0.0-100.0).
        data_points: Number of entries considered.
    """

    direction: str
    avg_load_time_ms: int | None = None
    min_load_time_ms: int | None = None
    max_load_time_ms: int | None = None
    uptime_percentage: float | None = None
    data_points: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "trendDirection": self.direction,
            "avgLoadTimeMs": self.avg_load_time_ms,
            "minLoadTimeMs": self.min_load_time_ms,
            "maxLoadTimeMs": self.max_load_time_ms,
            "uptimePercentage": self.uptime_percentage,
            "dataPoints": self.data_points,
        }


@dataclass(frozen=True)
class RunSummary:
    """Aggregate of one monitoring run, in configuration order."""

    total: int
    up: int
    down: int
    uptime_percentage: float
    down_sites: tuple[tuple[str, str | None], ...] = ()
    reports: tuple[StatusReport, ...] = field(default=(), repr=False)

    @classmethod
    def from_reports(cls, reports: list[StatusReport]) -> "RunSummary":
        total = len(reports)
        up = sum(1 for report in reports if report.is_up)
        uptime = round(up / total * 100, 2) if total else 0.0
        return cls(
            total=total,
            up=up,
            down=total - up,
            uptime_percentage=uptime,
            down_sites=tuple((r.site_name, r.error_message) for r in reports if not r.is_up),
            reports=tuple(reports),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "up": self.up,
            "down": self.down,
            "uptimePercentage": self.uptime_percentage,
            "downSites": [{"name": name, "errorMessage": message} for name, message in self.down_sites],
        }
