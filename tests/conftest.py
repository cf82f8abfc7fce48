"""Shared fixtures for sitewatch tests."""

from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

import pytest

from sitewatch.config import SiteConfig
from sitewatch.models import DnsResult, StatusReport, TlsResult

CHECKED_AT = datetime(2026, 1, 17, 10, 30, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep CI and Slack environment variables out of config parsing."""
    for name in (
        "SLACK_BOT_TOKEN",
        "SLACK_CHANNEL",
        "SLACK_CHANNEL_ID",
        "SLACK_NOTIFICATION",
        "SLACK_WEBHOOK_URL",
        "GITHUB_TOKEN",
        "GITHUB_REPOSITORY",
        "GITHUB_RUN_ID",
        "GITHUB_SERVER_URL",
        "GITHUB_SHA",
        "GITHUB_REF_NAME",
        "GITHUB_ACTOR",
        "ALLOW_SELF_SIGNED_CERTS",
        "ALLOWED_ORIGINS",
        "SITEWATCH_RESULTS_DIR",
        "SITEWATCH_API_PORT",
        "SITEWATCH_API_KEY",
        "SITEWATCH_FETCHER",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def site() -> SiteConfig:
    """A typical monitored site."""
    return SiteConfig(name="Example", url="https://example.com", performance_threshold_ms=5000)


@pytest.fixture
def make_report() -> Callable[..., StatusReport]:
    """Factory for StatusReport instances with sensible up-state defaults."""

    def _make(**overrides: Any) -> StatusReport:
        report = StatusReport(
            site_name="Example",
            checked_at=CHECKED_AT,
            url="https://example.com",
            final_url="https://example.com/",
            is_up=True,
            http_status_code=200,
            status_text="OK",
            load_time_ms=1200,
            page_title="Example Domain",
            redirected_to_expected=False,
            error_message=None,
            error_category=None,
            severity="info",
            check_duration_ms=1500,
            performance_threshold_ms=5000,
            performance_score="excellent",
            dns=DnsResult(success=True, resolution_time_ms=12, ipv4_addresses=("93.184.216.34",)),
            tls=TlsResult(
                valid=True,
                expiration_timestamp=datetime(2026, 6, 1, tzinfo=UTC),
                days_until_expiry=135,
                issuer_common_name="DigiCert Global G2 TLS RSA SHA256 2020 CA1",
                subject_common_name="www.example.org",
            ),
        )
        return replace(report, **overrides)

    return _make


@pytest.fixture
def down_report(make_report: Callable[..., StatusReport]) -> StatusReport:
    """A report for a site that timed out."""
    return make_report(
        is_up=False,
        http_status_code=0,
        status_text="",
        load_time_ms=None,
        page_title="",
        error_message="Navigation timeout after 30000ms",
        error_category="timeout",
        severity="critical",
        performance_score=None,
    )
