"""Tests for the JUnit and dashboard report writers."""

import xml.etree.ElementTree as ET
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from sitewatch.config import RunMetadata
from sitewatch.models import RunSummary, StatusReport
from sitewatch.reports import render_dashboard, render_junit, write_dashboard, write_junit_report
from sitewatch.storage import StatusStore

GENERATED_AT = datetime(2026, 1, 17, 10, 45, 0, tzinfo=UTC)


@pytest.fixture
def summary(make_report: Callable[..., StatusReport], down_report: StatusReport) -> RunSummary:
    up = make_report(site_name="Docs", url="https://docs.example.com")
    return RunSummary.from_reports([up, down_report])


def _properties(element: ET.Element) -> dict[str, str]:
    return {prop.get("name"): prop.get("value") for prop in element.find("properties")}


class TestJUnit:
    """Tests for render_junit()."""

    def test_suite_counts(self, summary: RunSummary) -> None:
        """The suite carries totals, failures and duration."""
        suite = ET.fromstring(render_junit(summary, timestamp=GENERATED_AT))

        assert suite.tag == "testsuite"
        assert suite.get("tests") == "2"
        assert suite.get("failures") == "1"
        assert suite.get("errors") == "0"
        assert suite.get("time") == "3.000"
        assert suite.get("timestamp") == "2026-01-17T10:45:00+00:00"
        assert _properties(suite) == {"uptimePercentage": "50.00"}

    def test_testcases_in_order(self, summary: RunSummary) -> None:
        """One testcase per report, in run order."""
        suite = ET.fromstring(render_junit(summary))
        names = [case.get("name") for case in suite.findall("testcase")]

        assert names == ["Docs is up", "Example is up"]

    def test_failure_element(self, summary: RunSummary) -> None:
        """Down sites carry a failure typed by error category."""
        suite = ET.fromstring(render_junit(summary))
        up_case, down_case = suite.findall("testcase")

        assert up_case.find("failure") is None
        failure = down_case.find("failure")
        assert failure.get("type") == "timeout"
        assert failure.get("message") == "Navigation timeout after 30000ms"
        assert "Example (https://example.com) is DOWN" in failure.text

        properties = _properties(down_case)
        assert properties["errorCategory"] == "timeout"
        assert properties["priority"] == "P1"
        assert properties["retryable"] == "true"
        assert "loadTimeMs" not in properties

    def test_screenshot_attachment(self, make_report: Callable[..., StatusReport]) -> None:
        """Screenshot paths are listed as attachments."""
        report = make_report(is_up=False, error_message="HTTP 500", error_category="http_error", screenshot_path="/tmp/s.png")
        suite = ET.fromstring(render_junit(RunSummary.from_reports([report])))

        assert _properties(suite.find("testcase"))["attachment"] == "/tmp/s.png"

    def test_run_metadata(self, summary: RunSummary) -> None:
        """CI metadata becomes suite properties."""
        run = RunMetadata(run_id="42", repository="acme/monitoring", sha="abc123", ref_name="main", actor="octocat")
        suite = ET.fromstring(render_junit(summary, run))
        properties = _properties(suite)

        assert properties["runUrl"] == "https://github.com/acme/monitoring/actions/runs/42"
        assert properties["commit"] == "abc123"
        assert properties["branch"] == "main"

    def test_escapes_markup(self, make_report: Callable[..., StatusReport]) -> None:
        """Error text with XML metacharacters stays well formed."""
        report = make_report(is_up=False, error_message='Page contains error: "<b>&"', error_category="content_error")
        suite = ET.fromstring(render_junit(RunSummary.from_reports([report])))

        assert suite.find("testcase/failure").get("message") == 'Page contains error: "<b>&"'

    def test_write_junit_report(self, summary: RunSummary, tmp_path: Path) -> None:
        """The report is written with an XML declaration."""
        path = tmp_path / "out" / "junit.xml"
        write_junit_report(summary, path)

        text = path.read_text(encoding="utf-8")
        assert text.startswith("<?xml")
        assert ET.parse(path).getroot().get("tests") == "2"


class TestDashboard:
    """Tests for render_dashboard()."""

    def test_summary_cards_and_rows(self, summary: RunSummary) -> None:
        """The page shows totals and one row per site."""
        html = render_dashboard(list(summary.reports), generated_at=GENERATED_AT)

        assert "<title>Website Monitoring Dashboard</title>" in html
        assert "50.00%" in html
        assert html.count('class="status-up"') == 1
        assert html.count('class="status-down"') == 1
        assert "timeout: Navigation timeout after 30000ms" in html
        assert "135 days" in html

    def test_timezone(self, summary: RunSummary) -> None:
        """The generation time is shown in the display timezone."""
        html = render_dashboard(list(summary.reports), tz=ZoneInfo("Europe/Madrid"), generated_at=GENERATED_AT)

        assert "2026-01-17 11:45:00 CET" in html

    def test_empty(self) -> None:
        """No reports renders a placeholder row."""
        html = render_dashboard([], generated_at=GENERATED_AT)

        assert "No sites checked yet." in html

    def test_escapes_site_names(self, make_report: Callable[..., StatusReport]) -> None:
        """Site names are HTML-escaped."""
        html = render_dashboard([make_report(site_name="<script>x</script>")])

        assert "<script>x</script>" not in html
        assert "&lt;script&gt;" in html

    def test_trends_from_store(self, summary: RunSummary, tmp_path: Path) -> None:
        """Rows without history show no trend; write_dashboard writes the file."""
        store = StatusStore(tmp_path)
        path = tmp_path / "dashboard.html"

        write_dashboard(summary, store, path)

        html = path.read_text(encoding="utf-8")
        assert "Docs" in html
        assert "<td>n/a</td>" in html
