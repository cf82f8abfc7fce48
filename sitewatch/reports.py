"""Run artifacts: JUnit XML for test-management import and an HTML dashboard."""

import io
import xml.etree.ElementTree as ET
from datetime import UTC, datetime
from html import escape
from pathlib import Path
from zoneinfo import ZoneInfo

from .classifier import get_category_metadata
from .config import RunMetadata
from .models import MetricsTrends, RunSummary, StatusReport
from .storage import StatusStore, atomic_write_text

JUNIT_SUITE_NAME = "Website Monitoring"


def _testcase_name(report: StatusReport) -> str:
    return f"{report.site_name} is up"


def _add_properties(parent: ET.Element, properties: list[tuple[str, object]]) -> None:
    container = ET.SubElement(parent, "properties")
    for name, value in properties:
        if value is None or value == "":
            continue
        ET.SubElement(container, "property", name=name, value=str(value))


def render_junit(summary: RunSummary, run: RunMetadata | None = None, timestamp: datetime | None = None) -> str:
    """Render one <testsuite> with a <testcase> per site.

    Down sites carry a <failure> whose type is the error category, so
    test-management tools can group failures by cause.

    Args:
        summary: Run summary, reports in configuration order.
        run: CI metadata recorded as suite properties.
        timestamp: Suite timestamp (defaults to now).

    Returns:
        JUnit XML string with declaration.
    """
    timestamp = timestamp or datetime.now(UTC)
    total_seconds = sum(report.check_duration_ms for report in summary.reports) / 1000

    suite = ET.Element(
        "testsuite",
        name=JUNIT_SUITE_NAME,
        tests=str(summary.total),
        failures=str(summary.down),
        errors="0",
        skipped="0",
        time=f"{total_seconds:.3f}",
        timestamp=timestamp.isoformat(),
    )

    suite_properties: list[tuple[str, object]] = [("uptimePercentage", f"{summary.uptime_percentage:.2f}")]
    if run is not None:
        suite_properties += [
            ("runId", run.run_id),
            ("runUrl", run.run_url),
            ("commit", run.sha),
            ("branch", run.ref_name),
            ("actor", run.actor),
        ]
    _add_properties(suite, suite_properties)

    for report in summary.reports:
        case = ET.SubElement(
            suite,
            "testcase",
            name=_testcase_name(report),
            classname="sitewatch.monitor",
            time=f"{report.check_duration_ms / 1000:.3f}",
        )
        properties: list[tuple[str, object]] = [
            ("url", report.url),
            ("finalUrl", report.final_url),
            ("statusCode", report.http_status_code),
            ("loadTimeMs", report.load_time_ms),
            ("performanceScore", report.performance_score),
            ("severity", report.severity),
        ]
        if report.error_category:
            metadata = get_category_metadata(report.error_category)
            properties += [
                ("errorCategory", report.error_category),
                ("priority", f"P{metadata.priority}"),
                ("retryable", str(metadata.retryable).lower()),
            ]
        if report.screenshot_path:
            properties.append(("attachment", report.screenshot_path))
        _add_properties(case, properties)

        if not report.is_up:
            failure = ET.SubElement(
                case,
                "failure",
                message=report.error_message or "Site is down",
                type=report.error_category or "unknown_error",
            )
            failure.text = f"{report.site_name} ({report.url}) is DOWN: {report.error_message or 'Unknown error'}"

    ET.indent(suite)
    output = io.BytesIO()
    ET.ElementTree(suite).write(output, encoding="utf-8", xml_declaration=True)
    return output.getvalue().decode("utf-8")


def write_junit_report(summary: RunSummary, path: Path, run: RunMetadata | None = None) -> None:
    """Write the JUnit report atomically.

    Raises:
        StorageError: If the file cannot be written.
    """
    atomic_write_text(Path(path), render_junit(summary, run))


_DASHBOARD_CSS = """
body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
       background: #f5f6fa; color: #2d3436; margin: 0; padding: 24px; }
.container { max-width: 1100px; margin: 0 auto; }
h1 { margin: 0 0 4px; }
.timestamp { color: #636e72; font-size: 14px; margin-bottom: 24px; }
.stats { display: grid; grid-template-columns: repeat(4, 1fr); gap: 16px; margin-bottom: 24px; }
.stat-card { background: #fff; border-radius: 8px; padding: 16px; box-shadow: 0 1px 3px rgba(0,0,0,.1); }
.stat-value { font-size: 28px; font-weight: 700; }
.stat-label { color: #636e72; font-size: 13px; text-transform: uppercase; }
.up .stat-value, .status-up { color: #27ae60; }
.down .stat-value, .status-down { color: #e74c3c; }
table { width: 100%; border-collapse: collapse; background: #fff; border-radius: 8px; overflow: hidden; }
th, td { text-align: left; padding: 10px 12px; border-bottom: 1px solid #dfe6e9; font-size: 14px; }
th { background: #2d3436; color: #fff; font-weight: 600; }
.error { color: #e74c3c; font-size: 13px; }
.footer { color: #b2bec3; font-size: 12px; margin-top: 24px; text-align: center; }
"""


def _site_row(report: StatusReport, trends: MetricsTrends | None) -> str:
    status_class = "status-up" if report.is_up else "status-down"
    load_time = f"{report.load_time_ms}ms" if report.load_time_ms is not None else "N/A"
    if report.tls.days_until_expiry is not None:
        tls = f"{report.tls.days_until_expiry} days"
    else:
        tls = "valid" if report.tls.valid else "n/a"
    trend = "n/a"
    if trends is not None and trends.direction != "insufficient_data":
        trend = f"{trends.direction} ({trends.uptime_percentage:.2f}% up)"
    error = ""
    if report.error_message:
        error = f'<div class="error">{escape(report.error_category or "")}: {escape(report.error_message)}</div>'
    return (
        "<tr>"
        f"<td><strong>{escape(report.site_name)}</strong>{error}</td>"
        f'<td><a href="{escape(report.url)}" target="_blank" rel="noopener">{escape(report.url)}</a></td>'
        f'<td class="{status_class}">{report.status}</td>'
        f"<td>{report.http_status_code or 'N/A'}</td>"
        f"<td>{load_time}</td>"
        f"<td>{escape(report.performance_score or 'n/a')}</td>"
        f"<td>{escape(tls)}</td>"
        f"<td>{escape(trend)}</td>"
        f"<td>{escape(report.checked_at.isoformat(timespec='seconds'))}</td>"
        "</tr>"
    )


def render_dashboard(
    reports: list[StatusReport],
    store: StatusStore | None = None,
    tz: ZoneInfo | None = None,
    generated_at: datetime | None = None,
) -> str:
    """Render a static HTML page with summary cards and one row per site."""
    summary = RunSummary.from_reports(reports)
    generated_at = (generated_at or datetime.now(UTC)).astimezone(tz or ZoneInfo("UTC"))

    rows = []
    for report in reports:
        trends = store.calculate_trends(report.site_name) if store is not None else None
        rows.append(_site_row(report, trends))
    if not rows:
        rows.append('<tr><td colspan="9">No sites checked yet.</td></tr>')

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Website Monitoring Dashboard</title>
<style>{_DASHBOARD_CSS}</style>
</head>
<body>
<div class="container">
  <h1>Website Monitoring Dashboard</h1>
  <div class="timestamp">Last updated: {escape(generated_at.strftime("%Y-%m-%d %H:%M:%S %Z"))}</div>
  <div class="stats">
    <div class="stat-card"><div class="stat-value">{summary.total}</div><div class="stat-label">Total Sites</div></div>
    <div class="stat-card up"><div class="stat-value">{summary.up}</div><div class="stat-label">Sites Up</div></div>
    <div class="stat-card down"><div class="stat-value">{summary.down}</div><div class="stat-label">Sites Down</div></div>
    <div class="stat-card"><div class="stat-value">{summary.uptime_percentage:.2f}%</div><div class="stat-label">Uptime</div></div>
  </div>
  <table>
    <thead><tr><th>Site</th><th>URL</th><th>Status</th><th>Code</th><th>Load</th><th>Score</th><th>TLS</th><th>Trend</th><th>Checked</th></tr></thead>
    <tbody>
{chr(10).join(rows)}
    </tbody>
  </table>
  <div class="footer">Generated by sitewatch</div>
</div>
</body>
</html>
"""


def write_dashboard(summary: RunSummary, store: StatusStore, path: Path, tz: ZoneInfo | None = None) -> None:
    """Write the dashboard for this run atomically.

    Raises:
        StorageError: If the file cannot be written.
    """
    atomic_write_text(Path(path), render_dashboard(list(summary.reports), store, tz))
