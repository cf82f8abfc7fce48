"""GitHub issue tracker client for site failures."""

import logging
from typing import Any

import requests

from .config import GitHubConfig, RunMetadata
from .models import ChangeInfo, StatusReport

logger = logging.getLogger(__name__)


class IssueTrackerError(Exception):
    """Raised when a GitHub API request fails."""

    pass


# Timeout for GitHub API requests in seconds.
REQUEST_TIMEOUT = 10

USER_AGENT = "sitewatch"

ISSUE_LABELS = ("monitoring", "website-down", "automated")


def issue_title(site_name: str) -> str:
    return f"Website Monitoring Alert: {site_name} is DOWN"


def issue_labels(report: StatusReport) -> list[str]:
    labels = list(ISSUE_LABELS)
    labels.append(report.error_category or "unknown-error")
    if report.severity == "critical":
        labels.append("critical")
    return labels


def _check_mark(ok: bool) -> str:
    return "✅" if ok else "❌"


def render_issue_body(report: StatusReport, run: RunMetadata | None = None, change: ChangeInfo | None = None) -> str:
    """Markdown body for a failure issue."""
    load_time = f"{report.load_time_ms}ms" if report.load_time_ms is not None else "N/A"
    lines = [
        "## Website Monitoring Alert",
        "",
        f"**Website**: {report.site_name}",
        f"**URL**: {report.url}",
        f"**Status**: {report.status}",
        f"**Status Code**: {report.http_status_code}",
        f"**Error**: {report.error_message or 'Unknown error'}",
        f"**Error Category**: {report.error_category or 'unknown_error'}",
        f"**Severity**: {report.severity}",
        f"**Load Time**: {load_time}",
        f"**Timestamp**: {report.checked_at.isoformat()}",
        "",
        "### Details",
        f"- **Final URL**: {report.final_url or report.url}",
        f"- **Page Title**: {report.page_title or 'N/A'}",
        f"- **DNS Resolution**: {_check_mark(report.dns.success)} {'Success' if report.dns.success else 'Failed'}",
    ]
    if report.dns.ipv4_addresses:
        lines.append(f"  - IPs: {', '.join(report.dns.ipv4_addresses)}")
    if report.dns.error:
        lines.append(f"  - Error: {report.dns.error}")
    lines.append(f"- **SSL Certificate**: {_check_mark(report.tls.valid)} {'Valid' if report.tls.valid else 'Invalid'}")
    if report.tls.days_until_expiry is not None:
        lines.append(f"  - Expires in: {report.tls.days_until_expiry} days")
    if report.tls.error:
        lines.append(f"  - Error: {report.tls.error}")
    lines.append(f"- **Check Duration**: {report.check_duration_ms}ms")
    lines.append(f"- **Performance Score**: {report.performance_score or 'N/A'}")

    if change is not None:
        lines += ["", "### Change Information"]
        if change.changed and change.previous_status is not None:
            lines.append("- **Status Changed**: 🔴 Downtime detected")
            lines.append(f"- **Previous Status**: {change.previous_status}")
        elif change.previous_status is None:
            lines.append("- **Status**: First observation")
        else:
            lines.append("- **Status**: No change detected")

    if run is not None:
        run_lines = []
        if run.run_id:
            run_lines.append(f"- **Workflow Run ID**: {run.run_id}")
        if run.run_url:
            run_lines.append(f"- **Workflow Run**: [View Run]({run.run_url})")
        if run.sha:
            run_lines.append(f"- **Commit**: {run.sha[:7]}")
        if run.ref_name:
            run_lines.append(f"- **Branch**: {run.ref_name}")
        if run.actor:
            run_lines.append(f"- **Author**: {run.actor}")
        if run_lines:
            lines += ["", "### Test Run Information", *run_lines]

    if report.screenshot_path:
        lines += ["", "### Screenshot", f"Saved with the run artifacts: `{report.screenshot_path}`"]

    lines += [
        "",
        "---",
        "*This issue was automatically created by sitewatch.*",
        "*It will be closed automatically when the website recovers.*",
    ]
    return "\n".join(lines)


class GitHubIssues:
    """Minimal GitHub REST client for monitoring issues.

    Every method raises IssueTrackerError on failure; callers decide whether
    a failure is fatal.
    """

    def __init__(self, config: GitHubConfig, session: requests.Session | None = None) -> None:
        if not config.enabled:
            raise ValueError("GitHubIssues requires a token and repository")
        self._config = config
        self._session = session or requests.Session()
        self._base = f"{config.api_url}/repos/{config.repository}"

    def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = {
            "Authorization": f"token {self._config.token}",
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": USER_AGENT,
        }
        try:
            response = self._session.request(
                method, f"{self._base}{path}", headers=headers, timeout=REQUEST_TIMEOUT, **kwargs
            )
        except requests.RequestException as e:
            raise IssueTrackerError(f"GitHub API request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            try:
                data = response.json()
            except ValueError:
                data = None
            message = data.get("message", response.text) if isinstance(data, dict) else response.text
            raise IssueTrackerError(f"GitHub API Error {response.status_code}: {message}")

        try:
            return response.json()
        except ValueError:
            return None

    def find_existing_issue(self, site_name: str) -> dict | None:
        """Return the open monitoring issue for a site, or None.

        Raises:
            IssueTrackerError: If the lookup fails.
        """
        issues = self._request(
            "GET",
            "/issues",
            params={"state": "open", "labels": "monitoring,website-down", "per_page": 100},
        )
        title = issue_title(site_name)
        for issue in issues or []:
            if "pull_request" in issue:
                continue
            if issue.get("title") == title and issue.get("state", "open") == "open":
                return issue
        return None

    def create_issue(self, title: str, body: str, labels: list[str]) -> dict:
        issue = self._request("POST", "/issues", json={"title": title, "body": body, "labels": labels})
        logger.info("Created GitHub issue #%s: %s", issue.get("number"), title)
        return issue

    def create_website_failure_issue(
        self,
        report: StatusReport,
        run: RunMetadata | None = None,
        change: ChangeInfo | None = None,
    ) -> dict:
        return self.create_issue(
            issue_title(report.site_name),
            render_issue_body(report, run, change),
            issue_labels(report),
        )

    def add_comment(self, issue_number: int, comment: str) -> dict:
        return self._request("POST", f"/issues/{issue_number}/comments", json={"body": comment})

    def close_issue(self, issue_number: int, comment: str | None = None) -> dict:
        """Close an issue, posting comment first when given."""
        if comment:
            self.add_comment(issue_number, comment)
        issue = self._request("PATCH", f"/issues/{issue_number}", json={"state": "closed"})
        logger.info("Closed GitHub issue #%s", issue_number)
        return issue
