"""Tests for the GitHub issue client."""

from collections.abc import Callable
from unittest.mock import MagicMock

import pytest
import requests

from sitewatch.config import GitHubConfig, RunMetadata
from sitewatch.issues import (
    GitHubIssues,
    IssueTrackerError,
    issue_labels,
    issue_title,
    render_issue_body,
)
from sitewatch.models import ChangeInfo, StatusReport


def _response(status_code: int = 200, json_data=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = json_data
    response.text = str(json_data)
    return response


@pytest.fixture
def config() -> GitHubConfig:
    return GitHubConfig(token="ghp_test", repository="acme/monitoring")


@pytest.fixture
def session() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(config: GitHubConfig, session: MagicMock) -> GitHubIssues:
    return GitHubIssues(config, session=session)


@pytest.fixture
def run() -> RunMetadata:
    return RunMetadata(
        run_id="42",
        repository="acme/monitoring",
        sha="0123456789abcdef",
        ref_name="main",
        actor="octocat",
    )


class TestIssueContent:
    """Tests for issue title, labels and body."""

    def test_title(self) -> None:
        """The title names the site."""
        assert issue_title("Example") == "Website Monitoring Alert: Example is DOWN"

    def test_labels_critical(self, down_report: StatusReport) -> None:
        """Critical failures carry the category and critical labels."""
        assert issue_labels(down_report) == ["monitoring", "website-down", "automated", "timeout", "critical"]

    def test_labels_warning(self, make_report: Callable[..., StatusReport]) -> None:
        """Non-critical failures have no critical label."""
        report = make_report(is_up=False, error_category="content_error", severity="warning")
        assert issue_labels(report) == ["monitoring", "website-down", "automated", "content_error"]

    def test_body(self, down_report: StatusReport, run: RunMetadata) -> None:
        """The body includes site, error, probes and run metadata."""
        change = ChangeInfo(changed=True, is_recovery=False, is_downtime=True, previous_status="UP")
        body = render_issue_body(down_report, run, change)

        assert "**Website**: Example" in body
        assert "**URL**: https://example.com" in body
        assert "**Error**: Navigation timeout after 30000ms" in body
        assert "**Error Category**: timeout" in body
        assert "**Severity**: critical" in body
        assert "**Load Time**: N/A" in body
        assert "IPs: 93.184.216.34" in body
        assert "Expires in: 135 days" in body
        assert "**Previous Status**: UP" in body
        assert "https://github.com/acme/monitoring/actions/runs/42" in body
        assert "**Commit**: 0123456" in body
        assert "**Author**: octocat" in body

    def test_body_first_observation(self, down_report: StatusReport) -> None:
        """A site never seen before is labeled as a first observation."""
        change = ChangeInfo(changed=True, is_recovery=False, is_downtime=True)
        body = render_issue_body(down_report, None, change)

        assert "First observation" in body
        assert "Test Run Information" not in body


class TestGitHubIssues:
    """Tests for GitHubIssues."""

    def test_requires_token_and_repository(self) -> None:
        """A disabled config cannot build a client."""
        with pytest.raises(ValueError):
            GitHubIssues(GitHubConfig(token="x"))

    def test_find_existing_issue(self, client: GitHubIssues, session: MagicMock) -> None:
        """The open issue with the exact title is returned; PRs are ignored."""
        session.request.return_value = _response(
            json_data=[
                {"number": 1, "title": "Website Monitoring Alert: Example is DOWN", "pull_request": {}},
                {"number": 2, "title": "Website Monitoring Alert: Example Staging is DOWN"},
                {"number": 3, "title": "Website Monitoring Alert: Example is DOWN", "state": "open"},
            ]
        )

        issue = client.find_existing_issue("Example")

        assert issue["number"] == 3
        method, url = session.request.call_args[0]
        assert method == "GET"
        assert url == "https://api.github.com/repos/acme/monitoring/issues"
        kwargs = session.request.call_args[1]
        assert kwargs["params"]["state"] == "open"
        assert kwargs["params"]["labels"] == "monitoring,website-down"
        assert kwargs["headers"]["Authorization"] == "token ghp_test"

    def test_find_existing_issue_none(self, client: GitHubIssues, session: MagicMock) -> None:
        """No matching title means no existing issue."""
        session.request.return_value = _response(json_data=[])
        assert client.find_existing_issue("Example") is None

    def test_create_failure_issue(self, client: GitHubIssues, session: MagicMock, down_report: StatusReport) -> None:
        """Failure issues are POSTed with title, body and labels."""
        session.request.return_value = _response(201, {"number": 7})

        issue = client.create_website_failure_issue(down_report)

        assert issue["number"] == 7
        method, url = session.request.call_args[0]
        assert method == "POST"
        assert url.endswith("/repos/acme/monitoring/issues")
        payload = session.request.call_args[1]["json"]
        assert payload["title"] == "Website Monitoring Alert: Example is DOWN"
        assert "critical" in payload["labels"]
        assert "## Website Monitoring Alert" in payload["body"]

    def test_close_issue_comments_first(self, client: GitHubIssues, session: MagicMock) -> None:
        """Closing posts the comment, then patches the state."""
        session.request.side_effect = [_response(201, {"id": 1}), _response(200, {"number": 7, "state": "closed"})]

        client.close_issue(7, "Recovered")

        calls = session.request.call_args_list
        assert calls[0][0] == ("POST", "https://api.github.com/repos/acme/monitoring/issues/7/comments")
        assert calls[0][1]["json"] == {"body": "Recovered"}
        assert calls[1][0] == ("PATCH", "https://api.github.com/repos/acme/monitoring/issues/7")
        assert calls[1][1]["json"] == {"state": "closed"}

    def test_http_error_raises(self, client: GitHubIssues, session: MagicMock) -> None:
        """Non-2xx responses raise IssueTrackerError with the API message."""
        session.request.return_value = _response(401, {"message": "Bad credentials"})

        with pytest.raises(IssueTrackerError, match="401: Bad credentials"):
            client.find_existing_issue("Example")

    def test_http_error_with_list_body(self, client: GitHubIssues, session: MagicMock) -> None:
        """A JSON error body that is not an object falls back to the raw text."""
        session.request.return_value = _response(502, [{"error": "bad gateway"}])

        with pytest.raises(IssueTrackerError, match=r"502: \[\{'error': 'bad gateway'\}\]"):
            client.find_existing_issue("Example")

    def test_network_error_raises(self, client: GitHubIssues, session: MagicMock) -> None:
        """Network failures raise IssueTrackerError."""
        session.request.side_effect = requests.exceptions.ConnectionError("down")

        with pytest.raises(IssueTrackerError):
            client.find_existing_issue("Example")
