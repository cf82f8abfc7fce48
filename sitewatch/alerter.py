"""Slack notifications and GitHub issue filing for site failures."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import requests

from .changes import calculate_load_time_trend
from .classifier import get_category_metadata
from .config import SLACK_API_URL, Config, RunMetadata, SiteConfig, SlackConfig
from .issues import GitHubIssues, IssueTrackerError
from .models import ChangeInfo, RunSummary, StatusReport
from .probes import NOT_HTTPS_MESSAGE

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised when a chat notification cannot be delivered.

    Attributes:
        status_code: HTTP status of the last attempt, or None for network errors.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500 and self.status_code != 429


# Timeout for Slack requests in seconds.
REQUEST_TIMEOUT = 10

# Slack field value limits.
MAX_ERROR_LENGTH = 500
MAX_DOWN_LIST_LENGTH = 1000

COLOR_UP = "#36a64f"
COLOR_DOWN = "#ff0000"

USERNAME = "Website Monitor"
ICON_EMOJI = ":bar_chart:"
FOOTER = "sitewatch"


def _field(title: str, value: str, short: bool = True) -> dict:
    return {"title": title, "value": value, "short": short}


def _retry_after_seconds(response: requests.Response) -> float | None:
    """Read the server-requested retry delay from a 429 response."""
    header = response.headers.get("Retry-After")
    if header:
        try:
            return float(header)
        except ValueError:
            pass
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("retry_after") is not None:
        try:
            return float(body["retry_after"])
        except (TypeError, ValueError):
            return None
    return None


class SlackNotifier:
    """Deliver Slack messages via the bot-token API or an incoming webhook."""

    def __init__(
        self,
        config: SlackConfig,
        tz: ZoneInfo | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the notifier.

        Args:
            config: Slack configuration (token, channel, webhook, retry policy).
            tz: Timezone for human-readable timestamps (UTC by default).
            session: HTTP session to use.
            sleep: Delay function between retries.
        """
        self._config = config
        self._tz = tz or ZoneInfo("UTC")
        self._session = session or requests.Session()
        self._sleep = sleep

    def is_configured(self, site_webhook: str | None = None) -> bool:
        return self._config.bot_enabled or bool(site_webhook or self._config.webhook_url)

    def _format_time(self, moment: datetime) -> str:
        return moment.astimezone(self._tz).strftime("%Y-%m-%d %H:%M:%S %Z")

    def build_site_payload(
        self,
        report: StatusReport,
        change: ChangeInfo | None = None,
        previous: StatusReport | None = None,
        expects_redirect: bool = False,
    ) -> dict:
        """Build the attachment payload describing one site check."""
        emoji = "✅" if report.is_up else "❌"
        headline = "Running Fine!" if report.is_up else "Issues Detected!"
        fields = [_field("URL", report.url)]

        if report.final_url and report.final_url != report.url:
            fields.append(_field("Final URL", report.final_url))
        if report.page_title:
            fields.append(_field("Page Title", report.page_title, short=False))

        fields.append(_field("Status", report.status))
        fields.append(_field("Status Code", str(report.http_status_code or "N/A")))
        fields.append(_field("Load Time", f"{report.load_time_ms}ms" if report.load_time_ms is not None else "N/A"))

        trend = calculate_load_time_trend(report.load_time_ms, previous)
        if trend is not None:
            fields.append(_field("Response Time Trend", str(trend)))

        fields.append(_field("Check Duration", f"{report.check_duration_ms}ms"))
        fields.append(_field("Check Time", self._format_time(report.checked_at)))

        if expects_redirect:
            fields.append(
                _field("Redirected to Expected", "Yes (Expected)" if report.redirected_to_expected else "No (Unexpected)")
            )

        if report.error_message:
            fields.append(_field("Error", report.error_message[:MAX_ERROR_LENGTH], short=False))
        if report.error_category:
            metadata = get_category_metadata(report.error_category)
            fields.append(_field("Error Category", report.error_category))
            fields.append(_field("Severity", report.severity.upper()))
            fields.append(_field("Priority", f"P{metadata.priority}"))

        tls = report.tls
        if not tls.valid and tls.error != NOT_HTTPS_MESSAGE:
            fields.append(_field("SSL Certificate", tls.error or "Invalid"))
        elif tls.expiring_soon:
            fields.append(_field("SSL Certificate", f"Expires in {tls.days_until_expiry} days"))

        if change is not None and change.changed:
            framing = "🟢 Recovered" if change.is_recovery else "🔴 Downtime detected"
            fields.append(_field("Status Change", framing, short=False))

        if report.screenshot_path:
            fields.append(_field("Screenshot", f"Saved at: `{report.screenshot_path}`", short=False))

        return {
            "username": USERNAME,
            "icon_emoji": ICON_EMOJI,
            "attachments": [
                {
                    "color": COLOR_UP if report.is_up else COLOR_DOWN,
                    "title": f"Website Monitoring Results: {report.site_name}",
                    "text": f"{emoji} Website Status: {report.status} - {headline}",
                    "fields": fields,
                    "footer": FOOTER,
                    "ts": int(report.checked_at.timestamp()),
                }
            ],
        }

    def build_summary_payload(self, summary: RunSummary, now: datetime | None = None) -> dict:
        """Build the run summary payload."""
        now = now or datetime.now(UTC)
        fields = [
            _field("Total Sites", str(summary.total)),
            _field("Sites Up", str(summary.up)),
            _field("Sites Down", str(summary.down)),
            _field("Uptime", f"{summary.uptime_percentage:.2f}%"),
            _field("Timestamp", self._format_time(now), short=False),
        ]
        if summary.down_sites:
            down_list = "\n".join(f"• {name}: {message or 'Unknown error'}" for name, message in summary.down_sites)
            fields.append(_field("Down Sites", down_list[:MAX_DOWN_LIST_LENGTH], short=False))

        return {
            "username": USERNAME,
            "icon_emoji": ICON_EMOJI,
            "attachments": [
                {
                    "color": COLOR_UP if summary.down == 0 else COLOR_DOWN,
                    "title": f"{'✅' if summary.down == 0 else '⚠️'} Monitoring Summary",
                    "fields": fields,
                    "footer": FOOTER,
                    "ts": int(now.timestamp()),
                }
            ],
        }

    def send(self, payload: dict, site_webhook: str | None = None) -> bool:
        """Deliver a payload through the preferred channel.

        Channel order: bot token API, then the site's webhook, then the global
        webhook. Failures are logged, never raised.

        Returns:
            True if Slack accepted the message.
        """
        try:
            if self._config.bot_enabled:
                attachments = payload.get("attachments") or [{}]
                body = {
                    "channel": self._config.channel,
                    "text": attachments[0].get("title") or "Website Monitor Notification",
                    **payload,
                }
                headers = {"Authorization": f"Bearer {self._config.bot_token}"}
                self._post_with_retry(SLACK_API_URL, body, headers=headers, check_ok=True)
                return True

            webhook = site_webhook or self._config.webhook_url
            if not webhook:
                logger.debug("No Slack bot token or webhook configured, skipping notification")
                return False
            self._post_with_retry(webhook, payload)
            return True

        except NotificationError as e:
            if e.is_client_error:
                logger.error("Slack rejected the notification, check token/channel/webhook configuration: %s", e)
            else:
                logger.error("Slack notification failed: %s", e)
            return False

    def _post_with_retry(
        self,
        url: str,
        payload: dict,
        headers: dict | None = None,
        check_ok: bool = False,
    ) -> None:
        """POST with linear backoff on 5xx, 429 and network errors.

        Raises:
            NotificationError: On a permanent failure or when attempts run out.
        """
        max_attempts = self._config.max_attempts
        last_error: NotificationError | None = None

        for attempt in range(1, max_attempts + 1):
            delay = self._config.retry_delay * attempt
            try:
                response = self._session.post(url, json=payload, headers=headers, timeout=REQUEST_TIMEOUT)
            except requests.RequestException as e:
                last_error = NotificationError(f"Request error: {e}")
            else:
                status = response.status_code
                if 200 <= status < 300:
                    if check_ok:
                        try:
                            body = response.json()
                        except ValueError:
                            body = {}
                        if not body.get("ok"):
                            # Slack reports auth/channel problems with HTTP 200 and ok=false.
                            raise NotificationError(f"Slack API error: {body.get('error', 'unknown')}", status_code=400)
                    if attempt > 1:
                        logger.info("Slack notification sent after %d retry(ies)", attempt - 1)
                    return
                if status == 429:
                    retry_after = _retry_after_seconds(response)
                    if retry_after is not None:
                        delay = retry_after
                    last_error = NotificationError("Rate limited by Slack (HTTP 429)", status_code=status)
                elif status >= 500:
                    last_error = NotificationError(f"Slack server error (HTTP {status})", status_code=status)
                else:
                    raise NotificationError(f"HTTP {status}: {response.text[:200]}", status_code=status)

            if attempt < max_attempts:
                logger.warning(
                    "Slack delivery failed (attempt %d/%d, retrying in %.1fs): %s",
                    attempt,
                    max_attempts,
                    delay,
                    last_error,
                )
                self._sleep(delay)

        raise NotificationError(
            f"Gave up after {max_attempts} attempts: {last_error}",
            status_code=last_error.status_code if last_error else None,
        )

    def notify_site(
        self,
        site: SiteConfig,
        report: StatusReport,
        change: ChangeInfo | None = None,
        previous: StatusReport | None = None,
    ) -> bool:
        payload = self.build_site_payload(report, change, previous, expects_redirect=bool(site.expected_redirect))
        return self.send(payload, site_webhook=site.notification_webhook)

    def send_summary(self, summary: RunSummary) -> bool:
        return self.send(self.build_summary_payload(summary))

    def test_notification(self) -> bool:
        """Send a test message through the configured channel."""
        now = datetime.now(UTC)
        payload = {
            "username": USERNAME,
            "icon_emoji": ICON_EMOJI,
            "attachments": [
                {
                    "color": COLOR_UP,
                    "title": "sitewatch test notification",
                    "text": "✅ Slack delivery is configured correctly.",
                    "fields": [_field("Timestamp", self._format_time(now), short=False)],
                    "footer": FOOTER,
                    "ts": int(now.timestamp()),
                }
            ],
        }
        return self.send(payload)


@dataclass(frozen=True)
class DispatchOutcome:
    """What the dispatcher did for one report."""

    notified: bool = False  # a down report was handed to the channels
    chat_sent: bool = False
    issue_created: int | None = None
    issue_closed: int | None = None


class Alerter:
    """Decide which notifications a finished check triggers and send them.

    Only down reports notify. Chat and issue-tracker delivery are independent
    and best-effort: failures are logged and never propagate.
    """

    def __init__(
        self,
        slack: SlackNotifier | None = None,
        issues: GitHubIssues | None = None,
        run: RunMetadata | None = None,
    ) -> None:
        self._slack = slack
        self._issues = issues
        self._run = run or RunMetadata()

    @classmethod
    def from_config(cls, config: Config) -> "Alerter":
        """Build an alerter with only the channels the configuration enables."""
        slack = SlackNotifier(config.slack, tz=config.monitor.tz)
        issues = GitHubIssues(config.github) if config.github.enabled else None
        return cls(slack=slack, issues=issues, run=config.run)

    def dispatch(
        self,
        site: SiteConfig,
        report: StatusReport,
        change: ChangeInfo,
        previous: StatusReport | None = None,
    ) -> DispatchOutcome:
        if report.is_up:
            closed = self._close_recovered_issue(report, change) if change.is_recovery else None
            return DispatchOutcome(issue_closed=closed)

        chat_sent = False
        if self._slack is not None:
            chat_sent = self._slack.notify_site(site, report, change, previous)

        issue_created = None
        if self._issues is not None:
            issue_created = self._file_issue(self._issues, report, change)

        return DispatchOutcome(notified=True, chat_sent=chat_sent, issue_created=issue_created)

    def _file_issue(self, issues: GitHubIssues, report: StatusReport, change: ChangeInfo) -> int | None:
        try:
            existing = issues.find_existing_issue(report.site_name)
        except IssueTrackerError as e:
            # Filing without a successful lookup could duplicate an open issue.
            logger.error("Skipping issue for %s, lookup failed: %s", report.site_name, e)
            return None

        if existing is not None:
            logger.info("Open issue #%s already tracks %s", existing.get("number"), report.site_name)
            return None

        try:
            issue = issues.create_website_failure_issue(report, self._run, change)
        except IssueTrackerError as e:
            logger.error("Failed to create issue for %s: %s", report.site_name, e)
            return None
        return issue.get("number")

    def _close_recovered_issue(self, report: StatusReport, change: ChangeInfo) -> int | None:
        if self._issues is None:
            return None
        try:
            existing = self._issues.find_existing_issue(report.site_name)
            number = existing.get("number") if existing is not None else None
            if number is None:
                return None
            downtime = ""
            if change.downtime_duration_ms is not None:
                downtime = f" after {change.downtime_duration_ms // 1000}s of downtime"
            comment = (
                f"✅ {report.site_name} recovered{downtime}. "
                f"HTTP {report.http_status_code} at {report.checked_at.isoformat()}."
            )
            self._issues.close_issue(number, comment)
            return number
        except IssueTrackerError as e:
            logger.error("Failed to close issue for %s: %s", report.site_name, e)
            return None

    def send_summary(self, summary: RunSummary) -> bool:
        if self._slack is None or not self._slack.is_configured():
            return False
        return self._slack.send_summary(summary)
