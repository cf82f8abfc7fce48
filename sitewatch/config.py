"""Configuration loader with type-safe dataclasses."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .storage import safe_name

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


# Default load-time budget per site before a check is flagged as slow.
DEFAULT_PERFORMANCE_THRESHOLD_MS = 5000

# Upper bound for concurrent site checks. Each check may hold a browser page.
MAX_WORKERS_LIMIT = 16

FETCHER_ENGINES = ("http", "browser")

SLACK_API_URL = "https://slack.com/api/chat.postMessage"
GITHUB_API_URL = "https://api.github.com"

DEFAULT_ALLOWED_ORIGINS = ("http://localhost:3000", "http://127.0.0.1:3000")

_TRUE_VALUES = ("true", "1", "yes")


def _is_http_url(value: str) -> bool:
    """Return True for an absolute http(s) URL with a host."""
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


@dataclass(frozen=True)
class SiteConfig:
    """Configuration for a single website to monitor.

    Optional fields:
    - expected_redirect: Substring the final URL must contain for a redirect to
      count as successful (e.g. a login page on another host).
    - priority: Free-form label shown in notifications.
    - notification_webhook: Per-site chat webhook, used when no bot token is set.
    """

    name: str
    url: str
    enabled: bool = True
    performance_threshold_ms: int = DEFAULT_PERFORMANCE_THRESHOLD_MS
    expected_redirect: str | None = None
    priority: str | None = None
    notification_webhook: str | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ConfigError("Site name cannot be empty")
        if not self.url:
            raise ConfigError(f"URL cannot be empty for '{self.name}'")
        if not _is_http_url(self.url):
            raise ConfigError(f"URL must be an absolute http:// or https:// URL for '{self.name}', got '{self.url}'")
        if self.performance_threshold_ms <= 0:
            raise ConfigError(
                f"Performance threshold must be positive for '{self.name}' (got {self.performance_threshold_ms})"
            )
        if self.notification_webhook is not None and not _is_http_url(self.notification_webhook):
            raise ConfigError(f"Invalid notification webhook for '{self.name}': '{self.notification_webhook}'")

    @property
    def hostname(self) -> str:
        return urlparse(self.url).hostname or ""


@dataclass(frozen=True)
class MonitorConfig:
    """Configuration for a monitoring run."""

    max_workers: int = 3  # concurrent site checks
    navigation_timeout_ms: int = 30000  # hard limit for a single page fetch
    display_timezone: str = "UTC"  # timezone used for timestamps in notifications
    screenshots: bool = True  # capture a screenshot of down sites (browser fetcher only)
    fetcher: str = "http"  # http or browser

    def __post_init__(self) -> None:
        if not (1 <= self.max_workers <= MAX_WORKERS_LIMIT):
            raise ConfigError(f"max_workers must be between 1 and {MAX_WORKERS_LIMIT} (got {self.max_workers})")
        if self.navigation_timeout_ms < 1000:
            raise ConfigError(f"navigation_timeout_ms must be at least 1000 (got {self.navigation_timeout_ms})")
        if self.fetcher not in FETCHER_ENGINES:
            raise ConfigError(f"Invalid fetcher '{self.fetcher}'. Must be one of: {FETCHER_ENGINES}")
        try:
            ZoneInfo(self.display_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigError(f"Unknown display_timezone '{self.display_timezone}'")

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.display_timezone)


@dataclass(frozen=True)
class ProbeConfig:
    """Configuration for DNS and TLS probes."""

    timeout_seconds: float = 5.0
    allow_self_signed: bool = False  # skip certificate verification in the TLS probe
    ssl_warning_days: int = 30

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ConfigError(f"Probe timeout must be positive (got {self.timeout_seconds})")
        if self.ssl_warning_days < 0:
            raise ConfigError(f"SSL warning days must be non-negative (got {self.ssl_warning_days})")


@dataclass(frozen=True)
class StorageConfig:
    """Configuration for status and metrics files."""

    results_dir: str = "test-results"

    def __post_init__(self) -> None:
        if not self.results_dir:
            raise ConfigError("Storage results_dir cannot be empty")


@dataclass(frozen=True)
class SlackConfig:
    """Configuration for Slack notifications.

    The bot-token API is preferred when a token and channel are configured and
    notifications are enabled. Otherwise the per-site webhook, then the global
    webhook, is used.
    """

    bot_token: str | None = None
    channel: str | None = None
    notifications_enabled: bool = False
    webhook_url: str | None = None
    max_attempts: int = 3
    retry_delay: float = 1.0  # seconds, multiplied by the attempt number

    def __post_init__(self) -> None:
        if self.webhook_url is not None and not _is_http_url(self.webhook_url):
            raise ConfigError(f"Slack webhook_url must be an http(s) URL, got '{self.webhook_url}'")
        if self.max_attempts < 1:
            raise ConfigError(f"Slack max_attempts must be at least 1 (got {self.max_attempts})")
        if self.retry_delay < 0:
            raise ConfigError(f"Slack retry_delay must be non-negative (got {self.retry_delay})")

    @property
    def bot_enabled(self) -> bool:
        return bool(self.notifications_enabled and self.bot_token and self.channel)

    @property
    def configured(self) -> bool:
        return self.bot_enabled or bool(self.webhook_url)


@dataclass(frozen=True)
class GitHubConfig:
    """Configuration for filing issues on site failures."""

    token: str | None = None
    repository: str | None = None  # owner/name
    api_url: str = GITHUB_API_URL

    def __post_init__(self) -> None:
        if self.repository is not None and self.repository.count("/") != 1:
            raise ConfigError(f"GitHub repository must be in 'owner/name' form, got '{self.repository}'")

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.repository)


@dataclass(frozen=True)
class RunMetadata:
    """CI run context attached to issues and the JUnit report."""

    run_id: str | None = None
    server_url: str = "https://github.com"
    repository: str | None = None
    sha: str | None = None
    ref_name: str | None = None
    actor: str | None = None

    @property
    def run_url(self) -> str | None:
        if not (self.run_id and self.repository):
            return None
        return f"{self.server_url}/{self.repository}/actions/runs/{self.run_id}"

    @classmethod
    def from_env(cls) -> "RunMetadata":
        return cls(
            run_id=os.environ.get("GITHUB_RUN_ID"),
            server_url=os.environ.get("GITHUB_SERVER_URL", "https://github.com"),
            repository=os.environ.get("GITHUB_REPOSITORY"),
            sha=os.environ.get("GITHUB_SHA"),
            ref_name=os.environ.get("GITHUB_REF_NAME"),
            actor=os.environ.get("GITHUB_ACTOR"),
        )


@dataclass(frozen=True)
class ApiConfig:
    """Configuration for the status-query API server."""

    port: int = 3000
    api_key: str | None = None  # required on /api/* when set
    allowed_origins: tuple[str, ...] = DEFAULT_ALLOWED_ORIGINS  # "*" allows any origin
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 60

    def __post_init__(self) -> None:
        if self.port < 0 or self.port > 65535:  # 0 binds an ephemeral port
            raise ConfigError(f"API port must be between 0 and 65535, got {self.port}")
        if self.rate_limit_requests < 1:
            raise ConfigError(f"API rate_limit_requests must be at least 1, got {self.rate_limit_requests}")
        if self.rate_limit_window_seconds < 1:
            raise ConfigError(
                f"API rate_limit_window_seconds must be at least 1, got {self.rate_limit_window_seconds}"
            )


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    sites: list[SiteConfig]
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    probes: ProbeConfig = field(default_factory=ProbeConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    slack: SlackConfig = field(default_factory=SlackConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    run: RunMetadata = field(default_factory=RunMetadata)

    def __post_init__(self) -> None:
        names = [site.name for site in self.sites]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigError(f"Duplicate site names found: {duplicates}")

        # Status and metrics files are keyed by safe_name().
        by_key: dict[str, list[str]] = {}
        for name in names:
            by_key.setdefault(safe_name(name), []).append(name)
        collisions = sorted(group for group in by_key.values() if len(group) > 1)
        if collisions:
            raise ConfigError(f"Site names map to the same storage key: {collisions}")

    @property
    def enabled_sites(self) -> list[SiteConfig]:
        """Return enabled sites in configuration order."""
        return [site for site in self.sites if site.enabled]


def _get(data: dict, *keys: str, default=None):
    """Return the first present key, accepting snake_case and camelCase spellings."""
    for key in keys:
        if key in data:
            return data[key]
    return default


def _optional_str(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_site_config(data: dict, index: int) -> SiteConfig:
    """Parse a single site configuration entry."""
    if not isinstance(data, dict):
        raise ConfigError(f"Site entry {index} must be a dictionary")

    name = data.get("name")
    url = data.get("url")

    if name is None:
        raise ConfigError(f"Site entry {index} is missing 'name' field")
    if url is None:
        raise ConfigError(f"Site entry {index} is missing 'url' field")

    threshold = _get(data, "performance_threshold_ms", "performanceThreshold", default=DEFAULT_PERFORMANCE_THRESHOLD_MS)
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
        raise ConfigError(f"Site entry {index}: performance threshold must be a number")

    enabled = data.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ConfigError(f"Site entry {index}: 'enabled' must be a boolean")

    priority = data.get("priority")

    return SiteConfig(
        name=str(name),
        url=str(url),
        enabled=enabled,
        performance_threshold_ms=int(threshold),
        expected_redirect=_optional_str(_get(data, "expected_redirect", "expectedRedirect")),
        priority=str(priority) if priority is not None else None,
        notification_webhook=_optional_str(_get(data, "notification_webhook", "webhookUrl")),
    )


def _flag(data: dict, key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"'{key}' must be a boolean, got {value!r}")
    return value


def _section(data: dict, name: str) -> dict:
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' section must be a dictionary")
    return section


def _parse_monitor_config(data: dict) -> MonitorConfig:
    """Parse monitor configuration section."""
    return MonitorConfig(
        max_workers=int(data.get("max_workers", 3)),
        navigation_timeout_ms=int(data.get("navigation_timeout_ms", 30000)),
        display_timezone=str(data.get("display_timezone", "UTC")),
        screenshots=_flag(data, "screenshots", True),
        fetcher=str(data.get("fetcher", "http")),
    )


def _parse_probe_config(data: dict) -> ProbeConfig:
    """Parse probes configuration section."""
    return ProbeConfig(
        timeout_seconds=float(data.get("timeout_seconds", 5.0)),
        allow_self_signed=_flag(data, "allow_self_signed", False),
        ssl_warning_days=int(data.get("ssl_warning_days", 30)),
    )


def _parse_slack_config(data: dict) -> SlackConfig:
    """Parse slack configuration section."""
    return SlackConfig(
        bot_token=_optional_str(data.get("bot_token")),
        channel=_optional_str(data.get("channel")),
        notifications_enabled=_flag(data, "notifications_enabled", False),
        webhook_url=_optional_str(data.get("webhook_url")),
        max_attempts=int(data.get("max_attempts", 3)),
        retry_delay=float(data.get("retry_delay", 1.0)),
    )


def _parse_github_config(data: dict) -> GitHubConfig:
    """Parse github configuration section."""
    return GitHubConfig(
        token=_optional_str(data.get("token")),
        repository=_optional_str(data.get("repository")),
        api_url=str(data.get("api_url", GITHUB_API_URL)).rstrip("/"),
    )


def _parse_api_config(data: dict) -> ApiConfig:
    """Parse API configuration section."""
    origins = data.get("allowed_origins")
    if origins is None:
        origins = list(DEFAULT_ALLOWED_ORIGINS)
    if isinstance(origins, str):
        origins = [origin.strip() for origin in origins.split(",") if origin.strip()]
    if not isinstance(origins, list):
        raise ConfigError("'api.allowed_origins' must be a list or comma-separated string")

    return ApiConfig(
        port=int(data.get("port", 3000)),
        api_key=_optional_str(data.get("api_key")),
        allowed_origins=tuple(str(origin) for origin in origins),
        rate_limit_requests=int(data.get("rate_limit_requests", 100)),
        rate_limit_window_seconds=int(data.get("rate_limit_window_seconds", 60)),
    )


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - SLACK_BOT_TOKEN, SLACK_WEBHOOK_URL: slack.bot_token, slack.webhook_url
    - SLACK_CHANNEL_ID / SLACK_CHANNEL: slack.channel (ID preferred)
    - SLACK_NOTIFICATION: slack.notifications_enabled (true/false)
    - GITHUB_TOKEN, GITHUB_REPOSITORY: github.token, github.repository
    - ALLOW_SELF_SIGNED_CERTS: probes.allow_self_signed (true/false)
    - SITEWATCH_RESULTS_DIR: storage.results_dir
    - SITEWATCH_API_PORT, SITEWATCH_API_KEY: api.port, api.api_key
    - ALLOWED_ORIGINS: api.allowed_origins (comma-separated)
    - SITEWATCH_FETCHER: monitor.fetcher (http/browser)
    """
    for section in ("monitor", "probes", "storage", "slack", "github", "api"):
        if config_data.get(section) is None:
            config_data[section] = {}

    slack = config_data["slack"]
    if "SLACK_BOT_TOKEN" in os.environ:
        slack["bot_token"] = os.environ["SLACK_BOT_TOKEN"]
    channel = os.environ.get("SLACK_CHANNEL_ID") or os.environ.get("SLACK_CHANNEL")
    if channel:
        slack["channel"] = channel
    if "SLACK_NOTIFICATION" in os.environ:
        slack["notifications_enabled"] = os.environ["SLACK_NOTIFICATION"].lower() in _TRUE_VALUES
    if "SLACK_WEBHOOK_URL" in os.environ:
        slack["webhook_url"] = os.environ["SLACK_WEBHOOK_URL"]

    github = config_data["github"]
    if "GITHUB_TOKEN" in os.environ:
        github["token"] = os.environ["GITHUB_TOKEN"]
    if "GITHUB_REPOSITORY" in os.environ:
        github["repository"] = os.environ["GITHUB_REPOSITORY"]

    if "ALLOW_SELF_SIGNED_CERTS" in os.environ:
        config_data["probes"]["allow_self_signed"] = os.environ["ALLOW_SELF_SIGNED_CERTS"].lower() in _TRUE_VALUES

    results_dir = os.environ.get("SITEWATCH_RESULTS_DIR")
    if results_dir is not None:
        config_data["storage"]["results_dir"] = results_dir

    api_port = os.environ.get("SITEWATCH_API_PORT")
    if api_port is not None:
        try:
            config_data["api"]["port"] = int(api_port)
        except ValueError:
            raise ConfigError(f"SITEWATCH_API_PORT must be an integer, got '{api_port}'")

    api_key = os.environ.get("SITEWATCH_API_KEY")
    if api_key is not None:
        config_data["api"]["api_key"] = api_key

    allowed_origins = os.environ.get("ALLOWED_ORIGINS")
    if allowed_origins is not None:
        config_data["api"]["allowed_origins"] = allowed_origins

    fetcher = os.environ.get("SITEWATCH_FETCHER")
    if fetcher is not None:
        config_data["monitor"]["fetcher"] = fetcher

    return config_data


def parse_config(data) -> Config:
    """Build a validated Config from already-parsed YAML/JSON data.

    A bare list is accepted as the list of sites.

    Raises:
        ConfigError: If the configuration is invalid.
    """
    if data is None:
        raise ConfigError("Configuration file is empty")

    if isinstance(data, list):
        data = {"sites": data}

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a dictionary or a list of sites")

    data = _apply_env_overrides(data)

    sites_data = data.get("sites")
    if sites_data is None:
        raise ConfigError("Configuration must contain a 'sites' section")
    if not isinstance(sites_data, list):
        raise ConfigError("'sites' must be a list")

    sites = [_parse_site_config(site_data, i) for i, site_data in enumerate(sites_data)]
    if not sites:
        logger.warning("No websites configured")

    try:
        return Config(
            sites=sites,
            monitor=_parse_monitor_config(_section(data, "monitor")),
            probes=_parse_probe_config(_section(data, "probes")),
            storage=StorageConfig(results_dir=str(_section(data, "storage").get("results_dir", "test-results"))),
            slack=_parse_slack_config(_section(data, "slack")),
            github=_parse_github_config(_section(data, "github")),
            api=_parse_api_config(_section(data, "api")),
            run=RunMetadata.from_env(),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")


def load_config(config_path: str) -> Config:
    """Load and validate configuration from a YAML (or JSON) file.

    Args:
        config_path: Path to the configuration file.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    return parse_config(data)
