"""Tests for the configuration loader."""

from pathlib import Path

import pytest

from sitewatch.config import (
    ApiConfig,
    Config,
    ConfigError,
    GitHubConfig,
    MonitorConfig,
    ProbeConfig,
    RunMetadata,
    SiteConfig,
    SlackConfig,
    load_config,
    parse_config,
)


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """Create a temporary directory for config files."""
    return tmp_path


@pytest.fixture
def valid_config_content() -> str:
    """Return valid YAML configuration content."""
    return """
sites:
  - name: Marketing
    url: https://www.example.com
    performance_threshold_ms: 3000
    priority: high
  - name: Portal
    url: https://portal.example.com
    expected_redirect: login.example.com
    notification_webhook: https://hooks.slack.com/services/T/B/X
  - name: Legacy
    url: http://legacy.example.com
    enabled: false

monitor:
  max_workers: 5
  display_timezone: Europe/Madrid

slack:
  webhook_url: https://hooks.slack.com/services/T/B/GLOBAL

api:
  port: 8080
  api_key: secret
"""


class TestSiteConfig:
    """Tests for SiteConfig validation."""

    def test_defaults(self) -> None:
        """Optional fields default sensibly."""
        site = SiteConfig(name="Example", url="https://example.com")

        assert site.enabled is True
        assert site.performance_threshold_ms == 5000
        assert site.expected_redirect is None
        assert site.hostname == "example.com"

    def test_empty_name(self) -> None:
        """Names cannot be blank."""
        with pytest.raises(ConfigError, match="name cannot be empty"):
            SiteConfig(name="  ", url="https://example.com")

    @pytest.mark.parametrize("url", ["example.com", "ftp://example.com", "https://", "not a url"])
    def test_invalid_url(self, url: str) -> None:
        """URLs must be absolute http(s) with a host."""
        with pytest.raises(ConfigError, match="URL must be"):
            SiteConfig(name="Example", url=url)

    def test_empty_url(self) -> None:
        """URLs cannot be empty."""
        with pytest.raises(ConfigError, match="URL cannot be empty"):
            SiteConfig(name="Example", url="")

    @pytest.mark.parametrize("threshold", [0, -100])
    def test_non_positive_threshold(self, threshold: int) -> None:
        """Thresholds must be positive."""
        with pytest.raises(ConfigError, match="threshold must be positive"):
            SiteConfig(name="Example", url="https://example.com", performance_threshold_ms=threshold)

    def test_invalid_webhook(self) -> None:
        """Per-site webhooks must be well-formed URLs."""
        with pytest.raises(ConfigError, match="Invalid notification webhook"):
            SiteConfig(name="Example", url="https://example.com", notification_webhook="hooks.slack.com")


class TestMonitorConfig:
    """Tests for MonitorConfig validation."""

    def test_defaults(self) -> None:
        """Defaults: 3 workers, 30 s navigation timeout, UTC, http fetcher."""
        config = MonitorConfig()

        assert config.max_workers == 3
        assert config.navigation_timeout_ms == 30000
        assert config.display_timezone == "UTC"
        assert config.fetcher == "http"

    @pytest.mark.parametrize("workers", [0, 17])
    def test_worker_bounds(self, workers: int) -> None:
        """Worker count is bounded."""
        with pytest.raises(ConfigError, match="max_workers"):
            MonitorConfig(max_workers=workers)

    def test_unknown_timezone(self) -> None:
        """Timezones must exist."""
        with pytest.raises(ConfigError, match="display_timezone"):
            MonitorConfig(display_timezone="Mars/Olympus")

    def test_unknown_fetcher(self) -> None:
        """Only known fetcher engines are accepted."""
        with pytest.raises(ConfigError, match="Invalid fetcher"):
            MonitorConfig(fetcher="curl")

    def test_short_timeout(self) -> None:
        """Navigation timeouts under a second are rejected."""
        with pytest.raises(ConfigError):
            MonitorConfig(navigation_timeout_ms=500)


class TestSectionConfigs:
    """Tests for the remaining section dataclasses."""

    def test_probe_timeout_positive(self) -> None:
        """Probe timeouts must be positive."""
        with pytest.raises(ConfigError):
            ProbeConfig(timeout_seconds=0)

    def test_slack_channel_selection(self) -> None:
        """The bot API needs token, channel and the notifications flag."""
        assert SlackConfig(bot_token="x", channel="C1").bot_enabled is False
        assert SlackConfig(bot_token="x", channel="C1", notifications_enabled=True).bot_enabled is True
        assert SlackConfig(webhook_url="https://hooks.slack.com/x").configured is True
        assert SlackConfig().configured is False

    def test_slack_invalid_webhook(self) -> None:
        """The global webhook must be a URL."""
        with pytest.raises(ConfigError):
            SlackConfig(webhook_url="nope")

    def test_github_repository_format(self) -> None:
        """Repositories are owner/name."""
        with pytest.raises(ConfigError, match="owner/name"):
            GitHubConfig(token="t", repository="just-a-name")
        assert GitHubConfig(token="t", repository="acme/site").enabled is True
        assert GitHubConfig(repository="acme/site").enabled is False

    def test_api_port_range(self) -> None:
        """Ports must fit in 16 bits."""
        with pytest.raises(ConfigError):
            ApiConfig(port=70000)

    def test_api_default_origins(self) -> None:
        """Local dashboards are allowed by default."""
        assert "http://localhost:3000" in ApiConfig().allowed_origins

    def test_run_url(self) -> None:
        """The run URL needs both run ID and repository."""
        assert RunMetadata(run_id="9", repository="acme/site").run_url == "https://github.com/acme/site/actions/runs/9"
        assert RunMetadata(run_id="9").run_url is None


class TestConfig:
    """Tests for the Config container."""

    def test_duplicate_names(self) -> None:
        """Site names must be unique."""
        sites = [
            SiteConfig(name="Example", url="https://a.example.com"),
            SiteConfig(name="Example", url="https://b.example.com"),
        ]
        with pytest.raises(ConfigError, match="Duplicate site names"):
            Config(sites=sites)

    def test_names_sharing_a_storage_key(self) -> None:
        """Names that differ only in punctuation would share status files."""
        with pytest.raises(ConfigError, match="same storage key"):
            parse_config(
                {
                    "sites": [
                        {"name": "Site A", "url": "https://a.example.com"},
                        {"name": "Site-A", "url": "https://b.example.com"},
                    ]
                }
            )

    def test_enabled_sites_keep_order(self) -> None:
        """Disabled sites are skipped, order preserved."""
        config = Config(
            sites=[
                SiteConfig(name="C", url="https://c.example.com"),
                SiteConfig(name="A", url="https://a.example.com", enabled=False),
                SiteConfig(name="B", url="https://b.example.com"),
            ]
        )
        assert [site.name for site in config.enabled_sites] == ["C", "B"]


class TestLoadConfig:
    """Tests for load_config() and parse_config()."""

    def test_load_valid(self, config_dir: Path, valid_config_content: str) -> None:
        """A valid file loads every section."""
        path = config_dir / "config.yaml"
        path.write_text(valid_config_content)

        config = load_config(str(path))

        assert [site.name for site in config.sites] == ["Marketing", "Portal", "Legacy"]
        assert config.sites[0].performance_threshold_ms == 3000
        assert config.sites[0].priority == "high"
        assert config.sites[1].expected_redirect == "login.example.com"
        assert config.sites[1].notification_webhook == "https://hooks.slack.com/services/T/B/X"
        assert config.sites[2].enabled is False
        assert config.monitor.max_workers == 5
        assert str(config.monitor.tz) == "Europe/Madrid"
        assert config.slack.webhook_url == "https://hooks.slack.com/services/T/B/GLOBAL"
        assert config.api.port == 8080
        assert config.api.api_key == "secret"
        assert config.storage.results_dir == "test-results"

    def test_json_is_accepted(self, config_dir: Path) -> None:
        """JSON files parse as YAML, including a bare list of sites."""
        path = config_dir / "websites.json"
        path.write_text('[{"name": "Example", "url": "https://example.com", "performanceThreshold": 4000}]')

        config = load_config(str(path))

        assert config.sites[0].performance_threshold_ms == 4000

    def test_camel_case_aliases(self) -> None:
        """camelCase site keys are accepted."""
        config = parse_config(
            [
                {
                    "name": "Portal",
                    "url": "https://portal.example.com",
                    "expectedRedirect": "login",
                    "webhookUrl": "https://hooks.slack.com/services/T/B/X",
                }
            ]
        )
        assert config.sites[0].expected_redirect == "login"
        assert config.sites[0].notification_webhook == "https://hooks.slack.com/services/T/B/X"

    def test_missing_file(self, config_dir: Path) -> None:
        """A missing file is a ConfigError."""
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(config_dir / "missing.yaml"))

    def test_malformed_yaml(self, config_dir: Path) -> None:
        """Unparseable YAML is a ConfigError."""
        path = config_dir / "config.yaml"
        path.write_text("sites: [unclosed")

        with pytest.raises(ConfigError, match="Failed to parse"):
            load_config(str(path))

    def test_empty_file(self, config_dir: Path) -> None:
        """An empty file is a ConfigError."""
        path = config_dir / "config.yaml"
        path.write_text("")

        with pytest.raises(ConfigError, match="empty"):
            load_config(str(path))

    def test_missing_sites(self) -> None:
        """The sites section is required."""
        with pytest.raises(ConfigError, match="'sites'"):
            parse_config({"monitor": {}})

    def test_missing_url(self) -> None:
        """Every site needs a URL."""
        with pytest.raises(ConfigError, match="missing 'url'"):
            parse_config({"sites": [{"name": "Example"}]})

    def test_non_numeric_threshold(self) -> None:
        """Thresholds must be numbers."""
        with pytest.raises(ConfigError, match="must be a number"):
            parse_config({"sites": [{"name": "Example", "url": "https://example.com", "performance_threshold_ms": "fast"}]})

    def test_invalid_section_value(self) -> None:
        """Bad section values are wrapped in ConfigError."""
        with pytest.raises(ConfigError):
            parse_config({"sites": [], "monitor": {"max_workers": "many"}})

    @pytest.mark.parametrize(
        "section,key",
        [
            ("monitor", "screenshots"),
            ("probes", "allow_self_signed"),
            ("slack", "notifications_enabled"),
        ],
    )
    def test_quoted_boolean_is_rejected(self, config_dir: Path, section: str, key: str) -> None:
        """A quoted "false" in YAML is an error, not a truthy string."""
        config_file = config_dir / "config.yaml"
        config_file.write_text(f'sites: []\n{section}:\n  {key}: "false"\n')

        with pytest.raises(ConfigError, match=f"'{key}' must be a boolean"):
            load_config(str(config_file))

    def test_yaml_booleans_are_accepted(self, config_dir: Path) -> None:
        """Unquoted YAML booleans load as flags."""
        config_file = config_dir / "config.yaml"
        config_file.write_text("sites: []\nmonitor:\n  screenshots: false\nprobes:\n  allow_self_signed: true\n")

        config = load_config(str(config_file))

        assert config.monitor.screenshots is False
        assert config.probes.allow_self_signed is True

    def test_empty_site_list_is_allowed(self) -> None:
        """An empty list loads with a warning."""
        assert parse_config({"sites": []}).sites == []


class TestEnvironmentVariableOverrides:
    """Tests for environment variable overrides."""

    def test_slack_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Slack token, channel and flag come from the environment."""
        monkeypatch.setenv("SLACK_BOT_TOKEN", "xoxb-env")
        monkeypatch.setenv("SLACK_CHANNEL", "C-fallback")
        monkeypatch.setenv("SLACK_CHANNEL_ID", "C-preferred")
        monkeypatch.setenv("SLACK_NOTIFICATION", "true")

        config = parse_config({"sites": []})

        assert config.slack.bot_token == "xoxb-env"
        assert config.slack.channel == "C-preferred"
        assert config.slack.bot_enabled is True

    def test_github_and_run_metadata(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """GitHub settings and run metadata come from Actions variables."""
        monkeypatch.setenv("GITHUB_TOKEN", "ghs_env")
        monkeypatch.setenv("GITHUB_REPOSITORY", "acme/site")
        monkeypatch.setenv("GITHUB_RUN_ID", "123")
        monkeypatch.setenv("GITHUB_SHA", "abcdef0")

        config = parse_config({"sites": []})

        assert config.github.enabled is True
        assert config.run.run_url == "https://github.com/acme/site/actions/runs/123"
        assert config.run.sha == "abcdef0"

    def test_misc_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Probe, storage, API and fetcher overrides."""
        monkeypatch.setenv("ALLOW_SELF_SIGNED_CERTS", "1")
        monkeypatch.setenv("SITEWATCH_RESULTS_DIR", "/tmp/results")
        monkeypatch.setenv("SITEWATCH_API_PORT", "9090")
        monkeypatch.setenv("SITEWATCH_API_KEY", "env-key")
        monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.example, https://b.example")
        monkeypatch.setenv("SITEWATCH_FETCHER", "browser")

        config = parse_config({"sites": [], "api": {"port": 3000}})

        assert config.probes.allow_self_signed is True
        assert config.storage.results_dir == "/tmp/results"
        assert config.api.port == 9090
        assert config.api.api_key == "env-key"
        assert config.api.allowed_origins == ("https://a.example", "https://b.example")
        assert config.monitor.fetcher == "browser"

    def test_invalid_port_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A non-numeric port is a ConfigError."""
        monkeypatch.setenv("SITEWATCH_API_PORT", "http")
        with pytest.raises(ConfigError, match="SITEWATCH_API_PORT"):
            parse_config({"sites": []})
