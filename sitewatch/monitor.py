"""Run orchestration: check every enabled site once and fan out the results."""

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path

from .alerter import Alerter, DispatchOutcome
from .changes import detect_change
from .classifier import TEST_FAILURE
from .config import Config, SiteConfig
from .evaluator import build_failure_report, evaluate
from .fetcher import PageFetcher, create_fetcher
from .models import ChangeInfo, MetricsEntry, RunSummary, StatusReport
from .probes import inspect_tls, resolve_dns
from .reports import write_dashboard, write_junit_report
from .storage import StatusStore, StorageError

logger = logging.getLogger(__name__)

JUNIT_FILENAME = "junit.xml"
DASHBOARD_FILENAME = "dashboard.html"


@dataclass(frozen=True)
class SiteCheck:
    """Outcome of the full pipeline for one site."""

    site: SiteConfig
    report: StatusReport
    change: ChangeInfo
    dispatch: DispatchOutcome | None = None


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def run_checks(site: SiteConfig, fetcher: PageFetcher, config: Config, store: StatusStore | None = None) -> StatusReport:
    """Probe, fetch and evaluate a site. Does not persist or notify.

    Unexpected exceptions are converted into a down report with category
    test_failure; this function never raises for site-level problems.
    """
    checked_at = datetime.now(UTC)
    start = time.monotonic()
    probes = config.probes

    try:
        dns = resolve_dns(site.hostname, timeout=probes.timeout_seconds)
        tls = inspect_tls(
            site.url,
            timeout=probes.timeout_seconds,
            allow_self_signed=probes.allow_self_signed,
            warning_days=probes.ssl_warning_days,
        )
        fetch = fetcher.fetch(site.url, config.monitor.navigation_timeout_ms)
        report = evaluate(
            site,
            fetch,
            dns,
            tls,
            checked_at=checked_at,
            check_duration_ms=_elapsed_ms(start),
            navigation_timeout_ms=config.monitor.navigation_timeout_ms,
        )
    except Exception as e:
        logger.exception("Check of %s failed unexpectedly", site.name)
        return build_failure_report(
            site,
            f"Unexpected error during check: {e}",
            TEST_FAILURE,
            checked_at=checked_at,
            check_duration_ms=_elapsed_ms(start),
        )

    if not report.is_up and config.monitor.screenshots and store is not None:
        try:
            destination = store.screenshot_path(site.name)
            captured = fetcher.capture_screenshot(str(destination))
        except StorageError as e:
            logger.warning("No screenshot for %s: %s", site.name, e)
            captured = False
        except Exception as e:
            logger.warning("Screenshot of %s failed: %s", site.name, e)
            captured = False
        if captured:
            report = replace(report, screenshot_path=str(destination))

    return report


def record_result(
    site: SiteConfig,
    report: StatusReport,
    store: StatusStore,
    alerter: Alerter | None = None,
) -> SiteCheck:
    """Compare with the previous report, persist, and dispatch notifications.

    Persistence and notification failures are logged; the in-memory report
    is still used for this run's decisions.
    """
    previous = store.load_previous(site.name)
    change = detect_change(report, previous)

    try:
        store.save(site.name, report)
    except StorageError as e:
        logger.error("Failed to save status for %s: %s", site.name, e)

    try:
        store.append_metrics(site.name, MetricsEntry.from_report(report))
    except StorageError as e:
        logger.error("Failed to store metrics for %s: %s", site.name, e)

    outcome = None
    if alerter is not None:
        try:
            outcome = alerter.dispatch(site, report, change, previous)
        except Exception:
            logger.exception("Notification dispatch for %s failed", site.name)

    return SiteCheck(site=site, report=report, change=change, dispatch=outcome)


def check_site(
    site: SiteConfig,
    fetcher: PageFetcher,
    store: StatusStore,
    alerter: Alerter | None,
    config: Config,
) -> SiteCheck:
    """Run the whole pipeline for one site: probes, fetch, evaluate, persist, notify."""
    report = run_checks(site, fetcher, config, store)
    result = record_result(site, report, store, alerter)

    if report.is_up:
        logger.info("%s: UP (%s ms, %s)", site.name, report.load_time_ms, report.performance_score)
    else:
        logger.warning("%s: DOWN [%s] %s", site.name, report.error_category, report.error_message)
    if result.change.is_recovery:
        logger.info("%s recovered after %s ms", site.name, result.change.downtime_duration_ms)

    return result


class Monitor:
    """Check every enabled site once with a bounded worker pool.

    Example:
        monitor = Monitor(config, store, alerter)
        summary = monitor.run_once()
    """

    def __init__(
        self,
        config: Config,
        store: StatusStore,
        alerter: Alerter | None = None,
        fetcher_factory: Callable[[], PageFetcher] | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            config: Application configuration with sites to monitor.
            store: Status store for reports and metrics.
            alerter: Notification dispatcher, or None to skip notifications.
            fetcher_factory: Creates one page fetcher per site check.
        """
        self._config = config
        self._store = store
        self._alerter = alerter
        self._fetcher_factory = fetcher_factory or (lambda: create_fetcher(config.monitor))

    def _check_one(self, site: SiteConfig) -> SiteCheck:
        try:
            fetcher = self._fetcher_factory()
        except Exception as e:
            logger.exception("Could not start page fetcher for %s", site.name)
            report = build_failure_report(
                site,
                f"Could not start page fetcher: {e}",
                TEST_FAILURE,
                checked_at=datetime.now(UTC),
                check_duration_ms=0,
            )
            return record_result(site, report, self._store, self._alerter)

        try:
            return check_site(site, fetcher, self._store, self._alerter, self._config)
        finally:
            try:
                fetcher.close()
            except Exception as e:
                logger.debug("Error closing fetcher for %s: %s", site.name, e)

    def check_all(self) -> list[SiteCheck]:
        """Check enabled sites concurrently, returning results in configuration order."""
        sites = self._config.enabled_sites
        if not sites:
            logger.warning("No enabled sites to check")
            return []

        results: list[SiteCheck | None] = [None] * len(sites)
        executor = ThreadPoolExecutor(max_workers=self._config.monitor.max_workers, thread_name_prefix="check")
        try:
            futures = {executor.submit(self._check_one, site): index for index, site in enumerate(sites)}
            for future in as_completed(futures):
                results[futures[future]] = future.result()
        except KeyboardInterrupt:
            logger.warning("Interrupted, cancelling queued checks; running checks finish before exit")
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown()

        return [result for result in results if result is not None]

    def run_once(self) -> RunSummary:
        """Check all sites, then send the summary and write run artifacts."""
        checks = self.check_all()
        summary = RunSummary.from_reports([check.report for check in checks])
        logger.info(
            "Run complete: %d/%d up (%.2f%%)",
            summary.up,
            summary.total,
            summary.uptime_percentage,
        )

        if self._alerter is not None:
            self._alerter.send_summary(summary)

        results_dir = Path(self._config.storage.results_dir)
        try:
            write_junit_report(summary, results_dir / JUNIT_FILENAME, self._config.run)
        except StorageError as e:
            logger.error("Failed to write JUnit report: %s", e)
        try:
            write_dashboard(summary, self._store, results_dir / DASHBOARD_FILENAME, self._config.monitor.tz)
        except StorageError as e:
            logger.error("Failed to write dashboard: %s", e)

        return summary
