"""JSON file persistence for per-site status reports and metrics history.

Layout under the results directory:

    sites/<safe-name>/status.json      latest StatusReport
    sites/<safe-name>/screenshot.png   screenshot of the last failure
    metrics/<safe-name>.json           bounded MetricsEntry history

Every write goes to a temporary file in the target directory and is moved
into place with os.replace(), so an interrupted run never leaves a partial
file. Each site has a single writer per run; no locking is needed.
"""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from .models import MetricsEntry, MetricsTrends, StatusReport

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a status or metrics file cannot be written or read."""

    pass


# Oldest metrics entries are evicted beyond this count.
MAX_METRICS_ENTRIES = 1000

# Entries considered by calculate_trends() (a week of hourly checks).
TRENDS_WINDOW = 168

# Recent/older average load-time ratios that mark a trend change.
DEGRADING_RATIO = 1.1
IMPROVING_RATIO = 0.9

_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9]")

STATUS_FILENAME = "status.json"
SCREENSHOT_FILENAME = "screenshot.png"


def safe_name(site_name: str) -> str:
    """Filesystem-safe key for a site: every non-alphanumeric becomes '-'."""
    return _UNSAFE_CHARS_RE.sub("-", site_name)


def atomic_write_text(path: Path, text: str) -> None:
    """Write text to path atomically.

    Raises:
        StorageError: If the file cannot be written.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise StorageError(f"Failed to write {path}: {e}") from e


def _atomic_write_json(path: Path, data: Any) -> None:
    try:
        text = json.dumps(data, indent=2)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Failed to serialize {path}: {e}") from e
    atomic_write_text(path, text)


def _read_json(path: Path) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


class StatusStore:
    """Owns the status and metrics files under a results directory."""

    def __init__(self, results_dir: str | Path) -> None:
        self.results_dir = Path(results_dir)
        self.sites_dir = self.results_dir / "sites"
        self.metrics_dir = self.results_dir / "metrics"

    def site_dir(self, site_name: str) -> Path:
        return self.sites_dir / safe_name(site_name)

    def status_path(self, site_name: str) -> Path:
        return self.site_dir(site_name) / STATUS_FILENAME

    def metrics_path(self, site_name: str) -> Path:
        return self.metrics_dir / f"{safe_name(site_name)}.json"

    def screenshot_path(self, site_name: str) -> Path:
        """Destination for a site's failure screenshot (parent directory is created).

        Raises:
            StorageError: If the site directory cannot be created.
        """
        directory = self.site_dir(site_name)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create {directory}: {e}") from e
        return directory / SCREENSHOT_FILENAME

    def load_previous(self, site_name: str) -> StatusReport | None:
        """Return the last persisted report, or None if missing or malformed."""
        path = self.status_path(site_name)
        if not path.exists():
            return None
        try:
            return StatusReport.from_dict(_read_json(path))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Ignoring unreadable status file %s: %s", path, e)
            return None

    def save(self, site_name: str, report: StatusReport) -> None:
        """Replace the site's latest-report slot.

        Raises:
            StorageError: If the file cannot be written.
        """
        _atomic_write_json(self.status_path(site_name), report.to_dict())

    def load_metrics(self, site_name: str, limit: int | None = 100) -> list[MetricsEntry]:
        """Return the most recent metrics entries, oldest first.

        Malformed files read as empty history; malformed entries are skipped.
        """
        path = self.metrics_path(site_name)
        if not path.exists():
            return []
        try:
            raw = _read_json(path)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable metrics file %s: %s", path, e)
            return []
        if not isinstance(raw, list):
            logger.warning("Ignoring metrics file %s: expected a list", path)
            return []

        entries: list[MetricsEntry] = []
        for item in raw:
            try:
                entries.append(MetricsEntry.from_dict(item))
            except (ValueError, KeyError, TypeError, AttributeError):
                logger.debug("Skipping malformed metrics entry in %s", path)
        if limit is not None:
            entries = entries[-limit:]
        return entries

    def append_metrics(self, site_name: str, entry: MetricsEntry) -> None:
        """Append an entry, keeping only the newest MAX_METRICS_ENTRIES.

        Raises:
            StorageError: If the file cannot be written.
        """
        entries = self.load_metrics(site_name, limit=None)
        entries.append(entry)
        entries = entries[-MAX_METRICS_ENTRIES:]
        _atomic_write_json(self.metrics_path(site_name), [e.to_dict() for e in entries])

    def calculate_trends(self, site_name: str, window: int = TRENDS_WINDOW) -> MetricsTrends:
        """Summarize the most recent metrics window.

        The window is split in half; the newer half's mean load time is compared
        with the older half's to classify the trend direction.
        """
        entries = self.load_metrics(site_name, limit=window)
        if len(entries) < 2:
            return MetricsTrends(direction="insufficient_data", data_points=len(entries))

        middle = len(entries) // 2
        older, recent = entries[:middle], entries[middle:]
        older_avg = sum(e.load_time_ms for e in older) / len(older)
        recent_avg = sum(e.load_time_ms for e in recent) / len(recent)

        direction = "stable"
        if recent_avg > older_avg * DEGRADING_RATIO:
            direction = "degrading"
        elif recent_avg < older_avg * IMPROVING_RATIO:
            direction = "improving"

        load_times = [e.load_time_ms for e in entries if e.load_time_ms > 0]
        up_count = sum(1 for e in entries if e.is_up)

        return MetricsTrends(
            direction=direction,
            avg_load_time_ms=round(recent_avg),
            min_load_time_ms=min(load_times) if load_times else None,
            max_load_time_ms=max(load_times) if load_times else None,
            uptime_percentage=round(up_count / len(entries) * 100, 2),
            data_points=len(entries),
        )

    def load_all_reports(self) -> list[StatusReport]:
        """Return every readable latest report, sorted by site name."""
        if not self.sites_dir.is_dir():
            return []
        reports: list[StatusReport] = []
        for status_file in sorted(self.sites_dir.glob(f"*/{STATUS_FILENAME}")):
            try:
                reports.append(StatusReport.from_dict(_read_json(status_file)))
            except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
                logger.warning("Ignoring unreadable status file %s: %s", status_file, e)
        reports.sort(key=lambda report: report.site_name.lower())
        return reports
