"""Status transition detection between consecutive checks of a site."""

from dataclasses import dataclass
from datetime import UTC, datetime

from .models import ChangeInfo, StatusReport

# Relative load-time difference below which two checks count as "the same".
TREND_SAME_THRESHOLD_PERCENT = 5.0


def detect_change(
    current: StatusReport,
    previous: StatusReport | None,
    now: datetime | None = None,
) -> ChangeInfo:
    """Classify the transition from the previous report to the current one.

    A site with no previous report is a fresh observation: it counts as
    changed, and as downtime only if it is currently down.

    Args:
        current: Report produced by this check.
        previous: Last persisted report for the same site, or None.
        now: Reference time for downtime duration (defaults to the wall clock).

    Returns:
        ChangeInfo describing the transition.
    """
    if previous is None:
        return ChangeInfo(
            changed=True,
            is_recovery=False,
            is_downtime=not current.is_up,
        )

    is_recovery = not previous.is_up and current.is_up
    is_downtime = previous.is_up and not current.is_up

    downtime_duration_ms: int | None = None
    if is_recovery:
        reference = now or datetime.now(UTC)
        elapsed = reference - previous.checked_at
        downtime_duration_ms = max(0, int(elapsed.total_seconds() * 1000))

    return ChangeInfo(
        changed=previous.is_up != current.is_up,
        is_recovery=is_recovery,
        is_downtime=is_downtime,
        previous_status=previous.status,
        downtime_duration_ms=downtime_duration_ms,
    )


@dataclass(frozen=True)
class LoadTimeTrend:
    """Load time of this check compared with the previous one."""

    direction: str  # same | faster | slower
    percent_change: float

    def __str__(self) -> str:
        if self.direction == "same":
            return "Same as previous check"
        return f"{abs(self.percent_change):.1f}% {self.direction} than previous"


def calculate_load_time_trend(current_ms: int | None, previous: StatusReport | None) -> LoadTimeTrend | None:
    """Compare the current load time with the previous report's.

    Returns:
        None if either check has no load time, otherwise the trend.
    """
    if previous is None or not previous.load_time_ms or not current_ms:
        return None

    diff = current_ms - previous.load_time_ms
    percent = diff / previous.load_time_ms * 100
    if abs(percent) < TREND_SAME_THRESHOLD_PERCENT:
        return LoadTimeTrend(direction="same", percent_change=percent)
    return LoadTimeTrend(direction="faster" if diff < 0 else "slower", percent_change=percent)
