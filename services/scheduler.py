from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from errors import ConfigurationError

DAILY_REPORT_MIN_INTERVAL = 23 * 60 * 60
ADHOC_DEBOUNCE_SECONDS = 30 * 60


class ReportScheduler:
    """Decides when the daily digest is due, independent of interval polling."""

    def __init__(
        self,
        tz: str = "UTC",
        cutoff_hour: int = 8,
        min_interval: float = DAILY_REPORT_MIN_INTERVAL,
        adhoc_debounce: float = ADHOC_DEBOUNCE_SECONDS,
    ) -> None:
        try:
            self.tz = ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigurationError(f"unknown time zone: {tz!r}") from exc
        self.cutoff_hour = cutoff_hour
        self.min_interval = min_interval
        self.adhoc_debounce = adhoc_debounce

    def local_time(self, now: float) -> datetime:
        return datetime.fromtimestamp(now, tz=timezone.utc).astimezone(self.tz)

    def due_for_daily_report(self, now: float, last_sent: Optional[float]) -> bool:
        # No nighttime pushes.
        if self.local_time(now).hour < self.cutoff_hour:
            return False
        if last_sent is None:
            return True
        # Slightly under a day so invocation drift does not skip a day.
        return now - last_sent >= self.min_interval

