"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ReadingKind(str, Enum):
    """Scopes persisted readings so comparisons never mix sampling paths."""

    interval = "interval"
    adhoc = "adhoc"
    daily = "daily"


class ThresholdEvent(str, Enum):
    """Outcome of comparing a reading against its previous baseline."""

    none = "none"
    air_quality_good = "air_quality_good"
    air_quality_bad = "air_quality_bad"


@dataclass(frozen=True, slots=True)
class SensorReading:
    """AQI values derived from one sensor acquisition."""

    timestamp: float
    realtime_aqi: float
    ten_minute_avg_aqi: float
    stale: bool = False
    place_name: Optional[str] = None
