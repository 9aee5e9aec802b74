"""Edge-triggered threshold crossing detection against a stored baseline."""

from __future__ import annotations

import logging
import math
from typing import Optional

from datastore.reading_store import ReadingStore
from models.records import ReadingKind, SensorReading, ThresholdEvent

logger = logging.getLogger(__name__)

# "Unhealthy for sensitive groups" line on the 10-minute average AQI.
AQI_THRESHOLD = 65.0
BASELINE_MAX_AGE_SECONDS = 60 * 60


def compare(
    previous: Optional[SensorReading],
    current: SensorReading,
    threshold: float = AQI_THRESHOLD,
) -> ThresholdEvent:
    """Classify the move from ``previous`` to ``current`` across ``threshold``."""
    if previous is None:
        return ThresholdEvent.none
    before = previous.ten_minute_avg_aqi
    after = current.ten_minute_avg_aqi
    if math.isnan(before) or math.isnan(after):
        return ThresholdEvent.none
    if before > threshold and after <= threshold:
        return ThresholdEvent.air_quality_good
    if before <= threshold and after > threshold:
        return ThresholdEvent.air_quality_bad
    return ThresholdEvent.none


class ThresholdDetector:
    """Compares each reading with the previous one of the same kind."""

    def __init__(
        self,
        store: ReadingStore,
        threshold: float = AQI_THRESHOLD,
        baseline_max_age: Optional[float] = BASELINE_MAX_AGE_SECONDS,
    ) -> None:
        self.store = store
        self.threshold = threshold
        self.baseline_max_age = baseline_max_age

    def evaluate(
        self,
        kind: ReadingKind,
        current: SensorReading,
        now: Optional[float] = None,
    ) -> ThresholdEvent:
        """Advance the baseline for ``kind`` and report any crossing.

        The new reading is stored before comparing, whatever the outcome, so a
        failed notification later on never leaves the baseline behind. A
        ``StoreError`` from the write propagates and no comparison happens.
        """
        kind = ReadingKind(kind)
        previous = self.store.get_latest(kind, max_age=self.baseline_max_age, now=now)
        self.store.put(kind, current, now=now)

        if previous is None:
            logger.info(
                "No previous reading stored, nothing to compare",
                extra={"kind": kind.value},
            )
            return ThresholdEvent.none

        event = compare(previous, current, self.threshold)
        logger.info(
            "Compared against previous reading (previous 10m avg %.1f)",
            previous.ten_minute_avg_aqi,
            extra={
                "kind": kind.value,
                "event": event.value,
                "ten_minute_avg_aqi": current.ten_minute_avg_aqi,
            },
        )
        return event
