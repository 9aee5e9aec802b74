"""Shared fixtures for the aqimon test suite."""

from __future__ import annotations

from typing import Callable, List, Optional

import pytest

from app.schemas import StoredReadingRecord
from datastore.reading_store import ReadingStore
from models.records import ReadingKind, SensorReading


@pytest.fixture()
def make_reading() -> Callable[..., SensorReading]:
    def factory(
        ten_minute: float = 40.0,
        realtime: float | None = None,
        timestamp: float = 1_700_000_000.0,
        stale: bool = False,
        place_name: str | None = None,
    ) -> SensorReading:
        return SensorReading(
            timestamp=timestamp,
            realtime_aqi=ten_minute if realtime is None else realtime,
            ten_minute_avg_aqi=ten_minute,
            stale=stale,
            place_name=place_name,
        )

    return factory


@pytest.fixture()
def memory_store() -> ReadingStore:
    return ReadingStore(name="test")


@pytest.fixture()
def stored_records() -> Callable[..., List[StoredReadingRecord]]:
    """Everything a store currently holds, oldest first."""

    def collect(store: ReadingStore, kind: Optional[ReadingKind] = None) -> List[StoredReadingRecord]:
        kinds = [kind] if kind is not None else list(ReadingKind)
        records = [record for each in kinds for record in store._records[each]]
        return sorted(records, key=lambda record: record.created_at)

    return collect
