"""Unit tests for the kind-scoped reading store."""

from __future__ import annotations

import json
import math
from pathlib import Path

import pytest

from datastore.reading_store import ReadingStore
from errors import StoreError
from models.records import ReadingKind

NOW = 1_700_000_000.0


def test_get_latest_returns_none_when_empty(memory_store: ReadingStore) -> None:
    assert memory_store.get_latest(ReadingKind.interval) is None


def test_most_recent_record_wins(memory_store: ReadingStore, make_reading) -> None:
    memory_store.put(ReadingKind.interval, make_reading(ten_minute=10), now=NOW - 120)
    memory_store.put(ReadingKind.interval, make_reading(ten_minute=20), now=NOW - 60)

    latest = memory_store.get_latest(ReadingKind.interval, now=NOW)

    assert latest is not None
    assert latest.ten_minute_avg_aqi == 20


def test_last_writer_wins_on_identical_timestamps(memory_store: ReadingStore, make_reading) -> None:
    memory_store.put(ReadingKind.interval, make_reading(ten_minute=10), now=NOW)
    memory_store.put(ReadingKind.interval, make_reading(ten_minute=99), now=NOW)

    latest = memory_store.get_latest(ReadingKind.interval, now=NOW)

    assert latest is not None
    assert latest.ten_minute_avg_aqi == 99


def test_kinds_are_isolated(memory_store: ReadingStore, make_reading) -> None:
    memory_store.put(ReadingKind.daily, make_reading(ten_minute=200), now=NOW)

    assert memory_store.get_latest(ReadingKind.interval, now=NOW) is None
    daily = memory_store.get_latest(ReadingKind.daily, now=NOW)
    assert daily is not None and daily.ten_minute_avg_aqi == 200


def test_max_age_filters_old_records(memory_store: ReadingStore, make_reading) -> None:
    memory_store.put(ReadingKind.interval, make_reading(), now=NOW - 3601)

    assert memory_store.get_latest(ReadingKind.interval, max_age=3600, now=NOW) is None
    assert memory_store.get_latest(ReadingKind.interval, now=NOW) is not None


def test_ttl_expires_records(memory_store: ReadingStore, make_reading) -> None:
    memory_store.put(ReadingKind.adhoc, make_reading(), now=NOW, ttl=60)

    assert memory_store.get_latest(ReadingKind.adhoc, now=NOW + 30) is not None
    assert memory_store.get_latest(ReadingKind.adhoc, now=NOW + 61) is None


def test_expire_older_than_removes_only_old_records(
    memory_store: ReadingStore, make_reading, stored_records
) -> None:
    memory_store.put(ReadingKind.interval, make_reading(ten_minute=1), now=NOW - 100)
    memory_store.put(ReadingKind.daily, make_reading(ten_minute=2), now=NOW - 50)
    memory_store.put(ReadingKind.interval, make_reading(ten_minute=3), now=NOW)

    removed = memory_store.expire_older_than(NOW - 60)

    assert removed == 1
    assert [record.ten_minute_avg_aqi for record in stored_records(memory_store)] == [2, 3]


def test_markers_work_in_memory(memory_store: ReadingStore) -> None:
    assert memory_store.get_marker("daily_report_last_sent") is None

    memory_store.set_marker("daily_report_last_sent", NOW)

    assert memory_store.get_marker("daily_report_last_sent") == NOW


def test_persists_records_and_markers_with_nan(tmp_path: Path, make_reading) -> None:
    path = tmp_path / "readings.json"
    store = ReadingStore(name="test", persistence_path=path)
    store.put(
        ReadingKind.interval,
        make_reading(ten_minute=math.nan, realtime=12, place_name="Porch"),
        now=NOW,
    )
    store.set_marker("daily_report_last_sent", NOW)

    reloaded = ReadingStore(name="test", persistence_path=path)
    latest = reloaded.get_latest(ReadingKind.interval, now=NOW)

    assert latest is not None
    assert math.isnan(latest.ten_minute_avg_aqi)
    assert latest.realtime_aqi == 12
    assert latest.place_name == "Porch"
    assert reloaded.get_marker("daily_report_last_sent") == NOW
    interval_file = tmp_path / "readings.interval.json"
    assert json.loads(interval_file.read_text())["records"][0]["kind"] == "interval"
    assert "\n" not in interval_file.read_text()


def test_each_kind_and_the_markers_have_their_own_file(tmp_path: Path, make_reading) -> None:
    store = ReadingStore(name="test", persistence_path=tmp_path / "readings.json")
    store.put(ReadingKind.interval, make_reading(), now=NOW)
    store.put(ReadingKind.adhoc, make_reading(), now=NOW)
    store.set_marker("daily_report_last_sent", NOW)

    assert sorted(path.name for path in tmp_path.iterdir()) == [
        "readings.adhoc.json",
        "readings.interval.json",
        "readings.markers.json",
    ]


def test_stores_sharing_a_path_keep_each_others_writes(tmp_path: Path, make_reading) -> None:
    path = tmp_path / "readings.json"
    poller = ReadingStore(name="poller", persistence_path=path)
    api = ReadingStore(name="api", persistence_path=path)

    poller.put(ReadingKind.interval, make_reading(ten_minute=70), now=NOW)
    poller.set_marker("daily_report_last_sent", NOW)
    api.put(ReadingKind.adhoc, make_reading(ten_minute=30), now=NOW + 10)

    restarted = ReadingStore(name="poller", persistence_path=path)
    interval = restarted.get_latest(ReadingKind.interval, now=NOW + 20)
    adhoc = restarted.get_latest(ReadingKind.adhoc, now=NOW + 20)

    assert interval is not None and interval.ten_minute_avg_aqi == 70
    assert adhoc is not None and adhoc.ten_minute_avg_aqi == 30
    assert restarted.get_marker("daily_report_last_sent") == NOW


def test_store_sees_writes_from_another_instance(tmp_path: Path, make_reading) -> None:
    path = tmp_path / "readings.json"
    first = ReadingStore(name="first", persistence_path=path)
    second = ReadingStore(name="second", persistence_path=path)

    first.put(ReadingKind.adhoc, make_reading(ten_minute=10), now=NOW)
    second.put(ReadingKind.adhoc, make_reading(ten_minute=20), now=NOW + 1)
    second.set_marker("daily_report_last_sent", NOW)

    latest = first.get_latest(ReadingKind.adhoc, now=NOW + 2)
    assert latest is not None and latest.ten_minute_avg_aqi == 20
    assert first.get_marker("daily_report_last_sent") == NOW

    first.put(ReadingKind.adhoc, make_reading(ten_minute=30), now=NOW + 3)
    records = json.loads((tmp_path / "readings.adhoc.json").read_text())["records"]
    assert [record["ten_minute_avg_aqi"] for record in records] == [10, 20, 30]


def test_corrupt_file_loads_as_empty(tmp_path: Path, stored_records) -> None:
    (tmp_path / "readings.interval.json").write_text("{not json")

    store = ReadingStore(name="test", persistence_path=tmp_path / "readings.json")

    assert stored_records(store) == []
    assert store.get_latest(ReadingKind.interval) is None


def test_write_failure_raises_store_error_and_keeps_state(
    tmp_path: Path, make_reading, monkeypatch
) -> None:
    path = tmp_path / "readings.json"
    store = ReadingStore(name="test", persistence_path=path)
    store.put(ReadingKind.interval, make_reading(ten_minute=10), now=NOW - 60)

    def failing_replace(src, dst) -> None:
        raise OSError("disk full")

    monkeypatch.setattr("datastore.reading_store.os.replace", failing_replace)

    with pytest.raises(StoreError):
        store.put(ReadingKind.interval, make_reading(ten_minute=90), now=NOW)
    with pytest.raises(StoreError):
        store.set_marker("daily_report_last_sent", NOW)

    latest = store.get_latest(ReadingKind.interval, now=NOW)
    assert latest is not None
    assert latest.ten_minute_avg_aqi == 10
    assert store.get_marker("daily_report_last_sent") is None
    assert sorted(path.name for path in tmp_path.iterdir()) == ["readings.interval.json"]
