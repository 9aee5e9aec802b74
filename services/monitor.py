"""Orchestration of the sensor-to-alert pipeline for scheduled and on-demand use."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import List, Optional, Sequence
from zoneinfo import ZoneInfo

import httpx

from datastore.reading_store import RETENTION_SECONDS, ReadingStore, build_default_store
from errors import ConfigurationError, DeliveryError, StoreError
from models.records import ReadingKind, SensorReading, ThresholdEvent
from services.aqi import aqi_category
from services.detector import AQI_THRESHOLD, ThresholdDetector
from services.http import (
    GEOCODE_TIMEOUT,
    HEARTBEAT_TIMEOUT,
    NOTIFY_TIMEOUT,
    SENSOR_TIMEOUT,
    build_http_client,
)
from services.notifier import (
    STALE_CAVEAT,
    Notifier,
    build_notifier,
    format_aqi,
    load_channel_config,
)
from services.scheduler import ReportScheduler
from services.sensor_reader import Geocoder, SensorReader
from settings import get_settings

logger = logging.getLogger(__name__)

DAILY_REPORT_MARKER = "daily_report_last_sent"


@dataclass(frozen=True)
class ReportSnapshot:
    """Reading served by the on-demand report path."""

    reading: SensorReading
    cached: bool
    text: str


@dataclass
class TickOutcome:
    """What one scheduled invocation did."""

    event: Optional[ThresholdEvent] = None
    daily_report_sent: bool = False
    expired: int = 0
    errors: List[str] = field(default_factory=list)


def format_report(
    reading: SensorReading,
    tz: ZoneInfo,
    threshold: float = AQI_THRESHOLD,
) -> str:
    """Render the multi-line text summary used by reports and inbound commands."""
    indicator = "🔴" if reading.ten_minute_avg_aqi > threshold else "🟢"
    as_of = datetime.fromtimestamp(reading.timestamp, tz=tz)
    lines = [f"📋{indicator} Current Readings (as of {as_of:%B %d, %Y, %I:%M %p %Z}):"]
    if reading.place_name:
        lines.append(f"Location: {reading.place_name}")
    lines.append(f"Realtime AQI: {format_aqi(reading.realtime_aqi)}")
    lines.append(
        f"10 min. average: {format_aqi(reading.ten_minute_avg_aqi)} "
        f"({aqi_category(reading.ten_minute_avg_aqi)})"
    )
    if reading.stale:
        lines.append(STALE_CAVEAT)
    return "\n".join(lines)


class AirQualityMonitor:
    """Runs the interval check, the daily digest and on-demand reports."""

    def __init__(
        self,
        reader: SensorReader,
        store: ReadingStore,
        detector: ThresholdDetector,
        notifier: Notifier,
        scheduler: ReportScheduler,
        sensor_ids: Sequence[str],
        heartbeat_client: Optional[httpx.Client] = None,
        heartbeat_url: Optional[str] = None,
    ) -> None:
        self.reader = reader
        self.store = store
        self.detector = detector
        self.notifier = notifier
        self.scheduler = scheduler
        self.sensor_ids = tuple(sensor_ids)
        self._heartbeat_client = heartbeat_client
        self.heartbeat_url = heartbeat_url

    def check_air_quality(self, now: Optional[float] = None) -> ThresholdEvent:
        """Read the sensor, advance the interval baseline and alert on a crossing."""
        reading = self.reader.read(self.sensor_ids)
        event = self.detector.evaluate(ReadingKind.interval, reading, now=now)
        if event is ThresholdEvent.none:
            logger.info("Nothing to alert about", extra={"kind": ReadingKind.interval.value})
        else:
            try:
                self.notifier.notify(event, reading)
            except DeliveryError as exc:
                logger.error(
                    "Failed to send notification, baseline already advanced",
                    extra={"event": event.value, "reason": str(exc)},
                )
                raise
        self._ping_heartbeat()
        return event

    def send_daily_report_if_due(self, now: Optional[float] = None, force: bool = False) -> bool:
        """Send the daily digest when due.

        The "last sent" marker moves only after the notifier confirms delivery,
        so a failed send is retried on the next poll.
        """
        current = time.time() if now is None else now
        last_sent = self.store.get_marker(DAILY_REPORT_MARKER)
        if not force and not self.scheduler.due_for_daily_report(current, last_sent):
            return False

        reading = self.reader.read(self.sensor_ids)
        self.store.put(ReadingKind.daily, reading, now=current)
        self.notifier.send_report(self.format_report(reading), reading)
        self.store.set_marker(DAILY_REPORT_MARKER, current)
        logger.info("Daily report sent", extra={"kind": ReadingKind.daily.value})
        return True

    def generate_report(self, refresh: bool = False, now: Optional[float] = None) -> ReportSnapshot:
        """Current report, served from a reading under 30 minutes old unless ``refresh``."""
        current = time.time() if now is None else now
        if not refresh:
            cached = self.store.get_latest(
                ReadingKind.adhoc, max_age=self.scheduler.adhoc_debounce, now=current
            )
            if cached is not None:
                return ReportSnapshot(reading=cached, cached=True, text=self.format_report(cached))

        reading = self.reader.read(self.sensor_ids)
        self.store.put(ReadingKind.adhoc, reading, now=current)
        return ReportSnapshot(reading=reading, cached=False, text=self.format_report(reading))

    def format_report(self, reading: SensorReading) -> str:
        return format_report(reading, self.scheduler.tz, self.detector.threshold)

    def expire_history(self, now: Optional[float] = None) -> int:
        current = time.time() if now is None else now
        try:
            removed = self.store.expire_older_than(current - RETENTION_SECONDS)
        except StoreError as exc:
            logger.warning("Failed to expire old readings", extra={"reason": str(exc)})
            return 0
        if removed:
            logger.info("Expired %d old readings", removed)
        return removed

    def run_scheduled(self, now: Optional[float] = None) -> TickOutcome:
        """One scheduled tick. Never raises; each check is isolated from the other."""
        outcome = TickOutcome()
        try:
            outcome.event = self.check_air_quality(now)
        except Exception as exc:  # noqa: BLE001 - must not suppress the daily check
            logger.exception("Failed to check air quality")
            outcome.errors.append(f"interval: {exc}")

        try:
            outcome.daily_report_sent = self.send_daily_report_if_due(now)
        except Exception as exc:  # noqa: BLE001 - next tick retries
            logger.exception("Failed to send daily report")
            outcome.errors.append(f"daily: {exc}")

        outcome.expired = self.expire_history(now)
        return outcome

    def close(self) -> None:
        self.reader.close()
        self.notifier.close()
        if self._heartbeat_client is not None:
            self._heartbeat_client.close()

    def _ping_heartbeat(self) -> None:
        if not self.heartbeat_url or self._heartbeat_client is None:
            return
        try:
            self._heartbeat_client.get(self.heartbeat_url)
        except httpx.HTTPError as exc:
            logger.warning("Heartbeat ping failed", extra={"reason": str(exc)})


@lru_cache
def build_default_monitor() -> AirQualityMonitor:
    """Factory that wires the monitor from environment settings."""
    settings = get_settings()
    if not settings.sensor_ids:
        raise ConfigurationError("no sensor ids configured")
    channel_config = load_channel_config(settings)

    geocoder = None
    if settings.geocoding_api_key:
        geocoder = Geocoder(
            build_http_client(GEOCODE_TIMEOUT, settings.http_retries),
            api_key=settings.geocoding_api_key,
        )
    reader = SensorReader(
        build_http_client(SENSOR_TIMEOUT, settings.http_retries),
        mode=settings.sensor_mode,
        api_key=settings.purple_air_api_key,
        geocoder=geocoder,
    )
    notifier = build_notifier(
        channel_config, build_http_client(NOTIFY_TIMEOUT, settings.http_retries)
    )
    store = build_default_store()
    heartbeat_client = (
        build_http_client(HEARTBEAT_TIMEOUT, settings.http_retries)
        if settings.heartbeat_url
        else None
    )
    return AirQualityMonitor(
        reader=reader,
        store=store,
        detector=ThresholdDetector(store),
        notifier=notifier,
        scheduler=ReportScheduler(
            tz=settings.local_timezone,
            cutoff_hour=settings.daily_report_hour,
        ),
        sensor_ids=settings.sensor_ids,
        heartbeat_client=heartbeat_client,
        heartbeat_url=settings.heartbeat_url,
    )
