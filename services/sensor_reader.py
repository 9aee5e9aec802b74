"""Sensor acquisition with staleness checks and ordered failover."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Sequence

import httpx

from errors import AcquisitionError, ParseError
from models.records import SensorReading
from services.aqi import aqi_from_pm, mean

logger = logging.getLogger(__name__)

LEGACY_SENSOR_URL = "https://www.purpleair.com/json"
SENSOR_API_URL = "https://api.purpleair.com/v1/sensors/{sensor_id}"
GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
STALE_AFTER_SECONDS = 600.0


class SensorMode(str, Enum):
    """How staleness is handled when acquiring a reading."""

    failover = "failover"
    single = "single"


@dataclass(frozen=True)
class SubSensorSample:
    """One physical sub-sensor reported under a logical sensor ID."""

    last_seen: float
    pm25: float
    pm25_10minute: float
    label: Optional[str] = None


@dataclass(frozen=True)
class SensorSample:
    """Top-level sample from the single authoritative sensor API."""

    timestamp: Optional[float]
    pm25: float
    pm25_10minute: float
    name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


def _number(value: Any, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ParseError(f"expected a number for {field!r}, got {value!r}")
    return float(value)


def _optional_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _load_json(raw: bytes | str, what: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ParseError(f"{what} is not valid JSON") from exc


def parse_legacy_payload(raw: bytes | str) -> list[SubSensorSample]:
    """Parse a ``/json?show=<id>`` response into its sub-sensor samples."""
    payload = _load_json(raw, "sensor response")
    if not isinstance(payload, dict) or not isinstance(payload.get("results"), list):
        raise ParseError("sensor response has no results list")

    samples: list[SubSensorSample] = []
    for entry in payload["results"]:
        if not isinstance(entry, dict):
            raise ParseError("sensor result entry is not an object")
        stats_raw = entry.get("Stats")
        if not isinstance(stats_raw, str):
            raise ParseError("sensor result is missing its Stats blob")
        stats = _load_json(stats_raw, "sensor Stats blob")
        if not isinstance(stats, dict):
            raise ParseError("sensor Stats blob is not an object")
        label = entry.get("Label")
        samples.append(
            SubSensorSample(
                last_seen=_number(entry.get("LastSeen"), "LastSeen"),
                pm25=_number(stats.get("v"), "v"),
                pm25_10minute=_number(stats.get("v1"), "v1"),
                label=label if isinstance(label, str) else None,
            )
        )
    return samples


def parse_sensor_payload(raw: bytes | str) -> SensorSample:
    """Parse a ``/v1/sensors/<id>`` response."""
    payload = _load_json(raw, "sensor response")
    if not isinstance(payload, dict) or not isinstance(payload.get("sensor"), dict):
        raise ParseError("sensor response has no sensor object")
    sensor = payload["sensor"]
    stats = sensor.get("stats")
    if not isinstance(stats, dict):
        raise ParseError("sensor object has no stats")

    timestamp = _optional_number(payload.get("data_time_stamp"))
    if timestamp is None:
        timestamp = _optional_number(sensor.get("last_seen"))
    name = sensor.get("name")
    return SensorSample(
        timestamp=timestamp,
        pm25=_number(stats.get("pm2.5"), "pm2.5"),
        pm25_10minute=_number(stats.get("pm2.5_10minute"), "pm2.5_10minute"),
        name=name if isinstance(name, str) else None,
        latitude=_optional_number(sensor.get("latitude")),
        longitude=_optional_number(sensor.get("longitude")),
    )


class Geocoder:
    """Reverse geocodes sensor coordinates into a human place name."""

    def __init__(self, client: httpx.Client, api_key: str) -> None:
        self._client = client
        self._api_key = api_key

    def close(self) -> None:
        self._client.close()

    def place_name(self, latitude: float, longitude: float) -> Optional[str]:
        try:
            response = self._client.get(
                GEOCODE_URL,
                params={"latlng": f"{latitude},{longitude}", "key": self._api_key},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Reverse geocoding failed", extra={"reason": str(exc)})
            return None

        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            logger.warning("Reverse geocoding returned no usable result")
            return None
        first = results[0]
        components = first.get("address_components")
        for component in components if isinstance(components, list) else []:
            if not isinstance(component, dict):
                continue
            types = component.get("types")
            name = component.get("long_name")
            if isinstance(types, list) and "locality" in types and isinstance(name, str):
                return name
        address = first.get("formatted_address")
        return address if isinstance(address, str) else None


class SensorReader:
    """Acquires one usable reading from an ordered list of sensor IDs."""

    def __init__(
        self,
        client: httpx.Client,
        mode: SensorMode = SensorMode.failover,
        api_key: Optional[str] = None,
        geocoder: Optional[Geocoder] = None,
        stale_after: float = STALE_AFTER_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self.mode = SensorMode(mode)
        self._api_key = api_key
        self._geocoder = geocoder
        self.stale_after = stale_after
        self._clock = clock

    def read(self, candidate_ids: Sequence[str]) -> SensorReading:
        if not candidate_ids:
            raise AcquisitionError("no sensor ids configured")
        if self.mode is SensorMode.single:
            return self._read_single(candidate_ids[0])

        for sensor_id in candidate_ids:
            reading = self._read_candidate(sensor_id)
            if reading is not None:
                return reading
        raise AcquisitionError("all sensors returned unusable results")

    def close(self) -> None:
        self._client.close()
        if self._geocoder is not None:
            self._geocoder.close()

    def _fetch(
        self,
        url: str,
        sensor_id: str,
        params: Optional[dict[str, str]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        try:
            response = self._client.get(url, params=params, headers=headers)
        except httpx.TransportError as exc:
            raise AcquisitionError(
                f"failed to send sensor data request for {sensor_id}: {exc}"
            ) from exc
        if not response.is_success:
            logger.error(
                "Sensor API returned a non-ok status",
                extra={"sensor_id": sensor_id, "status_code": response.status_code},
            )
            raise AcquisitionError(
                f"non-ok status returned from sensor API ({response.status_code})"
            )
        return response

    def _read_candidate(self, sensor_id: str) -> Optional[SensorReading]:
        response = self._fetch(LEGACY_SENSOR_URL, sensor_id, params={"show": sensor_id})
        try:
            samples = parse_legacy_payload(response.content)
        except ParseError as exc:
            logger.warning(
                "Unusable sensor payload, trying next candidate",
                extra={"sensor_id": sensor_id, "reason": str(exc)},
            )
            return None

        if not samples:
            logger.warning(
                "Sensor returned zero results, trying next candidate",
                extra={"sensor_id": sensor_id},
            )
            return None

        now = self._clock()
        for sample in samples:
            age = now - sample.last_seen
            if age > self.stale_after:
                # Sub-sensors are co-located; one stale channel spoils the whole reading.
                logger.warning(
                    "Stale data coming from sensor, trying next candidate",
                    extra={"sensor_id": sensor_id, "last_seen": int(sample.last_seen)},
                )
                return None
            logger.debug(
                "Sub-sensor last seen %.0fs ago",
                age,
                extra={"sensor_id": sensor_id, "last_seen": int(sample.last_seen)},
            )

        reading = SensorReading(
            timestamp=max(sample.last_seen for sample in samples),
            realtime_aqi=aqi_from_pm(mean([sample.pm25 for sample in samples])),
            ten_minute_avg_aqi=aqi_from_pm(mean([sample.pm25_10minute for sample in samples])),
            stale=False,
            place_name=samples[0].label,
        )
        logger.info(
            "Sensor reading acquired",
            extra={
                "sensor_id": sensor_id,
                "realtime_aqi": reading.realtime_aqi,
                "ten_minute_avg_aqi": reading.ten_minute_avg_aqi,
            },
        )
        return reading

    def _read_single(self, sensor_id: str) -> SensorReading:
        headers = {"X-API-Key": self._api_key} if self._api_key else None
        response = self._fetch(
            SENSOR_API_URL.format(sensor_id=sensor_id), sensor_id, headers=headers
        )
        try:
            sample = parse_sensor_payload(response.content)
        except ParseError as exc:
            raise AcquisitionError(
                f"sensor {sensor_id} returned an unusable payload: {exc}"
            ) from exc

        now = self._clock()
        timestamp = sample.timestamp if sample.timestamp is not None else now
        stale = now - timestamp > self.stale_after
        if stale:
            logger.warning(
                "Stale data coming from sensor",
                extra={"sensor_id": sensor_id, "last_seen": int(timestamp)},
            )

        place_name = sample.name
        if (
            self._geocoder is not None
            and sample.latitude is not None
            and sample.longitude is not None
        ):
            place_name = self._geocoder.place_name(sample.latitude, sample.longitude) or place_name

        reading = SensorReading(
            timestamp=timestamp,
            realtime_aqi=aqi_from_pm(sample.pm25),
            ten_minute_avg_aqi=aqi_from_pm(sample.pm25_10minute),
            stale=stale,
            place_name=place_name,
        )
        logger.info(
            "Sensor reading acquired",
            extra={
                "sensor_id": sensor_id,
                "realtime_aqi": reading.realtime_aqi,
                "ten_minute_avg_aqi": reading.ten_minute_avg_aqi,
            },
        )
        return reading
