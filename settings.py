from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple


_SENSOR_IDS_ENV = "SENSOR_IDS"
_PRIMARY_SENSOR_ENV = "PURPLE_AIR_SENSOR_ID"
_BACKUP_SENSOR_ENV = "BACKUP_PURPLE_AIR_SENSOR_ID"
_SENSOR_MODE_ENV = "SENSOR_MODE"
_PURPLE_AIR_KEY_ENV = "PURPLE_AIR_READ_API_KEY"
_GEOCODING_KEY_ENV = "GOOGLE_MAPS_GEOCODING_API_KEY"
_WEBHOOK_KEY_ENV = "IFTTT_WH_KEY"
_TWILIO_SID_ENV = "TWILIO_ACCT_SID"
_TWILIO_KEY_ENV = "TWILIO_KEY"
_TWILIO_FROM_ENV = "TWILIO_FROM_NUMBER"
_SMS_RECIPIENTS_ENV = "SMS_RECIPIENTS"
_PUSHOVER_TOKEN_ENV = "PUSHOVER_APPLICATION_TOKEN"
_PUSHOVER_USER_ENV = "PUSHOVER_USER_TARGET"
_TIMEZONE_ENV = "LOCAL_IANA_TIME_ZONE"
_DAILY_REPORT_HOUR_ENV = "DAILY_REPORT_HOUR"
_STORE_PATH_ENV = "READING_STORE_PATH"
_POLL_INTERVAL_ENV = "POLL_INTERVAL_SECONDS"
_HTTP_RETRIES_ENV = "HTTP_RETRIES"
_HEARTBEAT_URL_ENV = "DEADMAN_SNITCH"
_INBOUND_PSK_ENV = "TWILIO_WH_PSK"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_SENSOR_MODES = ("failover", "single")


@dataclass(frozen=True)
class Settings:
    sensor_ids: Tuple[str, ...]
    sensor_mode: str
    purple_air_api_key: Optional[str]
    geocoding_api_key: Optional[str]
    webhook_key: Optional[str]
    twilio_account_sid: Optional[str]
    twilio_auth_token: Optional[str]
    twilio_from_number: Optional[str]
    sms_recipients: Tuple[str, ...]
    pushover_token: Optional[str]
    pushover_user: Optional[str]
    local_timezone: str
    daily_report_hour: int
    store_path: Optional[str]
    poll_interval_seconds: int
    http_retries: int
    heartbeat_url: Optional[str]
    inbound_psk: Optional[str]
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_list_env(name: str) -> Tuple[str, ...]:
    value = os.getenv(name) or ""
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _read_int_env(name: str, default: int, minimum: int = 1) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _read_sensor_ids() -> Tuple[str, ...]:
    sensor_ids = _read_list_env(_SENSOR_IDS_ENV)
    if sensor_ids:
        return sensor_ids
    legacy = (
        _read_optional_env(_PRIMARY_SENSOR_ENV),
        _read_optional_env(_BACKUP_SENSOR_ENV),
    )
    return tuple(sensor_id for sensor_id in legacy if sensor_id)


def _read_sensor_mode(default: str) -> str:
    candidate = _read_str_env(_SENSOR_MODE_ENV, default).lower()
    return candidate if candidate in _SENSOR_MODES else default


def _read_daily_report_hour(default: int) -> int:
    hour = _read_int_env(_DAILY_REPORT_HOUR_ENV, default, minimum=0)
    return hour if hour < 24 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        sensor_ids=_read_sensor_ids(),
        sensor_mode=_read_sensor_mode("failover"),
        purple_air_api_key=_read_optional_env(_PURPLE_AIR_KEY_ENV),
        geocoding_api_key=_read_optional_env(_GEOCODING_KEY_ENV),
        webhook_key=_read_optional_env(_WEBHOOK_KEY_ENV),
        twilio_account_sid=_read_optional_env(_TWILIO_SID_ENV),
        twilio_auth_token=_read_optional_env(_TWILIO_KEY_ENV),
        twilio_from_number=_read_optional_env(_TWILIO_FROM_ENV),
        sms_recipients=_read_list_env(_SMS_RECIPIENTS_ENV),
        pushover_token=_read_optional_env(_PUSHOVER_TOKEN_ENV),
        pushover_user=_read_optional_env(_PUSHOVER_USER_ENV),
        local_timezone=_read_str_env(_TIMEZONE_ENV, "UTC"),
        daily_report_hour=_read_daily_report_hour(8),
        store_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/readings.json"),
        poll_interval_seconds=_read_int_env(_POLL_INTERVAL_ENV, 60),
        http_retries=_read_int_env(_HTTP_RETRIES_ENV, 3, minimum=0),
        heartbeat_url=_read_optional_env(_HEARTBEAT_URL_ENV),
        inbound_psk=_read_optional_env(_INBOUND_PSK_ENV),
        log_level=_read_log_level("INFO"),
    )
