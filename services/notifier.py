"""Outbound notification channels.

Exactly one channel is active per deployment. It is picked once at startup
from whichever credential set is complete, with the precedence webhook, SMS,
push. Every channel posts through a bounded-timeout ``httpx.Client`` whose
transport retries failed connections; a non-success status from the
receiving service is never retried and surfaces as ``DeliveryError``.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar, Optional, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from errors import ConfigurationError, DeliveryError
from models.records import SensorReading, ThresholdEvent
from services.aqi import round_half_away
from settings import Settings

logger = logging.getLogger(__name__)

WEBHOOK_URL = "https://maker.ifttt.com/trigger/{event}/with/key/{key}"
TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
PUSHOVER_MESSAGES_URL = "https://api.pushover.net/1/messages.json"

REPORT_EVENT = "air_quality_report"
STALE_CAVEAT = "⚠️ Sensor data may be stale, readings could be out of date."

_EVENT_HEADLINES = {
    ThresholdEvent.air_quality_good: (
        "📉👍 Nearby air quality seems to be getting better. Open windows for fresh air."
    ),
    ThresholdEvent.air_quality_bad: (
        "📈👎 Nearby air quality is getting bad. Close any open windows."
    ),
}


class NotificationChannel(str, Enum):
    webhook = "webhook"
    sms = "sms"
    push = "push"


class NotificationChannelConfig(BaseModel):
    """Credentials for every channel; at least one set must be complete."""

    model_config = ConfigDict(frozen=True)

    webhook_key: Optional[str] = None
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_from_number: Optional[str] = None
    sms_recipients: Tuple[str, ...] = ()
    pushover_token: Optional[str] = None
    pushover_user: Optional[str] = None

    def _resolve_channel(self) -> Optional[NotificationChannel]:
        if self.webhook_key:
            return NotificationChannel.webhook
        if (
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_from_number
            and self.sms_recipients
        ):
            return NotificationChannel.sms
        if self.pushover_token and self.pushover_user:
            return NotificationChannel.push
        return None

    @property
    def channel(self) -> NotificationChannel:
        channel = self._resolve_channel()
        if channel is None:
            raise ValueError("improper notification configuration")
        return channel

    @model_validator(mode="after")
    def _require_complete_channel(self) -> "NotificationChannelConfig":
        if self._resolve_channel() is None:
            raise ValueError(
                "improper notification configuration: no channel has a complete credential set"
            )
        return self


def load_channel_config(settings: Settings) -> NotificationChannelConfig:
    try:
        return NotificationChannelConfig(
            webhook_key=settings.webhook_key,
            twilio_account_sid=settings.twilio_account_sid,
            twilio_auth_token=settings.twilio_auth_token,
            twilio_from_number=settings.twilio_from_number,
            sms_recipients=settings.sms_recipients,
            pushover_token=settings.pushover_token,
            pushover_user=settings.pushover_user,
        )
    except ValidationError as exc:
        raise ConfigurationError(
            "failed to init notifier: improper notification configuration"
        ) from exc


def format_aqi(value: float) -> str:
    if math.isnan(value):
        return "n/a"
    return str(int(round_half_away(value)))


def build_message(event: ThresholdEvent, reading: SensorReading) -> str:
    headline = _EVENT_HEADLINES.get(ThresholdEvent(event))
    if headline is None:
        raise ValueError(f"unknown notification event: {event!r}")
    lines = [
        headline,
        f"(avg10_aqi: {format_aqi(reading.ten_minute_avg_aqi)}, "
        f"rt_aqi: {format_aqi(reading.realtime_aqi)})",
    ]
    if reading.stale:
        lines.append(STALE_CAVEAT)
    return "\n".join(lines)


class Notifier(ABC):
    """Delivers threshold alerts and report digests over one channel."""

    channel: ClassVar[NotificationChannel]

    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    def notify(self, event: ThresholdEvent, reading: SensorReading) -> None:
        event = ThresholdEvent(event)
        message = build_message(event, reading)
        logger.info(
            "Sending notification",
            extra={"channel": self.channel.value, "event": event.value},
        )
        self._send(event.value, message, reading)

    def send_report(self, text: str, reading: SensorReading) -> None:
        logger.info(
            "Sending report",
            extra={"channel": self.channel.value, "event": REPORT_EVENT},
        )
        self._send(REPORT_EVENT, text, reading)

    def close(self) -> None:
        self._client.close()

    @abstractmethod
    def _send(self, event_name: str, message: str, reading: SensorReading) -> None:
        """Deliver ``message`` or raise ``DeliveryError``."""

    def _post(self, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.post(url, **kwargs)
        except httpx.TransportError as exc:
            raise DeliveryError(
                f"failed to send http request to {self.channel.value}: {exc}"
            ) from exc
        if not response.is_success:
            logger.error(
                "Non-ok response from notification service: %s",
                response.text[:500],
                extra={"channel": self.channel.value, "status_code": response.status_code},
            )
            raise DeliveryError(
                f"non-ok status returned from {self.channel.value} ({response.status_code})"
            )
        return response


class WebhookNotifier(Notifier):
    channel = NotificationChannel.webhook

    def __init__(self, client: httpx.Client, key: str) -> None:
        super().__init__(client)
        self._key = key

    def _send(self, event_name: str, message: str, reading: SensorReading) -> None:
        self._post(
            WEBHOOK_URL.format(event=event_name, key=self._key),
            json={
                "value1": f"{reading.ten_minute_avg_aqi:.1f}",
                "value2": f"{reading.realtime_aqi:.1f}",
                "value3": message,
            },
        )


class SmsNotifier(Notifier):
    channel = NotificationChannel.sms

    def __init__(
        self,
        client: httpx.Client,
        account_sid: str,
        auth_token: str,
        from_number: str,
        recipients: Tuple[str, ...],
    ) -> None:
        super().__init__(client)
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self.recipients = tuple(recipient.strip() for recipient in recipients)

    def _send(self, event_name: str, message: str, reading: SensorReading) -> None:
        url = TWILIO_MESSAGES_URL.format(sid=self._account_sid)
        failed: list[str] = []
        # Every recipient is attempted before failing.
        for recipient in self.recipients:
            try:
                self._post(
                    url,
                    data={"Body": message, "From": self._from_number, "To": recipient},
                    auth=(self._account_sid, self._auth_token),
                    headers={"Accept": "application/json"},
                )
            except DeliveryError as exc:
                logger.error(
                    "SMS delivery failed",
                    extra={
                        "channel": self.channel.value,
                        "recipient": recipient,
                        "reason": str(exc),
                    },
                )
                failed.append(recipient)
        if failed:
            raise DeliveryError(
                f"failed to deliver sms to {len(failed)} of {len(self.recipients)} "
                f"recipients: {', '.join(failed)}"
            )


class PushNotifier(Notifier):
    channel = NotificationChannel.push

    def __init__(self, client: httpx.Client, token: str, user: str) -> None:
        super().__init__(client)
        self._token = token
        self._user = user

    def _send(self, event_name: str, message: str, reading: SensorReading) -> None:
        title = "Air quality report" if event_name == REPORT_EVENT else "Air quality alert"
        self._post(
            PUSHOVER_MESSAGES_URL,
            data={
                "token": self._token,
                "user": self._user,
                "title": title,
                "message": message,
            },
        )


def build_notifier(config: NotificationChannelConfig, client: httpx.Client) -> Notifier:
    channel = config.channel
    if channel is NotificationChannel.webhook:
        return WebhookNotifier(client, key=config.webhook_key or "")
    if channel is NotificationChannel.sms:
        return SmsNotifier(
            client,
            account_sid=config.twilio_account_sid or "",
            auth_token=config.twilio_auth_token or "",
            from_number=config.twilio_from_number or "",
            recipients=config.sms_recipients,
        )
    return PushNotifier(client, token=config.pushover_token or "", user=config.pushover_user or "")
