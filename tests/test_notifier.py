from __future__ import annotations

import base64
import json
import math
from typing import List
from urllib.parse import parse_qs

import httpx
import pytest
from pydantic import ValidationError

from errors import ConfigurationError, DeliveryError
from models.records import ThresholdEvent
from services.notifier import (
    NotificationChannel,
    NotificationChannelConfig,
    PushNotifier,
    SmsNotifier,
    WebhookNotifier,
    build_message,
    build_notifier,
    load_channel_config,
)
from settings import get_settings


def _recording_client(requests: List[httpx.Request], status_for=lambda request: 200) -> httpx.Client:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_for(request), json={})

    return httpx.Client(transport=httpx.MockTransport(handler))


def _form(request: httpx.Request) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(request.content.decode("utf-8")).items()}


def test_build_message_for_bad_air(make_reading) -> None:
    message = build_message(ThresholdEvent.air_quality_bad, make_reading(ten_minute=70.5, realtime=80.4))

    assert message == (
        "📈👎 Nearby air quality is getting bad. Close any open windows.\n"
        "(avg10_aqi: 71, rt_aqi: 80)"
    )


def test_build_message_adds_stale_caveat(make_reading) -> None:
    message = build_message(ThresholdEvent.air_quality_good, make_reading(ten_minute=60, stale=True))

    lines = message.splitlines()
    assert lines[0].startswith("📉👍")
    assert len(lines) == 3
    assert "stale" in lines[2]


def test_build_message_renders_nan_as_unavailable(make_reading) -> None:
    message = build_message(ThresholdEvent.air_quality_good, make_reading(ten_minute=60, realtime=math.nan))

    assert "rt_aqi: n/a" in message


def test_build_message_rejects_none_event(make_reading) -> None:
    with pytest.raises(ValueError):
        build_message(ThresholdEvent.none, make_reading())


def test_channel_config_requires_a_complete_credential_set() -> None:
    with pytest.raises(ValidationError):
        NotificationChannelConfig(twilio_account_sid="AC123", twilio_auth_token="secret")


def test_channel_precedence_prefers_webhook() -> None:
    config = NotificationChannelConfig(
        webhook_key="key",
        pushover_token="token",
        pushover_user="user",
    )

    assert config.channel is NotificationChannel.webhook


def test_missing_credentials_fail_before_any_network_call(monkeypatch) -> None:
    for name in ("IFTTT_WH_KEY", "TWILIO_ACCT_SID", "PUSHOVER_APPLICATION_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TWILIO_KEY", "secret")
    get_settings.cache_clear()
    requests: List[httpx.Request] = []
    _recording_client(requests)

    try:
        with pytest.raises(ConfigurationError):
            load_channel_config(get_settings())
    finally:
        get_settings.cache_clear()
    assert requests == []


def test_webhook_posts_json_to_event_trigger(make_reading) -> None:
    requests: List[httpx.Request] = []
    config = NotificationChannelConfig(webhook_key="abc")
    notifier = build_notifier(config, _recording_client(requests))

    assert isinstance(notifier, WebhookNotifier)
    notifier.notify(ThresholdEvent.air_quality_bad, make_reading(ten_minute=70, realtime=72))

    assert len(requests) == 1
    request = requests[0]
    assert request.url.path == "/trigger/air_quality_bad/with/key/abc"
    body = json.loads(request.content)
    assert body["value1"] == "70.0"
    assert body["value2"] == "72.0"
    assert body["value3"].startswith("📈👎")


def test_sms_sends_to_every_recipient_with_basic_auth(make_reading) -> None:
    requests: List[httpx.Request] = []
    config = NotificationChannelConfig(
        twilio_account_sid="AC123",
        twilio_auth_token="secret",
        twilio_from_number="+15550000000",
        sms_recipients=("+15551111111", " +15552222222"),
    )
    notifier = build_notifier(config, _recording_client(requests, lambda request: 201))

    assert isinstance(notifier, SmsNotifier)
    notifier.notify(ThresholdEvent.air_quality_good, make_reading(ten_minute=60))

    assert [_form(request)["To"] for request in requests] == ["+15551111111", "+15552222222"]
    expected_auth = "Basic " + base64.b64encode(b"AC123:secret").decode("ascii")
    assert all(request.headers["Authorization"] == expected_auth for request in requests)
    assert requests[0].url.path == "/2010-04-01/Accounts/AC123/Messages.json"
    assert _form(requests[0])["From"] == "+15550000000"


def test_sms_partial_failure_attempts_all_recipients(make_reading) -> None:
    requests: List[httpx.Request] = []

    def status_for(request: httpx.Request) -> int:
        return 400 if _form(request)["To"] == "+3" else 201

    notifier = SmsNotifier(
        _recording_client(requests, status_for),
        account_sid="AC123",
        auth_token="secret",
        from_number="+1",
        recipients=("+2", "+3", "+4", "+5"),
    )

    with pytest.raises(DeliveryError, match=r"1 of 4 recipients: \+3"):
        notifier.notify(ThresholdEvent.air_quality_bad, make_reading(ten_minute=90))

    assert [_form(request)["To"] for request in requests] == ["+2", "+3", "+4", "+5"]


def test_push_posts_form_with_token(make_reading) -> None:
    requests: List[httpx.Request] = []
    notifier = build_notifier(
        NotificationChannelConfig(pushover_token="tok", pushover_user="usr"),
        _recording_client(requests),
    )

    assert isinstance(notifier, PushNotifier)
    notifier.send_report("daily digest", make_reading())

    form = _form(requests[0])
    assert form["token"] == "tok"
    assert form["user"] == "usr"
    assert form["message"] == "daily digest"
    assert form["title"] == "Air quality report"


def test_non_ok_status_is_not_retried(make_reading) -> None:
    requests: List[httpx.Request] = []
    notifier = WebhookNotifier(_recording_client(requests, lambda request: 503), key="abc")

    with pytest.raises(DeliveryError, match="503"):
        notifier.notify(ThresholdEvent.air_quality_good, make_reading())

    assert len(requests) == 1


def test_transport_failure_raises_delivery_error(make_reading) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    notifier = PushNotifier(httpx.Client(transport=httpx.MockTransport(handler)), token="t", user="u")

    with pytest.raises(DeliveryError, match="failed to send http request"):
        notifier.notify(ThresholdEvent.air_quality_bad, make_reading())
