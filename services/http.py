from __future__ import annotations

import httpx

USER_AGENT = "aqimon/0.1 (+https://github.com/nkcmr/aqimon)"

SENSOR_TIMEOUT = 10.0
NOTIFY_TIMEOUT = 30.0
GEOCODE_TIMEOUT = 5.0
HEARTBEAT_TIMEOUT = 5.0


def build_http_client(timeout: float, retries: int = 3) -> httpx.Client:
    """Bounded-timeout client whose transport retries failed connections.

    httpx retries connection errors with exponential backoff; responses with
    a non-success status are returned to the caller untouched.
    """
    transport = httpx.HTTPTransport(retries=retries)
    return httpx.Client(
        transport=transport,
        timeout=timeout,
        headers={"User-Agent": USER_AGENT},
    )
