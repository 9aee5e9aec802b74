"""HTTP route definitions for the service."""

from __future__ import annotations

import hmac
import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query, status
from fastapi.responses import PlainTextResponse

from app.schemas import ReportResponse
from errors import AcquisitionError, StoreError
from services.aqi import aqi_category
from services.monitor import AirQualityMonitor, ReportSnapshot, build_default_monitor
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


def get_monitor() -> AirQualityMonitor:
    return build_default_monitor()


def _finite(value: float) -> Optional[float]:
    return None if math.isnan(value) else value


def _generate(monitor: AirQualityMonitor, refresh: bool) -> ReportSnapshot:
    try:
        return monitor.generate_report(refresh=refresh)
    except AcquisitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(exc),
        ) from exc
    except StoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc


def to_response(snapshot: ReportSnapshot, threshold: float) -> ReportResponse:
    reading = snapshot.reading
    return ReportResponse(
        timestamp=reading.timestamp,
        realtime_aqi=_finite(reading.realtime_aqi),
        ten_minute_avg_aqi=_finite(reading.ten_minute_avg_aqi),
        category=aqi_category(reading.ten_minute_avg_aqi),
        above_threshold=reading.ten_minute_avg_aqi > threshold,
        stale=reading.stale,
        cached=snapshot.cached,
        place_name=reading.place_name,
        text=snapshot.text,
    )


@router.get(
    "/report",
    response_model=ReportResponse,
    summary="Current air quality, served from a reading under 30 minutes old.",
)
def get_report(
    refresh: bool = Query(False, description="Force a fresh sensor read."),
    monitor: AirQualityMonitor = Depends(get_monitor),
) -> ReportResponse:
    snapshot = _generate(monitor, refresh)
    return to_response(snapshot, monitor.detector.threshold)


@router.get(
    "/report/text",
    response_class=PlainTextResponse,
    summary="Current air quality as a plain text summary.",
)
def get_report_text(
    refresh: bool = Query(False, description="Force a fresh sensor read."),
    monitor: AirQualityMonitor = Depends(get_monitor),
) -> PlainTextResponse:
    snapshot = _generate(monitor, refresh)
    return PlainTextResponse(snapshot.text)


@router.post(
    "/refresh",
    response_model=ReportResponse,
    summary="Force a fresh sensor read, bypassing the report cache.",
)
def refresh_report(
    monitor: AirQualityMonitor = Depends(get_monitor),
) -> ReportResponse:
    snapshot = _generate(monitor, True)
    return to_response(snapshot, monitor.detector.threshold)


@router.post(
    "/incoming-message",
    response_class=PlainTextResponse,
    summary="Inbound SMS webhook; known recipients can text 'report' or 'refresh'.",
)
def incoming_message(
    sender: str = Form("", alias="From", description="Sender phone number."),
    body: str = Form("", alias="Body", description="Message text."),
    psk: str = Query("", description="Pre-shared key configured on the SMS webhook."),
    monitor: AirQualityMonitor = Depends(get_monitor),
    settings: Settings = Depends(get_settings),
) -> PlainTextResponse:
    if not settings.inbound_psk or not hmac.compare_digest(psk, settings.inbound_psk):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="invalid psk")

    sender = sender.strip()
    if not sender:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="no from")
    if sender not in settings.sms_recipients:
        logger.info("Message from an unknown number", extra={"recipient": sender})
        return PlainTextResponse("")

    command = body.strip().lower()
    logger.info("Message from known number", extra={"recipient": sender, "event": command or None})
    if not command:
        return PlainTextResponse("")
    if command not in {"report", "refresh"}:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="unknown command")

    snapshot = _generate(monitor, command == "refresh")
    return PlainTextResponse(snapshot.text)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /report for current air quality."}
