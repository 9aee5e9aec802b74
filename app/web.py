from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from errors import AcquisitionError, StoreError
from services.aqi import aqi_category
from services.monitor import AirQualityMonitor, build_default_monitor
from services.notifier import format_aqi


templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))


def get_monitor() -> AirQualityMonitor:
    return build_default_monitor()


router = APIRouter(include_in_schema=False)


@router.get("/ui", name="ui_report", response_class=HTMLResponse)
def ui_report(
    request: Request,
    refresh: bool = Query(False),
    monitor: AirQualityMonitor = Depends(get_monitor),
) -> HTMLResponse:
    try:
        snapshot = monitor.generate_report(refresh=refresh)
    except (AcquisitionError, StoreError) as exc:
        return templates.TemplateResponse(
            request,
            "report.html",
            {"error": str(exc)},
            status_code=status.HTTP_502_BAD_GATEWAY,
        )

    reading = snapshot.reading
    return templates.TemplateResponse(
        request,
        "report.html",
        {
            "error": None,
            "snapshot": snapshot,
            "as_of": monitor.scheduler.local_time(reading.timestamp),
            "realtime": format_aqi(reading.realtime_aqi),
            "ten_minute": format_aqi(reading.ten_minute_avg_aqi),
            "category": aqi_category(reading.ten_minute_avg_aqi),
            "unhealthy": reading.ten_minute_avg_aqi > monitor.detector.threshold,
        },
    )
