from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

import typer

from cli.render import render_event, render_outcome, render_report
from errors import AirQualityError, ConfigurationError
from logging_config import configure_logging
from services.monitor import AirQualityMonitor, build_default_monitor
from settings import get_settings


@dataclass
class CLIState:
    monitor: Optional[AirQualityMonitor] = None


app = typer.Typer(
    help="Poll an air quality sensor, alert on threshold crossings and send reports.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_monitor(ctx: typer.Context) -> AirQualityMonitor:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    if state.monitor is None:
        try:
            state.monitor = build_default_monitor()
        except ConfigurationError as exc:
            _fail(exc)
        ctx.call_on_close(state.monitor.close)
    return state.monitor


def _fail(exc: Exception) -> None:
    typer.secho(f"error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Log level (defaults to LOG_LEVEL env or INFO).",
    ),
) -> None:
    """Entry point for the CLI."""
    configure_logging(log_level.upper() if log_level else None)
    ctx.obj = CLIState()


@app.command("check")
def check_command(ctx: typer.Context) -> None:
    """Run one interval check: read, compare with the baseline, alert on a crossing."""
    monitor = _get_monitor(ctx)
    try:
        event = monitor.check_air_quality()
    except AirQualityError as exc:
        _fail(exc)
    render_event(event)


@app.command("daily")
def daily_command(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Send even if the daily report is not due."),
) -> None:
    """Send the daily report if it is due."""
    monitor = _get_monitor(ctx)
    try:
        sent = monitor.send_daily_report_if_due(force=force)
    except AirQualityError as exc:
        _fail(exc)
    typer.echo("Daily report sent." if sent else "Daily report not due.")


@app.command("report")
def report_command(
    ctx: typer.Context,
    refresh: bool = typer.Option(False, "--refresh", help="Force a fresh sensor read."),
) -> None:
    """Print the current air quality report."""
    monitor = _get_monitor(ctx)
    try:
        snapshot = monitor.generate_report(refresh=refresh)
    except AirQualityError as exc:
        _fail(exc)
    render_report(snapshot)


@app.command("run")
def run_command(
    ctx: typer.Context,
    interval: Optional[int] = typer.Option(
        None,
        "--interval",
        help="Seconds between ticks (defaults to POLL_INTERVAL_SECONDS env or 60).",
    ),
    max_ticks: int = typer.Option(0, "--max-ticks", help="Stop after this many ticks; 0 runs forever."),
) -> None:
    """Poll on a fixed interval, running the interval and daily checks each tick."""
    monitor = _get_monitor(ctx)
    seconds = interval if interval is not None else get_settings().poll_interval_seconds
    ticks = 0
    try:
        while True:
            started = time.monotonic()
            render_outcome(monitor.run_scheduled())
            ticks += 1
            if max_ticks and ticks >= max_ticks:
                break
            time.sleep(max(0.0, seconds - (time.monotonic() - started)))
    except KeyboardInterrupt:
        typer.echo("bye-bye!")
