from __future__ import annotations

from typing import Any, Iterable

import typer

from models.records import ThresholdEvent
from services.monitor import ReportSnapshot, TickOutcome


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_report(snapshot: ReportSnapshot) -> None:
    typer.echo(snapshot.text)
    if snapshot.cached:
        typer.secho("(cached reading, use --refresh for a fresh one)", dim=True)


def render_event(event: ThresholdEvent) -> None:
    if event is ThresholdEvent.none:
        typer.echo("No threshold crossing.")
        return
    color = typer.colors.GREEN if event is ThresholdEvent.air_quality_good else typer.colors.RED
    typer.secho(f"Threshold crossed: {event.value}", fg=color)


def render_outcome(outcome: TickOutcome) -> None:
    echo_heading("Tick")
    echo_key_values(
        [
            ("event", outcome.event.value if outcome.event else "n/a"),
            ("daily_report_sent", outcome.daily_report_sent),
            ("expired", outcome.expired),
        ]
    )
    for error in outcome.errors:
        typer.secho(f"  - {error}", fg=typer.colors.RED, err=True)
