"""PM2.5 concentration to US EPA Air Quality Index conversion."""

from __future__ import annotations

import math
from typing import NamedTuple, Sequence


class Breakpoint(NamedTuple):
    """One EPA band: concentration range mapped onto an index range."""

    bp_low: float
    bp_high: float
    index_low: int
    index_high: int
    label: str


# Ascending EPA PM2.5 table, µg/m³.
BREAKPOINTS: tuple[Breakpoint, ...] = (
    Breakpoint(0.0, 12.0, 0, 50, "Good"),
    Breakpoint(12.1, 35.4, 51, 100, "Moderate"),
    Breakpoint(35.5, 55.4, 101, 150, "Unhealthy for Sensitive Groups"),
    Breakpoint(55.5, 150.4, 151, 200, "Unhealthy"),
    Breakpoint(150.5, 250.4, 201, 300, "Very Unhealthy"),
    Breakpoint(250.5, 350.4, 301, 400, "Hazardous"),
    Breakpoint(350.5, 500.0, 401, 500, "Hazardous"),
)

MAX_CONCENTRATION = 1000.0


def round_half_away(value: float) -> float:
    """Round to the nearest integer with ties away from zero."""
    if math.isnan(value) or math.isinf(value):
        return value
    return math.copysign(math.floor(abs(value) + 0.5), value)


def _interpolate(pm: float, band: Breakpoint) -> float:
    slope = (band.index_high - band.index_low) / (band.bp_high - band.bp_low)
    return round_half_away(slope * (pm - band.bp_low) + band.index_low)


def _select_band(pm: float, table: Sequence[Breakpoint] = BREAKPOINTS) -> Breakpoint:
    # Bands are (previous bp_high, bp_high]; scan from the top so the first match wins.
    for position in range(len(table) - 1, 0, -1):
        if pm > table[position - 1].bp_high:
            return table[position]
    return table[0]


def aqi_from_pm(pm: float) -> float:
    """Convert a PM2.5 concentration into an AQI value.

    NaN propagates, negative inputs are sensor error sentinels and are returned
    unchanged, and anything above 1000 µg/m³ is outside the modelled range.
    """
    if math.isnan(pm):
        return math.nan
    if pm < 0:
        return pm
    if pm > MAX_CONCENTRATION:
        return math.nan
    return _interpolate(pm, _select_band(pm))


def aqi_category(aqi: float) -> str:
    """Return the EPA band label for an AQI value."""
    if math.isnan(aqi) or aqi < 0:
        return "Unknown"
    for band in reversed(BREAKPOINTS):
        if aqi >= band.index_low:
            return band.label
    return BREAKPOINTS[0].label


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; NaN for an empty sequence."""
    if not values:
        return math.nan
    return sum(values) / len(values)
