"""US EPA Air Quality Index conversion for particulates."""

from __future__ import annotations

import math

from airfusion._constants import AQI_BREAKPOINTS
from airfusion.models.measurement import Pollutant


def _truncate(pollutant: Pollutant, value: float) -> float:
    # EPA truncates PM2.5 to 0.1 ug/m3 and PM10 to 1 ug/m3 before lookup.
    if pollutant == Pollutant.PM25:
        return math.floor(value * 10) / 10
    return float(math.floor(value))


def concentration_to_aqi(pollutant: Pollutant, value: float) -> int | None:
    """Return the AQI for a concentration, or ``None`` if not defined.

    Concentrations beyond the table top out at 500.
    """
    table = AQI_BREAKPOINTS.get(pollutant)
    if table is None or value < 0:
        return None
    concentration = _truncate(pollutant, value)
    for aqi_low, aqi_high, c_low, c_high in table:
        if concentration <= c_high:
            concentration = max(concentration, c_low)
            return round((aqi_high - aqi_low) / (c_high - c_low) * (concentration - c_low) + aqi_low)
    return 500


def aqi_to_concentration(pollutant: Pollutant, aqi: float) -> float | None:
    """Invert :func:`concentration_to_aqi` (used for AQI-only feeds).

    Returns ``None`` for pollutants without a table or negative indices.
    """
    table = AQI_BREAKPOINTS.get(pollutant)
    if table is None or aqi < 0:
        return None
    for aqi_low, aqi_high, c_low, c_high in table:
        if aqi <= aqi_high:
            index = max(aqi, aqi_low)
            return round((c_high - c_low) / (aqi_high - aqi_low) * (index - aqi_low) + c_low, 1)
    return table[-1][3]
