"""Per-vendor payload mappings.

Each mapping reshapes one raw payload into :class:`CandidateRecord` objects.
Mappings only move fields around; every check happens in
:class:`airfusion.ingestion.normalize.Normalizer`.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from airfusion.ingestion.normalize import CandidateRecord
from airfusion.models.measurement import Pollutant

PayloadMapping = Callable[[Mapping[str, Any]], list[CandidateRecord]]


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def _section(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = payload.get(key)
    return value if isinstance(value, Mapping) else {}


def _mappings(value: Any) -> list[Mapping[str, Any]]:
    """Keep only the object entries of a JSON list; scalars and junk are skipped."""
    if isinstance(value, Mapping):
        return [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def map_canonical(payload: Mapping[str, Any]) -> list[CandidateRecord]:
    """``{lat, lon, pollutant, value, unit, observed_at, quality}``.

    A ``source_id`` key, if present, is ignored: readings are always
    attributed to the connector that delivered them.
    """
    return [
        CandidateRecord(
            latitude=_first(payload, "lat", "latitude"),
            longitude=_first(payload, "lon", "lng", "longitude"),
            pollutant=payload.get("pollutant"),
            value=payload.get("value"),
            unit=payload.get("unit"),
            observed_at=_first(payload, "observed_at", "timestamp"),
            quality=payload.get("quality"),
        )
    ]


def map_openaq(payload: Mapping[str, Any]) -> list[CandidateRecord]:
    """OpenAQ ``/latest`` results, either one result or ``{"results": [...]}``."""
    results = payload.get("results")
    if results is None:
        results = payload
    records: list[CandidateRecord] = []
    for result in _mappings(results):
        coordinates = _section(result, "coordinates")
        for entry in _mappings(result.get("measurements")):
            records.append(
                CandidateRecord(
                    latitude=coordinates.get("latitude"),
                    longitude=coordinates.get("longitude"),
                    pollutant=entry.get("parameter"),
                    value=entry.get("value"),
                    unit=entry.get("unit"),
                    observed_at=_first(entry, "lastUpdated", "date"),
                )
            )
    return records


# WAQI ``iaqi`` also carries weather keys (t, h, p, w, dew); only these are readings.
_WAQI_POLLUTANT_KEYS = ("pm25", "pm10", "no2", "o3", "so2", "co")


def map_waqi(payload: Mapping[str, Any]) -> list[CandidateRecord]:
    """WAQI city/station feed.

    ``iaqi`` values are US AQI sub-indices, not concentrations. They are
    tagged with the ``us_aqi`` unit so the normalizer inverts them where an
    inversion exists and rejects them as unsupported otherwise.
    """
    data = payload.get("data", payload)
    if not isinstance(data, Mapping):
        # Error replies look like {"status": "error", "data": "Unknown station"}.
        raise ValueError(f"WAQI status {payload.get('status')!r}: {data!r}")
    geo = _section(data, "city").get("geo") or (None, None)
    latitude, longitude = geo[0], geo[1]
    time_section = _section(data, "time")
    observed_at = _first(time_section, "iso", "v")
    iaqi = _section(data, "iaqi")
    records: list[CandidateRecord] = []
    for key in _WAQI_POLLUTANT_KEYS:
        entry = iaqi.get(key)
        if not isinstance(entry, Mapping):
            continue
        records.append(
            CandidateRecord(
                latitude=latitude,
                longitude=longitude,
                pollutant=key,
                value=entry.get("v"),
                unit="us_aqi",
                observed_at=observed_at,
            )
        )
    return records


_WEATHERAPI_FIELDS: dict[str, Pollutant] = {
    "pm2_5": Pollutant.PM25,
    "pm10": Pollutant.PM10,
    "no2": Pollutant.NO2,
    "o3": Pollutant.O3,
    "so2": Pollutant.SO2,
    "co": Pollutant.CO,
}


def map_weatherapi(payload: Mapping[str, Any]) -> list[CandidateRecord]:
    """WeatherAPI.com ``current.json?aqi=yes``; all values are ug/m3."""
    location = _section(payload, "location")
    current = _section(payload, "current")
    air_quality = _section(current, "air_quality")
    observed_at = _first(current, "last_updated_epoch", "last_updated")
    return [
        CandidateRecord(
            latitude=location.get("lat"),
            longitude=location.get("lon"),
            pollutant=pollutant,
            value=air_quality[field],
            observed_at=observed_at,
        )
        for field, pollutant in _WEATHERAPI_FIELDS.items()
        if field in air_quality
    ]


PAYLOAD_MAPPINGS: dict[str, PayloadMapping] = {
    "canonical": map_canonical,
    "openaq": map_openaq,
    "waqi": map_waqi,
    "weatherapi": map_weatherapi,
}
