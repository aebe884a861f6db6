"""Per-source readings grouped by fusion key."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from airfusion._constants import MIN_EFFECTIVE_QUALITY
from airfusion.models.measurement import CellId, Measurement, Pollutant

FusionKey = tuple[Pollutant, CellId]


@dataclass(frozen=True, slots=True)
class SourceReading:
    """One source's contribution to one (pollutant, cell) in one cycle.

    A source reporting several measurements in the same cell is reduced to
    their quality-weighted mean, so every source counts once.
    """

    source_id: str
    value: float
    quality: float
    observed_at: datetime
    measurement_ids: tuple[str, ...]


def _reduce(source_id: str, measurements: list[Measurement]) -> SourceReading:
    measurements = sorted(measurements, key=lambda m: m.measurement_id)
    weights = [max(m.quality, MIN_EFFECTIVE_QUALITY) for m in measurements]
    total = sum(weights)
    value = sum(w * m.value for w, m in zip(weights, measurements, strict=True)) / total
    return SourceReading(
        source_id=source_id,
        value=value,
        quality=sum(m.quality for m in measurements) / len(measurements),
        observed_at=max(m.observed_at for m in measurements),
        measurement_ids=tuple(m.measurement_id for m in measurements),
    )


def group_readings(measurements: Iterable[Measurement], cell_size_deg: float) -> dict[FusionKey, list[SourceReading]]:
    """Group measurements by (pollutant, cell), one reading per source.

    Keys and the readings inside each key are sorted so the result does not
    depend on arrival order.
    """
    buckets: dict[FusionKey, dict[str, list[Measurement]]] = defaultdict(lambda: defaultdict(list))
    for measurement in measurements:
        key = (measurement.pollutant, measurement.cell(cell_size_deg))
        buckets[key][measurement.source_id].append(measurement)
    return {
        key: [_reduce(source_id, by_source[source_id]) for source_id in sorted(by_source)]
        for key, by_source in sorted(buckets.items())
    }
