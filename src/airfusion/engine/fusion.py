"""Trust-weighted fusion of per-source readings into consensus estimates."""

from __future__ import annotations

import logging
import statistics
from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from typing import TYPE_CHECKING

from airfusion._constants import MIN_EFFECTIVE_QUALITY, TREND_BAND, VALUE_FLOOR
from airfusion.aqi import concentration_to_aqi
from airfusion.engine.readings import FusionKey, SourceReading, group_readings
from airfusion.engine.reliability import relative_deviation
from airfusion.models.consensus import ConsensusEstimate, Trend
from airfusion.models.measurement import CellId, Measurement, Pollutant
from airfusion.models.severity import tier_for
from airfusion.models.source import ReliabilityClass

if TYPE_CHECKING:
    from airfusion.config import FusionConfig

_logger = logging.getLogger(__name__)

_DEFAULT_WEIGHT = ReliabilityClass.COMMUNITY.initial_weight


def _weighted_stats(values: Sequence[float], weights: Sequence[float]) -> tuple[float, float]:
    """Return the weighted mean and weighted population variance."""
    total = sum(weights)
    mean = sum(w * v for w, v in zip(weights, values, strict=True)) / total
    variance = sum(w * (v - mean) ** 2 for w, v in zip(weights, values, strict=True)) / total
    return mean, variance


class FusionAggregator:
    """Reconcile readings of the same cell and pollutant.

    Parameters
    ----------
    cell_size_deg : float
        Edge of a fusion cell in degrees.
    breakpoints : mapping
        Severity breakpoints per pollutant.
    divergence_threshold : float
        Spread ratio above which the contributing sources are divergent.
    outlier_tolerance : float
        Relative distance from the median that still counts as agreeing
        inside a divergent cell.
    single_source_confidence_cap : float
        Confidence ceiling of an uncorroborated reading.
    divergent_confidence_cap : float
        Confidence ceiling of a divergent cell.
    trend_window : int
        Number of prior cycle values kept per key.
    """

    def __init__(
        self,
        *,
        cell_size_deg: float,
        breakpoints: Mapping[Pollutant, Sequence[float]],
        divergence_threshold: float = 0.5,
        outlier_tolerance: float = 0.25,
        single_source_confidence_cap: float = 0.5,
        divergent_confidence_cap: float = 0.3,
        trend_window: int = 6,
    ) -> None:
        self._cell_size_deg = cell_size_deg
        self._breakpoints = dict(breakpoints)
        self._divergence_threshold = divergence_threshold
        self._outlier_tolerance = outlier_tolerance
        self._single_cap = single_source_confidence_cap
        self._divergent_cap = divergent_confidence_cap
        self._trend_window = trend_window
        self._history: dict[FusionKey, deque[float]] = {}

    @classmethod
    def from_config(cls, config: FusionConfig) -> FusionAggregator:
        return cls(
            cell_size_deg=config.cell_size_deg,
            breakpoints=config.severity_breakpoints,
            divergence_threshold=config.divergence_threshold,
            outlier_tolerance=config.outlier_tolerance,
            single_source_confidence_cap=config.single_source_confidence_cap,
            divergent_confidence_cap=config.divergent_confidence_cap,
            trend_window=config.trend_window,
        )

    def aggregate(
        self,
        measurements: Iterable[Measurement],
        weights: Mapping[str, float],
        *,
        cycle: int,
        now: datetime,
    ) -> list[ConsensusEstimate]:
        """Fuse *measurements* into one estimate per (cell, pollutant).

        Does not touch the trend window; call :meth:`record` once the
        cycle's results are committed.
        """
        return self.fuse_groups(group_readings(measurements, self._cell_size_deg), weights, cycle=cycle, now=now)

    def fuse_groups(
        self,
        groups: Mapping[FusionKey, Sequence[SourceReading]],
        weights: Mapping[str, float],
        *,
        cycle: int,
        now: datetime,
    ) -> list[ConsensusEstimate]:
        estimates = [
            self._fuse(key, readings, weights, cycle=cycle, now=now)
            for key, readings in sorted(groups.items())
            if readings
        ]
        divergent = sum(1 for estimate in estimates if estimate.divergent)
        _logger.debug("Cycle %d fused %d estimates (%d divergent)", cycle, len(estimates), divergent)
        return estimates

    def record(self, estimates: Iterable[ConsensusEstimate]) -> None:
        """Append the cycle's values to the bounded trend window."""
        for estimate in estimates:
            window = self._history.get(estimate.key)
            if window is None:
                window = deque(maxlen=self._trend_window)
                self._history[estimate.key] = window
            window.append(estimate.value)

    def history(self, pollutant: Pollutant, cell: CellId) -> tuple[float, ...]:
        window = self._history.get((pollutant, cell))
        return tuple(window) if window is not None else ()

    def _fuse(
        self,
        key: FusionKey,
        readings: Sequence[SourceReading],
        weights: Mapping[str, float],
        *,
        cycle: int,
        now: datetime,
    ) -> ConsensusEstimate:
        pollutant, cell = key
        outliers: tuple[str, ...] = ()
        divergent = False

        if len(readings) == 1:
            value = readings[0].value
            confidence = min(self._single_cap, readings[0].quality)
        else:
            values = [reading.value for reading in readings]
            mean = statistics.fmean(values)
            spread = (max(values) - min(values)) / max(mean, VALUE_FLOOR)
            if spread > self._divergence_threshold:
                divergent = True
                median = statistics.median(values)
                inliers = [
                    reading
                    for reading in readings
                    if relative_deviation(reading.value, median) <= self._outlier_tolerance
                ]
                if inliers:
                    inlier_ids = {reading.source_id for reading in inliers}
                    outliers = tuple(reading.source_id for reading in readings if reading.source_id not in inlier_ids)
                else:
                    inliers = list(readings)
                value, confidence = self._weighted(inliers, weights)
                confidence = min(confidence, self._divergent_cap)
            else:
                value, confidence = self._weighted(readings, weights)

        latitude, longitude = cell.centre(self._cell_size_deg)
        return ConsensusEstimate(
            cell=cell,
            pollutant=pollutant,
            cycle=cycle,
            latitude=latitude,
            longitude=longitude,
            value=value,
            confidence=min(1.0, max(0.0, confidence)),
            divergent=divergent,
            source_ids=tuple(reading.source_id for reading in readings),
            outlier_source_ids=outliers,
            measurement_ids=tuple(mid for reading in readings for mid in reading.measurement_ids),
            computed_at=now,
            trend=self._trend(key, value),
            aqi=concentration_to_aqi(pollutant, value),
            severity=tier_for(value, self._breakpoints[pollutant]),
        )

    def _weighted(self, readings: Sequence[SourceReading], weights: Mapping[str, float]) -> tuple[float, float]:
        if len(readings) == 1:
            return readings[0].value, min(self._single_cap, readings[0].quality)
        effective = [
            weights.get(reading.source_id, _DEFAULT_WEIGHT) * max(reading.quality, MIN_EFFECTIVE_QUALITY)
            for reading in readings
        ]
        value, variance = _weighted_stats([reading.value for reading in readings], effective)
        scale = self._divergence_threshold * max(value, VALUE_FLOOR)
        return value, 1.0 - variance / scale**2

    def _trend(self, key: FusionKey, value: float) -> Trend:
        window = self._history.get(key)
        if not window:
            return Trend.UNKNOWN
        reference = statistics.fmean(window)
        band = TREND_BAND * max(reference, VALUE_FLOOR)
        if value > reference + band:
            return Trend.WORSENING
        if value < reference - band:
            return Trend.IMPROVING
        return Trend.STABLE
