"""Consensus estimate model."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field

from airfusion.models._base import FusionBaseModel, UtcTimestamp
from airfusion.models.measurement import CellId, Pollutant
from airfusion.models.severity import SeverityTier


class Trend(StrEnum):
    IMPROVING = "improving"
    STABLE = "stable"
    WORSENING = "worsening"
    UNKNOWN = "unknown"


class ConsensusEstimate(FusionBaseModel):
    """Fused value for one (cell, pollutant) in one cycle.

    Parameters
    ----------
    cell : CellId
        Grid cell the estimate covers.
    pollutant : Pollutant
        Pollutant of the estimate.
    cycle : int
        Refresh cycle that produced the estimate.
    latitude, longitude : float
        Centre of the cell.
    value : float
        Fused concentration in ug/m3.
    confidence : float
        Confidence in ``[0, 1]``.
    divergent : bool
        Set when the contributing sources disagree beyond the divergence
        threshold. Confidence is then capped low.
    source_ids : tuple of str
        Every source that contributed a reading.
    outlier_source_ids : tuple of str
        Contributing sources excluded from the value because they
        disagreed with the majority.
    measurement_ids : tuple of str
        Identifiers of the underlying measurements (never empty).
    computed_at : datetime
        When the estimate was computed.
    trend : Trend
        Direction relative to the bounded trend window.
    aqi : int or None
        US EPA AQI for particulates, ``None`` for other pollutants.
    severity : SeverityTier
        Tier of :attr:`value` under the pollutant's breakpoints.
    """

    cell: CellId
    pollutant: Pollutant
    cycle: int = Field(ge=0)
    latitude: float
    longitude: float
    value: float
    confidence: float = Field(ge=0.0, le=1.0)
    divergent: bool = False
    source_ids: tuple[str, ...] = Field(min_length=1)
    outlier_source_ids: tuple[str, ...] = ()
    measurement_ids: tuple[str, ...] = Field(min_length=1)
    computed_at: UtcTimestamp
    trend: Trend = Trend.UNKNOWN
    aqi: int | None = None
    severity: SeverityTier = SeverityTier.GOOD

    @property
    def key(self) -> tuple[Pollutant, CellId]:
        return (self.pollutant, self.cell)
