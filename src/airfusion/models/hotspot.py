"""Hotspot model."""

from __future__ import annotations

from pydantic import Field

from airfusion.models._base import FusionBaseModel, OptionalUtcTimestamp, UtcTimestamp
from airfusion.models.consensus import ConsensusEstimate
from airfusion.models.measurement import Pollutant
from airfusion.models.severity import SeverityTier


class Hotspot(FusionBaseModel):
    """A spatially persistent cluster of unhealthy estimates.

    The identifier is assigned once and carried across cycles by
    nearest-centroid matching; it never encodes coordinates. ``members``
    holds the estimates of the last confirming cycle.
    """

    hotspot_id: str
    pollutant: Pollutant
    latitude: float
    longitude: float
    members: tuple[ConsensusEstimate, ...] = Field(min_length=1)
    worst_value: float
    severity: SeverityTier
    radius_km: float = 0.0
    first_detected_at: UtcTimestamp
    last_confirmed_at: UtcTimestamp
    confirmed_cycles: int = 1
    missed_cycles: int = 0
    merged_from: tuple[str, ...] = ()
    merged_into: str | None = None
    retired_at: OptionalUtcTimestamp = None

    @property
    def confirmed(self) -> bool:
        """Whether the hotspot was re-detected in its latest cycle."""
        return self.missed_cycles == 0
