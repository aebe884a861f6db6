"""Published snapshot model."""

from __future__ import annotations

from pydantic import Field

from airfusion.models._base import FusionBaseModel, OptionalUtcTimestamp
from airfusion.models.alert import Alert
from airfusion.models.consensus import ConsensusEstimate
from airfusion.models.hotspot import Hotspot


class SnapshotSummary(FusionBaseModel):
    """Aggregate figures for dashboards."""

    estimate_count: int = 0
    divergent_count: int = 0
    hotspot_count: int = 0
    open_alert_count: int = 0
    mean_by_pollutant: dict[str, float] = Field(default_factory=dict)
    max_by_pollutant: dict[str, float] = Field(default_factory=dict)
    active_sources: tuple[str, ...] = ()
    unavailable_sources: tuple[str, ...] = ()
    rejection_counts: dict[str, int] = Field(default_factory=dict)
    quality_flags: tuple[str, ...] = ()
    recommended_actions: tuple[str, ...] = ()


class Snapshot(FusionBaseModel):
    """Immutable result of one refresh cycle.

    ``alerts`` lists every open alert plus the alerts resolved during the
    cycle. A snapshot without ``generated_at`` is the "no data yet" result.
    """

    cycle: int = 0
    consensus: tuple[ConsensusEstimate, ...] = ()
    hotspots: tuple[Hotspot, ...] = ()
    alerts: tuple[Alert, ...] = ()
    generated_at: OptionalUtcTimestamp = None
    stale: bool = False
    summary: SnapshotSummary = Field(default_factory=SnapshotSummary)

    @classmethod
    def no_data(cls) -> Snapshot:
        return cls()

    @property
    def has_data(self) -> bool:
        return self.generated_at is not None

    def as_stale(self) -> Snapshot:
        return self.model_copy(update={"stale": True})
