"""One atomic refresh step: normalize, fuse, detect, alert, learn."""

from __future__ import annotations

import logging
import statistics
from collections import Counter
from collections.abc import Callable, Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from airfusion.config import FusionConfig
from airfusion.engine.advisory import recommended_actions
from airfusion.engine.alerts import AlertStateMachine, AlertUpdate
from airfusion.engine.fusion import FusionAggregator
from airfusion.engine.hotspots import HotspotDetector, HotspotUpdate
from airfusion.engine.readings import group_readings
from airfusion.engine.reliability import ProfileTable, SourceReliabilityModel
from airfusion.ingestion.normalize import NormalizationBatch, Normalizer
from airfusion.models.alert import Alert, AlertTransition
from airfusion.models.consensus import ConsensusEstimate
from airfusion.models.hotspot import Hotspot
from airfusion.models.measurement import Pollutant
from airfusion.models.snapshot import Snapshot, SnapshotSummary
from airfusion.models.source import SourceDescriptor, SourceProfile

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class CycleResult:
    snapshot: Snapshot
    transitions: tuple[AlertTransition, ...] = ()


def quality_flags(
    estimates: Sequence[ConsensusEstimate],
    batch: NormalizationBatch,
    unavailable: Collection[str],
) -> tuple[str, ...]:
    flags = [f"{source_id}_unavailable" for source_id in sorted(unavailable)]
    if not estimates:
        flags.append("no_estimates")
    elif all(len(estimate.source_ids) < 2 for estimate in estimates):
        flags.append("insufficient_sources")
    if any(estimate.divergent for estimate in estimates):
        flags.append("divergent_estimates")
    if batch.rejections:
        flags.append("rejected_measurements")
    return tuple(flags)


def build_summary(
    estimates: Sequence[ConsensusEstimate],
    hotspots: Sequence[Hotspot],
    alerts: Sequence[Alert],
    batch: NormalizationBatch,
    *,
    unavailable: Collection[str],
    config: FusionConfig,
) -> SnapshotSummary:
    values: dict[str, list[float]] = {}
    for estimate in estimates:
        values.setdefault(estimate.pollutant.value, []).append(estimate.value)
    mean_by_pollutant = {key: round(statistics.fmean(vals), 3) for key, vals in sorted(values.items())}
    counts = batch.rejection_counts()
    return SnapshotSummary(
        estimate_count=len(estimates),
        divergent_count=sum(1 for estimate in estimates if estimate.divergent),
        hotspot_count=len(hotspots),
        open_alert_count=sum(1 for alert in alerts if alert.is_open),
        mean_by_pollutant=mean_by_pollutant,
        max_by_pollutant={key: round(max(vals), 3) for key, vals in sorted(values.items())},
        active_sources=tuple(sorted({m.source_id for m in batch.measurements})),
        unavailable_sources=tuple(sorted(unavailable)),
        rejection_counts={reason.value: counts[reason] for reason in sorted(counts)},
        quality_flags=quality_flags(estimates, batch, unavailable),
        recommended_actions=recommended_actions(
            mean_by_pollutant,
            hotspots,
            critical_tier=config.critical_tier,
            pm25_breakpoints=config.breakpoints_for(Pollutant.PM25),
        ),
    )


class FusionEngine:
    """The synchronous core of a refresh cycle.

    :meth:`run_cycle` computes every stage against the state left by the
    previous cycle and commits all of them only once everything succeeded,
    so a failure halfway leaves the engine exactly as it was.
    """

    def __init__(
        self,
        config: FusionConfig | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or FusionConfig()
        self._clock = clock
        self._normalizer = Normalizer.from_config(self._config)
        self._reliability = SourceReliabilityModel.from_config(self._config)
        self._fusion = FusionAggregator.from_config(self._config)
        self._hotspots = HotspotDetector.from_config(self._config)
        self._alerts = AlertStateMachine.from_config(self._config)
        self._descriptors: dict[str, SourceDescriptor] = {}
        self._cycle = 0

    @property
    def config(self) -> FusionConfig:
        return self._config

    @property
    def cycle(self) -> int:
        """Number of committed cycles."""
        return self._cycle

    @property
    def reliability(self) -> SourceReliabilityModel:
        return self._reliability

    @property
    def alerts(self) -> AlertStateMachine:
        return self._alerts

    @property
    def hotspots(self) -> HotspotDetector:
        return self._hotspots

    @property
    def fusion(self) -> FusionAggregator:
        return self._fusion

    def register_source(self, descriptor: SourceDescriptor) -> SourceProfile:
        self._descriptors[descriptor.source_id] = descriptor
        return self._reliability.register(descriptor)

    def source_profiles(self) -> ProfileTable:
        return self._reliability.profiles()

    def run_cycle(
        self,
        payloads: Mapping[str, Iterable[Any]],
        *,
        unavailable: Collection[str] = (),
        now: datetime | None = None,
    ) -> CycleResult:
        """Run one full cycle over raw payloads keyed by source id.

        Sources must be registered first; payloads from unknown sources are
        normalized as ``canonical`` community sources.
        """
        now = now or self._clock()
        cycle = self._cycle + 1

        batch = NormalizationBatch()
        for source_id in sorted(payloads):
            descriptor = self._descriptors.get(source_id) or SourceDescriptor(source_id=source_id)
            batch = batch.merged(self._normalizer.normalize_many(payloads[source_id], descriptor, now=now))

        groups = group_readings(batch.measurements, self._config.cell_size_deg)
        estimates = self._fusion.fuse_groups(groups, self._reliability.weights(), cycle=cycle, now=now)
        hotspot_update: HotspotUpdate = self._hotspots.detect(estimates, now=now)
        alert_update: AlertUpdate = self._alerts.evaluate(hotspot_update, cycle=cycle, now=now)
        profiles = self._reliability.observe(groups, now=now, unavailable=unavailable)

        alerts = alert_update.open_alerts + alert_update.resolved
        hotspots = hotspot_update.hotspots
        snapshot = Snapshot(
            cycle=cycle,
            consensus=tuple(estimates),
            hotspots=hotspots,
            alerts=alerts,
            generated_at=now,
            stale=False,
            summary=build_summary(
                estimates,
                hotspots,
                alerts,
                batch,
                unavailable=unavailable,
                config=self._config,
            ),
        )

        self._fusion.record(estimates)
        self._hotspots.commit(hotspot_update)
        self._alerts.commit(alert_update)
        self._reliability.commit(profiles)
        self._cycle = cycle

        _logger.debug(
            "Cycle %d: %d measurements, %d rejected, %d estimates, %d hotspots, %d transitions",
            cycle,
            len(batch.measurements),
            len(batch.rejections),
            len(estimates),
            len(hotspots),
            len(alert_update.transitions),
        )
        if batch.rejections:
            _logger.debug("Cycle %d rejections: %s", cycle, dict(Counter(r.reason.value for r in batch.rejections)))
        return CycleResult(snapshot=snapshot, transitions=alert_update.transitions)
