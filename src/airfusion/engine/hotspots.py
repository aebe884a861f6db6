"""Hotspot detection with identity tracking across cycles."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from airfusion.engine.spatial import centroid, cluster_points, haversine_km
from airfusion.models.consensus import ConsensusEstimate
from airfusion.models.hotspot import Hotspot
from airfusion.models.measurement import Pollutant
from airfusion.models.severity import SeverityTier

if TYPE_CHECKING:
    from airfusion.config import FusionConfig

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HotspotUpdate:
    """Result of :meth:`HotspotDetector.detect`, not yet committed.

    ``active`` is the complete next table of live hotspots (confirmed ones
    and unconfirmed ones still inside the retirement window). ``retired``
    holds hotspots that left the table this cycle, including those merged
    into another hotspot (``merged_into`` set).
    """

    active: dict[str, Hotspot]
    created: tuple[str, ...] = ()
    retired: tuple[Hotspot, ...] = ()
    next_sequence: int = 1
    merged: dict[str, str] = field(default_factory=dict)

    @property
    def hotspots(self) -> tuple[Hotspot, ...]:
        return tuple(self.active[hotspot_id] for hotspot_id in sorted(self.active))


@dataclass(frozen=True)
class _Cluster:
    members: tuple[ConsensusEstimate, ...]
    latitude: float
    longitude: float

    @property
    def worst(self) -> ConsensusEstimate:
        return max(self.members, key=lambda estimate: (estimate.value, estimate.severity))

    @property
    def radius_km(self) -> float:
        return max(haversine_km(self.latitude, self.longitude, m.latitude, m.longitude) for m in self.members)


class HotspotDetector:
    """Cluster unhealthy estimates and keep hotspot identities stable.

    Each cycle, qualifying estimates of one pollutant are clustered by
    single linkage within ``radius_km``. Clusters inherit the identity of
    the nearest previous hotspot within ``radius_km`` (greedy by distance,
    one-to-one). Further previous hotspots within reach of a matched
    cluster are merged into it; unmatched clusters become new hotspots.
    Hotspots left unconfirmed for ``retirement_cycles`` consecutive cycles
    are retired.
    """

    def __init__(
        self,
        *,
        radius_km: float = 2.0,
        retirement_cycles: int = 3,
        floor_tier: SeverityTier = SeverityTier.UNHEALTHY_FOR_SENSITIVE,
        min_confidence: float = 0.0,
    ) -> None:
        self._radius_km = radius_km
        self._retirement_cycles = retirement_cycles
        self._floor_tier = floor_tier
        self._min_confidence = min_confidence
        self._active: dict[str, Hotspot] = {}
        self._sequence = 1

    @classmethod
    def from_config(cls, config: FusionConfig) -> HotspotDetector:
        return cls(
            radius_km=config.hotspot_radius_km,
            retirement_cycles=config.retirement_cycles,
            floor_tier=config.alert_floor_tier,
            min_confidence=config.hotspot_min_confidence,
        )

    def active(self) -> tuple[Hotspot, ...]:
        return tuple(self._active[hotspot_id] for hotspot_id in sorted(self._active))

    def qualifies(self, estimate: ConsensusEstimate) -> bool:
        return estimate.severity >= self._floor_tier and estimate.confidence >= self._min_confidence

    def detect(self, estimates: Iterable[ConsensusEstimate], *, now: datetime) -> HotspotUpdate:
        """Compute the next hotspot table without committing it."""
        by_pollutant: dict[Pollutant, list[ConsensusEstimate]] = {}
        for estimate in estimates:
            if self.qualifies(estimate):
                by_pollutant.setdefault(estimate.pollutant, []).append(estimate)

        sequence = self._sequence
        active: dict[str, Hotspot] = {}
        created: list[str] = []
        retired: list[Hotspot] = []
        merged: dict[str, str] = {}

        pollutants = sorted(set(by_pollutant) | {hotspot.pollutant for hotspot in self._active.values()})
        for pollutant in pollutants:
            candidates = sorted(by_pollutant.get(pollutant, []), key=lambda e: (e.cell, e.latitude, e.longitude))
            clusters = self._clusters(candidates)
            previous = [self._active[hid] for hid in sorted(self._active) if self._active[hid].pollutant == pollutant]
            matches = self._match(clusters, previous)

            matched_ids = set(matches.values())
            absorbed: dict[int, list[Hotspot]] = {}
            for index in sorted(matches):
                cluster = clusters[index]
                nearby = sorted(
                    (
                        (haversine_km(cluster.latitude, cluster.longitude, hs.latitude, hs.longitude), hs.hotspot_id)
                        for hs in previous
                        if hs.hotspot_id not in matched_ids and hs.hotspot_id not in merged
                    ),
                )
                for distance, hotspot_id in nearby:
                    if distance > self._radius_km:
                        break
                    merged[hotspot_id] = matches[index]
                    absorbed.setdefault(index, []).append(self._find(previous, hotspot_id))

            for index, cluster in enumerate(clusters):
                hotspot_id = matches.get(index)
                if hotspot_id is None:
                    hotspot_id = f"HS-{sequence:06d}"
                    sequence += 1
                    active[hotspot_id] = self._new_hotspot(hotspot_id, pollutant, cluster, now)
                    created.append(hotspot_id)
                    continue
                prior = self._find(previous, hotspot_id)
                victims = absorbed.get(index, [])
                active[hotspot_id] = self._confirm(prior, cluster, victims, now)
                for victim in victims:
                    retired.append(victim.model_copy(update={"merged_into": hotspot_id, "retired_at": now}))

            for hotspot in previous:
                if hotspot.hotspot_id in matched_ids or hotspot.hotspot_id in merged:
                    continue
                missed = hotspot.missed_cycles + 1
                if missed >= self._retirement_cycles:
                    retired.append(hotspot.model_copy(update={"missed_cycles": missed, "retired_at": now}))
                else:
                    active[hotspot.hotspot_id] = hotspot.model_copy(update={"missed_cycles": missed})

        return HotspotUpdate(
            active=active,
            created=tuple(created),
            retired=tuple(sorted(retired, key=lambda hs: hs.hotspot_id)),
            next_sequence=sequence,
            merged=merged,
        )

    def commit(self, update: HotspotUpdate) -> None:
        for hotspot_id in update.created:
            hotspot = update.active[hotspot_id]
            _logger.debug(
                "New hotspot %s (%s, %s) at %.4f,%.4f",
                hotspot_id,
                hotspot.pollutant,
                hotspot.severity.name,
                hotspot.latitude,
                hotspot.longitude,
            )
        for hotspot in update.retired:
            if hotspot.merged_into:
                _logger.debug("Hotspot %s merged into %s", hotspot.hotspot_id, hotspot.merged_into)
            else:
                _logger.debug("Hotspot %s retired after %d missed cycles", hotspot.hotspot_id, hotspot.missed_cycles)
        self._active = dict(update.active)
        self._sequence = update.next_sequence

    def update(self, estimates: Iterable[ConsensusEstimate], *, now: datetime) -> HotspotUpdate:
        result = self.detect(estimates, now=now)
        self.commit(result)
        return result

    def _clusters(self, estimates: Sequence[ConsensusEstimate]) -> list[_Cluster]:
        points = [(estimate.latitude, estimate.longitude) for estimate in estimates]
        clusters: list[_Cluster] = []
        for indices in cluster_points(points, self._radius_km):
            latitude, longitude = centroid([points[i] for i in indices])
            clusters.append(
                _Cluster(
                    members=tuple(estimates[i] for i in indices),
                    latitude=round(latitude, 6),
                    longitude=round(longitude, 6),
                )
            )
        return clusters

    def _match(self, clusters: Sequence[_Cluster], previous: Sequence[Hotspot]) -> dict[int, str]:
        """Greedy one-to-one nearest-centroid matching within the radius."""
        pairs = sorted(
            (haversine_km(cluster.latitude, cluster.longitude, hs.latitude, hs.longitude), index, hs.hotspot_id)
            for index, cluster in enumerate(clusters)
            for hs in previous
        )
        matches: dict[int, str] = {}
        taken: set[str] = set()
        for distance, index, hotspot_id in pairs:
            if distance > self._radius_km:
                break
            if index in matches or hotspot_id in taken:
                continue
            matches[index] = hotspot_id
            taken.add(hotspot_id)
        return matches

    @staticmethod
    def _find(previous: Sequence[Hotspot], hotspot_id: str) -> Hotspot:
        return next(hotspot for hotspot in previous if hotspot.hotspot_id == hotspot_id)

    @staticmethod
    def _new_hotspot(hotspot_id: str, pollutant: Pollutant, cluster: _Cluster, now: datetime) -> Hotspot:
        worst = cluster.worst
        return Hotspot(
            hotspot_id=hotspot_id,
            pollutant=pollutant,
            latitude=cluster.latitude,
            longitude=cluster.longitude,
            members=cluster.members,
            worst_value=worst.value,
            severity=worst.severity,
            radius_km=round(cluster.radius_km, 3),
            first_detected_at=now,
            last_confirmed_at=now,
        )

    @staticmethod
    def _confirm(prior: Hotspot, cluster: _Cluster, absorbed: Sequence[Hotspot], now: datetime) -> Hotspot:
        worst = cluster.worst
        first_detected = min([prior.first_detected_at, *(hs.first_detected_at for hs in absorbed)])
        return prior.model_copy(
            update={
                "latitude": cluster.latitude,
                "longitude": cluster.longitude,
                "members": cluster.members,
                "worst_value": worst.value,
                "severity": worst.severity,
                "radius_km": round(cluster.radius_km, 3),
                "first_detected_at": first_detected,
                "last_confirmed_at": now,
                "confirmed_cycles": prior.confirmed_cycles + 1,
                "missed_cycles": 0,
                "merged_from": prior.merged_from + tuple(hs.hotspot_id for hs in absorbed),
            }
        )
