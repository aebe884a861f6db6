"""Rolling per-source trust weights."""

from __future__ import annotations

import logging
import statistics
from collections.abc import Collection, Mapping, Sequence
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from airfusion._constants import MAX_SOURCE_WEIGHT, MIN_SOURCE_WEIGHT, VALUE_FLOOR
from airfusion.engine.readings import FusionKey, SourceReading
from airfusion.models.source import ReliabilityClass, SourceDescriptor, SourceProfile, SourceStatus

if TYPE_CHECKING:
    from airfusion.config import FusionConfig

_logger = logging.getLogger(__name__)

ProfileTable = dict[str, SourceProfile]


def relative_deviation(value: float, reference: float) -> float:
    return abs(value - reference) / max(abs(reference), VALUE_FLOOR)


def _clamp_weight(weight: float) -> float:
    return min(MAX_SOURCE_WEIGHT, max(MIN_SOURCE_WEIGHT, weight))


class SourceReliabilityModel:
    """Track how well each source agrees with its peers.

    Weights move by exponential moving average toward each source's
    agreement with the multi-source median whenever two or more sources
    report the same cell and pollutant within the corroboration window.

    The model is two-phase: :meth:`observe` computes the next profile table
    without side effects and :meth:`commit` installs it. A cycle that fails
    between the two leaves the model untouched.
    """

    def __init__(
        self,
        *,
        decay: float = 0.9,
        divergence_threshold: float = 0.5,
        corroboration_window: timedelta = timedelta(hours=1),
    ) -> None:
        self._decay = decay
        self._divergence_threshold = divergence_threshold
        self._corroboration_window = corroboration_window
        self._profiles: ProfileTable = {}

    @classmethod
    def from_config(cls, config: FusionConfig) -> SourceReliabilityModel:
        return cls(
            decay=config.reliability_decay,
            divergence_threshold=config.divergence_threshold,
            corroboration_window=timedelta(seconds=config.corroboration_window),
        )

    def register(self, descriptor: SourceDescriptor) -> SourceProfile:
        """Seed a profile from the declared reliability class (idempotent)."""
        profile = self._profiles.get(descriptor.source_id)
        if profile is None:
            profile = _seed_profile(descriptor.source_id, descriptor.declared_reliability)
            self._profiles[descriptor.source_id] = profile
        return profile

    def profile(self, source_id: str) -> SourceProfile | None:
        return self._profiles.get(source_id)

    def profiles(self) -> ProfileTable:
        return dict(self._profiles)

    def weights(self) -> dict[str, float]:
        return {source_id: profile.weight for source_id, profile in self._profiles.items()}

    def observe(
        self,
        groups: Mapping[FusionKey, Sequence[SourceReading]],
        *,
        now: datetime,
        unavailable: Collection[str] = (),
    ) -> ProfileTable:
        """Compute the profile table that results from one cycle's readings."""
        table = dict(self._profiles)
        reporting: set[str] = set()
        corroborated: set[str] = set()

        for readings in groups.values():
            for reading in readings:
                reporting.add(reading.source_id)
                if reading.source_id not in table:
                    table[reading.source_id] = _seed_profile(reading.source_id, ReliabilityClass.COMMUNITY)

            corroborating = self._corroborating(readings)
            if len(corroborating) < 2:
                continue
            median = statistics.median(reading.value for reading in corroborating)
            for reading in corroborating:
                agreement = max(0.0, 1.0 - relative_deviation(reading.value, median) / self._divergence_threshold)
                profile = table[reading.source_id]
                weight = _clamp_weight(self._decay * profile.weight + (1.0 - self._decay) * agreement)
                table[reading.source_id] = profile.model_copy(
                    update={
                        "weight": weight,
                        "corroborations": profile.corroborations + 1,
                        "last_corroborated_at": now,
                    }
                )
                corroborated.add(reading.source_id)

        for source_id, profile in table.items():
            if source_id in unavailable:
                status = SourceStatus.UNAVAILABLE
            elif source_id in corroborated:
                status = SourceStatus.CONFIRMED
            else:
                status = SourceStatus.UNCONFIRMED
            update: dict[str, object] = {"status": status}
            if source_id in reporting:
                update["last_seen_at"] = now
            table[source_id] = profile.model_copy(update=update)
        return table

    def commit(self, table: ProfileTable) -> None:
        for source_id, profile in table.items():
            previous = self._profiles.get(source_id)
            if previous is not None and previous.status != profile.status:
                _logger.debug("Source %s is now %s (weight %.3f)", source_id, profile.status, profile.weight)
        self._profiles = dict(table)

    def update(
        self,
        groups: Mapping[FusionKey, Sequence[SourceReading]],
        *,
        now: datetime,
        unavailable: Collection[str] = (),
    ) -> ProfileTable:
        table = self.observe(groups, now=now, unavailable=unavailable)
        self.commit(table)
        return table

    def _corroborating(self, readings: Sequence[SourceReading]) -> list[SourceReading]:
        if len(readings) < 2:
            return list(readings)
        latest = max(reading.observed_at for reading in readings)
        return [reading for reading in readings if latest - reading.observed_at <= self._corroboration_window]


def _seed_profile(source_id: str, reliability_class: ReliabilityClass) -> SourceProfile:
    return SourceProfile(
        source_id=source_id,
        reliability_class=reliability_class,
        weight=reliability_class.initial_weight,
    )
