"""Engine configuration for airfusion."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable, Mapping
from typing import Any

from airfusion._constants import DEFAULT_SEVERITY_BREAKPOINTS, SEVERITY_TIER_COUNT
from airfusion.exceptions import FusionConfigError
from airfusion.models.measurement import Pollutant
from airfusion.models.severity import SeverityTier


def _parse_breakpoints(value: str) -> tuple[float, ...]:
    return tuple(float(part) for part in value.split(",") if part.strip())


def _default_breakpoints() -> dict[Pollutant, tuple[float, ...]]:
    return {Pollutant(key): values for key, values in DEFAULT_SEVERITY_BREAKPOINTS.items()}


@dataclasses.dataclass(frozen=True)
class FusionConfig:
    """Engine configuration.

    The configuration is validated on construction; an inconsistent
    configuration raises :class:`FusionConfigError` before any cycle runs.

    Parameters
    ----------
    refresh_interval : float
        Seconds between periodic refresh cycles.
    cache_ttl : float or None
        Seconds a published snapshot stays fresh. Defaults to
        ``refresh_interval``.
    source_timeout : float
        Hard timeout in seconds for each connector fetch.
    cell_size_deg : float
        Edge of the fusion grid cell in degrees.
    max_measurement_age : float
        Readings older than this many seconds are rejected as stale.
    future_skew_allowance : float
        Readings timestamped further than this many seconds in the future
        are rejected as malformed.
    corroboration_window : float
        Two sources corroborate each other only when their readings for a
        cell fall within this many seconds.
    reliability_decay : float
        EMA decay applied to source trust weights.
    divergence_threshold : float
        Relative spread ``(max - min) / mean`` above which sources are
        considered divergent.
    outlier_tolerance : float
        Relative distance from the median within which a reading counts
        as part of the agreeing majority of a divergent cell.
    single_source_confidence_cap : float
        Maximum confidence of an uncorroborated cell.
    divergent_confidence_cap : float
        Maximum confidence of a divergent cell.
    trend_window : int
        Number of prior cycle values retained per cell for trends.
    hotspot_radius_km : float
        Clustering and identity-matching radius.
    hotspot_min_confidence : float
        Estimates below this confidence never seed hotspots.
    retirement_cycles : int
        Consecutive unconfirmed cycles after which a hotspot is retired (K).
    hysteresis_cycles : int
        Consecutive unconfirmed cycles after which an alert resolves (M).
    escalation_window : int
        Consecutive cycles at or above ``critical_tier`` that escalate an
        alert.
    alert_floor_tier : SeverityTier
        Minimum tier for an estimate to qualify for hotspots and alerts.
    critical_tier : SeverityTier
        Tier considered critical for escalation.
    severity_breakpoints : mapping
        Per pollutant, five strictly ascending lower bounds (ug/m3) of the
        tiers MODERATE through HAZARDOUS. Pollutants not given keep their
        defaults.
    dispatch_max_attempts : int
        Delivery attempts per subscriber and transition.
    dispatch_retry_delay : float
        Initial delay between delivery attempts; grows 1.5x per retry.
    dispatch_timeout : float
        Timeout in seconds of one delivery attempt.
    dispatch_queue_size : int
        Pending transitions kept before the oldest are dropped.
    resolved_alert_history : int
        Resolved alerts retained in memory.
    """

    refresh_interval: float = 300.0
    cache_ttl: float | None = None
    source_timeout: float = 10.0
    cell_size_deg: float = 0.01
    max_measurement_age: float = 3 * 3600
    future_skew_allowance: float = 300.0
    corroboration_window: float = 3600.0
    reliability_decay: float = 0.9
    divergence_threshold: float = 0.5
    outlier_tolerance: float = 0.25
    single_source_confidence_cap: float = 0.5
    divergent_confidence_cap: float = 0.3
    trend_window: int = 6
    hotspot_radius_km: float = 2.0
    hotspot_min_confidence: float = 0.0
    retirement_cycles: int = 3
    hysteresis_cycles: int = 2
    escalation_window: int = 2
    alert_floor_tier: SeverityTier = SeverityTier.UNHEALTHY_FOR_SENSITIVE
    critical_tier: SeverityTier = SeverityTier.UNHEALTHY
    severity_breakpoints: Mapping[Pollutant, tuple[float, ...]] = dataclasses.field(
        default_factory=_default_breakpoints
    )
    dispatch_max_attempts: int = 3
    dispatch_retry_delay: float = 1.0
    dispatch_timeout: float = 5.0
    dispatch_queue_size: int = 1000
    resolved_alert_history: int = 100

    def __post_init__(self) -> None:
        try:
            floor_tier = SeverityTier.parse(self.alert_floor_tier)
            critical_tier = SeverityTier.parse(self.critical_tier)
        except ValueError as exc:
            raise FusionConfigError(str(exc)) from exc
        object.__setattr__(self, "alert_floor_tier", floor_tier)
        object.__setattr__(self, "critical_tier", critical_tier)
        object.__setattr__(self, "severity_breakpoints", self._merged_breakpoints())
        self._validate()

    def _merged_breakpoints(self) -> dict[Pollutant, tuple[float, ...]]:
        merged = _default_breakpoints()
        for key, values in dict(self.severity_breakpoints).items():
            pollutant = Pollutant.parse(key)
            if pollutant is None:
                raise FusionConfigError(f"severity_breakpoints: unknown pollutant {key!r}")
            try:
                merged[pollutant] = tuple(float(value) for value in values)
            except (TypeError, ValueError) as exc:
                raise FusionConfigError(f"severity_breakpoints[{pollutant}]: {exc}") from exc
        return merged

    def _validate(self) -> None:
        positive = {
            "refresh_interval": self.refresh_interval,
            "source_timeout": self.source_timeout,
            "cell_size_deg": self.cell_size_deg,
            "max_measurement_age": self.max_measurement_age,
            "corroboration_window": self.corroboration_window,
            "divergence_threshold": self.divergence_threshold,
            "outlier_tolerance": self.outlier_tolerance,
            "hotspot_radius_km": self.hotspot_radius_km,
            "dispatch_timeout": self.dispatch_timeout,
        }
        for name, value in positive.items():
            if not value > 0:
                raise FusionConfigError(f"{name} must be > 0, got {value!r}")
        if self.cache_ttl is not None and not self.cache_ttl > 0:
            raise FusionConfigError(f"cache_ttl must be > 0, got {self.cache_ttl!r}")
        if self.future_skew_allowance < 0 or self.dispatch_retry_delay < 0:
            raise FusionConfigError("future_skew_allowance and dispatch_retry_delay must be >= 0")
        if not 0.0 < self.reliability_decay < 1.0:
            raise FusionConfigError(f"reliability_decay must be in (0, 1), got {self.reliability_decay!r}")
        fractions = {
            "single_source_confidence_cap": self.single_source_confidence_cap,
            "divergent_confidence_cap": self.divergent_confidence_cap,
            "hotspot_min_confidence": self.hotspot_min_confidence,
        }
        for name, value in fractions.items():
            if not 0.0 <= value <= 1.0:
                raise FusionConfigError(f"{name} must be in [0, 1], got {value!r}")
        counts = {
            "trend_window": self.trend_window,
            "retirement_cycles": self.retirement_cycles,
            "hysteresis_cycles": self.hysteresis_cycles,
            "escalation_window": self.escalation_window,
            "dispatch_max_attempts": self.dispatch_max_attempts,
            "dispatch_queue_size": self.dispatch_queue_size,
            "resolved_alert_history": self.resolved_alert_history,
        }
        for name, value in counts.items():
            if not isinstance(value, int) or value < 1:
                raise FusionConfigError(f"{name} must be an integer >= 1, got {value!r}")
        if self.alert_floor_tier == SeverityTier.GOOD:
            raise FusionConfigError("alert_floor_tier must be above GOOD")
        if self.critical_tier < self.alert_floor_tier:
            raise FusionConfigError(
                f"critical_tier {self.critical_tier.name} is below alert_floor_tier {self.alert_floor_tier.name}"
            )
        for pollutant, values in self.severity_breakpoints.items():
            if len(values) != SEVERITY_TIER_COUNT:
                raise FusionConfigError(
                    f"severity_breakpoints[{pollutant}] needs {SEVERITY_TIER_COUNT} values, got {len(values)}"
                )
            if values[0] < 0:
                raise FusionConfigError(f"severity_breakpoints[{pollutant}] must be non-negative")
            if any(later <= earlier for earlier, later in zip(values, values[1:], strict=False)):
                raise FusionConfigError(f"severity_breakpoints[{pollutant}] must be strictly ascending: {values}")

    @property
    def effective_cache_ttl(self) -> float:
        return self.cache_ttl if self.cache_ttl is not None else self.refresh_interval

    def breakpoints_for(self, pollutant: Pollutant) -> tuple[float, ...]:
        return self.severity_breakpoints[pollutant]

    @classmethod
    def from_env(cls, **overrides: Any) -> FusionConfig:
        """Create configuration from ``AIRFUSION_*`` environment variables.

        Breakpoints are read from ``AIRFUSION_BREAKPOINTS_<POLLUTANT>`` as
        comma-separated numbers (e.g. ``AIRFUSION_BREAKPOINTS_PM25``).
        Explicit keyword arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        FusionConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_CONFIG_MAP: dict[str, tuple[str, Callable[[str], Any]]] = {
            "AIRFUSION_REFRESH_INTERVAL": ("refresh_interval", float),
            "AIRFUSION_CACHE_TTL": ("cache_ttl", float),
            "AIRFUSION_SOURCE_TIMEOUT": ("source_timeout", float),
            "AIRFUSION_CELL_SIZE_DEG": ("cell_size_deg", float),
            "AIRFUSION_MAX_MEASUREMENT_AGE": ("max_measurement_age", float),
            "AIRFUSION_FUTURE_SKEW_ALLOWANCE": ("future_skew_allowance", float),
            "AIRFUSION_CORROBORATION_WINDOW": ("corroboration_window", float),
            "AIRFUSION_RELIABILITY_DECAY": ("reliability_decay", float),
            "AIRFUSION_DIVERGENCE_THRESHOLD": ("divergence_threshold", float),
            "AIRFUSION_OUTLIER_TOLERANCE": ("outlier_tolerance", float),
            "AIRFUSION_SINGLE_SOURCE_CONFIDENCE_CAP": ("single_source_confidence_cap", float),
            "AIRFUSION_DIVERGENT_CONFIDENCE_CAP": ("divergent_confidence_cap", float),
            "AIRFUSION_TREND_WINDOW": ("trend_window", int),
            "AIRFUSION_HOTSPOT_RADIUS_KM": ("hotspot_radius_km", float),
            "AIRFUSION_HOTSPOT_MIN_CONFIDENCE": ("hotspot_min_confidence", float),
            "AIRFUSION_RETIREMENT_CYCLES": ("retirement_cycles", int),
            "AIRFUSION_HYSTERESIS_CYCLES": ("hysteresis_cycles", int),
            "AIRFUSION_ESCALATION_WINDOW": ("escalation_window", int),
            "AIRFUSION_ALERT_FLOOR_TIER": ("alert_floor_tier", SeverityTier.parse),
            "AIRFUSION_CRITICAL_TIER": ("critical_tier", SeverityTier.parse),
            "AIRFUSION_DISPATCH_MAX_ATTEMPTS": ("dispatch_max_attempts", int),
            "AIRFUSION_DISPATCH_RETRY_DELAY": ("dispatch_retry_delay", float),
            "AIRFUSION_DISPATCH_TIMEOUT": ("dispatch_timeout", float),
            "AIRFUSION_DISPATCH_QUEUE_SIZE": ("dispatch_queue_size", int),
            "AIRFUSION_RESOLVED_ALERT_HISTORY": ("resolved_alert_history", int),
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, (field_name, convert) in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = convert(val)
            except ValueError as exc:
                raise FusionConfigError(f"{env_key}={val!r}: {exc}") from exc

        if "severity_breakpoints" not in overrides:
            breakpoints: dict[Pollutant, tuple[float, ...]] = {}
            for pollutant in Pollutant:
                val = env.get(f"AIRFUSION_BREAKPOINTS_{pollutant.name}")
                if val is None:
                    continue
                try:
                    breakpoints[pollutant] = _parse_breakpoints(val)
                except ValueError as exc:
                    raise FusionConfigError(f"AIRFUSION_BREAKPOINTS_{pollutant.name}={val!r}: {exc}") from exc
            if breakpoints:
                config_kwargs["severity_breakpoints"] = breakpoints

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
