"""Alert lifecycle models."""

from __future__ import annotations

from enum import StrEnum

from airfusion.models._base import FusionBaseModel, UtcTimestamp
from airfusion.models.measurement import Pollutant
from airfusion.models.severity import SeverityTier


class AlertState(StrEnum):
    NONE = "none"
    ACTIVE = "active"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class TransitionReason(StrEnum):
    DETECTED = "detected"
    SEVERITY_WORSENED = "severity_worsened"
    CRITICAL_PERSISTED = "critical_persisted"
    HYSTERESIS = "hysteresis"
    RETIRED = "retired"
    MERGED = "merged"


class HealthAdvisory(FusionBaseModel):
    level: str
    message: str
    precautions: tuple[str, ...] = ()


class Alert(FusionBaseModel):
    """One alert instance for one hotspot.

    ``RESOLVED`` is terminal: a later detection for the same hotspot opens
    a new alert with a new ``alert_id``.
    """

    alert_id: str
    hotspot_id: str
    pollutant: Pollutant
    severity: SeverityTier
    activation_severity: SeverityTier
    peak_severity: SeverityTier
    state: AlertState
    created_at: UtcTimestamp
    last_transition_at: UtcTimestamp
    last_seen_at: UtcTimestamp
    resolution: TransitionReason | None = None

    @property
    def is_open(self) -> bool:
        return self.state in (AlertState.ACTIVE, AlertState.ESCALATED)


class AlertTransition(FusionBaseModel):
    """Event delivered to subscribers, exactly once per state change."""

    alert_id: str
    hotspot_id: str
    old_state: AlertState
    new_state: AlertState
    severity: SeverityTier
    timestamp: UtcTimestamp
    pollutant: Pollutant
    reason: TransitionReason
    cycle: int = 0
    advisory: HealthAdvisory | None = None
