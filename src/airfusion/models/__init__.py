"""Data models for airfusion."""

from airfusion.models._base import FusionBaseModel, UtcTimestamp, parse_timestamp
from airfusion.models.alert import Alert, AlertState, AlertTransition, HealthAdvisory, TransitionReason
from airfusion.models.consensus import ConsensusEstimate, Trend
from airfusion.models.hotspot import Hotspot
from airfusion.models.measurement import CellId, Measurement, Pollutant, Rejection, RejectionReason
from airfusion.models.severity import SeverityTier, tier_for
from airfusion.models.snapshot import Snapshot, SnapshotSummary
from airfusion.models.source import ReliabilityClass, SourceDescriptor, SourceProfile, SourceStatus

__all__ = [
    "Alert",
    "AlertState",
    "AlertTransition",
    "CellId",
    "ConsensusEstimate",
    "FusionBaseModel",
    "HealthAdvisory",
    "Hotspot",
    "Measurement",
    "Pollutant",
    "Rejection",
    "RejectionReason",
    "ReliabilityClass",
    "SeverityTier",
    "Snapshot",
    "SnapshotSummary",
    "SourceDescriptor",
    "SourceProfile",
    "SourceStatus",
    "TransitionReason",
    "Trend",
    "UtcTimestamp",
    "parse_timestamp",
    "tier_for",
]
