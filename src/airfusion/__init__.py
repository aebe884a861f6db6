"""airfusion - Multi-source air-quality fusion, hotspot detection and alerting."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("airfusion")
except PackageNotFoundError:
    __version__ = "0+local"
from airfusion.cache import SnapshotCache
from airfusion.config import FusionConfig
from airfusion.dispatch import AlertDispatcher, WebhookSubscriber
from airfusion.engine import CycleResult, FusionEngine
from airfusion.exceptions import (
    DispatchError,
    FusionConfigError,
    FusionError,
    MalformedMeasurementError,
    RefreshError,
    SourceUnavailableError,
)
from airfusion.ingestion import Connector, HttpJsonConnector, StaticConnector
from airfusion.models import (
    Alert,
    AlertState,
    AlertTransition,
    CellId,
    ConsensusEstimate,
    HealthAdvisory,
    Hotspot,
    Measurement,
    Pollutant,
    Rejection,
    RejectionReason,
    ReliabilityClass,
    SeverityTier,
    Snapshot,
    SnapshotSummary,
    SourceDescriptor,
    SourceProfile,
    SourceStatus,
    TransitionReason,
    Trend,
)
from airfusion.service import FusionService

__all__ = [
    "__version__",
    "Alert",
    "AlertDispatcher",
    "AlertState",
    "AlertTransition",
    "CellId",
    "Connector",
    "ConsensusEstimate",
    "CycleResult",
    "DispatchError",
    "FusionConfig",
    "FusionConfigError",
    "FusionEngine",
    "FusionError",
    "FusionService",
    "HealthAdvisory",
    "Hotspot",
    "HttpJsonConnector",
    "MalformedMeasurementError",
    "Measurement",
    "Pollutant",
    "RefreshError",
    "Rejection",
    "RejectionReason",
    "ReliabilityClass",
    "SeverityTier",
    "Snapshot",
    "SnapshotCache",
    "SnapshotSummary",
    "SourceDescriptor",
    "SourceProfile",
    "SourceStatus",
    "SourceUnavailableError",
    "StaticConnector",
    "TransitionReason",
    "Trend",
    "WebhookSubscriber",
]
