"""Fusion engine: reliability, fusion, hotspots and alerts."""

from airfusion.engine.alerts import AlertStateMachine, AlertUpdate
from airfusion.engine.cycle import CycleResult, FusionEngine
from airfusion.engine.fusion import FusionAggregator
from airfusion.engine.hotspots import HotspotDetector, HotspotUpdate
from airfusion.engine.readings import SourceReading, group_readings
from airfusion.engine.reliability import SourceReliabilityModel

__all__ = [
    "AlertStateMachine",
    "AlertUpdate",
    "CycleResult",
    "FusionAggregator",
    "FusionEngine",
    "HotspotDetector",
    "HotspotUpdate",
    "SourceReading",
    "SourceReliabilityModel",
    "group_readings",
]
