"""Ingestion layer.

Connectors deliver raw vendor payloads; the normalizer and its mapping
table turn them into canonical measurements and counted rejections.
"""

from airfusion.ingestion.collect import (
    CollectionResult,
    Connector,
    HttpJsonConnector,
    StaticConnector,
    collect_payloads,
)
from airfusion.ingestion.mappings import PAYLOAD_MAPPINGS
from airfusion.ingestion.normalize import CandidateRecord, NormalizationBatch, Normalizer

__all__ = [
    "PAYLOAD_MAPPINGS",
    "CandidateRecord",
    "CollectionResult",
    "Connector",
    "HttpJsonConnector",
    "NormalizationBatch",
    "Normalizer",
    "StaticConnector",
    "collect_payloads",
]
