"""Source descriptors and reliability profiles."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field, field_validator

from airfusion.models._base import FusionBaseModel, OptionalUtcTimestamp


class ReliabilityClass(StrEnum):
    """Declared reliability of a source; seeds its initial trust weight."""

    REFERENCE = "reference"
    COMMERCIAL = "commercial"
    COMMUNITY = "community"
    MODEL = "model"
    SATELLITE = "satellite"

    @property
    def initial_weight(self) -> float:
        return _INITIAL_WEIGHTS[self]


_INITIAL_WEIGHTS: dict[ReliabilityClass, float] = {
    ReliabilityClass.REFERENCE: 1.0,
    ReliabilityClass.COMMERCIAL: 0.8,
    ReliabilityClass.COMMUNITY: 0.6,
    ReliabilityClass.MODEL: 0.5,
    ReliabilityClass.SATELLITE: 0.5,
}


class SourceStatus(StrEnum):
    CONFIRMED = "confirmed"
    UNCONFIRMED = "unconfirmed"
    UNAVAILABLE = "unavailable"


class SourceDescriptor(FusionBaseModel):
    """Static description of a source supplied by its connector.

    ``payload_format`` selects the normalizer mapping used for the
    source's raw payloads (``"canonical"``, ``"openaq"``, ``"waqi"``,
    ``"weatherapi"``).
    """

    source_id: str
    declared_reliability: ReliabilityClass = ReliabilityClass.COMMUNITY
    payload_format: str = "canonical"

    @field_validator("source_id")
    @classmethod
    def _normalize_source_id(cls, value: str) -> str:
        source_id = value.strip()
        if not source_id:
            raise ValueError("source_id must be non-empty")
        return source_id


class SourceProfile(FusionBaseModel):
    """Rolling trust state of one source. Replaced, never mutated."""

    source_id: str
    reliability_class: ReliabilityClass
    weight: float = Field(ge=0.1, le=1.0)
    status: SourceStatus = SourceStatus.UNCONFIRMED
    corroborations: int = 0
    last_corroborated_at: OptionalUtcTimestamp = None
    last_seen_at: OptionalUtcTimestamp = None
