"""Measurement normalization.

Centralizes tolerant parsing, sentinel handling and unit conversion, and
turns vendor payloads into canonical :class:`Measurement` records. Payload
shapes are only known to the mapping table in
:mod:`airfusion.ingestion.mappings`; everything downstream sees
:class:`Measurement` only.

Normalization is a pure mapping: every candidate either becomes a
measurement or a counted :class:`Rejection`. Implausible values are
rejected, never clamped.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from airfusion._constants import CANONICAL_UNIT, MOLAR_MASSES, MOLAR_VOLUME_L, PLAUSIBLE_RANGES
from airfusion._redact import redact_for_log
from airfusion.aqi import aqi_to_concentration
from airfusion.exceptions import MalformedMeasurementError
from airfusion.models._base import parse_timestamp
from airfusion.models.measurement import Measurement, Pollutant, Rejection, RejectionReason
from airfusion.models.source import SourceDescriptor

if TYPE_CHECKING:
    from airfusion.config import FusionConfig
    from airfusion.ingestion.mappings import PayloadMapping

_logger = logging.getLogger(__name__)

# Sentinel strings vendors use for "not available".
_SENTINELS = frozenset({"", "-", "--", "nan", "null", "none", "n/a"})


def is_missing(value: Any) -> bool:
    """True for ``None`` and vendor "not available" strings."""
    return value is None or (isinstance(value, str) and value.strip().lower() in _SENTINELS)


def safe_float(value: Any) -> float | None:
    if is_missing(value) or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(result):
        return None
    return result


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def normalize_unit(unit: Any) -> str:
    """Fold unit spellings (``"µg/m³"``, ``"ug/m^3"``, ``"PPB"``) to one key."""
    text = safe_str(unit)
    if text is None:
        return CANONICAL_UNIT
    key = text.lower().replace("µ", "u").replace("μ", "u").replace("³", "3").replace("^", "").replace(" ", "")
    if key in {"ug/m3", "ugm-3", "microgram/m3"}:
        return CANONICAL_UNIT
    if key in {"mg/m3", "mgm-3"}:
        return "mg/m3"
    return key


def to_canonical_unit(value: float, unit: Any, pollutant: Pollutant) -> float:
    """Convert *value* to ug/m3.

    Raises :class:`MalformedMeasurementError` for unknown units and
    :class:`MalformedMeasurementError` with reason ``UNSUPPORTED`` for
    conversions that do not exist for the pollutant.
    """
    unit_key = normalize_unit(unit)
    if unit_key == CANONICAL_UNIT:
        return value
    if unit_key == "mg/m3":
        return value * 1000.0
    if unit_key in {"ppb", "ppm"}:
        molar_mass = MOLAR_MASSES.get(pollutant)
        if molar_mass is None:
            raise MalformedMeasurementError(f"{pollutant} cannot be given in {unit_key}")
        ppb = value * 1000.0 if unit_key == "ppm" else value
        return ppb * molar_mass / MOLAR_VOLUME_L
    if unit_key in {"aqi", "us_aqi", "usaqi"}:
        concentration = aqi_to_concentration(pollutant, value)
        if concentration is None:
            raise MalformedMeasurementError(
                f"no AQI inversion for {pollutant}", reason=RejectionReason.UNSUPPORTED
            )
        return concentration
    raise MalformedMeasurementError(f"unknown unit {unit!r}")


@dataclass(frozen=True, slots=True)
class CandidateRecord:
    """A reshaped but unvalidated reading produced by a payload mapping."""

    latitude: Any
    longitude: Any
    pollutant: Any
    value: Any
    unit: Any = CANONICAL_UNIT
    observed_at: Any = None
    quality: Any = None


@dataclass(frozen=True)
class NormalizationBatch:
    """Outcome of normalizing one or more payloads."""

    measurements: tuple[Measurement, ...] = ()
    rejections: tuple[Rejection, ...] = ()

    def rejection_counts(self) -> Counter[RejectionReason]:
        return Counter(rejection.reason for rejection in self.rejections)

    def merged(self, other: NormalizationBatch) -> NormalizationBatch:
        return NormalizationBatch(
            measurements=self.measurements + other.measurements,
            rejections=self.rejections + other.rejections,
        )


class Normalizer:
    """Map raw source payloads to canonical measurements."""

    def __init__(
        self,
        *,
        max_measurement_age: timedelta = timedelta(hours=3),
        future_skew_allowance: timedelta = timedelta(minutes=5),
        mappings: Mapping[str, PayloadMapping] | None = None,
    ) -> None:
        if mappings is None:
            from airfusion.ingestion.mappings import PAYLOAD_MAPPINGS

            mappings = PAYLOAD_MAPPINGS
        self._max_age = max_measurement_age
        self._future_skew = future_skew_allowance
        self._mappings = dict(mappings)

    @classmethod
    def from_config(cls, config: FusionConfig) -> Normalizer:
        return cls(
            max_measurement_age=timedelta(seconds=config.max_measurement_age),
            future_skew_allowance=timedelta(seconds=config.future_skew_allowance),
        )

    @property
    def payload_formats(self) -> frozenset[str]:
        return frozenset(self._mappings)

    def normalize(self, payload: Any, descriptor: SourceDescriptor, *, now: datetime) -> NormalizationBatch:
        """Normalize one raw payload from *descriptor*'s source."""
        source_id = descriptor.source_id
        mapping = self._mappings.get(descriptor.payload_format)
        if mapping is None:
            return self._reject_payload(
                source_id,
                RejectionReason.UNSUPPORTED,
                f"no mapping for payload format {descriptor.payload_format!r}",
                payload,
            )
        if not isinstance(payload, Mapping):
            return self._reject_payload(
                source_id, RejectionReason.MALFORMED, f"payload is {type(payload).__name__}", payload
            )
        try:
            candidates = mapping(payload)
        except (AttributeError, KeyError, TypeError, ValueError, IndexError, MalformedMeasurementError) as exc:
            return self._reject_payload(source_id, RejectionReason.MALFORMED, f"unreadable payload: {exc!r}", payload)

        measurements: list[Measurement] = []
        rejections: list[Rejection] = []
        for candidate in candidates:
            try:
                measurements.append(self._build(candidate, source_id, now))
            except MalformedMeasurementError as exc:
                rejections.append(
                    Rejection(
                        source_id=source_id,
                        reason=exc.reason,
                        detail=str(exc),
                        pollutant=safe_str(candidate.pollutant),
                    )
                )
        if rejections:
            _logger.debug("Rejected %d of %d readings from %s", len(rejections), len(candidates), source_id)
        return NormalizationBatch(measurements=tuple(measurements), rejections=tuple(rejections))

    def normalize_many(
        self,
        payloads: Iterable[Any],
        descriptor: SourceDescriptor,
        *,
        now: datetime,
    ) -> NormalizationBatch:
        batch = NormalizationBatch()
        for payload in payloads:
            batch = batch.merged(self.normalize(payload, descriptor, now=now))
        return batch

    def _reject_payload(
        self,
        source_id: str,
        reason: RejectionReason,
        detail: str,
        payload: Any,
    ) -> NormalizationBatch:
        _logger.debug("Rejected payload from %s (%s): %s", source_id, detail, redact_for_log(payload))
        return NormalizationBatch(rejections=(Rejection(source_id=source_id, reason=reason, detail=detail),))

    def _build(self, candidate: CandidateRecord, source_id: str, now: datetime) -> Measurement:
        if safe_str(candidate.pollutant) is None:
            raise MalformedMeasurementError("missing pollutant")
        pollutant = Pollutant.parse(candidate.pollutant)
        if pollutant is None:
            raise MalformedMeasurementError(
                f"unsupported pollutant {candidate.pollutant!r}", reason=RejectionReason.UNSUPPORTED
            )

        raw_value = safe_float(candidate.value)
        if raw_value is None:
            raise MalformedMeasurementError(f"missing or non-numeric value {candidate.value!r}")
        latitude = safe_float(candidate.latitude)
        longitude = safe_float(candidate.longitude)
        if latitude is None or longitude is None:
            raise MalformedMeasurementError("missing coordinates")
        if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
            raise MalformedMeasurementError(f"invalid coordinates ({latitude}, {longitude})")

        try:
            observed_at = parse_timestamp(candidate.observed_at)
        except (TypeError, ValueError, OverflowError, OSError) as exc:
            raise MalformedMeasurementError(f"invalid timestamp {candidate.observed_at!r}") from exc
        if observed_at is None:
            raise MalformedMeasurementError("missing timestamp")

        if is_missing(candidate.quality):
            quality = 1.0
        else:
            parsed = safe_float(candidate.quality)
            if parsed is None:
                raise MalformedMeasurementError(f"non-numeric quality {candidate.quality!r}")
            quality = parsed
            if not 0.0 <= quality <= 1.0:
                raise MalformedMeasurementError(f"quality {quality} outside [0, 1]")

        value = to_canonical_unit(raw_value, candidate.unit, pollutant)
        low, high = PLAUSIBLE_RANGES[pollutant]
        if not low <= value <= high:
            raise MalformedMeasurementError(
                f"{pollutant} value {value:.1f} outside plausible range [{low}, {high}]",
                reason=RejectionReason.OUT_OF_RANGE,
            )

        age = now - observed_at
        if age > self._max_age:
            raise MalformedMeasurementError(f"observed {age} ago", reason=RejectionReason.STALE)
        if -age > self._future_skew:
            raise MalformedMeasurementError(f"observed {-age} in the future")

        try:
            return Measurement(
                source_id=source_id,
                latitude=latitude,
                longitude=longitude,
                pollutant=pollutant,
                value=value,
                unit=CANONICAL_UNIT,
                observed_at=observed_at,
                quality=quality,
            )
        except ValidationError as exc:
            raise MalformedMeasurementError(str(exc)) from exc
