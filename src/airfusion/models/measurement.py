"""Canonical measurement model and grid cells."""

from __future__ import annotations

import hashlib
import math
from enum import StrEnum
from typing import Any, NamedTuple

from pydantic import Field, field_validator

from airfusion._constants import CANONICAL_UNIT
from airfusion.models._base import FusionBaseModel, UtcTimestamp


class Pollutant(StrEnum):
    PM25 = "pm25"
    PM10 = "pm10"
    NO2 = "no2"
    O3 = "o3"
    SO2 = "so2"
    CO = "co"

    @classmethod
    def parse(cls, value: Any) -> Pollutant | None:
        """Resolve vendor spellings (``"PM2.5"``, ``"pm2_5"``, ``"ozone"``...)."""
        if isinstance(value, Pollutant):
            return value
        if value is None:
            return None
        key = str(value).strip().lower().replace(" ", "")
        return _POLLUTANT_ALIASES.get(key)


_POLLUTANT_ALIASES: dict[str, Pollutant] = {
    "pm25": Pollutant.PM25,
    "pm2.5": Pollutant.PM25,
    "pm2_5": Pollutant.PM25,
    "p2": Pollutant.PM25,
    "pm10": Pollutant.PM10,
    "p1": Pollutant.PM10,
    "no2": Pollutant.NO2,
    "n2": Pollutant.NO2,
    "o3": Pollutant.O3,
    "ozone": Pollutant.O3,
    "so2": Pollutant.SO2,
    "s2": Pollutant.SO2,
    "co": Pollutant.CO,
}


class CellId(NamedTuple):
    """Grid cell used as the fusion location."""

    lat_index: int
    lon_index: int

    @classmethod
    def for_point(cls, latitude: float, longitude: float, cell_size_deg: float) -> CellId:
        return cls(math.floor(latitude / cell_size_deg), math.floor(longitude / cell_size_deg))

    def centre(self, cell_size_deg: float) -> tuple[float, float]:
        """Return the (latitude, longitude) of the cell centre."""
        return (
            round((self.lat_index + 0.5) * cell_size_deg, 6),
            round((self.lon_index + 0.5) * cell_size_deg, 6),
        )


class Measurement(FusionBaseModel):
    """A single normalized reading. Values are always in ug/m3.

    Parameters
    ----------
    source_id : str
        Identifier of the source (connector) that produced the reading.
    latitude, longitude : float
        WGS84 position of the reading.
    pollutant : Pollutant
        Measured pollutant.
    value : float
        Concentration in :data:`unit`.
    unit : str
        Always ``"ug/m3"`` once normalized.
    observed_at : datetime
        Observation time (UTC).
    quality : float
        Source-reported quality indicator in ``[0, 1]``.
    """

    source_id: str = Field(min_length=1)
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    pollutant: Pollutant
    value: float
    unit: str = CANONICAL_UNIT
    observed_at: UtcTimestamp
    quality: float = Field(default=1.0, ge=0.0, le=1.0)

    @field_validator("value")
    @classmethod
    def _finite_value(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("value must be finite")
        return value

    @property
    def measurement_id(self) -> str:
        """Deterministic identifier derived from the identifying fields."""
        key = "|".join(
            (
                self.source_id,
                f"{self.latitude:.6f}",
                f"{self.longitude:.6f}",
                self.pollutant.value,
                self.observed_at.isoformat(),
                repr(self.value),
            )
        )
        return hashlib.sha1(key.encode("utf-8"), usedforsecurity=False).hexdigest()[:16]

    def cell(self, cell_size_deg: float) -> CellId:
        return CellId.for_point(self.latitude, self.longitude, cell_size_deg)


class RejectionReason(StrEnum):
    MALFORMED = "malformed"
    OUT_OF_RANGE = "out_of_range"
    STALE = "stale"
    UNSUPPORTED = "unsupported"


class Rejection(FusionBaseModel):
    """Why a candidate record did not become a :class:`Measurement`."""

    source_id: str
    reason: RejectionReason
    detail: str = ""
    pollutant: str | None = None
