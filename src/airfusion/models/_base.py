"""Base model and shared field types.

Every airfusion data type inherits from :class:`FusionBaseModel`, a frozen
pydantic model. Components never mutate a published instance; they build a
new one (usually via ``model_copy(update=...)``) and swap references.

Timestamps from connectors arrive as epoch seconds, epoch milliseconds,
ISO-8601 strings or datetimes. :data:`UtcTimestamp` coerces all of them to
timezone-aware UTC datetimes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def parse_timestamp(value: Any) -> datetime | None:
    """Convert an epoch number, ISO-8601 string or datetime to a UTC datetime.

    Naive datetimes are assumed to be UTC. Returns ``None`` for ``None`` and
    blank strings; raises :class:`ValueError` for anything unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    if isinstance(value, bool):
        raise ValueError(f"unsupported timestamp: {value!r}")
    if isinstance(value, (int, float)):
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return parse_timestamp(float(text))
        except ValueError:
            pass
        return parse_timestamp(datetime.fromisoformat(text))
    raise ValueError(f"unsupported timestamp: {value!r}")


UtcTimestamp = Annotated[datetime, BeforeValidator(parse_timestamp)]
"""Required timestamp coerced to an aware UTC datetime."""

OptionalUtcTimestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""Optional timestamp coerced to an aware UTC datetime."""


class FusionBaseModel(BaseModel):
    """Base for all airfusion data models (immutable, strict field set)."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )
