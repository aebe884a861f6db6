"""Graded health severity tiers."""

from __future__ import annotations

import bisect
import enum
from collections.abc import Sequence
from typing import Any


class SeverityTier(enum.IntEnum):
    """Health-guideline tiers, ordered from best to worst."""

    GOOD = 0
    MODERATE = 1
    UNHEALTHY_FOR_SENSITIVE = 2
    UNHEALTHY = 3
    VERY_UNHEALTHY = 4
    HAZARDOUS = 5

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def parse(cls, value: Any) -> SeverityTier:
        """Accept a tier, its integer value or its (case-insensitive) name."""
        if isinstance(value, SeverityTier):
            return value
        if isinstance(value, int):
            return cls(value)
        text = str(value).strip()
        if text.lstrip("-").isdigit():
            return cls(int(text))
        try:
            return cls[text.upper()]
        except KeyError:
            raise ValueError(f"unknown severity tier: {value!r}") from None


_LABELS: dict[SeverityTier, str] = {
    SeverityTier.GOOD: "Good",
    SeverityTier.MODERATE: "Moderate",
    SeverityTier.UNHEALTHY_FOR_SENSITIVE: "Unhealthy for Sensitive Groups",
    SeverityTier.UNHEALTHY: "Unhealthy",
    SeverityTier.VERY_UNHEALTHY: "Very Unhealthy",
    SeverityTier.HAZARDOUS: "Hazardous",
}


def tier_for(value: float, breakpoints: Sequence[float]) -> SeverityTier:
    """Map a concentration to its tier.

    *breakpoints* holds the ascending lower bounds of MODERATE through
    HAZARDOUS; a value equal to a bound belongs to the higher tier.
    """
    return SeverityTier(bisect.bisect_right(breakpoints, value))
