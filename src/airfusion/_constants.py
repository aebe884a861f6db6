"""Internal constants shared across the library."""

CANONICAL_UNIT = "ug/m3"

# Trust weights never leave this band, so a lone corroborating source is
# never fully discarded.
MIN_SOURCE_WEIGHT = 0.1
MAX_SOURCE_WEIGHT = 1.0

# Lower bound applied to a measurement's quality when it is used as a weight.
MIN_EFFECTIVE_QUALITY = 0.05

# Denominator floor for relative deviations of near-zero readings (ug/m3).
VALUE_FLOOR = 1.0

# Relative band around the trend-window mean reported as "stable".
TREND_BAND = 0.05

# ------------------------------------------------------------------
# Unit conversion (25 degC, 1 atm)
# ------------------------------------------------------------------

MOLAR_VOLUME_L = 24.45

MOLAR_MASSES: dict[str, float] = {
    "no2": 46.0055,
    "o3": 47.9982,
    "so2": 64.066,
    "co": 28.010,
}

# ------------------------------------------------------------------
# Physically plausible ranges in ug/m3. Readings outside are rejected.
# ------------------------------------------------------------------

PLAUSIBLE_RANGES: dict[str, tuple[float, float]] = {
    "pm25": (0.0, 1_000.0),
    "pm10": (0.0, 2_000.0),
    "no2": (0.0, 5_000.0),
    "o3": (0.0, 2_000.0),
    "so2": (0.0, 5_000.0),
    "co": (0.0, 100_000.0),
}

# ------------------------------------------------------------------
# Default severity breakpoints (ug/m3): lower bounds of the tiers
# MODERATE, UNHEALTHY_FOR_SENSITIVE, UNHEALTHY, VERY_UNHEALTHY, HAZARDOUS.
# US EPA category boundaries; gases converted from ppb/ppm at 25 degC.
# ------------------------------------------------------------------

DEFAULT_SEVERITY_BREAKPOINTS: dict[str, tuple[float, ...]] = {
    "pm25": (12.1, 35.5, 55.5, 150.5, 250.5),
    "pm10": (55.0, 155.0, 255.0, 355.0, 425.0),
    "no2": (100.0, 190.0, 680.0, 1_220.0, 2_350.0),
    "o3": (108.0, 139.0, 169.0, 208.0, 400.0),
    "so2": (94.0, 199.0, 487.0, 799.0, 1_585.0),
    "co": (5_150.0, 10_880.0, 14_310.0, 17_750.0, 34_920.0),
}

SEVERITY_TIER_COUNT = 5

# ------------------------------------------------------------------
# US EPA AQI breakpoints for particulates:
# (aqi_low, aqi_high, concentration_low, concentration_high)
# ------------------------------------------------------------------

AQI_BREAKPOINTS: dict[str, tuple[tuple[int, int, float, float], ...]] = {
    "pm25": (
        (0, 50, 0.0, 12.0),
        (51, 100, 12.1, 35.4),
        (101, 150, 35.5, 55.4),
        (151, 200, 55.5, 150.4),
        (201, 300, 150.5, 250.4),
        (301, 400, 250.5, 350.4),
        (401, 500, 350.5, 500.4),
    ),
    "pm10": (
        (0, 50, 0.0, 54.0),
        (51, 100, 55.0, 154.0),
        (101, 150, 155.0, 254.0),
        (151, 200, 255.0, 354.0),
        (201, 300, 355.0, 424.0),
        (301, 400, 425.0, 504.0),
        (401, 500, 505.0, 604.0),
    ),
}
