"""Health advisories and snapshot-level recommended actions."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from airfusion.models.alert import HealthAdvisory
from airfusion.models.hotspot import Hotspot
from airfusion.models.measurement import Pollutant
from airfusion.models.severity import SeverityTier, tier_for

_ADVISORIES: dict[SeverityTier, HealthAdvisory] = {
    SeverityTier.GOOD: HealthAdvisory(
        level="good",
        message="Air quality is satisfactory, and air pollution poses little or no risk",
        precautions=("Enjoy outdoor activities", "Open windows for ventilation"),
    ),
    SeverityTier.MODERATE: HealthAdvisory(
        level="moderate",
        message=(
            "Air quality is acceptable. However, there may be a risk for some people, "
            "particularly those who are unusually sensitive to air pollution"
        ),
        precautions=(
            "Unusually sensitive people should consider reducing prolonged or heavy exertion",
            "Watch for symptoms such as coughing or shortness of breath",
        ),
    ),
    SeverityTier.UNHEALTHY_FOR_SENSITIVE: HealthAdvisory(
        level="unhealthy_sensitive",
        message=(
            "Members of sensitive groups may experience health effects. "
            "The general public is less likely to be affected"
        ),
        precautions=(
            "Sensitive groups should reduce prolonged or heavy exertion",
            "People with heart or lung disease, older adults, and children should limit outdoor exertion",
        ),
    ),
    SeverityTier.UNHEALTHY: HealthAdvisory(
        level="unhealthy",
        message=(
            "Some members of the general public may experience health effects; "
            "members of sensitive groups may experience more serious health effects"
        ),
        precautions=(
            "Everyone should reduce prolonged or heavy exertion",
            "Sensitive groups should avoid all physical activity outdoors",
            "Move activities indoors or reschedule to a time when air quality is better",
        ),
    ),
}

_SEVERE = HealthAdvisory(
    level="very_unhealthy",
    message="Health alert: The risk of health effects is increased for everyone",
    precautions=(
        "Everyone should avoid all physical activity outdoors",
        "Sensitive groups should remain indoors and keep activity levels low",
        "Keep windows and doors closed",
        "Use air purifiers if available",
    ),
)


def advisory_for(tier: SeverityTier) -> HealthAdvisory:
    return _ADVISORIES.get(tier, _SEVERE)


# PM2.5 mean thresholds (ug/m3) for city-wide actions.
def recommended_actions(
    mean_by_pollutant: Mapping[str, float],
    hotspots: Iterable[Hotspot],
    *,
    critical_tier: SeverityTier,
    pm25_breakpoints: Sequence[float],
) -> tuple[str, ...]:
    """Suggest responses for the whole monitored area.

    Area-wide PM2.5 actions follow the tier of the PM2.5 mean under the
    same *pm25_breakpoints* that grade estimates and alerts.
    """
    actions: list[str] = []
    pm25 = mean_by_pollutant.get(Pollutant.PM25.value)
    pm25_tier = tier_for(pm25, pm25_breakpoints) if pm25 is not None else SeverityTier.GOOD
    if pm25_tier >= SeverityTier.UNHEALTHY_FOR_SENSITIVE:
        actions.append("Issue public health advisory for sensitive groups")
    if pm25_tier >= SeverityTier.UNHEALTHY:
        actions.append("Implement temporary traffic restrictions in affected areas")
    critical = sorted(hs.hotspot_id for hs in hotspots if hs.confirmed and hs.severity >= critical_tier)
    if critical:
        actions.append(f"Deploy mobile monitoring to {len(critical)} critical hotspot(s): {', '.join(critical)}")
    if not actions:
        actions.append("Continue routine monitoring")
    return tuple(actions)
