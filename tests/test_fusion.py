from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta

import pytest

from airfusion.config import FusionConfig
from airfusion.engine.fusion import FusionAggregator
from airfusion.models import Measurement, Pollutant, SeverityTier, Trend

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
LAT, LON = -1.2921, 36.8219


def _m(source_id: str, value: float, *, quality: float = 1.0, pollutant: Pollutant = Pollutant.PM25) -> Measurement:
    return Measurement(
        source_id=source_id,
        latitude=LAT,
        longitude=LON,
        pollutant=pollutant,
        value=value,
        observed_at=NOW - timedelta(minutes=2),
        quality=quality,
    )


def _aggregator() -> FusionAggregator:
    return FusionAggregator.from_config(FusionConfig())


def test_divergent_sources_flagged_with_majority_value() -> None:
    weights = {"a": 0.8, "b": 0.8, "c": 0.8}
    (estimate,) = _aggregator().aggregate([_m("a", 40), _m("b", 42), _m("c", 85)], weights, cycle=1, now=NOW)

    assert estimate.divergent
    assert estimate.value == pytest.approx(41.0)
    assert estimate.confidence <= 0.3
    assert estimate.outlier_source_ids == ("c",)
    assert estimate.source_ids == ("a", "b", "c")


def test_single_source_confidence_capped() -> None:
    (estimate,) = _aggregator().aggregate([_m("only", 50)], {"only": 1.0}, cycle=1, now=NOW)

    assert estimate.value == 50
    assert estimate.confidence == pytest.approx(0.5)
    assert not estimate.divergent


def test_single_low_quality_source_confidence_follows_quality() -> None:
    (estimate,) = _aggregator().aggregate([_m("only", 50, quality=0.2)], {}, cycle=1, now=NOW)

    assert estimate.confidence == pytest.approx(0.2)


def test_agreeing_sources_give_high_confidence() -> None:
    measurements = [_m("a", 30.0), _m("b", 31.5), _m("c", 29.0), _m("d", 30.8)]
    weights = {"a": 1.0, "b": 0.6, "c": 0.8, "d": 0.5}
    (estimate,) = _aggregator().aggregate(measurements, weights, cycle=1, now=NOW)

    assert not estimate.divergent
    assert estimate.confidence >= 0.7
    assert 29.0 <= estimate.value <= 31.5


def test_trust_weights_pull_value_toward_reliable_source() -> None:
    weights = {"ref": 1.0, "cheap": 0.1}
    (estimate,) = _aggregator().aggregate([_m("ref", 40), _m("cheap", 50)], weights, cycle=1, now=NOW)

    assert estimate.value < 41.0


def test_every_estimate_references_measurements() -> None:
    measurements = [_m("a", 20), _m("a", 22), _m("b", 21), _m("b", 30, pollutant=Pollutant.PM10)]
    estimates = _aggregator().aggregate(measurements, {}, cycle=3, now=NOW)

    assert [e.pollutant for e in estimates] == [Pollutant.PM10, Pollutant.PM25]
    pm25 = estimates[1]
    assert len(pm25.measurement_ids) == 3
    assert pm25.source_ids == ("a", "b")
    assert all(e.cycle == 3 for e in estimates)


def test_aggregation_is_deterministic_for_any_input_order() -> None:
    measurements = [_m(f"s{i}", 30 + i) for i in range(6)]
    measurements += [
        Measurement(
            source_id="far",
            latitude=-1.10,
            longitude=36.60,
            pollutant=Pollutant.NO2,
            value=80.0,
            observed_at=NOW,
        )
    ]
    weights = {f"s{i}": 0.5 + i / 20 for i in range(6)}
    expected = _aggregator().aggregate(measurements, weights, cycle=1, now=NOW)

    shuffled = list(measurements)
    random.Random(7).shuffle(shuffled)
    assert _aggregator().aggregate(shuffled, weights, cycle=1, now=NOW) == expected


def test_severity_and_aqi_attached() -> None:
    (estimate,) = _aggregator().aggregate([_m("a", 90.0)], {}, cycle=1, now=NOW)

    assert estimate.severity == SeverityTier.UNHEALTHY
    assert estimate.aqi == 169


def test_trend_uses_recorded_history() -> None:
    aggregator = _aggregator()
    first = aggregator.aggregate([_m("a", 40.0)], {}, cycle=1, now=NOW)
    assert first[0].trend == Trend.UNKNOWN

    aggregator.record(first)
    worse = aggregator.aggregate([_m("a", 60.0)], {}, cycle=2, now=NOW)
    same = aggregator.aggregate([_m("a", 41.0)], {}, cycle=2, now=NOW)
    better = aggregator.aggregate([_m("a", 20.0)], {}, cycle=2, now=NOW)

    assert worse[0].trend == Trend.WORSENING
    assert same[0].trend == Trend.STABLE
    assert better[0].trend == Trend.IMPROVING
    assert aggregator.history(Pollutant.PM25, first[0].cell) == (40.0,)


def test_trend_window_is_bounded() -> None:
    aggregator = FusionAggregator.from_config(FusionConfig(trend_window=2))
    for cycle, value in enumerate((10.0, 20.0, 30.0), start=1):
        aggregator.record(aggregator.aggregate([_m("a", value)], {}, cycle=cycle, now=NOW))

    estimate = aggregator.aggregate([_m("a", 30.0)], {}, cycle=4, now=NOW)[0]
    assert aggregator.history(Pollutant.PM25, estimate.cell) == (20.0, 30.0)


def test_divergent_without_majority_falls_back_to_weighted_mean() -> None:
    (estimate,) = _aggregator().aggregate([_m("a", 10.0), _m("b", 100.0)], {"a": 1.0, "b": 1.0}, cycle=1, now=NOW)

    assert estimate.divergent
    assert estimate.value == pytest.approx(55.0)
    assert estimate.outlier_source_ids == ()
    assert estimate.confidence <= 0.3
