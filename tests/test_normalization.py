from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from airfusion.ingestion.normalize import Normalizer, normalize_unit, safe_float, to_canonical_unit
from airfusion.models import Pollutant, RejectionReason, SourceDescriptor

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def _canonical(**overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "lat": -1.2921,
        "lon": 36.8219,
        "pollutant": "pm25",
        "value": 40.0,
        "unit": "ug/m3",
        "observed_at": (NOW - timedelta(minutes=5)).isoformat(),
        "quality": 0.9,
    }
    payload.update(overrides)
    return payload


def test_canonical_payload_becomes_measurement() -> None:
    batch = Normalizer().normalize(_canonical(), SourceDescriptor(source_id="sensor-a"), now=NOW)

    assert not batch.rejections
    (measurement,) = batch.measurements
    assert measurement.source_id == "sensor-a"
    assert measurement.pollutant == Pollutant.PM25
    assert measurement.value == 40.0
    assert measurement.observed_at == NOW - timedelta(minutes=5)
    assert measurement.quality == 0.9


def test_descriptor_source_id_wins_over_payload() -> None:
    batch = Normalizer().normalize(
        _canonical(source_id="spoofed"), SourceDescriptor(source_id="sensor-a"), now=NOW
    )

    assert batch.measurements[0].source_id == "sensor-a"


@pytest.mark.parametrize(
    ("overrides", "reason"),
    [
        ({"value": "--"}, RejectionReason.MALFORMED),
        ({"value": float("nan")}, RejectionReason.MALFORMED),
        ({"lat": None}, RejectionReason.MALFORMED),
        ({"lat": 123.0}, RejectionReason.MALFORMED),
        ({"observed_at": "yesterday"}, RejectionReason.MALFORMED),
        ({"observed_at": (NOW + timedelta(hours=1)).isoformat()}, RejectionReason.MALFORMED),
        ({"quality": 1.5}, RejectionReason.MALFORMED),
        ({"quality": float("nan")}, RejectionReason.MALFORMED),
        ({"quality": float("inf")}, RejectionReason.MALFORMED),
        ({"quality": "high"}, RejectionReason.MALFORMED),
        ({"unit": "furlongs"}, RejectionReason.MALFORMED),
        ({"value": -3.0}, RejectionReason.OUT_OF_RANGE),
        ({"value": 5000.0}, RejectionReason.OUT_OF_RANGE),
        ({"observed_at": (NOW - timedelta(hours=4)).isoformat()}, RejectionReason.STALE),
        ({"pollutant": "radon"}, RejectionReason.UNSUPPORTED),
    ],
)
def test_bad_candidates_are_rejected_with_reason(overrides: dict[str, object], reason: RejectionReason) -> None:
    batch = Normalizer().normalize(_canonical(**overrides), SourceDescriptor(source_id="s"), now=NOW)

    assert not batch.measurements
    assert [r.reason for r in batch.rejections] == [reason]


def test_out_of_range_value_is_never_clamped() -> None:
    batch = Normalizer().normalize(_canonical(value=1500.0), SourceDescriptor(source_id="s"), now=NOW)

    assert batch.measurements == ()
    assert batch.rejection_counts()[RejectionReason.OUT_OF_RANGE] == 1


def test_unknown_payload_format_rejects_whole_payload() -> None:
    descriptor = SourceDescriptor(source_id="s", payload_format="carrier-pigeon")
    batch = Normalizer().normalize({"anything": 1}, descriptor, now=NOW)

    assert [r.reason for r in batch.rejections] == [RejectionReason.UNSUPPORTED]


def test_non_mapping_payload_is_malformed() -> None:
    batch = Normalizer().normalize(["not", "a", "dict"], SourceDescriptor(source_id="s"), now=NOW)

    assert [r.reason for r in batch.rejections] == [RejectionReason.MALFORMED]


def test_batch_continues_after_rejection() -> None:
    batch = Normalizer().normalize_many(
        [_canonical(value="bad"), _canonical(value=20.0), _canonical(pollutant="radon")],
        SourceDescriptor(source_id="s"),
        now=NOW,
    )

    assert [m.value for m in batch.measurements] == [20.0]
    counts = batch.rejection_counts()
    assert counts[RejectionReason.MALFORMED] == 1
    assert counts[RejectionReason.UNSUPPORTED] == 1


@pytest.mark.parametrize("quality", [None, "", "--", "n/a"])
def test_absent_quality_defaults_to_full(quality: object) -> None:
    batch = Normalizer().normalize(_canonical(quality=quality), SourceDescriptor(source_id="s"), now=NOW)

    assert batch.measurements[0].quality == 1.0


def test_gas_ppb_converted_to_micrograms() -> None:
    # 1 ppb NO2 at 25 C is 46.0055 / 24.45 ug/m3.
    assert to_canonical_unit(10.0, "ppb", Pollutant.NO2) == pytest.approx(18.816, rel=1e-3)
    assert to_canonical_unit(0.01, "ppm", Pollutant.NO2) == pytest.approx(18.816, rel=1e-3)
    assert to_canonical_unit(1.2, "mg/m³", Pollutant.CO) == pytest.approx(1200.0)


def test_unit_spellings_fold_to_canonical() -> None:
    assert normalize_unit("µg/m³") == "ug/m3"
    assert normalize_unit("UG/M^3") == "ug/m3"
    assert normalize_unit(None) == "ug/m3"


def test_safe_float_treats_sentinels_as_missing() -> None:
    assert safe_float("") is None
    assert safe_float("--") is None
    assert safe_float("NaN") is None
    assert safe_float(True) is None
    assert safe_float("12.5") == 12.5


def test_epoch_milliseconds_timestamp() -> None:
    observed = NOW - timedelta(minutes=1)
    payload = _canonical(observed_at=int(observed.timestamp() * 1000))
    batch = Normalizer().normalize(payload, SourceDescriptor(source_id="s"), now=NOW)

    assert batch.measurements[0].observed_at == observed


def test_openaq_results_mapped() -> None:
    payload = {
        "results": [
            {
                "location": "Nairobi US Embassy",
                "coordinates": {"latitude": -1.2341, "longitude": 36.8101},
                "measurements": [
                    {"parameter": "pm25", "value": 31.0, "unit": "µg/m³", "lastUpdated": "2026-01-01T11:30:00+00:00"},
                    {"parameter": "no2", "value": 10.0, "unit": "ppb", "lastUpdated": "2026-01-01T11:30:00+00:00"},
                    {"parameter": "bc", "value": 2.0, "unit": "µg/m³", "lastUpdated": "2026-01-01T11:30:00+00:00"},
                ],
            }
        ]
    }
    descriptor = SourceDescriptor(source_id="openaq", payload_format="openaq")
    batch = Normalizer().normalize(payload, descriptor, now=NOW)

    values = {m.pollutant: m.value for m in batch.measurements}
    assert values[Pollutant.PM25] == 31.0
    assert values[Pollutant.NO2] == pytest.approx(18.816, rel=1e-3)
    assert [r.reason for r in batch.rejections] == [RejectionReason.UNSUPPORTED]


def test_waqi_particulate_index_inverted_and_gases_unsupported() -> None:
    payload = {
        "status": "ok",
        "data": {
            "city": {"geo": [-1.29, 36.82], "name": "Nairobi"},
            "iaqi": {"pm25": {"v": 100}, "o3": {"v": 20}, "t": {"v": 24}},
            "time": {"iso": "2026-01-01T11:00:00+00:00"},
        },
    }
    descriptor = SourceDescriptor(source_id="waqi", payload_format="waqi")
    batch = Normalizer().normalize(payload, descriptor, now=NOW)

    (measurement,) = batch.measurements
    assert measurement.pollutant == Pollutant.PM25
    assert measurement.value == pytest.approx(35.4)
    assert [r.reason for r in batch.rejections] == [RejectionReason.UNSUPPORTED]


def test_weatherapi_air_quality_mapped() -> None:
    payload = {
        "location": {"name": "Nairobi", "lat": -1.28, "lon": 36.82},
        "current": {
            "last_updated_epoch": int((NOW - timedelta(minutes=15)).timestamp()),
            "air_quality": {"pm2_5": 22.5, "pm10": 40.1, "co": 300.4, "us-epa-index": 2},
        },
    }
    descriptor = SourceDescriptor(source_id="weatherapi", payload_format="weatherapi")
    batch = Normalizer().normalize(payload, descriptor, now=NOW)

    values = {m.pollutant: m.value for m in batch.measurements}
    assert values == {Pollutant.PM25: 22.5, Pollutant.PM10: 40.1, Pollutant.CO: 300.4}
    assert not batch.rejections


def test_measurement_id_is_deterministic() -> None:
    descriptor = SourceDescriptor(source_id="s")
    first = Normalizer().normalize(_canonical(), descriptor, now=NOW).measurements[0]
    second = Normalizer().normalize(_canonical(), descriptor, now=NOW).measurements[0]

    assert first.measurement_id == second.measurement_id


def test_waqi_error_reply_is_rejected_not_raised() -> None:
    descriptor = SourceDescriptor(source_id="waqi", payload_format="waqi")

    batch = Normalizer().normalize({"status": "error", "data": "Unknown station"}, descriptor, now=NOW)

    assert batch.measurements == ()
    assert [r.reason for r in batch.rejections] == [RejectionReason.MALFORMED]


def test_openaq_junk_entries_are_skipped() -> None:
    payload = {
        "results": [
            "oops",
            {"coordinates": "nowhere", "measurements": "none"},
            {
                "coordinates": {"latitude": -1.2341, "longitude": 36.8101},
                "measurements": [
                    42,
                    {"parameter": "pm25", "value": 31.0, "unit": "ug/m3", "lastUpdated": "2026-01-01T11:30:00+00:00"},
                ],
            },
        ]
    }
    descriptor = SourceDescriptor(source_id="openaq", payload_format="openaq")

    batch = Normalizer().normalize(payload, descriptor, now=NOW)

    assert [m.value for m in batch.measurements] == [31.0]
    assert batch.rejections == ()


@pytest.mark.parametrize(
    "payload",
    [
        {"results": ["oops"]},
        {"results": "oops"},
        {"results": [{"measurements": [None, "x"]}]},
    ],
)
def test_openaq_payload_without_readings_yields_nothing(payload: dict[str, object]) -> None:
    descriptor = SourceDescriptor(source_id="openaq", payload_format="openaq")

    batch = Normalizer().normalize(payload, descriptor, now=NOW)

    assert batch.measurements == ()
