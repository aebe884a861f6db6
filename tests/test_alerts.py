from __future__ import annotations

from datetime import UTC, datetime, timedelta

from airfusion.engine.alerts import AlertStateMachine
from airfusion.engine.hotspots import HotspotDetector, HotspotUpdate
from airfusion.models import AlertState, CellId, ConsensusEstimate, Pollutant, SeverityTier, TransitionReason
from airfusion.models.severity import tier_for

START = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
PM25_BREAKPOINTS = (12.1, 35.5, 55.5, 150.5, 250.5)


def _estimate(value: float, *, lat: float = 0.0) -> ConsensusEstimate:
    return ConsensusEstimate(
        cell=CellId.for_point(lat, 0.0, 0.01),
        pollutant=Pollutant.PM25,
        cycle=1,
        latitude=lat,
        longitude=0.0,
        value=value,
        confidence=0.9,
        source_ids=("s",),
        measurement_ids=("m",),
        computed_at=START,
        severity=tier_for(value, PM25_BREAKPOINTS),
    )


class _Harness:
    def __init__(self, *, retirement_cycles: int = 3, **alert_kwargs: object) -> None:
        self.detector = HotspotDetector(retirement_cycles=retirement_cycles)
        self.alerts = AlertStateMachine(**alert_kwargs)  # type: ignore[arg-type]
        self.cycle = 0

    def step(self, *estimates: ConsensusEstimate) -> tuple[HotspotUpdate, list]:
        self.cycle += 1
        now = START + timedelta(minutes=5 * self.cycle)
        update = self.detector.update(list(estimates), now=now)
        transitions = self.alerts.process(update, cycle=self.cycle, now=now)
        return update, list(transitions)


def test_persistent_critical_hotspot_escalates_once() -> None:
    harness = _Harness(escalation_window=2)

    _, first = harness.step(_estimate(90.0))
    _, second = harness.step(_estimate(90.0))
    _, third = harness.step(_estimate(90.0))

    assert [(t.old_state, t.new_state) for t in first] == [(AlertState.NONE, AlertState.ACTIVE)]
    assert [(t.old_state, t.new_state, t.reason) for t in second] == [
        (AlertState.ACTIVE, AlertState.ESCALATED, TransitionReason.CRITICAL_PERSISTED)
    ]
    assert third == []
    (alert,) = harness.alerts.open_alerts()
    assert alert.state == AlertState.ESCALATED


def test_worsening_by_a_tier_escalates() -> None:
    harness = _Harness(escalation_window=5)

    harness.step(_estimate(40.0))
    _, transitions = harness.step(_estimate(60.0))

    assert [(t.new_state, t.reason) for t in transitions] == [
        (AlertState.ESCALATED, TransitionReason.SEVERITY_WORSENED)
    ]


def test_repeated_detection_is_deduplicated() -> None:
    harness = _Harness(escalation_window=10)

    _, first = harness.step(_estimate(40.0))
    _, second = harness.step(_estimate(45.0))
    _, third = harness.step(_estimate(50.0))

    assert len(first) == 1
    assert second == third == []
    (alert,) = harness.alerts.open_alerts()
    assert alert.last_seen_at == START + timedelta(minutes=15)
    assert alert.created_at == START + timedelta(minutes=5)


def test_hysteresis_resolves_after_m_unconfirmed_cycles() -> None:
    harness = _Harness(hysteresis_cycles=2, retirement_cycles=3)

    _, opened = harness.step(_estimate(40.0))
    _, quiet = harness.step(_estimate(20.0))
    _, resolved = harness.step(_estimate(20.0))

    assert len(opened) == 1
    assert quiet == []
    assert [(t.old_state, t.new_state, t.reason) for t in resolved] == [
        (AlertState.ACTIVE, AlertState.RESOLVED, TransitionReason.HYSTERESIS)
    ]
    assert harness.alerts.open_alerts() == ()
    assert [a.alert_id for a in harness.alerts.history()] == [opened[0].alert_id]


def test_brief_dip_does_not_resolve() -> None:
    harness = _Harness(hysteresis_cycles=2)

    harness.step(_estimate(40.0))
    _, dip = harness.step(_estimate(20.0))
    _, back = harness.step(_estimate(40.0))

    assert dip == back == []
    (alert,) = harness.alerts.open_alerts()
    assert alert.state == AlertState.ACTIVE


def test_retired_hotspot_resolves_alert() -> None:
    harness = _Harness(hysteresis_cycles=5, retirement_cycles=1)

    harness.step(_estimate(40.0))
    _, transitions = harness.step()

    assert [(t.new_state, t.reason) for t in transitions] == [(AlertState.RESOLVED, TransitionReason.RETIRED)]


def test_new_alert_id_after_resolution() -> None:
    harness = _Harness(hysteresis_cycles=1, retirement_cycles=5)

    _, first = harness.step(_estimate(40.0))
    harness.step()
    _, again = harness.step(_estimate(40.0))

    assert first[0].alert_id == "AL-000001"
    assert [(t.alert_id, t.new_state) for t in again] == [("AL-000002", AlertState.ACTIVE)]
    assert first[0].hotspot_id == again[0].hotspot_id


def test_merged_hotspot_alert_resolves_as_merged() -> None:
    harness = _Harness(escalation_window=10)
    offset = 3.0 / 111.19
    _, opened = harness.step(_estimate(40.0), _estimate(40.0, lat=offset))
    assert len(opened) == 2

    _, transitions = harness.step(_estimate(40.0, lat=1.4 / 111.19))

    assert [(t.hotspot_id, t.new_state, t.reason) for t in transitions] == [
        ("HS-000002", AlertState.RESOLVED, TransitionReason.MERGED)
    ]
    assert [a.hotspot_id for a in harness.alerts.open_alerts()] == ["HS-000001"]


def test_never_two_open_alerts_per_hotspot() -> None:
    harness = _Harness(hysteresis_cycles=1, retirement_cycles=2, escalation_window=2)
    pattern = [90.0, 40.0, None, 160.0, 160.0, None, None, 60.0, 20.0, 90.0]
    for value in pattern:
        if value is None:
            harness.step()
        else:
            harness.step(_estimate(value))
        hotspot_ids = [a.hotspot_id for a in harness.alerts.open_alerts()]
        assert len(hotspot_ids) == len(set(hotspot_ids))


def test_transitions_carry_advisory() -> None:
    harness = _Harness()

    _, transitions = harness.step(_estimate(90.0))

    advisory = transitions[0].advisory
    assert advisory is not None
    assert advisory.level == "unhealthy"
    assert transitions[0].severity == SeverityTier.UNHEALTHY


def test_evaluate_is_side_effect_free() -> None:
    detector = HotspotDetector()
    alerts = AlertStateMachine()
    update = detector.update([_estimate(90.0)], now=START)

    pending = alerts.evaluate(update, cycle=1, now=START)

    assert len(pending.transitions) == 1
    assert alerts.open_alerts() == ()
    alerts.commit(pending)
    assert len(alerts.open_alerts()) == 1
