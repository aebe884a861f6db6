from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from airfusion import FusionConfig, FusionService, SourceDescriptor
from airfusion.exceptions import SourceUnavailableError
from airfusion.models import AlertState, AlertTransition, ReliabilityClass, SourceStatus

START = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


@dataclass
class FakeClock:
    now: datetime = START

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 5) -> None:
        self.now += timedelta(minutes=minutes)


@dataclass
class FakeSensor:
    """Connector reporting one PM2.5 reading near Nairobi CBD."""

    descriptor: SourceDescriptor
    clock: FakeClock
    value: float = 40.0
    down: bool = False
    delay: float = 0.0
    fetches: int = 0
    extra: list[Mapping[str, Any]] = field(default_factory=list)

    async def fetch(self) -> Sequence[Mapping[str, Any]]:
        self.fetches += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.down:
            raise SourceUnavailableError("HTTP 503", source_id=self.descriptor.source_id, status_code=503)
        return [
            {
                "lat": -1.2864,
                "lon": 36.8172,
                "pollutant": "pm25",
                "value": self.value,
                "observed_at": self.clock.now.isoformat(),
            },
            *self.extra,
        ]


def _sensor(source_id: str, clock: FakeClock, **kwargs: Any) -> FakeSensor:
    descriptor = SourceDescriptor(source_id=source_id, declared_reliability=ReliabilityClass.REFERENCE)
    return FakeSensor(descriptor, clock, **kwargs)


def _service(*sensors: FakeSensor, clock: FakeClock, **config: Any) -> FusionService:
    return FusionService(sensors, FusionConfig(**config), clock=clock, periodic=False)


@pytest.mark.asyncio
async def test_snapshot_before_first_refresh_is_empty() -> None:
    clock = FakeClock()
    service = _service(_sensor("a", clock), clock=clock)

    assert not service.peek_snapshot().has_data


@pytest.mark.asyncio
async def test_get_snapshot_fuses_all_sources() -> None:
    clock = FakeClock()
    service = _service(_sensor("a", clock, value=40), _sensor("b", clock, value=42), clock=clock)

    snapshot = await service.get_snapshot()

    (estimate,) = snapshot.consensus
    assert estimate.value == pytest.approx(41.0)
    assert estimate.source_ids == ("a", "b")
    assert estimate.confidence >= 0.7
    assert service.peek_snapshot() is snapshot


@pytest.mark.asyncio
async def test_concurrent_readers_trigger_single_cycle() -> None:
    clock = FakeClock()
    sensor = _sensor("a", clock, delay=0.05)
    service = _service(sensor, clock=clock)

    snapshots = await asyncio.gather(*(service.get_snapshot() for _ in range(5)))

    assert sensor.fetches == 1
    assert {s.cycle for s in snapshots} == {1}


@pytest.mark.asyncio
async def test_one_source_down_is_excluded_and_flagged() -> None:
    clock = FakeClock()
    service = _service(_sensor("a", clock), _sensor("b", clock, down=True), clock=clock)

    snapshot = await service.get_snapshot()

    assert snapshot.summary.unavailable_sources == ("b",)
    assert "b_unavailable" in snapshot.summary.quality_flags
    assert service.source_profiles()["b"].status == SourceStatus.UNAVAILABLE
    assert not snapshot.stale


@pytest.mark.asyncio
async def test_slow_source_times_out_without_blocking_cycle() -> None:
    clock = FakeClock()
    service = _service(
        _sensor("a", clock),
        _sensor("slow", clock, delay=5.0),
        clock=clock,
        source_timeout=0.05,
    )

    snapshot = await asyncio.wait_for(service.get_snapshot(), timeout=2.0)

    assert snapshot.has_data
    assert snapshot.summary.unavailable_sources == ("slow",)


@pytest.mark.asyncio
async def test_total_outage_serves_previous_snapshot_stale() -> None:
    clock = FakeClock()
    sensor = _sensor("a", clock, value=90)
    service = _service(sensor, clock=clock)
    first = await service.refresh_now()

    sensor.down = True
    clock.advance()
    second = await service.refresh_now()

    assert second.stale
    assert second.cycle == first.cycle
    assert second.hotspots == first.hotspots
    # Hotspots are not aged by a network outage.
    assert service.engine.cycle == 1


@pytest.mark.asyncio
async def test_total_outage_before_any_data_returns_no_data() -> None:
    clock = FakeClock()
    service = _service(_sensor("a", clock, down=True), clock=clock)

    snapshot = await service.get_snapshot()

    assert not snapshot.has_data


@pytest.mark.asyncio
async def test_alert_lifecycle_delivered_to_subscribers() -> None:
    clock = FakeClock()
    sensor = _sensor("a", clock, value=90)
    received: list[AlertTransition] = []
    async with _service(sensor, clock=clock, escalation_window=2, hysteresis_cycles=2) as service:
        service.subscribe_alerts(received.append)
        for value in (90, 90, 90, 10, 10):
            sensor.value = value
            await service.refresh_now()
            clock.advance()
        await service.dispatcher.join()

    assert [(t.old_state, t.new_state) for t in received] == [
        (AlertState.NONE, AlertState.ACTIVE),
        (AlertState.ACTIVE, AlertState.ESCALATED),
        (AlertState.ESCALATED, AlertState.RESOLVED),
    ]
    assert len({t.alert_id for t in received}) == 1
    assert [t.cycle for t in received] == [1, 2, 5]


@pytest.mark.asyncio
async def test_invalidate_cache_forces_new_cycle() -> None:
    clock = FakeClock()
    sensor = _sensor("a", clock)
    service = _service(sensor, clock=clock)

    await service.get_snapshot()
    await service.get_snapshot()
    assert sensor.fetches == 1

    service.invalidate_cache()
    snapshot = await service.get_snapshot()
    assert sensor.fetches == 2
    assert snapshot.cycle == 2


@pytest.mark.asyncio
async def test_periodic_loop_refreshes_in_background() -> None:
    clock = FakeClock()
    sensor = _sensor("a", clock)
    service = FusionService([sensor], FusionConfig(refresh_interval=0.01), clock=clock)

    async with service:
        await asyncio.sleep(0.1)

    assert sensor.fetches >= 2
    assert service.peek_snapshot().has_data


@pytest.mark.asyncio
async def test_no_connectors_gives_empty_snapshot() -> None:
    service = FusionService(periodic=False)

    snapshot = await service.get_snapshot()

    assert not snapshot.has_data
