"""Public facade tying connectors, engine, cache and dispatcher together."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from airfusion.cache import SnapshotCache
from airfusion.config import FusionConfig
from airfusion.dispatch import AlertCallback, AlertDispatcher
from airfusion.engine.cycle import FusionEngine
from airfusion.exceptions import RefreshError
from airfusion.ingestion.collect import Connector, collect_payloads
from airfusion.models.snapshot import Snapshot
from airfusion.models.source import SourceProfile

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FusionService:
    """Continuously fused air-quality picture with graded alerts.

    Use as an async context manager to run the periodic refresh loop and
    the alert dispatcher::

        async with FusionService(connectors, FusionConfig.from_env()) as service:
            snapshot = await service.get_snapshot()

    Outside the context manager, :meth:`get_snapshot` and
    :meth:`refresh_now` still work; alert events are queued until the
    dispatcher starts.
    """

    def __init__(
        self,
        connectors: Iterable[Connector] = (),
        config: FusionConfig | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        periodic: bool = True,
    ) -> None:
        self._config = config or FusionConfig()
        self._engine = FusionEngine(self._config, clock=clock)
        self._dispatcher = AlertDispatcher.from_config(self._config)
        self._cache = SnapshotCache(self._run_refresh, ttl=self._config.effective_cache_ttl, clock=monotonic)
        self._connectors: dict[str, Connector] = {}
        self._periodic = periodic
        self._loop_task: asyncio.Task[None] | None = None
        for connector in connectors:
            self.add_connector(connector)

    async def __aenter__(self) -> FusionService:
        self._dispatcher.start()
        if self._periodic and self._loop_task is None:
            self._loop_task = asyncio.create_task(self._refresh_loop(), name="airfusion-refresh")
        return self

    async def __aexit__(self, *exc: Any) -> None:
        task, self._loop_task = self._loop_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._dispatcher.close()

    @property
    def config(self) -> FusionConfig:
        return self._config

    @property
    def engine(self) -> FusionEngine:
        return self._engine

    @property
    def dispatcher(self) -> AlertDispatcher:
        return self._dispatcher

    def add_connector(self, connector: Connector) -> None:
        descriptor = connector.descriptor
        self._connectors[descriptor.source_id] = connector
        self._engine.register_source(descriptor)

    async def get_snapshot(self) -> Snapshot:
        """Return the current snapshot, refreshing it first if expired."""
        return await self._cache.get()

    async def refresh_now(self) -> Snapshot:
        """Run a cycle now on freshly fetched data.

        A cycle already running finishes first; this call then runs its own.
        """
        self._cache.invalidate()
        return await self._cache.refresh()

    def peek_snapshot(self) -> Snapshot:
        return self._cache.peek()

    def invalidate_cache(self) -> None:
        """Make the next :meth:`get_snapshot` run a new cycle, even mid-refresh."""
        self._cache.invalidate()

    def subscribe_alerts(self, callback: AlertCallback) -> Callable[[], None]:
        """Deliver every alert transition to *callback*; returns an unsubscribe function."""
        return self._dispatcher.subscribe(callback)

    def source_profiles(self) -> dict[str, SourceProfile]:
        return self._engine.source_profiles()

    async def _run_refresh(self) -> Snapshot:
        if not self._connectors:
            raise RefreshError("no connectors configured")
        collection = await collect_payloads(self._connectors.values(), timeout=self._config.source_timeout)
        if collection.all_unavailable:
            raise RefreshError(f"all {len(self._connectors)} sources unavailable")
        result = self._engine.run_cycle(collection.payloads, unavailable=collection.unavailable)
        self._dispatcher.publish(result.transitions)
        summary = result.snapshot.summary
        _logger.debug(
            "Published cycle %d: %d estimates, %d hotspots, %d open alerts",
            result.snapshot.cycle,
            summary.estimate_count,
            summary.hotspot_count,
            summary.open_alert_count,
        )
        return result.snapshot

    async def _refresh_loop(self) -> None:
        while True:
            await self._cache.refresh()
            await asyncio.sleep(self._config.refresh_interval)
