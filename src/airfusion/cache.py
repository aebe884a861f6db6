"""Single-flight snapshot cache with TTL and stale fallback."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from airfusion.exceptions import RefreshError
from airfusion.models.snapshot import Snapshot

_logger = logging.getLogger(__name__)

SnapshotLoader = Callable[[], Awaitable[Snapshot]]


class SnapshotCache:
    """Serve the latest snapshot, refreshing at most one at a time.

    Concurrent callers that find the cache expired share one in-flight
    refresh task. A failed refresh never propagates: callers receive the
    previous snapshot flagged stale, or :meth:`Snapshot.no_data` when no
    refresh has ever succeeded.

    Parameters
    ----------
    loader : callable
        Coroutine function producing a fresh snapshot.
    ttl : float
        Seconds a published snapshot stays fresh.
    clock : callable
        Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        loader: SnapshotLoader,
        *,
        ttl: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl = ttl
        self._clock = clock
        self._snapshot: Snapshot | None = None
        self._loaded_at: float | None = None
        self._generation = 0
        self._inflight: asyncio.Task[Snapshot] | None = None
        self._inflight_generation = 0

    @property
    def refreshing(self) -> bool:
        return self._inflight is not None

    def peek(self) -> Snapshot:
        """Return the last published snapshot without waiting."""
        return self._snapshot if self._snapshot is not None else Snapshot.no_data()

    def is_fresh(self) -> bool:
        if self._snapshot is None or self._loaded_at is None:
            return False
        return self._clock() - self._loaded_at < self._ttl

    def invalidate(self) -> None:
        """Force the next :meth:`get` to recompute.

        A refresh already in flight still completes and publishes, but the
        next caller queues a new load behind it instead of joining it.
        """
        self._generation += 1
        self._loaded_at = None

    async def get(self) -> Snapshot:
        if self.is_fresh():
            assert self._snapshot is not None
            return self._snapshot
        return await self.refresh()

    async def refresh(self) -> Snapshot:
        """Join the in-flight refresh or start one.

        An in-flight refresh started before the last :meth:`invalidate` is
        not joined; a new load runs once it has finished, so loads never
        overlap.
        """
        task = self._inflight
        if task is None or self._inflight_generation != self._generation:
            task = asyncio.create_task(self._load(after=task))
            self._inflight = task
            self._inflight_generation = self._generation
            task.add_done_callback(self._clear_inflight)
        # A cancelled caller must not cancel the refresh shared with others.
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Task[Snapshot]) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _load(self, after: asyncio.Task[Snapshot] | None = None) -> Snapshot:
        if after is not None:
            await asyncio.wait([after])
        generation = self._generation
        try:
            snapshot = await self._loader()
        except RefreshError as exc:
            _logger.warning("Refresh failed: %s; serving %s", exc, self._fallback_label())
            return self._fallback()
        except Exception:
            _logger.warning("Refresh failed; serving %s", self._fallback_label(), exc_info=True)
            return self._fallback()
        self._snapshot = snapshot
        self._loaded_at = self._clock() if generation == self._generation else None
        return snapshot

    def _fallback(self) -> Snapshot:
        if self._snapshot is None:
            return Snapshot.no_data()
        return self._snapshot.as_stale()

    def _fallback_label(self) -> str:
        return "stale snapshot" if self._snapshot is not None else "empty snapshot"
