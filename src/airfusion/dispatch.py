"""Asynchronous delivery of alert transitions to subscribers."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import TYPE_CHECKING

import aiohttp

from airfusion._redact import redact_url
from airfusion.exceptions import DispatchError
from airfusion.models.alert import AlertTransition

if TYPE_CHECKING:
    from airfusion.config import FusionConfig

_logger = logging.getLogger(__name__)

AlertCallback = Callable[[AlertTransition], Awaitable[None] | None]


class AlertDispatcher:
    """Fan alert transitions out to subscribers off the refresh path.

    :meth:`publish` never blocks: events go to a bounded queue and the
    oldest pending event is dropped (with a warning) when it is full. A
    background worker delivers each event to every subscriber, retrying
    failed deliveries with a delay growing 1.5x per attempt.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 5.0,
        queue_size: int = 1000,
    ) -> None:
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay
        self._timeout = timeout
        self._queue: asyncio.Queue[AlertTransition] = asyncio.Queue(maxsize=queue_size)
        self._subscribers: list[AlertCallback] = []
        self._worker: asyncio.Task[None] | None = None
        self.dropped = 0

    @classmethod
    def from_config(cls, config: FusionConfig) -> AlertDispatcher:
        return cls(
            max_attempts=config.dispatch_max_attempts,
            retry_delay=config.dispatch_retry_delay,
            timeout=config.dispatch_timeout,
            queue_size=config.dispatch_queue_size,
        )

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def subscribe(self, callback: AlertCallback) -> Callable[[], None]:
        """Register *callback*; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, transitions: Iterable[AlertTransition]) -> None:
        for transition in transitions:
            if self._queue.full():
                oldest = self._queue.get_nowait()
                self._queue.task_done()
                self.dropped += 1
                _logger.warning(
                    "Alert queue full; dropped %s transition of %s",
                    oldest.new_state,
                    oldest.alert_id,
                )
            self._queue.put_nowait(transition)

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="airfusion-alert-dispatch")

    async def join(self) -> None:
        """Wait until every queued transition has been handled."""
        await self._queue.join()

    async def close(self) -> None:
        worker, self._worker = self._worker, None
        if worker is None:
            return
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker

    async def _run(self) -> None:
        while True:
            transition = await self._queue.get()
            try:
                for callback in list(self._subscribers):
                    await self._deliver(callback, transition)
            finally:
                self._queue.task_done()

    async def _deliver(self, callback: AlertCallback, transition: AlertTransition) -> bool:
        delay = self._retry_delay
        for attempt in range(1, self._max_attempts + 1):
            try:
                async with asyncio.timeout(self._timeout):
                    result = callback(transition)
                    if inspect.isawaitable(result):
                        await result
                return True
            except Exception:
                _logger.debug(
                    "Delivery of %s to %r failed (attempt %d/%d)",
                    transition.alert_id,
                    callback,
                    attempt,
                    self._max_attempts,
                    exc_info=True,
                )
            if attempt < self._max_attempts:
                await asyncio.sleep(delay)
                delay *= 1.5
        _logger.warning(
            "Giving up delivering %s -> %s of %s to %r after %d attempts",
            transition.old_state,
            transition.new_state,
            transition.alert_id,
            callback,
            self._max_attempts,
        )
        return False


class WebhookSubscriber:
    """POST each transition as JSON to a webhook URL."""

    def __init__(
        self,
        url: str,
        http_session: aiohttp.ClientSession,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self._url = url
        self._http = http_session
        self._headers = dict(headers or {})

    def __repr__(self) -> str:
        return f"WebhookSubscriber({redact_url(self._url)!r})"

    async def __call__(self, transition: AlertTransition) -> None:
        payload = transition.model_dump(mode="json")
        try:
            async with self._http.post(self._url, json=payload, headers=self._headers) as resp:
                if resp.status >= 300:
                    text = await resp.text()
                    raise DispatchError(
                        f"HTTP {resp.status} from {redact_url(self._url)}: {text[:200]}",
                        status_code=resp.status,
                    )
        except aiohttp.ClientError as exc:
            raise DispatchError(f"Webhook {redact_url(self._url)} failed: {exc!r}") from exc
