"""Connector contract and concurrent payload collection."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import aiohttp

from airfusion._redact import redact_for_log, redact_url
from airfusion.exceptions import SourceUnavailableError
from airfusion.models.source import SourceDescriptor

_logger = logging.getLogger(__name__)

_USER_AGENT = "airfusion/1 (+aiohttp)"


class Connector(Protocol):
    """Structural connector interface consumed by the engine.

    Vendor clients live outside this library; anything exposing a
    ``descriptor`` and an async ``fetch`` returning raw payloads fits.
    """

    @property
    def descriptor(self) -> SourceDescriptor: ...

    async def fetch(self) -> Sequence[Mapping[str, Any]]: ...


@dataclass
class StaticConnector:
    """Connector serving a fixed list of payloads (replays, tests)."""

    descriptor: SourceDescriptor
    payloads: list[Mapping[str, Any]] = field(default_factory=list)

    async def fetch(self) -> Sequence[Mapping[str, Any]]:
        return list(self.payloads)


def extract_records(body: Any, records_key: str | None = None) -> list[Mapping[str, Any]]:
    """Split a decoded JSON body into payloads.

    A JSON list yields one payload per object; an object yields itself, or
    the list stored under *records_key* when given.
    """
    if records_key is not None and isinstance(body, Mapping):
        body = body.get(records_key)
    if isinstance(body, Mapping):
        return [body]
    if isinstance(body, list):
        return [item for item in body if isinstance(item, Mapping)]
    raise ValueError(f"expected a JSON object or array, got {type(body).__name__}")


class HttpJsonConnector:
    """GET a JSON document over HTTP with bounded retries.

    Transport errors and 5xx responses are retried with a delay growing 1.5x
    per attempt; 4xx responses fail immediately. Exhausted retries raise
    :class:`SourceUnavailableError`.
    """

    def __init__(
        self,
        descriptor: SourceDescriptor,
        url: str,
        http_session: aiohttp.ClientSession,
        *,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        records_key: str | None = None,
        request_timeout: float = 10.0,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        self._descriptor = descriptor
        self._url = url
        self._http = http_session
        self._params = dict(params or {})
        self._headers = {"accept": "application/json", "user-agent": _USER_AGENT, **(headers or {})}
        self._records_key = records_key
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay

    @property
    def descriptor(self) -> SourceDescriptor:
        return self._descriptor

    async def fetch(self) -> Sequence[Mapping[str, Any]]:
        source_id = self._descriptor.source_id
        delay = self._retry_delay
        last_error: SourceUnavailableError | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._fetch_once()
            except SourceUnavailableError as exc:
                if exc.status_code is not None and exc.status_code < 500:
                    raise
                last_error = exc
            if attempt < self._max_attempts:
                _logger.debug(
                    "Fetch attempt %d/%d for %s failed (%s); retrying in %.1fs",
                    attempt,
                    self._max_attempts,
                    source_id,
                    last_error,
                    delay,
                )
                await asyncio.sleep(delay)
                delay *= 1.5
        assert last_error is not None
        raise last_error

    async def _fetch_once(self) -> list[Mapping[str, Any]]:
        source_id = self._descriptor.source_id
        safe_url = redact_url(self._url)
        _logger.debug("GET %s params=%s", safe_url, redact_for_log(self._params))
        try:
            async with self._http.get(
                self._url,
                params=self._params,
                headers=self._headers,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise SourceUnavailableError(
                        f"HTTP {resp.status} from {safe_url}: {text[:200]}",
                        source_id=source_id,
                        status_code=resp.status,
                    )
        except SourceUnavailableError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise SourceUnavailableError(
                f"Request to {safe_url} failed: {exc!r}",
                source_id=source_id,
            ) from exc

        try:
            return extract_records(json.loads(text), self._records_key)
        except (json.JSONDecodeError, ValueError) as exc:
            raise SourceUnavailableError(
                f"Invalid JSON from {safe_url}: {text[:200]}",
                source_id=source_id,
            ) from exc


@dataclass(frozen=True)
class CollectionResult:
    """Raw payloads per source for one cycle."""

    payloads: dict[str, list[Mapping[str, Any]]]
    descriptors: dict[str, SourceDescriptor]
    unavailable: tuple[str, ...] = ()

    @property
    def all_unavailable(self) -> bool:
        return bool(self.descriptors) and not self.payloads


async def _fetch_one(connector: Connector, timeout: float) -> list[Mapping[str, Any]]:
    async with asyncio.timeout(timeout):
        return list(await connector.fetch())


async def collect_payloads(connectors: Iterable[Connector], *, timeout: float) -> CollectionResult:
    """Fetch from every connector concurrently, each under its own timeout.

    Failing or timed-out connectors are logged and reported unavailable;
    they never fail the collection as a whole.
    """
    connectors = list(connectors)
    results = await asyncio.gather(
        *(_fetch_one(connector, timeout) for connector in connectors),
        return_exceptions=True,
    )
    payloads: dict[str, list[Mapping[str, Any]]] = {}
    descriptors: dict[str, SourceDescriptor] = {}
    unavailable: list[str] = []
    for connector, result in zip(connectors, results, strict=True):
        source_id = connector.descriptor.source_id
        descriptors[source_id] = connector.descriptor
        if isinstance(result, TimeoutError):
            _logger.warning("Source %s timed out after %.1fs", source_id, timeout)
            unavailable.append(source_id)
        elif isinstance(result, SourceUnavailableError):
            _logger.warning("Source %s unavailable: %s", source_id, result)
            unavailable.append(source_id)
        elif isinstance(result, asyncio.CancelledError):
            raise result
        elif isinstance(result, Exception):
            _logger.warning("Source %s failed", source_id, exc_info=result)
            unavailable.append(source_id)
        else:
            payloads.setdefault(source_id, []).extend(result)
    return CollectionResult(payloads=payloads, descriptors=descriptors, unavailable=tuple(unavailable))
