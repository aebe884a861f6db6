from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import aiohttp
import pytest
from aiohttp import test_utils, web

from airfusion.exceptions import SourceUnavailableError
from airfusion.ingestion.collect import HttpJsonConnector, StaticConnector, collect_payloads, extract_records
from airfusion.models import SourceDescriptor


@dataclass
class FailingConnector:
    descriptor: SourceDescriptor
    error: Exception = field(default_factory=lambda: SourceUnavailableError("connection refused"))

    async def fetch(self) -> Sequence[Mapping[str, Any]]:
        raise self.error


@dataclass
class HangingConnector:
    descriptor: SourceDescriptor

    async def fetch(self) -> Sequence[Mapping[str, Any]]:
        await asyncio.sleep(10)
        return []


def test_extract_records_shapes() -> None:
    assert extract_records({"a": 1}) == [{"a": 1}]
    assert extract_records([{"a": 1}, "junk", {"b": 2}]) == [{"a": 1}, {"b": 2}]
    assert extract_records({"data": [{"a": 1}]}, "data") == [{"a": 1}]
    with pytest.raises(ValueError):
        extract_records("nope")


@pytest.mark.asyncio
async def test_collect_isolates_failing_and_slow_connectors() -> None:
    connectors = [
        StaticConnector(SourceDescriptor(source_id="ok"), [{"value": 1}]),
        FailingConnector(SourceDescriptor(source_id="broken")),
        FailingConnector(SourceDescriptor(source_id="buggy"), error=RuntimeError("boom")),
        HangingConnector(SourceDescriptor(source_id="slow")),
    ]

    result = await collect_payloads(connectors, timeout=0.05)

    assert result.payloads == {"ok": [{"value": 1}]}
    assert result.unavailable == ("broken", "buggy", "slow")
    assert not result.all_unavailable
    assert set(result.descriptors) == {"ok", "broken", "buggy", "slow"}


@pytest.mark.asyncio
async def test_collect_reports_total_outage() -> None:
    result = await collect_payloads([FailingConnector(SourceDescriptor(source_id="x"))], timeout=1.0)

    assert result.all_unavailable


@pytest.mark.asyncio
async def test_empty_fetch_is_not_an_outage() -> None:
    result = await collect_payloads([StaticConnector(SourceDescriptor(source_id="quiet"))], timeout=1.0)

    assert result.payloads == {"quiet": []}
    assert not result.all_unavailable


@dataclass
class FakeVendor:
    failures_before_success: int = 0
    status_on_failure: int = 503
    calls: int = 0
    seen_params: list[dict[str, str]] = field(default_factory=list)

    async def handle(self, request: web.Request) -> web.Response:
        self.calls += 1
        self.seen_params.append(dict(request.query))
        if self.calls <= self.failures_before_success:
            return web.Response(status=self.status_on_failure, text="unavailable")
        return web.json_response({"results": [{"lat": 1.0, "lon": 2.0}, {"lat": 3.0, "lon": 4.0}]})


async def _serve(vendor: FakeVendor) -> test_utils.TestServer:
    app = web.Application()
    app.router.add_get("/latest", vendor.handle)
    server = test_utils.TestServer(app)
    await server.start_server()
    return server


@pytest.mark.asyncio
async def test_http_connector_retries_server_errors() -> None:
    vendor = FakeVendor(failures_before_success=2)
    server = await _serve(vendor)
    try:
        async with aiohttp.ClientSession() as session:
            connector = HttpJsonConnector(
                SourceDescriptor(source_id="vendor"),
                str(server.make_url("/latest")),
                session,
                params={"token": "secret-token"},
                records_key="results",
                retry_delay=0.0,
            )
            records = await connector.fetch()
    finally:
        await server.close()

    assert vendor.calls == 3
    assert records == [{"lat": 1.0, "lon": 2.0}, {"lat": 3.0, "lon": 4.0}]
    assert vendor.seen_params[0] == {"token": "secret-token"}


@pytest.mark.asyncio
async def test_http_connector_client_error_not_retried() -> None:
    vendor = FakeVendor(failures_before_success=5, status_on_failure=401)
    server = await _serve(vendor)
    try:
        async with aiohttp.ClientSession() as session:
            connector = HttpJsonConnector(
                SourceDescriptor(source_id="vendor"),
                str(server.make_url("/latest")),
                session,
                retry_delay=0.0,
            )
            with pytest.raises(SourceUnavailableError) as excinfo:
                await connector.fetch()
    finally:
        await server.close()

    assert vendor.calls == 1
    assert excinfo.value.status_code == 401
    assert excinfo.value.source_id == "vendor"


@pytest.mark.asyncio
async def test_http_connector_gives_up_after_max_attempts() -> None:
    vendor = FakeVendor(failures_before_success=10)
    server = await _serve(vendor)
    try:
        async with aiohttp.ClientSession() as session:
            connector = HttpJsonConnector(
                SourceDescriptor(source_id="vendor"),
                str(server.make_url("/latest")),
                session,
                max_attempts=2,
                retry_delay=0.0,
            )
            with pytest.raises(SourceUnavailableError):
                await connector.fetch()
    finally:
        await server.close()

    assert vendor.calls == 2
