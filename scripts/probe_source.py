#!/usr/bin/env python3
"""Fetch one live source and show how its payload normalizes.

Useful when wiring a new vendor feed: every accepted measurement and
every rejection (with its reason) is listed, so mapping gaps are easy
to spot before the source joins the fusion service.

Usage
-----
::

    python scripts/probe_source.py "https://api.waqi.info/feed/nairobi/" \\
        --format waqi --param token=$WAQI_TOKEN
    python scripts/probe_source.py "https://api.openaq.org/v2/latest" \\
        --format openaq --records-key results --header X-API-Key=$OPENAQ_KEY
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

import aiohttp

_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from airfusion import FusionConfig, HttpJsonConnector, ReliabilityClass, SourceDescriptor  # noqa: E402
from airfusion._redact import redact_for_log  # noqa: E402
from airfusion.exceptions import SourceUnavailableError  # noqa: E402
from airfusion.ingestion import Normalizer  # noqa: E402

LOG = logging.getLogger("probe_source")


def _pairs(values: list[str] | None) -> dict[str, str]:
    result: dict[str, str] = {}
    for item in values or []:
        name, sep, value = item.partition("=")
        if not sep:
            raise SystemExit(f"expected NAME=VALUE, got {item!r}")
        result[name] = value
    return result


async def main() -> int:
    parser = argparse.ArgumentParser(description="Fetch one source and show its normalized readings.")
    parser.add_argument("url", help="Endpoint returning JSON")
    parser.add_argument("--source-id", default="probe", help="Source id to report readings under")
    parser.add_argument("--format", default="canonical", help="Payload format (canonical, openaq, waqi, weatherapi)")
    parser.add_argument(
        "--reliability",
        default=ReliabilityClass.COMMUNITY.value,
        choices=[member.value for member in ReliabilityClass],
    )
    parser.add_argument("--records-key", help="Split envelopes on this key")
    parser.add_argument("--param", action="append", help="Query parameter NAME=VALUE (repeatable)")
    parser.add_argument("--header", action="append", help="Request header NAME=VALUE (repeatable)")
    parser.add_argument("--raw", action="store_true", help="Also print the (redacted) raw payloads")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = FusionConfig.from_env()
    descriptor = SourceDescriptor(
        source_id=args.source_id,
        declared_reliability=ReliabilityClass(args.reliability),
        payload_format=args.format,
    )
    normalizer = Normalizer.from_config(config)
    if args.format not in normalizer.payload_formats:
        LOG.error("Unknown format %r; known: %s", args.format, ", ".join(sorted(normalizer.payload_formats)))
        return 2

    async with aiohttp.ClientSession() as session:
        connector = HttpJsonConnector(
            descriptor,
            args.url,
            session,
            params=_pairs(args.param),
            headers=_pairs(args.header),
            records_key=args.records_key,
            request_timeout=config.source_timeout,
        )
        try:
            payloads = await connector.fetch()
        except SourceUnavailableError as exc:
            LOG.error("Fetch failed: %s", exc)
            return 1

    if args.raw:
        print(json.dumps(redact_for_log(list(payloads)), indent=2, default=str))

    batch = normalizer.normalize_many(payloads, descriptor, now=datetime.now(UTC))
    LOG.info(
        "%d payload(s): %d measurement(s), %d rejection(s)",
        len(payloads),
        len(batch.measurements),
        len(batch.rejections),
    )
    for measurement in batch.measurements:
        print(
            f"  OK   {measurement.pollutant:<5} {measurement.value:8.1f} {measurement.unit} "
            f"at ({measurement.latitude:.4f}, {measurement.longitude:.4f}) {measurement.observed_at.isoformat()}"
        )
    for rejection in batch.rejections:
        print(f"  SKIP {rejection.pollutant or '?':<5} {rejection.reason}: {rejection.detail}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
