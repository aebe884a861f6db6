#!/usr/bin/env python3
"""Replay saved source payloads through the fusion engine.

Each input file holds the raw JSON one source returned (a list of
records, a single record, or a vendor envelope). The file stem becomes
the source id. The files are fused together for ``--cycles`` refresh
cycles and the final snapshot is printed.

Usage
-----
::

    python scripts/replay_payloads.py kcca.json purpleair.json
    python scripts/replay_payloads.py openaq.json --format openaq --records-key results
    python scripts/replay_payloads.py waqi.json --format waqi --cycles 3 --json

Options::

    --format NAME        Payload format of every file (default: canonical)
    --reliability CLASS  Declared reliability of every source (default: community)
    --records-key KEY    Split envelopes on this key (e.g. ``results``)
    --cycles N           Run N refresh cycles (default: 1)
    --now ISO            Pin the engine clock (default: current time)
    --max-age HOURS      Oldest reading accepted (default: one year)
    --json               Output the snapshot as JSON
    --output FILE        Write output to FILE instead of stdout
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from airfusion import (  # noqa: E402
    AlertTransition,
    FusionConfig,
    FusionService,
    ReliabilityClass,
    Snapshot,
    SourceDescriptor,
    StaticConnector,
)
from airfusion.ingestion.collect import extract_records  # noqa: E402


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _load_connector(path: Path, args: argparse.Namespace) -> StaticConnector:
    body = json.loads(path.read_text(encoding="utf-8"))
    descriptor = SourceDescriptor(
        source_id=path.stem,
        declared_reliability=ReliabilityClass(args.reliability),
        payload_format=args.format,
    )
    return StaticConnector(descriptor, extract_records(body, args.records_key))


def _render(snapshot: Snapshot, transitions: list[AlertTransition]) -> str:
    out: list[str] = [_section(f"CYCLE {snapshot.cycle}")]
    summary = snapshot.summary
    out.append(f"  generated : {snapshot.generated_at}")
    out.append(f"  sources   : {', '.join(summary.active_sources) or '-'}")
    if summary.unavailable_sources:
        out.append(f"  down      : {', '.join(summary.unavailable_sources)}")
    if summary.quality_flags:
        out.append(f"  flags     : {', '.join(summary.quality_flags)}")
    for reason, count in sorted(summary.rejection_counts.items()):
        out.append(f"  rejected  : {count} {reason}")

    out.append(_section("CONSENSUS"))
    for estimate in snapshot.consensus:
        marker = " DIVERGENT" if estimate.divergent else ""
        out.append(
            f"  {estimate.pollutant:<5} cell={estimate.cell} value={estimate.value:.1f} "
            f"conf={estimate.confidence:.2f} tier={estimate.severity.name}{marker}"
        )

    out.append(_section("HOTSPOTS"))
    for hotspot in snapshot.hotspots:
        out.append(
            f"  {hotspot.hotspot_id} {hotspot.pollutant} ({hotspot.latitude:.4f}, {hotspot.longitude:.4f}) "
            f"worst={hotspot.worst_value:.1f} tier={hotspot.severity.name} missed={hotspot.missed_cycles}"
        )

    out.append(_section("ALERTS"))
    for transition in transitions:
        out.append(
            f"  {transition.alert_id} {transition.old_state} -> {transition.new_state} "
            f"[{transition.reason}] cycle {transition.cycle}"
        )
    for action in summary.recommended_actions:
        out.append(f"  * {action}")
    return "\n".join(out)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Replay saved source payloads through the fusion engine.")
    parser.add_argument("files", nargs="+", type=Path, help="Payload JSON files, one per source")
    parser.add_argument("--format", default="canonical", help="Payload format of every file")
    parser.add_argument(
        "--reliability",
        default=ReliabilityClass.COMMUNITY.value,
        choices=[member.value for member in ReliabilityClass],
        help="Declared reliability of every source",
    )
    parser.add_argument("--records-key", help="Split envelopes on this key")
    parser.add_argument("--now", type=datetime.fromisoformat, help="Pin the engine clock to this ISO time")
    parser.add_argument("--max-age", type=float, default=24 * 365, help="Oldest reading accepted, in hours")
    parser.add_argument("--cycles", type=int, default=1, help="Number of refresh cycles to run")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--output", "-o", help="Write output to FILE instead of stdout")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    connectors = [_load_connector(path, args) for path in args.files]
    transitions: list[AlertTransition] = []
    # Replayed payloads carry their original timestamps.
    config = FusionConfig.from_env(max_measurement_age=args.max_age * 3600)
    pinned: datetime | None = args.now
    if pinned is not None and pinned.tzinfo is None:
        pinned = pinned.replace(tzinfo=UTC)

    def clock() -> datetime:
        return pinned if pinned is not None else datetime.now(UTC)

    async with FusionService(connectors, config, clock=clock, periodic=False) as service:
        service.subscribe_alerts(transitions.append)
        snapshot = Snapshot.no_data()
        for _ in range(max(args.cycles, 1)):
            snapshot = await service.refresh_now()
        await service.dispatcher.join()

    if args.json_mode:
        text = snapshot.model_dump_json(indent=2)
    else:
        text = _render(snapshot, transitions)

    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        print(f"Output written to {args.output}", file=sys.stderr)
    else:
        print(text)


if __name__ == "__main__":
    asyncio.run(main())
