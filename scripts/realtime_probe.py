#!/usr/bin/env python3
"""Passive realtime probe for Damoov device updates.

Runs the pydamoov realtime pipeline from ``DAMOOV_*`` environment
variables and prints every device update and risk event as it arrives.

Use this to verify credentials, subscription scope and payload shapes.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
import time
from dataclasses import dataclass
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pydamoov import DamoovConfig, DeviceSnapshot, RealtimePipeline, RiskEvent  # noqa: E402
from pydamoov._redact import redact_for_log  # noqa: E402

_LOG = logging.getLogger("realtime_probe")


@dataclass
class ProbeStats:
    started_at: float
    device_updates: int = 0
    risk_events: int = 0
    last_update_at: float | None = None


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Passive probe for the Damoov realtime websocket.",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--device",
        default=None,
        help="Subscribe to a single device token instead of the whole instance.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Pretty-print the raw (redacted) device_update payload.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_summary(pipeline: RealtimePipeline, stats: ProbeStats) -> None:
    status = pipeline.status()
    print("[probe] Summary")
    print(f"[probe]   runtime_s      : {time.time() - stats.started_at:.1f}")
    print(f"[probe]   device_updates : {stats.device_updates}")
    print(f"[probe]   risk_events    : {stats.risk_events}")
    print(f"[probe]   devices        : {status.device_count}")
    print(f"[probe]   state          : {status.state}")


async def _run(args: argparse.Namespace) -> int:
    overrides = {"device_token": args.device} if args.device else {}
    config = DamoovConfig.from_env(**overrides)
    stats = ProbeStats(started_at=time.time())

    def on_device_update(snapshot: DeviceSnapshot) -> None:
        stats.device_updates += 1
        stats.last_update_at = time.time()
        print(
            f"[probe] update device={snapshot.device_token} speed={snapshot.speed} "
            f"limit={snapshot.speed_limit} risk={snapshot.risk_tier}"
        )
        if args.json:
            print(json.dumps(redact_for_log(snapshot.raw), indent=2, default=str))

    def on_risk_event(event: RiskEvent) -> None:
        stats.risk_events += 1
        print(f"[probe] RISK device={event.device_token} tier={event.risk_tier} overspeed={event.overspeed_amount:.1f}mph")

    pipeline = RealtimePipeline(config, on_device_update=on_device_update, on_risk_event=on_risk_event)
    if not await pipeline.start():
        print("[probe] Pipeline not started; check DAMOOV_* settings", file=sys.stderr)
        return 2

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        timeout = args.duration if args.duration > 0 else None
        try:
            await asyncio.wait_for(stop.wait(), timeout=timeout)
        except TimeoutError:
            _LOG.info("Probe duration elapsed")
    finally:
        _print_summary(pipeline, stats)
        await pipeline.stop()
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(_main())
