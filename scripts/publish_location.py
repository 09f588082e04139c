#!/usr/bin/env python3
"""Run the BusMate location publisher until interrupted.

Position comes either from a JSON HTTP endpoint (``--location-url``) or a
fixed coordinate (``--static LAT LNG``). Broker and timing settings are read
from ``BUSMATE_*`` environment variables and can be overridden here.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import time
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from busmate import (  # noqa: E402
    BusmateConfigError,
    HttpLocationSource,
    LocationSource,
    PublisherConfig,
    StaticLocationSource,
    TelemetryPublisher,
)

_LOG = logging.getLogger("publish_location")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Publish device location to the BusMate MQTT broker.",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--location-url",
        help="HTTP endpoint returning the current position as JSON.",
    )
    source.add_argument(
        "--static",
        nargs=2,
        type=float,
        metavar=("LAT", "LNG"),
        help="Publish a fixed coordinate.",
    )
    parser.add_argument(
        "--hosted",
        action="store_true",
        help="Use the hosted broker instead of the local one.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between publishes (default from config: 15).",
    )
    parser.add_argument(
        "--seats",
        type=int,
        default=None,
        help="Seat count reported with each location.",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _build_config(args: argparse.Namespace) -> PublisherConfig:
    overrides: dict[str, Any] = {}
    if args.hosted:
        overrides["use_local_broker"] = False
    if args.interval is not None:
        overrides["publish_interval"] = args.interval
    if args.seats is not None:
        overrides["seat_count"] = args.seats
    return PublisherConfig.from_env(**overrides).validate()


async def _run(args: argparse.Namespace, config: PublisherConfig) -> int:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_event.set)

    def on_status(status: str) -> None:
        print(f"[publisher] status: {status}")

    http_source: HttpLocationSource | None = None
    source: LocationSource
    if args.location_url:
        http_source = HttpLocationSource(args.location_url)
        source = http_source
    else:
        source = StaticLocationSource(args.static[0], args.static[1])

    publisher = TelemetryPublisher.from_config(config, source, on_status=on_status, logger=_LOG)
    print(f"[publisher] broker   : {config.broker_url}")
    print(f"[publisher] topic    : {config.topic}")
    print(f"[publisher] clientId : {publisher.client_id}")

    started_at = time.time()
    try:
        async with publisher:
            timeout = args.duration if args.duration > 0 else None
            try:
                await asyncio.wait_for(stop_event.wait(), timeout)
            except TimeoutError:
                print(f"[publisher] Reached --duration={args.duration}s, stopping.")
    finally:
        if http_source is not None:
            await http_source.close()

    sample = publisher.last_sample
    print(f"[publisher] runtime_s   : {time.time() - started_at:.1f}")
    if sample is not None:
        print(f"[publisher] last sample : {sample.latitude:.5f}, {sample.longitude:.5f}")
    print(f"[publisher] final status: {publisher.status}")
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _build_config(args)
    except BusmateConfigError as exc:
        print(f"[publisher] Invalid configuration: {exc}", file=sys.stderr)
        return 2

    return asyncio.run(_run(args, config))


if __name__ == "__main__":
    raise SystemExit(_main())
