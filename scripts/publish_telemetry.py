#!/usr/bin/env python3
"""Publish simulated per-field telemetry for one vehicle.

Each field is sent as its own message (``{"value": ...}``) the way vehicle
gateways do, so the reconciler has to assemble a complete record from the
stream. Useful for exercising ``run_service.py`` against a local broker.
"""

from __future__ import annotations

import argparse
import json
import logging
import random
import sys
import time
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from carsync import CarSyncConfig  # noqa: E402

import paho.mqtt.client as mqtt  # noqa: E402

_LOG = logging.getLogger("publish_telemetry")

_GEARS = ["N", "1", "2", "3", "4", "5", "6"]


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Publish simulated vehicle telemetry.")
    parser.add_argument("--vehicle", type=int, default=1, help="Vehicle ID to publish for.")
    parser.add_argument("--cells", type=int, default=2, help="Number of battery cells.")
    parser.add_argument("--rounds", type=int, default=0, help="Number of rounds (0 = until Ctrl+C).")
    parser.add_argument("--delay", type=float, default=0.2, help="Seconds between messages.")
    parser.add_argument("--seed", type=int, default=None, help="Random seed.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    return parser.parse_args()


def _round_messages(
    prefix: str,
    vehicle: int,
    cells: int,
    rng: random.Random,
    lat: float,
    lon: float,
) -> list[tuple[str, Any]]:
    base = f"{prefix}/{vehicle}"
    messages: list[tuple[str, Any]] = [
        (f"{base}/location/latitude", round(lat, 6)),
        (f"{base}/location/longitude", round(lon, 6)),
        (f"{base}/speed", round(rng.uniform(0, 35), 2)),
        (f"{base}/gear", rng.choice(_GEARS)),
    ]
    for cell in range(cells):
        messages.append((f"{base}/battery/{cell}/soc", round(rng.uniform(20, 100), 1)))
        messages.append((f"{base}/battery/{cell}/capacity", 50))
    rng.shuffle(messages)
    return messages


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    settings = CarSyncConfig.from_env().mqtt
    rng = random.Random(args.seed)

    client = mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=f"{settings.client_id}-publisher",
        protocol=mqtt.MQTTv5,
    )
    client.enable_logger(_LOG)
    if settings.username:
        client.username_pw_set(settings.username, settings.password)
    if settings.tls:
        client.tls_set()

    try:
        client.connect(settings.host, settings.port, keepalive=settings.keepalive)
    except OSError as exc:  # pragma: no cover - network/system interaction
        print(f"[publish] Connect failed: {exc}", file=sys.stderr)
        return 2
    client.loop_start()

    lat, lon = 52.52, 13.405
    sent = 0
    rounds = 0
    try:
        while args.rounds == 0 or rounds < args.rounds:
            lat += rng.uniform(-0.001, 0.001)
            lon += rng.uniform(-0.001, 0.001)
            for topic, value in _round_messages(settings.topic_prefix, args.vehicle, args.cells, rng, lat, lon):
                client.publish(topic, json.dumps({"value": value}), qos=settings.qos).wait_for_publish()
                sent += 1
                _LOG.debug("published %s=%s", topic, value)
                time.sleep(args.delay)
            rounds += 1
    except KeyboardInterrupt:
        pass
    finally:
        try:
            client.disconnect()
        finally:
            client.loop_stop()

    print(f"[publish] sent {sent} messages in {rounds} rounds")
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
