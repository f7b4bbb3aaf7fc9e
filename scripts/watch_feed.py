#!/usr/bin/env python3
"""Passive subscriber for a running feed router.

Connects to the real-time WebSocket channel, validates each message,
keeps a local mirror of the committed state (snapshot + patches) and
prints every transition.  Use this to check that overlays would see
stable values only.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path

import aiohttp
from pydantic import TypeAdapter, ValidationError

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from feedrouter.state.events import PatchMessage, SnapshotMessage, StateMessage  # noqa: E402

_MESSAGE = TypeAdapter(StateMessage)


@dataclass
class WatchStats:
    started_at: float
    snapshots: int = 0
    patches: int = 0
    invalid: int = 0
    mirror: dict[str, str] = field(default_factory=dict)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Passive WebSocket subscriber for the feed router.",
    )
    parser.add_argument(
        "--url",
        default="ws://localhost:8787/ws",
        help="Router WebSocket URL.",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Pretty-print every message as received.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _apply(stats: WatchStats, message: StateMessage) -> None:
    if isinstance(message, SnapshotMessage):
        stats.snapshots += 1
        stats.mirror = dict(message.state)
        print(f"[watch] {message.ts} snapshot: {len(message.state)} key(s)")
        return
    stats.patches += 1
    for key, value in sorted(message.changes.items()):
        previous = stats.mirror.get(key)
        stats.mirror[key] = value
        print(f"[watch] {message.ts} {key}: {previous!r} -> {value!r}")


async def _watch(args: argparse.Namespace, stats: WatchStats) -> None:
    async with aiohttp.ClientSession() as session, session.ws_connect(args.url) as ws:
        print(f"[watch] connected to {args.url}")
        async for msg in ws:
            if msg.type != aiohttp.WSMsgType.TEXT:
                continue
            if args.json:
                print(json.dumps(json.loads(msg.data), indent=2, sort_keys=True))
            try:
                message = _MESSAGE.validate_json(msg.data)
            except ValidationError as exc:
                stats.invalid += 1
                print(f"[watch] invalid message: {exc}", file=sys.stderr)
                continue
            if isinstance(message, PatchMessage) and stats.snapshots == 0:
                print("[watch] patch received before snapshot", file=sys.stderr)
            _apply(stats, message)


def _print_summary(stats: WatchStats) -> None:
    runtime = time.time() - stats.started_at
    print("[watch] Summary")
    print(f"[watch]   runtime_s : {runtime:.1f}")
    print(f"[watch]   snapshots : {stats.snapshots}")
    print(f"[watch]   patches   : {stats.patches}")
    print(f"[watch]   invalid   : {stats.invalid}")
    print(f"[watch]   keys      : {len(stats.mirror)}")


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    stats = WatchStats(started_at=time.time())

    async def _run() -> None:
        if args.duration > 0:
            try:
                await asyncio.wait_for(_watch(args, stats), timeout=args.duration)
            except TimeoutError:
                pass
        else:
            await _watch(args, stats)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass
    except aiohttp.ClientError as exc:  # pragma: no cover - network interaction
        print(f"[watch] Connection failed: {exc}", file=sys.stderr)
        return 2
    finally:
        _print_summary(stats)
    return 0


if __name__ == "__main__":
    sys.exit(_main())
