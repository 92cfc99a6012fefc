"""
Tracewire Command Line Interface

Run a local thread profile or poll a collector for agent commands.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from typing import Any, List, Optional

from tracewire.collector.client import CollectorClient
from tracewire.core.config import TracewireConfig
from tracewire.core.errors import TracewireError
from tracewire.core.logging import setup_logging
from tracewire.profiling.node import Node
from tracewire.profiling.profile import WIRE_BUCKETS, ThreadProfile


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="tracewire",
        description="Tracewire thread profiler and collector client",
    )
    parser.add_argument("--log-level", help="Log level (defaults to TRACEWIRE_LOG_LEVEL)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    profile_parser = subparsers.add_parser("profile", help="Profile this process")
    profile_parser.add_argument("--duration", type=float, default=1.0, help="Seconds to sample")
    profile_parser.add_argument("--interval", type=float, default=0.1, help="Seconds between polls")
    profile_parser.add_argument("--format", choices=["json", "tree"], default="tree")

    poll_parser = subparsers.add_parser("poll", help="Poll the collector for agent commands")
    poll_parser.add_argument("--license-key", help="License key")
    poll_parser.add_argument("--host", help="Collector host")
    poll_parser.add_argument("--port", type=int, help="Collector port")

    args = parser.parse_args(argv)
    config = TracewireConfig()
    setup_logging(args.log_level or config.log_level.value, config.log_format)

    if args.command == "profile":
        return run_profile(args.duration, args.interval, args.format)
    if args.command == "poll":
        return asyncio.run(poll_commands(args, config))

    parser.print_help()
    return 1


def run_profile(duration: float, interval: float, output_format: str) -> int:
    profile = ThreadProfile(-1, duration, interval)
    profile.run().join()

    if output_format == "json":
        print(json.dumps(profile.to_dict(), indent=2))
        return 0

    print(f"polls={profile.poll_count} samples={profile.sample_count}")
    for bucket in WIRE_BUCKETS:
        forest = profile.traces[bucket]
        print(f"{bucket.value.upper()} ({len(forest)} roots)")
        for node in forest.values():
            _print_node(node, 1)
    return 0


def _print_node(node: Node, depth: int) -> None:
    frame = node.frame
    print(f"{'  ' * depth}{frame.method} ({frame.file}:{frame.line}) "
          f"total={node.total_count} runnable={node.runnable_count}")
    for child in node.children.values():
        _print_node(child, depth + 1)


async def poll_commands(args: Any, config: TracewireConfig) -> int:
    if args.license_key:
        config.license_key = args.license_key
    if args.host:
        config.collector.host = args.host
    if args.port:
        config.collector.port = args.port

    async with CollectorClient.from_config(config) as client:
        try:
            await client.connect({"language": config.agent.language, "pid": config.agent.pid})
            commands = await client.get_agent_commands()
            print(json.dumps(commands, indent=2))
            await client.shutdown(time.time())
        except TracewireError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
