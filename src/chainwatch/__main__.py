"""Command-line entry point: ``python -m chainwatch``.

Without ``--serve`` the monitor runs headless, writing alerts and status
changes to the log. With ``--serve`` the snapshot API is served by uvicorn.
"""

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Sequence

import uvicorn

from chainwatch.adapters.frameworks.fastapi import create_app
from chainwatch.adapters.geoip import IpApiResolver
from chainwatch.adapters.logging import install_log_buffer
from chainwatch.adapters.storage.ring_buffer import RingBufferLogStorage
from chainwatch.config import MonitorConfig, config_from_env, load_config_file
from chainwatch.core.errors import ConfigError, StorageError
from chainwatch.runtime.orchestrator import MonitorRuntime

logger = logging.getLogger("chainwatch")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chainwatch", description="Monitor Cardano nodes via their metrics."
    )
    parser.add_argument(
        "-c",
        "--config",
        help="TOML file with [[node]] entries (default: single node from env)",
    )
    parser.add_argument(
        "--serve",
        metavar="HOST:PORT",
        help="serve the snapshot API instead of running headless",
    )
    parser.add_argument(
        "--export",
        metavar="NODE",
        help="print the node's archived snapshots as CSV and exit",
    )
    parser.add_argument(
        "--live", action="store_true", help="with --export, export the current state"
    )
    parser.add_argument(
        "--no-persist",
        action="store_true",
        help="do not write snapshot archives or alert logs",
    )
    parser.add_argument(
        "--no-geoip", action="store_true", help="do not resolve peer locations"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def load_config(args: argparse.Namespace) -> MonitorConfig:
    if args.config:
        return load_config_file(args.config)
    if os.environ.get("CHAINWATCH_CONFIG"):
        return load_config_file(os.environ["CHAINWATCH_CONFIG"])
    return config_from_env()


def parse_bind(value: str) -> tuple[str, int]:
    host, sep, port = value.rpartition(":")
    if not sep or not port.isdigit():
        raise ConfigError(f"--serve expects HOST:PORT, got {value!r}")
    return host or "127.0.0.1", int(port)


async def run_headless(runtime: MonitorRuntime) -> None:
    await runtime.start()
    try:
        await asyncio.Event().wait()
    finally:
        await runtime.stop()


async def export(runtime: MonitorRuntime, name: str, live: bool) -> str:
    if live:
        await runtime.refresh(name)
    try:
        return await runtime.export_csv(name, live=live)
    finally:
        await runtime.stop()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args)
        bind = parse_bind(args.serve) if args.serve else None
    except ConfigError as exc:
        print(f"chainwatch: {exc}", file=sys.stderr)
        return 2

    log_storage = RingBufferLogStorage()
    install_log_buffer(log_storage)
    runtime = MonitorRuntime(
        config.nodes,
        config.settings,
        resolver=None if args.no_geoip else IpApiResolver(),
        persist=not args.no_persist,
    )

    if args.export:
        if args.export not in runtime.names:
            print(f"chainwatch: unknown node {args.export!r}", file=sys.stderr)
            return 2
        try:
            sys.stdout.write(asyncio.run(export(runtime, args.export, args.live)))
        except StorageError as exc:
            print(f"chainwatch: {exc}", file=sys.stderr)
            return 1
        return 0

    if bind is not None:
        host, port = bind
        uvicorn.run(create_app(runtime, log_storage), host=host, port=port)
        return 0

    try:
        asyncio.run(run_headless(runtime))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
