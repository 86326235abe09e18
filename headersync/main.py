"""
headersync: light-client header synchronizer.

Entry point for the CLI:
  sync [seeds...]   fetch a header range, build the chain, validate checkpoints
  serve PATH        republish an exported header range over JSON-RPC
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional

from headersync.common.config import (
    DEFAULT_CHECKPOINTS,
    DEFAULT_FROM_HEIGHT,
    DEFAULT_PORT,
    DEFAULT_SEEDS,
    DEFAULT_TO_HEIGHT,
    MAX_RETRIES,
    NUM_CONFIRMATIONS,
    SYNC_TIMEOUT,
    SyncConfig,
)
from headersync.common.errors import SyncError
from headersync.rpc.client import DAPIClient
from headersync.rpc.header_api import HeaderIndex, register_header_api
from headersync.rpc.server import RPCServer
from headersync.sync.header_store import HeaderStore
from headersync.sync.header_sync import HeaderSync

logger = logging.getLogger("headersync")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_SUSPECT = 2


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def config_from_args(args: argparse.Namespace) -> SyncConfig:
    return SyncConfig(
        seeds=list(args.seeds) or list(DEFAULT_SEEDS),
        from_height=args.from_height,
        to_height=args.to_height,
        step=args.step,
        parallel=args.parallel,
        port=args.port,
        confirmations=args.confirmations,
        checkpoint_count=args.checkpoints,
        trusted_checkpoints=list(args.checkpoint),
        request_timeout=args.timeout,
        retries=args.retries,
        export_path=args.export,
    )


async def run_sync(config: SyncConfig, client: Optional[DAPIClient] = None) -> int:
    """Run one sync and map its outcome to an exit code."""
    try:
        config.validate()
    except SyncError as e:
        logger.error("Invalid sync configuration: %s", e)
        return EXIT_FAILED

    owns_client = client is None
    if client is None:
        client = DAPIClient(
            config.seeds,
            port=config.port,
            timeout=config.request_timeout,
            retries=config.retries,
            backoff=config.retry_backoff,
        )
    logger.info(
        "Syncing headers %d -> %d from %d seed(s) (%s)",
        config.from_height, config.to_height, len(config.seeds),
        "parallel" if config.parallel else "sequential",
    )
    try:
        result = await HeaderSync(client, config).run()
    except SyncError:
        return EXIT_FAILED
    finally:
        if owns_client:
            await client.close()

    if result.ok:
        return EXIT_OK
    return EXIT_SUSPECT


def serve(path: str, host: str, port: int) -> int:
    import uvicorn

    try:
        store = HeaderStore.load_json(path)
    except (OSError, ValueError, KeyError) as e:
        logger.error("Cannot load header export %s: %s", path, e)
        return EXIT_FAILED

    index = HeaderIndex.from_store(store)
    rpc = RPCServer()
    register_header_api(rpc, index)
    logger.info("Serving %d headers (best height %d) on %s:%d", len(index), index.best_height, host, port)
    uvicorn.run(rpc.app, host=host, port=port, log_level="warning")
    return EXIT_OK


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="headersync",
        description="Light-client block header synchronizer",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Sync a header range from DAPI nodes")
    sync.add_argument(
        "seeds",
        nargs="*",
        help="Seed node addresses (default: built-in test nodes)",
    )
    sync.add_argument(
        "-p", "--parallel",
        action="store_true",
        help="Make parallel requests to DAPI nodes",
    )
    sync.add_argument(
        "-f", "--from",
        dest="from_height",
        type=int,
        default=DEFAULT_FROM_HEIGHT,
        help=f"Block height to start from (default: {DEFAULT_FROM_HEIGHT})",
    )
    sync.add_argument(
        "-t", "--to",
        dest="to_height",
        type=int,
        default=DEFAULT_TO_HEIGHT,
        help=f"Block height to stop parsing onto (default: {DEFAULT_TO_HEIGHT})",
    )
    sync.add_argument(
        "-s", "--step",
        type=int,
        default=0,
        help="Number of blocks to get in a batch (default: 0 = auto)",
    )
    sync.add_argument(
        "--port",
        type=int,
        default=DEFAULT_PORT,
        help=f"DAPI port for seeds given without one (default: {DEFAULT_PORT})",
    )
    sync.add_argument(
        "--timeout",
        type=float,
        default=SYNC_TIMEOUT,
        help=f"Per-request timeout in seconds (default: {SYNC_TIMEOUT})",
    )
    sync.add_argument(
        "--retries",
        type=int,
        default=MAX_RETRIES,
        help=f"Retries per request on transport errors (default: {MAX_RETRIES})",
    )
    sync.add_argument(
        "--confirmations",
        type=int,
        default=NUM_CONFIRMATIONS,
        help=f"Depth after which stale forks are pruned (default: {NUM_CONFIRMATIONS})",
    )
    sync.add_argument(
        "--checkpoints",
        type=int,
        default=DEFAULT_CHECKPOINTS,
        help=f"Number of checkpoints to sample (default: {DEFAULT_CHECKPOINTS})",
    )
    sync.add_argument(
        "--checkpoint",
        action="append",
        default=[],
        metavar="HASH",
        help="Trusted checkpoint hash that must be on the longest chain (repeatable)",
    )
    sync.add_argument(
        "--export",
        type=str,
        default=None,
        metavar="PATH",
        help="Write the assembled header store to a JSON file",
    )

    srv = subparsers.add_parser("serve", help="Serve an exported header file over JSON-RPC")
    srv.add_argument("path", help="Header export written by `sync --export`")
    srv.add_argument("--host", default="127.0.0.1", help="Listen address (default: 127.0.0.1)")
    srv.add_argument(
        "--port",
        type=int,
        default=DEFAULT_PORT,
        help=f"Listen port (default: {DEFAULT_PORT})",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Setup logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.command == "serve":
        return serve(args.path, args.host, args.port)

    try:
        return asyncio.run(run_sync(config_from_args(args)))
    except KeyboardInterrupt:
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
