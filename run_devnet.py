#!/usr/bin/env python3
"""
NFTMarket devnet runner: starts a simulated chain with the GHLocaleNFT
collection and the auction marketplace deployed, served over the REST API.

Usage:
    python run_devnet.py --config nftmarket.toml --port 8545
    python run_devnet.py --log-level DEBUG --log-format json --log-file logs/devnet.log

Environment variables (see nftmarket_core.config):
    NFTMARKET_SEED, NFTMARKET_API_HOST, NFTMARKET_API_PORT, NFTMARKET_API_KEY, ...
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from nftmarket_core.api import APIServer  # noqa: E402
from nftmarket_core.config import load_config  # noqa: E402
from nftmarket_core.devnet import Devnet  # noqa: E402
from nftmarket_core.logging_config import setup_from_config  # noqa: E402
from nftmarket_core.units import format_amount  # noqa: E402

logger = logging.getLogger("nftmarket_devnet")


def parse_args(argv: list[str] | None = None):
    p = argparse.ArgumentParser(description="NFTMarket local devnet")
    p.add_argument("--config", default=None, help="Path to nftmarket.toml config file")
    p.add_argument("--host", default=None, help="API listen host")
    p.add_argument("--port", type=int, default=None, help="API listen port")
    p.add_argument("--log-level", default=None,
                   choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                   help="Root log level")
    p.add_argument("--log-format", default=None, choices=["human", "json"],
                   help="Console log format")
    p.add_argument("--log-file", default=None, help="Also write JSON logs to this file")
    return p.parse_args(argv)


def build_config(args):
    """Load config (TOML + env overrides), then apply CLI flags on top."""
    cfg = load_config(args.config)
    if args.host:
        cfg.api.host = args.host
    if args.port is not None:
        cfg.api.port = args.port
    if args.log_level:
        cfg.logging.level = args.log_level
    if args.log_format:
        cfg.logging.format = args.log_format
    if args.log_file:
        cfg.logging.file = args.log_file
    return cfg


async def main(argv: list[str] | None = None):
    args = parse_args(argv)
    cfg = build_config(args)
    setup_from_config(cfg.logging)

    devnet = Devnet(cfg)
    for i, acc in enumerate(devnet.chain.accounts):
        logger.info(f"Account #{i}: {acc.address} ({format_amount(acc.balance())})")

    if not cfg.api.enabled:
        logger.warning("API disabled in config; nothing to serve")
        return

    api = APIServer(devnet, host=cfg.api.host, port=cfg.api.port, api_config=cfg.api)
    await api.start()
    try:
        while True:
            await asyncio.sleep(1)
    finally:
        await api.stop()
        logger.info("Devnet stopped")


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    main_sync()
