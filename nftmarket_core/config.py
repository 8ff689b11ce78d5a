"""
TOML-based configuration for an NFTMarket devnet.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Amounts are decimal ether strings (``"0.5"``) and are converted to wei
where the chain and contracts are built.

Usage:
    from nftmarket_core.config import load_config
    cfg = load_config("nftmarket.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]


@dataclass
class ChainConfig:
    """Simulated chain settings."""
    chain_id: int = 31337
    accounts: int = 10
    initial_balance: str = "10000"      # ether per account
    block_time: int = 1                 # seconds added per mined block
    genesis_timestamp: int = 0          # 0 = wall-clock time at start
    seed: str = "test test test test test test test test test test test junk"
    check_invariants: bool = True


@dataclass
class NFTConfig:
    """GHLocaleNFT collection settings."""
    name: str = "GHLocale"
    symbol: str = "GHL"
    mint_price: str = "0.5"             # ether
    max_supply: int = 10_000
    base_uri: str = "ipfs://ghlocale/"


@dataclass
class MarketplaceConfig:
    """Auction marketplace settings."""
    fee_bps: int = 250                  # 2.5 % of the winning bid
    min_bid_increment_bps: int = 0      # 0 = any higher bid
    max_duration: int = 30 * 24 * 60 * 60
    # Anti-sniping: a bid landing within extension_window seconds of the
    # end pushes the end back by extension_seconds.  0 disables it.
    extension_window: int = 0
    extension_seconds: int = 0


@dataclass
class APIConfig:
    """REST API settings."""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8545
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)  # allowed CORS origins (empty = no CORS)
    max_body_bytes: int = 1_048_576    # 1 MiB max request body


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class NFTMarketConfig:
    """Top-level configuration container."""
    chain: ChainConfig = field(default_factory=ChainConfig)
    nft: NFTConfig = field(default_factory=NFTConfig)
    marketplace: MarketplaceConfig = field(default_factory=MarketplaceConfig)
    api: APIConfig = field(default_factory=APIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> NFTMarketConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        NFTMARKET_SEED          -> chain.seed
        NFTMARKET_CHAIN_ID      -> chain.chain_id
        NFTMARKET_FEE_BPS       -> marketplace.fee_bps
        NFTMARKET_API_HOST      -> api.host
        NFTMARKET_API_PORT      -> api.port
        NFTMARKET_API_KEY       -> api.api_key
        NFTMARKET_CORS_ORIGINS  -> api.cors_origins   (comma-separated)
        NFTMARKET_LOG_LEVEL     -> logging.level
        NFTMARKET_LOG_FMT       -> logging.format
    """
    cfg = NFTMarketConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("chain", cfg.chain),
                ("nft", cfg.nft),
                ("marketplace", cfg.marketplace),
                ("api", cfg.api),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("NFTMARKET_SEED"):
        cfg.chain.seed = v
    if v := os.environ.get("NFTMARKET_CHAIN_ID"):
        cfg.chain.chain_id = int(v)
    if v := os.environ.get("NFTMARKET_FEE_BPS"):
        cfg.marketplace.fee_bps = int(v)
    if v := os.environ.get("NFTMARKET_API_HOST"):
        cfg.api.host = v
    if v := os.environ.get("NFTMARKET_API_PORT"):
        cfg.api.port = int(v)
        cfg.api.enabled = True
    if v := os.environ.get("NFTMARKET_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("NFTMARKET_CORS_ORIGINS"):
        cfg.api.cors_origins = [o.strip() for o in v.split(",") if o.strip()]
    if v := os.environ.get("NFTMARKET_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("NFTMARKET_LOG_FMT"):
        cfg.logging.format = v

    return cfg
