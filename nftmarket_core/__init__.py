"""
NFTMarket - an English-auction NFT marketplace on an in-process chain simulator.

Key features:
- Deterministic hardhat-style accounts with integer wei balances
- Atomic transactions with event logs, receipts and block-time control
- ERC-721 ``GHLocaleNFT`` collection with paid minting
- ``NftMarketPlaceAuction``: escrowed auctions, pull-payment refunds,
  marketplace fees and optional anti-sniping extensions
- Post-transaction fund-safety invariants
- aiohttp REST API for driving a local devnet
"""

__version__ = "1.0.0"
__all__ = [
    "units",
    "crypto_utils",
    "wallet",
    "account",
    "events",
    "contract",
    "chain",
    "invariants",
    "nft",
    "marketplace",
    "testing",
    "devnet",
    "api",
    "config",
    "logging_config",
]
