"""
A ready-to-use marketplace deployment on a fresh simulated chain.

Account 0 deploys the ``GHLocaleNFT`` collection and the
``NftMarketPlaceAuction`` marketplace; every other account is an
unlocked user.  The API server and ``run_devnet.py`` drive a ``Devnet``.
"""

from __future__ import annotations

import logging
from typing import Any

from nftmarket_core.account import Account
from nftmarket_core.chain import Chain
from nftmarket_core.config import NFTMarketConfig
from nftmarket_core.events import TxReceipt
from nftmarket_core.marketplace import NftMarketPlaceAuction
from nftmarket_core.nft import GHLocaleNFT
from nftmarket_core.units import parse_ether

logger = logging.getLogger("nftmarket_devnet")


class Devnet:
    """Chain + deployed contracts + convenience transaction helpers."""

    def __init__(self, config: NFTMarketConfig | None = None):
        self.config = config or NFTMarketConfig()
        cfg = self.config
        self.chain = Chain.from_config(cfg.chain)
        if not self.chain.accounts:
            raise ValueError("devnet needs at least one account to deploy from")
        self.deployer: Account = self.chain.accounts[0]
        self.nft: GHLocaleNFT = self.deployer.deploy(
            GHLocaleNFT,
            cfg.nft.name,
            cfg.nft.symbol,
            parse_ether(cfg.nft.mint_price),
            cfg.nft.max_supply,
            cfg.nft.base_uri,
        )
        self.marketplace: NftMarketPlaceAuction = self.deployer.deploy(
            NftMarketPlaceAuction,
            cfg.marketplace.fee_bps,
            cfg.marketplace.min_bid_increment_bps,
            cfg.marketplace.max_duration,
            cfg.marketplace.extension_window,
            cfg.marketplace.extension_seconds,
        )
        logger.info(
            f"Devnet ready: nft={self.nft.address} marketplace={self.marketplace.address}"
        )

    def account(self, who: Any) -> Account:
        """Resolve an account index (``0``, ``"1"``) or address."""
        if isinstance(who, str) and who.isdigit():
            who = int(who)
        return self.chain.account(who)

    # ── transaction helpers ─────────────────────────────────────

    def mint(self, who: Any, value: int | None = None) -> TxReceipt:
        price = self.nft.price if value is None else value
        return self.nft.connect(self.account(who)).mint(value=price)

    def approve(self, who: Any, token_id: int) -> TxReceipt:
        return self.nft.connect(self.account(who)).approve(self.marketplace, token_id)

    def create_auction(self, who: Any, token_id: int, starting_price: int, end_time: int) -> TxReceipt:
        return self.marketplace.connect(self.account(who)).createAuction(
            self.nft, token_id, starting_price, end_time,
        )

    def bid(self, who: Any, auction_id: int, amount: int) -> TxReceipt:
        return self.marketplace.connect(self.account(who)).placeBid(auction_id, value=amount)

    def end_auction(self, who: Any, auction_id: int) -> TxReceipt:
        return self.marketplace.connect(self.account(who)).endAuction(auction_id)

    def cancel_auction(self, who: Any, auction_id: int) -> TxReceipt:
        return self.marketplace.connect(self.account(who)).cancelAuction(auction_id)

    def withdraw(self, who: Any) -> TxReceipt:
        return self.marketplace.connect(self.account(who)).withdraw()

    # ── queries ─────────────────────────────────────────────────

    def auctions(self) -> list[dict]:
        count = self.marketplace.auctionCount()
        return [self.marketplace.getAuction(i).to_dict() for i in range(count)]

    def token_info(self, token_id: int) -> dict:
        return {
            "tokenId": token_id,
            "owner": self.nft.ownerOf(token_id),
            "approved": self.nft.getApproved(token_id),
            "tokenURI": self.nft.tokenURI(token_id),
        }

    def status(self) -> dict:
        return {
            **self.chain.status(),
            "nft": self.nft.address,
            "marketplace": self.marketplace.address,
            "minted": self.nft.totalSupply(),
            "auctions": self.marketplace.auctionCount(),
            "active_auctions": len(self.marketplace.activeAuctions()),
            "fee_bps": self.marketplace.feeBps(),
        }
