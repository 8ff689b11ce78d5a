"""
English-auction marketplace for ERC-721 tokens.

Lifecycle of an auction:

  1. ``createAuction``: the token owner (who has approved the
     marketplace) escrows the token with a starting price and end time.
  2. ``placeBid``: payable; each bid must beat the current highest bid.
     The outbid amount is credited to the previous bidder's pending
     returns; it is never pushed, so a bidder that cannot receive ether
     cannot block the auction.
  3. ``endAuction``: anyone, once ``block.timestamp >= endTime``; the
     token goes to the winner (or back to the seller when nobody bid) and
     the proceeds, minus the marketplace fee, are credited to the seller.
  4. ``withdraw``: pull every credited amount (non-reentrant).

A seller may ``cancelAuction`` while it has no bids.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import IntEnum

from nftmarket_core.contract import Contract, external, non_reentrant, require
from nftmarket_core.crypto_utils import ZERO_ADDRESS
from nftmarket_core.errors import Revert
from nftmarket_core.nft import ERC721_RECEIVED
from nftmarket_core.units import bps_of

logger = logging.getLogger("nftmarket_marketplace")

MAX_FEE_BPS = 1_000                     # 10 %
DEFAULT_FEE_BPS = 250                   # 2.5 %
DEFAULT_MAX_DURATION = 30 * 24 * 60 * 60


class AuctionStatus(IntEnum):
    ACTIVE = 0
    ENDED = 1
    CANCELLED = 2


@dataclass
class Auction:
    """On-chain auction record."""
    auction_id: int
    nft: str
    token_id: int
    seller: str
    starting_price: int
    start_time: int
    end_time: int
    highest_bidder: str = ZERO_ADDRESS
    highest_bid: int = 0
    bid_count: int = 0
    status: AuctionStatus = AuctionStatus.ACTIVE

    @property
    def has_bids(self) -> bool:
        return self.highest_bidder != ZERO_ADDRESS

    def is_live(self) -> bool:
        return self.status is AuctionStatus.ACTIVE

    def to_dict(self) -> dict:
        return {
            "auctionId": self.auction_id,
            "nft": self.nft,
            "tokenId": self.token_id,
            "seller": self.seller,
            "startingPrice": str(self.starting_price),
            "startTime": self.start_time,
            "endTime": self.end_time,
            "highestBidder": self.highest_bidder,
            "highestBid": str(self.highest_bid),
            "bidCount": self.bid_count,
            "status": self.status.name,
        }


class NftMarketPlaceAuction(Contract):
    """Auction house holding NFTs in escrow and bids in pull-payment balances."""

    def __init__(
        self,
        fee_bps: int = DEFAULT_FEE_BPS,
        min_bid_increment_bps: int = 0,
        max_duration: int = DEFAULT_MAX_DURATION,
        extension_window: int = 0,
        extension_seconds: int = 0,
    ):
        super().__init__()
        require(0 <= fee_bps <= MAX_FEE_BPS, "Fee too high")
        require(min_bid_increment_bps >= 0, "Invalid bid increment")
        require(max_duration > 0, "Invalid max duration")
        require(extension_window >= 0 and extension_seconds >= 0, "Invalid extension")
        # both set or both disabled
        require((extension_window == 0) == (extension_seconds == 0), "Invalid extension")
        self.fee = fee_bps
        self.fee_recipient = self.owner
        self.min_bid_increment_bps = min_bid_increment_bps
        self.max_duration = max_duration
        self.extension_window = extension_window
        self.extension_seconds = extension_seconds
        self.auctions: list[Auction] = []
        self.pending: dict[str, int] = {}

    # ── helpers ─────────────────────────────────────────────────

    def _get(self, auction_id: int) -> Auction:
        require(isinstance(auction_id, int) and 0 <= auction_id < len(self.auctions),
                "Auction does not exist")
        return self.auctions[auction_id]

    def _credit(self, account: str, amount: int) -> None:
        if amount:
            self.pending[account] = self.pending.get(account, 0) + amount

    def _min_next_bid(self, auction: Auction) -> int:
        if not auction.has_bids:
            return auction.starting_price
        increment = max(1, bps_of(auction.highest_bid, self.min_bid_increment_bps))
        return auction.highest_bid + increment

    # ── auction lifecycle ───────────────────────────────────────

    @external("createAuction")
    def create_auction(self, nft: str, token_id: int, starting_price: int, end_time: int) -> int:
        seller = self.msg.sender
        now = self.block.timestamp
        require(starting_price > 0, "Invalid starting price")
        require(self.call(nft, "ownerOf", token_id) == seller, "Not owner")
        require(end_time > now, "Invalid end time")
        require(end_time - now <= self.max_duration, "Duration too long")
        approved = (
            self.call(nft, "getApproved", token_id) == self.address
            or self.call(nft, "isApprovedForAll", seller, self.address)
        )
        require(approved, "Marketplace not approved")

        self.call(nft, "transferFrom", seller, self.address, token_id)

        auction_id = len(self.auctions)
        self.auctions.append(Auction(
            auction_id=auction_id,
            nft=nft,
            token_id=token_id,
            seller=seller,
            starting_price=starting_price,
            start_time=now,
            end_time=end_time,
        ))
        self.emit(
            "AuctionCreated",
            auctionId=auction_id,
            nft=nft,
            tokenId=token_id,
            seller=seller,
            startingPrice=starting_price,
            endTime=end_time,
        )
        logger.info(f"Auction {auction_id} created for token {token_id} ending {end_time}")
        return auction_id

    @external("placeBid", payable=True)
    def place_bid(self, auction_id: int) -> None:
        auction = self._get(auction_id)
        bidder = self.msg.sender
        amount = self.msg.value
        now = self.block.timestamp
        require(auction.is_live(), "Auction not active")
        require(now < auction.end_time, "Auction Ended")
        require(bidder != auction.seller, "Seller cannot bid")
        if not auction.has_bids:
            require(amount >= auction.starting_price, "Bid below starting price")
        else:
            require(amount >= self._min_next_bid(auction), "Bid too low")

        previous_bidder, previous_bid = auction.highest_bidder, auction.highest_bid
        auction.highest_bidder = bidder
        auction.highest_bid = amount
        auction.bid_count += 1
        if previous_bidder != ZERO_ADDRESS:
            self._credit(previous_bidder, previous_bid)

        if self.extension_window and auction.end_time - now <= self.extension_window:
            auction.end_time += self.extension_seconds
            self.emit("AuctionExtended", auctionId=auction_id, endTime=auction.end_time)

        self.emit("BidPlaced", auctionId=auction_id, bidder=bidder, amount=amount)

    @external("endAuction")
    def end_auction(self, auction_id: int) -> str:
        auction = self._get(auction_id)
        require(auction.is_live(), "Auction not active")
        require(self.block.timestamp >= auction.end_time, "Auction not yet ended")
        auction.status = AuctionStatus.ENDED

        if auction.has_bids:
            winner, amount = auction.highest_bidder, auction.highest_bid
            fee = bps_of(amount, self.fee)
            self._credit(auction.seller, amount - fee)
            self._credit(self.fee_recipient, fee)
            self.call(auction.nft, "transferFrom", self.address, winner, auction.token_id)
        else:
            winner, amount = ZERO_ADDRESS, 0
            self.call(auction.nft, "transferFrom", self.address, auction.seller, auction.token_id)

        self.emit("AuctionEnded", auctionId=auction_id, winner=winner, amount=amount)
        logger.info(f"Auction {auction_id} ended: winner={winner} amount={amount}")
        return winner

    @external("cancelAuction")
    def cancel_auction(self, auction_id: int) -> None:
        auction = self._get(auction_id)
        require(self.msg.sender == auction.seller, "Not seller")
        require(auction.is_live(), "Auction not active")
        require(not auction.has_bids, "Auction has bids")
        auction.status = AuctionStatus.CANCELLED
        self.call(auction.nft, "transferFrom", self.address, auction.seller, auction.token_id)
        self.emit("AuctionCancelled", auctionId=auction_id)

    @external("withdraw")
    @non_reentrant
    def withdraw_pending(self) -> int:
        account = self.msg.sender
        amount = self.pending.get(account, 0)
        require(amount > 0, "Nothing to withdraw")
        # zero before the external send
        del self.pending[account]
        self.send_value(account, amount)
        self.emit("Withdrawal", account=account, amount=amount)
        return amount

    # ── views ───────────────────────────────────────────────────

    @external("getAuction", view=True)
    def get_auction(self, auction_id: int) -> Auction:
        return replace(self._get(auction_id))

    @external("auctionCount", view=True)
    def auction_count(self) -> int:
        return len(self.auctions)

    @external("activeAuctions", view=True)
    def active_auctions(self) -> list[int]:
        return [a.auction_id for a in self.auctions if a.is_live()]

    @external("pendingReturns", view=True)
    def pending_returns(self, account: str) -> int:
        return self.pending.get(account, 0)

    @external("getTimestamp", view=True)
    def get_timestamp(self) -> int:
        return self.block.timestamp

    @external("feeBps", view=True)
    def fee_bps(self) -> int:
        return self.fee

    @external("feeRecipient", view=True)
    def get_fee_recipient(self) -> str:
        return self.fee_recipient

    # ── owner admin ─────────────────────────────────────────────

    @external("setFee")
    def set_fee(self, fee_bps: int) -> None:
        self.only_owner()
        require(0 <= fee_bps <= MAX_FEE_BPS, "Fee too high")
        self.fee = fee_bps
        self.emit("FeeUpdated", feeBps=fee_bps)

    @external("setFeeRecipient")
    def set_fee_recipient(self, recipient: str) -> None:
        self.only_owner()
        require(recipient != ZERO_ADDRESS, "Invalid recipient")
        self.fee_recipient = recipient
        self.emit("FeeRecipientUpdated", recipient=recipient)

    # ── ERC-721 receiver ────────────────────────────────────────

    @external("onERC721Received")
    def on_erc721_received(self, operator: str, from_: str, token_id: int, data: bytes) -> str:
        return ERC721_RECEIVED

    # ── fund safety ─────────────────────────────────────────────

    def check_invariants(self) -> list[str]:
        errors = []
        owed = sum(self.pending.values())
        live = [a for a in self.auctions if a.is_live()]
        escrowed_bids = sum(a.highest_bid for a in live)
        if self.balance < owed + escrowed_bids:
            errors.append(
                f"Insolvent: balance {self.balance} < pending {owed} + live bids {escrowed_bids}"
            )
        for a in live:
            try:
                holder = self.chain.static_call(self.address, a.nft, "ownerOf", (a.token_id,))
            except Revert as exc:
                errors.append(f"Auction {a.auction_id}: token lookup failed ({exc.reason})")
                continue
            if holder != self.address:
                errors.append(f"Auction {a.auction_id}: token {a.token_id} not in escrow")
        return errors
