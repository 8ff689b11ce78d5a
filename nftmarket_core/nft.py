"""
ERC-721 non-fungible tokens for NFTMarket.

  - ``ERC721``: ownership, balances, single-token and operator approvals,
    ``transferFrom`` / ``safeTransferFrom`` with receiver checks
  - ``GHLocaleNFT``: a paid-mint collection (sequential ids from 1,
    fixed mint price, capped supply, owner-withdrawable proceeds)

Revert reasons follow the messages the marketplace tests match on.
"""

from __future__ import annotations

from nftmarket_core.contract import Contract, external, require
from nftmarket_core.crypto_utils import ZERO_ADDRESS
from nftmarket_core.units import WEI_PER_ETHER

# bytes4(keccak256("onERC721Received(address,address,uint256,bytes)"))
ERC721_RECEIVED = "0x150b7a02"

DEFAULT_MINT_PRICE = WEI_PER_ETHER // 2     # 0.5 ether
DEFAULT_MAX_SUPPLY = 10_000
DEFAULT_BASE_URI = "ipfs://ghlocale/"


class ERC721(Contract):
    """Minimal ERC-721 core."""

    def __init__(self, name: str, symbol: str):
        super().__init__()
        self.token_name = name
        self.token_symbol = symbol
        self._owners: dict[int, str] = {}
        self._balances: dict[str, int] = {}
        self._token_approvals: dict[int, str] = {}
        self._operator_approvals: dict[str, set[str]] = {}

    # ── views ───────────────────────────────────────────────────

    @external("name", view=True)
    def get_name(self) -> str:
        return self.token_name

    @external("symbol", view=True)
    def get_symbol(self) -> str:
        return self.token_symbol

    @external("balanceOf", view=True)
    def balance_of(self, owner: str) -> int:
        require(owner != ZERO_ADDRESS, "Zero address query")
        return self._balances.get(owner, 0)

    @external("ownerOf", view=True)
    def owner_of(self, token_id: int) -> str:
        owner = self._owners.get(token_id)
        require(owner is not None, "Token does not exist")
        return owner

    @external("getApproved", view=True)
    def get_approved(self, token_id: int) -> str:
        require(token_id in self._owners, "Token does not exist")
        return self._token_approvals.get(token_id, ZERO_ADDRESS)

    @external("isApprovedForAll", view=True)
    def is_approved_for_all(self, owner: str, operator: str) -> bool:
        return operator in self._operator_approvals.get(owner, set())

    # ── approvals ───────────────────────────────────────────────

    @external("approve")
    def approve_spender(self, to: str, token_id: int) -> None:
        owner = self.owner_of(token_id)
        require(to != owner, "Approval to current owner")
        sender = self.msg.sender
        require(sender == owner or self.is_approved_for_all(owner, sender), "Not authorized")
        self._token_approvals[token_id] = to
        self.emit("Approval", owner=owner, approved=to, tokenId=token_id)

    @external("setApprovalForAll")
    def set_approval_for_all(self, operator: str, approved: bool) -> None:
        sender = self.msg.sender
        require(operator != sender, "Approve to caller")
        operators = self._operator_approvals.setdefault(sender, set())
        if approved:
            operators.add(operator)
        else:
            operators.discard(operator)
        self.emit("ApprovalForAll", owner=sender, operator=operator, approved=bool(approved))

    # ── transfers ───────────────────────────────────────────────

    @external("transferFrom")
    def transfer_from(self, from_: str, to: str, token_id: int) -> None:
        require(self._is_approved_or_owner(self.msg.sender, token_id), "Not owner nor approved")
        self._transfer(from_, to, token_id)

    @external("safeTransferFrom")
    def safe_transfer_from(self, from_: str, to: str, token_id: int, data: bytes = b"") -> None:
        operator = self.msg.sender
        require(self._is_approved_or_owner(operator, token_id), "Not owner nor approved")
        self._transfer(from_, to, token_id)
        receiver = self.chain.get_contract(to)
        if receiver is not None:
            require(receiver.abi_function("onERC721Received") is not None,
                    "Transfer to non ERC721Receiver")
            ret = self.call(to, "onERC721Received", operator, from_, token_id, data)
            require(ret == ERC721_RECEIVED, "Transfer to non ERC721Receiver")

    # ── internals ───────────────────────────────────────────────

    def _exists(self, token_id: int) -> bool:
        return token_id in self._owners

    def _is_approved_or_owner(self, spender: str, token_id: int) -> bool:
        owner = self.owner_of(token_id)
        return (
            spender == owner
            or self._token_approvals.get(token_id) == spender
            or self.is_approved_for_all(owner, spender)
        )

    def _transfer(self, from_: str, to: str, token_id: int) -> None:
        require(self.owner_of(token_id) == from_, "Incorrect owner")
        require(to != ZERO_ADDRESS, "Transfer to zero address")
        self._token_approvals.pop(token_id, None)
        self._balances[from_] -= 1
        self._balances[to] = self._balances.get(to, 0) + 1
        self._owners[token_id] = to
        self.emit("Transfer", **{"from": from_, "to": to, "tokenId": token_id})

    def _mint(self, to: str, token_id: int) -> None:
        require(to != ZERO_ADDRESS, "Mint to zero address")
        require(not self._exists(token_id), "Token already minted")
        self._balances[to] = self._balances.get(to, 0) + 1
        self._owners[token_id] = to
        self.emit("Transfer", **{"from": ZERO_ADDRESS, "to": to, "tokenId": token_id})


class GHLocaleNFT(ERC721):
    """Paid-mint collection used by the marketplace."""

    def __init__(
        self,
        name: str = "GHLocale",
        symbol: str = "GHL",
        mint_price: int = DEFAULT_MINT_PRICE,
        max_supply: int = DEFAULT_MAX_SUPPLY,
        base_uri: str = DEFAULT_BASE_URI,
    ):
        super().__init__(name, symbol)
        require(max_supply > 0, "Invalid max supply")
        self.price = mint_price
        self.supply_cap = max_supply
        self.base_uri = base_uri
        self.minted = 0

    @external("mint", payable=True)
    def mint_next(self) -> int:
        """Mint the next token id to the caller; returns the id."""
        require(self.minted < self.supply_cap, "Max supply reached")
        require(self.msg.value >= self.price, "Insufficient payment")
        self.minted += 1
        token_id = self.minted
        self._mint(self.msg.sender, token_id)
        return token_id

    @external("tokenURI", view=True)
    def token_uri(self, token_id: int) -> str:
        require(self._exists(token_id), "Token does not exist")
        return f"{self.base_uri}{token_id}"

    @external("totalSupply", view=True)
    def total_supply(self) -> int:
        return self.minted

    @external("mintPrice", view=True)
    def get_mint_price(self) -> int:
        return self.price

    @external("maxSupply", view=True)
    def get_max_supply(self) -> int:
        return self.supply_cap

    # ── owner admin ─────────────────────────────────────────────

    @external("setBaseURI")
    def set_base_uri(self, base_uri: str) -> None:
        self.only_owner()
        self.base_uri = base_uri
        self.emit("BaseURIUpdated", baseURI=base_uri)

    @external("setMintPrice")
    def set_mint_price(self, price: int) -> None:
        self.only_owner()
        self.price = price
        self.emit("MintPriceUpdated", price=price)

    @external("withdraw")
    def withdraw_proceeds(self) -> int:
        self.only_owner()
        amount = self.balance
        require(amount > 0, "Nothing to withdraw")
        self.send_value(self.owner, amount)
        self.emit("Withdrawal", account=self.owner, amount=amount)
        return amount
