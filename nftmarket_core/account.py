"""
Account management for NFTMarket.

High-level account abstraction that binds a wallet to a chain and
provides convenience methods for value transfers and deployments.
Accounts compare equal to their address, so ``nft.ownerOf(1) == alice``
reads naturally in tests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from nftmarket_core.wallet import Wallet

if TYPE_CHECKING:
    from nftmarket_core.chain import Chain
    from nftmarket_core.contract import Contract
    from nftmarket_core.events import TxReceipt


class Account:
    """An externally owned account (EOA) on a simulated chain."""

    def __init__(self, wallet: Wallet, chain: Chain | None = None):
        self.wallet = wallet
        self.address: str = wallet.address
        self.chain = chain

    @classmethod
    def create(cls, chain: Chain | None = None) -> Account:
        """Create a new account with a fresh wallet."""
        return cls(Wallet.create(), chain)

    @classmethod
    def from_seed(cls, seed: str, chain: Chain | None = None) -> Account:
        """Create an account from a deterministic seed."""
        return cls(Wallet.from_seed(seed), chain)

    def _require_chain(self) -> Chain:
        if self.chain is None:
            raise RuntimeError(f"{self!r} is not attached to a chain")
        return self.chain

    # ---- state ----

    def balance(self) -> int:
        return self._require_chain().get_balance(self.address)

    @property
    def nonce(self) -> int:
        return self._require_chain().get_nonce(self.address)

    # ---- transactions ----

    def transfer(self, to: Any, amount: int) -> TxReceipt:
        """Send *amount* wei to an account or contract."""
        return self._require_chain().transfer(self, to, amount)

    def deploy(self, contract_cls: type[Contract], *args: Any, value: int = 0) -> Contract:
        """Deploy *contract_cls* with this account as ``msg.sender``."""
        return self._require_chain().deploy(contract_cls, *args, sender=self, value=value)

    def sign_message(self, message: bytes | str) -> bytes:
        return self.wallet.sign_message(message)

    # ---- identity ----

    def __eq__(self, other: object) -> bool:
        other_addr = getattr(other, "address", other)
        if isinstance(other_addr, str):
            return other_addr.lower() == self.address.lower()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.address.lower())

    def __str__(self) -> str:
        return self.address

    def __repr__(self) -> str:
        return f"Account({self.address})"
