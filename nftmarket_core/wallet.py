"""
Wallet management for NFTMarket.

A wallet wraps a secp256k1 key-pair and provides:
  - Address derivation (EIP-55 checksummed)
  - Deterministic creation from a seed string
  - Message signing and verification
"""

from __future__ import annotations

from nftmarket_core.crypto_utils import (
    derive_address,
    generate_keypair,
    private_key_from_seed,
    public_key_from_private,
    sign,
    verify,
)


class Wallet:
    """An externally owned key-pair."""

    def __init__(self, private_key: bytes, public_key: bytes | None = None):
        if len(private_key) != 32:
            raise ValueError("private key must be 32 bytes")
        self.private_key = private_key
        self.public_key = public_key or public_key_from_private(private_key)
        self.address: str = derive_address(self.public_key)

    @classmethod
    def create(cls) -> Wallet:
        """Create a wallet with a freshly generated key-pair."""
        priv, pub = generate_keypair()
        return cls(priv, pub)

    @classmethod
    def from_seed(cls, seed: str) -> Wallet:
        """Create a deterministic wallet from *seed*."""
        return cls(private_key_from_seed(seed))

    def sign_message(self, message: bytes | str) -> bytes:
        if isinstance(message, str):
            message = message.encode("utf-8")
        return sign(self.private_key, message)

    def verify_message(self, message: bytes | str, signature: bytes) -> bool:
        if isinstance(message, str):
            message = message.encode("utf-8")
        return verify(self.public_key, message, signature)

    def export_public(self) -> dict:
        return {"address": self.address, "public_key": self.public_key.hex()}

    def __repr__(self) -> str:
        return f"Wallet({self.address})"
