"""
Cryptographic primitives for NFTMarket.

  - Keccak-256 hashing (pycryptodome)
  - secp256k1 key pairs and deterministic ECDSA signatures (ecdsa)
  - EVM-style 20-byte addresses with EIP-55 checksums
  - Deterministic contract and transaction identifiers
"""

from __future__ import annotations

import hashlib
import re

from Crypto.Hash import keccak
from ecdsa import SECP256k1, BadSignatureError, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError
from ecdsa.util import sigdecode_string, sigencode_string

ZERO_ADDRESS = "0x" + "00" * 20

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def keccak256(data: bytes) -> bytes:
    """Keccak-256 digest (the pre-standard SHA-3 used by Ethereum)."""
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


# ── keys ────────────────────────────────────────────────────────

def generate_keypair() -> tuple[bytes, bytes]:
    """Return a fresh ``(private_key, public_key)`` pair (32 / 64 bytes)."""
    sk = SigningKey.generate(curve=SECP256k1)
    return sk.to_string(), sk.get_verifying_key().to_string()


def private_key_from_seed(seed: str) -> bytes:
    """Derive a valid secp256k1 private key from an arbitrary seed string."""
    n = SECP256k1.order
    k = int.from_bytes(keccak256(seed.encode("utf-8")), "big") % (n - 1) + 1
    return k.to_bytes(32, "big")


def public_key_from_private(private_key: bytes) -> bytes:
    sk = SigningKey.from_string(private_key, curve=SECP256k1)
    return sk.get_verifying_key().to_string()


# ── addresses ───────────────────────────────────────────────────

def is_address(value: object) -> bool:
    """True for any ``0x``-prefixed 40-hex-digit string (checksum not enforced)."""
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def to_checksum_address(address: str | bytes) -> str:
    """EIP-55 mixed-case encoding of a 20-byte address."""
    if isinstance(address, bytes):
        if len(address) != 20:
            raise ValueError("address must be 20 bytes")
        hex_addr = address.hex()
    else:
        if not is_address(address):
            raise ValueError(f"invalid address: {address!r}")
        hex_addr = address[2:].lower()
    digest = keccak256(hex_addr.encode("ascii")).hex()
    out = "".join(
        ch.upper() if ch.isalpha() and int(digest[i], 16) >= 8 else ch
        for i, ch in enumerate(hex_addr)
    )
    return "0x" + out


def derive_address(public_key: bytes) -> str:
    """Address of a 64-byte uncompressed public key (last 20 bytes of its keccak)."""
    if len(public_key) == 65 and public_key[0] == 4:
        public_key = public_key[1:]
    if len(public_key) != 64:
        raise ValueError("public key must be 64 bytes")
    return to_checksum_address(keccak256(public_key)[-20:])


def contract_address(deployer: str, nonce: int) -> str:
    """Deterministic address for a contract created by *deployer* at *nonce*."""
    blob = bytes.fromhex(deployer[2:]) + nonce.to_bytes(32, "big")
    return to_checksum_address(keccak256(blob)[-20:])


# ── signatures ──────────────────────────────────────────────────

def sign(private_key: bytes, message: bytes) -> bytes:
    """RFC-6979 deterministic ECDSA over ``keccak256(message)``; 64-byte r||s."""
    sk = SigningKey.from_string(private_key, curve=SECP256k1)
    return sk.sign_digest_deterministic(
        keccak256(message), hashfunc=hashlib.sha256, sigencode=sigencode_string,
    )


def verify(public_key: bytes, message: bytes, signature: bytes) -> bool:
    """Check *signature* against *public_key*; never raises on bad input."""
    try:
        vk = VerifyingKey.from_string(public_key, curve=SECP256k1)
        return vk.verify_digest(signature, keccak256(message), sigdecode=sigdecode_string)
    except (BadSignatureError, MalformedPointError, ValueError):
        return False


# ── identifiers ─────────────────────────────────────────────────

def tx_hash(sender: str, nonce: int, to: str, function: str, value: int) -> str:
    """Identifier of a submitted transaction (``0x`` + 64 hex)."""
    blob = f"{sender.lower()}:{nonce}:{to.lower()}:{function}:{value}".encode("utf-8")
    return "0x" + keccak256(blob).hex()

