"""
Post-transaction invariant checks for NFTMarket.

  - Ether supply must be conserved (transfers only move wei)
  - No balance goes negative
  - Account nonces only increase
  - Every contract's own ``check_invariants()`` holds (the marketplace
    checks solvency and escrow custody)

These checks run after every transaction.  If any invariant fails, the
chain rolls the transaction back and raises ``InvariantViolation``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nftmarket_core.chain import Chain


@dataclass
class ChainSnapshot:
    """Snapshot of the fields the checks compare against."""
    total_supply: int = 0
    nonces: dict[str, int] = field(default_factory=dict)


class InvariantChecker:
    """
    Captures a pre-transaction snapshot of the chain state and validates
    invariants after the transaction is applied.
    """

    def __init__(self):
        self._snapshot: ChainSnapshot | None = None

    def capture(self, chain: Chain) -> None:
        """Take a snapshot of the chain state before a transaction."""
        self._snapshot = ChainSnapshot(
            total_supply=chain.total_supply,
            nonces=dict(chain.nonces),
        )

    def verify(self, chain: Chain) -> tuple[bool, list[str]]:
        """
        Verify all invariants against the current chain state.
        Returns (passed, errors).
        """
        if self._snapshot is None:
            return True, []

        errors: list[str] = []
        errors.extend(self._check_supply_conservation(chain))
        errors.extend(self._check_no_negative_balances(chain))
        errors.extend(self._check_nonces_increase(chain))
        errors.extend(self._check_contracts(chain))
        return not errors, errors

    # ── individual checks ───────────────────────────────────────

    def _check_supply_conservation(self, chain: Chain) -> list[str]:
        total = sum(chain.balances.values())
        if chain.total_supply != self._snapshot.total_supply:
            return [
                f"Supply changed during transaction: "
                f"{self._snapshot.total_supply} -> {chain.total_supply}"
            ]
        if total != chain.total_supply:
            return [f"Ether not conserved: balances sum {total} != supply {chain.total_supply}"]
        return []

    def _check_no_negative_balances(self, chain: Chain) -> list[str]:
        return [
            f"Negative balance for {addr}: {bal}"
            for addr, bal in chain.balances.items() if bal < 0
        ]

    def _check_nonces_increase(self, chain: Chain) -> list[str]:
        errors = []
        for addr, before in self._snapshot.nonces.items():
            after = chain.nonces.get(addr, 0)
            if after < before:
                errors.append(f"Nonce decreased for {addr}: {before} -> {after}")
        return errors

    def _check_contracts(self, chain: Chain) -> list[str]:
        errors = []
        for addr, contract in chain.contracts.items():
            for msg in contract.check_invariants():
                errors.append(f"{type(contract).__name__}@{addr[:10]}: {msg}")
        return errors
