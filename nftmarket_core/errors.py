"""
Exception hierarchy for the NFTMarket chain simulator.
"""

from __future__ import annotations


class ChainError(Exception):
    """Base class for every error raised by the chain simulator."""


class Revert(ChainError):
    """A contract aborted the transaction; all state changes are rolled back."""

    def __init__(self, reason: str = ""):
        super().__init__(reason or "execution reverted")
        self.reason = reason

    def __repr__(self) -> str:
        return f"Revert({self.reason!r})"


class InvariantViolation(ChainError):
    """A post-transaction invariant failed; the transaction was rolled back."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


class UnknownAccount(ChainError):
    """The address is neither a funded account nor a deployed contract."""


class SnapshotError(ChainError):
    """An unknown or already-consumed snapshot id was passed to ``revert``."""
