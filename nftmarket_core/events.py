"""
Event logs and transaction receipts.

Contracts emit named events whose arguments are keyed by their ABI names
(``auctionId``, ``tokenId`` …).  Every mined transaction produces a
:class:`TxReceipt` whose ``events`` attribute groups the emitted logs by
name::

    receipt = marketplace.connect(alice).placeBid(0, value=bid)
    receipt.events["BidPlaced"][0]["amount"] == bid
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator


@dataclass
class Event:
    """A single emitted log entry."""
    name: str
    address: str            # emitting contract
    args: dict[str, Any]
    log_index: int = 0
    block_number: int = 0
    tx_hash: str = ""

    def __getitem__(self, key: str) -> Any:
        return self.args[key]

    def __contains__(self, key: str) -> bool:
        return key in self.args

    def to_dict(self) -> dict:
        return {
            "event": self.name,
            "address": self.address,
            "args": dict(self.args),
            "log_index": self.log_index,
            "block_number": self.block_number,
            "tx_hash": self.tx_hash,
        }


class EventDict:
    """Ordered collection of events, indexable by event name."""

    def __init__(self, events: list[Event] | None = None):
        self._events: list[Event] = list(events or [])

    def __getitem__(self, name: str | int) -> Any:
        if isinstance(name, int):
            return self._events[name]
        matches = [e for e in self._events if e.name == name]
        if not matches:
            raise KeyError(f"Event '{name}' was not emitted")
        return matches

    def __contains__(self, name: str) -> bool:
        return any(e.name == name for e in self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def count(self, name: str) -> int:
        return sum(1 for e in self._events if e.name == name)

    def names(self) -> list[str]:
        return [e.name for e in self._events]

    def to_list(self) -> list[dict]:
        return [e.to_dict() for e in self._events]

    def __repr__(self) -> str:
        return f"EventDict({self.names()})"


@dataclass
class TxReceipt:
    """Outcome of a mined transaction."""
    tx_hash: str
    sender: str
    to: str
    function: str
    args: tuple = ()
    value: int = 0
    nonce: int = 0
    block_number: int = 0
    timestamp: int = 0
    events: EventDict = field(default_factory=EventDict)
    return_value: Any = None
    status: int = 1

    def to_dict(self) -> dict:
        return {
            "tx_hash": self.tx_hash,
            "from": self.sender,
            "to": self.to,
            "function": self.function,
            "args": [_jsonable(a) for a in self.args],
            "value": str(self.value),
            "nonce": self.nonce,
            "block_number": self.block_number,
            "timestamp": self.timestamp,
            "status": self.status,
            "events": self.events.to_list(),
            "return_value": _jsonable(self.return_value),
        }


def _jsonable(value: Any) -> Any:
    """Best-effort conversion of call arguments / return values for JSON."""
    if hasattr(value, "address") and isinstance(getattr(value, "address"), str):
        return value.address
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, int) and not isinstance(value, bool) and abs(value) >= 2 ** 53:
        return str(value)
    return value
