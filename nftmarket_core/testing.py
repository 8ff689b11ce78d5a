"""
Assertion helpers for tests written against the chain simulator.

    with reverts("Not owner"):
        marketplace.connect(deployer).createAuction(nft, 1, price, end)

    receipt = marketplace.connect(creator).createAuction(nft, 1, price, end)
    assert_emitted(receipt, "AuctionCreated", tokenId=1)
"""

from __future__ import annotations

import contextlib
from typing import Any, Iterator

from nftmarket_core.contract import to_arg
from nftmarket_core.errors import Revert
from nftmarket_core.events import Event, TxReceipt


class RevertInfo:
    """Filled in by :func:`reverts` once the block has raised."""

    def __init__(self) -> None:
        self.reason: str | None = None


@contextlib.contextmanager
def reverts(reason: str | None = None) -> Iterator[RevertInfo]:
    """Assert that the body raises :class:`Revert` (with *reason*, when given)."""
    info = RevertInfo()
    try:
        yield info
    except Revert as exc:
        info.reason = exc.reason
        if reason is not None and exc.reason != reason:
            raise AssertionError(
                f"Transaction reverted with {exc.reason!r}, expected {reason!r}"
            ) from exc
    else:
        raise AssertionError(
            "Transaction did not revert" + (f" (expected {reason!r})" if reason else "")
        )


def assert_emitted(receipt: TxReceipt, name: str, **args: Any) -> Event:
    """Assert *receipt* contains an event *name* whose args include *args*."""
    if name not in receipt.events:
        raise AssertionError(f"Event {name!r} not emitted; got {receipt.events.names()}")
    for event in receipt.events[name]:
        if all(event.args.get(k) == to_arg(v) for k, v in args.items()):
            return event
    raise AssertionError(
        f"No {name!r} event with {args}; emitted: {[e.args for e in receipt.events[name]]}"
    )
