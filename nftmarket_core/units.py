"""
Ether unit constants and helpers for NFTMarket.

All on-chain amounts are integer **wei**, matching the EVM model:

    1 ether = 1,000,000,000,000,000,000 wei (smallest indivisible unit)

Human-facing values (configuration, API bodies, log lines) are decimal
ether strings and are converted at the boundary with :func:`parse_ether`
and :func:`format_ether`.
"""

from __future__ import annotations

from decimal import Decimal, Inexact, InvalidOperation, localcontext

# Number of decimal places of one ether.
ETHER_DECIMALS: int = 18

# Smallest representable unit: 1 wei = 0.000000000000000001 ether.
WEI_PER_ETHER: int = 10 ** ETHER_DECIMALS


def parse_ether(value: str | int | Decimal) -> int:
    """Convert a decimal ether amount to an exact integer wei count.

    >>> parse_ether("0.5")
    500000000000000000
    >>> parse_ether(2)
    2000000000000000000
    """
    if isinstance(value, bool):
        raise ValueError("ether amount must be a number, not a bool")
    if isinstance(value, float):
        # floats cannot represent most decimal ether amounts exactly
        value = repr(value)
    try:
        dec = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"invalid ether amount: {value!r}") from exc
    if not dec.is_finite():
        raise ValueError(f"ether amount must be finite: {value!r}")
    if dec < 0:
        raise ValueError(f"ether amount must be non-negative: {value!r}")
    with localcontext() as ctx:
        # uint256 range needs 78 significant digits; anything wider is refused
        ctx.prec = 80
        ctx.traps[Inexact] = True
        try:
            wei = dec * WEI_PER_ETHER
        except Inexact as exc:
            raise ValueError(f"ether amount out of range: {value!r}") from exc
    if wei != wei.to_integral_value():
        raise ValueError(f"too many decimal places (max {ETHER_DECIMALS}): {value!r}")
    return int(wei)


def format_ether(wei: int) -> str:
    """Render *wei* as the shortest exact ether string (``"1.0"``, ``"0.5"``)."""
    sign = "-" if wei < 0 else ""
    whole, frac = divmod(abs(int(wei)), WEI_PER_ETHER)
    frac_str = f"{frac:0{ETHER_DECIMALS}d}".rstrip("0") or "0"
    return f"{sign}{whole}.{frac_str}"


def format_amount(wei: int, symbol: str = "ETH") -> str:
    """Return a human-readable amount such as ``"0.5 ETH"``."""
    return f"{format_ether(wei)} {symbol}"


def bps_of(amount: int, bps: int) -> int:
    """Basis-point share of *amount*, rounded down (``bps`` / 10_000)."""
    return amount * bps // 10_000
