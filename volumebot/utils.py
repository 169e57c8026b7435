"""
Utility helpers.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Union

from web3 import Web3

# Sell amounts are rounded down to this many base units; smaller remainders
# are rejected as dust by the bonding-curve manager.
SELL_AMOUNT_STEP = 10**9

MAX_UINT256 = 2**256 - 1


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def to_wei(amount: Union[float, str, Decimal]) -> int:
    """Convert a human-readable BNB/token amount (18 decimals) to base units."""
    return int(Web3.to_wei(Decimal(str(amount)), "ether"))


def from_wei(amount: int) -> float:
    return float(Web3.from_wei(amount, "ether"))


def format_units(amount: int) -> str:
    """Decimal string for a base-unit amount, used in the ledger and logs."""
    return str(Web3.from_wei(amount, "ether"))


def truncate_to_step(amount: int, step: int = SELL_AMOUNT_STEP) -> int:
    if amount <= 0:
        return 0
    return amount - (amount % step)


def percent_of(amount: int, pct: float) -> int:
    """
    Integer percentage of a base-unit amount.

    Works in basis points so large token balances keep full precision.
    """
    bps = int(round(pct * 100))
    return amount * bps // 10000


def join_history(existing: str | None, new: str) -> str:
    if not existing:
        return new
    return f"{existing},{new}"
