"""
State persistence package.

This package contains the wallet ledger and the resume checkpoint.
"""

from volumebot.state.bot_state import BotState, BotStateStore
from volumebot.state.wallet_ledger import WalletLedger, WalletRecord, WalletStatus

__all__ = [
    "BotState",
    "BotStateStore",
    "WalletLedger",
    "WalletRecord",
    "WalletStatus",
]
