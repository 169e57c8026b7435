"""
Infrastructure package.

This package contains the async chain client, contract ABIs, and logging configuration.
"""

from volumebot.infra.ledger_client import (
    TRANSFER_GAS_LIMIT,
    LedgerClient,
    TransactionReverted,
    TxReceipt,
    Web3LedgerClient,
)
from volumebot.infra.logging_cfg import build_logger, log_event

__all__ = [
    "TRANSFER_GAS_LIMIT",
    "LedgerClient",
    "TransactionReverted",
    "TxReceipt",
    "Web3LedgerClient",
    "build_logger",
    "log_event",
]
