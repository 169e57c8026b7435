"""
Wallet ledger: the persisted list of disposable wallets and their trading status.

The whole file is rewritten through a temp file and an atomic replace after
every mutation, so a crash can lose at most the last update and never leaves a
half-written ledger behind.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from volumebot.utils import join_history, now_iso

log = logging.getLogger("volumebot")


class WalletStatus(str, Enum):
    CREATED = "CREATED"
    DEPOSITED = "DEPOSITED"
    LOW_GAS = "LOW_GAS"
    BOUGHT = "BOUGHT"
    SOLD = "SOLD"
    NO_TOKENS = "NO_TOKENS"
    FAILED = "FAILED"


# attribute -> key in wallets.json
_JSON_KEYS = {
    "index": "index",
    "address": "address",
    "private_key": "privateKey",
    "deposit_bnb": "depositBNB",
    "status": "status",
    "last_bnb": "lastBNB",
    "buy_tx_hash": "buyTxHash",
    "sell_tx_hash": "sellTxHash",
    "bought_via": "boughtVia",
    "sold_via": "soldVia",
    "estimated_tokens": "estimatedTokens",
    "timestamp": "timestamp",
}


@dataclass
class WalletRecord:
    """One disposable wallet. The private key never leaves this record except for signing."""
    index: int
    address: str
    private_key: str
    deposit_bnb: float = 0.0
    status: WalletStatus = WalletStatus.CREATED
    last_bnb: float = 0.0
    buy_tx_hash: Optional[str] = None
    sell_tx_hash: Optional[str] = None
    bought_via: Optional[str] = None
    sold_via: Optional[str] = None
    estimated_tokens: Optional[str] = None
    timestamp: str = ""

    def __repr__(self) -> str:
        return f"WalletRecord(index={self.index}, address={self.address}, status={self.status.value})"

    @property
    def has_bought(self) -> bool:
        return bool(self.buy_tx_hash)

    def append_buy_tx(self, tx_hash: str) -> None:
        self.buy_tx_hash = join_history(self.buy_tx_hash, tx_hash)

    def append_sell_tx(self, tx_hash: str) -> None:
        self.sell_tx_hash = join_history(self.sell_tx_hash, tx_hash)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for attr, key in _JSON_KEYS.items():
            value = getattr(self, attr)
            if value is None:
                continue
            out[key] = value.value if isinstance(value, WalletStatus) else value
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WalletRecord":
        kwargs: Dict[str, Any] = {}
        for attr, key in _JSON_KEYS.items():
            if key in data:
                kwargs[attr] = data[key]
        status = kwargs.get("status")
        # Ledgers written before status tracking only carry deposits
        if status is None:
            kwargs["status"] = WalletStatus.DEPOSITED if kwargs.get("deposit_bnb") else WalletStatus.CREATED
        else:
            kwargs["status"] = WalletStatus(status)
        kwargs["index"] = int(kwargs.get("index", 0))
        kwargs["deposit_bnb"] = float(kwargs.get("deposit_bnb", 0.0))
        kwargs["last_bnb"] = float(kwargs.get("last_bnb", 0.0))
        return cls(**kwargs)


class WalletLedger:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.tmp = self.path.with_name(self.path.name + ".tmp")
        self._records: List[WalletRecord] = []
        self.load()

    @property
    def records(self) -> List[WalletRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def load(self) -> List[WalletRecord]:
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._records = []
            self._write()
            return self.records
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
            records = [WalletRecord.from_dict(item) for item in raw]
        except (OSError, ValueError, TypeError, KeyError) as exc:
            log.error(json.dumps({"event": "wallet_ledger_load_error", "path": str(self.path), "err": str(exc)}))
            records = []
        self._records = _dedupe(records)
        return self.records

    def reload(self) -> List[WalletRecord]:
        """Re-read the ledger from disk to pick up updates made elsewhere."""
        return self.load()

    def get(self, address: str) -> Optional[WalletRecord]:
        needle = address.lower()
        for record in self._records:
            if record.address.lower() == needle:
                return record
        return None

    def next_index(self) -> int:
        if not self._records:
            return 0
        return max(r.index for r in self._records) + 1

    def funded_records(self) -> List[WalletRecord]:
        return [r for r in self._records if r.deposit_bnb > 0]

    def bought_records(self) -> List[WalletRecord]:
        return [r for r in self._records if r.has_bought]

    def upsert(self, record: WalletRecord) -> WalletRecord:
        """Insert or replace by address, stamp the mutation time, persist."""
        stamped = replace(record, timestamp=now_iso())
        needle = stamped.address.lower()
        for i, existing in enumerate(self._records):
            if existing.address.lower() == needle:
                self._records[i] = stamped
                break
        else:
            self._records.append(stamped)
        self._write()
        return stamped

    def _write(self) -> None:
        payload = [r.to_dict() for r in self._records]
        self.tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        self.tmp.replace(self.path)


def _dedupe(records: List[WalletRecord]) -> List[WalletRecord]:
    seen: Dict[str, int] = {}
    out: List[WalletRecord] = []
    for record in records:
        key = record.address.lower()
        if key in seen:
            # later entries win, matching upsert semantics
            out[seen[key]] = record
            continue
        seen[key] = len(out)
        out.append(record)
    return out


