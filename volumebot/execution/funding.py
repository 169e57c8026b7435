"""
FundingEngine: creates child wallets and tops them up from the main wallet.

Deposits go either straight from the main wallet or, in stealth mode, through
a batching contract so the chain does not show a direct main -> child link.
"""

from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from volumebot.infra.abi import STEALTH_FUND_ABI
from volumebot.infra.ledger_client import TRANSFER_GAS_LIMIT, LedgerClient
from volumebot.monitoring.metrics import VolumeMetrics
from volumebot.state.wallet_ledger import WalletLedger, WalletRecord, WalletStatus
from volumebot.utils import format_units, from_wei

log = logging.getLogger("volumebot")


@dataclass
class FundingConfig:
    total_num_wallets: int
    min_deposit_wei: int
    max_deposit_wei: int
    stealth_mode: bool = False
    stealth_fund_address: Optional[str] = None
    # Share of configured wallets that must hold min_deposit to count as funded
    funded_ratio: float = 0.8


class FundingEngine:
    def __init__(
        self,
        client: LedgerClient,
        main_account: LocalAccount,
        ledger: WalletLedger,
        config: FundingConfig,
        rng: Optional[random.Random] = None,
        metrics: Optional[VolumeMetrics] = None,
        account_factory: Callable[[], LocalAccount] = Account.create,
    ) -> None:
        if config.stealth_mode and not config.stealth_fund_address:
            raise ValueError("stealth mode requires a stealth fund contract address")
        self.client = client
        self.main_account = main_account
        self.ledger = ledger
        self.config = config
        self.rng = rng or random.Random()
        self.metrics = metrics or VolumeMetrics()
        self._account_factory = account_factory
        self.transfers_made = 0

    def _log_event(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log.log(level, json.dumps({"event": event, **kwargs}, default=str))

    @property
    def mode(self) -> str:
        return "stealth" if self.config.stealth_mode else "direct"

    # ========== Wallet creation ==========

    def create_wallet(self, index: int) -> WalletRecord:
        acct = self._account_factory()
        record = WalletRecord(
            index=index,
            address=acct.address,
            private_key=acct.key.hex(),
            status=WalletStatus.CREATED,
        )
        record = self.ledger.upsert(record)
        self._log_event("wallet_created", index=index, address=record.address)
        return record

    def ensure_wallets(self) -> int:
        """Create wallets until the ledger holds the configured count. Returns how many were created."""
        created = 0
        while len(self.ledger) < self.config.total_num_wallets:
            self.create_wallet(self.ledger.next_index())
            created += 1
        return created

    def configured_records(self) -> list[WalletRecord]:
        records = sorted(self.ledger.records, key=lambda r: r.index)
        return records[: self.config.total_num_wallets]

    # ========== Deposits ==========

    def draw_deposit(self, remaining_budget_wei: int) -> int:
        """Uniform draw from [min_deposit, min(max_deposit, remaining)]; 0 when the budget is exhausted."""
        upper = min(self.config.max_deposit_wei, remaining_budget_wei)
        if upper < self.config.min_deposit_wei:
            return 0
        return self.rng.randint(self.config.min_deposit_wei, upper)

    async def ensure_deposits(self, remaining_budget_wei: int) -> int:
        """
        Create missing wallets and fund every wallet below the minimum deposit.

        The budget is decremented by the requested deposit, not by what later
        shows up on chain. Returns the remaining budget.
        """
        self.ensure_wallets()
        remaining = remaining_budget_wei

        for record in self.configured_records():
            if remaining < self.config.min_deposit_wei:
                self._log_event(
                    "funding_budget_exhausted", logging.WARNING,
                    remaining_bnb=format_units(remaining),
                )
                break

            try:
                balance = await self.client.get_balance(record.address)
            except Exception as exc:
                self._log_event(
                    "balance_query_error", logging.WARNING,
                    address=record.address, err=str(exc),
                )
                continue

            if balance >= self.config.min_deposit_wei:
                continue

            amount = self.draw_deposit(remaining)
            if amount <= 0:
                break
            remaining -= amount
            await self.fund_wallet(record, amount, balance)

        self._log_event("funding_pass_complete", remaining_bnb=format_units(remaining), transfers=self.transfers_made)
        return remaining

    async def fund_wallet(self, record: WalletRecord, amount_wei: int, prior_balance: int = 0) -> bool:
        try:
            if self.config.stealth_mode:
                receipt = await self.client.send_contract_transaction(
                    self.main_account,
                    self.config.stealth_fund_address,
                    STEALTH_FUND_ABI,
                    "multiFund",
                    [record.address],
                    [amount_wei],
                    value=amount_wei,
                )
            else:
                receipt = await self.client.send_transaction(
                    self.main_account, record.address, amount_wei, gas_limit=TRANSFER_GAS_LIMIT,
                )
        except Exception as exc:
            self.ledger.upsert(replace(record, status=WalletStatus.FAILED))
            self.metrics.deposits.labels(mode=self.mode, result="failed").inc()
            self.metrics.wallet_failures.labels(stage="deposit").inc()
            self._log_event(
                "deposit_failed", logging.ERROR,
                address=record.address, bnb=format_units(amount_wei), mode=self.mode, err=str(exc),
            )
            return False

        self.transfers_made += 1
        self.ledger.upsert(replace(
            record,
            deposit_bnb=from_wei(amount_wei),
            last_bnb=from_wei(prior_balance + amount_wei),
            status=WalletStatus.DEPOSITED,
        ))
        self.metrics.deposits.labels(mode=self.mode, result="ok").inc()
        self.metrics.deposited_bnb.inc(from_wei(amount_wei))
        self._log_event(
            "deposit_confirmed",
            address=record.address, bnb=format_units(amount_wei), mode=self.mode,
            tx=receipt.tx_hash, gas_used=receipt.gas_used,
        )
        return True

    # ========== Idempotency check ==========

    async def are_wallets_funded(self) -> bool:
        """True when at least ``funded_ratio`` of the configured wallets hold the minimum deposit."""
        records = self.configured_records()
        funded = 0
        for record in records:
            try:
                balance = await self.client.get_balance(record.address)
            except Exception as exc:
                self._log_event("balance_query_error", logging.WARNING, address=record.address, err=str(exc))
                continue
            if balance >= self.config.min_deposit_wei:
                funded += 1

        required = self.config.total_num_wallets * self.config.funded_ratio
        ok = funded >= required
        self._log_event(
            "funding_check",
            funded=funded,
            configured=self.config.total_num_wallets,
            required=required,
            ok=ok,
        )
        return ok
