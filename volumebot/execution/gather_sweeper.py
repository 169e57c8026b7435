"""
GatherSweeper: reclaims tokens and BNB from every ledger wallet.

Each wallet first sells its whole token balance through the current venue,
then sends what is left of its BNB (minus the fee of a plain transfer) back
to the main wallet. One wallet failing never stops the sweep of the rest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from volumebot.execution.trade_router import TradeRouter, Venue
from volumebot.infra.ledger_client import TRANSFER_GAS_LIMIT, LedgerClient
from volumebot.infra.logging_cfg import log_event
from volumebot.monitoring.metrics import VolumeMetrics
from volumebot.state.wallet_ledger import WalletLedger, WalletRecord, WalletStatus
from volumebot.utils import format_units, from_wei

log = logging.getLogger("volumebot")


@dataclass
class GatherReport:
    processed: int = 0
    sold: int = 0
    swept: int = 0
    failed: int = 0
    swept_wei: int = 0


class GatherSweeper:
    def __init__(
        self,
        client: LedgerClient,
        router: TradeRouter,
        ledger: WalletLedger,
        main_account: LocalAccount,
        token: str,
        metrics: Optional[VolumeMetrics] = None,
    ) -> None:
        self.client = client
        self.router = router
        self.ledger = ledger
        self.main_account = main_account
        self.token = token
        self.metrics = metrics or VolumeMetrics()

    async def sweep(self) -> GatherReport:
        report = GatherReport()
        venue = await self.router.select_venue(self.token)
        log_event(log, "gather_start", wallets=len(self.ledger), venue=venue.value)

        for record in self.ledger.records:
            report.processed += 1
            try:
                await self._gather_wallet(record, venue, report)
            except Exception as exc:
                report.failed += 1
                self.metrics.wallet_failures.labels(stage="gather").inc()
                current = self.ledger.get(record.address) or record
                self.ledger.upsert(replace(current, status=WalletStatus.FAILED))
                log_event(log, "gather_wallet_failed", logging.ERROR, address=record.address, err=str(exc))

        log_event(
            log, "gather_complete",
            processed=report.processed,
            sold=report.sold,
            swept=report.swept,
            failed=report.failed,
            swept_bnb=format_units(report.swept_wei),
        )
        return report

    async def _gather_wallet(self, record: WalletRecord, venue: Venue, report: GatherReport) -> None:
        account = Account.from_key(record.private_key)
        updated = replace(record)

        tokens = await self.router.token_balance(record.address, self.token)
        if tokens > 0:
            sell = await self.router.sell(account, self.token, tokens, venue)
            if sell.ok:
                updated.status = WalletStatus.SOLD
                updated.sold_via = sell.venue.value
                updated.append_sell_tx(sell.tx_hash)
                # Persist the sell before the sweep so a later error keeps its hash
                updated = replace(self.ledger.upsert(updated))
                report.sold += 1
                self.metrics.sells.labels(venue=sell.venue.value, result="ok").inc()
            else:
                updated.status = WalletStatus.FAILED
                report.failed += 1
                self.metrics.sells.labels(venue=sell.venue.value, result="failed").inc()
        else:
            updated.status = WalletStatus.NO_TOKENS

        balance = await self.client.get_balance(record.address)
        gas_price = await self.client.get_gas_price()
        sweep_amount = balance - gas_price * TRANSFER_GAS_LIMIT
        if sweep_amount > 0:
            receipt = await self.client.send_transaction(
                account, self.main_account.address, sweep_amount,
                gas_limit=TRANSFER_GAS_LIMIT, gas_price=gas_price,
            )
            balance -= sweep_amount + receipt.gas_used * gas_price
            report.swept += 1
            report.swept_wei += sweep_amount
            self.metrics.gathered_bnb.inc(from_wei(sweep_amount))
            log_event(log, "gather_swept", address=record.address, bnb=format_units(sweep_amount), tx=receipt.tx_hash)
        else:
            log_event(log, "gather_dust", logging.DEBUG, address=record.address, bnb=format_units(balance))

        remaining_tokens = await self.router.token_balance(record.address, self.token)
        updated.last_bnb = from_wei(max(0, balance))
        updated.estimated_tokens = format_units(remaining_tokens)
        self.ledger.upsert(updated)
