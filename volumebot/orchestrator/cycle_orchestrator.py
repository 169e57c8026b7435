"""
CycleOrchestrator: one randomized round of buys and interleaved sells.

A cycle draws a buy count N, walks N buy slots strictly in order and, after
each successful buy, decides whether to sell from some wallet that has bought
before. The sell decision is a forced-minimum / probabilistic-capacity policy:

    walletsLeft        = N - slot            (this slot included)
    mustSellRemaining  = max(0, minSell - sellsDone)
    capacityRemaining  = max(0, maxSell - sellsDone)

    capacityRemaining == 0              -> never sell
    walletsLeft <= mustSellRemaining    -> sell now
    otherwise                           -> sell with p = capacityRemaining / walletsLeft

A LOW_GAS wallet refills its slot with another wallet without advancing the
slot index, so walletsLeft only moves when a buy is actually attempted.

Usage:
    orchestrator = CycleOrchestrator(ledger, router, client, state_store, params, token, stop_token)
    result = await orchestrator.run_cycle(state)
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, Set, Tuple

from eth_account import Account

from volumebot.config.config import CycleParameters
from volumebot.execution.trade_router import TradeRouter
from volumebot.infra.ledger_client import LedgerClient
from volumebot.infra.logging_cfg import log_event
from volumebot.monitoring.metrics import VolumeMetrics
from volumebot.state.bot_state import BotState, BotStateStore
from volumebot.state.wallet_ledger import WalletLedger, WalletRecord, WalletStatus
from volumebot.utils import format_units, from_wei, percent_of, truncate_to_step

log = logging.getLogger("volumebot")


class StoppedByUser(Exception):
    """Raised at a cycle boundary after a stop request; not a failure."""

    def __init__(self, cycle: int) -> None:
        super().__init__(f"stopped by user at cycle {cycle}")
        self.cycle = cycle


class StopToken:
    """Cooperative stop flag shared by the run controller and the orchestrator."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def request(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    async def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True early if a stop is requested meanwhile."""
        if self._event.is_set() or seconds <= 0:
            return self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False


def sell_bounds(n: int, min_pct: float, max_pct: float) -> Tuple[int, int]:
    """Sell-count bounds for a cycle of ``n`` buys. An inverted max is raised to the min."""
    min_pct = min(100.0, max(0.0, min_pct))
    max_pct = min(100.0, max(0.0, max_pct))
    max_pct = max(min_pct, max_pct)
    return math.floor(n * min_pct / 100), math.ceil(n * max_pct / 100)


def should_sell(
    wallets_left: int,
    min_sell: int,
    max_sell: int,
    sells_done: int,
    rng: random.Random,
) -> bool:
    must_sell_remaining = max(0, min_sell - sells_done)
    capacity_remaining = max(0, max_sell - sells_done)
    if capacity_remaining == 0:
        return False
    if wallets_left <= must_sell_remaining:
        return True
    if wallets_left <= 0:
        return False
    probability = min(1.0, capacity_remaining / wallets_left)
    return rng.random() < probability


@dataclass
class CycleResult:
    cycle: int
    target_buys: int
    min_sell: int
    max_sell: int
    buys_attempted: int = 0
    buys_succeeded: int = 0
    sells_done: int = 0
    low_gas_skips: int = 0
    failures: int = 0


class CycleOrchestrator:
    def __init__(
        self,
        ledger: WalletLedger,
        router: TradeRouter,
        client: LedgerClient,
        state_store: BotStateStore,
        params: CycleParameters,
        token: str,
        stop_token: StopToken,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics: Optional[VolumeMetrics] = None,
    ) -> None:
        self.ledger = ledger
        self.router = router
        self.client = client
        self.state_store = state_store
        self.params = params
        self.token = token
        self.stop_token = stop_token
        self.rng = rng or random.Random()
        self._sleep = sleep
        self.metrics = metrics or VolumeMetrics()

    async def run_cycle(self, state: BotState) -> CycleResult:
        if self.stop_token.requested:
            self.state_store.save(state)
            log_event(log, "cycle_stopped", cycle=state.current_cycle)
            raise StoppedByUser(state.current_cycle)

        p = self.params
        n = self.rng.randint(p.min_buy_per_cycle, p.max_buy_per_cycle)
        min_sell, max_sell = sell_bounds(n, p.min_sell_pct, p.max_sell_pct)
        result = CycleResult(cycle=state.current_cycle, target_buys=n, min_sell=min_sell, max_sell=max_sell)
        log_event(
            log, "cycle_start",
            cycle=state.current_cycle, total=state.total_cycles, buys=n, min_sell=min_sell, max_sell=max_sell,
        )

        chosen: Set[str] = set()
        sold_this_cycle: Set[str] = set()
        slot = 0
        while slot < n:
            candidates = [r for r in self.ledger.funded_records() if r.address.lower() not in chosen]
            if not candidates:
                log_event(log, "cycle_wallets_exhausted", logging.WARNING, cycle=result.cycle, slot=slot, target=n)
                break
            record = self.rng.choice(candidates)
            chosen.add(record.address.lower())

            try:
                balance = await self.client.get_balance(record.address)
            except Exception as exc:
                log_event(log, "balance_query_error", logging.WARNING, address=record.address, err=str(exc))
                continue

            if balance < p.gas_buffer_wei:
                self.ledger.upsert(replace(record, status=WalletStatus.LOW_GAS, last_bnb=from_wei(balance)))
                result.low_gas_skips += 1
                self.metrics.low_gas_skips.inc()
                log_event(log, "low_gas_skip", address=record.address, bnb=format_units(balance))
                continue

            wallets_left = n - slot
            slot += 1
            result.buys_attempted += 1
            if not await self._buy_slot(record, balance, result):
                continue

            if should_sell(wallets_left, min_sell, max_sell, result.sells_done, self.rng):
                if await self._sell_one(sold_this_cycle):
                    result.sells_done += 1

        log_event(
            log, "cycle_complete",
            cycle=result.cycle,
            buys=result.buys_succeeded,
            attempted=result.buys_attempted,
            sells=result.sells_done,
            low_gas=result.low_gas_skips,
            failures=result.failures,
        )
        return result

    async def _buy_slot(self, record: WalletRecord, balance: int, result: CycleResult) -> bool:
        p = self.params
        try:
            buy_pct = self.rng.uniform(p.min_buy_pct, p.max_buy_pct)
            spend = percent_of(balance - p.gas_buffer_wei, buy_pct)
            await self._sleep(self.rng.randint(p.min_buy_delay_ms, p.max_buy_delay_ms) / 1000)
            account = Account.from_key(record.private_key)
            buy = await self.router.buy(account, self.token, spend)
        except Exception as exc:
            log_event(log, "buy_slot_error", logging.ERROR, address=record.address, err=str(exc))
            self._mark_failed(record, result, "buy")
            return False

        if not buy.ok:
            self.metrics.buys.labels(venue=buy.venue.value, result="failed").inc()
            self._mark_failed(record, result, "buy")
            return False

        updated = replace(
            record,
            status=WalletStatus.BOUGHT,
            bought_via=buy.venue.value,
            estimated_tokens=format_units(buy.token_balance),
            last_bnb=from_wei(balance - spend),
        )
        updated.append_buy_tx(buy.tx_hash)
        self.ledger.upsert(updated)
        result.buys_succeeded += 1
        self.metrics.buys.labels(venue=buy.venue.value, result="ok").inc()
        return True

    async def _sell_one(self, sold_this_cycle: Set[str]) -> bool:
        """Sell part of one earlier buyer's balance. True when a sell went through."""
        p = self.params
        await self._sleep(self.rng.randint(p.min_sell_delay_ms, p.max_sell_delay_ms) / 1000)

        self.ledger.reload()
        candidates = [r for r in self.ledger.bought_records() if r.address.lower() not in sold_this_cycle]
        self.rng.shuffle(candidates)

        for record in candidates:
            try:
                balance = await self.router.token_balance(record.address, self.token)
            except Exception as exc:
                log_event(log, "balance_query_error", logging.WARNING, address=record.address, err=str(exc))
                continue

            if balance <= 0:
                self.ledger.upsert(replace(record, status=WalletStatus.NO_TOKENS, estimated_tokens="0"))
                continue

            sell_pct = self.rng.uniform(p.min_sell_amount_pct, p.max_sell_amount_pct)
            amount = truncate_to_step(percent_of(balance, sell_pct))
            if amount <= 0 or amount > balance:
                continue

            try:
                account = Account.from_key(record.private_key)
            except ValueError as exc:
                log_event(log, "sell_key_invalid", logging.ERROR, address=record.address, err=str(exc))
                self.ledger.upsert(replace(record, status=WalletStatus.FAILED))
                continue
            sell = await self.router.sell(account, self.token, amount)
            if not sell.ok:
                self.metrics.sells.labels(venue=sell.venue.value, result="failed").inc()
                self.metrics.wallet_failures.labels(stage="sell").inc()
                self.ledger.upsert(replace(record, status=WalletStatus.FAILED))
                continue

            updated = replace(
                record,
                status=WalletStatus.SOLD,
                sold_via=sell.venue.value,
                estimated_tokens=format_units(balance - sell.amount),
            )
            updated.append_sell_tx(sell.tx_hash)
            self.ledger.upsert(updated)
            sold_this_cycle.add(record.address.lower())
            self.metrics.sells.labels(venue=sell.venue.value, result="ok").inc()
            return True

        log_event(log, "sell_no_candidate", logging.WARNING, candidates=len(candidates))
        return False

    def _mark_failed(self, record: WalletRecord, result: CycleResult, stage: str) -> None:
        self.ledger.upsert(replace(record, status=WalletStatus.FAILED))
        result.failures += 1
        self.metrics.wallet_failures.labels(stage=stage).inc()
