"""
RunController: drives a full volume run from checkpoint to completion.

Phases:
    IDLE -> RESUMING | FRESH -> ENSURING_FUNDS -> APPROVING -> CYCLING
         -> COMPLETED | PAUSED | FAILED

The controller owns the BotState checkpoint. It is written after every cycle,
on a stop request and (best effort) on a fatal error, and removed when the
last cycle finishes.
"""

from __future__ import annotations

import json
import logging
import random
from enum import Enum
from typing import Any, Optional

from eth_account import Account

from volumebot.config.config import CycleParameters
from volumebot.execution.funding import FundingEngine
from volumebot.execution.trade_router import TradeRouter
from volumebot.monitoring.alerting import AlertManager
from volumebot.monitoring.metrics import VolumeMetrics
from volumebot.orchestrator.cycle_orchestrator import CycleOrchestrator, StopToken, StoppedByUser
from volumebot.state.bot_state import BotState, BotStateStore
from volumebot.state.wallet_ledger import WalletLedger

log = logging.getLogger("volumebot")


class RunPhase(str, Enum):
    IDLE = "IDLE"
    RESUMING = "RESUMING"
    FRESH = "FRESH"
    ENSURING_FUNDS = "ENSURING_FUNDS"
    APPROVING = "APPROVING"
    CYCLING = "CYCLING"
    COMPLETED = "COMPLETED"
    PAUSED = "PAUSED"
    FAILED = "FAILED"


class RunOutcome(str, Enum):
    COMPLETED = "COMPLETED"
    PAUSED = "PAUSED"


class RunController:
    def __init__(
        self,
        funding: FundingEngine,
        orchestrator: CycleOrchestrator,
        router: TradeRouter,
        ledger: WalletLedger,
        state_store: BotStateStore,
        params: CycleParameters,
        token: Optional[str],
        stop_token: StopToken,
        rng: Optional[random.Random] = None,
        alerts: Optional[AlertManager] = None,
        metrics: Optional[VolumeMetrics] = None,
    ) -> None:
        self.funding = funding
        self.orchestrator = orchestrator
        self.router = router
        self.ledger = ledger
        self.state_store = state_store
        self.params = params
        self.token = token
        self.stop_token = stop_token
        self.rng = rng or random.Random()
        self.alerts = alerts
        self.metrics = metrics or VolumeMetrics()
        self.phase = RunPhase.IDLE
        self.state: Optional[BotState] = None

    def _log_event(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log.log(level, json.dumps({"event": event, "phase": self.phase.value, **kwargs}, default=str))

    def stop(self) -> None:
        """Request a graceful stop; takes effect at the next cycle boundary."""
        self._log_event("stop_requested")
        self.stop_token.request()

    # ========== Trading run ==========

    async def start(self) -> RunOutcome:
        if not self.token:
            raise ValueError("a token address is required to start trading")
        self.phase = RunPhase.IDLE
        # A paused controller may be started again
        self.stop_token.reset()
        try:
            state = self._load_or_fresh()
            self.state = state
            if self.alerts:
                await self.alerts.alert_run_started(self.token, state.current_cycle, state.total_cycles)

            self.phase = RunPhase.ENSURING_FUNDS
            await self._ensure_funds()

            self.phase = RunPhase.APPROVING
            await self._approve_all()

            self.phase = RunPhase.CYCLING
            await self._cycle_loop(state)
        except StoppedByUser as stopped:
            self.phase = RunPhase.PAUSED
            self._log_event("run_paused", cycle=stopped.cycle)
            if self.alerts:
                await self.alerts.alert_run_paused(self.token, stopped.cycle)
            return RunOutcome.PAUSED
        except Exception as exc:
            self.phase = RunPhase.FAILED
            self._save_best_effort()
            self._log_event("run_failed", logging.ERROR, err=str(exc))
            if self.alerts:
                await self.alerts.alert_run_failed(
                    self.token, str(exc), self.state.current_cycle if self.state else None,
                )
            raise

        self.state_store.clear()
        self.phase = RunPhase.COMPLETED
        self._log_event("run_completed", cycles=state.current_cycle - 1)
        if self.alerts:
            await self.alerts.alert_run_completed(self.token, state.current_cycle - 1)
        return RunOutcome.COMPLETED

    def _load_or_fresh(self) -> BotState:
        saved = self.state_store.load()
        if saved is not None and saved.matches_token(self.token):
            self.phase = RunPhase.RESUMING
            saved.total_cycles = self.params.cycles_limit
            self._log_event("run_resume", cycle=saved.current_cycle, total=saved.total_cycles)
            return saved
        if saved is not None:
            self._log_event(
                "stale_state_discarded", logging.WARNING,
                saved_token=saved.token_address, token=self.token,
            )
            self.state_store.clear()
        self.phase = RunPhase.FRESH
        state = BotState.fresh(self.token, self.params.cycles_limit)
        self._log_event("run_fresh", total=state.total_cycles)
        return state

    async def _ensure_funds(self) -> int:
        if await self.funding.are_wallets_funded():
            self._log_event("funding_skipped")
            return 0
        before = self.funding.transfers_made
        await self.funding.ensure_deposits(self.params.total_budget_wei)
        return self.funding.transfers_made - before

    async def _approve_all(self) -> None:
        venue = await self.router.select_venue(self.token)
        approved = failed = 0
        for record in self.ledger.funded_records():
            try:
                account = Account.from_key(record.private_key)
            except ValueError as exc:
                self._log_event("approval_failed", logging.WARNING, address=record.address, err=str(exc))
                failed += 1
                continue
            if await self.router.approve(account, self.token, venue):
                approved += 1
            else:
                failed += 1
        self._log_event("approvals_done", venue=venue.value, approved=approved, failed=failed)

    async def _cycle_loop(self, state: BotState) -> None:
        while not state.is_finished:
            self.metrics.current_cycle.set(state.current_cycle)
            await self.orchestrator.run_cycle(state)

            state.current_cycle += 1
            self.state_store.save(state)
            self.metrics.cycles_completed.inc()

            if state.is_finished:
                break
            delay = self.rng.uniform(self.params.min_cycle_delay_sec, self.params.max_cycle_delay_sec)
            self._log_event("cycle_wait", next_cycle=state.current_cycle, seconds=round(delay, 2))
            # A stop during the wait is picked up by the next run_cycle
            await self.stop_token.wait(delay)

    def _save_best_effort(self) -> None:
        if self.state is None:
            return
        try:
            self.state_store.save(self.state)
        except Exception as exc:
            self._log_event("state_save_failed", logging.ERROR, err=str(exc))

    # ========== Distribution only ==========

    async def distribute_only(self) -> int:
        """Run the funding phase alone. Returns the number of deposits sent."""
        self.phase = RunPhase.ENSURING_FUNDS
        try:
            transfers = await self._ensure_funds()
        except Exception as exc:
            self.phase = RunPhase.FAILED
            self._log_event("distribution_failed", logging.ERROR, err=str(exc))
            raise
        self.phase = RunPhase.COMPLETED
        self._log_event("distribution_complete", transfers=transfers)
        return transfers
