"""
Entry point wiring all components.

    volumebot               # trading run (or distribution when DISTRIBUTE_ONLY=true)
    volumebot --distribute  # fund child wallets only
    volumebot --gather      # sell everything and sweep BNB back to the main wallet
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import random
import signal
import sys
from typing import List, Optional

from eth_account import Account

from volumebot.config.config import ConfigError, Settings
from volumebot.execution.funding import FundingConfig, FundingEngine
from volumebot.execution.gather_sweeper import GatherSweeper
from volumebot.execution.trade_router import RouterConfig, TradeRouter
from volumebot.infra.ledger_client import Web3LedgerClient
from volumebot.infra.logging_cfg import build_logger
from volumebot.monitoring.alerting import AlertConfig, AlertManager
from volumebot.monitoring.metrics import VolumeMetrics, start_metrics_server
from volumebot.orchestrator.cycle_orchestrator import CycleOrchestrator, StopToken
from volumebot.orchestrator.run_controller import RunController
from volumebot.state.bot_state import BotStateStore
from volumebot.state.wallet_ledger import WalletLedger
from volumebot.utils import from_wei

MODE_TRADING = "trading"
MODE_DISTRIBUTE = "distribute"
MODE_GATHER = "gather"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="volumebot", description="BSC token volume bot")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--trading", dest="mode", action="store_const", const=MODE_TRADING,
                       help="fund wallets if needed, then run trading cycles (default)")
    group.add_argument("--distribute", dest="mode", action="store_const", const=MODE_DISTRIBUTE,
                       help="only fund child wallets")
    group.add_argument("--gather", dest="mode", action="store_const", const=MODE_GATHER,
                       help="sell all tokens and sweep BNB back to the main wallet")
    return parser.parse_args(argv)


def resolve_mode(requested: Optional[str], settings: Settings) -> str:
    if requested:
        return requested
    return MODE_DISTRIBUTE if settings.distribute_only else MODE_TRADING


def build_controller(
    settings: Settings,
    client: Web3LedgerClient,
    main_account,
    ledger: WalletLedger,
    router: TradeRouter,
    metrics: VolumeMetrics,
    alerts: AlertManager,
    token: Optional[str],
) -> RunController:
    params = settings.cycle_parameters()
    rng = random.Random()
    stop_token = StopToken()
    state_store = BotStateStore(settings.bot_state_file)
    funding = FundingEngine(
        client,
        main_account,
        ledger,
        FundingConfig(
            total_num_wallets=params.total_num_wallets,
            min_deposit_wei=params.min_deposit_wei,
            max_deposit_wei=params.max_deposit_wei,
            stealth_mode=settings.stealth_mode,
            stealth_fund_address=settings.stealth_fund_address,
        ),
        rng=rng,
        metrics=metrics,
    )
    orchestrator = CycleOrchestrator(
        ledger, router, client, state_store, params, token or "", stop_token, rng=rng, metrics=metrics,
    )
    return RunController(
        funding, orchestrator, router, ledger, state_store, params, token, stop_token,
        rng=rng, alerts=alerts, metrics=metrics,
    )


async def main(mode: Optional[str] = None) -> int:
    log = build_logger(
        "volumebot",
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        file_path=os.getenv("LOG_FILE", "volumebot.log"),
    )

    try:
        settings = Settings.load()
        mode = resolve_mode(mode, settings)
        token = settings.token_address if mode == MODE_DISTRIBUTE else settings.require_token()
        main_account = Account.from_key(settings.private_key)
    except (ConfigError, ValueError) as exc:
        log.error(json.dumps({"event": "config_error", "err": str(exc)}))
        return 1

    log.info(json.dumps({"event": "startup", "mode": mode, "main_wallet": main_account.address, "token": token}))

    client = Web3LedgerClient(
        settings.rpc_url,
        chain_id=settings.chain_id,
        gas_price_markup_pct=settings.gas_price_markup_pct,
        tx_timeout=settings.tx_timeout_sec,
    )
    metrics = VolumeMetrics()
    start_metrics_server(metrics, settings.metrics_port)
    alerts = AlertManager(AlertConfig(
        webhook_url=settings.alert_webhook_url,
        webhook_type=settings.alert_webhook_type,
    ))
    ledger = WalletLedger(settings.wallet_log_file)
    router = TradeRouter(client, RouterConfig(
        token_manager=settings.token_manager_address,
        helper=settings.helper_address,
        amm_router=settings.amm_router_address,
        wrapped_native=settings.wrapped_native_address,
        use_amm_after_migration=settings.use_amm_after_migration,
        approval_settle_sec=settings.approval_settle_sec,
    ))

    try:
        if mode == MODE_GATHER:
            sweeper = GatherSweeper(client, router, ledger, main_account, token, metrics=metrics)
            report = await sweeper.sweep()
            await alerts.alert_gather_done(token, from_wei(report.swept_wei), report.failed)
            return 0

        controller = build_controller(settings, client, main_account, ledger, router, metrics, alerts, token)
        loop = asyncio.get_running_loop()
        # Windows doesn't support add_signal_handler, so rely on KeyboardInterrupt handling
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, controller.stop)
            except NotImplementedError:
                pass

        if mode == MODE_DISTRIBUTE:
            transfers = await controller.distribute_only()
            log.info(json.dumps({"event": "distribute_done", "transfers": transfers}))
        else:
            outcome = await controller.start()
            log.info(json.dumps({"event": "run_finished", "outcome": outcome.value}))
        return 0
    except Exception as exc:
        log.exception(json.dumps({"event": "fatal_error", "mode": mode, "err": str(exc)}))
        return 1
    finally:
        await alerts.close()
        await client.close()
        log.info("Shutdown complete")


def cli(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    try:
        code = asyncio.run(main(args.mode))
    except KeyboardInterrupt:
        print("\nBot stopped by user")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    cli()
