"""
TradeRouter: venue selection and buy/sell execution for one token.

Before migration a token trades against the four.meme bonding curve; after
migration liquidity lives in a PancakeSwap pool. The venue is a tagged value
and each operation dispatches on it through a table, so call sites never branch
on a migration boolean themselves.

Every on-chain failure is caught here and reported as an empty result
(``tx_hash == ""``); callers record the failure and move on.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from eth_account.signers.local import LocalAccount

from volumebot.infra.abi import (
    ERC20_ABI,
    HELPER_ABI,
    PANCAKE_ROUTER_ABI,
    TOKEN_INFO_LIQUIDITY_ADDED,
    TOKEN_MANAGER_ABI,
)
from volumebot.infra.ledger_client import LedgerClient
from volumebot.utils import MAX_UINT256, format_units, to_wei, truncate_to_step

log = logging.getLogger("volumebot")

# Allowance below this is topped up before trading
MIN_STANDING_ALLOWANCE = to_wei(1)


class Venue(str, Enum):
    NATIVE_CURVE = "native-curve"
    AMM_ROUTER = "amm-router"


@dataclass
class BuyResult:
    venue: Venue
    tx_hash: str = ""
    token_balance: int = 0
    estimated_tokens: int = 0
    gas_used: int = 0

    @property
    def ok(self) -> bool:
        return bool(self.tx_hash)


@dataclass
class SellResult:
    venue: Venue
    tx_hash: str = ""
    amount: int = 0
    gas_used: int = 0

    @property
    def ok(self) -> bool:
        return bool(self.tx_hash)


@dataclass
class RouterConfig:
    token_manager: str
    helper: str
    amm_router: str
    wrapped_native: str
    use_amm_after_migration: bool = True
    # Some RPC nodes lag before a fresh allowance is visible to the next call
    approval_settle_sec: float = 5.0
    swap_deadline_sec: int = 3600


class TradeRouter:
    def __init__(
        self,
        client: LedgerClient,
        config: RouterConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.config = config
        self._sleep = sleep
        self._buyers = {
            Venue.NATIVE_CURVE: self._buy_curve,
            Venue.AMM_ROUTER: self._buy_amm,
        }
        self._sellers = {
            Venue.NATIVE_CURVE: self._sell_curve,
            Venue.AMM_ROUTER: self._sell_amm,
        }
        self._spenders = {
            Venue.NATIVE_CURVE: config.token_manager,
            Venue.AMM_ROUTER: config.amm_router,
        }

    def _log_event(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log.log(level, json.dumps({"event": event, **kwargs}, default=str))

    # ========== Venue selection ==========

    async def is_migrated(self, token: str) -> bool:
        try:
            info = await self.client.call_view(self.config.helper, HELPER_ABI, "getTokenInfo", token)
            return bool(info[TOKEN_INFO_LIQUIDITY_ADDED])
        except Exception as exc:
            self._log_event("migration_query_error", logging.WARNING, token=token, err=str(exc))
            return False

    async def select_venue(self, token: str) -> Venue:
        if self.config.use_amm_after_migration and await self.is_migrated(token):
            return Venue.AMM_ROUTER
        return Venue.NATIVE_CURVE

    def spender_for(self, venue: Venue) -> str:
        return self._spenders[venue]

    # ========== Reads ==========

    async def token_balance(self, address: str, token: str) -> int:
        return int(await self.client.call_view(token, ERC20_ABI, "balanceOf", address))

    async def allowance(self, owner: str, token: str, spender: str) -> int:
        return int(await self.client.call_view(token, ERC20_ABI, "allowance", owner, spender))

    # ========== Buy ==========

    async def buy(
        self,
        account: LocalAccount,
        token: str,
        spend_wei: int,
        venue: Optional[Venue] = None,
    ) -> BuyResult:
        if venue is None:
            venue = await self.select_venue(token)
        if spend_wei <= 0:
            return BuyResult(venue=venue)
        try:
            result = await self._buyers[venue](account, token, spend_wei)
        except Exception as exc:
            self._log_event(
                "buy_failed", logging.ERROR,
                address=account.address, venue=venue.value, bnb=format_units(spend_wei), err=str(exc),
            )
            return BuyResult(venue=venue)
        # The buy is on chain from here; a failed read must not lose its hash
        try:
            result.token_balance = await self.token_balance(account.address, token)
        except Exception as exc:
            result.token_balance = result.estimated_tokens
            self._log_event(
                "balance_query_error", logging.WARNING,
                address=account.address, tx=result.tx_hash, err=str(exc),
            )
        self._log_event(
            "buy_confirmed",
            address=account.address,
            venue=venue.value,
            bnb=format_units(spend_wei),
            tokens=format_units(result.token_balance),
            quoted=format_units(result.estimated_tokens),
            tx=result.tx_hash,
        )
        return result

    async def _buy_curve(self, account: LocalAccount, token: str, funds: int) -> BuyResult:
        quote = await self.client.call_view(self.config.helper, HELPER_ABI, "tryBuy", token, 0, funds)
        estimated = int(quote[2])
        receipt = await self.client.send_contract_transaction(
            account, self.config.token_manager, TOKEN_MANAGER_ABI, "buyTokenAMAP",
            token, funds, 0,
            value=funds,
        )
        return BuyResult(
            venue=Venue.NATIVE_CURVE,
            tx_hash=receipt.tx_hash,
            estimated_tokens=estimated,
            gas_used=receipt.gas_used,
        )

    async def _buy_amm(self, account: LocalAccount, token: str, funds: int) -> BuyResult:
        # amountOutMin = 0: accept slippage for speed
        receipt = await self.client.send_contract_transaction(
            account, self.config.amm_router, PANCAKE_ROUTER_ABI, "swapExactETHForTokens",
            0, [self.config.wrapped_native, token], account.address, self._deadline(),
            value=funds,
        )
        return BuyResult(venue=Venue.AMM_ROUTER, tx_hash=receipt.tx_hash, gas_used=receipt.gas_used)

    # ========== Sell ==========

    async def sell(
        self,
        account: LocalAccount,
        token: str,
        amount: int,
        venue: Optional[Venue] = None,
    ) -> SellResult:
        if venue is None:
            venue = await self.select_venue(token)
        amount = truncate_to_step(amount)
        if amount <= 0:
            return SellResult(venue=venue)
        try:
            await self.ensure_allowance(account, token, self.spender_for(venue), amount)
            result = await self._sellers[venue](account, token, amount)
            self._log_event(
                "sell_confirmed",
                address=account.address,
                venue=venue.value,
                tokens=format_units(amount),
                tx=result.tx_hash,
            )
            return result
        except Exception as exc:
            self._log_event(
                "sell_failed", logging.ERROR,
                address=account.address, venue=venue.value, tokens=format_units(amount), err=str(exc),
            )
            return SellResult(venue=venue)

    async def _sell_curve(self, account: LocalAccount, token: str, amount: int) -> SellResult:
        receipt = await self.client.send_contract_transaction(
            account, self.config.token_manager, TOKEN_MANAGER_ABI, "sellToken",
            token, amount,
        )
        return SellResult(venue=Venue.NATIVE_CURVE, tx_hash=receipt.tx_hash, amount=amount, gas_used=receipt.gas_used)

    async def _sell_amm(self, account: LocalAccount, token: str, amount: int) -> SellResult:
        receipt = await self.client.send_contract_transaction(
            account, self.config.amm_router, PANCAKE_ROUTER_ABI, "swapExactTokensForETH",
            amount, 0, [token, self.config.wrapped_native], account.address, self._deadline(),
        )
        return SellResult(venue=Venue.AMM_ROUTER, tx_hash=receipt.tx_hash, amount=amount, gas_used=receipt.gas_used)

    # ========== Approvals ==========

    async def ensure_allowance(self, account: LocalAccount, token: str, spender: str, amount: int) -> bool:
        """
        Approve ``spender`` for the max amount if the current allowance is short.

        Returns True when an approval transaction was sent. Errors propagate to
        the caller so a sell never goes out against a missing allowance.
        """
        current = await self.allowance(account.address, token, spender)
        if current >= amount:
            return False
        receipt = await self.client.send_contract_transaction(
            account, token, ERC20_ABI, "approve", spender, MAX_UINT256,
        )
        self._log_event("approval_sent", address=account.address, spender=spender, tx=receipt.tx_hash)
        if self.config.approval_settle_sec > 0:
            await self._sleep(self.config.approval_settle_sec)
        return True

    async def approve(self, account: LocalAccount, token: str, venue: Optional[Venue] = None) -> bool:
        """Best-effort standing approval for the venue's spender. Never raises."""
        if venue is None:
            venue = await self.select_venue(token)
        try:
            await self.ensure_allowance(account, token, self.spender_for(venue), MIN_STANDING_ALLOWANCE)
            return True
        except Exception as exc:
            self._log_event(
                "approval_failed", logging.WARNING,
                address=account.address, venue=venue.value, err=str(exc),
            )
            return False

    def _deadline(self) -> int:
        return int(time.time()) + self.config.swap_deadline_sec
