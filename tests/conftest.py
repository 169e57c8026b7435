"""
Pytest configuration and shared fakes.

FakeLedgerClient keeps BNB balances, token balances and allowances in memory
and records every transaction. FakeRouter stands in for TradeRouter where a
test only cares about orchestration.
"""

import random
from typing import Any, Callable, Dict, List, Set

import pytest
from eth_account import Account

from volumebot.config.config import CycleParameters
from volumebot.execution.trade_router import BuyResult, SellResult, Venue
from volumebot.infra.ledger_client import TRANSFER_GAS_LIMIT, TxReceipt
from volumebot.state.bot_state import BotStateStore
from volumebot.state.wallet_ledger import WalletLedger, WalletRecord, WalletStatus
from volumebot.utils import from_wei, to_wei, truncate_to_step

TOKEN = "0x1111111111111111111111111111111111111111"
GWEI = 10**9


class FakeLedgerClient:
    """In-memory chain. Addresses are compared lowercase."""

    def __init__(self, gas_price: int = 5 * GWEI) -> None:
        self.gas_price = gas_price
        self.balances: Dict[str, int] = {}
        self.token_balances: Dict[str, int] = {}
        self.allowances: Dict[tuple, int] = {}
        self.migrated = False
        self.fail_balance: Set[str] = set()
        self.fail_send: Set[str] = set()
        self.fail_methods: Set[str] = set()
        self.fail_gas_price = False
        self.transfers: List[Dict[str, Any]] = []
        self.contract_calls: List[Dict[str, Any]] = []
        self._tx_counter = 0

    def set_balance(self, address: str, wei: int) -> None:
        self.balances[address.lower()] = wei

    def balance_of(self, address: str) -> int:
        return self.balances.get(address.lower(), 0)

    def _next_hash(self) -> str:
        self._tx_counter += 1
        return f"0x{self._tx_counter:064x}"

    async def get_balance(self, address: str) -> int:
        if address.lower() in self.fail_balance:
            raise ConnectionError("rpc unavailable")
        return self.balance_of(address)

    async def get_gas_price(self) -> int:
        if self.fail_gas_price:
            raise ConnectionError("eth_gasPrice timed out")
        return self.gas_price

    async def send_transaction(self, account, to, value, gas_limit=TRANSFER_GAS_LIMIT, gas_price=None) -> TxReceipt:
        sender = account.address.lower()
        if sender in self.fail_send:
            raise RuntimeError("nonce too low")
        gas_price = self.gas_price if gas_price is None else gas_price
        self.balances[sender] = self.balance_of(sender) - value - TRANSFER_GAS_LIMIT * gas_price
        self.balances[to.lower()] = self.balance_of(to) + value
        self.transfers.append({"from": account.address, "to": to, "value": value})
        return TxReceipt(tx_hash=self._next_hash(), gas_used=TRANSFER_GAS_LIMIT)

    async def call_view(self, contract, abi, method, *args) -> Any:
        if method in self.fail_methods:
            raise ConnectionError(f"{method} failed")
        if method == "balanceOf":
            return self.token_balances.get(args[0].lower(), 0)
        if method == "allowance":
            return self.allowances.get((args[0].lower(), args[1].lower()), 0)
        if method == "getTokenInfo":
            return (2, contract, contract, 0, 0, 0, 0, 0, 0, 0, 0, self.migrated)
        if method == "tryBuy":
            funds = args[2]
            return (contract, contract, funds * 1000, funds, 0, funds, 0, funds)
        raise AssertionError(f"unexpected view {method}")

    async def send_contract_transaction(self, account, contract, abi, method, *args, value=0, gas_price=None) -> TxReceipt:
        if method in self.fail_methods or account.address.lower() in self.fail_send:
            raise RuntimeError(f"{method} reverted")
        sender = account.address.lower()
        self.contract_calls.append({
            "from": account.address, "contract": contract, "method": method, "args": args, "value": value,
        })
        self.balances[sender] = self.balance_of(sender) - value
        if method == "approve":
            self.allowances[(sender, args[0].lower())] = args[1]
        elif method in ("buyTokenAMAP", "swapExactETHForTokens"):
            self.token_balances[sender] = self.token_balances.get(sender, 0) + value * 1000
        elif method == "sellToken":
            self.token_balances[sender] -= args[1]
        elif method == "swapExactTokensForETH":
            self.token_balances[sender] -= args[0]
        elif method == "multiFund":
            for recipient, amount in zip(args[0], args[1]):
                self.balances[recipient.lower()] = self.balance_of(recipient) + amount
        return TxReceipt(tx_hash=self._next_hash(), gas_used=100000)


class FakeRouter:
    """TradeRouter stand-in backed by FakeLedgerClient balances."""

    def __init__(self, client: FakeLedgerClient, venue: Venue = Venue.NATIVE_CURVE) -> None:
        self.client = client
        self.venue = venue
        self.fail_buy: Set[str] = set()
        self.raise_on_buy: Set[str] = set()
        self.fail_sell: Set[str] = set()
        self.fail_approve: Set[str] = set()
        self.buys: List[Dict[str, Any]] = []
        self.sells: List[Dict[str, Any]] = []
        self.approvals: List[str] = []
        self.observed_balances: Dict[str, int] = {}

    async def select_venue(self, token: str) -> Venue:
        return self.venue

    async def token_balance(self, address: str, token: str) -> int:
        balance = self.client.token_balances.get(address.lower(), 0)
        self.observed_balances[address.lower()] = balance
        return balance

    async def buy(self, account, token, spend_wei, venue=None) -> BuyResult:
        addr = account.address.lower()
        if addr in self.raise_on_buy:
            raise RuntimeError("unexpected router error")
        if addr in self.fail_buy or spend_wei <= 0:
            return BuyResult(venue=self.venue)
        self.client.balances[addr] = self.client.balance_of(addr) - spend_wei
        self.client.token_balances[addr] = self.client.token_balances.get(addr, 0) + spend_wei * 1000
        self.buys.append({"address": account.address, "spend": spend_wei})
        return BuyResult(
            venue=self.venue,
            tx_hash=self.client._next_hash(),
            token_balance=self.client.token_balances[addr],
        )

    async def sell(self, account, token, amount, venue=None) -> SellResult:
        addr = account.address.lower()
        amount = truncate_to_step(amount)
        if addr in self.fail_sell or amount <= 0:
            return SellResult(venue=venue or self.venue)
        self.client.token_balances[addr] -= amount
        self.sells.append({"address": account.address, "amount": amount})
        return SellResult(venue=venue or self.venue, tx_hash=self.client._next_hash(), amount=amount)

    async def approve(self, account, token, venue=None) -> bool:
        if account.address.lower() in self.fail_approve:
            return False
        self.approvals.append(account.address)
        return True


async def no_sleep(_seconds: float) -> None:
    return None


def seed_wallets(
    ledger: WalletLedger,
    client: FakeLedgerClient,
    balances_bnb: List[str],
    status: WalletStatus = WalletStatus.DEPOSITED,
) -> List[WalletRecord]:
    """Create funded wallets on the ledger with matching on-chain balances."""
    records = []
    for bnb in balances_bnb:
        acct = Account.create()
        wei = to_wei(bnb)
        record = ledger.upsert(WalletRecord(
            index=ledger.next_index(),
            address=acct.address,
            private_key=acct.key.hex(),
            deposit_bnb=from_wei(wei),
            last_bnb=from_wei(wei),
            status=status,
        ))
        client.set_balance(acct.address, wei)
        records.append(record)
    return records


def make_params(**overrides) -> CycleParameters:
    base = dict(
        total_budget_wei=to_wei("1"),
        total_num_wallets=3,
        min_deposit_wei=to_wei("0.1"),
        max_deposit_wei=to_wei("0.3"),
        min_buy_per_cycle=2,
        max_buy_per_cycle=2,
        min_sell_pct=0.0,
        max_sell_pct=0.0,
        min_sell_amount_pct=50.0,
        max_sell_amount_pct=80.0,
        min_buy_pct=50.0,
        max_buy_pct=90.0,
        min_cycle_delay_sec=0.0,
        max_cycle_delay_sec=0.0,
        min_buy_delay_ms=0,
        max_buy_delay_ms=0,
        min_sell_delay_ms=0,
        max_sell_delay_ms=0,
        gas_buffer_wei=to_wei("0.001"),
        cycles_limit=2,
        use_amm_after_migration=True,
    )
    base.update(overrides)
    return CycleParameters(**base)


@pytest.fixture
def client() -> FakeLedgerClient:
    return FakeLedgerClient()


@pytest.fixture
def router(client) -> FakeRouter:
    return FakeRouter(client)


@pytest.fixture
def ledger(tmp_path) -> WalletLedger:
    return WalletLedger(tmp_path / "wallets.json")


@pytest.fixture
def state_store(tmp_path) -> BotStateStore:
    return BotStateStore(tmp_path / "bot-state.json")


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def main_account():
    return Account.create()


@pytest.fixture
def sleep_calls() -> List[float]:
    return []


@pytest.fixture
def recording_sleep(sleep_calls) -> Callable:
    async def _sleep(seconds: float) -> None:
        sleep_calls.append(seconds)
    return _sleep
