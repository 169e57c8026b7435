"""
Async ledger client over web3.py.

Blocking web3 calls run on a shared thread pool so waiting for receipts does
not stall the event loop. Reads are retried with backoff; sends are never
retried, so a timeout can never turn into a double spend.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Sequence

from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

log = logging.getLogger("volumebot")

TRANSFER_GAS_LIMIT = 21000


class TransactionReverted(RuntimeError):
    """A mined transaction came back with status 0."""

    def __init__(self, tx_hash: str) -> None:
        super().__init__(f"transaction reverted: {tx_hash}")
        self.tx_hash = tx_hash


@dataclass
class TxReceipt:
    tx_hash: str
    gas_used: int = 0
    status: int = 1
    block_number: Optional[int] = None


class LedgerClient(Protocol):
    """Chain access consumed by the router, funding engine and sweeper. Amounts are wei."""

    async def get_balance(self, address: str) -> int: ...

    async def get_gas_price(self) -> int: ...

    async def send_transaction(
        self,
        account: LocalAccount,
        to: str,
        value: int,
        gas_limit: int = TRANSFER_GAS_LIMIT,
        gas_price: Optional[int] = None,
    ) -> TxReceipt: ...

    async def call_view(self, contract: str, abi: Sequence[Dict[str, Any]], method: str, *args: Any) -> Any: ...

    async def send_contract_transaction(
        self,
        account: LocalAccount,
        contract: str,
        abi: Sequence[Dict[str, Any]],
        method: str,
        *args: Any,
        value: int = 0,
        gas_price: Optional[int] = None,
    ) -> TxReceipt: ...


class Web3LedgerClient:
    def __init__(
        self,
        rpc_url: str,
        chain_id: int = 56,
        gas_price_markup_pct: int = 20,
        tx_timeout: float = 120.0,
        max_workers: int = 4,
        web3: Optional[Web3] = None,
    ) -> None:
        if web3 is None:
            web3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))
            # BSC headers carry validator data beyond the 32-byte extraData limit
            web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self.w3 = web3
        self.chain_id = chain_id
        self.gas_price_markup_pct = gas_price_markup_pct
        self.tx_timeout = tx_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="web3")
        self._contracts: Dict[str, Any] = {}

    async def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # ----- reads -----

    async def get_balance(self, address: str) -> int:
        checksum = Web3.to_checksum_address(address)
        return int(await self._read(lambda: self.w3.eth.get_balance(checksum)))

    async def get_gas_price(self) -> int:
        base = int(await self._read(lambda: self.w3.eth.gas_price))
        return base * (100 + self.gas_price_markup_pct) // 100

    async def call_view(self, contract: str, abi: Sequence[Dict[str, Any]], method: str, *args: Any) -> Any:
        fn = self._function(contract, abi, method, args)
        return await self._read(fn.call)

    # ----- writes -----

    async def send_transaction(
        self,
        account: LocalAccount,
        to: str,
        value: int,
        gas_limit: int = TRANSFER_GAS_LIMIT,
        gas_price: Optional[int] = None,
    ) -> TxReceipt:
        if gas_price is None:
            gas_price = await self.get_gas_price()
        to_checksum = Web3.to_checksum_address(to)

        def build() -> Dict[str, Any]:
            return {
                "to": to_checksum,
                "value": value,
                "gas": gas_limit,
                "gasPrice": gas_price,
                "nonce": self.w3.eth.get_transaction_count(account.address, "pending"),
                "chainId": self.chain_id,
            }

        return await self._submit(account, build)

    async def send_contract_transaction(
        self,
        account: LocalAccount,
        contract: str,
        abi: Sequence[Dict[str, Any]],
        method: str,
        *args: Any,
        value: int = 0,
        gas_price: Optional[int] = None,
    ) -> TxReceipt:
        if gas_price is None:
            gas_price = await self.get_gas_price()
        fn = self._function(contract, abi, method, args)

        def build() -> Dict[str, Any]:
            return fn.build_transaction({
                "from": account.address,
                "value": value,
                "gasPrice": gas_price,
                "nonce": self.w3.eth.get_transaction_count(account.address, "pending"),
                "chainId": self.chain_id,
            })

        return await self._submit(account, build)

    # ----- internals -----

    def _function(self, contract: str, abi: Sequence[Dict[str, Any]], method: str, args: tuple) -> Any:
        checksum = Web3.to_checksum_address(contract)
        key = f"{checksum}:{id(abi)}"
        instance = self._contracts.get(key)
        if instance is None:
            instance = self.w3.eth.contract(address=checksum, abi=list(abi))
            self._contracts[key] = instance
        converted = [_checksum_args(a) for a in args]
        return getattr(instance.functions, method)(*converted)

    async def _submit(self, account: LocalAccount, build: Callable[[], Dict[str, Any]]) -> TxReceipt:
        def run() -> TxReceipt:
            tx = build()
            signed = account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.tx_timeout)
            return TxReceipt(
                tx_hash=Web3.to_hex(tx_hash),
                gas_used=int(receipt["gasUsed"]),
                status=int(receipt["status"]),
                block_number=receipt.get("blockNumber"),
            )

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(self._executor, run)
        if result.status == 0:
            raise TransactionReverted(result.tx_hash)
        return result

    async def _read(self, fn: Callable[[], Any], retries: int = 2) -> Any:
        loop = asyncio.get_running_loop()
        backoff = 0.5
        for attempt in range(retries + 1):
            try:
                return await loop.run_in_executor(self._executor, fn)
            except Exception as exc:
                if attempt >= retries:
                    raise
                log.debug(json.dumps({"event": "rpc_retry", "attempt": attempt + 1, "err": str(exc)}))
                await asyncio.sleep(backoff + random.uniform(0, backoff * 0.5))
                backoff *= 2


def _checksum_args(value: Any) -> Any:
    if isinstance(value, str) and Web3.is_address(value.lower()):
        return Web3.to_checksum_address(value)
    if isinstance(value, list):
        return [_checksum_args(v) for v in value]
    return value
