"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv
from web3 import Web3

from volumebot.utils import to_wei

load_dotenv()

log = logging.getLogger("volumebot")

# BSC mainnet contracts
DEFAULT_TOKEN_MANAGER = "0x5c952063c7fc8610FFDB798152D69F0B9550762b"
DEFAULT_HELPER = "0xF251F83e40a78868FcfA3FA4599Dad6494E46034"
DEFAULT_PANCAKE_ROUTER = "0x10ED43C718714eb63d5aA57B78B54704E256024E"
DEFAULT_WBNB = "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c"


class ConfigError(ValueError):
    """Missing or invalid configuration; fatal before any wallet is touched."""


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None or val == "":
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from None


def _str_env(key: str, default: str | None = None) -> str | None:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


@dataclass(frozen=True)
class CycleParameters:
    """
    Bounds for every randomized decision of a trading run.

    Native-currency amounts are wei; percentages are 0-100; delays are
    milliseconds except the inter-cycle delay, which is seconds.
    """
    total_budget_wei: int = to_wei("18")
    total_num_wallets: int = 10
    min_deposit_wei: int = to_wei("0.01")
    max_deposit_wei: int = to_wei("0.02")
    min_buy_per_cycle: int = 3
    max_buy_per_cycle: int = 5
    min_sell_pct: float = 0.0
    max_sell_pct: float = 0.0
    min_sell_amount_pct: float = 50.0
    max_sell_amount_pct: float = 80.0
    min_buy_pct: float = 50.0
    max_buy_pct: float = 90.0
    min_cycle_delay_sec: float = 5.0
    max_cycle_delay_sec: float = 15.0
    min_buy_delay_ms: int = 2000
    max_buy_delay_ms: int = 8000
    min_sell_delay_ms: int = 4000
    max_sell_delay_ms: int = 12000
    gas_buffer_wei: int = to_wei("0.001")
    cycles_limit: int = 3
    use_amm_after_migration: bool = True


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    private_key: str
    token_address: str | None
    chain_id: int
    total_bnb: float
    total_num_wallets: int
    min_deposit_bnb: float
    max_deposit_bnb: float
    min_buy_per_cycle: int
    max_buy_per_cycle: int
    min_buy_pct: float
    max_buy_pct: float
    min_sell_pct: float
    max_sell_pct: float
    min_sell_amount_pct: float
    max_sell_amount_pct: float
    min_cycle_delay_sec: float
    max_cycle_delay_sec: float
    min_buy_delay_ms: int
    max_buy_delay_ms: int
    min_sell_delay_ms: int
    max_sell_delay_ms: int
    gas_buffer_bnb: float
    cycles_limit: int
    use_amm_after_migration: bool
    stealth_mode: bool
    stealth_fund_address: str | None
    token_manager_address: str
    helper_address: str
    amm_router_address: str
    wrapped_native_address: str
    gas_price_markup_pct: int
    tx_timeout_sec: float
    approval_settle_sec: float
    wallet_log_file: str
    bot_state_file: str
    distribute_only: bool
    log_level: str
    log_file: str | None
    metrics_port: int
    alert_webhook_url: str | None
    alert_webhook_type: str

    def dump(self) -> dict:
        """Settings for logging, with the main key removed."""
        data = self.__dict__.copy()
        data.pop("private_key", None)
        return data

    @classmethod
    def load(cls) -> "Settings":
        cfg = cls(
            rpc_url=_str_env("RPC_URL", ""),
            private_key=_str_env("PRIVATE_KEY", ""),
            token_address=_str_env("TOKEN_ADDRESS"),
            chain_id=_int_env("CHAIN_ID", 56),
            total_bnb=_float_env("TOTAL_BNB", 18),
            total_num_wallets=_int_env("TOTAL_NUM_WALLETS", 10),
            min_deposit_bnb=_float_env("MIN_DEPOSIT_BNB", 0.01),
            max_deposit_bnb=_float_env("MAX_DEPOSIT_BNB", 0.02),
            min_buy_per_cycle=_int_env("MIN_BUY_NUM_PER_CYCLE", 3),
            max_buy_per_cycle=_int_env("MAX_BUY_NUM_PER_CYCLE", 5),
            min_buy_pct=_float_env("MIN_BUY_PERCENT_BNB", 50),
            max_buy_pct=_float_env("MAX_BUY_PERCENT_BNB", 90),
            min_sell_pct=_float_env("MIN_PERCENT_SELL", 0),
            max_sell_pct=_float_env("MAX_PERCENT_SELL", 0),
            min_sell_amount_pct=_float_env("MIN_PERCENT_SELL_AMOUNT_AFTER_BUY", 50),
            max_sell_amount_pct=_float_env("MAX_PERCENT_SELL_AMOUNT_AFTER_BUY", 80),
            min_cycle_delay_sec=_float_env("MIN_PER_CYCLE_TIME", 5),
            max_cycle_delay_sec=_float_env("MAX_PER_CYCLE_TIME", 15),
            min_buy_delay_ms=_int_env("MIN_DELAY_BUY", 2000),
            max_buy_delay_ms=_int_env("MAX_DELAY_BUY", 8000),
            min_sell_delay_ms=_int_env("MIN_DELAY_SELL", 4000),
            max_sell_delay_ms=_int_env("MAX_DELAY_SELL", 12000),
            gas_buffer_bnb=_float_env("GAS_BUFFER_BNB", 0.001),
            cycles_limit=_int_env("CYCLE_LIMIT", 3),
            use_amm_after_migration=env_bool("USE_PANCAKE_AFTER_MIGRATION", True),
            stealth_mode=env_bool("STEALTH_MODE", False),
            stealth_fund_address=_str_env("STEALTH_FUND_ADDRESS"),
            token_manager_address=_str_env("TOKEN_MANAGER2", DEFAULT_TOKEN_MANAGER),
            helper_address=_str_env("HELPER3_ADDRESS", DEFAULT_HELPER),
            amm_router_address=_str_env("PANCAKE_ROUTER_ADDRESS", DEFAULT_PANCAKE_ROUTER),
            wrapped_native_address=_str_env("WBNB_ADDRESS", DEFAULT_WBNB),
            gas_price_markup_pct=_int_env("GAS_PRICE_MARKUP_PCT", 20),
            tx_timeout_sec=_float_env("TX_TIMEOUT_SEC", 120),
            approval_settle_sec=_float_env("APPROVAL_SETTLE_SEC", 5),
            wallet_log_file=_str_env("WALLET_LOG_FILE", "wallets.json"),
            bot_state_file=_str_env("BOT_STATE_FILE", "bot-state.json"),
            distribute_only=env_bool("DISTRIBUTE_ONLY", False),
            log_level=_str_env("LOG_LEVEL", "INFO"),
            log_file=_str_env("LOG_FILE", "volumebot.log"),
            metrics_port=_int_env("METRICS_PORT", 0),
            alert_webhook_url=_str_env("ALERT_WEBHOOK_URL"),
            alert_webhook_type=_str_env("ALERT_WEBHOOK_TYPE", "generic"),
        )
        cfg._validate()
        _sanity_check(cfg)
        return cfg

    def require_token(self) -> str:
        if not self.token_address:
            raise ConfigError("TOKEN_ADDRESS is required for trading and gathering")
        return self.token_address

    def cycle_parameters(self) -> CycleParameters:
        return CycleParameters(
            total_budget_wei=to_wei(self.total_bnb),
            total_num_wallets=self.total_num_wallets,
            min_deposit_wei=to_wei(self.min_deposit_bnb),
            max_deposit_wei=to_wei(self.max_deposit_bnb),
            min_buy_per_cycle=self.min_buy_per_cycle,
            max_buy_per_cycle=self.max_buy_per_cycle,
            min_sell_pct=self.min_sell_pct,
            max_sell_pct=self.max_sell_pct,
            min_sell_amount_pct=self.min_sell_amount_pct,
            max_sell_amount_pct=self.max_sell_amount_pct,
            min_buy_pct=self.min_buy_pct,
            max_buy_pct=self.max_buy_pct,
            min_cycle_delay_sec=self.min_cycle_delay_sec,
            max_cycle_delay_sec=self.max_cycle_delay_sec,
            min_buy_delay_ms=self.min_buy_delay_ms,
            max_buy_delay_ms=self.max_buy_delay_ms,
            min_sell_delay_ms=self.min_sell_delay_ms,
            max_sell_delay_ms=self.max_sell_delay_ms,
            gas_buffer_wei=to_wei(self.gas_buffer_bnb),
            cycles_limit=self.cycles_limit,
            use_amm_after_migration=self.use_amm_after_migration,
        )

    def _validate(self) -> None:
        if not self.rpc_url:
            raise ConfigError("RPC_URL is not set")
        if not self.private_key:
            raise ConfigError("PRIVATE_KEY is not set")

        addresses = {
            "TOKEN_ADDRESS": self.token_address,
            "STEALTH_FUND_ADDRESS": self.stealth_fund_address,
            "TOKEN_MANAGER2": self.token_manager_address,
            "HELPER3_ADDRESS": self.helper_address,
            "PANCAKE_ROUTER_ADDRESS": self.amm_router_address,
            "WBNB_ADDRESS": self.wrapped_native_address,
        }
        # Checksum casing is not required here; addresses are normalized at call time
        for key, value in addresses.items():
            if value and not Web3.is_address(value.lower()):
                raise ConfigError(f"{key} is not a valid address: {value}")

        if self.stealth_mode and not self.stealth_fund_address:
            raise ConfigError("STEALTH_MODE requires STEALTH_FUND_ADDRESS")

        if self.total_bnb <= 0:
            raise ConfigError("TOTAL_BNB must be > 0")
        if self.total_num_wallets <= 0:
            raise ConfigError("TOTAL_NUM_WALLETS must be > 0")
        if self.min_deposit_bnb <= 0 or self.min_deposit_bnb > self.max_deposit_bnb:
            raise ConfigError("Deposit bounds must satisfy 0 < MIN_DEPOSIT_BNB <= MAX_DEPOSIT_BNB")
        if self.min_buy_per_cycle < 1 or self.min_buy_per_cycle > self.max_buy_per_cycle:
            raise ConfigError("Buy count bounds must satisfy 1 <= MIN_BUY_NUM_PER_CYCLE <= MAX_BUY_NUM_PER_CYCLE")
        if self.gas_buffer_bnb < 0:
            raise ConfigError("GAS_BUFFER_BNB must be >= 0")
        if self.cycles_limit < 0:
            raise ConfigError("CYCLE_LIMIT must be >= 0 (0 = unlimited)")

        pct_bounds = {
            "BUY_PERCENT_BNB": (self.min_buy_pct, self.max_buy_pct),
            "PERCENT_SELL": (self.min_sell_pct, self.max_sell_pct),
            "PERCENT_SELL_AMOUNT_AFTER_BUY": (self.min_sell_amount_pct, self.max_sell_amount_pct),
        }
        for key, (lo, hi) in pct_bounds.items():
            if not (0 <= lo <= 100 and 0 <= hi <= 100):
                raise ConfigError(f"MIN_/MAX_{key} must be within 0-100")
        if self.min_buy_pct > self.max_buy_pct:
            raise ConfigError("MIN_BUY_PERCENT_BNB must be <= MAX_BUY_PERCENT_BNB")
        if self.min_sell_amount_pct > self.max_sell_amount_pct:
            raise ConfigError("MIN_PERCENT_SELL_AMOUNT_AFTER_BUY must be <= MAX_PERCENT_SELL_AMOUNT_AFTER_BUY")

        delay_bounds = {
            "PER_CYCLE_TIME": (self.min_cycle_delay_sec, self.max_cycle_delay_sec),
            "DELAY_BUY": (self.min_buy_delay_ms, self.max_buy_delay_ms),
            "DELAY_SELL": (self.min_sell_delay_ms, self.max_sell_delay_ms),
        }
        for key, (lo, hi) in delay_bounds.items():
            if lo < 0 or lo > hi:
                raise ConfigError(f"MIN_{key} must be >= 0 and <= MAX_{key}")

        # A max-sell-percent below the min is tolerated and raised to the min
        # when sell bounds are computed.
        if self.max_sell_pct < self.min_sell_pct:
            log.warning(
                f"WARNING: MAX_PERCENT_SELL={self.max_sell_pct} < MIN_PERCENT_SELL={self.min_sell_pct}; "
                "the minimum will be used as the maximum."
            )

        budget_floor = self.min_deposit_bnb * self.total_num_wallets
        if self.total_bnb < budget_floor:
            log.warning(
                f"WARNING: TOTAL_BNB={self.total_bnb} cannot fund {self.total_num_wallets} wallets "
                f"at MIN_DEPOSIT_BNB={self.min_deposit_bnb}; some wallets will stay unfunded."
            )


def _sanity_check(cfg: Settings) -> None:
    """Log the effective settings once at startup so overrides are obvious."""
    payload = {
        "event": "config_loaded",
        "token": cfg.token_address,
        "total_bnb": cfg.total_bnb,
        "wallets": cfg.total_num_wallets,
        "deposit_range": [cfg.min_deposit_bnb, cfg.max_deposit_bnb],
        "buys_per_cycle": [cfg.min_buy_per_cycle, cfg.max_buy_per_cycle],
        "cycles_limit": cfg.cycles_limit,
        "stealth_mode": cfg.stealth_mode,
        "use_amm_after_migration": cfg.use_amm_after_migration,
    }
    log.info(json.dumps(payload))
