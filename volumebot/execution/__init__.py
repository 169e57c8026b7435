"""
Execution layer components.

- TradeRouter: venue selection and buy/sell/approve on the bonding curve or AMM
- FundingEngine: wallet creation and deposits from the main wallet
- GatherSweeper: end-of-campaign sell-off and BNB sweep
"""

from volumebot.execution.funding import FundingConfig, FundingEngine
from volumebot.execution.gather_sweeper import GatherReport, GatherSweeper
from volumebot.execution.trade_router import BuyResult, RouterConfig, SellResult, TradeRouter, Venue

__all__ = [
    "FundingConfig",
    "FundingEngine",
    "GatherReport",
    "GatherSweeper",
    "BuyResult",
    "RouterConfig",
    "SellResult",
    "TradeRouter",
    "Venue",
]
