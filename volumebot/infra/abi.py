"""
Contract ABIs used by the router, funding engine and gather sweeper.
"""

from __future__ import annotations

from typing import Any, Dict, List


def _fn(
    name: str,
    inputs: List[tuple],
    outputs: List[tuple] | None = None,
    mutability: str = "nonpayable",
) -> Dict[str, Any]:
    def params(items: List[tuple]) -> List[Dict[str, str]]:
        return [{"name": n, "type": t, "internalType": t} for n, t in items]

    return {
        "type": "function",
        "name": name,
        "inputs": params(inputs),
        "outputs": params(outputs or []),
        "stateMutability": mutability,
    }


ERC20_ABI = [
    _fn("approve", [("spender", "address"), ("amount", "uint256")], [("", "bool")]),
    _fn("allowance", [("owner", "address"), ("spender", "address")], [("", "uint256")], "view"),
    _fn("balanceOf", [("owner", "address")], [("", "uint256")], "view"),
    _fn("decimals", [], [("", "uint8")], "view"),
    _fn("symbol", [], [("", "string")], "view"),
]

# four.meme bonding-curve manager
TOKEN_MANAGER_ABI = [
    _fn("buyToken", [("token", "address"), ("amount", "uint256"), ("maxFunds", "uint256")], mutability="payable"),
    _fn("buyTokenAMAP", [("token", "address"), ("funds", "uint256"), ("minAmount", "uint256")], mutability="payable"),
    _fn("sellToken", [("token", "address"), ("amount", "uint256")]),
    _fn("sellTokenAMAP", [("token", "address"), ("amount", "uint256"), ("minBNB", "uint256")]),
]

# Index of the liquidityAdded flag in getTokenInfo's output tuple
TOKEN_INFO_LIQUIDITY_ADDED = 11

HELPER_ABI = [
    _fn(
        "getTokenInfo",
        [("token", "address")],
        [
            ("version", "uint256"),
            ("tokenManager", "address"),
            ("quote", "address"),
            ("lastPrice", "uint256"),
            ("tradingFeeRate", "uint256"),
            ("minTradingFee", "uint256"),
            ("launchTime", "uint256"),
            ("offers", "uint256"),
            ("maxOffers", "uint256"),
            ("funds", "uint256"),
            ("maxFunds", "uint256"),
            ("liquidityAdded", "bool"),
        ],
        "view",
    ),
    _fn(
        "tryBuy",
        [("token", "address"), ("amount", "uint256"), ("funds", "uint256")],
        [
            ("tokenManager", "address"),
            ("quote", "address"),
            ("estimatedAmount", "uint256"),
            ("estimatedCost", "uint256"),
            ("estimatedFee", "uint256"),
            ("amountMsgValue", "uint256"),
            ("amountApproval", "uint256"),
            ("amountFunds", "uint256"),
        ],
        "view",
    ),
    _fn(
        "trySell",
        [("token", "address"), ("amount", "uint256")],
        [("tokenManager", "address"), ("quote", "address"), ("funds", "uint256"), ("fee", "uint256")],
        "view",
    ),
]

PANCAKE_ROUTER_ABI = [
    _fn(
        "swapExactETHForTokens",
        [("amountOutMin", "uint256"), ("path", "address[]"), ("to", "address"), ("deadline", "uint256")],
        [("amounts", "uint256[]")],
        "payable",
    ),
    _fn(
        "swapExactTokensForETH",
        [
            ("amountIn", "uint256"),
            ("amountOutMin", "uint256"),
            ("path", "address[]"),
            ("to", "address"),
            ("deadline", "uint256"),
        ],
        [("amounts", "uint256[]")],
    ),
]

# Batching contract that forwards msg.value to several recipients
STEALTH_FUND_ABI = [
    _fn("multiFund", [("recipients", "address[]"), ("amounts", "uint256[]")], mutability="payable"),
]
