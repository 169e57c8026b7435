"""
BSC token volume bot.

Funds a pool of disposable wallets from one main wallet, then runs randomized
buy/sell cycles against a four.meme bonding curve or, after migration, a
PancakeSwap pool.
"""

__version__ = "0.1.0"
