"""
Token Buyer Arbitrage Bot.

Watches an on-chain contract that periodically buys a stablecoin with native
currency, fills that demand from on-chain liquidity whenever the contract's
rate beats the market net of execution cost, and lands the trade through a
private relay.
"""

from tokenbuyer_arb.version import __version__

PROJECT_NAME = "tokenbuyer-arb"
VERSION = __version__

__all__ = ["PROJECT_NAME", "VERSION", "__version__"]
