"""
On-chain side of the token buyer arbitrage bot: demand contract adapter, route
quoting and local re-pricing, profit search and private relay submission.
"""

from .bot import CycleOutcome, TokenBuyerArbitrageBot
from .flashbots_client import FlashbotsRelay, FlashbotsTransactionClient
from .graphql_client import PaginatedGraphQLClient
from .quoter import GasPriceProvider, UniswapV3QuoteOracle
from .route_utils import RoutePopulator
from .solver import ProfitSearch
from .token_buyer import TokenBuyerContract

__all__ = [
    "CycleOutcome",
    "TokenBuyerArbitrageBot",
    "FlashbotsRelay",
    "FlashbotsTransactionClient",
    "PaginatedGraphQLClient",
    "GasPriceProvider",
    "UniswapV3QuoteOracle",
    "RoutePopulator",
    "ProfitSearch",
    "TokenBuyerContract",
]
