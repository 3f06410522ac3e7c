"""
Chain address book and fixed-point constants.
"""

from dataclasses import dataclass
from typing import Dict, Tuple

# Fixed-point scale for the implied price, wide enough to keep precision
# between an 18-decimal native asset and a 6-decimal stablecoin.
PRICE_SCALE = 10**36

WEI_PER_ETHER = 10**18
GWEI = 10**9

MAINNET_CHAIN_ID = 1

DEFAULT_FLASHBOTS_RELAY = "https://relay.flashbots.net"
DEFAULT_SUBGRAPH_URL = "https://api.thegraph.com/subgraphs/name/uniswap/uniswap-v3"
DEFAULT_PAGE_SIZE = 1000

# Uniswap V3 fee tiers in hundredths of a bip
V3_FEE_TIERS: Tuple[int, ...] = (100, 500, 3000, 10000)

# Gas spent by the demand contract and executor around the swap itself
EXECUTION_GAS_OVERHEAD = 120_000


@dataclass(frozen=True)
class TokenInfo:
    """ERC20 token address and decimals."""

    symbol: str
    address: str
    decimals: int


@dataclass(frozen=True)
class NetworkAddresses:
    """Contract addresses the bot talks to on a single chain."""

    chain_id: int
    token_buyer: str
    payer: str
    arbitrage_bot: str
    usdc: TokenInfo
    weth: TokenInfo
    v3_factory: str
    v3_quoter: str
    swap_router: str
    v3_pool_init_code_hash: str

    @property
    def rounding_margin(self) -> int:
        """Stablecoin amount below which a near-complete fill is rounded up (1000 units)."""
        return 10**self.usdc.decimals * 1_000


NETWORKS: Dict[int, NetworkAddresses] = {
    MAINNET_CHAIN_ID: NetworkAddresses(
        chain_id=MAINNET_CHAIN_ID,
        token_buyer="0x4f2aCdc74f6941390d9b1804faBc3E780388cfe5",
        payer="0xd97Bcd9f47cEe35c0a9ec1dc40C1269afc9E8E1D",
        arbitrage_bot="0x62b66314509c053EC1c8c0919664Bdf09325e055",
        usdc=TokenInfo("USDC", "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6),
        weth=TokenInfo("WETH", "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", 18),
        v3_factory="0x1F98431c8aD98523631AE4a59f267346ea31F984",
        v3_quoter="0x61fFE014bA17989E743c5F6cB21bF9697530B21e",
        swap_router="0x68b3465833fb72A70ecDF485E0e4C7bD8665Fc45",
        v3_pool_init_code_hash="0xe34f199b19b2b4f47f68442619d555527d244f78a3297ea89325f843f87b8b54",
    ),
}
