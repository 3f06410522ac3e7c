"""
Route oracle backed by on-chain Uniswap V3 quoting.

For an exact stablecoin output, every configured fee tier of the
wrapped-native/stablecoin pair is quoted through QuoterV2; the cheapest tier
wins. The result carries the pool state (for local re-pricing), an execution
cost estimate in the input asset, and router calldata that performs the swap.
"""

import logging
import time
from decimal import Decimal
from typing import Optional, Protocol, Sequence

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, Web3Exception

from ..constants import EXECUTION_GAS_OVERHEAD, GWEI, V3_FEE_TIERS, NetworkAddresses
from ..utils import apply_slippage
from .types import Route, SwapQuote, V3Pool

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

V3_FACTORY_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "tokenA", "type": "address"},
            {"internalType": "address", "name": "tokenB", "type": "address"},
            {"internalType": "uint24", "name": "fee", "type": "uint24"},
        ],
        "name": "getPool",
        "outputs": [{"internalType": "address", "name": "pool", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    }
]

QUOTER_V2_ABI = [
    {
        "inputs": [
            {
                "components": [
                    {"internalType": "address", "name": "tokenIn", "type": "address"},
                    {"internalType": "address", "name": "tokenOut", "type": "address"},
                    {"internalType": "uint256", "name": "amount", "type": "uint256"},
                    {"internalType": "uint24", "name": "fee", "type": "uint24"},
                    {"internalType": "uint160", "name": "sqrtPriceLimitX96", "type": "uint160"},
                ],
                "internalType": "struct IQuoterV2.QuoteExactOutputSingleParams",
                "name": "params",
                "type": "tuple",
            }
        ],
        "name": "quoteExactOutputSingle",
        "outputs": [
            {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
            {"internalType": "uint160", "name": "sqrtPriceX96After", "type": "uint160"},
            {"internalType": "uint32", "name": "initializedTicksCrossed", "type": "uint32"},
            {"internalType": "uint256", "name": "gasEstimate", "type": "uint256"},
        ],
        "stateMutability": "nonpayable",
        "type": "function",
    }
]

V3_POOL_ABI = [
    {
        "inputs": [],
        "name": "slot0",
        "outputs": [
            {"internalType": "uint160", "name": "sqrtPriceX96", "type": "uint160"},
            {"internalType": "int24", "name": "tick", "type": "int24"},
            {"internalType": "uint16", "name": "observationIndex", "type": "uint16"},
            {"internalType": "uint16", "name": "observationCardinality", "type": "uint16"},
            {"internalType": "uint16", "name": "observationCardinalityNext", "type": "uint16"},
            {"internalType": "uint8", "name": "feeProtocol", "type": "uint8"},
            {"internalType": "bool", "name": "unlocked", "type": "bool"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "liquidity",
        "outputs": [{"internalType": "uint128", "name": "", "type": "uint128"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "token0",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "token1",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

EXACT_OUTPUT_SINGLE_SIGNATURE = (
    "exactOutputSingle((address,address,uint24,address,uint256,uint256,uint160))"
)
REFUND_ETH_SIGNATURE = "refundETH()"
MULTICALL_SIGNATURE = "multicall(uint256,bytes[])"


def encode_exact_output_single_swap(
    token_in: str,
    token_out: str,
    fee: int,
    recipient: str,
    amount_out: int,
    amount_in_maximum: int,
    deadline: int,
) -> bytes:
    """
    SwapRouter02 calldata buying exactly ``amount_out`` with native currency.

    The swap is wrapped in ``multicall(deadline, [...])`` followed by
    ``refundETH()`` so unused input returns to the caller.
    """
    swap = function_signature_to_4byte_selector(EXACT_OUTPUT_SINGLE_SIGNATURE) + encode(
        ["(address,address,uint24,address,uint256,uint256,uint160)"],
        [(token_in, token_out, fee, recipient, amount_out, amount_in_maximum, 0)],
    )
    refund = function_signature_to_4byte_selector(REFUND_ETH_SIGNATURE)
    return function_signature_to_4byte_selector(MULTICALL_SIGNATURE) + encode(
        ["uint256", "bytes[]"], [deadline, [swap, refund]]
    )


class RouteOracle(Protocol):
    """Finds and prices an exact-output route for the stablecoin."""

    async def route(self, amount_out: int) -> Optional[SwapQuote]: ...


class GasPriceProvider:
    """Current gas price, optionally capped."""

    def __init__(self, w3: AsyncWeb3, max_gas_price_gwei: Optional[Decimal] = None):
        self.w3 = w3
        self.max_gas_price_wei = (
            None if max_gas_price_gwei is None else int(Decimal(max_gas_price_gwei) * GWEI)
        )

    async def get_gas_price(self) -> int:
        gas_price = int(await self.w3.eth.gas_price)
        if self.max_gas_price_wei is not None and gas_price > self.max_gas_price_wei:
            logger.debug(
                f"Gas price {gas_price} wei above cap, using {self.max_gas_price_wei} wei"
            )
            return self.max_gas_price_wei
        return gas_price


class UniswapV3QuoteOracle:
    """Exact-output quotes for wrapped native -> stablecoin on Uniswap V3."""

    def __init__(
        self,
        w3: AsyncWeb3,
        network: NetworkAddresses,
        gas_price_provider: GasPriceProvider,
        slippage_tolerance_bps: int = 100,
        deadline_sec: int = 1800,
        fee_tiers: Sequence[int] = V3_FEE_TIERS,
        gas_overhead: int = EXECUTION_GAS_OVERHEAD,
    ):
        self.w3 = w3
        self.network = network
        self.gas_price_provider = gas_price_provider
        self.slippage_tolerance_bps = slippage_tolerance_bps
        self.deadline_sec = deadline_sec
        self.fee_tiers = tuple(fee_tiers)
        self.gas_overhead = gas_overhead

        self.token_in = AsyncWeb3.to_checksum_address(network.weth.address)
        self.token_out = AsyncWeb3.to_checksum_address(network.usdc.address)
        self.factory = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(network.v3_factory), abi=V3_FACTORY_ABI
        )
        self.quoter = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(network.v3_quoter), abi=QUOTER_V2_ABI
        )

    async def _quote_tier(self, fee: int, amount_out: int):
        pool_address = await self.factory.functions.getPool(
            self.token_in, self.token_out, fee
        ).call()
        if not pool_address or pool_address == ZERO_ADDRESS:
            return None
        try:
            quote = self.quoter.functions.quoteExactOutputSingle(
                (self.token_in, self.token_out, amount_out, fee, 0)
            )
            amount_in, _, ticks_crossed, gas_estimate = await quote.call()
        except ContractLogicError as e:
            logger.debug(f"Quote reverted for fee tier {fee}: {e}")
            return None
        return pool_address, int(amount_in), int(gas_estimate), int(ticks_crossed)

    async def load_pool(self, pool_address: str, fee: int) -> V3Pool:
        """Read current price, tick and liquidity of a V3 pool."""
        pool = self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(pool_address), abi=V3_POOL_ABI
        )
        slot0 = await pool.functions.slot0().call()
        liquidity = await pool.functions.liquidity().call()
        token0 = await pool.functions.token0().call()
        token1 = await pool.functions.token1().call()
        return V3Pool(
            token0=token0,
            token1=token1,
            fee=fee,
            sqrt_price_x96=int(slot0[0]),
            liquidity=int(liquidity),
            tick_current=int(slot0[1]),
            address=AsyncWeb3.to_checksum_address(pool_address),
        )

    async def route(self, amount_out: int) -> Optional[SwapQuote]:
        """
        Cheapest single-pool route delivering exactly ``amount_out``.

        Returns:
            SwapQuote, or None when no fee tier can fill the amount
        """
        if amount_out <= 0:
            return None

        best = None
        for fee in self.fee_tiers:
            try:
                quote = await self._quote_tier(fee, amount_out)
            except Web3Exception as e:
                logger.warning(f"Quoting fee tier {fee} failed: {e}")
                continue
            if quote is None:
                continue
            if best is None or quote[1] < best[2]:
                best = (fee,) + quote

        if best is None:
            return None

        fee, pool_address, amount_in, quoter_gas, ticks_crossed = best
        pool = await self.load_pool(pool_address, fee)
        gas_price = await self.gas_price_provider.get_gas_price()
        gas_used = quoter_gas + self.gas_overhead

        calldata = encode_exact_output_single_swap(
            token_in=self.token_in,
            token_out=self.token_out,
            fee=fee,
            recipient=AsyncWeb3.to_checksum_address(self.network.payer),
            amount_out=amount_out,
            amount_in_maximum=apply_slippage(amount_in, self.slippage_tolerance_bps),
            deadline=int(time.time()) + self.deadline_sec,
        )

        logger.debug(
            f"Best quote: fee={fee} pool={pool_address} amount_in={amount_in} "
            f"gas={gas_used} ticks_crossed={ticks_crossed}"
        )
        return SwapQuote(
            route=Route(token_in=self.token_in, token_out=self.token_out, pools=(pool,)),
            amount_out=amount_out,
            input_amount=amount_in,
            estimated_gas_used=gas_used,
            estimated_gas_cost=gas_used * gas_price,
            gas_price_wei=gas_price,
            calldata=calldata,
            router_address=AsyncWeb3.to_checksum_address(self.network.swap_router),
        )
