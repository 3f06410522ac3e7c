"""
Core data types for opportunity evaluation and bundle submission.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from ..constants import PRICE_SCALE
from ..exceptions import ValidationError
from . import pool_math


@dataclass(frozen=True)
class Opportunity:
    """
    Demand contract state read at the start of a poll cycle.

    Attributes:
        amount_needed: Stablecoin amount the contract wants to buy (token units)
        amount_offered: Native currency the contract pays for all of it (wei)
    """

    amount_needed: int
    amount_offered: int

    def __post_init__(self):
        if self.amount_needed < 0 or self.amount_offered < 0:
            raise ValidationError(
                "Opportunity amounts must be non-negative",
                {"amount_needed": self.amount_needed, "amount_offered": self.amount_offered},
            )

    @property
    def is_actionable(self) -> bool:
        return self.amount_needed > 0 and self.amount_offered > 0

    @property
    def implied_price(self) -> int:
        """Stablecoin per native unit, scaled by PRICE_SCALE."""
        if not self.is_actionable:
            return 0
        return self.amount_needed * PRICE_SCALE // self.amount_offered

    def payout_for(self, amount_out: int) -> int:
        """Native currency the contract pays for ``amount_out`` of the stablecoin."""
        price = self.implied_price
        if price == 0:
            return 0
        return amount_out * PRICE_SCALE // price


@dataclass(frozen=True)
class TickInfo:
    """A single initialized tick as returned by the indexed data source."""

    id: str
    tick_idx: int
    liquidity_net: int
    liquidity_gross: int

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "TickInfo":
        return cls(
            id=str(record["id"]),
            tick_idx=int(record["tickIdx"]),
            liquidity_net=int(record["liquidityNet"]),
            liquidity_gross=int(record["liquidityGross"]),
        )


@dataclass(frozen=True)
class V2Pool:
    """Constant-product pool; reserves are the whole pricing state."""

    address: str
    token0: str
    token1: str
    reserve0: int
    reserve1: int
    fee_bps: int = 30

    def involves(self, token: str) -> bool:
        return token.lower() in (self.token0.lower(), self.token1.lower())

    def other_token(self, token: str) -> str:
        return self.token1 if token.lower() == self.token0.lower() else self.token0

    def get_input_amount(self, amount_out: int, token_out: str) -> int:
        if token_out.lower() == self.token0.lower():
            reserve_in, reserve_out = self.reserve1, self.reserve0
        else:
            reserve_in, reserve_out = self.reserve0, self.reserve1
        return pool_math.get_v2_amount_in(
            amount_out, reserve_in, reserve_out, self.fee_bps, pool=self.address
        )


@dataclass(frozen=True)
class V3Pool:
    """
    Concentrated-liquidity pool.

    ``ticks`` is empty until the route is populated from the indexed data
    source; local pricing needs the full ascending tick set.
    """

    token0: str
    token1: str
    fee: int
    sqrt_price_x96: int
    liquidity: int
    tick_current: int
    address: Optional[str] = None
    ticks: Tuple[TickInfo, ...] = field(default=(), compare=False)

    def involves(self, token: str) -> bool:
        return token.lower() in (self.token0.lower(), self.token1.lower())

    def other_token(self, token: str) -> str:
        return self.token1 if token.lower() == self.token0.lower() else self.token0

    def get_input_amount(self, amount_out: int, token_out: str) -> int:
        zero_for_one = token_out.lower() == self.token1.lower()
        return pool_math.v3_exact_output_amount_in(
            amount_out=amount_out,
            zero_for_one=zero_for_one,
            sqrt_price_x96=self.sqrt_price_x96,
            liquidity=self.liquidity,
            tick_current=self.tick_current,
            fee=self.fee,
            ticks=[(t.tick_idx, t.liquidity_net) for t in self.ticks],
            pool=self.address,
        )


Pool = Union[V2Pool, V3Pool]


@dataclass(frozen=True)
class Route:
    """
    Ordered pools connecting ``token_in`` to ``token_out``.

    Built fresh every poll cycle and never mutated; population returns a new
    Route.
    """

    token_in: str
    token_out: str
    pools: Tuple[Pool, ...]

    def token_path(self) -> Tuple[str, ...]:
        """Tokens visited from input to output."""
        path = [self.token_in]
        for pool in self.pools:
            path.append(pool.other_token(path[-1]))
        return tuple(path)

    def get_input_amount(self, amount_out: int) -> int:
        """Required input for an exact ``amount_out`` of ``token_out``."""
        path = self.token_path()
        amount = amount_out
        for index in range(len(self.pools) - 1, -1, -1):
            amount = self.pools[index].get_input_amount(amount, path[index + 1])
        return amount


@dataclass(frozen=True)
class SwapQuote:
    """
    Route oracle result for an exact-output request.

    Attributes:
        route: Pools used by the quote
        amount_out: Requested stablecoin output
        input_amount: Native input the route needs (wei)
        estimated_gas_used: Gas units for the whole execution
        estimated_gas_cost: Execution cost in the input asset (wei)
        gas_price_wei: Gas price the cost was computed with
        calldata: Router call performing the swap, if one could be built
        router_address: Contract the executor calls with ``calldata``
    """

    route: Route
    amount_out: int
    input_amount: int
    estimated_gas_used: int
    estimated_gas_cost: int
    gas_price_wei: int
    calldata: Optional[bytes]
    router_address: str


@dataclass(frozen=True)
class CandidateTransaction:
    """A profitable call to the demand contract, ready to be signed."""

    to: str
    sender: str
    gas_limit: int
    gas_price: int
    nonce: int
    data: bytes
    chain_id: int
    value: int = 0

    def to_tx_params(self) -> Dict[str, Any]:
        """Legacy transaction dict accepted by ``Account.sign_transaction``."""
        return {
            "to": self.to,
            "value": self.value,
            "gas": self.gas_limit,
            "gasPrice": self.gas_price,
            "nonce": self.nonce,
            "data": self.data,
            "chainId": self.chain_id,
        }


class SubmissionOutcome(Enum):
    """Resolution of a single bundle attempt."""

    INCLUDED = "included"
    BLOCK_PASSED_WITHOUT_INCLUSION = "block_passed_without_inclusion"
    ACCOUNT_NONCE_TOO_HIGH = "account_nonce_too_high"
    RELAY_ERROR = "relay_error"


# Awaitable delay, asyncio.sleep in production
Sleep = Callable[[float], Awaitable[Any]]
