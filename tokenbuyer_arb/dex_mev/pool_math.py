"""
Integer-exact AMM pricing used to re-simulate routes off-chain.

Implements the Uniswap V3 exact-output swap over a known tick set (tick math,
sqrt price math and the per-step swap computation) and the Uniswap V2
constant-product input formula. All arithmetic is on Python ints so results
match the on-chain contracts bit for bit.
"""

from bisect import bisect_right
from typing import List, Optional, Sequence, Tuple

from eth_abi import encode
from eth_utils import keccak, to_bytes, to_checksum_address

from ..exceptions import InsufficientLiquidityError, ValidationError

Q96 = 1 << 96
MAX_UINT256 = (1 << 256) - 1

MIN_TICK = -887272
MAX_TICK = 887272
MIN_SQRT_RATIO = 4295128739
MAX_SQRT_RATIO = 1461446703485210103287273052203988822378723970342

FEE_DENOMINATOR = 1_000_000

# Multipliers for each set bit of |tick|, as 128.128 fixed point
_TICK_RATIOS = (
    (0x2, 0xFFF97272373D413259A46990580E213A),
    (0x4, 0xFFF2E50F5F656932EF12357CF3C7FDCC),
    (0x8, 0xFFE5CACA7E10E4E61C3624EAA0941CD0),
    (0x10, 0xFFCB9843D60F6159C9DB58835C926644),
    (0x20, 0xFF973B41FA98C081472E6896DFB254C0),
    (0x40, 0xFF2EA16466C96A3843EC78B326B52861),
    (0x80, 0xFE5DEE046A99A2A811C461F1969C3053),
    (0x100, 0xFCBE86C7900A88AEDCFFC83B479AA3A4),
    (0x200, 0xF987A7253AC413176F2B074CF7815E54),
    (0x400, 0xF3392B0822B70005940C7A398E4B70F3),
    (0x800, 0xE7159475A2C29B7443B29C7FA6E889D9),
    (0x1000, 0xD097F3BDFD2022B8845AD8F792AA5825),
    (0x2000, 0xA9F746462D870FDF8A65DC1F90E061E5),
    (0x4000, 0x70D869A156D2A1B890BB3DF62BAF32F7),
    (0x8000, 0x31BE135F97D08FD981231505542FCFA6),
    (0x10000, 0x9AA508B5B7A84E1C677DE54F3E99BC9),
    (0x20000, 0x5D6AF8DEDB81196699C329225EE604),
    (0x40000, 0x2216E584F5FA1EA926041BEDFE98),
    (0x80000, 0x48A170391F7DC42444E8FA2),
)


def mul_div(a: int, b: int, denominator: int) -> int:
    return a * b // denominator


def mul_div_rounding_up(a: int, b: int, denominator: int) -> int:
    return -(-(a * b) // denominator)


def div_rounding_up(a: int, b: int) -> int:
    return -(-a // b)


def get_sqrt_ratio_at_tick(tick: int) -> int:
    """sqrt(1.0001^tick) as a Q64.96 value."""
    abs_tick = abs(tick)
    if abs_tick > MAX_TICK:
        raise ValidationError(f"Tick {tick} out of range")

    if abs_tick & 0x1:
        ratio = 0xFFFCB933BD6FAD37AA2D162D1A594001
    else:
        ratio = 0x100000000000000000000000000000000
    for mask, multiplier in _TICK_RATIOS:
        if abs_tick & mask:
            ratio = (ratio * multiplier) >> 128

    if tick > 0:
        ratio = MAX_UINT256 // ratio

    # Q128.128 -> Q64.96, rounding up
    return (ratio >> 32) + (0 if ratio % (1 << 32) == 0 else 1)


def get_amount0_delta(sqrt_a: int, sqrt_b: int, liquidity: int, round_up: bool) -> int:
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a
    numerator1 = liquidity << 96
    numerator2 = sqrt_b - sqrt_a
    if round_up:
        return div_rounding_up(mul_div_rounding_up(numerator1, numerator2, sqrt_b), sqrt_a)
    return mul_div(numerator1, numerator2, sqrt_b) // sqrt_a


def get_amount1_delta(sqrt_a: int, sqrt_b: int, liquidity: int, round_up: bool) -> int:
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a
    if round_up:
        return mul_div_rounding_up(liquidity, sqrt_b - sqrt_a, Q96)
    return mul_div(liquidity, sqrt_b - sqrt_a, Q96)


def _next_sqrt_price_from_amount0_removed(sqrt_price: int, liquidity: int, amount: int) -> int:
    if amount == 0:
        return sqrt_price
    numerator1 = liquidity << 96
    product = amount * sqrt_price
    if numerator1 <= product:
        raise InsufficientLiquidityError("Output exceeds token0 liquidity in range")
    return mul_div_rounding_up(numerator1, sqrt_price, numerator1 - product)


def _next_sqrt_price_from_amount1_removed(sqrt_price: int, liquidity: int, amount: int) -> int:
    quotient = div_rounding_up(amount << 96, liquidity)
    if sqrt_price <= quotient:
        raise InsufficientLiquidityError("Output exceeds token1 liquidity in range")
    return sqrt_price - quotient


def get_next_sqrt_price_from_output(
    sqrt_price: int, liquidity: int, amount_out: int, zero_for_one: bool
) -> int:
    if sqrt_price <= 0 or liquidity <= 0:
        raise InsufficientLiquidityError("No liquidity in range")
    if zero_for_one:
        return _next_sqrt_price_from_amount1_removed(sqrt_price, liquidity, amount_out)
    return _next_sqrt_price_from_amount0_removed(sqrt_price, liquidity, amount_out)


def compute_exact_output_step(
    sqrt_current: int,
    sqrt_target: int,
    liquidity: int,
    amount_remaining: int,
    fee: int,
) -> Tuple[int, int, int, int]:
    """
    One swap step toward ``sqrt_target`` for an exact-output swap.

    Args:
        amount_remaining: Output still owed (positive)

    Returns:
        (sqrt_next, amount_in, amount_out, fee_amount)
    """
    zero_for_one = sqrt_current >= sqrt_target

    if zero_for_one:
        max_out = get_amount1_delta(sqrt_target, sqrt_current, liquidity, False)
    else:
        max_out = get_amount0_delta(sqrt_current, sqrt_target, liquidity, False)

    if amount_remaining >= max_out:
        sqrt_next = sqrt_target
    else:
        sqrt_next = get_next_sqrt_price_from_output(
            sqrt_current, liquidity, amount_remaining, zero_for_one
        )

    reached_target = sqrt_next == sqrt_target
    if zero_for_one:
        amount_in = get_amount0_delta(sqrt_next, sqrt_current, liquidity, True)
        amount_out = max_out
        if not reached_target:
            amount_out = get_amount1_delta(sqrt_next, sqrt_current, liquidity, False)
    else:
        amount_in = get_amount1_delta(sqrt_current, sqrt_next, liquidity, True)
        amount_out = max_out
        if not reached_target:
            amount_out = get_amount0_delta(sqrt_current, sqrt_next, liquidity, False)

    amount_out = min(amount_out, amount_remaining)
    fee_amount = mul_div_rounding_up(amount_in, fee, FEE_DENOMINATOR - fee)
    return sqrt_next, amount_in, amount_out, fee_amount


def _next_initialized_tick(
    tick_indexes: List[int], tick: int, lte: bool
) -> Tuple[int, bool]:
    """Nearest initialized tick at or below ``tick`` (lte) or strictly above it."""
    if lte:
        position = bisect_right(tick_indexes, tick)
        if position == 0:
            return MIN_TICK, False
        return tick_indexes[position - 1], True
    position = bisect_right(tick_indexes, tick)
    if position == len(tick_indexes):
        return MAX_TICK, False
    return tick_indexes[position], True


def v3_exact_output_amount_in(
    amount_out: int,
    zero_for_one: bool,
    sqrt_price_x96: int,
    liquidity: int,
    tick_current: int,
    fee: int,
    ticks: Sequence[Tuple[int, int]],
    pool: Optional[str] = None,
) -> int:
    """
    Input (including fee) needed to receive exactly ``amount_out``.

    Args:
        amount_out: Desired output amount
        zero_for_one: True when paying token0 for token1
        sqrt_price_x96: Current pool price
        liquidity: Active in-range liquidity
        tick_current: Current pool tick
        fee: Pool fee in hundredths of a bip
        ticks: (tick_index, liquidity_net) pairs sorted ascending
        pool: Pool address for error reporting

    Raises:
        InsufficientLiquidityError: If the tick set cannot supply the output
    """
    if amount_out < 0:
        raise ValidationError("amount_out must be non-negative")
    if amount_out == 0:
        return 0

    tick_indexes = [index for index, _ in ticks]
    liquidity_net = dict(ticks)
    price_limit = MIN_SQRT_RATIO + 1 if zero_for_one else MAX_SQRT_RATIO - 1

    remaining = amount_out
    amount_in_total = 0
    sqrt_price = sqrt_price_x96
    tick = tick_current

    while remaining > 0 and sqrt_price != price_limit:
        tick_next, initialized = _next_initialized_tick(tick_indexes, tick, zero_for_one)
        tick_next = max(MIN_TICK, min(MAX_TICK, tick_next))
        sqrt_price_next = get_sqrt_ratio_at_tick(tick_next)

        if zero_for_one:
            sqrt_target = max(sqrt_price_next, price_limit)
        else:
            sqrt_target = min(sqrt_price_next, price_limit)

        sqrt_price, step_in, step_out, step_fee = compute_exact_output_step(
            sqrt_price, sqrt_target, liquidity, remaining, fee
        )
        remaining -= step_out
        amount_in_total += step_in + step_fee

        if sqrt_price == sqrt_price_next:
            if initialized:
                net = liquidity_net[tick_next]
                liquidity += -net if zero_for_one else net
                if liquidity < 0:
                    raise InsufficientLiquidityError(
                        "Negative liquidity after crossing tick", pool=pool, amount_out=amount_out
                    )
            tick = tick_next - 1 if zero_for_one else tick_next

    if remaining > 0:
        raise InsufficientLiquidityError(
            f"Pool cannot supply {amount_out} (short by {remaining})",
            pool=pool,
            amount_out=amount_out,
        )
    return amount_in_total


def get_v2_amount_in(
    amount_out: int,
    reserve_in: int,
    reserve_out: int,
    fee_bps: int = 30,
    pool: Optional[str] = None,
) -> int:
    """
    Required input for an exact output on a constant-product pool.

    Formula:
        amountIn = reserveIn * amountOut * 10000
                   / ((reserveOut - amountOut) * (10000 - fee_bps)) + 1
    """
    if amount_out < 0:
        raise ValidationError("amount_out must be non-negative")
    if amount_out == 0:
        return 0
    if reserve_in <= 0 or amount_out >= reserve_out:
        raise InsufficientLiquidityError(
            f"Reserves cannot supply {amount_out}", pool=pool, amount_out=amount_out
        )
    numerator = reserve_in * amount_out * 10000
    denominator = (reserve_out - amount_out) * (10000 - fee_bps)
    return numerator // denominator + 1


def sort_tokens(token_a: str, token_b: str) -> Tuple[str, str]:
    """Order a token pair the way pools store them (ascending address)."""
    if int(token_a, 16) < int(token_b, 16):
        return token_a, token_b
    return token_b, token_a


def compute_v3_pool_address(
    factory: str, token_a: str, token_b: str, fee: int, init_code_hash: str
) -> str:
    """CREATE2 address of a V3 pool from its factory, token pair and fee."""
    token0, token1 = sort_tokens(token_a, token_b)
    salt = keccak(
        encode(
            ["address", "address", "uint24"],
            [to_checksum_address(token0), to_checksum_address(token1), fee],
        )
    )
    digest = keccak(b"\xff" + to_bytes(hexstr=factory) + salt + to_bytes(hexstr=init_code_hash))
    return to_checksum_address(digest[12:])
