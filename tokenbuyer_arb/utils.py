"""
Small formatting and arithmetic helpers shared across the bot.
"""

from decimal import Decimal


def format_units(amount: int, decimals: int) -> str:
    """Render an integer token amount in whole units (e.g. 1500000, 6 -> '1.5')."""
    value = Decimal(amount) / (Decimal(10) ** decimals)
    text = format(value.normalize(), "f")
    return text


def format_ether(amount_wei: int) -> str:
    """Render a wei amount in ether."""
    return format_units(amount_wei, 18)


def apply_slippage(amount: int, slippage_bps: int) -> int:
    """Increase an input amount by a slippage allowance, rounding up."""
    return -(-amount * (10000 + slippage_bps) // 10000)
