"""
Profit-maximizing search over trade sizes.

The objective (profit as a function of stablecoin output) has no closed form:
each evaluation re-prices the populated route locally. Two deterministic
strategies share one interface:

- ``probe``: evaluates two probes at the interval quarters and discards the
  quarter on the losing side. Correct for unimodal objectives.
- ``bisection``: evaluates one midpoint per step and compares it with the
  memoized best evaluation, moving toward whichever scored higher. Cheaper
  per step; also correct for unimodal objectives.

Both stop once ``high - low <= tolerance * (high + low) / 2``.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from ..exceptions import InsufficientLiquidityError, ValidationError
from .types import Opportunity, Route

logger = logging.getLogger(__name__)

Objective = Callable[[int], int]

# Fixed-point scale for the relative tolerance
TOLERANCE_SCALE = 10**18

# Score for sizes the route cannot fill; below any real profit
UNREACHABLE_PROFIT = -(1 << 256)


@dataclass(frozen=True)
class SearchResult:
    """Outcome of a profit search."""

    amount: int
    evaluations: int
    snapped_to_upper: bool = False


class _BoundedObjective:
    """Counts evaluations and refuses points outside the search bounds."""

    def __init__(self, objective: Objective, low: int, high: int):
        self.objective = objective
        self.low = low
        self.high = high
        self.evaluations = 0

    def __call__(self, amount: int) -> int:
        if amount < self.low or amount > self.high:
            raise ValidationError(
                f"Objective evaluated outside [{self.low}, {self.high}]: {amount}"
            )
        self.evaluations += 1
        return self.objective(amount)


def tolerance_units(tolerance: Decimal) -> int:
    """Relative tolerance as an integer scaled by TOLERANCE_SCALE."""
    return int(Decimal(tolerance) * TOLERANCE_SCALE)


def is_converged(low: int, high: int, tolerance_scaled: int) -> bool:
    return (high - low) * TOLERANCE_SCALE <= tolerance_scaled * ((high + low) // 2)


def probe_search(low: int, high: int, objective: Objective, tolerance_scaled: int) -> int:
    """Narrow [low, high] by comparing quarter-point probes."""
    while not is_converged(low, high, tolerance_scaled):
        step = (high - low) // 4
        if step == 0:
            break
        low_probe = low + step
        high_probe = high - step

        # Number go up
        if objective(high_probe) > objective(low_probe):
            low = low_probe
        else:
            high = high_probe

    return (low + high) // 2


def bisection_search(low: int, high: int, objective: Objective, tolerance_scaled: int) -> int:
    """
    Narrow [low, high] by comparing each midpoint with the best point so far.

    The best evaluated point and its value are memoized; every step evaluates
    one new point, the midpoint of the wider side of the best point, and
    discards the part of the interval that cannot hold the maximum.
    """
    if is_converged(low, high, tolerance_scaled):
        return (low + high) // 2

    best, best_value = low, objective(low)
    while low < high and not is_converged(low, high, tolerance_scaled):
        if best - low > high - best:
            point = low + (best - low) // 2
        else:
            point = best + (high - best + 1) // 2

        value = objective(point)
        if value > best_value:
            # Maximum lies past the old best, on the new point's side
            if point > best:
                low = best + 1
            else:
                high = best - 1
            best, best_value = point, value
        elif point > best:
            high = point - 1
        else:
            low = point + 1

    return best


STRATEGIES = {
    "probe": probe_search,
    "bisection": bisection_search,
}


class ProfitSearch:
    """Finds the stablecoin output that (approximately) maximizes profit."""

    def __init__(
        self,
        strategy: str = "probe",
        tolerance: Decimal = Decimal("0.0001"),
        rounding_margin: int = 0,
    ):
        """
        Args:
            strategy: "probe" or "bisection"
            tolerance: Relative interval width at which the search stops
            rounding_margin: Results this close to the upper bound snap to it
        """
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown search strategy: {strategy}")
        if tolerance < 0:
            raise ValueError("tolerance must be non-negative")
        self.strategy = strategy
        self.tolerance = Decimal(tolerance)
        self.rounding_margin = rounding_margin
        self._search = STRATEGIES[strategy]

    def find_optimal(self, low: int, high: int, objective: Objective) -> SearchResult:
        """
        Search ``[low, high]`` for the most profitable output amount.

        Raises:
            ValidationError: If the bounds are invalid
        """
        if low < 0 or high < low:
            raise ValidationError(f"Invalid search bounds [{low}, {high}]")

        bounded = _BoundedObjective(objective, low, high)
        amount = self._search(low, high, bounded, tolerance_units(self.tolerance))

        # No negatives
        amount = max(0, amount)

        snapped = False
        if amount != high and high - amount < self.rounding_margin:
            # Claim the full amount when the estimate is close enough
            amount = high
            snapped = True

        logger.debug(
            f"Search ({self.strategy}) converged on {amount} "
            f"after {bounded.evaluations} evaluations"
        )
        return SearchResult(
            amount=amount, evaluations=bounded.evaluations, snapped_to_upper=snapped
        )


def build_profit_objective(route: Route, opportunity: Opportunity) -> Objective:
    """
    Profit in native currency for selling ``amount_out`` to the demand contract.

    profit(out) = payout_for(out) - route input required for out
    """

    def profit(amount_out: int) -> int:
        try:
            required_in = route.get_input_amount(amount_out)
        except InsufficientLiquidityError:
            return UNREACHABLE_PROFIT
        return opportunity.payout_for(amount_out) - required_in

    return profit
