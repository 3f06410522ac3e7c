"""
Opportunity poller for the token buyer.

One cycle walks a fixed sequence of states:

    fetch state -> check demand -> request route -> populate route -> search
    -> re-quote optimal -> check profitability -> estimate execution cost
    -> submit

Any recoverable condition ends the cycle early with a CycleOutcome; the loop
then sleeps for the poll interval and starts over. Nothing raised inside a
cycle escapes the loop.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, Web3Exception

from ..config_loader import BotConfig
from ..exceptions import TokenBuyerArbError
from ..metrics import BotMetrics
from ..utils import format_ether, format_units
from .flashbots_client import FlashbotsTransactionClient
from .quoter import RouteOracle
from .route_utils import RoutePopulator
from .solver import ProfitSearch, build_profit_objective
from .token_buyer import TokenBuyerContract, encode_auxiliary_data
from .types import CandidateTransaction, Opportunity, Sleep, SubmissionOutcome

logger = logging.getLogger(__name__)


class CycleOutcome(Enum):
    """How a single poll cycle ended."""

    NO_DEMAND = "no_demand"
    STALE_STATE = "stale_state"
    NO_ROUTE = "no_route"
    UNPROFITABLE = "unprofitable"
    NO_CALLDATA = "no_calldata"
    GAS_ESTIMATE_FAILED = "gas_estimate_failed"
    DRY_RUN = "dry_run"
    SUBMITTED = "submitted"
    SUBMISSION_FAILED = "submission_failed"
    ERROR = "error"


class TokenBuyerArbitrageBot:
    """Polls the demand contract and trades against it when profitable."""

    def __init__(
        self,
        config: BotConfig,
        w3: AsyncWeb3,
        token_buyer: TokenBuyerContract,
        route_oracle: RouteOracle,
        route_populator: RoutePopulator,
        search: ProfitSearch,
        submitter: FlashbotsTransactionClient,
        metrics: Optional[BotMetrics] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config
        self.w3 = w3
        self.token_buyer = token_buyer
        self.route_oracle = route_oracle
        self.route_populator = route_populator
        self.search = search
        self.submitter = submitter
        self.metrics = metrics
        self._sleep = sleep

        self.network = config.network
        self.signer_address = config.signer_address
        self.last_candidate: Optional[CandidateTransaction] = None

    def _usdc(self, amount: int) -> str:
        return f"{format_units(amount, self.network.usdc.decimals)} {self.network.usdc.symbol}"

    async def _fetch_opportunity(self) -> Optional[Opportunity]:
        try:
            return await self.token_buyer.fetch_opportunity()
        except (ContractLogicError, Web3Exception) as e:
            logger.warning(f"Could not read demand contract state (stale price feed?): {e}")
            return None

    async def run_cycle(self) -> CycleOutcome:
        """Evaluate the current opportunity once and act on it."""
        opportunity = await self._fetch_opportunity()
        if opportunity is None:
            return CycleOutcome.STALE_STATE

        if not opportunity.is_actionable:
            logger.info(
                f"No demand: needed={opportunity.amount_needed} "
                f"offered={opportunity.amount_offered}"
            )
            return CycleOutcome.NO_DEMAND

        logger.info(
            f"Demand contract wants {self._usdc(opportunity.amount_needed)} "
            f"for {format_ether(opportunity.amount_offered)} ETH"
        )

        quote = await self.route_oracle.route(opportunity.amount_needed)
        if quote is None or not quote.route.pools:
            logger.info("No route found for the needed amount")
            return CycleOutcome.NO_ROUTE

        route = await self.route_populator.populate(quote.route)

        result = self.search.find_optimal(
            0, opportunity.amount_needed, build_profit_objective(route, opportunity)
        )
        if self.metrics is not None:
            self.metrics.record_search(result.evaluations)
        optimal = result.amount
        if optimal <= 0:
            logger.info("Search found no profitable trade size")
            return CycleOutcome.UNPROFITABLE

        logger.info(
            f"Optimal size {self._usdc(optimal)} after {result.evaluations} evaluations"
            + (" (rounded up to full demand)" if result.snapped_to_upper else "")
        )

        optimal_quote = await self.route_oracle.route(optimal)
        if optimal_quote is None or not optimal_quote.route.pools:
            logger.info(f"No route found at the optimal size {optimal}")
            return CycleOutcome.NO_ROUTE

        payout = opportunity.payout_for(optimal)
        profit = payout - optimal_quote.input_amount
        if optimal_quote.estimated_gas_cost > profit:
            logger.info(
                f"Not profitable: profit {format_ether(profit)} ETH does not cover "
                f"execution cost {format_ether(optimal_quote.estimated_gas_cost)} ETH"
            )
            return CycleOutcome.UNPROFITABLE

        if not optimal_quote.calldata:
            logger.warning("Route has no calldata, cannot execute")
            return CycleOutcome.NO_CALLDATA

        aux_data = encode_auxiliary_data(
            optimal_quote.router_address,
            optimal_quote.calldata,
            optimal_quote.estimated_gas_cost,
        )

        try:
            gas_limit = await self.token_buyer.estimate_buy_eth_gas(
                optimal, self.network.arbitrage_bot, aux_data, self.signer_address
            )
        except (ContractLogicError, Web3Exception, ValueError) as e:
            logger.warning(f"Gas estimation failed for buyETH: {e}")
            return CycleOutcome.GAS_ESTIMATE_FAILED

        nonce = int(await self.w3.eth.get_transaction_count(self.signer_address))
        candidate = CandidateTransaction(
            to=self.token_buyer.address,
            sender=self.signer_address,
            gas_limit=gas_limit,
            gas_price=optimal_quote.gas_price_wei,
            nonce=nonce,
            data=self.token_buyer.encode_buy_eth(optimal, self.network.arbitrage_bot, aux_data),
            chain_id=self.config.chain_id,
        )
        self.last_candidate = candidate

        expected_profit = profit - optimal_quote.estimated_gas_cost
        log_data = {
            "amount_needed": opportunity.amount_needed,
            "amount_offered": opportunity.amount_offered,
            "optimal_amount": optimal,
            "payout_wei": payout,
            "input_wei": optimal_quote.input_amount,
            "execution_cost_wei": optimal_quote.estimated_gas_cost,
            "expected_profit_wei": expected_profit,
            "gas_limit": gas_limit,
            "gas_price_wei": candidate.gas_price,
            "nonce": nonce,
            "mode": "dry_run" if self.config.dry_run else "live",
        }
        logger.info(f"OPPORTUNITY_FOUND: {log_data}")
        if self.metrics is not None:
            self.metrics.record_expected_profit(expected_profit)

        if self.config.dry_run:
            logger.info("Dry run: transaction built but not submitted")
            return CycleOutcome.DRY_RUN

        outcome = await self.submitter.submit_with_retry(
            candidate, self.config.submission_max_attempts
        )
        if outcome == SubmissionOutcome.INCLUDED:
            return CycleOutcome.SUBMITTED
        return CycleOutcome.SUBMISSION_FAILED

    async def run_once(self) -> CycleOutcome:
        """Run one cycle, converting any failure into CycleOutcome.ERROR."""
        try:
            outcome = await self.run_cycle()
        except TokenBuyerArbError as e:
            logger.error(f"Cycle aborted: {e}")
            outcome = CycleOutcome.ERROR
        except Exception as e:
            logger.exception(f"Unexpected error in poll cycle: {e}")
            outcome = CycleOutcome.ERROR

        if self.metrics is not None:
            self.metrics.record_cycle(outcome.value)
        logger.info(f"Cycle finished: {outcome.value}")
        return outcome

    async def run_forever(self, max_cycles: Optional[int] = None):
        """
        Poll until cancelled.

        Args:
            max_cycles: Stop after this many cycles (None runs indefinitely)
        """
        logger.info(
            f"Watching token buyer {self.token_buyer.address} every "
            f"{self.config.poll_interval_sec}s as {self.signer_address}"
        )
        cycles = 0
        while max_cycles is None or cycles < max_cycles:
            await self.run_once()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            await self._sleep(self.config.poll_interval_sec)
