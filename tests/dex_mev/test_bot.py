"""
Tests for the opportunity poller: state sequence, recoverable exits and the
profitability gate.
"""

import dataclasses
from unittest.mock import AsyncMock, Mock

import pytest
from prometheus_client import CollectorRegistry
from web3.exceptions import ContractLogicError

from tokenbuyer_arb.config_loader import BotConfig
from tokenbuyer_arb.constants import GWEI, NETWORKS
from tokenbuyer_arb.dex_mev.bot import CycleOutcome, TokenBuyerArbitrageBot
from tokenbuyer_arb.dex_mev.solver import ProfitSearch, SearchResult
from tokenbuyer_arb.dex_mev.token_buyer import encode_auxiliary_data
from tokenbuyer_arb.dex_mev.types import (
    Opportunity,
    Route,
    SubmissionOutcome,
    SwapQuote,
    V2Pool,
)
from tokenbuyer_arb.exceptions import DataError
from tokenbuyer_arb.metrics import BotMetrics

TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_SIGNER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
NETWORK = NETWORKS[1]
USDC = 10**6
NEEDED = 2_000 * USDC
OFFERED = 10**18
TOKEN_BUYER = "0x4f2aCdc74f6941390d9b1804faBc3E780388cfe5"

POOL = V2Pool(
    "0xB4e16d0168e52d35CaCD2c6185b44281Ec28C9Dc",
    NETWORK.usdc.address,
    NETWORK.weth.address,
    reserve0=10_000_000 * USDC,
    reserve1=5_000 * 10**18,
)
ROUTE = Route(token_in=NETWORK.weth.address, token_out=NETWORK.usdc.address, pools=(POOL,))


def make_quote(amount_out, input_amount, cost=10**15, calldata=b"\x01\x02\x03", route=ROUTE):
    return SwapQuote(
        route=route,
        amount_out=amount_out,
        input_amount=input_amount,
        estimated_gas_used=cost // (20 * GWEI) if cost else 0,
        estimated_gas_cost=cost,
        gas_price_wei=20 * GWEI,
        calldata=calldata,
        router_address=NETWORK.swap_router,
    )


@pytest.fixture
def config():
    return BotConfig(
        rpc_url="http://localhost:8545",
        private_key=TEST_PRIVATE_KEY,
        auth_signer_private_key=TEST_PRIVATE_KEY,
        network=NETWORK,
        poll_interval_sec=30,
    )


@pytest.fixture
def components():
    token_buyer = Mock()
    token_buyer.address = TOKEN_BUYER
    token_buyer.fetch_opportunity = AsyncMock(
        return_value=Opportunity(amount_needed=NEEDED, amount_offered=OFFERED)
    )
    token_buyer.estimate_buy_eth_gas = AsyncMock(return_value=250_000)
    token_buyer.encode_buy_eth = Mock(return_value=b"\xbe\xef")

    oracle = Mock()
    # Half the payout for the full amount, cheap execution
    oracle.route = AsyncMock(return_value=make_quote(NEEDED, OFFERED // 2))

    populator = Mock()
    populator.populate = AsyncMock(side_effect=lambda route: route)

    search = Mock()
    search.find_optimal = Mock(return_value=SearchResult(amount=NEEDED, evaluations=12))

    submitter = Mock()
    submitter.submit_with_retry = AsyncMock(return_value=SubmissionOutcome.INCLUDED)

    w3 = Mock()
    w3.eth.get_transaction_count = AsyncMock(return_value=7)

    return {
        "w3": w3,
        "token_buyer": token_buyer,
        "route_oracle": oracle,
        "route_populator": populator,
        "search": search,
        "submitter": submitter,
    }


def make_bot(config, components, **kwargs):
    return TokenBuyerArbitrageBot(config=config, **components, **kwargs)


class TestRecoverableExits:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("needed,offered", [(NEEDED, 0), (0, OFFERED), (0, 0)])
    async def test_no_demand_skips_route_request(self, config, components, needed, offered):
        components["token_buyer"].fetch_opportunity.return_value = Opportunity(needed, offered)
        bot = make_bot(config, components)

        assert await bot.run_cycle() == CycleOutcome.NO_DEMAND
        components["route_oracle"].route.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_contract_read(self, config, components):
        components["token_buyer"].fetch_opportunity.side_effect = ContractLogicError(
            "execution reverted: stale"
        )
        bot = make_bot(config, components)

        assert await bot.run_cycle() == CycleOutcome.STALE_STATE
        components["route_oracle"].route.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_route(self, config, components):
        components["route_oracle"].route.return_value = None
        bot = make_bot(config, components)

        assert await bot.run_cycle() == CycleOutcome.NO_ROUTE
        components["route_oracle"].route.assert_awaited_once_with(NEEDED)
        components["route_populator"].populate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_route_without_pools(self, config, components):
        empty = Route(NETWORK.weth.address, NETWORK.usdc.address, ())
        components["route_oracle"].route.return_value = make_quote(NEEDED, 1, route=empty)
        bot = make_bot(config, components)

        assert await bot.run_cycle() == CycleOutcome.NO_ROUTE

    @pytest.mark.asyncio
    async def test_zero_optimal_size_is_unprofitable(self, config, components):
        components["search"].find_optimal.return_value = SearchResult(amount=0, evaluations=30)
        bot = make_bot(config, components)

        assert await bot.run_cycle() == CycleOutcome.UNPROFITABLE
        # No re-quote at a zero size
        assert components["route_oracle"].route.await_count == 1

    @pytest.mark.asyncio
    async def test_cost_above_profit_blocks_submission(self, config, components):
        # profit = 100 wei, execution cost = 150 wei
        components["route_oracle"].route.return_value = make_quote(NEEDED, OFFERED - 100, cost=150)
        bot = make_bot(config, components)

        assert await bot.run_cycle() == CycleOutcome.UNPROFITABLE
        components["submitter"].submit_with_retry.assert_not_awaited()
        components["token_buyer"].estimate_buy_eth_gas.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_calldata(self, config, components):
        components["route_oracle"].route.return_value = make_quote(NEEDED, OFFERED // 2, calldata=None)
        bot = make_bot(config, components)

        assert await bot.run_cycle() == CycleOutcome.NO_CALLDATA
        components["submitter"].submit_with_retry.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gas_estimation_failure(self, config, components):
        components["token_buyer"].estimate_buy_eth_gas.side_effect = ContractLogicError("revert")
        bot = make_bot(config, components)

        assert await bot.run_cycle() == CycleOutcome.GAS_ESTIMATE_FAILED
        components["submitter"].submit_with_retry.assert_not_awaited()


class TestSubmission:
    @pytest.mark.asyncio
    async def test_profitable_cycle_submits_candidate(self, config, components):
        bot = make_bot(config, components)

        assert await bot.run_cycle() == CycleOutcome.SUBMITTED

        oracle = components["route_oracle"]
        assert [call.args[0] for call in oracle.route.await_args_list] == [NEEDED, NEEDED]

        expected_aux = encode_auxiliary_data(NETWORK.swap_router, b"\x01\x02\x03", 10**15)
        components["token_buyer"].estimate_buy_eth_gas.assert_awaited_once_with(
            NEEDED, NETWORK.arbitrage_bot, expected_aux, TEST_SIGNER
        )

        candidate, max_attempts = components["submitter"].submit_with_retry.await_args.args
        assert max_attempts == 3
        assert candidate.to == TOKEN_BUYER
        assert candidate.sender == TEST_SIGNER
        assert candidate.nonce == 7
        assert candidate.gas_limit == 250_000
        assert candidate.gas_price == 20 * GWEI
        assert candidate.data == b"\xbe\xef"
        assert candidate.chain_id == 1

    @pytest.mark.asyncio
    async def test_failed_submission(self, config, components):
        components["submitter"].submit_with_retry.return_value = SubmissionOutcome.ACCOUNT_NONCE_TOO_HIGH
        bot = make_bot(config, components)

        assert await bot.run_cycle() == CycleOutcome.SUBMISSION_FAILED

    @pytest.mark.asyncio
    async def test_unbounded_attempts_forwarded(self, config, components):
        bot = make_bot(dataclasses.replace(config, submission_max_attempts=None), components)

        await bot.run_cycle()

        assert components["submitter"].submit_with_retry.await_args.args[1] is None

    @pytest.mark.asyncio
    async def test_dry_run_builds_but_does_not_submit(self, config, components):
        bot = make_bot(dataclasses.replace(config, dry_run=True), components)

        assert await bot.run_cycle() == CycleOutcome.DRY_RUN
        components["submitter"].submit_with_retry.assert_not_awaited()
        assert bot.last_candidate is not None
        assert bot.last_candidate.nonce == 7

    @pytest.mark.asyncio
    async def test_real_search_over_local_route(self, config, components):
        # Market is 2000 USDC per ETH; the contract pays 1 ETH for 1800 USDC
        opportunity = Opportunity(amount_needed=1_800 * USDC, amount_offered=OFFERED)
        components["token_buyer"].fetch_opportunity.return_value = opportunity
        components["route_oracle"].route = AsyncMock(
            side_effect=lambda amount: make_quote(amount, ROUTE.get_input_amount(amount))
        )
        components["search"] = ProfitSearch("probe", rounding_margin=NETWORK.rounding_margin)
        bot = make_bot(config, components)

        assert await bot.run_cycle() == CycleOutcome.SUBMITTED

        requoted = components["route_oracle"].route.await_args_list[1].args[0]
        # Profit grows with size here, so the whole demand is taken
        assert requoted == 1_800 * USDC


class TestLoop:
    @pytest.mark.asyncio
    async def test_run_once_converts_errors(self, config, components):
        components["route_populator"].populate.side_effect = DataError("ticks unavailable")
        metrics = BotMetrics(CollectorRegistry())
        bot = make_bot(config, components, metrics=metrics)

        assert await bot.run_once() == CycleOutcome.ERROR
        assert metrics.registry.get_sample_value(
            "tokenbuyer_arb_cycles_total", {"outcome": "error"}
        ) == 1

    @pytest.mark.asyncio
    async def test_run_once_catches_unexpected_errors(self, config, components):
        components["route_oracle"].route.side_effect = RuntimeError("boom")
        bot = make_bot(config, components)

        assert await bot.run_once() == CycleOutcome.ERROR

    @pytest.mark.asyncio
    async def test_loop_sleeps_between_cycles(self, config, components):
        components["token_buyer"].fetch_opportunity.side_effect = [
            Opportunity(0, 0),
            ContractLogicError("stale"),
            Opportunity(NEEDED, OFFERED),
        ]
        sleep = AsyncMock()
        metrics = BotMetrics(CollectorRegistry())
        bot = make_bot(config, components, metrics=metrics, sleep=sleep)

        await bot.run_forever(max_cycles=3)

        assert sleep.await_count == 2
        assert all(call.args[0] == 30 for call in sleep.await_args_list)
        for outcome in ("no_demand", "stale_state", "submitted"):
            assert metrics.registry.get_sample_value(
                "tokenbuyer_arb_cycles_total", {"outcome": outcome}
            ) == 1

    @pytest.mark.asyncio
    async def test_search_metrics_recorded(self, config, components):
        metrics = BotMetrics(CollectorRegistry())
        bot = make_bot(config, components, metrics=metrics)

        await bot.run_cycle()

        assert metrics.registry.get_sample_value("tokenbuyer_arb_search_evaluations_sum") == 12
        assert metrics.registry.get_sample_value("tokenbuyer_arb_expected_profit_wei") == (
            OFFERED - OFFERED // 2 - 10**15
        )
