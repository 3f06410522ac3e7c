"""
Command line entry point: ``tokenbuyer-arb``.

Loads configuration (.env, optional YAML, environment), wires the components
and runs the poll loop until interrupted.
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from typing import List, Optional

import aiohttp
from dotenv import load_dotenv
from eth_account import Account
from web3 import AsyncWeb3

from . import logging_config
from .config_loader import BotConfig, load_bot_config
from .dex_mev.bot import CycleOutcome, TokenBuyerArbitrageBot
from .dex_mev.flashbots_client import FlashbotsRelay, FlashbotsTransactionClient
from .dex_mev.graphql_client import PaginatedGraphQLClient
from .dex_mev.quoter import GasPriceProvider, UniswapV3QuoteOracle
from .dex_mev.route_utils import RoutePopulator
from .dex_mev.solver import ProfitSearch
from .dex_mev.token_buyer import TokenBuyerContract
from .exceptions import ConfigurationError
from .metrics import BotMetrics
from .version import get_version

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tokenbuyer-arb",
        description="Fill token buyer demand from on-chain liquidity via a private relay",
    )
    parser.add_argument("--config", help="Path to YAML configuration file")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides LOG_LEVEL)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Build transactions but never submit them",
    )
    parser.add_argument(
        "--once", action="store_true", help="Run a single poll cycle and exit"
    )
    parser.add_argument("--version", action="version", version=get_version())
    return parser


def build_bot(
    config: BotConfig,
    w3: AsyncWeb3,
    session: aiohttp.ClientSession,
    metrics: Optional[BotMetrics] = None,
) -> TokenBuyerArbitrageBot:
    """Wire every component from one configuration."""
    network = config.network
    signer = Account.from_key(config.private_key)
    auth_signer = Account.from_key(config.auth_signer_private_key)

    graphql = PaginatedGraphQLClient(
        config.subgraph_url,
        session=session,
        page_size=config.subgraph_page_size,
        max_attempts=config.subgraph_max_attempts,
    )
    oracle = UniswapV3QuoteOracle(
        w3,
        network,
        GasPriceProvider(w3, config.max_gas_price_gwei),
        slippage_tolerance_bps=config.slippage_tolerance_bps,
        deadline_sec=config.swap_deadline_sec,
    )
    submitter = FlashbotsTransactionClient(
        w3,
        signer,
        FlashbotsRelay(config.relay_url, auth_signer, session=session),
        retry_delay=config.submission_retry_delay_sec,
        metrics=metrics,
    )
    return TokenBuyerArbitrageBot(
        config=config,
        w3=w3,
        token_buyer=TokenBuyerContract(w3, network.token_buyer),
        route_oracle=oracle,
        route_populator=RoutePopulator(
            graphql, network.v3_factory, network.v3_pool_init_code_hash
        ),
        search=ProfitSearch(
            config.search_strategy, config.search_tolerance, network.rounding_margin
        ),
        submitter=submitter,
        metrics=metrics,
    )


async def run(config: BotConfig, once: bool = False) -> int:
    metrics = BotMetrics()
    if config.metrics_port:
        await metrics.start_server(port=config.metrics_port)

    w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(config.rpc_url))
    try:
        async with aiohttp.ClientSession() as session:
            bot = build_bot(config, w3, session, metrics)
            try:
                if once:
                    outcome = await bot.run_once()
                    return EXIT_FAILURE if outcome == CycleOutcome.ERROR else EXIT_OK
                await bot.run_forever()
            finally:
                await bot.submitter.wait_for_simulations()
    finally:
        if config.metrics_port:
            await metrics.stop_server()
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    load_dotenv()

    try:
        config = load_bot_config(config_path=args.config)
    except ConfigurationError as e:
        logging_config.setup(args.log_level or "INFO")
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    overrides = {}
    if args.dry_run:
        overrides["dry_run"] = True
    if args.log_level:
        overrides["log_level"] = args.log_level
    if overrides:
        config = dataclasses.replace(config, **overrides)

    if config.log_level == "DEBUG":
        logging_config.setup_debug()
    else:
        logging_config.setup(config.log_level)
    logger.info(f"tokenbuyer-arb {get_version()} starting with {config.redacted()}")

    try:
        return asyncio.run(run(config, once=args.once))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
