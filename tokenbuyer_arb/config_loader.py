"""
Configuration loading and normalization for the token buyer arbitrage bot.

Configuration is resolved once at startup from built-in defaults, an optional
YAML file and the process environment (in that order of precedence), and is
handed to each component as an immutable ``BotConfig``.
"""

import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import pydantic
import yaml
from eth_account import Account

from .config_schema import validate_bot_settings
from .constants import (
    DEFAULT_FLASHBOTS_RELAY,
    DEFAULT_PAGE_SIZE,
    DEFAULT_SUBGRAPH_URL,
    NETWORKS,
    NetworkAddresses,
)
from .exceptions import ConfigurationError

# Default relative tolerance per search strategy
DEFAULT_SEARCH_TOLERANCE = {
    "probe": Decimal("0.0001"),
    "bisection": Decimal("0.01"),
}

# Environment variable -> config key
ENV_KEYS = {
    "JSON_RPC_URL": "rpc_url",
    "PRIVATE_KEY": "private_key",
    "AUTH_SIGNER_PRIVATE_KEY": "auth_signer_private_key",
    "CHAIN_ID": "chain_id",
    "OPPORTUNITY_CHECK_INTERVAL_SEC": "poll_interval_sec",
    "SUBMISSION_MAX_ATTEMPTS": "submission_max_attempts",
    "SUBMISSION_RETRY_DELAY_SEC": "submission_retry_delay_sec",
    "SEARCH_STRATEGY": "search_strategy",
    "SEARCH_TOLERANCE": "search_tolerance",
    "SUBGRAPH_URL": "subgraph_url",
    "SUBGRAPH_PAGE_SIZE": "subgraph_page_size",
    "SUBGRAPH_MAX_ATTEMPTS": "subgraph_max_attempts",
    "FLASHBOTS_RELAY_URL": "relay_url",
    "SLIPPAGE_TOLERANCE_BPS": "slippage_tolerance_bps",
    "SWAP_DEADLINE_SEC": "swap_deadline_sec",
    "MAX_GAS_PRICE_GWEI": "max_gas_price_gwei",
    "DRY_RUN": "dry_run",
    "METRICS_PORT": "metrics_port",
    "LOG_LEVEL": "log_level",
}

# Config key -> environment variable, for error messages
ENV_NAMES = {key: env_name for env_name, key in ENV_KEYS.items()}


@dataclass(frozen=True)
class BotConfig:
    """
    Immutable runtime configuration.

    Attributes:
        rpc_url: JSON-RPC endpoint of the execution client
        private_key: Key that signs the arbitrage transaction
        auth_signer_private_key: Key that signs relay requests (reputation only)
        network: Address book for the configured chain
        poll_interval_sec: Delay between opportunity checks
        submission_max_attempts: Bundle submission attempts, None for unbounded
        submission_retry_delay_sec: Constant delay between submission attempts
        search_strategy: "probe" or "bisection"
        search_tolerance: Relative interval width at which the search stops
        subgraph_url: Indexed data source for pool ticks
        subgraph_page_size: Records per tick page
        subgraph_max_attempts: Attempts per tick page before failing
        relay_url: Private relay endpoint
        slippage_tolerance_bps: Extra input allowed on the router swap
        swap_deadline_sec: Router deadline offset
        max_gas_price_gwei: Optional ceiling on the gas price used
        dry_run: Build transactions without submitting them
        metrics_port: Prometheus port, 0 disables the server
        log_level: Root logging level name
    """

    rpc_url: str
    private_key: str
    auth_signer_private_key: str
    network: NetworkAddresses
    poll_interval_sec: float = 60
    submission_max_attempts: Optional[int] = 3
    submission_retry_delay_sec: float = 0.0
    search_strategy: str = "probe"
    search_tolerance: Decimal = DEFAULT_SEARCH_TOLERANCE["probe"]
    subgraph_url: str = DEFAULT_SUBGRAPH_URL
    subgraph_page_size: int = DEFAULT_PAGE_SIZE
    subgraph_max_attempts: int = 3
    relay_url: str = DEFAULT_FLASHBOTS_RELAY
    slippage_tolerance_bps: int = 100
    swap_deadline_sec: int = 1800
    max_gas_price_gwei: Optional[Decimal] = None
    dry_run: bool = False
    metrics_port: int = 0
    log_level: str = "INFO"

    @property
    def chain_id(self) -> int:
        return self.network.chain_id

    @property
    def signer_address(self) -> str:
        """Checksum address derived from the signing key."""
        return Account.from_key(self.private_key).address

    def redacted(self) -> Dict[str, Any]:
        """Config summary safe to log."""
        return {
            "chain_id": self.chain_id,
            "poll_interval_sec": self.poll_interval_sec,
            "submission_max_attempts": self.submission_max_attempts,
            "search_strategy": self.search_strategy,
            "search_tolerance": str(self.search_tolerance),
            "subgraph_page_size": self.subgraph_page_size,
            "relay_url": self.relay_url,
            "dry_run": self.dry_run,
            "metrics_port": self.metrics_port,
        }


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse YAML configuration file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")

    if config_dict is None:
        return {}
    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")
    return config_dict


def _describe_errors(error: pydantic.ValidationError) -> str:
    """One line per failing field, naming the environment variable that sets it."""
    unknown = []
    problems = []
    for item in error.errors():
        field = str(item["loc"][0]) if item["loc"] else "?"
        if item["type"] == "extra_forbidden":
            unknown.append(field)
            continue
        problems.append(f"Invalid {ENV_NAMES.get(field, field)} ({field}): {item['msg']}")
    if unknown:
        problems.insert(0, f"Unknown configuration keys: {', '.join(sorted(unknown))}")
    return "; ".join(problems)


def load_bot_config(
    env: Optional[Mapping[str, str]] = None,
    config_path: Optional[Union[str, Path]] = None,
) -> BotConfig:
    """
    Build the runtime configuration.

    Args:
        env: Environment mapping (defaults to ``os.environ``)
        config_path: Optional YAML file with snake_case keys

    Returns:
        Validated BotConfig

    Raises:
        ConfigurationError: If required values are missing or invalid
    """
    env = os.environ if env is None else env
    if config_path is None and env.get("CONFIG_FILE"):
        config_path = env["CONFIG_FILE"]

    values: Dict[str, Any] = {}
    if config_path:
        values.update(load_yaml_config(config_path))

    for env_name, key in ENV_KEYS.items():
        if env.get(env_name) not in (None, ""):
            values[key] = env[env_name]

    # Validate against schema first
    try:
        settings = validate_bot_settings(values)
    except pydantic.ValidationError as e:
        raise ConfigurationError(
            f"Configuration validation failed: {_describe_errors(e)}",
            details={"errors": e.errors(include_input=False)},
        )

    network = NETWORKS.get(settings.chain_id)
    if network is None:
        raise ConfigurationError(f"No contract addresses for chain ID: {settings.chain_id}")

    tolerance = settings.search_tolerance
    if tolerance is None:
        tolerance = DEFAULT_SEARCH_TOLERANCE[settings.search_strategy]

    return BotConfig(
        rpc_url=settings.rpc_url,
        private_key=settings.private_key,
        auth_signer_private_key=settings.auth_signer_private_key or settings.private_key,
        network=network,
        poll_interval_sec=settings.poll_interval_sec,
        submission_max_attempts=settings.submission_max_attempts,
        submission_retry_delay_sec=settings.submission_retry_delay_sec,
        search_strategy=settings.search_strategy,
        search_tolerance=tolerance,
        subgraph_url=settings.subgraph_url,
        subgraph_page_size=settings.subgraph_page_size,
        subgraph_max_attempts=settings.subgraph_max_attempts,
        relay_url=settings.relay_url,
        slippage_tolerance_bps=settings.slippage_tolerance_bps,
        swap_deadline_sec=settings.swap_deadline_sec,
        max_gas_price_gwei=settings.max_gas_price_gwei,
        dry_run=settings.dry_run,
        metrics_port=settings.metrics_port,
        log_level=settings.log_level,
    )
