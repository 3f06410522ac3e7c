"""
Configuration schema validation using Pydantic
"""

import math
from decimal import Decimal
from typing import Any, Dict, Literal, Optional

from eth_account import Account
from pydantic import BaseModel, Field, field_validator

from .constants import (
    DEFAULT_FLASHBOTS_RELAY,
    DEFAULT_PAGE_SIZE,
    DEFAULT_SUBGRAPH_URL,
    MAINNET_CHAIN_ID,
)

UNBOUNDED_VALUES = {"inf", "infinity", "unbounded", "forever"}


class BotSettings(BaseModel):
    """Raw bot settings as merged from defaults, YAML and the environment"""

    rpc_url: str = Field(min_length=1, description="JSON-RPC endpoint")
    private_key: str = Field(min_length=1, description="Transaction signing key")
    auth_signer_private_key: Optional[str] = Field(
        default=None, description="Relay request signing key (defaults to private_key)"
    )
    chain_id: int = Field(ge=1, default=MAINNET_CHAIN_ID)
    poll_interval_sec: float = Field(gt=0, default=60)
    submission_max_attempts: Optional[int] = Field(
        ge=1, default=3, description="None retries until resolved"
    )
    submission_retry_delay_sec: float = Field(ge=0, default=0.0)
    search_strategy: Literal["probe", "bisection"] = "probe"
    search_tolerance: Optional[Decimal] = Field(ge=0, lt=1, default=None)
    subgraph_url: str = Field(min_length=1, default=DEFAULT_SUBGRAPH_URL)
    subgraph_page_size: int = Field(ge=1, le=1000, default=DEFAULT_PAGE_SIZE)
    subgraph_max_attempts: int = Field(ge=1, le=100, default=3)
    relay_url: str = Field(min_length=1, default=DEFAULT_FLASHBOTS_RELAY)
    slippage_tolerance_bps: int = Field(ge=0, le=10000, default=100)
    swap_deadline_sec: int = Field(ge=1, default=1800)
    max_gas_price_gwei: Optional[Decimal] = Field(gt=0, default=None)
    dry_run: bool = False
    metrics_port: int = Field(ge=0, le=65535, default=0)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    @field_validator("private_key", "auth_signer_private_key")
    @classmethod
    def validate_key(cls, v):
        if v is None:
            return v
        try:
            Account.from_key(v)
        except Exception as e:
            raise ValueError(f"not a usable private key ({type(e).__name__})")
        return v

    @field_validator("submission_max_attempts", mode="before")
    @classmethod
    def parse_unbounded_attempts(cls, v):
        if v is None:
            return None
        if isinstance(v, float) and math.isinf(v):
            return None
        if isinstance(v, str) and v.strip().lower() in UNBOUNDED_VALUES:
            return None
        return v

    @field_validator("search_strategy", mode="before")
    @classmethod
    def normalize_strategy(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator(
        "auth_signer_private_key", "max_gas_price_gwei", "search_tolerance", mode="before"
    )
    @classmethod
    def empty_as_unset(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    model_config = {
        "extra": "forbid",  # Disallow unknown keys
        "str_strip_whitespace": True,
    }


def validate_bot_settings(values: Dict[str, Any]) -> BotSettings:
    """
    Validate a merged settings dictionary

    Raises:
        pydantic.ValidationError: If any setting is missing or invalid
    """
    return BotSettings(**values)
