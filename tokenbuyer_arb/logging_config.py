"""
Logging configuration for the arbitrage bot.

Usage:
    from tokenbuyer_arb import logging_config
    logging_config.setup()
"""

import logging
import sys
from typing import Union


def setup(level: Union[str, int] = logging.INFO):
    """
    Configure root logging for readable console output.

    - Single stdout handler with a short timestamp
    - Quiets HTTP client and web3 provider chatter
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-7s | %(message)s", datefmt="%H:%M:%S"
    )
    console.setFormatter(formatter)
    root.addHandler(console)

    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logging.getLogger("tokenbuyer_arb").setLevel(level)


def setup_debug():
    """Verbose logging, including provider requests."""
    setup(level=logging.DEBUG)
    logging.getLogger("web3").setLevel(logging.DEBUG)
