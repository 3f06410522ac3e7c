"""
Exception hierarchy for the token buyer arbitrage bot.

Startup problems (configuration) are fatal. Everything raised while evaluating
or submitting a single opportunity is caught by the poll loop and converted
into a sleep-and-retry.
"""

from typing import Any, Dict, Optional


class TokenBuyerArbError(Exception):
    """Base exception for all arbitrage bot errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(TokenBuyerArbError):
    """Raised when required configuration is missing or invalid."""

    pass


class ValidationError(TokenBuyerArbError):
    """Raised when validation of data fails."""

    pass


class InsufficientLiquidityError(ValidationError):
    """Raised when a route cannot produce the requested output amount."""

    def __init__(
        self,
        message: str,
        pool: Optional[str] = None,
        amount_out: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.pool = pool
        self.amount_out = amount_out


class DataError(TokenBuyerArbError):
    """Raised when auxiliary market data cannot be fetched or parsed."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.source = source


class NetworkError(TokenBuyerArbError):
    """Raised when network or connectivity issues occur."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code


class RelayError(NetworkError):
    """Raised when the private relay rejects a bundle or request."""

    pass
