"""Version information for the token buyer arbitrage bot."""

__version__ = "0.1.0"


def get_version() -> str:
    """Version string shown by ``--version`` and in the startup log line."""
    return __version__
